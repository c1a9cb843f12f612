from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

from .composite import CutoutImage, apply_mask, save_rgba_png, to_pil
from .config import CUTOUT_FILENAME, OUTPUT_FILENAME
from .contracts import ProcessOutcome, SpiralParameters
from .errors import InvalidImageError, NoProcessedImageError
from .inference import segment
from .masks import Mask, build_mask_from_labels, build_mask_from_pixels
from .model import ModelBacked, Segmenter
from .preprocess import SourceImage, decode_image, guess_media_type, resize_for_inference
from .spiral import Placement, clear_surface, render_preview, render_spiral
from .surface import Surface

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    IDLE = "idle"
    DECODING = "decoding"
    INFERRING = "inferring"
    COMPOSITING = "compositing"
    RENDERING = "rendering"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class StageTimings:
    decode_s: float = 0.0
    inference_s: float = 0.0
    composite_s: float = 0.0
    render_s: float = 0.0

    @property
    def total_s(self) -> float:
        return self.decode_s + self.inference_s + self.composite_s + self.render_s

    def as_dict(self) -> dict:
        return {
            "decode_s": self.decode_s,
            "inference_s": self.inference_s,
            "composite_s": self.composite_s,
            "render_s": self.render_s,
            "total_s": self.total_s,
        }


@dataclass
class Session:
    """
    The one current source/cutout pair plus the output surface.

    `generation` bumps whenever a new source is adopted (or on reset); a
    processing pass only commits if its token still matches, so a slow older
    pass can never overwrite a newer upload. Nothing is cancelled.
    """

    surface: Surface = field(default_factory=Surface)
    source: Optional[SourceImage] = None
    cutout: Optional[CutoutImage] = None
    state: PipelineState = PipelineState.IDLE
    generation: int = 0
    spiral_rendered: bool = False

    def __post_init__(self) -> None:
        clear_surface(self.surface)

    def is_current(self, token: int) -> bool:
        return token == self.generation


def adopt_source(session: Session, source: SourceImage) -> int:
    """Make `source` current and drop the previous cutout. Returns the pass token."""
    session.generation += 1
    session.source = source
    session.cutout = None
    session.spiral_rendered = False
    return session.generation


def _set_state(session: Session, token: int, state: PipelineState) -> None:
    if session.is_current(token):
        session.state = state


def infer_mask(source: SourceImage, segmenter: Segmenter) -> Tuple[Mask, str]:
    """
    Model path on a downscaled working copy; any failure there (including an
    all-background label map) drops to the pixel heuristic at full resolution.
    """
    if isinstance(segmenter, ModelBacked):
        try:
            rgb = resize_for_inference(source)
            labels = segment(segmenter.handle, rgb)
            return build_mask_from_labels(labels, rgb.shape[1], rgb.shape[0]), "model"
        except Exception as e:  # noqa: BLE001 - every inference failure falls back
            logger.warning("Segmentation failed, using heuristic fallback: %s", e)

    return build_mask_from_pixels(source.pixels, source.width, source.height), "heuristic"


def process_source(session: Session, segmenter: Segmenter, source: SourceImage, token: int) -> ProcessOutcome:
    """
    Linear pass: infer mask -> composite -> commit -> preview.
    """
    try:
        _set_state(session, token, PipelineState.INFERRING)
        t0 = time.perf_counter()
        mask, method = infer_mask(source, segmenter)
        t1 = time.perf_counter()

        _set_state(session, token, PipelineState.COMPOSITING)
        cutout = CutoutImage(
            pixels=apply_mask(source.pixels, mask),
            width=source.width,
            height=source.height,
            method=method,
        )
        t2 = time.perf_counter()

        if not session.is_current(token):
            logger.info("Discarding result of superseded pass (token %d, current %d)", token, session.generation)
            return ProcessOutcome(status="superseded", method=method, width=source.width, height=source.height)

        session.cutout = cutout
        session.state = PipelineState.RENDERING
        render_preview(session.surface, cutout)
        session.state = PipelineState.READY
        t3 = time.perf_counter()
    except Exception as e:  # noqa: BLE001 - the session stays usable after any failure
        logger.exception("Processing failed")
        _set_state(session, token, PipelineState.FAILED)
        return ProcessOutcome(status="failed", message=f"{type(e).__name__}: {e}")

    timings = StageTimings(inference_s=t1 - t0, composite_s=t2 - t1, render_s=t3 - t2)
    return ProcessOutcome(
        status="ready",
        method=method,
        width=source.width,
        height=source.height,
        timings=timings.as_dict(),
    )


def handle_upload(session: Session, segmenter: Segmenter, data: bytes, media_type: str) -> ProcessOutcome:
    """
    Top-level entry for one upload. Invalid input is rejected without touching
    the session; inference problems fall back to the heuristic.
    """
    previous = session.state
    session.state = PipelineState.DECODING
    t0 = time.perf_counter()
    source: Optional[SourceImage] = None
    try:
        source = decode_image(data, media_type)
    except InvalidImageError as e:
        logger.info("Rejected upload: %s", e)
        return ProcessOutcome(status="rejected", message=str(e))
    finally:
        if source is None:
            session.state = previous
    decode_s = time.perf_counter() - t0

    token = adopt_source(session, source)
    outcome = process_source(session, segmenter, source, token)
    if outcome.timings:
        outcome.timings["decode_s"] = decode_s
        outcome.timings["total_s"] += decode_s
    return outcome


def upload_file(session: Session, segmenter: Segmenter, path: str) -> ProcessOutcome:
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        return ProcessOutcome(status="rejected", message=f"Could not read {path}: {e}")
    return handle_upload(session, segmenter, data, guess_media_type(path))


def generate_spiral(session: Session, params: SpiralParameters) -> List[Placement]:
    if session.cutout is None:
        raise NoProcessedImageError("Please upload and process an image first.")

    session.state = PipelineState.RENDERING
    placements = render_spiral(session.surface, session.cutout, params)
    session.spiral_rendered = True
    session.state = PipelineState.READY
    return placements


def export_png(session: Session) -> bytes:
    return session.surface.to_png_bytes()


def save_export(session: Session, out_dir: str) -> Path:
    out_path = Path(out_dir) / OUTPUT_FILENAME
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_bytes(export_png(session))
    return out_path


def save_cutout(session: Session, out_dir: str) -> Path:
    if session.cutout is None:
        raise NoProcessedImageError("No processed image to save.")
    out_path = Path(out_dir) / CUTOUT_FILENAME
    save_rgba_png(to_pil(session.cutout.pixels), str(out_path))
    return out_path


def reset(session: Session) -> None:
    """Forget the current image; any pass still running for it is discarded."""
    session.generation += 1
    session.source = None
    session.cutout = None
    session.spiral_rendered = False
    session.state = PipelineState.IDLE
    clear_surface(session.surface)
