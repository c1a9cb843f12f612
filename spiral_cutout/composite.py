from __future__ import annotations

import io
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from PIL import Image

from .masks import Mask


@dataclass(frozen=True)
class CutoutImage:
    """Source pixels with everything outside the mask fully transparent."""

    pixels: np.ndarray
    width: int
    height: int
    method: str = "model"


def mask_lookup(mask: Mask, width: int, height: int) -> np.ndarray:
    """
    Nearest-lower resample of the mask to (height, width):
    mask_x = floor(x * mask_w / width), same for y.
    """
    mx = np.minimum(np.arange(width) * mask.width // width, mask.width - 1)
    my = np.minimum(np.arange(height) * mask.height // height, mask.height - 1)
    data = np.asarray(mask.data).reshape(mask.height, mask.width)
    return data[my[:, None], mx[None, :]]


def apply_mask(source_rgba: np.ndarray, mask: Mask) -> np.ndarray:
    """
    Zero all four channels wherever the (rescaled) mask is 0.

    Neither input is mutated; the result has the source's shape.
    """
    if source_rgba.ndim != 3 or source_rgba.shape[2] != 4:
        raise ValueError(f"Expected RGBA image (H,W,4), got {source_rgba.shape}")
    h, w = source_rgba.shape[:2]
    out = np.array(source_rgba, dtype=np.uint8, copy=True)
    out[mask_lookup(mask, w, h) == 0] = 0
    return out


def to_pil(pixels: np.ndarray) -> Image.Image:
    return Image.fromarray(np.ascontiguousarray(pixels, dtype=np.uint8))


def encode_png(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    if img.mode != "RGBA":
        img = img.convert("RGBA")
    img.save(buf, format="PNG", optimize=False)
    return buf.getvalue()


def save_rgba_png(img: Image.Image, out_path: str) -> None:
    """
    Save as lossless RGBA PNG.
    """
    Path(out_path).parent.mkdir(parents=True, exist_ok=True)
    if img.mode != "RGBA":
        img = img.convert("RGBA")
    img.save(out_path, format="PNG", optimize=False)
