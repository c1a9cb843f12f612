from __future__ import annotations

import io
import mimetypes
from dataclasses import dataclass
from typing import Sequence, Tuple

import cv2
import numpy as np
import torch
from PIL import Image, ImageOps, UnidentifiedImageError

from .config import IMAGENET_MEAN, IMAGENET_STD, WORKING_MAX_SIZE
from .errors import InvalidImageError


@dataclass(frozen=True)
class SourceImage:
    """Decoded upload. `pixels` is a read-only (H, W, 4) uint8 RGBA array."""

    pixels: np.ndarray
    width: int
    height: int
    media_type: str = "image/png"


def guess_media_type(path: str) -> str:
    media_type, _ = mimetypes.guess_type(path)
    return media_type or "application/octet-stream"


def decode_image(data: bytes, media_type: str) -> SourceImage:
    """
    Validate the declared media type and decode to RGBA.

    Only the "image/" prefix is checked; anything Pillow cannot read is
    rejected the same way.
    """
    if not (media_type or "").startswith("image/"):
        raise InvalidImageError(f"Not an image file (media type {media_type!r}).")
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
        # Phone photos store rotation in EXIF; apply it like a browser decode does.
        img = ImageOps.exif_transpose(img).convert("RGBA")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise InvalidImageError(f"Could not decode image: {e}") from e

    rgba = np.array(img, dtype=np.uint8)
    rgba.setflags(write=False)
    h, w = rgba.shape[:2]
    return SourceImage(pixels=rgba, width=w, height=h, media_type=media_type)


def working_size(width: int, height: int, max_size: int = WORKING_MAX_SIZE) -> Tuple[int, int]:
    """
    Scale so the longest side equals max_size (small images are upscaled too).
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid image size: {(width, height)}")
    if width > height:
        return max_size, max(1, int(height * max_size / width))
    return max(1, int(width * max_size / height)), max_size


def resize_for_inference(source: SourceImage, max_size: int = WORKING_MAX_SIZE) -> np.ndarray:
    """
    Returns the RGB uint8 (h, w, 3) working image fed to the segmentation model.
    """
    w, h = working_size(source.width, source.height, max_size)
    rgb = np.ascontiguousarray(source.pixels[..., :3])
    scale = float(w) / float(source.width)
    interp = cv2.INTER_AREA if scale < 1 else cv2.INTER_CUBIC
    return cv2.resize(rgb, (w, h), interpolation=interp)


def normalize(
    img: np.ndarray,
    mean: Sequence[float] = IMAGENET_MEAN,
    std: Sequence[float] = IMAGENET_STD,
) -> torch.Tensor:
    """
    Normalize uint8 RGB image to float32 torch tensor: (1, 3, H, W).
    """
    if img.ndim != 3 or img.shape[2] != 3:
        raise ValueError(f"Expected RGB image (H,W,3), got shape={img.shape}")
    x = img.astype(np.float32) / 255.0
    x = (x - np.array(mean, dtype=np.float32).reshape(1, 1, 3)) / np.array(std, dtype=np.float32).reshape(1, 1, 3)
    x = np.transpose(x, (2, 0, 1))  # CHW
    return torch.from_numpy(x).unsqueeze(0).contiguous()
