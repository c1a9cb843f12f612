from __future__ import annotations

from typing import List, Optional, Sequence

import cv2
import numpy as np
from PIL import Image

from .composite import encode_png, to_pil
from .config import BACKGROUND_COLOR, CANVAS_HEIGHT, CANVAS_WIDTH


def _translation(tx: float, ty: float) -> np.ndarray:
    return np.array([[1.0, 0.0, tx], [0.0, 1.0, ty], [0.0, 0.0, 1.0]])


def _scaling(sx: float, sy: float) -> np.ndarray:
    return np.array([[sx, 0.0, 0.0], [0.0, sy, 0.0], [0.0, 0.0, 1.0]])


def _rotation(angle: float) -> np.ndarray:
    c, s = np.cos(angle), np.sin(angle)
    return np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])


def premultiply(pixels: np.ndarray) -> np.ndarray:
    """RGBA uint8 -> premultiplied float32 in [0, 1]."""
    src = pixels.astype(np.float32) / 255.0
    src[..., :3] *= src[..., 3:4]
    return src


class Surface:
    """
    Minimal 2D drawing context over an RGBA buffer.

    Transforms compose like a canvas context (each call post-multiplies the
    current matrix; y axis points down, positive angles turn clockwise).
    Pixels are stored premultiplied in float32 and composited source-over.
    """

    def __init__(self, width: int = CANVAS_WIDTH, height: int = CANVAS_HEIGHT):
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid surface size: {(width, height)}")
        self.width = int(width)
        self.height = int(height)
        self._buf = np.zeros((self.height, self.width, 4), dtype=np.float32)
        self._matrix = np.eye(3)
        self._stack: List[np.ndarray] = []

    # -- transform state ---------------------------------------------------
    @property
    def matrix(self) -> np.ndarray:
        return self._matrix.copy()

    def save(self) -> None:
        self._stack.append(self._matrix.copy())

    def restore(self) -> None:
        if self._stack:
            self._matrix = self._stack.pop()

    def reset_transform(self) -> None:
        self._matrix = np.eye(3)

    def translate(self, tx: float, ty: float) -> None:
        self._matrix = self._matrix @ _translation(tx, ty)

    def rotate(self, angle: float) -> None:
        self._matrix = self._matrix @ _rotation(angle)

    def scale(self, sx: float, sy: Optional[float] = None) -> None:
        self._matrix = self._matrix @ _scaling(sx, sx if sy is None else sy)

    # -- drawing -----------------------------------------------------------
    def clear(self) -> None:
        self._buf[:] = 0.0

    def fill(self, color: Sequence[int] = BACKGROUND_COLOR) -> None:
        """Source-over fill of the whole surface, ignoring the transform."""
        rgba = np.asarray(color, dtype=np.float32) / 255.0
        if rgba.shape[0] == 3:
            rgba = np.append(rgba, 1.0)
        a = rgba[3]
        src = np.array([rgba[0] * a, rgba[1] * a, rgba[2] * a, a], dtype=np.float32)
        self._buf = src + self._buf * (1.0 - a)

    def draw_image(
        self,
        pixels: np.ndarray,
        dx: float,
        dy: float,
        dw: Optional[float] = None,
        dh: Optional[float] = None,
    ) -> None:
        """
        Draw an RGBA uint8 image into the rectangle (dx, dy, dw, dh) of the
        current coordinate space.
        """
        self.draw_premultiplied(premultiply(pixels), dx, dy, dw, dh)

    def draw_premultiplied(
        self,
        src: np.ndarray,
        dx: float,
        dy: float,
        dw: Optional[float] = None,
        dh: Optional[float] = None,
    ) -> None:
        """Same as draw_image for a float32 buffer already made by `premultiply`."""
        sh, sw = src.shape[:2]
        dw = float(sw) if dw is None else float(dw)
        dh = float(sh) if dh is None else float(dh)
        if sw == 0 or sh == 0 or dw == 0 or dh == 0:
            return

        m = self._matrix @ _translation(dx, dy) @ _scaling(dw / sw, dh / sh)

        # Large downscales alias badly under bilinear sampling; shrink first.
        shrink = float(np.sqrt(abs(np.linalg.det(m[:2, :2]))))
        if 0.0 < shrink < 0.5:
            rw, rh = max(1, int(round(sw * shrink))), max(1, int(round(sh * shrink)))
            src = cv2.resize(src, (rw, rh), interpolation=cv2.INTER_AREA)
            m = m @ _scaling(sw / rw, sh / rh)

        # Pixel centers sit at +0.5 in surface coordinates.
        m = _translation(-0.5, -0.5) @ m @ _translation(0.5, 0.5)

        warped = cv2.warpAffine(
            src,
            m[:2].astype(np.float64),
            (self.width, self.height),
            flags=cv2.INTER_LINEAR,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=(0.0, 0.0, 0.0, 0.0),
        )
        alpha = warped[..., 3:4]
        self._buf = warped + self._buf * (1.0 - alpha)

    # -- export ------------------------------------------------------------
    def to_pixels(self) -> np.ndarray:
        """Straight (non-premultiplied) RGBA uint8 copy of the surface."""
        buf = np.clip(self._buf, 0.0, 1.0)
        alpha = buf[..., 3:4]
        rgb = np.divide(buf[..., :3], alpha, out=np.zeros_like(buf[..., :3]), where=alpha > 0)
        out = np.concatenate([rgb, alpha], axis=2)
        return np.round(out * 255.0).astype(np.uint8)

    def to_image(self) -> Image.Image:
        return to_pil(self.to_pixels())

    def to_png_bytes(self) -> bytes:
        return encode_png(self.to_image())
