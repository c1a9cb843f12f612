from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from .composite import CutoutImage
from .config import BACKGROUND_COLOR, SPIRAL_MARGIN
from .contracts import SpiralParameters
from .surface import Surface, premultiply


@dataclass(frozen=True)
class Placement:
    t: float
    angle: float
    radius: float
    x: float
    y: float
    scale: float
    rotation: float


def max_radius(width: float, height: float, margin: float = SPIRAL_MARGIN) -> float:
    return min(width / 2.0, height / 2.0) - margin


def layout(
    count: int,
    turns: float,
    size_percent: float,
    width: float,
    height: float,
    margin: float = SPIRAL_MARGIN,
) -> List[Placement]:
    """
    Placements from the outer edge (i=0) spiralling in toward the center.

    t = i / count never reaches 1, so the last copy stays off-center. Copies
    shrink to 30% of the requested size at the center, and each is rotated so
    its up axis follows the spiral tangent.
    """
    if count <= 0:
        return []

    cx, cy = width / 2.0, height / 2.0
    r_max = max_radius(width, height, margin)
    size = size_percent / 100.0

    out: List[Placement] = []
    for i in range(count):
        t = i / count
        angle = t * turns * 2.0 * math.pi
        radius = r_max * (1.0 - t)
        out.append(
            Placement(
                t=t,
                angle=angle,
                radius=radius,
                x=cx + radius * math.cos(angle),
                y=cy + radius * math.sin(angle),
                scale=size * (0.3 + 0.7 * (1.0 - t)),
                rotation=angle + math.pi / 2.0,
            )
        )
    return out


def draw_placement(
    surface: Surface,
    cutout: CutoutImage,
    p: Placement,
    premultiplied: Optional[np.ndarray] = None,
) -> None:
    if premultiplied is None:
        premultiplied = premultiply(cutout.pixels)
    surface.save()
    try:
        surface.translate(p.x, p.y)
        surface.rotate(p.rotation)
        surface.scale(p.scale, p.scale)
        w = cutout.width * p.scale
        h = cutout.height * p.scale
        surface.draw_premultiplied(premultiplied, -w / 2.0, -h / 2.0, w, h)
    finally:
        surface.restore()


def clear_surface(surface: Surface) -> None:
    surface.reset_transform()
    surface.clear()
    surface.fill(BACKGROUND_COLOR)


def render_spiral(surface: Surface, cutout: CutoutImage, params: SpiralParameters) -> List[Placement]:
    """
    Clear the surface and draw every placement in order; inner copies land on top.
    """
    clear_surface(surface)
    placements = layout(
        params.object_count,
        params.turns,
        params.object_size,
        surface.width,
        surface.height,
    )
    src = premultiply(cutout.pixels)
    for p in placements:
        draw_placement(surface, cutout, p, src)
    return placements


def render_preview(surface: Surface, cutout: CutoutImage) -> None:
    """Cutout centered at natural size on a cleared surface."""
    clear_surface(surface)
    x = (surface.width - cutout.width) / 2.0
    y = (surface.height - cutout.height) / 2.0
    surface.draw_image(cutout.pixels, x, y)
