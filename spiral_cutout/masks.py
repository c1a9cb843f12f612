from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from .config import CENTER_DISTANCE_THRESHOLD, EDGE_THRESHOLD
from .errors import NoForegroundError


@dataclass(frozen=True)
class Mask:
    """Binary foreground mask (0/255) at a working resolution."""

    data: np.ndarray
    width: int
    height: int


def dominant_label(labels: np.ndarray) -> int:
    """
    Most frequent non-background label. Ties go to the label seen first in
    row-major scan order.
    """
    flat = np.asarray(labels).reshape(-1)
    values, first_index, counts = np.unique(flat, return_index=True, return_counts=True)
    keep = values != 0
    if not keep.any():
        raise NoForegroundError("Label map contains only background.")
    values, first_index, counts = values[keep], first_index[keep], counts[keep]

    best = counts.max()
    tied = np.flatnonzero(counts == best)
    winner = tied[np.argmin(first_index[tied])]
    return int(values[winner])


def build_mask_from_labels(labels: np.ndarray, width: int, height: int) -> Mask:
    """
    Keep the dominant object from a model label map (label 0 is background).
    """
    labels = np.asarray(labels)
    if labels.size != width * height:
        raise ValueError(f"Label map has {labels.size} entries, expected {width}x{height}")

    label = dominant_label(labels)
    data = np.where(labels.reshape(height, width) == label, 255, 0).astype(np.uint8)
    return Mask(data=data, width=width, height=height)


def edge_strength(red: np.ndarray) -> np.ndarray:
    """
    |R - mean of the 8 neighbours| for interior pixels; border pixels are 0.
    Red channel only; not a true gradient.
    """
    r = red.astype(np.float64)
    h, w = r.shape
    edge = np.zeros((h, w), dtype=np.float64)
    if h < 3 or w < 3:
        return edge

    neighbours = (
        r[:-2, :-2] + r[:-2, 1:-1] + r[:-2, 2:]
        + r[1:-1, :-2] + r[1:-1, 2:]
        + r[2:, :-2] + r[2:, 1:-1] + r[2:, 2:]
    )
    edge[1:-1, 1:-1] = np.abs(r[1:-1, 1:-1] - neighbours / 8.0)
    return edge


def center_distance(width: int, height: int) -> np.ndarray:
    """Euclidean distance from the image center, normalized so corners are 1."""
    cx, cy = width / 2.0, height / 2.0
    ys, xs = np.mgrid[0:height, 0:width].astype(np.float64)
    return np.sqrt((xs - cx) ** 2 + (ys - cy) ** 2) / np.sqrt(cx**2 + cy**2)


def build_mask_from_pixels(
    rgba: np.ndarray,
    width: int,
    height: int,
    edge_threshold: float = EDGE_THRESHOLD,
    distance_threshold: float = CENTER_DISTANCE_THRESHOLD,
) -> Mask:
    """
    Model-free fallback: a pixel is foreground if it sits on a red-channel
    edge or lies in the central disc. Biased toward keeping a large central blob.
    """
    px = np.asarray(rgba, dtype=np.uint8).reshape(height, width, -1)
    is_object = (edge_strength(px[..., 0]) > edge_threshold) | (
        center_distance(width, height) < distance_threshold
    )
    data = np.where(is_object, 255, 0).astype(np.uint8)
    return Mask(data=data, width=width, height=height)
