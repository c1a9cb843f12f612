from __future__ import annotations

import numpy as np
import torch

from .model import SegmentationModel, forward_model
from .preprocess import normalize


def _extract_primary_output(y):
    """
    Segmentation models may return:
      - a single tensor
      - (tensor, ...) tuple/list (final stage is typically last)
      - dict / ModelOutput with tensor fields ("out" for torchvision, "logits" for HF)
    """
    if isinstance(y, torch.Tensor):
        return y
    if isinstance(y, dict):
        for k in ("out", "logits", "pred", "mask"):
            v = y.get(k, None)
            if isinstance(v, torch.Tensor):
                return v
        for v in y.values():
            if isinstance(v, torch.Tensor):
                return v
        return next(iter(y.values()))
    if isinstance(y, (list, tuple)) and len(y) > 0:
        for item in reversed(y):
            if isinstance(item, torch.Tensor):
                return item
        return y[-1]
    return y


def logits_to_labels(y: torch.Tensor, height: int, width: int) -> np.ndarray:
    """
    Class logits (1, C, h, w) -> per-pixel label ids at (height, width).
    A single-channel output is a foreground logit: label 1 where sigmoid > 0.5.
    """
    if y.ndim == 3:
        y = y.unsqueeze(0)
    elif y.ndim == 2:
        y = y.unsqueeze(0).unsqueeze(0)
    if y.ndim != 4:
        raise RuntimeError(f"Unexpected output tensor shape: {tuple(y.shape)}")

    y = y[:1].float()
    if y.shape[-2:] != (height, width):
        y = torch.nn.functional.interpolate(y, size=(height, width), mode="bilinear", align_corners=False)

    if torch.isnan(y).any():
        raise RuntimeError("NaNs detected in segmentation output.")

    if y.shape[1] == 1:
        labels = (torch.sigmoid(y[0, 0]) > 0.5).to(torch.int32)
    else:
        labels = y[0].argmax(dim=0).to(torch.int32)
    return labels.detach().to("cpu").numpy()


def segment(model: SegmentationModel, rgb: np.ndarray) -> np.ndarray:
    """
    Forward pass on an RGB uint8 (h, w, 3) working image.

    Output: int32 label map of shape (h, w); 0 is background.
    """
    h, w = rgb.shape[:2]
    x = normalize(rgb, model.mean, model.std).to(model.device, dtype=model.dtype)
    y = _extract_primary_output(forward_model(model.module, x))
    if not isinstance(y, torch.Tensor):
        raise RuntimeError(f"Model output is not a tensor: {type(y)}")
    return logits_to_labels(y, h, w)
