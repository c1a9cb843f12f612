from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any, List, Optional, Union

import torch

from .config import (
    HF_MEAN,
    HF_STD,
    IMAGENET_MEAN,
    IMAGENET_STD,
    MOBILENETV2_HF_REPO,
    get_device_name,
    get_model_base,
    get_quantization_bytes,
)
from .contracts import ModelConfig
from .errors import ModelUnavailableError

logger = logging.getLogger(__name__)

# base name -> (torchvision builder, weights enum); all trained on PASCAL VOC labels (0 = background).
TORCHVISION_BASES = {
    "mobilenetv3": ("deeplabv3_mobilenet_v3_large", "DeepLabV3_MobileNet_V3_Large_Weights"),
    "resnet50": ("deeplabv3_resnet50", "DeepLabV3_ResNet50_Weights"),
    "resnet101": ("deeplabv3_resnet101", "DeepLabV3_ResNet101_Weights"),
    "lraspp": ("lraspp_mobilenet_v3_large", "LRASPP_MobileNet_V3_Large_Weights"),
}

HEURISTIC_BASES = ("heuristic", "none")


@dataclass
class SegmentationModel:
    """Loaded model plus what inference needs to feed it."""

    module: Any
    device: torch.device
    kind: str  # "torchvision" | "hf" | "torchscript"
    dtype: torch.dtype = torch.float32
    mean: List[float] = field(default_factory=lambda: list(IMAGENET_MEAN))
    std: List[float] = field(default_factory=lambda: list(IMAGENET_STD))


@dataclass(frozen=True)
class ModelBacked:
    handle: SegmentationModel


@dataclass(frozen=True)
class Heuristic:
    reason: str = ""


Segmenter = Union[ModelBacked, Heuristic]


def get_device(name: str = "") -> torch.device:
    """
    Explicit device if given, else mps > cuda > cpu.
    """
    if name:
        return torch.device(name)
    if torch.backends.mps.is_available():
        return torch.device("mps")
    if torch.cuda.is_available():
        return torch.device("cuda")
    return torch.device("cpu")


def _freeze(model: torch.nn.Module) -> torch.nn.Module:
    model.eval()
    for p in model.parameters():
        p.requires_grad_(False)
    return model


def load_torchvision_segmenter(base: str) -> torch.nn.Module:
    from torchvision.models import segmentation as tv_segmentation

    builder_name, weights_name = TORCHVISION_BASES[base]
    builder = getattr(tv_segmentation, builder_name)
    weights = getattr(tv_segmentation, weights_name).DEFAULT
    return _freeze(builder(weights=weights))


def load_hf_segmenter(hf_repo: str) -> torch.nn.Module:
    """
    Load a semantic segmentation checkpoint via Hugging Face transformers.
    """
    try:
        from transformers import AutoModelForSemanticSegmentation
    except Exception as e:  # noqa: BLE001
        raise ModelUnavailableError("transformers is not installed. Run: pip install transformers") from e

    model = AutoModelForSemanticSegmentation.from_pretrained(hf_repo)
    return _freeze(model)


def load_torchscript_segmenter(model_path: str) -> torch.nn.Module:
    """
    Load a TorchScript module saved via torch.jit.save. Its output may be class
    logits (1, C, H, W) or a single-channel foreground logit map.
    """
    if not os.path.exists(model_path):
        raise FileNotFoundError(f"Model not found: {model_path}")

    # Register torchvision custom TorchScript ops before loading.
    import torchvision  # noqa: F401

    model = torch.jit.load(model_path, map_location="cpu")
    return _freeze(model)


def quantize_weights_uint8(model: torch.nn.Module) -> int:
    """
    Snap every weight matrix/kernel to 256 evenly spaced levels between its
    own min and max (per-tensor affine 8-bit, dequantized back to float32).

    Returns the number of tensors quantized.
    """
    count = 0
    with torch.no_grad():
        for name, param in model.named_parameters():
            if not name.endswith("weight") or param.ndim < 2:
                continue
            lo, hi = param.min(), param.max()
            step = (hi - lo) / 255.0
            if float(step) > 0.0:
                param.copy_(torch.round((param - lo) / step) * step + lo)
            count += 1
    return count


def apply_quantization(model: torch.nn.Module, quantization_bytes: int, device: torch.device):
    """
    4 bytes: float32; 2 bytes: float16 weights; 1 byte: conv/linear weights
    rounded to 8-bit levels, computed in float32.

    Returns (model, input dtype).
    """
    if quantization_bytes == 4:
        return model.to(dtype=torch.float32).to(device), torch.float32
    if quantization_bytes == 2:
        return model.to(dtype=torch.float16).to(device), torch.float16
    if quantization_bytes == 1:
        model = model.to(dtype=torch.float32)
        if quantize_weights_uint8(model) == 0:
            raise ValueError("Model has no conv/linear weights to quantize")
        return model.to(device), torch.float32
    raise ValueError(f"Unsupported quantization_bytes: {quantization_bytes}")


def load_model(config: ModelConfig) -> SegmentationModel:
    """
    Resolve `config.base` to a loaded model:
      - torchvision bases: mobilenetv3, resnet50, resnet101, lraspp
      - "mobilenetv2" or "hf:<repo>": Hugging Face checkpoint
      - anything else: a TorchScript file path
    """
    base = config.base.strip()
    try:
        device = get_device(config.device)
        if base in TORCHVISION_BASES:
            module, kind = load_torchvision_segmenter(base), "torchvision"
            mean, std = IMAGENET_MEAN, IMAGENET_STD
        elif base == "mobilenetv2" or base.startswith("hf:"):
            repo = MOBILENETV2_HF_REPO if base == "mobilenetv2" else base[len("hf:") :]
            module, kind = load_hf_segmenter(repo), "hf"
            mean, std = HF_MEAN, HF_STD
        else:
            module, kind = load_torchscript_segmenter(base), "torchscript"
            mean, std = IMAGENET_MEAN, IMAGENET_STD

        module, dtype = apply_quantization(module, config.quantization_bytes, device)
    except ModelUnavailableError:
        raise
    except Exception as e:  # noqa: BLE001 - surface one error type to callers
        raise ModelUnavailableError(f"Failed to load segmentation model {base!r}: {e}") from e

    logger.info("Loaded %s segmentation model %r on %s (%s)", kind, base, device, dtype)
    return SegmentationModel(module=module, device=device, kind=kind, dtype=dtype, mean=list(mean), std=list(std))


def model_config_from_env() -> ModelConfig:
    return ModelConfig(
        base=get_model_base(),
        quantization_bytes=get_quantization_bytes(),
        device=get_device_name(),
    )


def load_segmenter(config: Optional[ModelConfig] = None) -> Segmenter:
    """
    Load the model once. Any load failure selects the heuristic for the rest
    of the session instead of aborting.
    """
    if config is None:
        config = model_config_from_env()
    if config.base.strip().lower() in HEURISTIC_BASES:
        return Heuristic(reason="heuristic requested")

    try:
        return ModelBacked(load_model(config))
    except ModelUnavailableError as e:
        logger.warning("Segmentation model unavailable, using heuristic fallback: %s", e)
        return Heuristic(reason=str(e))


def forward_model(model: Any, x: torch.Tensor) -> Any:
    """
    Run forward pass (kept separate so inference.py can remain simple).
    """
    with torch.no_grad():
        return model(x)
