"""
Centralized configuration constants for the cutout + spiral pipeline.

Ground rules:
- One current source/cutout pair per session
- Batch size 1, sequential stages
"""

from __future__ import annotations

import os

# Longest side of the image handed to the segmentation model.
WORKING_MAX_SIZE = 512

IMAGENET_MEAN = [0.485, 0.456, 0.406]
IMAGENET_STD = [0.229, 0.224, 0.225]

# Hugging Face DeepLabV3-MobileNetV2 checkpoints are trained on [-1, 1] inputs.
HF_MEAN = [0.5, 0.5, 0.5]
HF_STD = [0.5, 0.5, 0.5]

# Default is torchvision weights at float32 rather than DeepLab MobileNetV2 at 2-byte
# weights ("mobilenetv2" + 2): no Hugging Face download, and float16 convolutions
# are not supported on every CPU build.
DEFAULT_MODEL_BASE = "mobilenetv3"
DEFAULT_QUANTIZATION_BYTES = 4
MOBILENETV2_HF_REPO = "google/deeplabv3_mobilenet_v2_1.0_513"

# Fallback heuristic thresholds.
EDGE_THRESHOLD = 30.0
CENTER_DISTANCE_THRESHOLD = 0.7

# Spiral surface.
CANVAS_WIDTH = 800
CANVAS_HEIGHT = 800
SPIRAL_MARGIN = 50
BACKGROUND_COLOR = (240, 240, 240, 255)  # #f0f0f0

# Input control ranges: (min, max, default).
TURNS_RANGE = (0.5, 10.0, 3.0)
OBJECT_SIZE_RANGE = (1.0, 300.0, 50.0)
OBJECT_COUNT_RANGE = (1, 200, 30)

OUTPUT_FILENAME = "spiral-pattern.png"
CUTOUT_FILENAME = "cutout.png"


def get_model_base() -> str:
    return os.getenv("SPIRAL_MODEL_BASE", DEFAULT_MODEL_BASE).strip() or DEFAULT_MODEL_BASE


def get_quantization_bytes() -> int:
    try:
        return int(os.getenv("SPIRAL_QUANTIZATION_BYTES", str(DEFAULT_QUANTIZATION_BYTES)))
    except ValueError:
        return DEFAULT_QUANTIZATION_BYTES


def get_device_name() -> str:
    """Empty string means auto-select (mps > cuda > cpu)."""
    return os.getenv("SPIRAL_DEVICE", "").strip()
