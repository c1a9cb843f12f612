from __future__ import annotations

from typing import Dict, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from .config import (
    DEFAULT_MODEL_BASE,
    DEFAULT_QUANTIZATION_BYTES,
    OBJECT_COUNT_RANGE,
    OBJECT_SIZE_RANGE,
    TURNS_RANGE,
)


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


class SpiralParameters(BaseModel):
    """User-facing spiral controls. Out-of-range values are clamped, not rejected."""

    turns: float = TURNS_RANGE[2]
    object_size: float = OBJECT_SIZE_RANGE[2]
    object_count: int = OBJECT_COUNT_RANGE[2]

    @field_validator("turns")
    @classmethod
    def _clamp_turns(cls, v: float) -> float:
        return _clamp(float(v), TURNS_RANGE[0], TURNS_RANGE[1])

    @field_validator("object_size")
    @classmethod
    def _clamp_size(cls, v: float) -> float:
        return _clamp(float(v), OBJECT_SIZE_RANGE[0], OBJECT_SIZE_RANGE[1])

    @field_validator("object_count")
    @classmethod
    def _clamp_count(cls, v: int) -> int:
        return int(_clamp(int(v), OBJECT_COUNT_RANGE[0], OBJECT_COUNT_RANGE[1]))


class ModelConfig(BaseModel):
    base: str = DEFAULT_MODEL_BASE
    quantization_bytes: Literal[1, 2, 4] = DEFAULT_QUANTIZATION_BYTES
    device: str = ""


class ProcessOutcome(BaseModel):
    status: Literal["ready", "rejected", "failed", "superseded"]
    method: Optional[Literal["model", "heuristic"]] = None
    message: str = ""
    width: int = 0
    height: int = 0
    timings: Dict[str, float] = Field(default_factory=dict)
