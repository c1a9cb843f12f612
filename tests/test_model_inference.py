from __future__ import annotations

import numpy as np
import pytest
import torch

from spiral_cutout import model as model_mod
from spiral_cutout.contracts import ModelConfig
from spiral_cutout.errors import ModelUnavailableError
from spiral_cutout.inference import logits_to_labels, segment
from spiral_cutout.model import Heuristic, ModelBacked, SegmentationModel, apply_quantization, load_segmenter


class _DictOutputModel(torch.nn.Module):
    """Mimics torchvision segmentation models: {"out": (1, C, h, w)} at half resolution."""

    def forward(self, x):
        n, _, h, w = x.shape
        logits = torch.zeros(n, 3, h // 2, w // 2)
        logits[:, 2] = 5.0
        return {"out": logits, "aux": torch.zeros(n, 3, h // 2, w // 2)}


class _TupleOutputModel(torch.nn.Module):
    def forward(self, x):
        n, _, h, w = x.shape
        return (torch.zeros(n, 1, h, w) - 3.0, torch.zeros(n, 1, h, w) + 3.0)


def _model(module) -> SegmentationModel:
    return SegmentationModel(module=module, device=torch.device("cpu"), kind="torchvision")


def test_segment_upsamples_and_argmaxes_dict_output():
    rgb = np.zeros((10, 14, 3), dtype=np.uint8)
    labels = segment(_model(_DictOutputModel()), rgb)
    assert labels.shape == (10, 14)
    assert (labels == 2).all()


def test_segment_single_channel_output_is_foreground_logit():
    rgb = np.zeros((6, 6, 3), dtype=np.uint8)
    labels = segment(_model(_TupleOutputModel()), rgb)
    assert labels.shape == (6, 6)
    assert (labels == 1).all()


def test_logits_to_labels_rejects_nans():
    y = torch.full((1, 2, 4, 4), float("nan"))
    with pytest.raises(RuntimeError):
        logits_to_labels(y, 4, 4)


def test_logits_to_labels_picks_per_pixel_class():
    y = torch.zeros(1, 3, 2, 2)
    y[0, 1, 0, 0] = 1.0
    y[0, 2, 1, 1] = 1.0
    labels = logits_to_labels(y, 2, 2)
    np.testing.assert_array_equal(labels, [[1, 0], [0, 2]])


def test_load_segmenter_heuristic_requested():
    segmenter = load_segmenter(ModelConfig(base="heuristic"))
    assert isinstance(segmenter, Heuristic)


def test_load_segmenter_falls_back_when_model_file_missing(tmp_path):
    segmenter = load_segmenter(ModelConfig(base=str(tmp_path / "missing.torchscript"), device="cpu"))
    assert isinstance(segmenter, Heuristic)
    assert "missing.torchscript" in segmenter.reason


def test_load_model_wraps_loader_errors(monkeypatch):
    def _boom(_base):
        raise OSError("no network")

    monkeypatch.setattr(model_mod, "load_torchvision_segmenter", _boom)
    with pytest.raises(ModelUnavailableError):
        model_mod.load_model(ModelConfig(base="mobilenetv3", device="cpu"))


def test_load_segmenter_model_backed(monkeypatch):
    monkeypatch.setattr(model_mod, "load_torchvision_segmenter", lambda _base: _DictOutputModel())
    segmenter = load_segmenter(ModelConfig(base="resnet50", device="cpu"))
    assert isinstance(segmenter, ModelBacked)
    assert segmenter.handle.kind == "torchvision"
    assert segmenter.handle.dtype == torch.float32


def test_load_segmenter_hf_alias(monkeypatch):
    seen = {}

    def _fake_hf(repo):
        seen["repo"] = repo
        return _DictOutputModel()

    monkeypatch.setattr(model_mod, "load_hf_segmenter", _fake_hf)
    segmenter = load_segmenter(ModelConfig(base="mobilenetv2", device="cpu"))
    assert isinstance(segmenter, ModelBacked)
    assert seen["repo"] == model_mod.MOBILENETV2_HF_REPO
    assert segmenter.handle.mean == [0.5, 0.5, 0.5]


def test_apply_quantization_precisions():
    cpu = torch.device("cpu")
    m, dtype = apply_quantization(torch.nn.Linear(2, 2), 4, cpu)
    assert dtype == torch.float32 and m.weight.dtype == torch.float32

    m, dtype = apply_quantization(torch.nn.Linear(2, 2), 2, cpu)
    assert dtype == torch.float16 and m.weight.dtype == torch.float16

    with pytest.raises(ValueError):
        apply_quantization(torch.nn.Linear(2, 2), 3, cpu)


def test_one_byte_quantization_snaps_conv_weights_to_256_levels():
    from torchvision.models.segmentation import deeplabv3_mobilenet_v3_large

    net = deeplabv3_mobilenet_v3_large(weights=None, weights_backbone=None).eval()
    convs = [m for m in net.modules() if isinstance(m, torch.nn.Conv2d)]
    assert any(torch.unique(c.weight).numel() > 256 for c in convs)

    _, dtype = apply_quantization(net, 1, torch.device("cpu"))

    assert dtype == torch.float32
    for conv in convs:
        assert conv.weight.dtype == torch.float32
        assert torch.unique(conv.weight).numel() <= 256


def test_quantize_weights_uint8_keeps_range_and_skips_biases():
    layer = torch.nn.Linear(4, 3)
    with torch.no_grad():
        layer.weight.copy_(torch.linspace(-1.0, 2.0, 12).reshape(3, 4) + 0.001)
    bias_before = layer.bias.detach().clone()
    lo, hi = float(layer.weight.min()), float(layer.weight.max())

    assert model_mod.quantize_weights_uint8(layer) == 1
    assert float(layer.weight.min()) == pytest.approx(lo)
    assert float(layer.weight.max()) == pytest.approx(hi)
    assert torch.equal(layer.bias, bias_before)


def test_one_byte_quantization_rejects_model_without_weights():
    with pytest.raises(ValueError):
        apply_quantization(torch.nn.ReLU(), 1, torch.device("cpu"))


def test_load_segmenter_falls_back_on_one_byte_without_weights(monkeypatch):
    monkeypatch.setattr(model_mod, "load_torchvision_segmenter", lambda _base: _DictOutputModel())
    segmenter = load_segmenter(ModelConfig(base="mobilenetv3", quantization_bytes=1, device="cpu"))
    assert isinstance(segmenter, Heuristic)


def test_load_segmenter_falls_back_on_unknown_device(monkeypatch):
    monkeypatch.setattr(model_mod, "load_torchvision_segmenter", lambda _base: _DictOutputModel())
    segmenter = load_segmenter(ModelConfig(base="resnet50", device="nosuchdevice"))
    assert isinstance(segmenter, Heuristic)
    assert "nosuchdevice" in segmenter.reason


def test_config_rejects_unknown_quantization():
    with pytest.raises(ValueError):
        ModelConfig(quantization_bytes=3)


def test_model_config_defaults_and_env_override(monkeypatch):
    monkeypatch.delenv("SPIRAL_MODEL_BASE", raising=False)
    monkeypatch.delenv("SPIRAL_QUANTIZATION_BYTES", raising=False)
    config = model_mod.model_config_from_env()
    assert (config.base, config.quantization_bytes) == ("mobilenetv3", 4)

    monkeypatch.setenv("SPIRAL_MODEL_BASE", "mobilenetv2")
    monkeypatch.setenv("SPIRAL_QUANTIZATION_BYTES", "2")
    config = model_mod.model_config_from_env()
    assert (config.base, config.quantization_bytes) == ("mobilenetv2", 2)
