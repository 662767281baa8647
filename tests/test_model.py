"""Unit tests for model loading and the ModelHandle contract."""

import pytest
import torch
import torch.nn as nn

from conftest import FixedScores
from errors import InferenceError, ModelLoadError
from model import ModelHandle, _declared_input_name, get_mobilenet_v2, load_model
from utils import save_json


class Tiny(nn.Module):
    def __init__(self):
        super().__init__()
        self.fc = nn.Linear(3, 2)

    def forward(self, x):
        return self.fc(torch.mean(x, dim=[2, 3]))


class Broken(nn.Module):
    def forward(self, x):
        raise RuntimeError("shape mismatch")


class TestModelHandle:

    @pytest.mark.parametrize("shape, channels_first, expected", [
        ((1, 3, 224, 224), True, (224, 224)),
        ((1, 160, 128, 3), False, (160, 128)),
        ((1, 3, -1, -1), True, None),
        ((1, 3, None, None), True, None),
        ((1, 3), True, None),
    ])
    def test_spatial_size(self, shape, channels_first, expected):
        handle = ModelHandle(module=Tiny(), input_shape=shape)
        assert handle.spatial_size(channels_first) == expected

    def test_execute_named_input(self):
        handle = ModelHandle(module=FixedScores([0.2, 0.8]), input_name="images")
        out = handle.execute({"images": torch.zeros(1, 3, 8, 8)})
        assert out.shape == (1, 2)

    def test_execute_missing_input(self):
        handle = ModelHandle(module=Tiny(), input_name="images")
        with pytest.raises(InferenceError):
            handle.execute({"input": torch.zeros(1, 3, 8, 8)})

    def test_execute_wraps_runtime_errors(self):
        handle = ModelHandle(module=Broken(), input_name="x")
        with pytest.raises(InferenceError):
            handle.execute({"x": torch.zeros(1, 3, 8, 8)})

    def test_execute_unwraps_multi_output(self):
        class TwoHeads(nn.Module):
            def forward(self, x):
                return torch.zeros(1, 2), torch.ones(1, 4)

        handle = ModelHandle(module=TwoHeads(), input_name="x")
        assert handle.execute({"x": torch.zeros(1, 3, 8, 8)}).shape == (1, 2)

    @pytest.mark.asyncio
    async def test_execute_async(self):
        handle = ModelHandle(module=FixedScores([0.5, 0.5]), input_name="x")
        out = await handle.execute_async({"x": torch.zeros(1, 3, 8, 8)})
        assert out.shape == (1, 2)


class TestLoadModel:

    def test_declared_input_name_from_signature(self):
        assert _declared_input_name(Tiny()) == "x"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ModelLoadError):
            load_model(tmp_path / "nope.pt")

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "model.pt"
        path.write_bytes(b"not a model")
        with pytest.raises(ModelLoadError):
            load_model(path)

    def test_torchscript_graph(self, tmp_path):
        path = tmp_path / "model.pt"
        torch.jit.save(torch.jit.script(Tiny()), str(path))

        handle = load_model(path)

        assert handle.classes == ("Normal", "NSFW")
        # no sidecar: H/W are left to the preprocessing config
        assert handle.input_shape == (1, 3, None, None)
        assert handle.spatial_size() is None
        out = handle.execute({handle.input_name: torch.zeros(1, 3, 224, 224)})
        assert out.shape == (1, 2)

    def test_state_dict_with_meta(self, tmp_path):
        path = tmp_path / "mobilenet.pth"
        torch.save(get_mobilenet_v2(num_classes=2).state_dict(), path)
        save_json({"classes": ["Normal", "NSFW"], "img_size": 160}, str(tmp_path / "mobilenet.meta.json"))

        handle = load_model(path)

        assert handle.input_name == "x"
        assert handle.spatial_size() == (160, 160)
        assert not handle.module.training

    def test_meta_overrides_input_contract(self, tmp_path):
        path = tmp_path / "model.pt"
        torch.jit.save(torch.jit.script(Tiny()), str(path))
        save_json({"input_name": "images", "input_shape": [1, 3, 128, 96]}, str(tmp_path / "model.meta.json"))

        handle = load_model(path)

        assert handle.input_name == "images"
        assert handle.spatial_size() == (128, 96)

    def test_rejects_non_binary_classes(self, tmp_path):
        path = tmp_path / "model.pt"
        torch.jit.save(torch.jit.script(Tiny()), str(path))
        with pytest.raises(ModelLoadError):
            load_model(path, classes=["a", "b", "c"])

    @pytest.mark.parametrize("sidecar", [
        "{not json",
        '["Normal", "NSFW"]',
        '{"img_size": "large"}',
        '{"input_shape": [1, 3, "h", "w"]}',
    ])
    def test_bad_sidecar(self, tmp_path, sidecar):
        path = tmp_path / "model.pt"
        torch.jit.save(torch.jit.script(Tiny()), str(path))
        (tmp_path / "model.meta.json").write_text(sidecar, encoding="utf-8")

        with pytest.raises(ModelLoadError):
            load_model(path)

    def test_sidecar_with_dynamic_dims(self, tmp_path):
        path = tmp_path / "model.pt"
        torch.jit.save(torch.jit.script(Tiny()), str(path))
        save_json({"input_shape": [1, 3, None, None]}, str(tmp_path / "model.meta.json"))

        assert load_model(path).spatial_size() is None
