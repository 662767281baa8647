# model.py
"""
Model loading for the live content classifier.

- get_mobilenet_v2(num_classes): untrained MobileNetV2 with the classifier
head replaced for the requested number of classes.
- load_model(path, device, classes): loads either a TorchScript graph or a
MobileNetV2 state_dict and wraps it in a ModelHandle that knows its declared
input name and shape.

A `<model>.meta.json` sidecar next to the artifact may declare:
    {"classes": ["Normal", "NSFW"], "img_size": 224,
     "input_name": "input", "input_shape": [1, 3, 224, 224]}
"""
import asyncio
import inspect
import logging
from dataclasses import dataclass
from pathlib import Path

import torch
import torch.nn as nn
from torchvision import models

from errors import InferenceError, ModelLoadError
from utils import load_json

log = logging.getLogger(__name__)

MODEL_PATH = "models/nsfw_classifier.pt"
DEFAULT_CLASSES = ("Normal", "NSFW")
STATE_DICT_SUFFIXES = {".pth"}


@dataclass(frozen=True)
class ModelHandle:
    """A loaded, eval-mode model plus the input contract it declares.

    Read-only after load, so it is shared freely across classify cycles.
    """
    module: nn.Module
    input_name: str = "input"
    input_shape: tuple = (1, 3, None, None)
    classes: tuple = DEFAULT_CLASSES
    device: str = "cpu"

    def spatial_size(self, channels_first: bool = True):
        """(H, W) the model declares, or None when those dims are dynamic."""
        if len(self.input_shape) != 4:
            return None
        h, w = self.input_shape[2:4] if channels_first else self.input_shape[1:3]
        if not isinstance(h, int) or not isinstance(w, int) or h <= 0 or w <= 0:
            return None
        return h, w

    def execute(self, feeds: dict):
        """Run the model on {input_name: tensor} and return the raw scores."""
        if self.input_name not in feeds:
            raise InferenceError(
                f"missing model input '{self.input_name}' (got {sorted(feeds)})")

        x = feeds[self.input_name].to(self.device)
        try:
            with torch.no_grad():
                out = self.module(x)
        except RuntimeError as e:
            raise InferenceError(f"model execution failed: {e}") from e

        # Multi-output graphs: class scores come first
        if isinstance(out, (tuple, list)):
            out = out[0]
        return out

    async def execute_async(self, feeds: dict):
        """`execute` off the event loop."""
        return await asyncio.to_thread(self.execute, feeds)


def get_mobilenet_v2(num_classes: int) -> nn.Module:
    """Create an untrained MobileNetV2 with a `num_classes` classifier head.

    Weights are loaded over it afterwards, so no ImageNet download is needed.
    """
    model = models.mobilenet_v2(weights=None)
    in_feats = model.classifier[-1].in_features
    model.classifier[-1] = nn.Linear(in_feats, num_classes)
    return model


def _declared_input_name(module: nn.Module) -> str:
    # TorchScript methods carry a schema whose first argument is `self`
    schema = getattr(module.forward, "schema", None)
    if schema is not None and len(schema.arguments) > 1:
        return schema.arguments[1].name
    try:
        params = list(inspect.signature(module.forward).parameters)
    except (TypeError, ValueError):
        params = []
    return params[0] if params else "input"


def _read_meta(path: Path) -> dict:
    meta_path = path.with_suffix(".meta.json")
    try:
        meta = load_json(meta_path)
    except (OSError, ValueError) as e:
        raise ModelLoadError(f"unreadable metadata {meta_path}: {e}") from e
    if meta is None:
        return {}
    if not isinstance(meta, dict):
        raise ModelLoadError(f"metadata {meta_path} must be a JSON object")
    return meta


def _input_shape(meta: dict) -> tuple:
    """Declared input shape; H/W stay undeclared (None) unless the metadata sets them."""
    try:
        if meta.get("input_shape"):
            return tuple(None if d is None else int(d) for d in meta["input_shape"])
        if "img_size" in meta:
            img_size = int(meta["img_size"])
            return (1, 3, img_size, img_size)
    except (TypeError, ValueError) as e:
        raise ModelLoadError(f"bad input size in metadata: {e}") from e
    return (1, 3, None, None)


def load_model(path: str = MODEL_PATH, device: str = "cpu", classes=None) -> ModelHandle:
    """Load a model artifact and return an eval-mode ModelHandle on `device`.

    `.pth` files are MobileNetV2 state_dicts; anything else is loaded as a
    TorchScript graph. Raises ModelLoadError on any failure, including a
    malformed `.meta.json` sidecar.
    """
    path = Path(path)
    if not path.is_file():
        raise ModelLoadError(f"model not found: {path}")

    meta = _read_meta(path)
    classes = tuple(classes or meta.get("classes") or DEFAULT_CLASSES)
    if len(classes) != 2:
        raise ModelLoadError(f"expected 2 classes, got {list(classes)}")
    input_shape = _input_shape(meta)

    try:
        if path.suffix in STATE_DICT_SUFFIXES:
            module = get_mobilenet_v2(num_classes=len(classes))
            state = torch.load(path, map_location=device)
            module.load_state_dict(state)
        else:
            module = torch.jit.load(str(path), map_location=device)
    except Exception as e:
        raise ModelLoadError(f"could not load {path}: {e}") from e
    module.to(device).eval()

    input_name = str(meta.get("input_name") or _declared_input_name(module))

    log.info("Model loaded from %s (input %s %s, classes %s)",
             path, input_name, list(input_shape), list(classes))
    return ModelHandle(module=module, input_name=input_name, input_shape=input_shape,
                       classes=classes, device=device)
