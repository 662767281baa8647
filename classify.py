# classify.py
"""
Frame preprocessing and output interpretation for the Normal / NSFW model.

frame (BGR uint8, any size)
  -> square resize, RGB, scale to [0, 1], optional mean/std
  -> [1, C, H, W] (or [1, H, W, C]) float tensor
model scores -> softmax -> threshold rule -> "Predicted: NSFW (80.00%)"
"""
from dataclasses import dataclass
from enum import Enum

import cv2
import numpy as np
import torch

from errors import InferenceError, PreprocessError

NSFW_THRESHOLD = 0.70


class Label(str, Enum):
    NORMAL = "Normal"
    NSFW = "NSFW"


LABELS = (Label.NORMAL.value, Label.NSFW.value)


@dataclass(frozen=True)
class PreprocessConfig:
    """Input contract of the model.

    size: square side used when the model does not declare H/W itself
    scale: multiplier applied to raw 0..255 pixels
    channels_first: [1, C, H, W] when True, [1, H, W, C] otherwise
    mean / std: optional per-channel normalisation after scaling
    to_rgb: convert OpenCV's BGR frames to RGB
    apply_softmax: model emits logits (True) or probabilities (False)
    """
    size: int = 224
    scale: float = 1.0 / 255.0
    channels_first: bool = True
    mean: tuple = None
    std: tuple = None
    to_rgb: bool = True
    apply_softmax: bool = True


@dataclass(frozen=True)
class ClassificationResult:
    label: str
    confidence: float

    @property
    def text(self) -> str:
        return format_result(self.label, self.confidence)

    def __str__(self):
        return self.text


def format_result(label: str, confidence: float) -> str:
    return f"Predicted: {label} ({confidence * 100:.2f}%)"


def frame_to_tensor(frame, config: PreprocessConfig = PreprocessConfig(), size=None) -> torch.Tensor:
    """Turn one camera frame into a batched model input.

    Args:
        frame: HxWx3 uint8 image as returned by cv2.VideoCapture.read().
        config: tensor layout / normalisation of the target model.
        size: (H, W) override, usually what the model declares.
    """
    if frame is None or getattr(frame, "ndim", 0) != 3 or frame.shape[2] != 3:
        shape = getattr(frame, "shape", None)
        raise PreprocessError(f"expected an HxWx3 frame, got {shape}")

    h, w = size or (config.size, config.size)
    try:
        small = cv2.resize(frame, (w, h))
        if config.to_rgb:
            small = cv2.cvtColor(small, cv2.COLOR_BGR2RGB)
    except cv2.error as e:
        raise PreprocessError(f"could not resize frame: {e}") from e

    img = torch.from_numpy(np.ascontiguousarray(small)).float() * config.scale   # [H, W, C]
    if config.mean is not None and config.std is not None:
        mean = torch.tensor(config.mean, dtype=torch.float32)
        std = torch.tensor(config.std, dtype=torch.float32)
        img = (img - mean) / std

    if config.channels_first:
        img = img.permute(2, 0, 1)   # [C, H, W]
    return img.unsqueeze(0).contiguous()


def to_probabilities(outputs, apply_softmax: bool = True):
    """Two-class probability list [p_normal, p_nsfw] from raw model output."""
    if isinstance(outputs, (tuple, list)) and outputs and torch.is_tensor(outputs[0]):
        outputs = outputs[0]
    scores = torch.as_tensor(outputs, dtype=torch.float32).detach().cpu().reshape(-1)
    if scores.numel() != 2:
        raise InferenceError(f"expected 2 class scores, got {scores.numel()}")
    if apply_softmax:
        scores = torch.softmax(scores, dim=0)
    return scores.tolist()


def decide(probabilities, threshold: float = NSFW_THRESHOLD, labels=LABELS) -> ClassificationResult:
    """Apply the NSFW threshold rule.

    NSFW when p_nsfw >= threshold, Normal otherwise. The confidence is the
    probability of the chosen label, so a 0.65 NSFW score reports
    Normal at 35%. The comparison runs at float32, the precision model
    outputs come in, so a score of exactly 0.70 lands on NSFW.
    """
    p_normal, p_nsfw = (float(p) for p in probabilities)
    if np.float32(p_nsfw) >= np.float32(threshold):
        return ClassificationResult(labels[1], p_nsfw)
    return ClassificationResult(labels[0], p_normal)
