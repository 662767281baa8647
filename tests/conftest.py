"""Shared pytest fixtures: fake capture devices and tiny stub models."""

import math
import sys
import threading
import time
from pathlib import Path

import numpy as np
import pytest
import torch
import torch.nn as nn

# Ensure the project root is in the path for imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


# =============================================================================
# Camera fakes
# =============================================================================

class FakeCapture:
    """Stands in for cv2.VideoCapture."""

    def __init__(self, frame=None):
        self.frame = frame if frame is not None else np.full((480, 640, 3), 127, dtype=np.uint8)
        self.opened = True
        self.fail_reads = False
        self.reads = 0
        self.releases = 0

    def isOpened(self):
        return self.opened

    def read(self):
        self.reads += 1
        if self.fail_reads or not self.opened:
            return False, None
        return True, self.frame.copy()

    def release(self):
        self.releases += 1
        self.opened = False


class FakeOpener:
    """opener(index) for CaptureController; remembers every device it hands out."""

    def __init__(self, error=None):
        self.error = error
        self.captures = []

    def __call__(self, index):
        if self.error is not None:
            raise self.error
        cap = FakeCapture()
        self.captures.append(cap)
        return cap

    @property
    def last(self):
        return self.captures[-1]


@pytest.fixture
def opener():
    return FakeOpener()


# =============================================================================
# Stub models
# =============================================================================

class FixedScores(nn.Module):
    """Returns log(probs) as logits, so softmax gives `probs` back."""

    def __init__(self, probs):
        super().__init__()
        self.register_buffer("logits", torch.tensor([[math.log(p) for p in probs]], dtype=torch.float32))
        self.calls = 0
        self.shapes = []

    def forward(self, x):
        self.calls += 1
        self.shapes.append(tuple(x.shape))
        return self.logits.expand(x.shape[0], -1)


class SlowScores(FixedScores):
    """FixedScores that takes `delay` seconds and tracks overlapping calls."""

    def __init__(self, probs, delay):
        super().__init__(probs)
        self.delay = delay
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def forward(self, x):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            time.sleep(self.delay)
            return super().forward(x)
        finally:
            with self._lock:
                self.active -= 1


class GatedScores(FixedScores):
    """FixedScores that blocks until `gate` is set."""

    def __init__(self, probs):
        super().__init__(probs)
        self.entered = threading.Event()
        self.gate = threading.Event()

    def forward(self, x):
        self.entered.set()
        self.gate.wait(5)
        return super().forward(x)


class FlakyScores(FixedScores):
    """Raises on the first `failures` calls, then behaves."""

    def __init__(self, probs, failures=1):
        super().__init__(probs)
        self.failures = failures

    def forward(self, x):
        if self.failures > 0:
            self.failures -= 1
            raise ValueError("boom")
        return super().forward(x)


def loader_for(module, **handle_kwargs):
    """A load_model replacement that wraps `module` and counts calls."""
    from model import ModelHandle

    def loader(path, device="cpu", classes=None):
        loader.calls += 1
        return ModelHandle(module=module, **handle_kwargs)

    loader.calls = 0
    return loader
