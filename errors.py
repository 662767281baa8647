# errors.py
"""Exceptions raised by the capture / classify pipeline.

All of them are recovered inside the detector (logged, state kept usable);
none should ever take down the event loop.
"""


class DetectionError(Exception):
    """Base class for every pipeline failure."""


class CameraUnavailableError(DetectionError):
    """Camera access was denied or no device could be opened."""


class CaptureError(DetectionError):
    """A frame could not be grabbed from a bound camera."""


class ModelLoadError(DetectionError):
    """The model artifact could not be found or deserialized."""


class PreprocessError(DetectionError):
    """A frame could not be turned into a model input tensor."""


class InferenceError(DetectionError):
    """The model failed to run, or produced output of the wrong shape."""
