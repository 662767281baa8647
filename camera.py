# camera.py
"""
Camera acquisition for the live detector.

CaptureController owns the one live capture device and moves between two
states, Stopped (initial) and Streaming. Opening the device runs off the
event loop; everything else is called from the loop thread.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

import cv2

from errors import CameraUnavailableError, CaptureError

log = logging.getLogger(__name__)

# -------------- CONFIG --------------
CAM_INDEX = 0            # default webcam
CAM_BACKEND = cv2.CAP_ANY
FRAME_WIDTH = 640
FRAME_HEIGHT = 480
FRAME_FPS = 30
# ------------------------------------


class CameraState(str, Enum):
    STOPPED = "Stopped"
    STREAMING = "Streaming"


@dataclass
class CameraSession:
    """A bound capture device. `release()` stops it; safe to call twice."""
    capture: object
    active: bool = True

    def release(self):
        if self.active:
            self.capture.release()
            self.active = False


def open_camera(index: int = CAM_INDEX, backend: int = CAM_BACKEND):
    """Open a video-only capture device or raise CameraUnavailableError."""
    cap = cv2.VideoCapture(index, backend)
    if not cap.isOpened():
        cap.release()
        raise CameraUnavailableError(f"Could not open camera at index {index}")

    cap.set(cv2.CAP_PROP_FRAME_WIDTH, FRAME_WIDTH)
    cap.set(cv2.CAP_PROP_FRAME_HEIGHT, FRAME_HEIGHT)
    cap.set(cv2.CAP_PROP_FPS, FRAME_FPS)
    # Keep the newest frame only, so a grab reflects the current image
    cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
    return cap


class CaptureController:
    """Start/stop state machine around a single capture device.

    Args:
        index: camera index passed to `opener`.
        opener: callable(index) returning a cv2.VideoCapture-like object
            (``read``, ``isOpened``, ``release``) or raising
            CameraUnavailableError.
    """

    def __init__(self, index: int = CAM_INDEX, opener=open_camera):
        self.index = index
        self._opener = opener
        self.session = None
        self.state = CameraState.STOPPED
        # Bumped on every stop(); a start() that straddles a stop is void.
        self._epoch = 0

    @property
    def streaming(self) -> bool:
        return self.state is CameraState.STREAMING

    async def start(self) -> bool:
        """Acquire the camera. Returns True when streaming afterwards."""
        if self.streaming:
            return True

        epoch = self._epoch
        try:
            cap = await asyncio.to_thread(self._opener, self.index)
        except (CameraUnavailableError, OSError, cv2.error) as e:
            log.error("Error accessing camera: %s", e)
            return False

        if epoch != self._epoch or self.streaming:
            # stop() ran while we were waiting for the device
            cap.release()
            return self.streaming

        self.session = CameraSession(cap)
        self.state = CameraState.STREAMING
        log.info("Camera %s streaming", self.index)
        return True

    def stop(self):
        """Release the device if bound. No-op when already stopped."""
        self._epoch += 1
        if self.session is not None:
            self.session.release()
            self.session = None
            log.info("Camera %s stopped", self.index)
        self.state = CameraState.STOPPED

    def read_frame(self):
        """Grab the current BGR frame from the bound device."""
        if not self.streaming:
            raise CaptureError("camera is not streaming")

        cap = self.session.capture
        ok, frame = cap.read()
        if not ok or frame is None:
            if not cap.isOpened():
                log.error("Camera %s stream lost", self.index)
                self.stop()
            raise CaptureError("Failed to grab frame")
        return frame
