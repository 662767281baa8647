# run_camera.py
"""
Live camera view with periodic Normal / NSFW classification.

Usage:
  python run_camera.py --model models/nsfw_classifier.pt --cam 0

Keys: SPACE = start / stop camera, ESC = quit.
"""
import argparse
import asyncio
import logging

import cv2
import numpy as np

from camera import CAM_INDEX, CaptureController
from classify import NSFW_THRESHOLD, PreprocessConfig
from detector import CADENCE_SEC, LiveDetector
from errors import CaptureError
from model import MODEL_PATH
from utils import read_classes, setup_logging

log = logging.getLogger(__name__)

# -------------- CONFIG --------------
WINDOW = "Live Stream + Custom Detection"
PANEL_SIZE = (480, 640)   # blank panel (H, W) while the camera is stopped
REFRESH_SEC = 1 / 30
KEY_ESC = 27
KEY_TOGGLE = ord(" ")
# ------------------------------------


def render(frame, detector: LiveDetector):
    """Draw status, control hint and the latest result onto the frame."""
    if frame is None:
        frame = np.zeros((*PANEL_SIZE, 3), dtype=np.uint8)
    else:
        frame = frame.copy()

    status = "Streaming" if detector.streaming else "Stop"
    control = "SPACE: Stop Camera" if detector.streaming else "SPACE: Start Camera"
    cv2.putText(frame, f"Camera Status: {status}", (10, 30),
                cv2.FONT_HERSHEY_SIMPLEX, 0.7, (255, 255, 0), 2)
    cv2.putText(frame, detector.display_text, (10, 60),
                cv2.FONT_HERSHEY_SIMPLEX, 0.7, (0, 255, 0), 2)
    cv2.putText(frame, control, (10, frame.shape[0] - 15),
                cv2.FONT_HERSHEY_SIMPLEX, 0.5, (200, 200, 200), 1)
    if detector.model is None:
        note = "Loading model..." if detector.model_loading else "Model not loaded"
        cv2.putText(frame, note, (10, 90),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.6, (0, 0, 255), 2)
    return frame


async def run(args):
    config = PreprocessConfig(size=args.img_size)
    classes = read_classes(args.classes) if args.classes else None
    camera = CaptureController(args.cam)
    detector = LiveDetector(camera, args.model, interval=args.interval, config=config,
                            threshold=args.threshold, classes=classes)

    # the window is usable while the model loads in the background
    detector.load_model_soon()
    try:
        if args.autostart:
            await detector.start_camera()

        log.info("Press SPACE to start/stop the camera, ESC to quit.")
        while True:
            frame = None
            if detector.streaming:
                try:
                    frame = camera.read_frame()
                except CaptureError as e:
                    log.warning("%s", e)

            cv2.imshow(WINDOW, render(frame, detector))
            key = cv2.waitKey(1) & 0xFF
            if key == KEY_ESC:
                break
            if key == KEY_TOGGLE:
                detector.toggle_camera()

            await asyncio.sleep(REFRESH_SEC)
    finally:
        await detector.close()

    cv2.destroyAllWindows()
    log.info("Live view closed.")


def main(argv=None):
    ap = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    ap.add_argument("--model", default=MODEL_PATH, help="TorchScript graph (.pt) or MobileNetV2 weights (.pth)")
    ap.add_argument("--cam", type=int, default=CAM_INDEX, help="camera index")
    ap.add_argument("--interval", type=float, default=CADENCE_SEC, help="seconds between classifications")
    ap.add_argument("--threshold", type=float, default=NSFW_THRESHOLD, help="NSFW probability needed to flag a frame")
    ap.add_argument("--classes", help="optional classes.txt (Normal first, NSFW second)")
    ap.add_argument("--img_size", type=int, default=224)
    ap.add_argument("--autostart", action="store_true", help="start the camera immediately")
    ap.add_argument("--log-level", default="INFO")
    args = ap.parse_args(argv)

    setup_logging(args.log_level)
    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        cv2.destroyAllWindows()


if __name__ == "__main__":
    main()
