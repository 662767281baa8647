# detector.py
"""
Live classification loop.

LiveDetector is the single state holder for one camera view: the camera
(Stopped / Streaming), the model handle (None until loaded), and the result
string on display. A cadence task runs only while the readiness gate holds
(camera streaming AND model loaded); each tick starts at most one classify
cycle and ticks that land while a cycle is still running are skipped.

Usage:
    async with LiveDetector(CaptureController(0), "models/nsfw_classifier.pt") as det:
        await det.start_camera()
        ...
        print(det.display_text)
"""
import asyncio
import logging

from classify import NSFW_THRESHOLD, PreprocessConfig, decide, frame_to_tensor, to_probabilities
from errors import ModelLoadError
from model import MODEL_PATH, load_model

log = logging.getLogger(__name__)

CADENCE_SEC = 3.0
WAITING_TEXT = "Waiting..."


class LiveDetector:
    def __init__(self, camera, model_path=MODEL_PATH, *, interval: float = CADENCE_SEC,
                 config: PreprocessConfig = PreprocessConfig(), threshold: float = NSFW_THRESHOLD,
                 loader=load_model, device: str = "cpu", classes=None):
        self.camera = camera
        self.model_path = model_path
        self.interval = interval
        self.config = config
        self.threshold = threshold
        self.device = device
        self.classes = classes
        self._loader = loader

        self.model = None
        self.result = ""
        self.last_result = None
        self.busy = False

        self.ticks = 0
        self.skipped_ticks = 0
        self.cycles = 0

        self._load_attempted = False
        self._closed = False
        self._generation = 0
        self._timer = None
        self._cycle = None
        self._starting = None
        self._loading = None

    # ---------- state ----------

    @property
    def streaming(self) -> bool:
        return self.camera.streaming

    @property
    def ready(self) -> bool:
        return not self._closed and self.streaming and self.model is not None

    @property
    def model_loading(self) -> bool:
        return self._loading is not None and not self._loading.done()

    @property
    def cadence_running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def display_text(self) -> str:
        return self.result if self.streaming else WAITING_TEXT

    # ---------- lifecycle ----------

    async def __aenter__(self):
        await self.load_model()
        return self

    async def __aexit__(self, *exc):
        await self.close()

    async def load_model(self):
        """Load the model once. On failure the handle stays unset."""
        if self._load_attempted:
            return self.model
        self._load_attempted = True

        try:
            handle = await asyncio.to_thread(self._loader, self.model_path, self.device, self.classes)
        except ModelLoadError as e:
            log.error("Failed to load model: %s", e)
            return None

        if self._closed:
            return None
        self.model = handle
        log.info("Model loaded successfully")
        self._sync_timer()
        return handle

    def load_model_soon(self):
        """Schedule `load_model` so the caller can keep drawing while it runs."""
        if self._loading is None:
            self._loading = asyncio.ensure_future(self.load_model())
        return self._loading

    async def start_camera(self) -> bool:
        ok = await self.camera.start()
        self._sync_timer()
        return ok

    def stop_camera(self):
        self.camera.stop()
        self._sync_timer()

    def toggle_camera(self):
        """Start when stopped, stop when streaming. Returns the start task, if any."""
        if self.streaming:
            self.stop_camera()
            return None
        if self._starting is None or self._starting.done():
            self._starting = asyncio.ensure_future(self.start_camera())
        return self._starting

    async def close(self):
        """Tear down: stop the camera, cancel the timer and any running cycle."""
        self._closed = True
        self.camera.stop()
        self._sync_timer()

        # a late model is dropped by load_model itself once closed
        loading, self._loading = self._loading, None
        if loading is not None and not loading.done():
            loading.cancel()
            try:
                await loading
            except asyncio.CancelledError:
                pass

        # a pending start sees the stop and releases its device itself
        starting, self._starting = self._starting, None
        if starting is not None and not starting.done():
            await starting

        cycle, self._cycle = self._cycle, None
        if cycle is not None and not cycle.done():
            cycle.cancel()
            try:
                await cycle
            except asyncio.CancelledError:
                pass

    # ---------- cadence ----------

    def _sync_timer(self):
        """Arm or tear down the cadence task to match the readiness gate."""
        if self.ready:
            if self._timer is None:
                self._timer = asyncio.get_running_loop().create_task(self._cadence(self._generation))
                log.debug("Cadence started (every %.2fs)", self.interval)
            return

        # results of cycles already running are void from here on
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            log.debug("Cadence stopped")

    async def _cadence(self, generation):
        while True:
            await asyncio.sleep(self.interval)
            self._tick(generation)

    def _tick(self, generation):
        self.ticks += 1
        if self.busy:
            self.skipped_ticks += 1
            log.debug("Previous classification still running; tick skipped")
            return
        self.busy = True
        self._cycle = asyncio.get_running_loop().create_task(self._run_cycle(generation))

    async def _run_cycle(self, generation):
        try:
            await self._classify(generation)
        finally:
            self.busy = False
            # stream lost mid-cycle
            if self._timer is not None and not self.ready:
                self._sync_timer()

    # ---------- one classify cycle ----------

    async def classify_once(self):
        """Run one cycle now, unless one is already in flight.

        Returns the ClassificationResult, or None when skipped, failed, or
        invalidated by a stop / close while the model was running.
        """
        if self.busy:
            return None
        self.busy = True
        try:
            return await self._classify(self._generation)
        finally:
            self.busy = False

    async def _classify(self, generation):
        """Capture, preprocess, run, interpret and publish one result."""
        model = self.model
        if model is None or not self.streaming:
            return None

        frame = inputs = outputs = None
        try:
            frame = self.camera.read_frame()
            size = model.spatial_size(self.config.channels_first)
            inputs = frame_to_tensor(frame, self.config, size)
            outputs = await model.execute_async({model.input_name: inputs})
            probs = to_probabilities(outputs, self.config.apply_softmax)
            result = decide(probs, self.threshold, model.classes)
        except Exception:
            log.exception("Prediction failed")
            return None
        finally:
            del frame, inputs, outputs
            self.cycles += 1

        if generation != self._generation or self._closed:
            log.debug("Discarding result of a cancelled cycle: %s", result.text)
            return None

        self.last_result = result
        self.result = result.text
        log.info(result.text)
        return result
