"""Camera session lifecycle: open, sample, capture, close.

All commands run on one asyncio event loop. Blocking work (opening the camera,
loading the model, inference, JPEG encoding) goes through ``asyncio.to_thread``
so the loop, and with it the hosting UI, stays responsive.

Every open, retry, close and file selection bumps a generation counter. Work
that started under an older generation (an acquire or an inference that
finishes after close) is dropped instead of applied. Switching live detection
off cancels the sampling tick, which abandons any inference still in flight.

Each command re-enters the session's correlation ID, so log lines stay tagged
whichever task the hosting UI runs the command in.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Union

from ..config.settings import Config
from ..core.entities import CaptureArtifact, Detection, DetectorInstance
from ..core.exceptions import CaptureError, DeviceUnavailable, ModelLoadError, WebcamError
from ..core.logging_config import logging_manager
from ..core.scheduling import ScheduledTick
from . import detector as detector_module
from .capture_pipeline import CapturePipeline, artifact_from_file
from .detector import DetectorProvider
from .frame_source import FrameSource, FrameSourceHandle
from .overlay_renderer import OverlaySurface, render
from .stabilizer import DetectionStabilizer, LabelTranslator, Snapshot, monotonic_ms

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    CLOSED = "closed"
    OPENING = "opening"
    READY = "ready"
    SAMPLING = "sampling"
    PERMISSION_ERROR = "permission_error"
    FILE_FALLBACK = "file_fallback"


class DetectorStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class SessionEvent:
    """State snapshot sent to the hosting UI after every transition."""
    state: SessionState
    detector_status: DetectorStatus
    error: Optional[Exception] = None
    message: str = ""


SessionListener = Callable[[SessionEvent], None]
CaptureListener = Callable[[CaptureArtifact], None]

CAMERA_STATES = (SessionState.OPENING, SessionState.READY, SessionState.SAMPLING)


class SessionController:
    """Coordinates frame source, detector, stabilizer, overlay and capture."""

    def __init__(self,
                 config: Config,
                 frame_source: Optional[FrameSource] = None,
                 detector_provider: Optional[DetectorProvider] = None,
                 capture_pipeline: Optional[CapturePipeline] = None,
                 detect: Callable[..., List[Detection]] = detector_module.detect,
                 clock: Callable[[], float] = monotonic_ms):
        self.config = config
        self.frame_source = frame_source or FrameSource(config)
        self.detector_provider = detector_provider or DetectorProvider.get_instance()
        self.capture_pipeline = capture_pipeline or CapturePipeline(config)
        self._detect = detect
        self._clock = clock

        self.stabilizer = DetectionStabilizer(
            allowlist=config.detection_allowlist,
            sample_interval_ms=config.detection_sample_interval_ms,
            grace_window_ms=config.detection_grace_window_ms,
            clock=clock
        )
        self.translate = LabelTranslator(config.detection_label_map, config.detection_generic_label)
        self.overlay = OverlaySurface()
        self._tick = ScheduledTick(self._on_tick, config.detection_tick_interval_ms / 1000.0, name="detection-tick")

        self._state = SessionState.CLOSED
        self._generation = 0
        self._facing = "environment"
        self._live_detection = False
        self._handle: Optional[FrameSourceHandle] = None
        self._detector: Optional[DetectorInstance] = None
        self._detector_status = DetectorStatus.IDLE
        self._detector_error: Optional[Exception] = None
        self._detector_task: Optional[asyncio.Task] = None
        self._capture_in_flight = False
        self._session_id: Optional[str] = None

        self._listeners: List[SessionListener] = []
        self._capture_listeners: List[CaptureListener] = []

    # ------------------------------------------------------------------ state

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def detector_status(self) -> DetectorStatus:
        return self._detector_status

    @property
    def detector_error(self) -> Optional[Exception]:
        return self._detector_error

    @property
    def live_detection(self) -> bool:
        return self._live_detection

    @property
    def handle(self) -> Optional[FrameSourceHandle]:
        return self._handle

    @property
    def held_detections(self) -> Snapshot:
        return self.stabilizer.held

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    @property
    def capture_in_flight(self) -> bool:
        return self._capture_in_flight

    @property
    def capture_enabled(self) -> bool:
        """True when a capture trigger would have a live frame to work with."""
        return (
            self._state in CAMERA_STATES
            and not self._capture_in_flight
            and self._handle is not None
            and not self._handle.released
            and self._handle.dimensions() is not None
        )

    def add_listener(self, callback: SessionListener) -> None:
        self._listeners.append(callback)

    def remove_listener(self, callback: SessionListener) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def add_capture_listener(self, callback: CaptureListener) -> None:
        self._capture_listeners.append(callback)

    def _enter_session(self) -> None:
        if self._session_id is not None:
            logging_manager.set_correlation_id(self._session_id)

    def _emit(self, error: Optional[Exception] = None, message: str = "") -> None:
        event = SessionEvent(self._state, self._detector_status, error, message)
        for callback in list(self._listeners):
            try:
                callback(event)
            except Exception:
                logger.exception("Error in session listener")

    def _set_state(self, state: SessionState, error: Optional[Exception] = None, message: str = "") -> None:
        if state is not self._state:
            logger.info(f"Session {self._state.value} -> {state.value}")
        self._state = state
        self._emit(error, message)

    # --------------------------------------------------------------- commands

    async def open(self, live_detection: bool = False, facing: str = "environment") -> None:
        """Open the camera and, in live-detection mode, the detector.

        Also leaves the file fallback, so the user can go back to the camera
        after picking a file.
        """
        if self._state not in (SessionState.CLOSED, SessionState.FILE_FALLBACK):
            logger.warning(f"Open ignored in state {self._state.value}")
            return

        self._session_id = logging_manager.set_correlation_id()
        self.stabilizer.sample_count = 0
        self._facing = facing
        self._live_detection = live_detection
        self._generation += 1
        await self._start_opening(self._generation)

    async def retry(self) -> None:
        """User-initiated camera retry after a permission or device error."""
        self._enter_session()
        if self._state is not SessionState.PERMISSION_ERROR:
            logger.warning(f"Retry ignored in state {self._state.value}")
            return
        self._generation += 1
        await self._start_opening(self._generation)

    async def close(self) -> None:
        """Stop sampling and release the camera; the detector stays cached."""
        if self._state is SessionState.CLOSED and self._handle is None:
            return
        self._enter_session()

        self._generation += 1
        self._tick.cancel()
        self.stabilizer.reset()
        self.overlay.clear()

        handle, self._handle = self._handle, None
        if handle is not None:
            self.frame_source.release(handle)

        logger.info(f"Session closed after {self.stabilizer.sample_count} detector samples")
        self._set_state(SessionState.CLOSED)
        logging_manager.clear_correlation_id()
        self._session_id = None

    async def set_live_detection(self, enabled: bool) -> None:
        """Toggle live detection without closing the viewfinder."""
        if enabled == self._live_detection:
            return
        self._enter_session()
        self._live_detection = enabled

        if not enabled:
            self._stop_sampling()
            self._emit(message="Live detection off")
            return

        if self._state not in CAMERA_STATES:
            return
        if self._detector is None:
            if self._detector_status is not DetectorStatus.LOADING:
                self._begin_detector_load(self._generation)
        else:
            self._maybe_start_sampling()

    async def retry_detector(self) -> None:
        """Retry a failed model load while staying in the session."""
        if self._detector_status is not DetectorStatus.FAILED or not self._live_detection:
            return
        self._enter_session()
        if self._state in CAMERA_STATES:
            self._begin_detector_load(self._generation)

    async def capture(self, burn_overlay: Optional[bool] = None) -> Optional[CaptureArtifact]:
        """Capture one still; overlapping triggers are ignored.

        Returns the artifact, or None when the trigger was ignored or failed.
        Failures are reported to listeners and leave the trigger usable.
        """
        self._enter_session()
        if self._capture_in_flight:
            logger.info("Capture already in progress; trigger ignored")
            return None
        if not self.capture_enabled:
            error = CaptureError("Camera is not ready for capture")
            self._emit(error=error, message=str(error))
            return None

        if burn_overlay is None:
            burn_overlay = self.config.capture_burn_overlay
        burn = burn_overlay and self._live_detection
        overlay = self.overlay.snapshot() if burn else None

        self._capture_in_flight = True
        try:
            artifact = await asyncio.to_thread(self.capture_pipeline.capture, self._handle, overlay, burn)
        except CaptureError as e:
            logger.warning(f"Capture failed: {e}")
            self._emit(error=e, message=str(e))
            return None
        finally:
            self._capture_in_flight = False

        self._deliver(artifact)
        return artifact

    async def select_file(self, path: Union[str, Path]) -> Optional[CaptureArtifact]:
        """Manual file fallback: hand over a picked image instead of a capture."""
        self._enter_session()
        try:
            artifact = await asyncio.to_thread(artifact_from_file, path)
        except CaptureError as e:
            logger.warning(f"File selection rejected: {e}")
            self._emit(error=e, message=str(e))
            return None

        self._generation += 1
        self._stop_sampling()
        handle, self._handle = self._handle, None
        if handle is not None:
            self.frame_source.release(handle)

        self._set_state(SessionState.FILE_FALLBACK, message=artifact.filename)
        self._deliver(artifact)
        return artifact

    # -------------------------------------------------------------- internals

    async def _start_opening(self, generation: int) -> None:
        self._set_state(SessionState.OPENING)
        if self._live_detection and self._detector is None and self._detector_status is not DetectorStatus.LOADING:
            self._begin_detector_load(generation)

        try:
            handle = await asyncio.to_thread(self.frame_source.acquire, self._facing)
        except WebcamError as e:
            if generation == self._generation:
                logger.warning(f"Camera unavailable: {e}")
                self._set_state(SessionState.PERMISSION_ERROR, error=e, message=str(e))
            return
        except Exception as e:
            if generation == self._generation:
                logger.exception("Unexpected error opening camera")
                error = DeviceUnavailable(f"Camera could not be opened: {e}")
                self._set_state(SessionState.PERMISSION_ERROR, error=error, message=str(error))
            return

        if generation != self._generation:
            # Closed while the camera was opening
            self.frame_source.release(handle)
            return

        try:
            handle.start_playback()
        except WebcamError as e:
            self.frame_source.release(handle)
            self._set_state(SessionState.PERMISSION_ERROR, error=e, message=str(e))
            return

        self._handle = handle
        self._emit(message="Camera ready")

        if self._detector_task is not None and not self._detector_task.done():
            await asyncio.wait({self._detector_task})

        if generation != self._generation or self._state is not SessionState.OPENING:
            return
        self._set_state(SessionState.READY)
        self._maybe_start_sampling()

    def _begin_detector_load(self, generation: int) -> None:
        self._detector_status = DetectorStatus.LOADING
        self._detector_error = None
        self._emit(message="Loading detector")
        self._detector_task = asyncio.get_running_loop().create_task(
            self._load_detector(generation), name="session-detector-load"
        )

    async def _load_detector(self, generation: int) -> None:
        try:
            detector = await self.detector_provider.get(
                self.config.detector_preferred_backend,
                self.config.detector_fallback_backend,
                self.config.detector_model
            )
        except ModelLoadError as e:
            self._detector_status = DetectorStatus.FAILED
            self._detector_error = e
            self._emit(error=e, message="Live detection unavailable")
            return

        self._detector = detector
        self._detector_status = DetectorStatus.READY
        self._emit(message=f"Detector ready on {detector.device}")
        if generation == self._generation and self._state is SessionState.READY:
            self._maybe_start_sampling()

    def _maybe_start_sampling(self) -> None:
        if not (self._live_detection and self._detector is not None and self._handle is not None):
            return
        if self._state is not SessionState.READY:
            return
        self.stabilizer.reset()
        self._tick.start()
        self._set_state(SessionState.SAMPLING)

    def _stop_sampling(self) -> None:
        self._tick.cancel()
        self.stabilizer.reset()
        self.overlay.clear()
        if self._state is SessionState.SAMPLING:
            self._set_state(SessionState.READY)

    async def _on_tick(self) -> None:
        generation = self._generation
        handle, detector = self._handle, self._detector
        if handle is None or detector is None:
            return
        dimensions = handle.dimensions()
        if dimensions is None:
            # No decoded frame yet
            return

        async def sample() -> List[Detection]:
            frame = handle.current_frame()
            return await asyncio.to_thread(
                self._detect, detector, frame,
                self.config.detection_max_results,
                self.config.detection_score_threshold
            )

        held = await self.stabilizer.tick(sample)
        if generation != self._generation or self._state is not SessionState.SAMPLING:
            self.stabilizer.reset()
            return
        render(self.overlay, held, dimensions, self.translate, self.config.overlay_placeholder_text)

    def _deliver(self, artifact: CaptureArtifact) -> None:
        for callback in list(self._capture_listeners):
            try:
                callback(artifact)
            except Exception:
                logger.exception("Error in capture listener")
