"""Live camera stream ownership: acquire, play, release."""
from __future__ import annotations

import logging
import os
import platform
import threading
import time
from typing import Optional

import cv2
import numpy as np

from ..config.settings import Config
from ..core.entities import FrameDimensions
from ..core.exceptions import DeviceUnavailable, PermissionDenied, WebcamError

logger = logging.getLogger(__name__)

FACINGS = ("environment", "user")


class FrameSourceHandle:
    """Owns one open ``cv2.VideoCapture`` and the thread that reads it."""

    def __init__(self, capture: "cv2.VideoCapture", device_index: int, facing: str, fps: int = 30):
        self.device_index = device_index
        self.facing = facing
        self._capture = capture
        self._frame_delay = 1.0 / max(1, fps)

        self._frame_lock = threading.Lock()
        self._current_frame: Optional[np.ndarray] = None
        self._stop_event = threading.Event()
        self._reader: Optional[threading.Thread] = None
        self._released = False
        self._release_lock = threading.Lock()

    @property
    def released(self) -> bool:
        return self._released

    @property
    def is_playing(self) -> bool:
        return self._reader is not None and self._reader.is_alive()

    def start_playback(self) -> None:
        """Start pulling frames; opening the device alone does not do this."""
        if self._released:
            raise WebcamError("Cannot start playback on a released camera handle")
        if self.is_playing:
            return
        self._stop_event.clear()
        self._reader = threading.Thread(
            target=self._read_loop,
            name=f"camera-reader-{self.device_index}",
            daemon=True
        )
        self._reader.start()
        logger.info(f"Playback started on camera {self.device_index} ({self.facing})")

    def _read_loop(self) -> None:
        while not self._stop_event.is_set():
            loop_start = time.monotonic()
            try:
                ok, frame = self._capture.read()
            except cv2.error as e:
                logger.error(f"Error reading camera frame: {e}")
                ok, frame = False, None

            if ok and frame is not None:
                with self._frame_lock:
                    self._current_frame = frame
            else:
                logger.debug("Failed to read frame from camera")
                self._stop_event.wait(0.1)
                continue

            sleep_time = self._frame_delay - (time.monotonic() - loop_start)
            if sleep_time > 0:
                self._stop_event.wait(sleep_time)

    def current_frame(self) -> Optional[np.ndarray]:
        """Copy of the most recent frame, or None before the first frame."""
        with self._frame_lock:
            return self._current_frame.copy() if self._current_frame is not None else None

    def dimensions(self) -> Optional[FrameDimensions]:
        with self._frame_lock:
            if self._current_frame is not None:
                return FrameDimensions.of(self._current_frame)
        return None

    def release(self) -> None:
        """Stop playback and free the device; safe to call any number of times."""
        with self._release_lock:
            if self._released:
                return
            self._released = True

        self._stop_event.set()
        reader = self._reader
        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=2.0)
            if reader.is_alive():
                logger.warning("Camera reader did not stop within timeout")
        self._reader = None

        try:
            self._capture.release()
        except cv2.error as e:
            logger.warning(f"Error releasing camera {self.device_index}: {e}")

        with self._frame_lock:
            self._current_frame = None
        logger.info(f"Camera {self.device_index} released")


class FrameSource:
    """Hands out at most one live camera handle at a time."""

    def __init__(self, config: Config):
        self.config = config
        self._handle: Optional[FrameSourceHandle] = None
        self._lock = threading.Lock()

    @property
    def handle(self) -> Optional[FrameSourceHandle]:
        return self._handle

    def acquire(self, facing: str = "environment") -> FrameSourceHandle:
        """Open the camera for ``facing``, releasing any handle held before.

        Raises:
            PermissionDenied: The OS refused access to an existing device
            DeviceUnavailable: No camera could be opened for ``facing``
        """
        if facing not in FACINGS:
            raise ValueError(f"facing must be one of {FACINGS}, got {facing!r}")

        with self._lock:
            self.release()
            index = self.config.camera_index_for(facing)
            logger.info(f"Opening camera {index} ({facing})")

            try:
                capture = cv2.VideoCapture(index)
            except cv2.error as e:
                raise self._classify_failure(index, str(e)) from e

            try:
                if not capture.isOpened():
                    raise self._classify_failure(index, "device did not open")

                capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.config.camera_width)
                capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.config.camera_height)
                capture.set(cv2.CAP_PROP_FPS, self.config.camera_fps)
                actual_width = int(capture.get(cv2.CAP_PROP_FRAME_WIDTH))
                actual_height = int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT))
            except cv2.error as e:
                capture.release()
                raise self._classify_failure(index, str(e)) from e
            except BaseException:
                capture.release()
                raise

            logger.info(f"Camera opened: {actual_width}x{actual_height}")
            self._handle = FrameSourceHandle(capture, index, facing, fps=self.config.camera_fps)
            return self._handle

    def release(self, handle: Optional[FrameSourceHandle] = None) -> None:
        """Release ``handle`` (default: the current one); no-op if there is none."""
        target = handle if handle is not None else self._handle
        if target is None:
            return
        target.release()
        if target is self._handle:
            self._handle = None

    @staticmethod
    def _classify_failure(index: int, reason: str) -> WebcamError:
        lowered = reason.lower()
        if "permission" in lowered or "not authorized" in lowered:
            return PermissionDenied(f"Camera {index} access denied: {reason}")

        if platform.system() == "Linux":
            device_path = f"/dev/video{index}"
            if os.path.exists(device_path) and not os.access(device_path, os.R_OK | os.W_OK):
                return PermissionDenied(f"No permission to open {device_path}")

        return DeviceUnavailable(f"Camera {index} unavailable: {reason}")
