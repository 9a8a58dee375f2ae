"""Pytest configuration and shared fixtures for the PureScan test suite.

Camera hardware and the YOLO model are never touched: the fixtures here
provide fake frame sources, a fake detection backend and a controllable
clock so session behaviour can be driven deterministically.
"""
import os
import sys
import tempfile
import logging
import json
from pathlib import Path
from typing import List, Optional
from unittest.mock import Mock, patch

import pytest
import numpy as np
import cv2

# Add the project root to Python path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from purescan.backends.base_backend import BaseBackend
from purescan.config.settings import Config
from purescan.core.entities import Detection, DetectorInstance, FrameDimensions
from purescan.core.exceptions import DeviceUnavailable, PermissionDenied, WebcamError
from purescan.services.detector import DetectorProvider


# Configure logging for tests
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler()]
)

# Disable some verbose loggers during testing
logging.getLogger('PIL').setLevel(logging.WARNING)
logging.getLogger('asyncio').setLevel(logging.WARNING)


@pytest.fixture(scope="session")
def project_root():
    """Provide project root directory path."""
    return PROJECT_ROOT


@pytest.fixture
def temp_dir():
    """Provide a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def config():
    """Real configuration with fast timings suited to tests."""
    return Config(
        camera_width=640,
        camera_height=480,
        detection_sample_interval_ms=0,
        detection_grace_window_ms=1000,
        detection_tick_interval_ms=10,
        demo_delay_s=0.0,
        gemini_api_key="",
    )


@pytest.fixture
def mock_config():
    """Provide a mock configuration object for testing."""
    config = Mock(spec=Config)

    config.environment_camera_index = 0
    config.user_camera_index = 1
    config.camera_width = 640
    config.camera_height = 480
    config.camera_fps = 30
    config.capture_jpeg_quality = 80
    config.capture_filename = "camera-capture.jpg"
    config.capture_burn_overlay = True
    config.gemini_api_key = ""
    config.gemini_model = "gemini-2.5-flash"
    config.gemini_timeout = 30
    config.camera_index_for.side_effect = lambda facing: 1 if facing == "user" else 0

    return config


@pytest.fixture
def real_config(temp_dir):
    """Provide a configuration loaded from a JSON file in a temp directory."""
    config_data = {
        "camera_width": 640,
        "camera_height": 480,
        "detection_sample_interval_ms": 500,
        "detection_grace_window_ms": 1500,
        "capture_jpeg_quality": 90,
        "gemini_api_key": "",
    }

    config_file = temp_dir / "config.json"
    with open(config_file, 'w') as f:
        json.dump(config_data, f, indent=2)

    from purescan.config.settings import load_config
    with patch.dict(os.environ, {}, clear=True):
        return load_config(str(config_file), env_file=str(temp_dir / ".env"))


@pytest.fixture
def sample_image():
    """Provide a sample BGR image for testing."""
    image = np.zeros((100, 100, 3), dtype=np.uint8)

    # Blue square in top-left
    image[10:40, 10:40] = [255, 0, 0]

    # Green circle in center
    cv2.circle(image, (50, 50), 15, (0, 255, 0), -1)

    # Red rectangle in bottom-right
    image[60:90, 60:90] = [0, 0, 255]

    return image


@pytest.fixture
def sample_frame():
    """Provide a 640x480 camera-sized frame."""
    frame = np.full((480, 640, 3), 90, dtype=np.uint8)
    cv2.rectangle(frame, (100, 100), (260, 240), (40, 160, 220), -1)
    return frame


@pytest.fixture
def sample_detections():
    """Provide sample detections using detector vocabulary labels."""
    return [
        Detection(bbox=(100, 100, 160, 140), label="apple", score=0.87, class_id=47),
        Detection(bbox=(300, 150, 150, 150), label="pizza", score=0.64, class_id=53),
        Detection(bbox=(50, 350, 130, 100), label="person", score=0.93, class_id=0),
    ]


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


@pytest.fixture
def fake_clock():
    return FakeClock()


class FakeBackend(BaseBackend):
    """Detection backend that returns scripted results."""

    def __init__(self, model_path_or_name: str = "fake.pt", results: Optional[List[Detection]] = None,
                 fail_on: tuple = ()):
        super().__init__(model_path_or_name)
        self.results = list(results or [])
        self.fail_on = fail_on
        self.predict_calls = 0

    def load(self, device: str) -> None:
        from purescan.core.exceptions import ModelError
        if device in self.fail_on:
            raise ModelError(f"cannot load on {device}")
        self.device = device
        self.is_loaded = True

    def predict(self, image, max_results, score_threshold):
        self.predict_calls += 1
        return [d for d in self.results if d.score >= score_threshold][:max_results]

    @property
    def class_names(self):
        return ("person", "apple", "pizza")


@pytest.fixture
def fake_backend(sample_detections):
    backend = FakeBackend(results=sample_detections)
    backend.load("cpu")
    return backend


@pytest.fixture
def detector_instance(fake_backend):
    return DetectorInstance(backend=fake_backend, device="cpu", class_names=fake_backend.class_names)


class FakeHandle:
    """Stands in for ``FrameSourceHandle`` without a reader thread."""

    def __init__(self, frame: Optional[np.ndarray], facing: str = "environment"):
        self.facing = facing
        self.device_index = 0
        self._frame = frame
        self.released = False
        self.is_playing = False
        self.release_calls = 0

    def start_playback(self):
        if self.released:
            raise WebcamError("Cannot start playback on a released camera handle")
        self.is_playing = True

    def current_frame(self):
        if self.released or self._frame is None:
            return None
        return self._frame.copy()

    def dimensions(self):
        if self.released or self._frame is None:
            return None
        return FrameDimensions.of(self._frame)

    def release(self):
        self.release_calls += 1
        self.released = True
        self.is_playing = False


class FakeFrameSource:
    """Frame source that can be scripted to fail before succeeding."""

    def __init__(self, frame: Optional[np.ndarray], errors: Optional[List[Exception]] = None):
        self.frame = frame
        self.errors = list(errors or [])
        self.handles: List[FakeHandle] = []
        self.acquire_calls = 0

    def acquire(self, facing: str = "environment") -> FakeHandle:
        self.acquire_calls += 1
        if self.errors:
            raise self.errors.pop(0)
        for handle in self.handles:
            handle.release()
        handle = FakeHandle(self.frame, facing)
        self.handles.append(handle)
        return handle

    def release(self, handle=None):
        if handle is not None:
            handle.release()


@pytest.fixture
def fake_frame_source(sample_frame):
    return FakeFrameSource(sample_frame)


@pytest.fixture
def detector_provider(detector_instance):
    """Detector provider whose loader hands back the fake detector."""
    loader = Mock(return_value=detector_instance)
    return DetectorProvider(loader=loader)


@pytest.fixture(autouse=True)
def reset_detector_singleton():
    """Keep the process-wide detector provider from leaking between tests."""
    DetectorProvider._instance = None
    yield
    DetectorProvider._instance = None


@pytest.fixture
def mock_opencv_capture(sample_frame):
    """Provide a mock OpenCV VideoCapture object."""
    cap = Mock()
    cap.isOpened.return_value = True
    cap.read.return_value = (True, sample_frame)
    cap.get.side_effect = lambda prop: {
        cv2.CAP_PROP_FRAME_WIDTH: 640,
        cv2.CAP_PROP_FRAME_HEIGHT: 480,
        cv2.CAP_PROP_FPS: 30
    }.get(prop, 0)
    cap.set.return_value = True
    cap.release.return_value = None
    return cap


@pytest.fixture
def api_key_env():
    """Provide environment variables for API keys during testing."""
    with patch.dict(os.environ, {
        'GEMINI_API_KEY': 'test_api_key_for_testing_only',
    }):
        yield


# Error simulation fixtures
@pytest.fixture
def simulate_webcam_error():
    """Build the camera errors the frame source can raise."""
    def _simulate_error(error_type="denied"):
        if error_type == "denied":
            return PermissionDenied("Camera access denied")
        elif error_type == "not_found":
            return DeviceUnavailable("Camera device not found")
        return WebcamError(f"Unknown camera error: {error_type}")

    return _simulate_error


@pytest.fixture
def make_handle():
    """Factory for fake frame source handles."""
    return FakeHandle


@pytest.fixture
def make_frame_source():
    """Factory for scripted fake frame sources."""
    return FakeFrameSource


@pytest.fixture
def make_backend():
    """Factory for scripted fake detection backends."""
    return FakeBackend
