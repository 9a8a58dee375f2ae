"""Unit tests for the camera session lifecycle."""
import asyncio
import logging
import threading
from unittest.mock import Mock, patch

import cv2
import pytest

from purescan.core.entities import CaptureArtifact
from purescan.core.exceptions import CaptureError, DeviceUnavailable, ModelLoadError, PermissionDenied, WebcamError
from purescan.core.logging_config import get_correlation_id
from purescan.services.capture_pipeline import CapturePipeline
from purescan.services.detector import DetectorProvider
from purescan.services.frame_source import FrameSource
from purescan.services.session_controller import DetectorStatus, SessionController, SessionState


async def wait_for(predicate, timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def events():
    return []


@pytest.fixture
def session(config, fake_frame_source, detector_provider, events):
    controller = SessionController(config, frame_source=fake_frame_source, detector_provider=detector_provider)
    controller.add_listener(events.append)
    return controller


def artifact():
    return CaptureArtifact(data=b"jpeg", filename="camera-capture.jpg", mime_type="image/jpeg")


class TestOpenAndClose:
    """Test suite for opening, retrying and closing a session."""

    @pytest.mark.asyncio
    async def test_open_without_live_detection_is_ready(self, session, detector_provider):
        await session.open()

        assert session.state is SessionState.READY
        assert session.handle.is_playing
        assert session.capture_enabled
        assert session.detector_status is DetectorStatus.IDLE
        detector_provider._loader.assert_not_called()
        await session.close()

    @pytest.mark.asyncio
    async def test_open_with_live_detection_starts_sampling(self, session):
        await session.open(live_detection=True)

        assert session.state is SessionState.SAMPLING
        assert session.detector_status is DetectorStatus.READY
        await wait_for(lambda: session.held_detections)

        assert [d.label for d in session.held_detections] == ["apple", "pizza"]
        await wait_for(lambda: not session.overlay.is_blank)
        await session.close()

    @pytest.mark.asyncio
    async def test_open_ignored_when_already_open(self, session, fake_frame_source):
        await session.open()
        await session.open()

        assert fake_frame_source.acquire_calls == 1
        await session.close()

    @pytest.mark.asyncio
    async def test_permission_denied_then_retry(self, session, fake_frame_source, events):
        fake_frame_source.errors = [PermissionDenied("Camera access denied")]

        await session.open()

        assert session.state is SessionState.PERMISSION_ERROR
        assert session.handle is None
        assert not session.capture_enabled
        assert isinstance(events[-1].error, PermissionDenied)

        await session.retry()

        assert session.state is SessionState.READY
        assert session.handle is not None
        assert fake_frame_source.acquire_calls == 2
        await session.close()

    @pytest.mark.asyncio
    async def test_camera_property_error_becomes_permission_error(self, config, mock_opencv_capture,
                                                                  detector_provider, events):
        mock_opencv_capture.set.side_effect = cv2.error("unsupported property")
        with patch('cv2.VideoCapture', return_value=mock_opencv_capture), \
                patch('purescan.services.frame_source.platform.system', return_value="Windows"):
            session = SessionController(config, frame_source=FrameSource(config),
                                        detector_provider=detector_provider)
            session.add_listener(events.append)

            await session.open()

        assert session.state is SessionState.PERMISSION_ERROR
        assert isinstance(events[-1].error, WebcamError)
        assert not session.capture_enabled
        mock_opencv_capture.release.assert_called_once()

    @pytest.mark.asyncio
    async def test_unexpected_acquire_error_becomes_permission_error(self, session, fake_frame_source, events):
        fake_frame_source.errors = [RuntimeError("backend crashed")]

        await session.open()

        assert session.state is SessionState.PERMISSION_ERROR
        assert isinstance(events[-1].error, DeviceUnavailable)

        await session.retry()

        assert session.state is SessionState.READY
        await session.close()

    @pytest.mark.asyncio
    async def test_retry_ignored_outside_permission_error(self, session, fake_frame_source):
        await session.retry()

        assert session.state is SessionState.CLOSED
        assert fake_frame_source.acquire_calls == 0

    @pytest.mark.asyncio
    async def test_close_releases_everything_but_keeps_detector(self, session, detector_provider):
        await session.open(live_detection=True)
        await wait_for(lambda: session.held_detections)
        handle = session.handle

        await session.close()

        assert session.state is SessionState.CLOSED
        assert handle.released
        assert session.handle is None
        assert session.held_detections == ()
        assert session.overlay.is_blank
        assert not session._tick.running
        assert detector_provider.detector is not None

    @pytest.mark.asyncio
    async def test_close_twice_is_harmless(self, session):
        await session.open()
        await session.close()
        await session.close()

        assert session.state is SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_close_while_opening_releases_late_handle(self, config, make_frame_source, sample_frame,
                                                           detector_provider):
        gate = threading.Event()
        source = make_frame_source(sample_frame)
        original_acquire = source.acquire

        def slow_acquire(facing="environment"):
            gate.wait(timeout=2)
            return original_acquire(facing)

        source.acquire = slow_acquire
        session = SessionController(config, frame_source=source, detector_provider=detector_provider)

        opening = asyncio.ensure_future(session.open())
        await asyncio.sleep(0.01)
        assert session.state is SessionState.OPENING

        await session.close()
        gate.set()
        await opening

        assert session.state is SessionState.CLOSED
        assert session.handle is None
        assert source.handles[0].released

    @pytest.mark.asyncio
    async def test_close_logs_detector_sample_count(self, session, caplog):
        await session.open(live_detection=True)
        await wait_for(lambda: session.stabilizer.sample_count >= 2)

        with caplog.at_level(logging.INFO, logger="purescan.services.session_controller"):
            await session.close()

        count = session.stabilizer.sample_count
        assert f"Session closed after {count} detector samples" in caplog.text

    @pytest.mark.asyncio
    async def test_reopen_restarts_sample_count(self, session):
        await session.open(live_detection=True)
        await wait_for(lambda: session.stabilizer.sample_count >= 1)
        await session.close()

        await session.open()

        assert session.stabilizer.sample_count == 0
        await session.close()

    @pytest.mark.asyncio
    async def test_session_has_correlation_id_while_open(self, session):
        await session.open()
        assert get_correlation_id() is not None

        await session.close()
        assert get_correlation_id() is None

    @pytest.mark.asyncio
    async def test_commands_in_other_tasks_log_under_session_id(self, session):
        await asyncio.create_task(session.open())
        opened_id = session.session_id
        seen = []
        session.add_listener(lambda event: seen.append(get_correlation_id()))
        session.add_capture_listener(lambda artifact: seen.append(get_correlation_id()))

        await asyncio.create_task(session.capture(burn_overlay=False))
        await asyncio.create_task(session.close())

        assert opened_id is not None
        assert len(seen) == 2
        assert set(seen) == {opened_id}
        assert session.session_id is None



class TestLiveDetection:
    """Test suite for toggling live detection and detector failures."""

    @pytest.mark.asyncio
    async def test_turning_live_detection_off_clears_overlay(self, session):
        await session.open(live_detection=True)
        await wait_for(lambda: not session.overlay.is_blank)

        await session.set_live_detection(False)

        assert session.state is SessionState.READY
        assert session.overlay.is_blank
        assert session.held_detections == ()
        assert not session._tick.running
        assert session.handle.is_playing
        await session.close()

    @pytest.mark.asyncio
    async def test_turning_live_detection_on_loads_detector(self, session, detector_provider):
        await session.open()
        assert session.state is SessionState.READY

        await session.set_live_detection(True)
        await wait_for(lambda: session.state is SessionState.SAMPLING)

        detector_provider._loader.assert_called_once()
        await session.close()

    @pytest.mark.asyncio
    async def test_detector_failure_keeps_camera_usable(self, config, fake_frame_source, detector_instance, events):
        provider = DetectorProvider(loader=Mock(side_effect=[ModelLoadError("no backend"), detector_instance]))
        session = SessionController(config, frame_source=fake_frame_source, detector_provider=provider)
        session.add_listener(events.append)

        await session.open(live_detection=True)

        assert session.state is SessionState.READY
        assert session.detector_status is DetectorStatus.FAILED
        assert isinstance(session.detector_error, ModelLoadError)
        assert session.capture_enabled
        assert any(isinstance(e.error, ModelLoadError) for e in events)

        await session.retry_detector()
        await wait_for(lambda: session.state is SessionState.SAMPLING)

        assert session.detector_status is DetectorStatus.READY
        await session.close()

    @pytest.mark.asyncio
    async def test_stale_inference_result_is_discarded(self, config, fake_frame_source, detector_provider,
                                                       sample_detections):
        gate = threading.Event()
        started = threading.Event()

        def slow_detect(instance, frame, max_results, score_threshold):
            started.set()
            gate.wait(timeout=2)
            return list(sample_detections)

        session = SessionController(config, frame_source=fake_frame_source,
                                    detector_provider=detector_provider, detect=slow_detect)
        try:
            await session.open(live_detection=True)
            await wait_for(started.is_set)

            await session.set_live_detection(False)
            gate.set()
            await asyncio.sleep(0.05)

            assert session.held_detections == ()
            assert session.overlay.is_blank
        finally:
            gate.set()
            await session.close()

    @pytest.mark.asyncio
    async def test_inference_errors_do_not_stop_sampling(self, config, fake_frame_source, detector_provider):
        calls = []

        def failing_detect(*args):
            calls.append(1)
            raise RuntimeError("inference failed")

        session = SessionController(config, frame_source=fake_frame_source,
                                    detector_provider=detector_provider, detect=failing_detect)
        await session.open(live_detection=True)
        await wait_for(lambda: len(calls) >= 3)

        assert session.state is SessionState.SAMPLING
        await session.close()


class TestCapture:
    """Test suite for capture triggering."""

    @pytest.mark.asyncio
    async def test_capture_delivers_artifact(self, session):
        delivered = []
        session.add_capture_listener(delivered.append)
        await session.open()

        result = await session.capture()

        assert result is not None
        assert delivered == [result]
        assert result.mime_type == "image/jpeg"
        await session.close()

    @pytest.mark.asyncio
    async def test_overlapping_triggers_yield_one_capture(self, config, fake_frame_source, detector_provider):
        gate = threading.Event()
        pipeline = Mock(spec=CapturePipeline)

        def slow_capture(*args):
            gate.wait(timeout=2)
            return artifact()

        pipeline.capture.side_effect = slow_capture
        session = SessionController(config, frame_source=fake_frame_source,
                                    detector_provider=detector_provider, capture_pipeline=pipeline)
        delivered = []
        session.add_capture_listener(delivered.append)
        await session.open()

        first = asyncio.ensure_future(session.capture())
        await asyncio.sleep(0.01)
        assert session.capture_in_flight
        assert not session.capture_enabled

        second = await session.capture()
        gate.set()
        first_result = await first

        assert second is None
        assert first_result is not None
        assert pipeline.capture.call_count == 1
        assert len(delivered) == 1
        assert session.capture_enabled
        await session.close()

    @pytest.mark.asyncio
    async def test_overlay_burned_only_in_live_mode(self, config, fake_frame_source, detector_provider):
        pipeline = Mock(spec=CapturePipeline)
        pipeline.capture.return_value = artifact()
        session = SessionController(config, frame_source=fake_frame_source,
                                    detector_provider=detector_provider, capture_pipeline=pipeline)

        await session.open()
        await session.capture(burn_overlay=True)
        _, overlay, burn = pipeline.capture.call_args.args
        assert overlay is None
        assert burn is False

        await session.set_live_detection(True)
        await wait_for(lambda: not session.overlay.is_blank)
        await session.capture(burn_overlay=True)
        _, overlay, burn = pipeline.capture.call_args.args
        assert overlay is not None
        assert burn is True
        await session.close()

    @pytest.mark.asyncio
    async def test_capture_failure_is_reported_and_recoverable(self, config, fake_frame_source,
                                                               detector_provider, events):
        pipeline = Mock(spec=CapturePipeline)
        pipeline.capture.side_effect = [CaptureError("JPEG encoding failed"), artifact()]
        session = SessionController(config, frame_source=fake_frame_source,
                                    detector_provider=detector_provider, capture_pipeline=pipeline)
        session.add_listener(events.append)
        await session.open()

        assert await session.capture() is None
        assert isinstance(events[-1].error, CaptureError)
        assert session.capture_enabled

        assert await session.capture() is not None
        await session.close()

    @pytest.mark.asyncio
    async def test_capture_when_closed_reports_error(self, session, events):
        assert await session.capture() is None
        assert isinstance(events[-1].error, CaptureError)

    @pytest.mark.asyncio
    async def test_capture_disabled_until_first_frame(self, config, make_frame_source, detector_provider):
        session = SessionController(config, frame_source=make_frame_source(None),
                                    detector_provider=detector_provider)
        await session.open()

        assert session.state is SessionState.READY
        assert not session.capture_enabled
        await session.close()


class TestFileFallback:
    """Test suite for the manual file fallback."""

    @pytest.mark.asyncio
    async def test_select_file_hands_over_image(self, session, temp_dir):
        from PIL import Image
        path = temp_dir / "meal.jpg"
        Image.new("RGB", (16, 16), (0, 200, 0)).save(path)
        delivered = []
        session.add_capture_listener(delivered.append)
        await session.open()
        handle = session.handle

        result = await session.select_file(path)

        assert session.state is SessionState.FILE_FALLBACK
        assert handle.released
        assert delivered == [result]
        assert result.filename == "meal.jpg"
        await session.close()
        assert session.state is SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_invalid_file_keeps_state(self, session, temp_dir, events):
        path = temp_dir / "notes.txt"
        path.write_text("not an image")

        assert await session.select_file(path) is None
        assert session.state is SessionState.CLOSED
        assert isinstance(events[-1].error, CaptureError)

    @pytest.mark.asyncio
    async def test_open_camera_after_file_fallback(self, session, temp_dir, fake_frame_source):
        from PIL import Image
        path = temp_dir / "meal.png"
        Image.new("RGB", (16, 16), (200, 0, 0)).save(path)

        await session.select_file(path)
        assert session.state is SessionState.FILE_FALLBACK

        await session.open()

        assert session.state is SessionState.READY
        assert session.capture_enabled
        assert fake_frame_source.acquire_calls == 1
        await session.close()
