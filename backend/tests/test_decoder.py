import asyncio
import threading
import time

import cv2
import numpy as np
import pytest

from siteguard.schemas.analysis import Severity, ThumbnailStatus, Violation
from siteguard.services.decoder import OpenCVDecoderHandle
from siteguard.services.evidence import EvidenceBinder
from siteguard.services.frame_capture import DecoderEvent, FrameCaptureEngine, ReadyState


@pytest.fixture
def mjpg_video(tmp_path):
    """Three seconds at 10 fps: red, then green, then blue."""
    path = tmp_path / "colors.avi"
    writer = cv2.VideoWriter(str(path), cv2.VideoWriter_fourcc(*"MJPG"), 10.0, (80, 60))
    if not writer.isOpened():
        pytest.skip("OpenCV build cannot write MJPG")
    for bgr in [(0, 0, 255), (0, 255, 0), (255, 0, 0)]:
        frame = np.zeros((60, 80, 3), dtype=np.uint8)
        frame[:] = bgr
        for _ in range(10):
            writer.write(frame)
    writer.release()
    return path


def test_decoder_loads_metadata(mjpg_video):
    async def scenario():
        async with OpenCVDecoderHandle(mjpg_video) as handle:
            await FrameCaptureEngine(metadata_timeout=5.0).wait_for_metadata(handle)
            return handle.ready_state, handle.width, handle.height, handle.duration

    ready_state, width, height, duration = asyncio.run(scenario())
    assert ready_state >= ReadyState.HAVE_METADATA
    assert (width, height) == (80, 60)
    assert duration == pytest.approx(3.0, abs=0.2)


def test_capture_from_real_video(mjpg_video):
    engine = FrameCaptureEngine(metadata_timeout=5.0, seek_timeout=5.0)

    async def scenario():
        async with OpenCVDecoderHandle(mjpg_video) as handle:
            return await engine.capture_frame(handle, 1.5)

    image = asyncio.run(scenario())
    frame = cv2.imdecode(np.frombuffer(image, dtype=np.uint8), cv2.IMREAD_COLOR)
    assert frame.shape == (60, 80, 3)
    blue, green, red = frame[30, 40]
    assert green > 200 and red < 60 and blue < 60


def test_capture_past_the_end_uses_last_frame(mjpg_video):
    engine = FrameCaptureEngine(metadata_timeout=5.0, seek_timeout=5.0)

    async def scenario():
        async with OpenCVDecoderHandle(mjpg_video) as handle:
            return await engine.capture_frame(handle, 60.0)

    frame = cv2.imdecode(np.frombuffer(asyncio.run(scenario()), dtype=np.uint8), cv2.IMREAD_COLOR)
    blue, green, red = frame[30, 40]
    assert blue > 200 and green < 60


def test_unreadable_source_never_becomes_ready(tmp_path):
    broken = tmp_path / "missing.avi"
    engine = FrameCaptureEngine(metadata_timeout=0.5, seek_timeout=0.5)

    async def scenario():
        async with OpenCVDecoderHandle(broken) as handle:
            image = await engine.capture_frame(handle, 1.0)
            return image, handle.error

    image, error = asyncio.run(scenario())
    assert image is None
    assert error


def test_handle_without_source():
    handle = OpenCVDecoderHandle(None)
    assert handle.has_source is False
    assert asyncio.run(FrameCaptureEngine(metadata_timeout=0.05).capture_frame(handle, 0.0)) is None


class SlowDecoderHandle(OpenCVDecoderHandle):
    """Decodes a flat frame whose brightness encodes the requested time."""

    def __init__(self, delays):
        super().__init__("slow.avi")
        self.delays = delays
        self.ready_state = ReadyState.HAVE_METADATA
        self.fps = 10.0
        self.duration = 20.0
        self.width = 64
        self.height = 48
        self.active = 0
        self.max_active = 0
        self._counter = threading.Lock()

    def _decode_frame(self, time_seconds):
        with self._counter:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        time.sleep(self.delays.get(time_seconds, 0.0))
        with self._counter:
            self.active -= 1
        return np.full((self.height, self.width, 3), int(time_seconds * 10) % 256, dtype=np.uint8)


def test_late_seek_does_not_leak_into_next_capture():
    handle = SlowDecoderHandle({1.0: 0.5, 15.0: 0.02})
    binder = EvidenceBinder(FrameCaptureEngine(seek_timeout=0.3))
    violations = [
        Violation(description="Harness not clipped", start_time_seconds=1, severity=Severity.HIGH),
        Violation(description="Open trench unguarded", start_time_seconds=15, severity=Severity.MEDIUM),
    ]

    async def scenario():
        try:
            return await binder.bind(violations, handle)
        finally:
            handle.close()

    updated, outcome = asyncio.run(scenario())

    assert (outcome.captured, outcome.failed, outcome.hard_failures) == (1, 1, 1)
    assert updated[0].thumbnail_status == ThumbnailStatus.FAILED
    assert updated[1].thumbnail_status == ThumbnailStatus.CAPTURED
    frame = cv2.imdecode(np.frombuffer(updated[1].thumbnail.data, dtype=np.uint8), cv2.IMREAD_GRAYSCALE)
    assert abs(int(frame[24, 32]) - 150) <= 5
    assert handle.max_active == 1


def test_superseded_seek_publishes_nothing():
    handle = SlowDecoderHandle({2.0: 0.1})
    seen = []
    handle.add_listener(DecoderEvent.SEEKED, lambda _payload: seen.append(handle.current_time))

    async def scenario():
        handle.seek(2.0)
        handle.seek(4.0)
        while handle._tasks:
            await asyncio.sleep(0.01)
        return handle.render_frame()

    frame = asyncio.run(scenario())

    assert seen == [4.0]
    assert int(frame[0, 0, 0]) == 40
    assert handle.max_active == 1
