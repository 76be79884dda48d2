import asyncio

import cv2
import numpy as np
import pytest

from siteguard.core.exceptions import CaptureError, CaptureTimeoutError
from siteguard.services.frame_capture import CaptureState, FrameCaptureEngine


@pytest.fixture
def capture_engine():
    return FrameCaptureEngine(metadata_timeout=0.05, seek_timeout=0.1, jpeg_quality=80)


def test_capture_returns_jpeg_at_native_size(capture_engine, fake_handle):
    handle = fake_handle(width=64, height=48)
    image = asyncio.run(capture_engine.capture_frame(handle, 10.0))

    assert image[:2] == b"\xff\xd8"
    decoded = cv2.imdecode(np.frombuffer(image, dtype=np.uint8), cv2.IMREAD_COLOR)
    assert decoded.shape == (48, 64, 3)
    assert handle.seeks == [10.0]
    assert capture_engine.last_state == CaptureState.DONE
    assert handle.listener_count() == 0


def test_capture_clamps_target_to_duration(capture_engine, fake_handle):
    handle = fake_handle(duration=20.0)

    async def scenario():
        await capture_engine.capture_frame(handle, 99.0)
        await capture_engine.capture_frame(handle, -5.0)

    asyncio.run(scenario())
    assert handle.seeks == [20.0, 0.0]


def test_capture_waits_for_late_metadata(capture_engine, fake_handle):
    handle = fake_handle(ready=False)

    async def scenario():
        handle.load_later(0.01)
        return await capture_engine.capture_frame(handle, 1.0)

    assert asyncio.run(scenario())
    assert handle.seeks == [1.0]


def test_metadata_timeout_is_a_soft_failure(capture_engine, fake_handle):
    handle = fake_handle(ready=False)

    assert asyncio.run(capture_engine.capture_frame(handle, 1.0)) is None
    assert handle.seeks == []
    assert capture_engine.last_state == CaptureState.FAILED
    assert handle.listener_count() == 0


def test_no_source_and_nothing_loaded_is_a_soft_failure(capture_engine, fake_handle):
    handle = fake_handle(ready=False, has_source=False)
    assert asyncio.run(capture_engine.capture_frame(handle, 1.0)) is None
    assert handle.seeks == []


def test_zero_dimensions_resolve_to_none_and_resume_playback(capture_engine, fake_handle):
    handle = fake_handle(width=0, height=0, paused=False)

    assert asyncio.run(capture_engine.capture_frame(handle, 3.0)) is None
    assert handle.pause_calls == 1
    assert handle.play_calls == 1
    assert handle.paused is False


def test_paused_video_stays_paused(capture_engine, fake_handle):
    handle = fake_handle(paused=True)
    asyncio.run(capture_engine.capture_frame(handle, 3.0))

    assert handle.pause_calls == 0
    assert handle.play_calls == 0
    assert handle.paused is True


def test_seek_timeout_raises_and_restores_playback(capture_engine, fake_handle):
    handle = fake_handle(seek_mode="hang", paused=False)

    with pytest.raises(CaptureTimeoutError):
        asyncio.run(capture_engine.capture_frame(handle, 4.0))
    assert handle.paused is False
    assert handle.listener_count() == 0


def test_decoder_error_is_a_hard_failure(capture_engine, fake_handle):
    handle = fake_handle(seek_mode="error", paused=False)

    with pytest.raises(CaptureError) as excinfo:
        asyncio.run(capture_engine.capture_frame(handle, 4.0))
    assert not isinstance(excinfo.value, CaptureTimeoutError)
    assert handle.paused is False
    assert handle.listener_count() == 0
    assert capture_engine.last_state == CaptureState.FAILED


def test_overlapping_capture_on_one_handle_is_refused(capture_engine, fake_handle):
    handle = fake_handle(seek_mode="hang")

    async def scenario():
        first = asyncio.create_task(capture_engine.capture_frame(handle, 1.0))
        await asyncio.sleep(0)
        with pytest.raises(CaptureError, match="already in progress"):
            await capture_engine.capture_frame(handle, 2.0)
        with pytest.raises(CaptureTimeoutError):
            await first

    asyncio.run(scenario())
    assert handle.seeks == [1.0]


def test_separate_handles_capture_in_parallel(capture_engine, fake_handle):
    handles = [fake_handle(), fake_handle()]

    async def scenario():
        return await asyncio.gather(*(capture_engine.capture_frame(h, 2.0) for h in handles))

    assert all(asyncio.run(scenario()))
