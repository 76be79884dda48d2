from __future__ import annotations

import asyncio
import logging
from enum import Enum, IntEnum
from typing import Any, Callable, Protocol

import cv2
import numpy as np

from siteguard.core.exceptions import CaptureError, CaptureTimeoutError

logger = logging.getLogger(__name__)

Listener = Callable[[Any], None]


class ReadyState(IntEnum):
    HAVE_NOTHING = 0
    HAVE_METADATA = 1
    HAVE_CURRENT_DATA = 2


class DecoderEvent(str, Enum):
    LOADED_METADATA = "loadedmetadata"
    SEEKED = "seeked"
    ERROR = "error"


class DecoderHandle(Protocol):
    """A seekable decoder that reports progress through events.

    ``seek`` returns immediately; completion is signalled by a ``SEEKED`` event
    and decoder failures by an ``ERROR`` event.
    """

    ready_state: ReadyState
    has_source: bool
    duration: float
    width: int
    height: int
    paused: bool

    def add_listener(self, event: DecoderEvent, listener: Listener) -> None: ...

    def remove_listener(self, event: DecoderEvent, listener: Listener) -> None: ...

    def seek(self, time_seconds: float) -> None: ...

    def pause(self) -> None: ...

    def play(self) -> None: ...

    def render_frame(self) -> np.ndarray | None: ...


class CaptureState(str, Enum):
    AWAITING_METADATA = "awaiting_metadata"
    SEEKING = "seeking"
    RENDERING = "rendering"
    DONE = "done"
    FAILED = "failed"


async def wait_for_event(
    handle: DecoderHandle,
    event: DecoderEvent,
    timeout: float,
    fail_on: DecoderEvent | None = None,
    trigger: Callable[[], None] | None = None,
) -> bool:
    """Wait for ``event`` on ``handle``.

    Returns True when the event fired and False on timeout. When ``fail_on``
    fires first a CaptureError is raised. Listeners are removed on every exit.
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future[None] = loop.create_future()

    def on_event(_payload: Any = None) -> None:
        if not future.done():
            future.set_result(None)

    def on_failure(payload: Any = None) -> None:
        if not future.done():
            future.set_exception(CaptureError(f"Decoder error: {payload}"))

    handle.add_listener(event, on_event)
    if fail_on is not None:
        handle.add_listener(fail_on, on_failure)
    try:
        if trigger is not None:
            trigger()
        await asyncio.wait_for(future, timeout)
        return True
    except asyncio.TimeoutError:
        return False
    finally:
        handle.remove_listener(event, on_event)
        if fail_on is not None:
            handle.remove_listener(fail_on, on_failure)


class FrameCaptureEngine:
    def __init__(self, metadata_timeout: float = 5.0, seek_timeout: float = 7.0, jpeg_quality: int = 80) -> None:
        self.metadata_timeout = metadata_timeout
        self.seek_timeout = seek_timeout
        self.jpeg_quality = jpeg_quality
        self._busy: set[int] = set()
        self.last_state: CaptureState | None = None

    def _transition(self, state: CaptureState, time_seconds: float) -> None:
        self.last_state = state
        logger.debug("Frame capture at %.2fs -> %s", time_seconds, state.value)

    async def wait_for_metadata(self, handle: DecoderHandle, timeout: float | None = None) -> bool:
        """Wait until the handle has metadata; False if it never arrives in time."""
        if handle.ready_state >= ReadyState.HAVE_METADATA:
            return True
        if handle.ready_state == ReadyState.HAVE_NOTHING and not handle.has_source:
            return False
        fired = await wait_for_event(
            handle,
            DecoderEvent.LOADED_METADATA,
            self.metadata_timeout if timeout is None else timeout,
        )
        return fired and handle.ready_state >= ReadyState.HAVE_METADATA

    def encode_jpeg(self, frame: np.ndarray) -> bytes | None:
        ok, encoded = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), int(self.jpeg_quality)])
        if not ok:
            return None
        return encoded.tobytes()

    async def capture_frame(self, handle: DecoderHandle, time_seconds: float) -> bytes | None:
        """Capture the frame shown at ``time_seconds`` as JPEG bytes.

        Returns None when no image can be produced for this timestamp (no
        metadata, no source, zero-sized video). Raises CaptureError when the
        decoder reports an error during the seek and CaptureTimeoutError when
        the seek never completes.
        """
        key = id(handle)
        if key in self._busy:
            raise CaptureError("A frame capture is already in progress on this decoder")

        self._busy.add(key)
        try:
            return await self._capture(handle, time_seconds)
        except CaptureError:
            self._transition(CaptureState.FAILED, time_seconds)
            raise
        finally:
            self._busy.discard(key)

    async def _capture(self, handle: DecoderHandle, time_seconds: float) -> bytes | None:
        self._transition(CaptureState.AWAITING_METADATA, time_seconds)
        if handle.ready_state < ReadyState.HAVE_METADATA:
            if not await self.wait_for_metadata(handle):
                logger.debug("Timed out waiting for video metadata before frame capture")
                self._transition(CaptureState.FAILED, time_seconds)
                return None

        if handle.duration <= 0 and not handle.has_source:
            self._transition(CaptureState.FAILED, time_seconds)
            return None

        target = max(0.0, float(time_seconds))
        if handle.duration > 0:
            target = min(target, handle.duration)

        was_paused = handle.paused
        if not was_paused:
            handle.pause()
        try:
            self._transition(CaptureState.SEEKING, time_seconds)
            seeked = await wait_for_event(
                handle,
                DecoderEvent.SEEKED,
                self.seek_timeout,
                fail_on=DecoderEvent.ERROR,
                trigger=lambda: handle.seek(target),
            )
            if not seeked:
                logger.warning("Timeout waiting for seek to %.2fs", target)
                raise CaptureTimeoutError(f"Timeout during frame capture seeking to {target:.2f}s")

            self._transition(CaptureState.RENDERING, time_seconds)
            if handle.width <= 0 or handle.height <= 0:
                self._transition(CaptureState.FAILED, time_seconds)
                return None
            frame = handle.render_frame()
            if frame is None or frame.size == 0:
                self._transition(CaptureState.FAILED, time_seconds)
                return None

            if frame.shape[1] != handle.width or frame.shape[0] != handle.height:
                frame = cv2.resize(frame, (handle.width, handle.height))
            image = self.encode_jpeg(frame)
            self._transition(CaptureState.DONE if image else CaptureState.FAILED, time_seconds)
            return image
        finally:
            if not was_paused:
                handle.play()
