from __future__ import annotations

import asyncio
import logging
import threading
from collections import defaultdict
from pathlib import Path
from typing import Any

import cv2
import numpy as np

from siteguard.services.frame_capture import DecoderEvent, Listener, ReadyState

logger = logging.getLogger(__name__)


class OpenCVDecoderHandle:
    """Event-driven decoder over ``cv2.VideoCapture``.

    Loading and seeking run in a worker thread; completion is reported on the
    event loop through ``loadedmetadata``/``seeked``/``error`` listeners. There
    is no real playback: ``play``/``pause`` only track the flag callers restore.

    Only the most recent seek may publish a frame or an event. A seek that
    finishes after a newer one was issued is discarded, and reads on the
    underlying capture are serialized.
    """

    def __init__(self, source: str | Path | None) -> None:
        self.source = str(source) if source else ""
        self.ready_state = ReadyState.HAVE_NOTHING
        self.duration = 0.0
        self.width = 0
        self.height = 0
        self.fps = 0.0
        self.frame_count = 0
        self.paused = True
        self.current_time = 0.0
        self.error: str | None = None
        self._cap: cv2.VideoCapture | None = None
        self._frame: np.ndarray | None = None
        self._listeners: dict[DecoderEvent, list[Listener]] = defaultdict(list)
        self._tasks: set[asyncio.Task] = set()
        self._seek_generation = 0
        self._cap_lock = threading.Lock()

    @property
    def has_source(self) -> bool:
        return bool(self.source)

    def add_listener(self, event: DecoderEvent, listener: Listener) -> None:
        self._listeners[event].append(listener)

    def remove_listener(self, event: DecoderEvent, listener: Listener) -> None:
        if listener in self._listeners[event]:
            self._listeners[event].remove(listener)

    def _emit(self, event: DecoderEvent, payload: Any = None) -> None:
        for listener in list(self._listeners[event]):
            listener(payload)

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def load(self) -> None:
        """Start loading metadata in the background."""
        if not self.has_source:
            return
        self._spawn(self._load())

    def _open(self) -> cv2.VideoCapture | None:
        cap = cv2.VideoCapture(self.source)
        if not cap.isOpened():
            cap.release()
            return None
        return cap

    async def _load(self) -> None:
        cap = await asyncio.to_thread(self._open)
        if cap is None:
            self.error = f"Could not open video: {self.source}"
            logger.warning(self.error)
            self._emit(DecoderEvent.ERROR, self.error)
            return

        self._cap = cap
        self.fps = float(cap.get(cv2.CAP_PROP_FPS) or 25.0)
        self.frame_count = int(cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0)
        self.width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH) or 0)
        self.height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0)
        self.duration = float(self.frame_count / max(self.fps, 1.0))
        self.ready_state = ReadyState.HAVE_METADATA
        self._emit(DecoderEvent.LOADED_METADATA)

    def _read_at(self, time_seconds: float) -> np.ndarray | None:
        with self._cap_lock:
            return self._decode_frame(time_seconds)

    def _decode_frame(self, time_seconds: float) -> np.ndarray | None:
        cap = self._cap
        if cap is None:
            return None
        frame_idx = max(0, int(time_seconds * self.fps))
        if self.frame_count > 0:
            frame_idx = min(frame_idx, self.frame_count - 1)
        cap.set(cv2.CAP_PROP_POS_FRAMES, frame_idx)
        ok, frame = cap.read()
        if not ok:
            return None
        return frame

    async def _seek(self, time_seconds: float, generation: int) -> None:
        try:
            frame = await asyncio.to_thread(self._read_at, time_seconds)
        except cv2.error as exc:
            if generation == self._seek_generation:
                self._emit(DecoderEvent.ERROR, str(exc))
            return
        if generation != self._seek_generation:
            logger.debug("Discarding superseded seek to %.2fs", time_seconds)
            return
        if frame is None:
            self._emit(DecoderEvent.ERROR, f"No frame decoded at {time_seconds:.2f}s")
            return
        self._frame = frame
        self.current_time = time_seconds
        self.ready_state = ReadyState.HAVE_CURRENT_DATA
        self._emit(DecoderEvent.SEEKED)

    def seek(self, time_seconds: float) -> None:
        self._seek_generation += 1
        self._spawn(self._seek(time_seconds, self._seek_generation))

    def pause(self) -> None:
        self.paused = True

    def play(self) -> None:
        self.paused = False

    def render_frame(self) -> np.ndarray | None:
        return self._frame

    def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._seek_generation += 1
        with self._cap_lock:
            if self._cap is not None:
                self._cap.release()
                self._cap = None
        self._frame = None
        self.ready_state = ReadyState.HAVE_NOTHING

    async def __aenter__(self) -> OpenCVDecoderHandle:
        self.load()
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()
