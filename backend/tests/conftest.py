import asyncio
import json
import os
import subprocess
import tempfile
from collections import defaultdict
from types import SimpleNamespace

_TEST_ROOT = tempfile.mkdtemp(prefix="siteguard-tests-")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["UPLOAD_DIR"] = os.path.join(_TEST_ROOT, "uploads")
os.environ["THUMBNAIL_DIR"] = os.path.join(_TEST_ROOT, "thumbnails")
os.environ["GEMINI_API_KEY"] = ""
os.environ["LOG_LEVEL"] = "debug"

import numpy as np  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from siteguard.core.config import settings  # noqa: E402
from siteguard.db import Base, make_engine  # noqa: E402
from siteguard.models import Video  # noqa: E402
from siteguard.services.frame_capture import DecoderEvent, ReadyState  # noqa: E402


class FakeDecoderHandle:
    """Scripted decoder: seeks complete on the next loop iteration unless told otherwise."""

    def __init__(
        self,
        duration=20.0,
        width=64,
        height=48,
        ready=True,
        has_source=True,
        paused=True,
        seek_mode="ok",
        fail_at=(),
        on_seek=None,
    ):
        self.ready_state = ReadyState.HAVE_METADATA if ready else ReadyState.HAVE_NOTHING
        self.has_source = has_source
        self.duration = duration if ready else 0.0
        self.width = width if ready else 0
        self.height = height if ready else 0
        self._meta = (duration, width, height)
        self.paused = paused
        self.seek_mode = seek_mode
        self.fail_at = set(fail_at)
        self.on_seek = on_seek
        self.current_time = 0.0
        self.seeks = []
        self.play_calls = 0
        self.pause_calls = 0
        self.listeners = defaultdict(list)

    def add_listener(self, event, listener):
        self.listeners[event].append(listener)

    def remove_listener(self, event, listener):
        if listener in self.listeners[event]:
            self.listeners[event].remove(listener)

    def listener_count(self):
        return sum(len(v) for v in self.listeners.values())

    def emit(self, event, payload=None):
        for listener in list(self.listeners[event]):
            listener(payload)

    def load_later(self, delay):
        def _loaded():
            self.duration, self.width, self.height = self._meta
            self.ready_state = ReadyState.HAVE_METADATA
            self.emit(DecoderEvent.LOADED_METADATA)

        asyncio.get_running_loop().call_later(delay, _loaded)

    def seek(self, time_seconds):
        self.seeks.append(time_seconds)
        if self.on_seek is not None:
            self.on_seek(time_seconds)
        loop = asyncio.get_running_loop()
        if self.seek_mode == "hang":
            return
        if self.seek_mode == "error" or time_seconds in self.fail_at:
            loop.call_soon(self.emit, DecoderEvent.ERROR, "media decode error")
            return
        self.current_time = time_seconds
        loop.call_soon(self._seeked)

    def _seeked(self):
        self.ready_state = ReadyState.HAVE_CURRENT_DATA
        self.emit(DecoderEvent.SEEKED)

    def pause(self):
        self.paused = True
        self.pause_calls += 1

    def play(self):
        self.paused = False
        self.play_calls += 1

    def render_frame(self):
        if not self.width or not self.height:
            return None
        shade = int(self.current_time * 10) % 256
        return np.full((self.height, self.width, 3), shade, dtype=np.uint8)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return None


def ffprobe_payload(channels=2, sample_rate=44100, codec="aac", duration=5.0, audio=True):
    streams = [{"codec_type": "video", "codec_name": "h264", "width": 640, "height": 360, "r_frame_rate": "25/1"}]
    if audio:
        streams.append(
            {"codec_type": "audio", "codec_name": codec, "channels": channels, "sample_rate": str(sample_rate)}
        )
    return {
        "streams": streams,
        "format": {"duration": str(duration), "size": "1024", "bit_rate": "800000"},
    }


class FakeRunner:
    """Stands in for subprocess.run: answers ffprobe from a queue and fakes ffmpeg output files."""

    def __init__(self, probes, ffmpeg_fails=False, missing=()):
        self.probes = list(probes)
        self.ffmpeg_fails = ffmpeg_fails
        self.missing = set(missing)
        self.calls = []

    def __call__(self, cmd, capture_output=True, text=True, check=True):
        self.calls.append(cmd)
        binary = cmd[0]
        if binary in self.missing:
            raise FileNotFoundError(binary)
        if "ffprobe" in binary:
            payload = self.probes.pop(0) if len(self.probes) > 1 else self.probes[0]
            return subprocess.CompletedProcess(cmd, 0, stdout=json.dumps(payload), stderr="")
        if self.ffmpeg_fails:
            raise subprocess.CalledProcessError(1, cmd, output="", stderr="Invalid data found when processing input")
        with open(cmd[-1], "wb") as handle:
            handle.write(b"repaired-video")
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    @property
    def ffmpeg_calls(self):
        return [c for c in self.calls if "ffmpeg" in c[0] and "ffprobe" not in c[0]]


class FakeGeminiClient:
    """Mimics the ``client.aio.files`` and ``client.aio.models`` surface of google-genai."""

    def __init__(self, response_text="{}", states=("PROCESSING", "ACTIVE"), fail_generate=False):
        self.response_text = response_text
        self.states = list(states)
        self.fail_generate = fail_generate
        self.uploads = []
        self.requests = []
        self.aio = SimpleNamespace(
            files=SimpleNamespace(upload=self._upload, get=self._get),
            models=SimpleNamespace(generate_content=self._generate),
        )

    async def _upload(self, file, config=None):
        self.uploads.append((file, config))
        return SimpleNamespace(name="files/abc123", state=SimpleNamespace(name="PROCESSING"), uri=None)

    async def _get(self, name):
        state = self.states.pop(0) if len(self.states) > 1 else self.states[0]
        return SimpleNamespace(
            name=name,
            state=SimpleNamespace(name=state),
            uri="https://generativelanguage.googleapis.com/v1beta/files/abc123",
            mime_type="video/mp4",
            display_name="clip.mp4",
            error={"code": 400, "message": "unsupported"} if state == "FAILED" else None,
        )

    async def _generate(self, model, contents, config):
        self.requests.append((model, contents, config))
        if self.fail_generate:
            raise RuntimeError("deadline exceeded")
        return SimpleNamespace(text=self.response_text)


async def no_sleep(_seconds):
    return None


@pytest.fixture
def fake_handle():
    return FakeDecoderHandle


@pytest.fixture
def fake_runner():
    return FakeRunner


@pytest.fixture
def fake_gemini():
    return FakeGeminiClient


@pytest.fixture
def engine():
    db_engine = make_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    yield db
    db.close()


@pytest.fixture
def thumbnail_dir(tmp_path, monkeypatch):
    path = tmp_path / "thumbnails"
    path.mkdir()
    monkeypatch.setattr(settings, "thumbnail_dir", str(path))
    return path


@pytest.fixture
def upload_dir(tmp_path, monkeypatch):
    path = tmp_path / "uploads"
    path.mkdir()
    monkeypatch.setattr(settings, "upload_dir", str(path))
    return path


@pytest.fixture
def stored_video(db_session, tmp_path):
    video_path = tmp_path / "site.mp4"
    video_path.write_bytes(b"\x00" * 128)
    video = Video(
        id="video-1",
        filename="site.mp4",
        original_filename="site.mp4",
        file_size=128,
        duration=20.0,
        mime_type="video/mp4",
        processing_status="completed",
        processed_filename="site.mp4",
        storage_path=str(video_path),
    )
    db_session.add(video)
    db_session.commit()
    return video
