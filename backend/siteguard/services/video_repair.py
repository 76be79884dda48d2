from __future__ import annotations

import json
import logging
import os
import subprocess
from dataclasses import asdict, dataclass, field
from fractions import Fraction
from pathlib import Path
from typing import Any, Callable

from siteguard.core.exceptions import MissingDependencyError, ProbeError, RepairError

logger = logging.getLogger(__name__)

MIN_SAMPLE_RATE_HZ = 8000
REPAIR_SAMPLE_RATE_HZ = 44100
REPAIR_CHANNELS = 2
REPAIR_AUDIO_CODEC = "aac"

Runner = Callable[..., subprocess.CompletedProcess]


@dataclass
class AudioDescriptor:
    channels: int
    sample_rate_hz: int
    codec: str | None
    duration_seconds: float = 0.0

    @property
    def issues(self) -> list[str]:
        found: list[str] = []
        if not self.channels:
            found.append("Invalid channel count (0 channels)")
        if self.sample_rate_hz < MIN_SAMPLE_RATE_HZ:
            found.append(f"Low sample rate ({self.sample_rate_hz}Hz < 8kHz)")
        if not self.codec:
            found.append("Missing audio codec")
        return found


@dataclass
class VideoStreamInfo:
    codec: str | None
    width: int
    height: int
    fps: float


@dataclass
class ProbeResult:
    duration_seconds: float
    size_bytes: int
    bitrate: int
    audio: AudioDescriptor
    video: VideoStreamInfo | None = None
    has_audio_stream: bool = False

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["audio"]["issues"] = self.audio.issues
        return payload


@dataclass
class RepairOutcome:
    input_path: str
    output_path: str
    repaired: bool
    reencoded: bool
    issues_before: list[str] = field(default_factory=list)
    audio_after: AudioDescriptor | None = None


def needs_repair(descriptor: AudioDescriptor) -> bool:
    return bool(descriptor.issues)


def _to_int(value: Any, default: int = 0) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def _to_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _frame_rate(value: Any) -> float:
    try:
        return float(Fraction(str(value)))
    except (ValueError, ZeroDivisionError):
        return 0.0


class VideoIntegrityRepairer:
    """Inspects a video's audio stream and rewrites the container when it is unusable.

    The AI service rejects uploads whose audio track is missing, has no channels
    or an implausibly low sample rate. Repair muxes a silent stereo 44.1kHz AAC
    track against the untouched video stream, or re-encodes the video to H.264
    when ``force_reencode`` is set.
    """

    def __init__(self, ffmpeg_bin: str = "ffmpeg", ffprobe_bin: str = "ffprobe", runner: Runner | None = None) -> None:
        self.ffmpeg_bin = ffmpeg_bin
        self.ffprobe_bin = ffprobe_bin
        self._run = runner or subprocess.run

    def _execute(self, cmd: list[str]) -> subprocess.CompletedProcess:
        try:
            return self._run(cmd, capture_output=True, text=True, check=True)
        except FileNotFoundError as exc:
            raise MissingDependencyError(cmd[0]) from exc

    def probe(self, path: str | Path) -> ProbeResult:
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Video file not found: {path}")

        cmd = [
            self.ffprobe_bin,
            "-v",
            "error",
            "-print_format",
            "json",
            "-show_format",
            "-show_streams",
            str(path),
        ]
        try:
            result = self._execute(cmd)
            info = json.loads(result.stdout or "{}")
        except subprocess.CalledProcessError as exc:
            raise ProbeError(f"FFprobe error: {exc.stderr}") from exc
        except json.JSONDecodeError as exc:
            raise ProbeError(f"Error parsing FFprobe output: {exc}") from exc

        streams = info.get("streams", [])
        fmt = info.get("format", {})
        duration = _to_float(fmt.get("duration"))

        audio_stream = next((s for s in streams if s.get("codec_type") == "audio"), None)
        video_stream = next((s for s in streams if s.get("codec_type") == "video"), None)

        if audio_stream is None:
            audio = AudioDescriptor(channels=0, sample_rate_hz=0, codec=None, duration_seconds=duration)
        else:
            audio = AudioDescriptor(
                channels=_to_int(audio_stream.get("channels")),
                sample_rate_hz=_to_int(audio_stream.get("sample_rate")),
                codec=audio_stream.get("codec_name") or None,
                duration_seconds=duration,
            )

        video = None
        if video_stream is not None:
            video = VideoStreamInfo(
                codec=video_stream.get("codec_name"),
                width=_to_int(video_stream.get("width")),
                height=_to_int(video_stream.get("height")),
                fps=_frame_rate(video_stream.get("r_frame_rate", "0/1")),
            )

        return ProbeResult(
            duration_seconds=duration,
            size_bytes=_to_int(fmt.get("size")),
            bitrate=_to_int(fmt.get("bit_rate")),
            audio=audio,
            video=video,
            has_audio_stream=audio_stream is not None,
        )

    def inspect(self, path: str | Path) -> AudioDescriptor:
        return self.probe(path).audio

    needs_repair = staticmethod(needs_repair)

    def _repair_command(self, input_path: Path, output_path: Path, duration: float, force_reencode: bool) -> list[str]:
        cmd = [self.ffmpeg_bin, "-y", "-v", "error", "-i", str(input_path), "-f", "lavfi"]
        if duration > 0:
            cmd.extend(["-t", f"{duration:.3f}"])
        cmd.extend(
            [
                "-i",
                f"anullsrc=channel_layout=stereo:sample_rate={REPAIR_SAMPLE_RATE_HZ}",
                "-map",
                "0:v:0",
                "-map",
                "1:a:0",
            ]
        )
        if force_reencode:
            cmd.extend(["-c:v", "libx264", "-preset", "veryfast", "-pix_fmt", "yuv420p"])
        else:
            cmd.extend(["-c:v", "copy"])
        cmd.extend(
            [
                "-c:a",
                REPAIR_AUDIO_CODEC,
                "-b:a",
                "128k",
                "-ar",
                str(REPAIR_SAMPLE_RATE_HZ),
                "-ac",
                str(REPAIR_CHANNELS),
                "-shortest",
                "-movflags",
                "+faststart",
                str(output_path),
            ]
        )
        return cmd

    def repair(
        self,
        input_path: str | Path,
        output_path: str | Path,
        duration_seconds: float | None = None,
        force_reencode: bool = False,
    ) -> AudioDescriptor:
        """Write a repaired copy of ``input_path`` to ``output_path`` and verify it."""
        input_path = Path(input_path)
        output_path = Path(output_path)
        if input_path.resolve() == output_path.resolve():
            raise ValueError("Repair output must differ from the input file")
        if not input_path.exists():
            raise FileNotFoundError(f"Video file not found: {input_path}")

        if not duration_seconds:
            duration_seconds = self.probe(input_path).duration_seconds

        output_path.parent.mkdir(parents=True, exist_ok=True)
        temp_output = output_path.with_name(f"{output_path.stem}.tmp{output_path.suffix}")
        cmd = self._repair_command(input_path, temp_output, float(duration_seconds or 0.0), force_reencode)
        logger.info("Repairing %s -> %s (reencode=%s)", input_path.name, output_path.name, force_reencode)

        try:
            self._execute(cmd)
        except subprocess.CalledProcessError as exc:
            temp_output.unlink(missing_ok=True)
            logger.error("ffmpeg failed for %s: %s", input_path.name, exc.stderr)
            raise RepairError(f"Video processing failed: {exc.stderr or exc}") from exc

        if not temp_output.exists():
            raise RepairError(f"ffmpeg did not produce an output file for {input_path.name}")

        # The destination is only replaced once the new file passes inspection.
        try:
            after = self.inspect(temp_output)
        except ProbeError as exc:
            temp_output.unlink(missing_ok=True)
            raise RepairError(f"Repaired video could not be inspected: {exc}") from exc
        if needs_repair(after):
            temp_output.unlink(missing_ok=True)
            logger.error("Repaired file %s still has audio issues: %s", output_path.name, after.issues)
            raise RepairError(f"Repaired video still fails inspection: {'; '.join(after.issues)}")

        os.replace(temp_output, output_path)
        return after

    def ensure_compatible(
        self,
        input_path: str | Path,
        output_path: str | Path,
        force: bool = False,
    ) -> RepairOutcome:
        """Repair only when inspection finds issues, unless ``force`` normalizes unconditionally."""
        probe = self.probe(input_path)
        issues = probe.audio.issues
        if not issues and not force:
            return RepairOutcome(
                input_path=str(input_path),
                output_path=str(input_path),
                repaired=False,
                reencoded=False,
                audio_after=probe.audio,
            )

        after = self.repair(input_path, output_path, probe.duration_seconds, force_reencode=force)
        return RepairOutcome(
            input_path=str(input_path),
            output_path=str(output_path),
            repaired=True,
            reencoded=force,
            issues_before=issues,
            audio_after=after,
        )
