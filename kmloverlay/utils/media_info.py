"""Media file information utilities using FFprobe."""

import asyncio
import json
import subprocess
from dataclasses import dataclass
from typing import Optional

from kmloverlay.config import Settings, get_settings
from kmloverlay.exceptions import ProbeFailedError


@dataclass
class MediaInfo:
    """Media file information."""

    duration_ms: int | None = None
    width: int | None = None
    height: int | None = None
    fps: float | None = None
    video_codec: str | None = None
    audio_codec: str | None = None
    has_video: bool = False
    has_audio: bool = False

    @property
    def duration_s(self) -> float | None:
        if self.duration_ms is None:
            return None
        return self.duration_ms / 1000


def _ffprobe_command(file_path: str, *args, settings: Optional[Settings] = None) -> list[str]:
    settings = settings or get_settings()
    return [
        settings.ffprobe_path,
        "-v", "quiet",
        "-print_format", "json",
        *args,
        file_path,
    ]


def _load_probe_output(file_path: str, returncode: int, stdout: str, stderr: str) -> dict:
    if returncode != 0:
        raise ProbeFailedError(f"ffprobe failed on {file_path}: {stderr.strip()}")
    try:
        return json.loads(stdout)
    except json.JSONDecodeError as e:
        raise ProbeFailedError(f"Failed to parse ffprobe output: {e}") from e


def _run_ffprobe(file_path: str, *args, settings: Optional[Settings] = None) -> dict:
    """Run ffprobe and return parsed JSON."""
    cmd = _ffprobe_command(file_path, *args, settings=settings)
    try:
        result = subprocess.run(cmd, capture_output=True, text=True)
    except OSError as e:
        raise ProbeFailedError(f"Could not run ffprobe: {e}") from e
    return _load_probe_output(file_path, result.returncode, result.stdout, result.stderr)


def _parse_frame_rate(raw: str) -> float | None:
    if "/" in raw:
        num, den = raw.split("/", 1)
        try:
            if int(den) > 0:
                return int(num) / int(den)
        except ValueError:
            return None
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def get_media_duration(file_path: str, settings: Optional[Settings] = None) -> int:
    """
    Get media file duration in milliseconds.

    Raises:
        ProbeFailedError: If ffprobe fails or reports no positive duration
    """
    data = _run_ffprobe(file_path, "-show_format", settings=settings)
    format_info = data.get("format", {})

    if "duration" not in format_info:
        raise ProbeFailedError(f"Duration not found in: {file_path}")

    try:
        duration_ms = int(float(format_info["duration"]) * 1000)
    except (TypeError, ValueError) as e:
        raise ProbeFailedError(f"Invalid duration in: {file_path}") from e
    if duration_ms <= 0:
        raise ProbeFailedError(f"Video has no duration: {file_path}")
    return duration_ms


def has_audio_track(file_path: str, settings: Optional[Settings] = None) -> bool:
    """Check if media file has an audio track."""
    try:
        data = _run_ffprobe(file_path, "-show_streams", "-select_streams", "a", settings=settings)
    except ProbeFailedError:
        return False
    return len(data.get("streams", [])) > 0


def get_media_info(file_path: str, settings: Optional[Settings] = None) -> MediaInfo:
    """
    Get duration, dimensions and codecs of a media file.

    Raises:
        ProbeFailedError: If ffprobe fails
    """
    data = _run_ffprobe(file_path, "-show_format", "-show_streams", settings=settings)
    return _media_info_from_probe(data)


async def probe_media_info(file_path: str, settings: Optional[Settings] = None) -> MediaInfo:
    """
    Async variant of get_media_info().

    ffprobe runs as an asyncio subprocess and is killed if the calling task
    is cancelled.

    Raises:
        ProbeFailedError: If ffprobe fails
    """
    cmd = _ffprobe_command(file_path, "-show_format", "-show_streams", settings=settings)
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise ProbeFailedError(f"Could not run ffprobe: {e}") from e

    try:
        stdout, stderr = await proc.communicate()
    except BaseException:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise

    data = _load_probe_output(
        file_path,
        proc.returncode,
        stdout.decode("utf-8", errors="replace"),
        stderr.decode("utf-8", errors="replace"),
    )
    return _media_info_from_probe(data)


def _media_info_from_probe(data: dict) -> MediaInfo:
    info = MediaInfo()

    format_info = data.get("format", {})
    if "duration" in format_info:
        try:
            info.duration_ms = int(float(format_info["duration"]) * 1000)
        except (TypeError, ValueError):
            info.duration_ms = None

    for stream in data.get("streams", []):
        codec_type = stream.get("codec_type")

        if codec_type == "video" and not info.has_video:
            info.has_video = True
            info.width = stream.get("width")
            info.height = stream.get("height")
            info.video_codec = stream.get("codec_name")
            info.fps = _parse_frame_rate(stream.get("r_frame_rate", "0/1"))

        elif codec_type == "audio" and not info.has_audio:
            info.has_audio = True
            info.audio_codec = stream.get("codec_name")

    return info
