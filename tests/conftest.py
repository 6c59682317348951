"""
Pytest fixtures for kmloverlay tests.

Subprocess behaviour (progress parsing, kill on cancel, exit codes) is tested
against small stand-ins for ffmpeg/ffprobe written into a temporary directory
and controlled through environment variables:

- FAKE_FFPROBE_DURATION / FAKE_FFPROBE_EXIT / FAKE_FFPROBE_DELAY / FAKE_FFPROBE_PIDFILE
- FAKE_FFMPEG_STEPS / FAKE_FFMPEG_DELAY / FAKE_FFMPEG_EXIT
- FAKE_FFMPEG_PIDFILE / FAKE_FFMPEG_CMDFILE / FAKE_FFMPEG_CLIP_LOG
- FAKE_FFMPEG_CLIP_FAIL (basename of the one overlay clip that fails)

Tests that need the real binaries are marked with @pytest.mark.requires_ffmpeg
and skipped when ffmpeg is not on PATH.
"""

import shutil
import stat
import sys
from dataclasses import dataclass
from pathlib import Path

import pytest

from kmloverlay.config import Settings

ffmpeg_available = shutil.which("ffmpeg") is not None and shutil.which("ffprobe") is not None


def pytest_collection_modifyitems(config, items):
    if ffmpeg_available:
        return
    skip = pytest.mark.skip(reason="ffmpeg/ffprobe not available on PATH")
    for item in items:
        if "requires_ffmpeg" in item.keywords:
            item.add_marker(skip)


FAKE_FFMPEG = '''
import json
import os
import sys
import time

args = sys.argv[1:]
out = args[-1]

if "-i" in args and args[args.index("-i") + 1] == "-":
    # Overlay clip writer: swallow the raw frames
    data = sys.stdin.buffer.read()
    with open(out, "wb") as f:
        f.write(b"clip")
    log = os.environ.get("FAKE_FFMPEG_CLIP_LOG")
    if log:
        with open(log, "a") as f:
            f.write(f"{os.path.basename(out)} {len(data)}\\n")
    if os.path.basename(out) == os.environ.get("FAKE_FFMPEG_CLIP_FAIL"):
        print("Error while encoding clip", file=sys.stderr, flush=True)
        sys.exit(1)
    sys.exit(int(os.environ.get("FAKE_FFMPEG_CLIP_EXIT", "0")))

pidfile = os.environ.get("FAKE_FFMPEG_PIDFILE")
if pidfile:
    with open(pidfile, "w") as f:
        f.write(str(os.getpid()))
cmdfile = os.environ.get("FAKE_FFMPEG_CMDFILE")
if cmdfile:
    with open(cmdfile, "w") as f:
        json.dump(args, f)

with open(out, "wb") as f:
    f.write(b"partial")

steps = int(os.environ.get("FAKE_FFMPEG_STEPS", "5"))
delay = float(os.environ.get("FAKE_FFMPEG_DELAY", "0.01"))
for i in range(1, steps + 1):
    print(f"out_time_us={i * 1000000}", flush=True)
    print(f"frame={i * 30} fps=30", file=sys.stderr, flush=True)
    time.sleep(delay)
print("progress=end", flush=True)

code = int(os.environ.get("FAKE_FFMPEG_EXIT", "0"))
if code:
    print("Conversion failed!", file=sys.stderr, flush=True)
sys.exit(code)
'''

FAKE_FFPROBE = '''
import json
import os
import sys
import time

pidfile = os.environ.get("FAKE_FFPROBE_PIDFILE")
if pidfile:
    with open(pidfile, "w") as f:
        f.write(str(os.getpid()))
time.sleep(float(os.environ.get("FAKE_FFPROBE_DELAY", "0")))

code = int(os.environ.get("FAKE_FFPROBE_EXIT", "0"))
if code:
    print("Invalid data found when processing input", file=sys.stderr)
    sys.exit(code)

print(json.dumps({
    "format": {"duration": os.environ.get("FAKE_FFPROBE_DURATION", "5.0")},
    "streams": [
        {"codec_type": "video", "codec_name": "h264", "width": 640, "height": 360, "r_frame_rate": "30/1"},
        {"codec_type": "audio", "codec_name": "aac"},
    ],
}))
'''


def _write_tool(directory: Path, name: str, source: str) -> Path:
    script = directory / f"{name}.py"
    script.write_text(source)
    wrapper = directory / name
    # exec keeps the tool a single process so killing it leaves nothing behind
    wrapper.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{script}" "$@"\n')
    wrapper.chmod(wrapper.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return wrapper


@dataclass
class FakeTools:
    ffmpeg: Path
    ffprobe: Path
    work_dir: Path
    pidfile: Path
    cmdfile: Path
    clip_log: Path
    settings: Settings


@pytest.fixture
def temp_output_dir(tmp_path) -> Path:
    """Temporary directory for test outputs."""
    out = tmp_path / "out"
    out.mkdir()
    return out


@pytest.fixture
def fake_tools(tmp_path, monkeypatch) -> FakeTools:
    """ffmpeg/ffprobe stand-ins wired into a Settings instance."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    work_dir = tmp_path / "work"
    work_dir.mkdir()

    ffmpeg = _write_tool(bin_dir, "ffmpeg", FAKE_FFMPEG)
    ffprobe = _write_tool(bin_dir, "ffprobe", FAKE_FFPROBE)

    pidfile = tmp_path / "ffmpeg.pid"
    cmdfile = tmp_path / "ffmpeg.cmd.json"
    clip_log = tmp_path / "clips.log"
    monkeypatch.setenv("FAKE_FFMPEG_PIDFILE", str(pidfile))
    monkeypatch.setenv("FAKE_FFMPEG_CMDFILE", str(cmdfile))
    monkeypatch.setenv("FAKE_FFMPEG_CLIP_LOG", str(clip_log))

    settings = Settings(
        _env_file=None,
        ffmpeg_path=str(ffmpeg),
        ffprobe_path=str(ffprobe),
        temp_dir=str(work_dir),
        overlay_fps=5,
    )
    return FakeTools(
        ffmpeg=ffmpeg,
        ffprobe=ffprobe,
        work_dir=work_dir,
        pidfile=pidfile,
        cmdfile=cmdfile,
        clip_log=clip_log,
        settings=settings,
    )


def build_kml(
    coords: list[tuple[float, float, float | None]],
    whens: list[str] | None = None,
    gx_track: bool = False,
) -> bytes:
    """KML document with the given (lat, lon, alt) points and <when> values."""
    whens = whens or []
    when_xml = "".join(f"<when>{w}</when>" for w in whens)
    if gx_track:
        coord_xml = "".join(
            f"<gx:coord>{lon} {lat}{'' if alt is None else f' {alt}'}</gx:coord>"
            for lat, lon, alt in coords
        )
        body = f"<gx:Track>{when_xml}{coord_xml}</gx:Track>"
    else:
        tuples = " ".join(
            f"{lon},{lat}" + ("" if alt is None else f",{alt}") for lat, lon, alt in coords
        )
        body = f"{when_xml}<LineString><coordinates>{tuples}</coordinates></LineString>"
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<kml xmlns="http://www.opengis.net/kml/2.2" xmlns:gx="http://www.google.com/kml/ext/2.2">'
        f"<Document><Placemark>{body}</Placemark></Document></kml>"
    ).encode("utf-8")


@pytest.fixture
def kml_builder():
    return build_kml


@pytest.fixture
def sample_kml() -> bytes:
    """Ten-second straight track heading east, one sample every 2 seconds."""
    coords = [(48.0, 2.0 + i * 0.002, 100.0 + i) for i in range(6)]
    whens = [f"2024-05-01T10:00:{i * 2:02d}Z" for i in range(6)]
    return build_kml(coords, whens, gx_track=True)


@pytest.fixture
def source_video(tmp_path) -> Path:
    """Placeholder source video for runs against the fake tools."""
    path = tmp_path / "input.mp4"
    path.write_bytes(b"not really a video")
    return path
