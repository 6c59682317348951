"""Per-layer overlay frame generation and clip encoding.

Each enabled layer becomes its own short, low frame-rate clip: frames are
sampled at t = k / overlay_fps over the video duration, drawn by the pure
rasterizers and streamed as raw RGBA into an FFmpeg process that writes a
lossless QuickTime Animation clip with alpha.
"""

import asyncio
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator, Optional

from PIL import Image

from kmloverlay.config import Settings, get_settings
from kmloverlay.exceptions import NoTrackDataError, RenderFailedError
from kmloverlay.models.track import Track
from kmloverlay.render.compositor import LayerKind, OverlayClip
from kmloverlay.render.gauge import GAUGE_SIZES, GaugeState, draw_gauge
from kmloverlay.render.info_panel import (
    PANEL_WIDTH,
    InfoFields,
    InfoPanelState,
    draw_info_panel,
    panel_height,
)
from kmloverlay.render.minimap import (
    MAP_HEIGHT,
    MAP_WIDTH,
    MapProjection,
    MiniMapState,
    draw_minimap,
    project_points,
)
from kmloverlay.utils.geo import SpeedUnit, convert_speed

logger = logging.getLogger(__name__)

CancelCheck = Callable[[], bool]


@dataclass(frozen=True)
class LayerRenderOptions:
    """Resolved drawing options shared by every layer of one job."""

    speed_unit: SpeedUnit = "kmh"
    gauge_size: str = "medium"
    gauge_max_speed_kmh: float = 60.0
    info_fields: InfoFields = field(default_factory=InfoFields)
    map_width: int = MAP_WIDTH
    map_height: int = MAP_HEIGHT
    timezone_name: str = "UTC"
    font_path: Optional[str] = None


def frame_count(duration_s: float, overlay_fps: int) -> int:
    # Rounding first keeps 2.0s * 5fps from becoming 11 frames through float noise
    return max(0, math.ceil(round(duration_s * overlay_fps, 6)))


def frame_size(kind: LayerKind, options: LayerRenderOptions) -> tuple[int, int]:
    if kind == LayerKind.GAUGE:
        size = GAUGE_SIZES[options.gauge_size]
        return size, size
    if kind == LayerKind.INFO_PANEL:
        return PANEL_WIDTH, panel_height(options.info_fields)
    return options.map_width, options.map_height


def _check_usable(track: Track, kind: LayerKind) -> None:
    if kind == LayerKind.MINI_MAP:
        if not track.points:
            raise NoTrackDataError(kind.label, "track has no points")
    elif not track.has_timestamps:
        raise NoTrackDataError(kind.label, "track has no timestamps")


def render_layer(
    track: Track,
    kind: LayerKind,
    duration_s: float,
    offset_s: float,
    overlay_fps: int,
    options: LayerRenderOptions,
    cancel_check: Optional[CancelCheck] = None,
) -> Iterator[Image.Image]:
    """Frames of one overlay layer.

    Usability is checked immediately, so NoTrackDataError surfaces at call
    time rather than on the first frame. Frames themselves are produced
    lazily; `cancel_check` is consulted before each one.

    Raises:
        NoTrackDataError: The track has no samples this layer can draw.
    """
    _check_usable(track, kind)

    if kind == LayerKind.GAUGE:
        draw = _gauge_drawer(track, options)
    elif kind == LayerKind.INFO_PANEL:
        draw = _info_panel_drawer(track, options)
    else:
        draw = _minimap_drawer(track, options)

    total = frame_count(duration_s, overlay_fps)
    return _frames(track, draw, total, offset_s, overlay_fps, cancel_check)


def _frames(track, draw, total, offset_s, overlay_fps, cancel_check) -> Iterator[Image.Image]:
    for k in range(total):
        if cancel_check is not None and cancel_check():
            raise asyncio.CancelledError("Render cancelled")
        yield draw(track.track_time_ms(k / overlay_fps, offset_s))


def _gauge_drawer(track: Track, options: LayerRenderOptions):
    unit = options.speed_unit
    max_speed = convert_speed(options.gauge_max_speed_kmh, unit)
    size = GAUGE_SIZES[options.gauge_size]

    def draw(at_ms: Optional[float]) -> Image.Image:
        return draw_gauge(GaugeState(
            speed=track.speed_at(at_ms, unit),
            max_speed=max_speed,
            unit=unit,
            size=size,
            font_path=options.font_path,
        ))

    return draw


def _info_panel_drawer(track: Track, options: LayerRenderOptions):
    unit = options.speed_unit
    fields = options.info_fields

    def draw(at_ms: Optional[float]) -> Image.Image:
        return draw_info_panel(InfoPanelState(
            fields=fields,
            position=track.position_at(at_ms),
            speed=track.speed_at(at_ms, unit) if fields.show_speed else None,
            unit=unit,
            timezone_name=options.timezone_name,
            font_path=options.font_path,
        ))

    return draw


def _minimap_drawer(track: Track, options: LayerRenderOptions):
    # Projection and the full polyline are computed once for the whole clip
    projection = MapProjection.fit(track, options.map_width, options.map_height)
    track_pixels = project_points(projection, list(track.points))

    def draw(at_ms: Optional[float]) -> Image.Image:
        travelled = track.travelled_points(at_ms)
        current = track.position_at(at_ms)
        marker = projection.project(current.lat, current.lon) if current else None
        return draw_minimap(MiniMapState(
            track_pixels=track_pixels,
            travelled_pixels=project_points(projection, travelled),
            marker=marker,
            width=options.map_width,
            height=options.map_height,
        ))

    return draw


def build_clip_command(
    output_path: str,
    width: int,
    height: int,
    overlay_fps: int,
    settings: Optional[Settings] = None,
) -> list[str]:
    settings = settings or get_settings()
    return [
        settings.ffmpeg_path,
        "-y",
        "-loglevel", "error",
        "-nostats",
        "-f", "rawvideo",
        "-pix_fmt", "rgba",
        "-s", f"{width}x{height}",
        "-r", str(overlay_fps),
        "-i", "-",
        "-c:v", "qtrle",
        "-pix_fmt", "argb",
        output_path,
    ]


async def encode_clip(
    frames: Iterator[Image.Image],
    output_path: str,
    size: tuple[int, int],
    overlay_fps: int,
    settings: Optional[Settings] = None,
    on_frame: Optional[Callable[[int], None]] = None,
) -> int:
    """Stream frames into a lossless alpha clip. Returns the frame count.

    Frames are drawn in a worker thread so the event loop keeps serving other
    layers and jobs. On cancellation the encoder is killed before the
    CancelledError propagates.

    Raises:
        RenderFailedError: The encoder could not be started or exited non-zero.
    """
    width, height = size
    cmd = build_clip_command(output_path, width, height, overlay_fps, settings)
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise RenderFailedError(f"Could not start FFmpeg: {e}") from e

    stderr_task = asyncio.create_task(proc.stderr.read())
    written = 0
    try:
        while True:
            frame = await asyncio.to_thread(next, frames, None)
            if frame is None:
                break
            if frame.size != (width, height):
                frame = frame.resize((width, height))
            try:
                proc.stdin.write(frame.convert("RGBA").tobytes())
                await proc.stdin.drain()
            except (BrokenPipeError, ConnectionResetError):
                # Encoder died early; its exit code and stderr explain why
                break
            written += 1
            if on_frame is not None:
                on_frame(written)

        proc.stdin.close()
        stderr_output = await stderr_task
        await proc.wait()
    except BaseException:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        stderr_task.cancel()
        raise

    if proc.returncode != 0:
        stderr_text = stderr_output.decode("utf-8", errors="replace").strip()
        logger.error(f"[RENDER] Overlay clip encode failed ({proc.returncode}): {stderr_text}")
        raise RenderFailedError(f"Overlay clip encode failed: {stderr_text or proc.returncode}")

    return written


async def render_overlay_clip(
    track: Track,
    kind: LayerKind,
    work_dir: str,
    duration_s: float,
    offset_s: float,
    overlay_fps: int,
    options: LayerRenderOptions,
    settings: Optional[Settings] = None,
    cancel_check: Optional[CancelCheck] = None,
    on_frame: Optional[Callable[[int, int], None]] = None,
) -> OverlayClip:
    """Render one layer into `<work_dir>/<layer>.mov`.

    `on_frame(done, total)` is called after every encoded frame.
    """
    frames = render_layer(track, kind, duration_s, offset_s, overlay_fps, options, cancel_check)
    width, height = frame_size(kind, options)
    total = frame_count(duration_s, overlay_fps)
    output_path = str(Path(work_dir) / f"{kind.label.lower()}.mov")

    logger.info(
        f"[RENDER] {kind.label}: {total} frames at {overlay_fps}fps, {width}x{height} -> {output_path}"
    )

    callback = (lambda done: on_frame(done, total)) if on_frame else None
    written = await encode_clip(frames, output_path, (width, height), overlay_fps, settings, callback)
    return OverlayClip(kind=kind, path=Path(output_path), width=width, height=height, frame_count=written)
