"""Overlay compositing with FFmpeg filter_complex.

Layer stacking (bottom to top), each pinned to a screen corner:
1. Source video - base plane
2. Gauge       - bottom-right
3. Info panel  - bottom-left
4. Mini-map    - top-right

Overlays are applied as a chain of overlay filters in that fixed order, so
the stacking is the same whichever subset of layers is enabled. Overlay
clips run at a low frame rate; the overlay filter holds each overlay frame
until the next one arrives and repeats the last frame past the clip's end.
"""

from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import Optional

from kmloverlay.config import Settings, get_settings

# Overall job progress reserved for the encode step
ENCODE_PROGRESS_START = 20.0
ENCODE_PROGRESS_SPAN = 75.0


class LayerKind(IntEnum):
    """Overlay layers ordered from bottom to top."""

    GAUGE = 1
    INFO_PANEL = 2
    MINI_MAP = 3

    @property
    def label(self) -> str:
        return {
            LayerKind.GAUGE: "Gauge",
            LayerKind.INFO_PANEL: "InfoPanel",
            LayerKind.MINI_MAP: "MiniMap",
        }[self]


ANCHORS: dict[LayerKind, str] = {
    LayerKind.GAUGE: "bottom-right",
    LayerKind.INFO_PANEL: "bottom-left",
    LayerKind.MINI_MAP: "top-right",
}


def anchor_expression(anchor: str, margin: int) -> str:
    """FFmpeg overlay x:y expression for a screen corner."""
    x = f"main_w-overlay_w-{margin}" if anchor.endswith("right") else str(margin)
    y = f"main_h-overlay_h-{margin}" if anchor.startswith("bottom") else str(margin)
    return f"{x}:{y}"


@dataclass
class OverlayClip:
    """A rendered overlay layer on disk."""

    kind: LayerKind
    path: Path
    width: int
    height: int
    frame_count: int


@dataclass
class CompositionPlan:
    """Inputs and filter graph for the final encode."""

    inputs: list[str]
    filter_complex: Optional[str]
    video_label: str
    layers: list[LayerKind]


def build_composition(
    source_video: str,
    clips: list[OverlayClip],
    margin: int = 10,
) -> CompositionPlan:
    """Chain overlay filters over the source video in stacking order."""
    ordered = sorted(clips, key=lambda c: c.kind.value)
    inputs = [source_video] + [str(c.path) for c in ordered]

    if not ordered:
        return CompositionPlan(inputs=inputs, filter_complex=None, video_label="0:v:0", layers=[])

    filter_parts = []
    current = "0:v"
    for input_idx, clip in enumerate(ordered, start=1):
        position = anchor_expression(ANCHORS[clip.kind], margin)
        output = "vout" if input_idx == len(ordered) else f"ov{input_idx}"
        filter_parts.append(
            f"[{current}][{input_idx}:v]overlay={position}:eof_action=repeat:format=auto[{output}]"
        )
        current = output

    return CompositionPlan(
        inputs=inputs,
        filter_complex=";".join(filter_parts),
        video_label="[vout]",
        layers=[c.kind for c in ordered],
    )


def build_encode_command(
    plan: CompositionPlan,
    output_path: str,
    fps: Optional[int] = None,
    settings: Optional[Settings] = None,
) -> list[str]:
    """Build the final transcode command without executing it.

    Only the base video's audio is mapped; overlay clips carry none. The
    trailing "?" keeps sources without an audio stream working.
    """
    settings = settings or get_settings()
    cmd = [settings.ffmpeg_path, "-y", "-nostdin", "-hide_banner"]
    for path in plan.inputs:
        cmd.extend(["-i", path])

    if plan.filter_complex:
        cmd.extend(["-filter_complex", plan.filter_complex])

    cmd.extend([
        "-map", plan.video_label,
        "-map", "0:a?",
        "-c:v", settings.output_video_codec,
        "-preset", settings.output_preset,
        "-crf", str(settings.output_crf),
        "-pix_fmt", "yuv420p",
        "-c:a", settings.output_audio_codec,
        "-b:a", settings.output_audio_bitrate,
    ])
    if fps:
        cmd.extend(["-r", str(fps)])
    cmd.extend([
        "-movflags", "+faststart",
        "-progress", "pipe:1",
        "-nostats",
        output_path,
    ])
    return cmd


def parse_progress_line(line: str, duration_s: float) -> Optional[float]:
    """Encoder percent (0-100) from one `-progress` line, if it carries time.

    `out_time_us` and (despite its name) `out_time_ms` are both microseconds.
    """
    key, sep, value = line.strip().partition("=")
    if not sep or key not in ("out_time_us", "out_time_ms") or duration_s <= 0:
        return None
    try:
        time_us = int(value)
    except ValueError:
        return None
    if time_us < 0:
        return None
    return min(100.0, time_us / 1_000_000 / duration_s * 100)


def map_encode_progress(encoder_percent: float) -> float:
    """Map encoder progress onto the overall job progress range."""
    clamped = min(100.0, max(0.0, encoder_percent))
    return ENCODE_PROGRESS_START + (clamped / 100) * ENCODE_PROGRESS_SPAN
