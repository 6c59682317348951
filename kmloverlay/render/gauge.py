"""Speedometer gauge rasterizer.

The needle sweeps a fixed 240 degree arc: angles are measured clockwise from
straight up, so -120 is lower-left (zero speed) and +120 is lower-right (full
deflection). Speeds above the gauge maximum pin the needle at full deflection.
"""

import math
from dataclasses import dataclass
from typing import Literal, Optional

from PIL import Image, ImageDraw

from kmloverlay.render.fonts import load_font
from kmloverlay.utils.geo import UNIT_LABELS, SpeedUnit

START_ANGLE = -120.0
END_ANGLE = 120.0
TICK_COUNT = 7

GAUGE_SIZES: dict[str, int] = {
    "small": 120,
    "medium": 150,
    "large": 200,
}

GaugeSize = Literal["small", "medium", "large"]


@dataclass(frozen=True)
class GaugeState:
    """Everything needed to draw one gauge frame.

    speed and max_speed are both expressed in `unit`.
    """

    speed: Optional[float]
    max_speed: float = 60.0
    unit: SpeedUnit = "kmh"
    size: int = GAUGE_SIZES["medium"]
    font_path: Optional[str] = None


def needle_angle(speed: Optional[float], max_speed: float) -> float:
    """Needle angle in degrees for a speed, clamped to the gauge arc."""
    fraction = 0.0 if speed is None else min(1.0, max(0.0, speed / max_speed))
    return START_ANGLE + (END_ANGLE - START_ANGLE) * fraction


def tick_labels(max_speed: float, count: int = TICK_COUNT) -> list[int]:
    return [round(max_speed * i / (count - 1)) for i in range(count)]


def polar(cx: float, cy: float, radius: float, angle_deg: float) -> tuple[float, float]:
    """Point at `radius` from the centre along a gauge angle."""
    rad = math.radians(angle_deg)
    return cx + radius * math.sin(rad), cy - radius * math.cos(rad)


def draw_gauge(state: GaugeState) -> Image.Image:
    size = state.size
    img = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    draw = ImageDraw.Draw(img)

    cx = cy = size / 2
    r = size * 0.42

    # Dial
    draw.ellipse(
        (cx - r, cy - r, cx + r, cy + r),
        fill=(20, 20, 20, 128),
        outline=(200, 200, 200, 255),
        width=2,
    )

    label_font = load_font(max(10, int(size * 0.08)), font_path=state.font_path)
    value_font = load_font(max(14, int(size * 0.14)), bold=True, font_path=state.font_path)

    tick_width = max(1, round(size / 70))
    for i, label in enumerate(tick_labels(state.max_speed)):
        angle = START_ANGLE + (END_ANGLE - START_ANGLE) * i / (TICK_COUNT - 1)
        draw.line(
            [polar(cx, cy, r - 8, angle), polar(cx, cy, r - 2, angle)],
            fill=(220, 220, 220, 255),
            width=tick_width,
        )
        draw.text(
            polar(cx, cy, r - 20, angle),
            str(label),
            fill=(255, 255, 255, 255),
            font=label_font,
            anchor="mm",
        )

    # Needle
    tip = polar(cx, cy, r * 0.85, needle_angle(state.speed, state.max_speed))
    needle_width = max(3, round(size / 30))
    draw.line([(cx, cy), tip], fill=(255, 50, 50, 255), width=needle_width)
    draw.ellipse((tip[0] - needle_width / 2, tip[1] - needle_width / 2,
                  tip[0] + needle_width / 2, tip[1] + needle_width / 2),
                 fill=(255, 50, 50, 255))
    draw.ellipse((cx - 5, cy - 5, cx + 5, cy + 5), fill=(255, 255, 255, 255))

    # Numeric readout sits in the gap at the bottom of the arc
    value = 0 if state.speed is None else max(0.0, state.speed)
    draw.text(
        (cx, cy + r * 0.5),
        str(round(value)),
        fill=(255, 255, 255, 255),
        font=value_font,
        anchor="mm",
    )
    draw.text(
        (cx, cy + r * 0.75),
        UNIT_LABELS[state.unit],
        fill=(255, 255, 255, 255),
        font=label_font,
        anchor="mm",
    )
    return img
