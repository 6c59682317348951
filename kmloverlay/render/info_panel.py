"""Text panel with speed, altitude, coordinates and clock time.

The panel height depends only on which fields are enabled, never on the data
of the current sample: a field whose value is missing leaves its line blank
so the layout stays stable from frame to frame.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from PIL import Image, ImageDraw

from kmloverlay.models.track import TrackPoint
from kmloverlay.render.fonts import load_font
from kmloverlay.utils.geo import UNIT_LABELS, SpeedUnit

PANEL_WIDTH = 280
PADDING = 12
LINE_HEIGHT = 22
FONT_SIZE = 14


@dataclass(frozen=True)
class InfoFields:
    show_speed: bool = False
    show_altitude: bool = False
    show_coordinates: bool = False
    show_time: bool = False

    @property
    def line_count(self) -> int:
        count = 0
        if self.show_speed:
            count += 1
        if self.show_altitude:
            count += 1
        if self.show_coordinates:
            count += 2  # lat + lon on separate lines
        if self.show_time:
            count += 1
        return count

    @property
    def any_enabled(self) -> bool:
        return self.line_count > 0


@dataclass(frozen=True)
class InfoPanelState:
    fields: InfoFields
    position: Optional[TrackPoint] = None
    speed: Optional[float] = None
    unit: SpeedUnit = "kmh"
    timezone_name: str = "UTC"
    width: int = PANEL_WIDTH
    font_path: Optional[str] = None


def panel_height(fields: InfoFields) -> int:
    if not fields.any_enabled:
        return 0
    return PADDING * 2 + fields.line_count * LINE_HEIGHT


def format_clock(timestamp_ms: int, timezone_name: str = "UTC") -> str:
    tz = timezone.utc if timezone_name.upper() == "UTC" else ZoneInfo(timezone_name)
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=tz).strftime("%H:%M:%S")


def panel_lines(state: InfoPanelState) -> list[Optional[str]]:
    """Text of each panel line in order; None marks a blank line."""
    fields = state.fields
    point = state.position
    lines: list[Optional[str]] = []

    if fields.show_speed:
        if state.speed is None:
            lines.append(None)
        else:
            lines.append(f"Speed: {state.speed:.1f} {UNIT_LABELS[state.unit]}")

    if fields.show_altitude:
        if point is None or point.altitude is None:
            lines.append(None)
        else:
            lines.append(f"Altitude: {round(point.altitude)} m")

    if fields.show_coordinates:
        if point is None:
            lines.extend([None, None])
        else:
            lines.append(f"Lat: {point.lat:.6f}°")
            lines.append(f"Lon: {point.lon:.6f}°")

    if fields.show_time:
        if point is None or point.timestamp_ms is None:
            lines.append(None)
        else:
            lines.append(f"Time: {format_clock(point.timestamp_ms, state.timezone_name)}")

    return lines


def draw_info_panel(state: InfoPanelState) -> Image.Image:
    height = panel_height(state.fields)
    img = Image.new("RGBA", (state.width, height), (0, 0, 0, 0))
    if height == 0:
        return img

    draw = ImageDraw.Draw(img)
    font = load_font(FONT_SIZE, font_path=state.font_path)

    y = PADDING
    for line in panel_lines(state):
        if line is not None:
            # Dark outline keeps white text readable over bright footage
            draw.text(
                (PADDING, y),
                line,
                fill=(255, 255, 255, 255),
                font=font,
                stroke_width=2,
                stroke_fill=(0, 0, 0, 160),
            )
        y += LINE_HEIGHT
    return img
