"""Miniature trace map.

The projection is derived once from the whole track's bounding box and shared
by every frame, so the map itself never moves; only the travelled sub-path and
the position marker change over time.
"""

import math
from dataclasses import dataclass
from typing import Optional

from PIL import Image, ImageDraw

from kmloverlay.exceptions import NoTrackDataError
from kmloverlay.models.track import Track, TrackPoint

MAP_WIDTH = 300
MAP_HEIGHT = 200
MAP_PADDING = 10
GRID_SIZE = 20

BACKGROUND = (230, 235, 240, 170)
GRID_COLOR = (200, 205, 210, 110)
BORDER_COLOR = (80, 80, 80, 204)
TRACK_COLOR = (100, 100, 100, 230)
TRAVELLED_COLOR = (66, 135, 245, 255)
MARKER_COLOR = (255, 50, 50, 255)


@dataclass(frozen=True)
class MapProjection:
    """Equirectangular lat/lon -> pixel mapping fitted to a bounding box.

    Longitude is scaled by cos(mid-latitude) so the trace keeps its real
    aspect ratio; the fitted trace is centred in the drawable area.
    """

    min_lat: float
    min_lon: float
    scale: float
    lon_factor: float
    offset_x: float
    offset_y: float
    height: int

    @classmethod
    def fit(cls, track: Track, width: int = MAP_WIDTH, height: int = MAP_HEIGHT,
            padding: int = MAP_PADDING) -> "MapProjection":
        if not track.points:
            raise NoTrackDataError("MiniMap", "track has no points")

        bounds = track.bounds()
        mid_lat, _ = bounds.center
        lon_factor = math.cos(math.radians(mid_lat))

        span_x = bounds.lon_span * lon_factor
        span_y = bounds.lat_span
        inner_w = max(width - 2 * padding, 1)
        inner_h = max(height - 2 * padding, 1)

        candidates = []
        if span_x > 0:
            candidates.append(inner_w / span_x)
        if span_y > 0:
            candidates.append(inner_h / span_y)
        scale = min(candidates) if candidates else 0.0

        return cls(
            min_lat=bounds.min_lat,
            min_lon=bounds.min_lon,
            scale=scale,
            lon_factor=lon_factor,
            offset_x=padding + (inner_w - span_x * scale) / 2,
            offset_y=padding + (inner_h - span_y * scale) / 2,
            height=height,
        )

    def project(self, lat: float, lon: float) -> tuple[float, float]:
        x = self.offset_x + (lon - self.min_lon) * self.lon_factor * self.scale
        y = self.height - (self.offset_y + (lat - self.min_lat) * self.scale)
        return x, y


@dataclass(frozen=True)
class MiniMapState:
    # Pixel polyline of the whole track, projected once
    track_pixels: tuple[tuple[float, float], ...]
    travelled_pixels: tuple[tuple[float, float], ...] = ()
    marker: Optional[tuple[float, float]] = None
    width: int = MAP_WIDTH
    height: int = MAP_HEIGHT


def project_points(projection: MapProjection, points: list[TrackPoint]) -> tuple[tuple[float, float], ...]:
    return tuple(projection.project(p.lat, p.lon) for p in points)


def _draw_path(draw: ImageDraw.ImageDraw, pixels, color, width: int) -> None:
    if len(pixels) >= 2:
        draw.line(list(pixels), fill=color, width=width, joint="curve")
    elif len(pixels) == 1:
        x, y = pixels[0]
        half = width / 2
        draw.ellipse((x - half, y - half, x + half, y + half), fill=color)


def draw_minimap(state: MiniMapState) -> Image.Image:
    width, height = state.width, state.height
    img = Image.new("RGBA", (width, height), (0, 0, 0, 0))
    draw = ImageDraw.Draw(img)

    draw.rectangle((0, 0, width - 1, height - 1), fill=BACKGROUND)
    for x in range(0, width, GRID_SIZE):
        draw.line([(x, 0), (x, height)], fill=GRID_COLOR, width=1)
    for y in range(0, height, GRID_SIZE):
        draw.line([(0, y), (width, y)], fill=GRID_COLOR, width=1)
    draw.rectangle((1, 1, width - 2, height - 2), outline=BORDER_COLOR, width=2)

    _draw_path(draw, state.track_pixels, TRACK_COLOR, 3)
    _draw_path(draw, state.travelled_pixels, TRAVELLED_COLOR, 4)

    if state.marker is not None:
        x, y = state.marker
        draw.ellipse((x - 5, y - 5, x + 5, y + 5), fill=MARKER_COLOR,
                     outline=(255, 255, 255, 255), width=2)
    return img
