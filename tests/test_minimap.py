"""Tests for the mini-map projection and rasterizer."""

import pytest

from kmloverlay.exceptions import NoTrackDataError
from kmloverlay.models.track import Track, TrackPoint
from kmloverlay.render.minimap import (
    MAP_HEIGHT,
    MAP_PADDING,
    MAP_WIDTH,
    MARKER_COLOR,
    MapProjection,
    MiniMapState,
    draw_minimap,
    project_points,
)


def _square_track() -> Track:
    return Track.from_points([
        TrackPoint(0.0, 0.0, timestamp_ms=0),
        TrackPoint(0.0, 1.0, timestamp_ms=1000),
        TrackPoint(1.0, 1.0, timestamp_ms=2000),
        TrackPoint(1.0, 0.0, timestamp_ms=3000),
    ])


class TestMapProjection:
    """Tests for the lat/lon -> pixel fit."""

    def test_fits_inside_padding(self):
        track = _square_track()
        projection = MapProjection.fit(track)
        for x, y in project_points(projection, list(track.points)):
            assert MAP_PADDING - 1e-6 <= x <= MAP_WIDTH - MAP_PADDING + 1e-6
            assert MAP_PADDING - 1e-6 <= y <= MAP_HEIGHT - MAP_PADDING + 1e-6

    def test_north_is_up(self):
        projection = MapProjection.fit(_square_track())
        _, y_south = projection.project(0.0, 0.0)
        _, y_north = projection.project(1.0, 0.0)
        assert y_north < y_south

    def test_aspect_ratio_preserved(self):
        """A square near the equator stays square, centred horizontally."""
        projection = MapProjection.fit(_square_track())
        x0, y0 = projection.project(0.0, 0.0)
        x1, y1 = projection.project(1.0, 1.0)
        assert abs(x1 - x0) == pytest.approx(abs(y1 - y0), rel=1e-3)
        assert (x0 + x1) / 2 == pytest.approx(MAP_WIDTH / 2)

    def test_single_point_is_centred(self):
        track = Track.from_points([TrackPoint(48.0, 2.0)])
        projection = MapProjection.fit(track)
        assert projection.project(48.0, 2.0) == pytest.approx((MAP_WIDTH / 2, MAP_HEIGHT / 2))

    def test_projection_is_stable(self):
        track = _square_track()
        assert MapProjection.fit(track) == MapProjection.fit(track)


class TestDrawMinimap:
    """Tests for the rendered map image."""

    def test_size(self):
        projection = MapProjection.fit(_square_track())
        img = draw_minimap(MiniMapState(track_pixels=project_points(projection, list(_square_track().points))))
        assert img.size == (MAP_WIDTH, MAP_HEIGHT)
        assert img.mode == "RGBA"

    def test_marker_drawn_at_position(self):
        track = _square_track()
        projection = MapProjection.fit(track)
        marker = projection.project(1.0, 1.0)
        img = draw_minimap(MiniMapState(
            track_pixels=project_points(projection, list(track.points)),
            travelled_pixels=project_points(projection, list(track.points[:3])),
            marker=marker,
        ))
        assert img.getpixel((round(marker[0]), round(marker[1]))) == MARKER_COLOR

    def test_empty_track_has_no_data(self):
        """Track always has points; an empty shell still fails cleanly."""
        empty = Track(points=())
        with pytest.raises(NoTrackDataError) as exc_info:
            MapProjection.fit(empty)
        assert exc_info.value.layer == "MiniMap"
