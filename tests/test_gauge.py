"""Tests for the speedometer gauge rasterizer."""

import pytest

from kmloverlay.render.gauge import (
    END_ANGLE,
    GAUGE_SIZES,
    START_ANGLE,
    GaugeState,
    draw_gauge,
    needle_angle,
    polar,
    tick_labels,
)


def _is_needle_red(pixel) -> bool:
    r, g, b, a = pixel
    return r > 200 and g < 100 and b < 100 and a > 200


class TestNeedleAngle:
    """Tests for speed -> needle angle mapping."""

    def test_zero_speed_rests_at_start(self):
        assert needle_angle(0, 60) == START_ANGLE

    def test_max_speed_full_deflection(self):
        assert needle_angle(60, 60) == END_ANGLE

    def test_half_speed_points_up(self):
        assert needle_angle(30, 60) == pytest.approx(0.0)

    def test_over_max_is_clamped(self):
        assert needle_angle(250, 60) == END_ANGLE

    def test_negative_and_missing_speed_rest_at_start(self):
        assert needle_angle(-5, 60) == START_ANGLE
        assert needle_angle(None, 60) == START_ANGLE


class TestTicks:
    """Tests for tick labels."""

    def test_default_ticks(self):
        assert tick_labels(60) == [0, 10, 20, 30, 40, 50, 60]

    def test_labels_are_rounded(self):
        assert tick_labels(100) == [0, 17, 33, 50, 67, 83, 100]


class TestDrawGauge:
    """Tests for the rendered gauge image."""

    @pytest.mark.parametrize("name", ["small", "medium", "large"])
    def test_size(self, name):
        img = draw_gauge(GaugeState(speed=10, size=GAUGE_SIZES[name]))
        assert img.mode == "RGBA"
        assert img.size == (GAUGE_SIZES[name], GAUGE_SIZES[name])

    def test_corners_are_transparent(self):
        img = draw_gauge(GaugeState(speed=10))
        assert img.getpixel((0, 0))[3] == 0
        assert img.getpixel((img.width - 1, img.height - 1))[3] == 0

    def test_needle_at_rest_for_zero_speed(self):
        state = GaugeState(speed=0)
        img = draw_gauge(state)
        c = state.size / 2
        r = state.size * 0.42

        x, y = polar(c, c, r * 0.5, START_ANGLE)
        assert _is_needle_red(img.getpixel((round(x), round(y))))

    def test_needle_pinned_above_max(self):
        state = GaugeState(speed=500, max_speed=60)
        img = draw_gauge(state)
        c = state.size / 2
        r = state.size * 0.42

        x, y = polar(c, c, r * 0.5, END_ANGLE)
        assert _is_needle_red(img.getpixel((round(x), round(y))))
        # Nothing red at the resting position
        x, y = polar(c, c, r * 0.5, START_ANGLE)
        assert not _is_needle_red(img.getpixel((round(x), round(y))))

    def test_missing_speed_draws(self):
        img = draw_gauge(GaugeState(speed=None, unit="ms", max_speed=60 / 3.6))
        assert img.size == (150, 150)
