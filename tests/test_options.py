"""Tests for job submission options and the command-line front end."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from kmloverlay.cli import build_job_spec, parse_args
from kmloverlay.config import Settings
from kmloverlay.render.compositor import LayerKind
from kmloverlay.schemas.options import GaugeOptions, InfoPanelOptions, JobSpec, MiniMapOptions


class TestJobSpec:
    """Validation happens when a JobSpec is built."""

    def test_defaults(self):
        spec = JobSpec(video_path="in.mp4", output_path="out.mp4", track_path="t.kml")
        assert spec.gauge.enabled
        assert not spec.info_panel.enabled
        assert not spec.mini_map.enabled
        assert spec.enabled_layers() == [LayerKind.GAUGE]
        assert spec.offset_seconds == 0.0
        assert spec.speed_unit is None

    def test_track_source_required(self):
        with pytest.raises(ValidationError):
            JobSpec(video_path="in.mp4", output_path="out.mp4")

    def test_output_must_differ_from_input(self):
        with pytest.raises(ValidationError):
            JobSpec(video_path="v.mp4", output_path="v.mp4", track_path="t.kml")

    def test_unknown_option_rejected(self):
        with pytest.raises(ValidationError):
            JobSpec(video_path="in.mp4", output_path="out.mp4", track_path="t.kml", colour="red")

    def test_invalid_values_rejected(self):
        with pytest.raises(ValidationError):
            GaugeOptions(size="huge")
        with pytest.raises(ValidationError):
            GaugeOptions(max_speed_kmh=0)
        with pytest.raises(ValidationError):
            JobSpec(video_path="in.mp4", output_path="out.mp4", track_path="t.kml", speed_unit="mph")

    def test_layer_order_is_fixed(self):
        spec = JobSpec(
            video_path="in.mp4",
            output_path="out.mp4",
            track_path="t.kml",
            mini_map=MiniMapOptions(enabled=True),
            info_panel=InfoPanelOptions(show_time=True),
            gauge=GaugeOptions(enabled=False),
        )
        assert spec.enabled_layers() == [LayerKind.INFO_PANEL, LayerKind.MINI_MAP]


class TestSettings:
    """Tests for environment-driven configuration."""

    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.max_concurrent_jobs == 3
        assert settings.default_speed_unit == "kmh"
        assert settings.gauge_max_speed_kmh == 60.0
        assert settings.overlay_fps == 5

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("KMLOVERLAY_MAX_CONCURRENT_JOBS", "1")
        monkeypatch.setenv("KMLOVERLAY_DEFAULT_SPEED_UNIT", "ms")
        settings = Settings(_env_file=None)
        assert settings.max_concurrent_jobs == 1
        assert settings.default_speed_unit == "ms"


class TestCli:
    """Tests for argument parsing."""

    def test_render_arguments(self):
        args = parse_args([
            "render",
            "--video", "in.mp4",
            "--kml", "track.kml",
            "--output", "out.mp4",
            "--offset", "-2.5",
            "--unit", "ms",
            "--altitude",
            "--time",
            "--map",
            "--no-gauge",
        ])
        spec = build_job_spec(args)

        assert spec.video_path == Path("in.mp4")
        assert spec.track_path == Path("track.kml")
        assert spec.offset_seconds == -2.5
        assert spec.speed_unit == "ms"
        assert spec.enabled_layers() == [LayerKind.INFO_PANEL, LayerKind.MINI_MAP]
        assert spec.info_panel.show_altitude and spec.info_panel.show_time
        assert not spec.info_panel.show_speed

    def test_command_required(self):
        with pytest.raises(SystemExit):
            parse_args([])
