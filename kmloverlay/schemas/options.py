"""Job submission options.

A job is described by one JobSpec: explicit per-layer option models with named
fields, validated when the job is submitted rather than when a layer first
reads them.
"""

from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from kmloverlay.render.compositor import LayerKind

SpeedUnitOption = Literal["kmh", "ms"]
GaugeSizeOption = Literal["small", "medium", "large"]


class GaugeOptions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    size: GaugeSizeOption = "medium"
    # Full-deflection speed in km/h (None = configured default)
    max_speed_kmh: Optional[float] = Field(default=None, gt=0)


class InfoPanelOptions(BaseModel):
    """Which text lines the info panel shows.

    The panel is enabled when at least one line is.
    """

    model_config = ConfigDict(extra="forbid")

    show_speed: bool = False
    show_altitude: bool = False
    show_coordinates: bool = False
    show_time: bool = False

    @property
    def enabled(self) -> bool:
        return self.show_speed or self.show_altitude or self.show_coordinates or self.show_time


class MiniMapOptions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = False
    width: int = Field(default=300, ge=50, le=1920)
    height: int = Field(default=200, ge=50, le=1080)


class JobSpec(BaseModel):
    """Everything one overlay job needs.

    Exactly one track source is used, in order of preference: `track_summary`
    (already parsed by the caller), `track_data` (raw KML bytes) and
    `track_path` (KML file on disk).
    """

    model_config = ConfigDict(extra="forbid")

    video_path: Path
    output_path: Path
    track_path: Optional[Path] = None
    track_data: Optional[bytes] = None
    track_summary: Optional[dict[str, Any]] = None

    # Seconds added to video time before looking up the track
    offset_seconds: float = 0.0
    speed_unit: Optional[SpeedUnitOption] = None
    # Output frame rate (None = keep the source rate)
    fps: Optional[int] = Field(default=None, ge=1, le=240)
    overlay_fps: Optional[int] = Field(default=None, ge=1, le=60)

    gauge: GaugeOptions = Field(default_factory=GaugeOptions)
    info_panel: InfoPanelOptions = Field(default_factory=InfoPanelOptions)
    mini_map: MiniMapOptions = Field(default_factory=MiniMapOptions)

    @model_validator(mode="after")
    def check_sources(self) -> "JobSpec":
        if self.track_path is None and self.track_data is None and self.track_summary is None:
            raise ValueError("one of track_path, track_data or track_summary is required")
        if self.video_path == self.output_path:
            raise ValueError("output_path must differ from video_path")
        return self

    def enabled_layers(self) -> list[LayerKind]:
        """Enabled layers in stacking order."""
        layers = []
        if self.gauge.enabled:
            layers.append(LayerKind.GAUGE)
        if self.info_panel.enabled:
            layers.append(LayerKind.INFO_PANEL)
        if self.mini_map.enabled:
            layers.append(LayerKind.MINI_MAP)
        return layers
