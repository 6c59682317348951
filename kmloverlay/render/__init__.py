from kmloverlay.render.compositor import LayerKind, OverlayClip, build_composition, build_encode_command
from kmloverlay.render.gauge import GaugeState, draw_gauge
from kmloverlay.render.info_panel import InfoFields, InfoPanelState, draw_info_panel
from kmloverlay.render.minimap import MapProjection, MiniMapState, draw_minimap
from kmloverlay.render.overlay_renderer import LayerRenderOptions, render_layer

__all__ = [
    "LayerKind",
    "OverlayClip",
    "build_composition",
    "build_encode_command",
    "GaugeState",
    "draw_gauge",
    "InfoFields",
    "InfoPanelState",
    "draw_info_panel",
    "MapProjection",
    "MiniMapState",
    "draw_minimap",
    "LayerRenderOptions",
    "render_layer",
]
