from kmloverlay.schemas.events import DoneEvent, ErrorEvent, Event, LogEvent, ProgressEvent
from kmloverlay.schemas.options import GaugeOptions, InfoPanelOptions, JobSpec, MiniMapOptions

__all__ = [
    "DoneEvent",
    "ErrorEvent",
    "Event",
    "LogEvent",
    "ProgressEvent",
    "GaugeOptions",
    "InfoPanelOptions",
    "JobSpec",
    "MiniMapOptions",
]
