from kmloverlay.models.job import Job, JobState
from kmloverlay.models.track import Track, TrackPoint

__all__ = ["Job", "JobState", "Track", "TrackPoint"]
