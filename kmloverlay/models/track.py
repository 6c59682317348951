"""Track model: ordered GPS samples answering speed/position queries.

Queries always use the "hold last known sample" policy: the sample shown for
an instant is the last one whose timestamp is not after it, and the speed is
the average between that sample and the next one. Positions are never
interpolated, so the displayed coordinate always matches the span the speed
was computed from.
"""

from bisect import bisect_right
from dataclasses import dataclass, field
from typing import Optional

from kmloverlay.exceptions import MalformedTrackError
from kmloverlay.utils.geo import Bounds, SpeedUnit, convert_speed, haversine_km, is_valid_coordinate


@dataclass(frozen=True)
class TrackPoint:
    """One geographic sample."""

    lat: float
    lon: float
    altitude: Optional[float] = None
    timestamp_ms: Optional[int] = None

    def __post_init__(self) -> None:
        if not is_valid_coordinate(self.lat, self.lon):
            raise ValueError(f"Coordinate out of range: lat={self.lat}, lon={self.lon}")

    def to_dict(self) -> dict:
        return {
            "lat": self.lat,
            "lon": self.lon,
            "alt": self.altitude,
            "timestamp": self.timestamp_ms,
        }


@dataclass(frozen=True)
class Track:
    """Immutable, non-empty sequence of TrackPoints."""

    points: tuple[TrackPoint, ...]
    start_ms: Optional[int] = None
    end_ms: Optional[int] = None
    # Indexes into `points` of every timestamped sample, in order
    _timed_indexes: tuple[int, ...] = field(default=(), repr=False, compare=False)
    _timed_keys: tuple[int, ...] = field(default=(), repr=False, compare=False)

    @classmethod
    def from_points(cls, points: list[TrackPoint]) -> "Track":
        if not points:
            raise MalformedTrackError("Track must contain at least one point")

        timed_indexes = tuple(i for i, p in enumerate(points) if p.timestamp_ms is not None)
        timed_keys = tuple(points[i].timestamp_ms for i in timed_indexes)
        if any(later < earlier for earlier, later in zip(timed_keys, timed_keys[1:])):
            raise MalformedTrackError("Track points must be ordered by timestamp")

        return cls(
            points=tuple(points),
            start_ms=timed_keys[0] if timed_keys else None,
            end_ms=timed_keys[-1] if timed_keys else None,
            _timed_indexes=timed_indexes,
            _timed_keys=timed_keys,
        )

    def __len__(self) -> int:
        return len(self.points)

    @property
    def has_timestamps(self) -> bool:
        return self.start_ms is not None

    @property
    def duration_ms(self) -> Optional[int]:
        if self.start_ms is None or self.end_ms is None:
            return None
        return self.end_ms - self.start_ms

    @property
    def timed_points(self) -> list[TrackPoint]:
        return [self.points[i] for i in self._timed_indexes]

    def bounds(self) -> Bounds:
        return Bounds.from_coordinates((p.lat, p.lon) for p in self.points)

    def track_time_ms(self, video_time_s: float, offset_s: float = 0.0) -> Optional[float]:
        """Translate a video-local time into an absolute track timestamp."""
        if self.start_ms is None:
            return None
        return self.start_ms + (video_time_s + offset_s) * 1000

    def _last_index_at(self, at_ms: float) -> Optional[int]:
        """Index in `points` of the last timestamped sample not after at_ms."""
        pos = bisect_right(self._timed_keys, at_ms)
        if pos == 0:
            return None
        return self._timed_indexes[pos - 1]

    def position_at(self, at_ms: Optional[float]) -> Optional[TrackPoint]:
        """Last known sample at at_ms, returned verbatim.

        Returns None before the first timestamp or when the track is untimed.
        """
        if at_ms is None:
            return None
        idx = self._last_index_at(at_ms)
        if idx is None:
            return None
        return self.points[idx]

    def speed_at(self, at_ms: Optional[float], unit: SpeedUnit = "kmh") -> Optional[float]:
        """Average speed over the span starting at the last known sample.

        Undefined (None) past the last sample, across a zero/negative time
        step, or when the following sample has no timestamp.
        """
        if at_ms is None:
            return None
        idx = self._last_index_at(at_ms)
        if idx is None or idx + 1 >= len(self.points):
            return None

        current = self.points[idx]
        following = self.points[idx + 1]
        if following.timestamp_ms is None:
            return None

        elapsed_hours = (following.timestamp_ms - current.timestamp_ms) / 3_600_000
        if elapsed_hours <= 0:
            return None

        distance_km = haversine_km(current.lat, current.lon, following.lat, following.lon)
        return convert_speed(distance_km / elapsed_hours, unit)

    def travelled_points(self, at_ms: Optional[float]) -> list[TrackPoint]:
        """Timestamped samples from the track start up to at_ms inclusive."""
        if at_ms is None:
            return []
        return self.timed_points[:bisect_right(self._timed_keys, at_ms)]

    def to_summary(self) -> dict:
        """Pre-parsed form accepted by track_from_summary()."""
        return {
            "start": self.start_ms,
            "end": self.end_ms,
            "duration_ms": self.duration_ms,
            "coords": [p.to_dict() for p in self.points],
        }
