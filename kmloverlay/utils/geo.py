"""Geographic helpers: great-circle distance, bounds and speed units."""

import math
from dataclasses import dataclass
from typing import Iterable, Literal

EARTH_RADIUS_KM = 6371.0

SpeedUnit = Literal["kmh", "ms"]

UNIT_LABELS: dict[str, str] = {
    "kmh": "km/h",
    "ms": "m/s",
}


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two coordinates in kilometres."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def convert_speed(speed_kmh: float, unit: SpeedUnit) -> float:
    """Convert a km/h value into the requested display unit."""
    if unit == "ms":
        return speed_kmh / 3.6
    return speed_kmh


def is_valid_coordinate(lat: float, lon: float) -> bool:
    if math.isnan(lat) or math.isnan(lon):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0


@dataclass(frozen=True)
class Bounds:
    """Lat/lon bounding box."""

    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    @property
    def lat_span(self) -> float:
        return self.max_lat - self.min_lat

    @property
    def lon_span(self) -> float:
        return self.max_lon - self.min_lon

    @property
    def center(self) -> tuple[float, float]:
        return (
            (self.min_lat + self.max_lat) / 2,
            (self.min_lon + self.max_lon) / 2,
        )

    @classmethod
    def from_coordinates(cls, coords: Iterable[tuple[float, float]]) -> "Bounds":
        lats: list[float] = []
        lons: list[float] = []
        for lat, lon in coords:
            lats.append(lat)
            lons.append(lon)
        if not lats:
            raise ValueError("Cannot compute bounds of an empty coordinate list")
        return cls(min(lats), max(lats), min(lons), max(lons))
