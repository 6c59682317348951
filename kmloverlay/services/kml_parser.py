"""KML track parsing.

Best-effort extraction that works for Google Earth gx:Track exports as well as
plain LineString tracks:
- every <when> element contributes a timestamp (ISO-8601)
- every <coordinates> element contributes "lon,lat[,alt]" tuples
- every <gx:coord> element contributes one "lon lat [alt]" point

Coordinates and timestamps are collected as two independent sequences and then
paired by build_track(). The pre-parsed summary entry point goes through the
same function, so both paths produce the same Track for the same data.
"""

import logging
import math
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, NamedTuple, Optional, Union

from kmloverlay.exceptions import MalformedTrackError
from kmloverlay.models.track import Track, TrackPoint
from kmloverlay.utils.geo import is_valid_coordinate

logger = logging.getLogger(__name__)


class RawCoordinate(NamedTuple):
    lat: float
    lon: float
    altitude: Optional[float] = None
    timestamp_ms: Optional[int] = None


def _local_name(tag: Any) -> str:
    """Strip the XML namespace ("{uri}coord" -> "coord")."""
    if not isinstance(tag, str):
        return ""
    return tag.rsplit("}", 1)[-1]


def parse_timestamp(value: Any) -> Optional[int]:
    """Parse an ISO-8601 string or epoch milliseconds into epoch ms.

    Naive datetimes are taken as UTC. Returns None for unparsable input.
    """
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if not math.isfinite(value):
            return None
        return int(round(value))

    text = str(value).strip()
    if not text:
        return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(round(dt.timestamp() * 1000))


def _to_float(text: Any) -> Optional[float]:
    try:
        value = float(text)
    except (TypeError, ValueError):
        return None
    return value if math.isfinite(value) else None


def _coordinate_from_parts(parts: list[str]) -> Optional[RawCoordinate]:
    """Build a coordinate from [lon, lat, alt?] string components.

    Non-numeric lat/lon become NaN so the point keeps its slot for pairing and
    is dropped afterwards with its timestamp.
    """
    if len(parts) < 2:
        return None
    lon = _to_float(parts[0])
    lat = _to_float(parts[1])
    altitude = _to_float(parts[2]) if len(parts) >= 3 else None
    return RawCoordinate(
        lat=math.nan if lat is None else lat,
        lon=math.nan if lon is None else lon,
        altitude=altitude,
    )


def _parse_coordinates_text(text: str) -> list[RawCoordinate]:
    """<coordinates>: whitespace-separated "lon,lat[,alt]" tuples."""
    coords = []
    for chunk in text.split():
        parts = [p.strip() for p in chunk.split(",") if p.strip()]
        coord = _coordinate_from_parts(parts)
        if coord is not None:
            coords.append(coord)
    return coords


def _parse_gx_coord_text(text: str) -> Optional[RawCoordinate]:
    """<gx:coord>: a single "lon lat [alt]" point."""
    return _coordinate_from_parts(text.split())


def build_track(coords: list[RawCoordinate], timestamps: list[Optional[int]]) -> Track:
    """Pair coordinates with timestamps and build a Track.

    Pairing runs over the sequences exactly as extracted. Counts that match
    are paired by index; an unparsable timestamp (None) leaves its point
    untimed. Otherwise timestamps are spread evenly from the earliest to the
    latest parsed timestamp across all coordinates. That fallback is an
    approximation (real GPS sampling is rarely uniform) and is logged as such.

    Points outside the lat/lon range are dropped only after pairing, together
    with their timestamps, so one bad sample never re-times the others.
    """
    if not coords:
        raise MalformedTrackError("No coordinate sequence could be extracted from the track")

    parsed = [t for t in timestamps if t is not None]
    if parsed:
        if len(timestamps) == len(coords):
            logger.info(f"[KML] Pairing {len(coords)} timestamps with coordinates (1:1 match)")
            coords = [c._replace(timestamp_ms=t) for c, t in zip(coords, timestamps)]
        else:
            start = min(parsed)
            end = max(parsed)
            logger.warning(
                f"[KML] Mismatch: {len(timestamps)} timestamps vs {len(coords)} coordinates. "
                f"Interpolating timestamps evenly across {start}..{end}"
            )
            span = end - start
            last = len(coords) - 1
            coords = [
                c._replace(timestamp_ms=int(round(start + (i / last if last else 0) * span)))
                for i, c in enumerate(coords)
            ]

    valid = [c for c in coords if is_valid_coordinate(c.lat, c.lon)]
    dropped = len(coords) - len(valid)
    if dropped:
        logger.warning(f"[KML] Dropped {dropped} coordinates outside lat/lon range")
    if not valid:
        raise MalformedTrackError("No coordinate sequence could be extracted from the track")

    points = [
        TrackPoint(lat=c.lat, lon=c.lon, altitude=c.altitude, timestamp_ms=c.timestamp_ms)
        for c in _order_by_time(valid)
    ]
    track = Track.from_points(points)
    logger.info(
        f"[KML] Built track: {len(track)} points, "
        f"start={track.start_ms}, end={track.end_ms}"
    )
    return track


def _order_by_time(coords: list[RawCoordinate]) -> list[RawCoordinate]:
    """Stable sort by timestamp.

    An untimed point keeps its place right after the timed point that
    preceded it in parse order.
    """
    if not any(c.timestamp_ms is not None for c in coords):
        return coords

    keyed = []
    carry = -math.inf
    for coord in coords:
        if coord.timestamp_ms is not None:
            carry = coord.timestamp_ms
        keyed.append((carry, coord))
    keyed.sort(key=lambda item: item[0])
    return [coord for _, coord in keyed]


def parse_kml(raw: Union[bytes, str]) -> Track:
    """Parse raw KML bytes into a Track.

    Raises:
        MalformedTrackError: If the document is not XML or has no coordinates
    """
    try:
        root = ET.fromstring(raw)
    except ET.ParseError as e:
        raise MalformedTrackError(f"Track is not valid XML: {e}") from e

    whens: list[str] = []
    coords: list[RawCoordinate] = []

    for element in root.iter():
        name = _local_name(element.tag)
        text = (element.text or "").strip()
        if not text:
            continue
        if name == "when":
            whens.append(text)
        elif name == "coordinates":
            coords.extend(_parse_coordinates_text(text))
        elif name == "coord":
            coord = _parse_gx_coord_text(text)
            if coord is not None:
                coords.append(coord)

    timestamps = [parse_timestamp(w) for w in whens]
    unparsable = sum(1 for t in timestamps if t is None)
    if unparsable:
        logger.warning(f"[KML] {unparsable} unparsable <when> values leave their points untimed")

    logger.info(f"[KML] Found {len(timestamps)} timestamps and {len(coords)} coordinates")
    return build_track(coords, timestamps)


def load_kml(path: Union[str, Path]) -> Track:
    """Read and parse a KML file."""
    data = Path(path).read_bytes()
    return parse_kml(data)


def track_from_summary(summary: dict[str, Any]) -> Track:
    """Build a Track from an already-parsed summary.

    Accepts {"coords": [{"lat", "lon", "alt"?, "timestamp"?}, ...]} with an
    optional parallel "timestamps" (or "whens") list for coordinates that
    carry no time of their own. The same pairing and ordering rules as parse_kml() apply.
    """
    raw_coords = summary.get("coords") or []
    coords: list[RawCoordinate] = []
    for item in raw_coords:
        if not isinstance(item, dict):
            continue
        lat = _to_float(item.get("lat"))
        lon = _to_float(item.get("lon"))
        coords.append(
            RawCoordinate(
                lat=math.nan if lat is None else lat,
                lon=math.nan if lon is None else lon,
                altitude=_to_float(item.get("alt", item.get("altitude"))),
                timestamp_ms=parse_timestamp(item.get("timestamp")),
            )
        )

    if any(c.timestamp_ms is not None for c in coords):
        return build_track(coords, [])

    raw_timestamps = summary.get("timestamps") or summary.get("whens") or []
    return build_track(coords, [parse_timestamp(v) for v in raw_timestamps])
