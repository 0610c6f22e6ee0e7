"""
Geo helpers for driver matching.

Great-circle distance plus tolerant parsing of the location data the driver
apps and booking records carry. Parsing never raises: anything malformed
comes back as None and the matching engine simply skips distance scoring.
"""

import json
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

EARTH_RADIUS_KM = 6371.0
MILES_PER_KM = 0.621371


@dataclass(frozen=True)
class DriverLocation:
    """Last GPS ping of a driver."""
    lat: float
    lng: float
    timestamp: Optional[datetime] = None


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points, in kilometers."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)

    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def km_to_miles(km: float) -> float:
    return km * MILES_PER_KM


def _coordinate(value: Any, limit: float) -> Optional[float]:
    # bool is an int subclass; a True latitude is never intended
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number) or abs(number) > limit:
        return None
    return number


def _timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    try:
        if isinstance(value, datetime):
            parsed = value
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            # Driver apps send epoch milliseconds
            parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        else:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except (TypeError, ValueError, OverflowError, OSError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_location(raw: Any) -> Optional[DriverLocation]:
    """
    Parse a driver's current location.

    Accepts a JSON string ``{"lat": .., "lng": .., "timestamp": ..}``, an
    already-decoded mapping, or a DriverLocation.

    Returns:
        DriverLocation, or None when missing or malformed
    """
    if raw is None:
        return None
    if isinstance(raw, DriverLocation):
        return raw
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            return None
    if not isinstance(raw, dict):
        return None

    lat = _coordinate(raw.get("lat"), 90.0)
    lng = _coordinate(raw.get("lng"), 180.0)
    if lat is None or lng is None:
        return None

    return DriverLocation(lat=lat, lng=lng, timestamp=_timestamp(raw.get("timestamp")))


def parse_address_coordinates(address: Optional[str]) -> Optional[tuple[float, float]]:
    """
    Extract coordinates appended to an address as "address|lat,lng".

    Examples:
        >>> parse_address_coordinates("PHX Sky Harbor|33.4342,-112.0116")
        (33.4342, -112.0116)
        >>> parse_address_coordinates("123 Mill Ave") is None
        True
    """
    if not address:
        return None
    parts = address.split("|")
    if len(parts) < 2:
        return None
    coords = parts[1].split(",")
    if len(coords) != 2:
        return None
    lat = _coordinate(coords[0].strip(), 90.0)
    lng = _coordinate(coords[1].strip(), 180.0)
    if lat is None or lng is None:
        return None
    return lat, lng
