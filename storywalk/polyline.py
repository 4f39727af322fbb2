"""Encoded polyline codec (Google Encoded Polyline Algorithm Format, 1e5 precision).

Each coordinate is sent as the delta from the previous one, latitude first.
A delta is zig-zag encoded and split into 5-bit groups, lowest bits first;
every group except the last carries the 0x20 continuation flag, and each
group is written as ``chr(group + 63)``.

Encoding is delegated to the polyline package. Decoding stays here because
it is forgiving by default: a string that ends mid-value, contains a
character outside the alphabet, or walks off the globe yields every complete
coordinate decoded before the problem instead of raising.
"""

from typing import Iterable, Optional, Sequence

import polyline as polyline_codec

from .config import CONFIG
from .errors import MalformedPolyline
from .models import BoundingRegion, Coordinate

PRECISION = 1e5

_CHAR_OFFSET = 63
_CONTINUATION = 0x20
_PAYLOAD = 0x1F


def _read_values(encoded: str):
    """Yield (value, end_position) for each complete zig-zag value.

    Stops with a MalformedPolyline carrying the failing position when the
    string ends inside a value or contains an invalid character.
    """
    index = 0
    length = len(encoded)
    while index < length:
        result = 0
        shift = 0
        while True:
            if index >= length:
                raise MalformedPolyline("Polyline ends inside a value", position=index)
            group = ord(encoded[index]) - _CHAR_OFFSET
            if group < 0 or group > 63:
                raise MalformedPolyline(
                    f"Invalid polyline character {encoded[index]!r}", position=index
                )
            index += 1
            result |= (group & _PAYLOAD) << shift
            shift += 5
            if not group & _CONTINUATION:
                break
        yield (~(result >> 1) if result & 1 else result >> 1), index


def _decode(encoded: str) -> tuple[list[Coordinate], Optional[MalformedPolyline]]:
    coords: list[Coordinate] = []
    lat = 0
    lon = 0
    pending_lat: Optional[int] = None
    position = 0
    try:
        for value, position in _read_values(encoded):
            if pending_lat is None:
                pending_lat = value
                continue
            lat += pending_lat
            lon += value
            pending_lat = None
            coord = Coordinate(lat / PRECISION, lon / PRECISION)
            if not coord.is_valid:
                return coords, MalformedPolyline(
                    f"Decoded coordinate out of range: ({coord.latitude}, {coord.longitude})",
                    coords, position,
                )
            coords.append(coord)
    except MalformedPolyline as e:
        e.decoded = coords
        return coords, e

    if pending_lat is not None:
        return coords, MalformedPolyline("Polyline ends after a latitude", coords, position)
    return coords, None


def decode(encoded: str, strict: bool = False) -> list[Coordinate]:
    """Decode a polyline string into coordinates.

    Args:
        encoded: Encoded polyline string
        strict: Raise MalformedPolyline instead of returning the decoded prefix

    Returns:
        Every fully decoded coordinate pair, in order. Empty input gives [].
    """
    if not encoded:
        return []
    coords, problem = _decode(encoded)
    if problem and strict:
        raise problem
    return coords


def encode(coords: Iterable[Coordinate]) -> str:
    """Encode coordinates into a polyline string (inverse of decode)"""
    return polyline_codec.encode([(c.latitude, c.longitude) for c in coords], 5)


def is_valid(coords: Sequence[Coordinate]) -> bool:
    """True iff there is at least one coordinate and all are in range"""
    if not coords:
        return False
    return all(abs(c.latitude) <= 90 and abs(c.longitude) <= 180 for c in coords)


def bounding_region(coords: Sequence[Coordinate]) -> Optional[BoundingRegion]:
    """Region framing all coordinates, or None when there are none"""
    if not coords:
        return None

    lats = [c.latitude for c in coords]
    lons = [c.longitude for c in coords]
    min_lat, max_lat = min(lats), max(lats)
    min_lon, max_lon = min(lons), max(lons)

    min_span = CONFIG["region_min_span"]
    margin = CONFIG["region_margin"]
    return BoundingRegion(
        center=Coordinate((min_lat + max_lat) / 2, (min_lon + max_lon) / 2),
        lat_delta=max(max_lat - min_lat, min_span) * margin,
        lon_delta=max(max_lon - min_lon, min_span) * margin,
    )
