"""Geographic utility functions."""

import math
from typing import Optional, Sequence

from .models import Coordinate, PathProximity

EARTH_RADIUS = 6371000  # meters


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate distance between two points in meters using Haversine formula"""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (math.sin(delta_phi / 2) ** 2 +
         math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS * c


def distance(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance between two coordinates in meters"""
    return haversine_distance(a.latitude, a.longitude, b.latitude, b.longitude)


def bearing_between(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate bearing from point 1 to point 2 in degrees (0-360, 0=North)"""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_lambda = math.radians(lon2 - lon1)

    x = math.sin(delta_lambda) * math.cos(phi2)
    y = (math.cos(phi1) * math.sin(phi2) -
         math.sin(phi1) * math.cos(phi2) * math.cos(delta_lambda))

    bearing = math.degrees(math.atan2(x, y))
    return (bearing + 360) % 360


def bearing_to_compass(bearing: float) -> str:
    """Convert bearing to compass direction"""
    directions = ["north", "northeast", "east", "southeast",
                  "south", "southwest", "west", "northwest"]
    index = round(bearing / 45) % 8
    return directions[index]


def destination_point(lat: float, lon: float, bearing: float, meters: float) -> Coordinate:
    """Point reached by travelling `meters` from (lat, lon) on the given bearing"""
    phi1 = math.radians(lat)
    lambda1 = math.radians(lon)
    theta = math.radians(bearing)
    d = meters / EARTH_RADIUS

    phi2 = math.asin(
        math.sin(phi1) * math.cos(d) + math.cos(phi1) * math.sin(d) * math.cos(theta)
    )
    lambda2 = lambda1 + math.atan2(
        math.sin(theta) * math.sin(d) * math.cos(phi1),
        math.cos(d) - math.sin(phi1) * math.sin(phi2),
    )
    lon2 = (math.degrees(lambda2) + 540) % 360 - 180
    return Coordinate(math.degrees(phi2), lon2)


def closest_point_on_segment(p: Coordinate, seg_start: Coordinate,
                             seg_end: Coordinate) -> Coordinate:
    """Project p onto the segment, clamped to its endpoints.

    The projection is planar in a local equirectangular frame: longitude
    differences are scaled by the cosine of the segment's mean latitude so
    that both axes are roughly proportional to meters.
    """
    scale = math.cos(math.radians((seg_start.latitude + seg_end.latitude) / 2))
    dx = (seg_end.longitude - seg_start.longitude) * scale
    dy = seg_end.latitude - seg_start.latitude
    length_sq = dx * dx + dy * dy
    if length_sq == 0:
        return seg_start

    px = (p.longitude - seg_start.longitude) * scale
    py = p.latitude - seg_start.latitude
    param = (px * dx + py * dy) / length_sq
    param = max(0.0, min(1.0, param))

    return Coordinate(
        seg_start.latitude + param * (seg_end.latitude - seg_start.latitude),
        seg_start.longitude + param * (seg_end.longitude - seg_start.longitude),
    )


def distance_to_segment(p: Coordinate, seg_start: Coordinate, seg_end: Coordinate) -> float:
    """Distance in meters from p to the nearest point of a segment.

    A zero-length segment is treated as the single point seg_start.
    """
    if seg_start == seg_end:
        return distance(p, seg_start)
    return distance(p, closest_point_on_segment(p, seg_start, seg_end))


def nearest_segment(p: Coordinate, path: Sequence[Coordinate]) -> Optional[PathProximity]:
    """Find the part of a path closest to p.

    Considers every vertex and every consecutive pair. Returns None for an
    empty path; a single-vertex path reports segment 0.
    """
    if not path:
        return None

    best = PathProximity(distance(p, path[0]), 0, path[0])
    for i, vertex in enumerate(path):
        d = distance(p, vertex)
        if d < best.distance:
            best = PathProximity(d, min(i, max(len(path) - 2, 0)), vertex)

    for i in range(len(path) - 1):
        point = closest_point_on_segment(p, path[i], path[i + 1])
        d = distance(p, point)
        if d < best.distance:
            best = PathProximity(d, i, point)

    return best


def distance_to_path(p: Coordinate, path: Sequence[Coordinate]) -> float:
    """Minimum distance in meters from p to a path (inf for an empty path)"""
    proximity = nearest_segment(p, path)
    if proximity is None:
        return math.inf
    return proximity.distance


def path_length(path: Sequence[Coordinate]) -> float:
    """Total length of a path in meters"""
    return sum(distance(path[i], path[i + 1]) for i in range(len(path) - 1))
