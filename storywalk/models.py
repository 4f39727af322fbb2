"""Data classes for StoryWalk."""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional

from .errors import InvalidCoordinate


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float

    @property
    def is_valid(self) -> bool:
        return abs(self.latitude) <= 90 and abs(self.longitude) <= 180

    @classmethod
    def checked(cls, latitude: float, longitude: float) -> "Coordinate":
        """Build a coordinate, rejecting out-of-range values"""
        coord = cls(latitude, longitude)
        if not coord.is_valid:
            raise InvalidCoordinate(f"Coordinate out of range: ({latitude}, {longitude})")
        return coord

    def to_dict(self) -> dict:
        return {"latitude": self.latitude, "longitude": self.longitude}

    @classmethod
    def from_dict(cls, d: dict) -> "Coordinate":
        return cls.checked(float(d["latitude"]), float(d["longitude"]))


@dataclass
class Location:
    """A single position sample from a location source"""
    lat: float
    lon: float
    accuracy: Optional[float] = None
    timestamp: Optional[float] = None

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.lat, self.lon)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "Location":
        return cls(**d)


class WalkMode(str, Enum):
    DESTINATION = "destination"
    TIME_BASED = "time_based"


class StepStatus(str, Enum):
    COMPLETED = "completed"
    CURRENT = "current"
    UPCOMING = "upcoming"


class TrackingState(str, Enum):
    IDLE = "idle"
    TRACKING = "tracking"
    DEVIATION_PENDING = "deviation_pending"
    RECALCULATION_IN_FLIGHT = "recalculation_in_flight"
    SUPPRESSED = "suppressed"


@dataclass(frozen=True)
class PointOfInterest:
    poi_id: str
    name: str
    coordinate: Coordinate


@dataclass(frozen=True)
class VisitedPoi:
    poi_id: str
    name: str

    def to_dict(self) -> dict:
        return {"poi_id": self.poi_id, "name": self.name}


@dataclass(frozen=True)
class BoundingRegion:
    center: Coordinate
    lat_delta: float
    lon_delta: float


@dataclass(frozen=True)
class RouteStep:
    """One highlight of the route as shown to the walker.

    Derived from the route on every change, never stored on its own.
    """
    index: int
    description: str
    distance_meters: int
    distance_label: str
    status: StepStatus


@dataclass(frozen=True)
class PathProximity:
    """Where a position sits relative to a route path"""
    distance: float  # meters
    segment_index: int  # index of the nearest segment's start vertex
    closest_point: Coordinate


@dataclass(frozen=True)
class Route:
    """Immutable route snapshot received from the routing service"""
    id: str
    title: str
    story: str
    duration_minutes: int
    distance_meters: int
    highlights: tuple[str, ...]
    polyline: str
    path: tuple[Coordinate, ...] = ()
    pois: tuple[PointOfInterest, ...] = field(default=())

    @classmethod
    def from_polyline(cls, id: str, title: str, story: str, duration_minutes: int,
                      distance_meters: int, highlights, polyline: str,
                      pois=()) -> "Route":
        """Build a route, decoding its path from the wire polyline"""
        from .polyline import decode

        return cls(
            id=id,
            title=title,
            story=story,
            duration_minutes=int(duration_minutes),
            distance_meters=int(distance_meters),
            highlights=tuple(highlights),
            polyline=polyline,
            path=tuple(decode(polyline)),
            pois=tuple(pois),
        )

    @property
    def is_usable(self) -> bool:
        """A route can be tracked once it has at least one segment of valid points"""
        return len(self.path) >= 2 and all(c.is_valid for c in self.path)
