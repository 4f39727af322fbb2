"""StoryWalk - Story-driven walking routes with off-route recalculation."""

from .config import CONFIG
from .errors import (
    StorywalkError,
    MalformedPolyline,
    InvalidCoordinate,
    MissingSessionContext,
    RoutingError,
    RecalculationTransportFailure,
    StaleRecalculationResult,
)
from .models import (
    Coordinate,
    Location,
    WalkMode,
    StepStatus,
    TrackingState,
    PointOfInterest,
    VisitedPoi,
    BoundingRegion,
    RouteStep,
    PathProximity,
    Route,
)
from .logger import Logger
from .polyline import decode, encode, is_valid, bounding_region
from .geo import (
    haversine_distance,
    distance,
    bearing_between,
    bearing_to_compass,
    destination_point,
    distance_to_segment,
    distance_to_path,
    nearest_segment,
)
from .gps import DeviceLocation, FixedLocation, TracePlayback, TraceRecorder
from .context import AmbientContext, current_context
from .session import RouteSession, build_steps, format_distance
from .monitor import DeviationMonitor
from .routing import (
    RecalculationRequest,
    RoutingClient,
    WalkSummary,
    bbox_around,
    is_valid_bbox,
    route_from_payload,
    walk_route_from_payload,
)
from .store import SessionStore
from .coordinator import RecalculationCoordinator
from .app import Navigator
from .__main__ import main

__all__ = [
    "CONFIG",
    "StorywalkError",
    "MalformedPolyline",
    "InvalidCoordinate",
    "MissingSessionContext",
    "RoutingError",
    "RecalculationTransportFailure",
    "StaleRecalculationResult",
    "Coordinate",
    "Location",
    "WalkMode",
    "StepStatus",
    "TrackingState",
    "PointOfInterest",
    "VisitedPoi",
    "BoundingRegion",
    "RouteStep",
    "PathProximity",
    "Route",
    "Logger",
    "decode",
    "encode",
    "is_valid",
    "bounding_region",
    "haversine_distance",
    "distance",
    "bearing_between",
    "bearing_to_compass",
    "destination_point",
    "distance_to_segment",
    "distance_to_path",
    "nearest_segment",
    "DeviceLocation",
    "FixedLocation",
    "TraceRecorder",
    "TracePlayback",
    "AmbientContext",
    "current_context",
    "RouteSession",
    "build_steps",
    "format_distance",
    "DeviationMonitor",
    "RecalculationRequest",
    "RoutingClient",
    "route_from_payload",
    "WalkSummary",
    "walk_route_from_payload",
    "bbox_around",
    "is_valid_bbox",
    "SessionStore",
    "RecalculationCoordinator",
    "Navigator",
    "main",
]
