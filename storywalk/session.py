"""Active walk state built on top of an immutable Route."""

import time
import uuid
from typing import Optional

from .config import CONFIG
from .geo import distance, path_length
from .models import (
    Coordinate, PathProximity, PointOfInterest, Route, RouteStep, StepStatus,
    TrackingState, VisitedPoi, WalkMode,
)


def format_distance(meters: float) -> str:
    """Short distance label: '240m' below a kilometer, '1.2km' above"""
    if meters < 1000:
        return f"{int(round(meters))}m"
    return f"{meters / 1000:.1f}km"


def build_steps(highlights, distance_meters: float, current_index: int = 0) -> list[RouteStep]:
    """Spread the route distance across its highlights.

    Step i gets distance / N * (0.8 + 0.1 * i), so early steps are shorter
    than later ones. This is a display heuristic only: it does not look at
    where the highlights actually lie along the path.
    """
    highlights = list(highlights)
    if not highlights:
        return []

    share = distance_meters / len(highlights)
    base = CONFIG["step_weight_base"]
    increment = CONFIG["step_weight_increment"]

    steps = []
    for i, description in enumerate(highlights):
        meters = int(round(share * (base + increment * i)))
        if i < current_index:
            status = StepStatus.COMPLETED
        elif i == current_index:
            status = StepStatus.CURRENT
        else:
            status = StepStatus.UPCOMING
        steps.append(RouteStep(
            index=i,
            description=description,
            distance_meters=meters,
            distance_label=format_distance(meters),
            status=status,
        ))
    return steps


class RouteSession:
    """Mutable state of one active walk"""

    def __init__(self, route: Route, mode: WalkMode = WalkMode.DESTINATION,
                 destination: Optional[Coordinate] = None,
                 visited_pois: Optional[list[VisitedPoi]] = None,
                 session_id: Optional[str] = None,
                 started_at: Optional[float] = None):
        self._route = route
        self.mode = WalkMode(mode)
        self.destination = destination
        self.session_id = session_id or uuid.uuid4().hex
        self.started_at = started_at or time.time()
        self.tracking_state = TrackingState.IDLE
        self.generation = 0
        self.recalculations = 0
        self.closed = False
        self._visited: dict[str, str] = {}
        for poi in visited_pois or []:
            self._visited[poi.poi_id] = poi.name
        self.furthest_segment = 0
        self.current_step = 0
        self.steps: list[RouteStep] = build_steps(route.highlights, route.distance_meters)

    @property
    def route(self) -> Route:
        return self._route

    @property
    def visited_poi_ids(self) -> set[str]:
        return set(self._visited)

    @property
    def visited_pois(self) -> list[VisitedPoi]:
        return [VisitedPoi(poi_id, name) for poi_id, name in self._visited.items()]

    def apply_route(self, route: Route):
        """Replace the active route; progress restarts on the new path"""
        self._route = route
        self.generation += 1
        self.recalculations += 1
        self.furthest_segment = 0
        self.current_step = 0
        self.steps = build_steps(route.highlights, route.distance_meters)

    def record_progress(self, proximity: PathProximity):
        """Advance progress to the nearest segment if it lies further along.

        The current step follows the share of path segments passed, which is
        as much of a display heuristic as the step distances themselves.
        """
        if proximity.segment_index <= self.furthest_segment:
            return
        self.furthest_segment = proximity.segment_index
        segments = max(len(self._route.path) - 1, 1)
        if self.steps:
            step = int(self.furthest_segment / segments * len(self.steps))
            self._set_current_step(min(step, len(self.steps) - 1))

    def advance_step(self) -> bool:
        """Move to the next highlight. Returns False at the last one."""
        if self.current_step + 1 >= len(self.steps):
            return False
        self._set_current_step(self.current_step + 1)
        return True

    def _set_current_step(self, index: int):
        if index == self.current_step:
            return
        self.current_step = index
        self.steps = build_steps(self._route.highlights, self._route.distance_meters, index)

    def mark_poi_visited(self, poi_id: str, name: str) -> bool:
        """Record a visited POI. Returns False if it was already visited."""
        if poi_id in self._visited:
            return False
        self._visited[poi_id] = name
        return True

    def nearby_poi(self, position: Coordinate,
                   radius: Optional[float] = None) -> Optional[PointOfInterest]:
        """First unvisited POI of the route within radius of position"""
        if radius is None:
            radius = CONFIG["poi_arrival_radius"]
        for poi in self._route.pois:
            if poi.poi_id in self._visited:
                continue
            if distance(position, poi.coordinate) <= radius:
                return poi
        return None

    def distance_to_finish(self, position: Coordinate) -> float:
        if not self._route.path:
            return float("inf")
        return distance(position, self._route.path[-1])

    def remaining_distance_label(self) -> str:
        path = self._route.path
        if len(path) < 2:
            return format_distance(self._route.distance_meters)
        remaining = path_length(path[self.furthest_segment:])
        return format_distance(remaining)

    def remaining_time_label(self) -> str:
        return f"{self._route.duration_minutes} min"

    def close(self):
        self.closed = True

    def summary(self) -> dict:
        """Walk summary for history and the end-of-walk report"""
        return {
            "proposal_id": self._route.id,
            "title": self._route.title,
            "started_at": self.started_at,
            "duration_minutes": round((time.time() - self.started_at) / 60, 1),
            "distance_meters": self._route.distance_meters,
            "visited_pois": [poi.name for poi in self.visited_pois],
            "recalculations": self.recalculations,
        }
