"""HTTP client for the story-route backend (proposals, recalculation and shared walks)."""

import math
from dataclasses import dataclass, field
from typing import Optional

import requests

from .config import CONFIG
from .context import AmbientContext, current_context
from .errors import RoutingError
from .logger import Logger
from .models import Coordinate, PointOfInterest, Route, VisitedPoi, WalkMode


@dataclass
class RecalculationRequest:
    proposal_id: str
    current_location: Coordinate
    destination: Optional[Coordinate]
    mode: WalkMode
    visited_pois: list[VisitedPoi] = field(default_factory=list)
    context: Optional[AmbientContext] = None

    def to_payload(self) -> dict:
        context = self.context or current_context()
        return {
            "proposal_id": self.proposal_id,
            "current_location": self.current_location.to_dict(),
            "destination": self.destination.to_dict() if self.destination else None,
            "mode": WalkMode(self.mode).value,
            "visited_pois": {
                "previous_pois": [poi.to_dict() for poi in self.visited_pois],
            },
            "realtime_context": context.to_dict(),
        }


def _pois_from_steps(steps: list, id_prefix: Optional[str] = None) -> list[PointOfInterest]:
    """POIs from the 'poi' navigation steps that carry coordinates.

    Steps without a poi_id are skipped unless id_prefix is given, in which
    case they are numbered by their position in the step list.
    """
    pois = []
    if not isinstance(steps, list):
        return pois
    for i, step in enumerate(steps):
        if not isinstance(step, dict) or step.get("type") != "poi":
            continue
        lat, lon = step.get("latitude"), step.get("longitude")
        poi_id = step.get("poi_id") or (f"{id_prefix}-{i}" if id_prefix else None)
        if lat is None or lon is None or not poi_id:
            continue
        coord = Coordinate(float(lat), float(lon))
        if not coord.is_valid:
            continue
        pois.append(PointOfInterest(
            poi_id=str(poi_id),
            name=step.get("name") or step.get("description") or "",
            coordinate=coord,
        ))
    return pois


def route_from_payload(data: dict, proposal_id: Optional[str] = None) -> Route:
    """Build a Route from a proposal or an updated_route object.

    Raises RoutingError when required fields are missing or mistyped.
    """
    if isinstance(data, dict) and "updated_route" in data:
        data = data["updated_route"]
    if not isinstance(data, dict):
        raise RoutingError(f"Could not decode route response: expected an object, got {type(data).__name__}")
    try:
        route_id = proposal_id or data["proposal_id"]
        highlights = data.get("highlights")
        if highlights is None:
            highlights = data.get("display_highlights", [])
        return Route.from_polyline(
            id=str(route_id),
            title=data["title"],
            story=data.get("generated_story", ""),
            duration_minutes=data["estimated_duration_minutes"],
            distance_meters=data["estimated_distance_meters"],
            highlights=[str(h) for h in highlights],
            polyline=data["route_polyline"],
            pois=_pois_from_steps(data.get("navigation_steps")),
        )
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise RoutingError(f"Could not decode route response: {e!r}") from e


def bbox_string(min_lon: float, min_lat: float, max_lon: float, max_lat: float) -> str:
    return f"{min_lon},{min_lat},{max_lon},{max_lat}"


def bbox_around(center: Coordinate, km: Optional[float] = None) -> str:
    """Bounding box reaching `km` kilometers from center in each direction"""
    km = km if km is not None else CONFIG["walks_search_km"]
    lat_delta = km / 111.0
    # Near the poles the box spans every longitude
    cos_lat = math.cos(math.radians(center.latitude))
    lon_delta = km / (111.0 * cos_lat) if cos_lat > 1e-6 else 180.0
    return bbox_string(max(center.longitude - lon_delta, -180.0), max(center.latitude - lat_delta, -90.0),
                       min(center.longitude + lon_delta, 180.0), min(center.latitude + lat_delta, 90.0))


def is_valid_bbox(bbox: str) -> bool:
    """'minLon,minLat,maxLon,maxLat' with in-range, non-empty spans"""
    parts = bbox.split(",")
    if len(parts) != 4:
        return False
    try:
        min_lon, min_lat, max_lon, max_lat = (float(p) for p in parts)
    except ValueError:
        return False
    return (min_lon >= -180 and max_lon <= 180 and min_lat >= -90 and max_lat <= 90
            and min_lon < max_lon and min_lat < max_lat)


@dataclass
class WalkSummary:
    """A walk someone already took, as listed on the walks map"""
    id: str
    title: str
    area_name: str = ""
    date: str = ""
    summary: str = ""
    duration_minutes: int = 0
    distance_meters: int = 0
    tags: list[str] = field(default_factory=list)
    end_location: Optional[Coordinate] = None
    route_polyline: str = ""

    @property
    def is_valid(self) -> bool:
        if not self.id or not self.title or self.duration_minutes < 0:
            return False
        return self.end_location is None or self.end_location.is_valid

    @classmethod
    def from_dict(cls, d: dict) -> "WalkSummary":
        end = d.get("end_location")
        return cls(
            id=str(d.get("id") or ""),
            title=d.get("title") or "",
            area_name=d.get("area_name") or "",
            date=d.get("date") or "",
            summary=d.get("summary") or "",
            duration_minutes=int(d.get("duration_minutes") or 0),
            distance_meters=int(d.get("distance_meters") or 0),
            tags=[str(t) for t in d.get("tags") or []],
            end_location=Coordinate(float(end["latitude"]), float(end["longitude"])) if end else None,
            route_polyline=d.get("route_polyline") or "",
        )


def walk_route_from_payload(data: dict) -> Route:
    """Build a walkable Route from a walk detail response"""
    if not isinstance(data, dict):
        raise RoutingError(f"Could not decode walk response: expected an object, got {type(data).__name__}")
    try:
        walk_id = str(data["id"])
        return Route.from_polyline(
            id=walk_id,
            title=data["title"],
            story=data.get("description", ""),
            duration_minutes=data["duration_minutes"],
            distance_meters=data["distance_meters"],
            highlights=[str(t) for t in data.get("tags") or []],
            polyline=data["route_polyline"],
            pois=_pois_from_steps(data.get("navigation_steps"), id_prefix=walk_id),
        )
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise RoutingError(f"Could not decode walk response: {e!r}") from e


class RoutingClient:
    """Talks to the route generation service"""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 session: Optional[requests.Session] = None, logger: Optional[Logger] = None):
        self.base_url = (base_url or CONFIG["api_base_url"]).rstrip("/")
        self.timeout = timeout if timeout is not None else CONFIG["request_timeout"]
        self.session = session or requests.Session()
        self.logger = logger or Logger(echo=False)

    def _request(self, send, path: str, **kwargs) -> dict:
        url = f"{self.base_url}{path}"
        try:
            response = send(url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
            data = response.json()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            kind = "Server" if status and status >= 500 else "Client"
            raise RoutingError(f"{kind} error {status} from {path}", status_code=status) from e
        except requests.RequestException as e:
            raise RoutingError(f"Request to {path} failed: {e}") from e
        except ValueError as e:
            raise RoutingError(f"Invalid JSON from {path}") from e

        if not isinstance(data, dict):
            raise RoutingError(f"Unexpected response from {path}: {type(data).__name__}")
        return data

    def _post(self, path: str, payload: dict) -> dict:
        return self._request(self.session.post, path, json=payload)

    def _get(self, path: str, params: Optional[dict] = None) -> dict:
        return self._request(self.session.get, path, params=params)

    def recalculate(self, request: RecalculationRequest) -> Route:
        """Ask for a new route from the current position"""
        data = self._post("/routes/recalculate", request.to_payload())
        return route_from_payload(data, proposal_id=request.proposal_id)

    def propose(self, start: Coordinate, destination: Optional[Coordinate] = None,
                mode: Optional[WalkMode] = None, duration_minutes: Optional[int] = None,
                theme: Optional[str] = None,
                context: Optional[AmbientContext] = None) -> list[Route]:
        """Request route proposals for a new walk"""
        if mode is None:
            mode = WalkMode.DESTINATION if destination else WalkMode.TIME_BASED
        mode = WalkMode(mode)
        if mode == WalkMode.DESTINATION:
            duration_minutes = CONFIG["proposal_duration_minutes"]

        payload = {
            "start_location": start.to_dict(),
            "destination": destination.to_dict() if destination else None,
            "mode": mode.value,
            "duration_minutes": duration_minutes,
            "theme": theme or CONFIG["default_theme"],
            "realtime_context": (context or current_context()).to_dict(),
        }
        data = self._post("/routes/proposals", payload)
        proposals = data.get("proposals") or []
        if not isinstance(proposals, list):
            raise RoutingError("Could not decode proposals response: 'proposals' is not a list")
        return [route_from_payload(p) for p in proposals]

    def walks(self, bbox: Optional[str] = None) -> list[WalkSummary]:
        """List shared walks, optionally inside 'minLon,minLat,maxLon,maxLat'.

        Entries without an id or title, with a negative duration or with an
        out-of-range end location are dropped.
        """
        if bbox is not None and not is_valid_bbox(bbox):
            raise ValueError(f"Invalid bounding box: {bbox!r}")
        data = self._get("/walks", params={"bbox": bbox} if bbox else None)
        entries = data.get("walks")
        if not isinstance(entries, list):
            raise RoutingError("Could not decode walks response: missing 'walks' list")

        walks = []
        for entry in entries:
            try:
                walk = WalkSummary.from_dict(entry)
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                self.logger.log("Skipped undecodable walk", {"error": repr(e)})
                continue
            if not walk.is_valid:
                self.logger.log("Skipped invalid walk", {"id": walk.id, "title": walk.title})
                continue
            walks.append(walk)
        self.logger.log("Walks loaded", {"valid": len(walks), "total": len(entries)})
        return walks

    def walk_detail(self, walk_id: str) -> Route:
        """Fetch a shared walk as a route that can be walked again"""
        if not walk_id:
            raise ValueError("walk_id is required")
        data = self._get(f"/walks/{walk_id}")
        return walk_route_from_payload(data)
