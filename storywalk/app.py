"""Main StoryWalk application."""

import asyncio
import time
from typing import Awaitable, Callable, Optional

from .config import CONFIG
from .coordinator import RecalculationCoordinator
from .errors import MissingSessionContext, RecalculationTransportFailure
from .geo import bearing_between, bearing_to_compass
from .gps import TracePlayback, TraceRecorder
from .logger import Logger
from .models import Coordinate, Location, PathProximity, Route, TrackingState
from .monitor import DeviationMonitor
from .session import RouteSession, format_distance
from .store import SessionStore

Decision = Callable[[PathProximity], Awaitable[bool]]


def fixed_decision(accept: bool) -> Decision:
    """Decision policy that always accepts or always dismisses"""
    async def decide(proximity: PathProximity) -> bool:
        return accept
    return decide


async def ask_user(proximity: PathProximity) -> bool:
    """Ask on the terminal whether to recalculate"""
    try:
        answer = await asyncio.to_thread(input, "Recalculate route from here? [Y/n] ")
    except EOFError:
        return False
    return answer.strip().lower() not in ("n", "no")


class Navigator:
    """Runs one walk: feeds locations to the monitor and resolves deviations"""

    def __init__(self, monitor: DeviationMonitor, coordinator: RecalculationCoordinator,
                 store: SessionStore, location_source, decide: Optional[Decision] = None,
                 logger: Optional[Logger] = None):
        self.monitor = monitor
        self.coordinator = coordinator
        self.store = store
        self.location_source = location_source
        self.decide = decide or ask_user
        self.logger = logger or Logger()
        self.monitor.on_deviation = self._on_deviation

        self.session: Optional[RouteSession] = None
        self.current_position: Optional[Coordinate] = None
        self.finished = False
        self.summary: Optional[dict] = None
        self._prompt_task: Optional[asyncio.Task] = None
        self.last_log_update = 0.0

    def start(self, session: RouteSession) -> bool:
        """Begin tracking a walk. False if the route has no usable path."""
        if not self.monitor.begin(session):
            print("Route has no usable path; cannot start walk")
            return False
        self.session = session
        self.finished = False
        self.store.save(session)
        self.logger.log("Walk started", {
            "proposal_id": session.route.id,
            "title": session.route.title,
            "points": len(session.route.path),
            "mode": session.mode.value,
        })
        self.display_route(session.route)
        return True

    def acquire_first_fix(self, max_time: Optional[float] = None) -> Optional[Location]:
        """Wait for the first GPS fix, backing off between attempts"""
        max_time = max_time if max_time is not None else CONFIG["first_fix_timeout"]
        max_delay = CONFIG["first_fix_max_delay"]
        started = time.time()
        delay = 1.0
        attempt = 1

        while True:
            location = self.location_source.get_location()
            if location:
                break
            elapsed = time.time() - started
            self.logger.log("GPS attempt failed", {
                "attempt": attempt,
                "elapsed": round(elapsed, 1),
                "status": self._source_status(),
            })
            if elapsed >= max_time:
                self.logger.log("Could not get GPS location after retries", {"attempts": attempt})
                print("Could not get GPS location")
                return None
            time.sleep(min(delay, max_time - elapsed, max_delay))
            delay = min(delay * 2, max_delay)
            attempt += 1

        self.logger.log("First fix", location.to_dict())
        self.handle_location(location)
        return location

    def display_route(self, route: Route):
        print(f"\n=== {route.title} ===")
        print(f"  {format_distance(route.distance_meters)}, about {route.duration_minutes} min")
        if route.story:
            print(f"  {route.story}")
        if self.session:
            print(f"  Remaining: {self.session.remaining_distance_label()}, {self.session.remaining_time_label()}")
        for step in self.session.steps if self.session else []:
            marker = {"completed": "x", "current": ">", "upcoming": " "}[step.status.value]
            print(f"  [{marker}] {step.index + 1}. {step.description} ({step.distance_label})")
        print()

    def get_state(self) -> dict:
        """Get current state as dict for logging"""
        state = {
            "tracking_state": self.monitor.state.value,
            "deviations": self.monitor.deviations,
            "gps_status": self._source_status(),
        }
        if self.session:
            state["current_step"] = self.session.current_step
            state["furthest_segment"] = self.session.furthest_segment
            state["visited_pois"] = len(self.session.visited_pois)
            state["remaining"] = self.session.remaining_distance_label()
            state["remaining_time"] = self.session.remaining_time_label()
        if self.monitor.last_proximity:
            state["off_route_m"] = round(self.monitor.last_proximity.distance, 1)
        if self.current_position:
            state["location"] = {
                "lat": self.current_position.latitude,
                "lon": self.current_position.longitude,
            }
        return state

    def _source_status(self) -> str:
        if hasattr(self.location_source, "get_status"):
            return self.location_source.get_status()
        return "unknown"

    def periodic_update(self):
        now = time.time()
        if now - self.last_log_update >= CONFIG["log_interval"]:
            self.logger.log("STATE", self.get_state())
            self.last_log_update = now

    def handle_location(self, location: Location):
        """Consume one location sample"""
        if self.session is None or self.finished:
            return
        position = location.coordinate
        self.current_position = position
        previous_step = self.session.current_step

        self.monitor.on_location(position)

        poi = self.session.nearby_poi(position)
        if poi and self.session.mark_poi_visited(poi.poi_id, poi.name):
            self.logger.log("POI visited", {"poi_id": poi.poi_id, "name": poi.name})
            print(f"Visited: {poi.name}")
            self.store.save(self.session)

        if self.session.current_step != previous_step:
            step = self.session.steps[self.session.current_step]
            print(f"Next: {step.description} ({step.distance_label})")

        if (self.monitor.state in (TrackingState.TRACKING, TrackingState.SUPPRESSED)
                and self.session.distance_to_finish(position) <= CONFIG["arrival_radius"]):
            self.finish()
            return

        self.periodic_update()

    def _rejoin_hint(self, proximity: PathProximity) -> str:
        if not self.current_position:
            return ""
        bearing = bearing_between(
            self.current_position.latitude, self.current_position.longitude,
            proximity.closest_point.latitude, proximity.closest_point.longitude,
        )
        return f"The route is {int(proximity.distance)}m to the {bearing_to_compass(bearing)}."

    def _on_deviation(self, proximity: PathProximity):
        if self._prompt_task and not self._prompt_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.logger.log("Deviation raised outside event loop")
            return
        self._prompt_task = loop.create_task(self._resolve_deviation(proximity))

    async def _resolve_deviation(self, proximity: PathProximity):
        print(f"\nYou have left the route. {self._rejoin_hint(proximity)}")
        accept = await self.decide(proximity)
        if self.monitor.state != TrackingState.DEVIATION_PENDING:
            return
        if not accept:
            self.monitor.dismiss()
            self.logger.log("Deviation dismissed")
            print("Continuing without the route prompt for the rest of this walk")
            return
        await self.recalculate()

    async def recalculate(self) -> Optional[Route]:
        """Request a new route from the current position"""
        try:
            route = await self.coordinator.recalculate(self.session, self.current_position)
        except MissingSessionContext as e:
            self.logger.log("Cannot recalculate", {"reason": str(e)})
            print(f"Cannot recalculate: {e}")
            return None
        except RecalculationTransportFailure as e:
            print(f"Could not calculate a new route ({e}); keeping the current one")
            return None
        if route:
            print("Recalculated.")
            self.display_route(route)
        return route

    def finish(self):
        """Walk complete: record history and forget the resumable session"""
        if self.session is None or self.finished:
            return
        self.finished = True
        self.session.close()
        self.summary = self.session.summary()
        self.store.record_walk(self.summary)
        self.store.clear()
        self.monitor.clear()
        self.logger.log("Walk complete", self.summary)

        print("\nWalk complete!")
        print(f"  {self.summary['title']}")
        print(f"  Time: {self.summary['duration_minutes']:.0f} min")
        print(f"  Visited: {len(self.summary['visited_pois'])}")
        for name in self.summary["visited_pois"]:
            print(f"    - {name}")

    @property
    def playback(self) -> Optional[TracePlayback]:
        """The playback source, also when wrapped by a recorder"""
        source = self.location_source
        if isinstance(source, TraceRecorder):
            source = source.source
        return source if isinstance(source, TracePlayback) else None

    def get_poll_interval(self) -> float:
        """Get poll interval, respecting playback speed if applicable"""
        if self.playback:
            return self.playback.next_delay()
        return CONFIG["gps_poll_interval"]

    def is_playback_finished(self) -> bool:
        return bool(self.playback and self.playback.finished)

    async def _location_loop(self):
        while not self.finished:
            location = await asyncio.to_thread(self.location_source.get_location)
            if location:
                self.handle_location(location)
            else:
                self.logger.log("Location fix failed", {
                    "status": self._source_status(),
                })
            if self.is_playback_finished():
                print("\nPlayback finished")
                self.logger.log("Playback finished")
                break
            await asyncio.sleep(self.get_poll_interval())

    async def run(self):
        """Track the started walk until it finishes or the source runs out"""
        if self.session is None:
            raise MissingSessionContext("Navigator.start() must be called before run()")

        poller = asyncio.create_task(self.monitor.run())
        # A deviation seen before the loop started has no prompt yet
        if self.monitor.state == TrackingState.DEVIATION_PENDING and self.monitor.last_proximity:
            self._on_deviation(self.monitor.last_proximity)
        try:
            await self._location_loop()
            if self._prompt_task and not self._prompt_task.done() and not self.finished:
                await self._prompt_task
        finally:
            pending = [poller]
            if self._prompt_task and not self._prompt_task.done():
                pending.append(self._prompt_task)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            if not self.finished:
                self.logger.log("Walk paused", self.get_state())
