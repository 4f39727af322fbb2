"""Single-flight route recalculation."""

import asyncio
from typing import Callable, Optional

from .context import AmbientContext, current_context
from .errors import (
    MissingSessionContext, RecalculationTransportFailure, RoutingError,
    StaleRecalculationResult,
)
from .logger import Logger
from .models import Coordinate, Route
from .monitor import DeviationMonitor
from .routing import RecalculationRequest, RoutingClient
from .session import RouteSession
from .store import SessionStore


class RecalculationCoordinator:
    """Requests a new route and applies it to the session.

    At most one request is outstanding: the monitor's
    recalculation_in_flight state is the lock. A result that arrives after
    its session was cleared or replaced is dropped.
    """

    def __init__(self, client: RoutingClient, monitor: DeviationMonitor,
                 store: Optional[SessionStore] = None,
                 context_provider: Optional[Callable[[], AmbientContext]] = None,
                 logger: Optional[Logger] = None):
        self.client = client
        self.monitor = monitor
        self.store = store
        self.context_provider = context_provider or current_context
        self.logger = logger or Logger()

    def _check_preconditions(self, session: Optional[RouteSession],
                             position: Optional[Coordinate]) -> Coordinate:
        if session is None or session.closed:
            raise MissingSessionContext("No active walk to recalculate")
        if not session.route.id:
            raise MissingSessionContext("Active route has no proposal id")
        position = position or self.monitor.last_position
        if position is None:
            raise MissingSessionContext("Current position is unknown")
        return position

    def _ensure_current(self, session: RouteSession, generation: int):
        if (self.monitor.session is not session or session.closed
                or session.generation != generation):
            raise StaleRecalculationResult(
                f"Session {session.session_id} moved on during recalculation"
            )

    async def recalculate(self, session: Optional[RouteSession],
                          position: Optional[Coordinate] = None) -> Optional[Route]:
        """Fetch and apply a new route.

        Returns the new route, or None when another recalculation was already
        in flight or the result went stale.

        Raises:
            MissingSessionContext: no session, route id or position
            RecalculationTransportFailure: the service failed; the old route stays
        """
        position = self._check_preconditions(session, position)

        if not self.monitor.begin_recalculation():
            self.logger.log("Recalculation skipped", {"state": self.monitor.state.value})
            return None

        generation = session.generation
        succeeded = False
        try:
            request = RecalculationRequest(
                proposal_id=session.route.id,
                current_location=position,
                destination=session.destination,
                mode=session.mode,
                visited_pois=session.visited_pois,
                context=self.context_provider(),
            )
            self.logger.log("Recalculation started", {
                "proposal_id": request.proposal_id,
                "lat": position.latitude,
                "lon": position.longitude,
                "visited_pois": len(request.visited_pois),
            })

            try:
                route = await asyncio.to_thread(self.client.recalculate, request)
            except RoutingError as e:
                try:
                    self._ensure_current(session, generation)
                except StaleRecalculationResult as stale:
                    self.logger.log("Discarded stale recalculation failure", {"reason": str(stale)})
                    return None
                self.logger.log("Recalculation failed", {"error": str(e), "status": e.status_code})
                raise RecalculationTransportFailure(str(e)) from e

            try:
                self._ensure_current(session, generation)
            except StaleRecalculationResult as stale:
                self.logger.log("Discarded stale recalculation", {"reason": str(stale)})
                return None

            if not route.is_usable:
                self.logger.log("Recalculated route unusable", {"points": len(route.path)})
                raise RecalculationTransportFailure("Routing service returned an unusable route")

            session.apply_route(route)
            succeeded = True
        except RecalculationTransportFailure:
            raise
        except Exception as e:
            self.logger.log("Recalculation crashed", {"error": repr(e)})
            raise
        finally:
            # Release the slot only if it still belongs to this session
            if self.monitor.session is session:
                self.monitor.finish_recalculation(succeeded)

        self.logger.log("Route recalculated", {
            "title": route.title,
            "points": len(route.path),
            "distance_meters": route.distance_meters,
            "highlights": len(route.highlights),
        })

        if self.store and not self.store.save(session):
            self.logger.log("New route not persisted")
        return route
