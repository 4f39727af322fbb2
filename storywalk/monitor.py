"""Route deviation monitoring.

The monitor owns the tracking state machine:

    idle -> tracking -> deviation_pending -> recalculation_in_flight -> tracking
                                          \\-> suppressed

Two producers feed it: location updates (``on_location``) and a fixed-period
timer (``poll`` / ``run``). Both end up in ``check``, which is synchronous and
never awaits, so on a single event loop it cannot interleave with itself.
"""

import asyncio
from typing import Callable, Optional

from .config import CONFIG
from .geo import nearest_segment
from .logger import Logger
from .models import Coordinate, PathProximity, TrackingState
from .session import RouteSession


class DeviationMonitor:
    """Raises a one-shot deviation signal when the walker leaves the route"""

    def __init__(self, threshold: Optional[float] = None,
                 poll_interval: Optional[float] = None,
                 on_deviation: Optional[Callable[[PathProximity], None]] = None,
                 logger: Optional[Logger] = None):
        self.threshold = threshold if threshold is not None else CONFIG["deviation_threshold"]
        self.poll_interval = (poll_interval if poll_interval is not None
                              else CONFIG["deviation_poll_interval"])
        self.on_deviation = on_deviation
        self.logger = logger or Logger()

        self.state = TrackingState.IDLE
        self.session: Optional[RouteSession] = None
        self.last_position: Optional[Coordinate] = None
        self.last_proximity: Optional[PathProximity] = None
        self.deviations = 0
        self._recalculating_from: Optional[TrackingState] = None

    def _transition(self, new_state: TrackingState):
        if self.session:
            self.session.tracking_state = new_state
        if new_state == self.state:
            return
        old_state = self.state
        self.state = new_state
        self.logger.log("Tracking state", {"from": old_state.value, "to": new_state.value})

    def begin(self, session: RouteSession) -> bool:
        """Start tracking a session. Returns False if its route cannot be tracked."""
        self.session = session
        self.last_proximity = None
        self._recalculating_from = None
        if not session.route.is_usable:
            self.logger.log("Route not trackable", {
                "proposal_id": session.route.id,
                "points": len(session.route.path),
            })
            self._transition(TrackingState.IDLE)
            return False
        self._transition(TrackingState.TRACKING)
        return True

    def clear(self):
        """Detach the session (walk finished or abandoned)"""
        self._transition(TrackingState.IDLE)
        self.session = None
        self.last_proximity = None
        self._recalculating_from = None

    def on_location(self, position: Coordinate) -> Optional[PathProximity]:
        """Handle a new position sample"""
        self.last_position = position
        return self.check(position)

    def poll(self) -> Optional[PathProximity]:
        """Re-check the last known position"""
        if self.last_position is None:
            return None
        return self.check(self.last_position)

    async def run(self):
        """Poll on a fixed interval until cancelled"""
        while True:
            await asyncio.sleep(self.poll_interval)
            self.poll()

    def check(self, position: Coordinate) -> Optional[PathProximity]:
        """Measure position against the route and raise a deviation if needed.

        Only runs while tracking; pending, in-flight, suppressed and idle
        states skip the measurement entirely.
        """
        if self.state != TrackingState.TRACKING or self.session is None:
            return None

        proximity = nearest_segment(position, self.session.route.path)
        if proximity is None:
            return None
        self.last_proximity = proximity
        self.session.record_progress(proximity)

        if proximity.distance > self.threshold:
            self.deviations += 1
            self._transition(TrackingState.DEVIATION_PENDING)
            self.logger.log("Deviation detected", {
                "distance": round(proximity.distance, 1),
                "threshold": self.threshold,
                "segment": proximity.segment_index,
            })
            if self.on_deviation:
                self.on_deviation(proximity)
        return proximity

    def dismiss(self) -> bool:
        """User declined recalculation: stop deviation checks for this session"""
        if self.state != TrackingState.DEVIATION_PENDING:
            return False
        self._transition(TrackingState.SUPPRESSED)
        return True

    def begin_recalculation(self) -> bool:
        """Claim the single recalculation slot. False if unavailable."""
        if self.state not in (TrackingState.TRACKING, TrackingState.DEVIATION_PENDING,
                              TrackingState.SUPPRESSED):
            return False
        self._recalculating_from = self.state
        self._transition(TrackingState.RECALCULATION_IN_FLIGHT)
        return True

    def finish_recalculation(self, succeeded: bool):
        """Release the recalculation slot.

        A new route always gets fresh checks. A failed attempt returns to
        tracking, except that a dismissed walk stays suppressed.
        """
        if self.state != TrackingState.RECALCULATION_IN_FLIGHT:
            return
        self.last_proximity = None
        if not succeeded and self._recalculating_from == TrackingState.SUPPRESSED:
            self._transition(TrackingState.SUPPRESSED)
        else:
            self._transition(TrackingState.TRACKING)
        self._recalculating_from = None
        self.logger.log("Recalculation finished", {"succeeded": succeeded})

    @property
    def is_suppressed(self) -> bool:
        return self.state == TrackingState.SUPPRESSED
