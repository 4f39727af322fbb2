import asyncio
from unittest.mock import MagicMock

import pytest

from storywalk.geo import destination_point
from storywalk.models import Coordinate, TrackingState
from storywalk.monitor import DeviationMonitor
from storywalk.session import RouteSession


def off_route(meters):
    """A point `meters` east of the middle of the first segment"""
    return destination_point(48.002, 11.0, 90, meters)


class TestBegin:

    def test_usable_route_starts_tracking(self, monitor, session):
        assert monitor.begin(session) is True
        assert monitor.state == TrackingState.TRACKING
        assert session.tracking_state == TrackingState.TRACKING

    def test_single_point_route_stays_idle(self, monitor, make_route):
        session = RouteSession(make_route([Coordinate(48.0, 11.0)]))
        assert monitor.begin(session) is False
        assert monitor.state == TrackingState.IDLE

    def test_clear_returns_to_idle(self, monitor, session):
        monitor.begin(session)
        monitor.clear()
        assert monitor.state == TrackingState.IDLE
        assert monitor.session is None
        assert monitor.on_location(off_route(500)) is None


class TestDeviation:

    def test_on_route_keeps_tracking(self, monitor, session):
        callback = MagicMock()
        monitor.on_deviation = callback
        monitor.begin(session)

        proximity = monitor.on_location(Coordinate(48.003, 11.0))

        assert proximity.distance < 1
        assert monitor.state == TrackingState.TRACKING
        callback.assert_not_called()

    def test_far_off_route_raises_deviation(self, monitor, session):
        callback = MagicMock()
        monitor.on_deviation = callback
        monitor.begin(session)

        monitor.on_location(off_route(200))

        assert monitor.state == TrackingState.DEVIATION_PENDING
        assert session.tracking_state == TrackingState.DEVIATION_PENDING
        callback.assert_called_once()
        assert callback.call_args.args[0].distance == pytest.approx(200, abs=1)

    def test_under_threshold_never_fires(self, monitor, session):
        callback = MagicMock()
        monitor.on_deviation = callback
        monitor.begin(session)

        for _ in range(20):
            monitor.on_location(off_route(100))
            monitor.poll()

        callback.assert_not_called()
        assert monitor.deviations == 0

    def test_signal_is_raised_once_while_pending(self, monitor, session):
        callback = MagicMock()
        monitor.on_deviation = callback
        monitor.begin(session)

        monitor.on_location(off_route(200))
        monitor.on_location(off_route(300))
        monitor.poll()

        callback.assert_called_once()
        assert monitor.deviations == 1

    def test_custom_threshold(self, quiet_logger, session):
        strict = DeviationMonitor(threshold=50, logger=quiet_logger)
        strict.begin(session)
        strict.on_location(off_route(80))
        assert strict.state == TrackingState.DEVIATION_PENDING


class TestSuppression:

    def test_dismiss_suppresses_for_rest_of_session(self, monitor, session):
        callback = MagicMock()
        monitor.on_deviation = callback
        monitor.begin(session)
        monitor.on_location(off_route(200))

        assert monitor.dismiss() is True
        assert monitor.is_suppressed

        monitor.on_location(Coordinate(48.003, 11.0))
        monitor.on_location(off_route(400))
        monitor.poll()

        assert monitor.state == TrackingState.SUPPRESSED
        callback.assert_called_once()

    def test_dismiss_only_from_pending(self, monitor, session):
        monitor.begin(session)
        assert monitor.dismiss() is False
        assert monitor.state == TrackingState.TRACKING


class TestRecalculationSlot:

    def test_idle_cannot_recalculate(self, monitor):
        assert monitor.begin_recalculation() is False

    def test_single_slot(self, monitor, session):
        monitor.begin(session)
        monitor.on_location(off_route(200))

        assert monitor.begin_recalculation() is True
        assert monitor.state == TrackingState.RECALCULATION_IN_FLIGHT
        assert monitor.begin_recalculation() is False

    def test_no_checks_while_in_flight(self, monitor, session):
        callback = MagicMock()
        monitor.on_deviation = callback
        monitor.begin(session)
        monitor.begin_recalculation()

        assert monitor.on_location(off_route(500)) is None
        callback.assert_not_called()

    def test_finish_resumes_tracking(self, monitor, session):
        monitor.begin(session)
        monitor.begin_recalculation()
        monitor.finish_recalculation(False)
        assert monitor.state == TrackingState.TRACKING

    def test_manual_recalculation_from_suppressed(self, monitor, session):
        monitor.begin(session)
        monitor.on_location(off_route(200))
        monitor.dismiss()
        assert monitor.begin_recalculation() is True

    def test_failed_recalculation_from_suppressed_stays_suppressed(self, monitor, session):
        callback = MagicMock()
        monitor.on_deviation = callback
        monitor.begin(session)
        monitor.on_location(off_route(200))
        monitor.dismiss()

        monitor.begin_recalculation()
        monitor.finish_recalculation(False)

        assert monitor.state == TrackingState.SUPPRESSED
        assert monitor.on_location(off_route(400)) is None
        monitor.poll()
        callback.assert_called_once()
        assert monitor.deviations == 1

    def test_new_route_from_suppressed_resumes_checks(self, monitor, session):
        callback = MagicMock()
        monitor.on_deviation = callback
        monitor.begin(session)
        monitor.on_location(off_route(200))
        monitor.dismiss()

        monitor.begin_recalculation()
        monitor.finish_recalculation(True)

        assert monitor.state == TrackingState.TRACKING
        monitor.on_location(off_route(400))
        assert monitor.state == TrackingState.DEVIATION_PENDING
        assert callback.call_count == 2

    def test_new_session_forgets_suppressed_origin(self, monitor, session, route):
        monitor.begin(session)
        monitor.on_location(off_route(200))
        monitor.dismiss()
        monitor.begin_recalculation()
        monitor.clear()

        monitor.begin(RouteSession(route))
        monitor.begin_recalculation()
        monitor.finish_recalculation(False)
        assert monitor.state == TrackingState.TRACKING


class TestPolling:

    def test_poll_without_position(self, monitor, session):
        monitor.begin(session)
        assert monitor.poll() is None

    @pytest.mark.anyio
    async def test_timer_detects_deviation_without_new_location(self, monitor, session):
        callback = MagicMock()
        monitor.on_deviation = callback
        monitor.begin(session)
        monitor.last_position = off_route(200)

        task = asyncio.create_task(monitor.run())
        try:
            await asyncio.sleep(0.1)
        finally:
            task.cancel()

        callback.assert_called_once()
        assert monitor.state == TrackingState.DEVIATION_PENDING
