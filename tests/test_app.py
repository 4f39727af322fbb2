import json
import time
from unittest.mock import MagicMock, patch

import pytest

from storywalk.app import Navigator, ask_user, fixed_decision
from storywalk.coordinator import RecalculationCoordinator
from storywalk.errors import MissingSessionContext, RoutingError
from storywalk.geo import destination_point
from storywalk.gps import FixedLocation, TracePlayback, TraceRecorder
from storywalk.logger import Logger
from storywalk.models import Coordinate, Location, PathProximity, TrackingState
from storywalk.session import RouteSession
from storywalk.store import SessionStore
from storywalk.trace import build_trace


class FakeClient:
    def __init__(self, route=None, error=None):
        self.route = route
        self.error = error
        self.calls = 0

    def recalculate(self, request):
        self.calls += 1
        if self.error:
            raise self.error
        return self.route


def at(coord):
    return Location(lat=coord.latitude, lon=coord.longitude, accuracy=5.0, timestamp=time.time())


@pytest.fixture
def store():
    return MagicMock(spec=SessionStore)


def make_navigator(monitor, store, logger, client=None, decide=None, source=None):
    coordinator = RecalculationCoordinator(client or FakeClient(), monitor, store, logger=logger)
    return Navigator(
        monitor, coordinator, store,
        source or FixedLocation(48.0, 11.0),
        decide=decide or fixed_decision(False),
        logger=logger,
    )


class TestStart:

    def test_start_tracks_and_saves(self, monitor, store, quiet_logger, session):
        navigator = make_navigator(monitor, store, quiet_logger)
        assert navigator.start(session) is True
        assert monitor.state == TrackingState.TRACKING
        store.save.assert_called_once_with(session)

    def test_start_rejects_unusable_route(self, monitor, store, quiet_logger, make_route):
        navigator = make_navigator(monitor, store, quiet_logger)
        session = RouteSession(make_route([Coordinate(48.0, 11.0)]))
        assert navigator.start(session) is False
        assert navigator.session is None
        store.save.assert_not_called()

    @pytest.mark.anyio
    async def test_run_requires_start(self, monitor, store, quiet_logger):
        navigator = make_navigator(monitor, store, quiet_logger)
        with pytest.raises(MissingSessionContext):
            await navigator.run()


class TestHandleLocation:

    def test_visits_poi(self, monitor, store, quiet_logger, session, fountain):
        navigator = make_navigator(monitor, store, quiet_logger)
        navigator.start(session)

        navigator.handle_location(at(Coordinate(48.0046, 11.0)))

        assert session.visited_poi_ids == {fountain.poi_id}
        assert store.save.call_count == 2

    def test_arrival_finishes_walk(self, monitor, store, quiet_logger, session, path):
        navigator = make_navigator(monitor, store, quiet_logger)
        navigator.start(session)

        navigator.handle_location(at(path[-1]))

        assert navigator.finished
        assert session.closed
        assert monitor.state == TrackingState.IDLE
        store.record_walk.assert_called_once_with(navigator.summary)
        store.clear.assert_called_once()

    def test_ignored_after_finish(self, monitor, store, quiet_logger, session, path):
        navigator = make_navigator(monitor, store, quiet_logger)
        navigator.start(session)
        navigator.handle_location(at(path[-1]))
        navigator.handle_location(at(path[0]))
        store.record_walk.assert_called_once()

    def test_step_advances_with_progress(self, monitor, store, quiet_logger, session):
        navigator = make_navigator(monitor, store, quiet_logger)
        navigator.start(session)
        navigator.handle_location(at(Coordinate(48.007, 11.0)))
        assert session.current_step == 1


class TestFirstFix:

    def test_backs_off_until_a_fix_arrives(self, monitor, store, session, path):
        events = []
        logger = Logger(callback=lambda message, data: events.append(message), echo=False)
        source = MagicMock()
        source.get_location.side_effect = [None, None, at(path[0])]
        source.get_status.return_value = "no gps fix for 1 attempts (timeout)"
        navigator = make_navigator(monitor, store, logger, source=source)
        navigator.start(session)

        with patch("storywalk.app.time.sleep") as sleep:
            location = navigator.acquire_first_fix(max_time=60)

        assert location.lat == path[0].latitude
        assert [c.args[0] for c in sleep.call_args_list] == [1.0, 2.0]
        assert events.count("GPS attempt failed") == 2
        assert "First fix" in events
        assert navigator.current_position == path[0]

    def test_gives_up_after_max_time(self, monitor, store, session, capsys):
        events = []
        logger = Logger(callback=lambda message, data: events.append(message), echo=False)
        source = MagicMock()
        source.get_location.return_value = None
        navigator = make_navigator(monitor, store, logger, source=source)
        navigator.start(session)

        with patch("storywalk.app.time.sleep") as sleep:
            assert navigator.acquire_first_fix(max_time=0) is None

        sleep.assert_not_called()
        assert "Could not get GPS location after retries" in events
        assert "Could not get GPS location" in capsys.readouterr().out


class TestStatus:

    def test_state_reports_remaining_distance_and_time(self, monitor, store, quiet_logger, session):
        navigator = make_navigator(monitor, store, quiet_logger)
        navigator.start(session)
        navigator.handle_location(at(Coordinate(48.0046, 11.0)))

        state = navigator.get_state()

        assert state["tracking_state"] == "tracking"
        assert state["remaining"] == "500m"
        assert state["remaining_time"] == "15 min"
        assert state["gps_status"].startswith("standing at")

    def test_route_display_shows_remaining(self, monitor, store, quiet_logger, session, capsys):
        navigator = make_navigator(monitor, store, quiet_logger)
        navigator.start(session)
        assert "Remaining: 1.0km, 15 min" in capsys.readouterr().out

    def test_playback_found_behind_recorder(self, tmp_path, monitor, store, quiet_logger, path):
        trace_file = tmp_path / "trace.json"
        trace_file.write_text(json.dumps(build_trace(path, spacing=600, interval=4)))
        playback = TracePlayback(str(trace_file), speed=2.0)
        recorder = TraceRecorder(playback, str(tmp_path / "out.json"))
        navigator = make_navigator(monitor, store, quiet_logger, source=recorder)

        assert navigator.playback is playback
        recorder.get_location()
        assert navigator.get_poll_interval() == pytest.approx(2.0)
        assert not navigator.is_playback_finished()


class TestDeviation:

    @pytest.mark.anyio
    async def test_dismiss_suppresses(self, monitor, store, quiet_logger, session):
        navigator = make_navigator(monitor, store, quiet_logger, decide=fixed_decision(False))
        navigator.start(session)

        navigator.handle_location(at(destination_point(48.002, 11.0, 90, 200)))
        await navigator._prompt_task

        assert monitor.state == TrackingState.SUPPRESSED

    @pytest.mark.anyio
    async def test_accept_recalculates(self, monitor, store, quiet_logger, session, make_route):
        here = destination_point(48.002, 11.0, 90, 200)
        new_route = make_route([here, Coordinate(48.009, 11.0)], highlights=("Market",))
        client = FakeClient(new_route)
        navigator = make_navigator(monitor, store, quiet_logger, client=client, decide=fixed_decision(True))
        navigator.start(session)

        navigator.handle_location(at(here))
        await navigator._prompt_task

        assert client.calls == 1
        assert session.route is new_route
        assert monitor.state == TrackingState.TRACKING

    @pytest.mark.anyio
    async def test_failed_recalculation_keeps_route(self, monitor, store, quiet_logger, session, route):
        client = FakeClient(error=RoutingError("Request failed"))
        navigator = make_navigator(monitor, store, quiet_logger, client=client, decide=fixed_decision(True))
        navigator.start(session)

        navigator.handle_location(at(destination_point(48.002, 11.0, 90, 200)))
        await navigator._prompt_task

        assert session.route is route
        assert monitor.state == TrackingState.TRACKING

    @pytest.mark.anyio
    async def test_one_prompt_at_a_time(self, monitor, store, quiet_logger, session):
        asked = []

        async def decide(proximity):
            asked.append(proximity)
            return False

        navigator = make_navigator(monitor, store, quiet_logger, decide=decide)
        navigator.start(session)
        navigator.handle_location(at(destination_point(48.002, 11.0, 90, 200)))
        navigator.handle_location(at(destination_point(48.002, 11.0, 90, 300)))
        await navigator._prompt_task

        assert len(asked) == 1


class TestAskUser:

    @pytest.mark.anyio
    async def test_default_is_yes(self):
        with patch("builtins.input", return_value=""):
            assert await ask_user(MagicMock(spec=PathProximity)) is True

    @pytest.mark.anyio
    async def test_no(self):
        with patch("builtins.input", return_value="n"):
            assert await ask_user(MagicMock(spec=PathProximity)) is False

    @pytest.mark.anyio
    async def test_closed_input(self):
        with patch("builtins.input", side_effect=EOFError):
            assert await ask_user(MagicMock(spec=PathProximity)) is False


@pytest.mark.anyio
async def test_playback_walk_with_detour(tmp_path, monitor, quiet_logger, session, path):
    trace_file = tmp_path / "trace.json"
    trace = build_trace(path, spacing=100, interval=1, detour_at=0.3, detour_meters=250, detour_samples=2)
    trace_file.write_text(json.dumps(trace))
    store = SessionStore(str(tmp_path / "walk.db"), logger=quiet_logger)
    source = TracePlayback(str(trace_file), speed=100)
    navigator = make_navigator(monitor, store, quiet_logger, decide=fixed_decision(False), source=source)
    navigator.start(session)

    await navigator.run()

    assert navigator.finished
    assert monitor.deviations == 1
    assert navigator.summary["visited_pois"] == ["Fountain"]
    assert store.load() is None
    assert store.get_stats()["total_walks"] == 1
