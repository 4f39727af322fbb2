import sqlite3

import pytest

from storywalk.models import Coordinate, Route, VisitedPoi, WalkMode
from storywalk.session import RouteSession
from storywalk.store import SessionStore


@pytest.fixture
def store(tmp_path, quiet_logger):
    return SessionStore(str(tmp_path / "session.db"), logger=quiet_logger)


class TestSessionState:

    def test_nothing_saved(self, store):
        assert store.load() is None

    def test_save_and_load(self, store, session, route, fountain):
        session.mark_poi_visited("poi-bakery", "Bakery")
        assert store.save(session) is True

        restored = store.load()

        assert restored.route.id == route.id
        assert restored.route.title == route.title
        assert restored.route.story == route.story
        assert restored.route.polyline == route.polyline
        assert restored.route.path == route.path
        assert restored.route.highlights == route.highlights
        assert restored.route.distance_meters == 900
        assert restored.route.pois == (fountain,)
        assert restored.mode == WalkMode.DESTINATION
        assert restored.destination == Coordinate(48.009, 11.0)
        assert restored.visited_pois == [VisitedPoi("poi-bakery", "Bakery")]
        assert restored.session_id == session.session_id
        assert restored.started_at == pytest.approx(session.started_at)

    def test_save_replaces_previous_record(self, store, session, make_route, path):
        store.save(session)
        session.apply_route(make_route(path[1:], route_id="proposal-2", highlights=("Market",)))
        store.save(session)
        assert store.load().route.id == "proposal-2"

    def test_time_based_without_destination(self, store, route):
        store.save(RouteSession(route, mode=WalkMode.TIME_BASED))
        restored = store.load()
        assert restored.mode == WalkMode.TIME_BASED
        assert restored.destination is None

    def test_clear(self, store, session):
        store.save(session)
        assert store.clear() is True
        assert store.load() is None

    def test_unusable_stored_route(self, store):
        route = Route.from_polyline("proposal-3", "Broken", "", 10, 100, [], "_p~iF~ps|U")
        store.save(RouteSession(route))
        assert store.load() is None

    def test_unwritable_database(self, tmp_path, session, quiet_logger):
        broken = SessionStore(str(tmp_path), logger=quiet_logger)
        assert broken.save(session) is False
        assert broken.load() is None
        assert broken.clear() is False

    def test_corrupt_values_fall_back(self, store, session):
        store.save(session)
        conn = sqlite3.connect(store.db_path)
        with conn:
            conn.execute("UPDATE session_state SET value = 'oops' WHERE key IN ('highlights', 'mode', 'duration_minutes')")
        conn.close()

        restored = store.load()

        assert restored.route.highlights == ()
        assert restored.mode == WalkMode.DESTINATION
        assert restored.route.duration_minutes == 0


class TestHistory:

    def test_empty_stats(self, store):
        assert store.get_stats() == {"total_walks": 0, "total_distance_km": 0, "pois_visited": 0}

    def test_record_walk(self, store, session):
        session.mark_poi_visited("poi-1", "Fountain")
        walk_id = store.record_walk(session.summary())
        assert walk_id == 1

        store.record_walk({"proposal_id": "p2", "title": "Short", "distance_meters": 600,
                           "visited_pois": [], "recalculations": 1})

        stats = store.get_stats()
        assert stats["total_walks"] == 2
        assert stats["total_distance_km"] == pytest.approx(1.5)
        assert stats["pois_visited"] == 1
