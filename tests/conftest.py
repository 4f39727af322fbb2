import pytest

from storywalk.logger import Logger
from storywalk.models import Coordinate, PointOfInterest, Route, WalkMode
from storywalk.monitor import DeviationMonitor
from storywalk.polyline import encode
from storywalk.session import RouteSession


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def quiet_logger():
    return Logger(echo=False)


@pytest.fixture
def path():
    """Straight walk due north, two segments of about 500m each"""
    return [Coordinate(48.0, 11.0), Coordinate(48.0045, 11.0), Coordinate(48.009, 11.0)]


@pytest.fixture
def make_route():
    def _make(points, route_id="proposal-1", title="Old Town", highlights=("Bakery", "Fountain", "Market"),
              distance_meters=900, pois=()):
        return Route.from_polyline(
            id=route_id,
            title=title,
            story="A stroll past the old market",
            duration_minutes=15,
            distance_meters=distance_meters,
            highlights=highlights,
            polyline=encode(points),
            pois=pois,
        )
    return _make


@pytest.fixture
def fountain():
    return PointOfInterest("poi-fountain", "Fountain", Coordinate(48.0045, 11.0))


@pytest.fixture
def route(make_route, path, fountain):
    return make_route(path, pois=(fountain,))


@pytest.fixture
def session(route):
    return RouteSession(route, mode=WalkMode.DESTINATION, destination=Coordinate(48.009, 11.0))


@pytest.fixture
def monitor(quiet_logger):
    return DeviationMonitor(threshold=150, poll_interval=0.01, logger=quiet_logger)
