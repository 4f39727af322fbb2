"""Exception types for StoryWalk."""

from typing import Optional


class StorywalkError(Exception):
    """Base class for all StoryWalk errors"""


class MalformedPolyline(StorywalkError):
    """Encoded polyline ended mid-value or held characters outside the alphabet.

    Only raised by strict decoding. ``decoded`` holds every complete
    coordinate pair read before the problem.
    """

    def __init__(self, message: str, decoded: Optional[list] = None, position: int = 0):
        super().__init__(message)
        self.decoded = decoded or []
        self.position = position


class InvalidCoordinate(StorywalkError, ValueError):
    """Latitude outside [-90, 90] or longitude outside [-180, 180]"""


class MissingSessionContext(StorywalkError):
    """A recalculation was requested without a route id or a current position"""


class RoutingError(StorywalkError):
    """The routing service could not be reached or returned an unusable answer"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RecalculationTransportFailure(StorywalkError):
    """Recalculation failed; the previous route is still active"""


class StaleRecalculationResult(StorywalkError):
    """A recalculation finished after its session was cleared or replaced"""
