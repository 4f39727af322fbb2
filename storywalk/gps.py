"""Where the walker is: the phone's fix, a fixed point, or a replayed trace.

Every source has ``get_location(timeout) -> Optional[Location]`` and
``get_status() -> str``. None means no fix this time; the walk loop keeps
going and the deviation timer re-checks the last known position.
"""

import json
import subprocess
import time
from typing import Callable, Optional

from .config import CONFIG
from .geo import distance
from .logger import Logger
from .models import Coordinate, Location
from .trace import load_trace, trace_entry, write_trace


class DeviceLocation:
    """Fixes from the phone through termux-location"""

    def __init__(self, provider: str = "gps"):
        self.provider = provider
        self.last_fix: Optional[Location] = None
        self.misses = 0
        self.last_error: Optional[str] = None

    def get_location(self, timeout: int = 30) -> Optional[Location]:
        try:
            result = subprocess.run(
                ["termux-location", "-p", self.provider, "-r", "once"],
                capture_output=True,
                text=True,
                timeout=timeout
            )
        except subprocess.TimeoutExpired:
            return self._miss("timeout")
        except FileNotFoundError:
            return self._miss("termux-location not installed")

        if result.returncode != 0 or not (result.stdout or "").strip():
            return self._miss((result.stderr or "").strip() or "no fix reported")

        try:
            data = json.loads(result.stdout)
            fix = Location(
                lat=float(data["latitude"]),
                lon=float(data["longitude"]),
                accuracy=data.get("accuracy"),
                timestamp=time.time()
            )
        except (ValueError, KeyError, TypeError) as e:
            return self._miss(f"bad output: {e}")
        # A fix off the globe would be measured against the route as a huge detour
        if not fix.coordinate.is_valid:
            return self._miss(f"fix out of range ({fix.lat}, {fix.lon})")

        self.last_fix = fix
        self.misses = 0
        self.last_error = None
        return fix

    def _miss(self, reason: str) -> None:
        self.misses += 1
        self.last_error = reason
        return None

    def get_status(self) -> str:
        if self.misses == 0:
            if self.last_fix and self.last_fix.accuracy:
                return f"{self.provider} fix, accuracy {self.last_fix.accuracy:.0f}m"
            return f"{self.provider} fix"
        return f"no {self.provider} fix for {self.misses} attempts ({self.last_error})"


class FixedLocation:
    """Stands still at one point (--lat/--lon)"""

    def __init__(self, lat: float, lon: float):
        self.position = Coordinate.checked(lat, lon)

    def get_location(self, timeout: int = 30) -> Optional[Location]:
        return Location(lat=self.position.latitude, lon=self.position.longitude,
                        accuracy=0, timestamp=time.time())

    def get_status(self) -> str:
        return f"standing at {self.position.latitude:.5f}, {self.position.longitude:.5f}"


class TraceRecorder:
    """Wraps a source and writes what it saw to a trace file for later playback.

    Fixes closer than `min_move` meters to the last recorded one are skipped
    unless the tracking state changed in between, so a standing walker does
    not fill the file. Missed fixes are always kept.
    """

    def __init__(self, source, path: str, tracking_state: Optional[Callable[[], str]] = None,
                 min_move: Optional[float] = None, logger: Optional[Logger] = None):
        self.source = source
        self.path = path
        self.tracking_state = tracking_state
        self.min_move = min_move if min_move is not None else CONFIG["record_min_move"]
        self.logger = logger or Logger(echo=False)
        self.entries: list[dict] = []
        self.started = time.time()
        self._last_recorded: Optional[Location] = None
        self._last_state: Optional[str] = None

    def get_location(self, timeout: int = 30) -> Optional[Location]:
        location = self.source.get_location(timeout)
        state = self.tracking_state() if self.tracking_state else None
        if self._should_record(location, state):
            extra = {"tracking_state": state} if state else {}
            self.entries.append(trace_entry(location, time.time() - self.started,
                                            self.source.get_status(), started=self.started, **extra))
            if location:
                self._last_recorded = location
        self._last_state = state
        return location

    def _should_record(self, location: Optional[Location], state: Optional[str]) -> bool:
        if location is None or self._last_recorded is None or state != self._last_state:
            return True
        return distance(location.coordinate, self._last_recorded.coordinate) >= self.min_move

    def get_status(self) -> str:
        return self.source.get_status()

    def save(self):
        write_trace(self.path, self.entries)
        self.logger.log("Trace saved", {"path": self.path, "samples": len(self.entries)})


class TracePlayback:
    """Replays a trace file, one sample per call"""

    def __init__(self, path: str, speed: float = 1.0):
        if speed <= 0:
            raise ValueError("Playback speed must be positive")
        self.path = path
        self.speed = speed
        self.entries = load_trace(path)
        self.index = 0
        self.misses = 0

    def get_location(self, timeout: int = 30) -> Optional[Location]:
        if self.finished:
            return None
        entry = self.entries[self.index]
        self.index += 1
        if not entry.get("location"):
            self.misses += 1
            return None
        self.misses = 0
        return Location.from_dict(entry["location"])

    def next_delay(self) -> float:
        """Seconds until the next sample, scaled by speed and kept within 0.1-5 s"""
        if self.index <= 0 or self.finished:
            return CONFIG["gps_poll_interval"] / self.speed
        gap = self.entries[self.index].get("elapsed", 0) - self.entries[self.index - 1].get("elapsed", 0)
        return max(0.1, min(gap / self.speed, 5.0))

    @property
    def finished(self) -> bool:
        return self.index >= len(self.entries)

    def get_status(self) -> str:
        progress = f"sample {self.index}/{len(self.entries)}"
        if self.misses:
            return f"replaying, {progress}, {self.misses} missed"
        return f"replaying, {progress}"
