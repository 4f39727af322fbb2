"""Ambient context sent along with routing requests."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from .config import CONFIG


@dataclass(frozen=True)
class AmbientContext:
    weather: str
    time_of_day: str

    def to_dict(self) -> dict:
        return {"weather": self.weather, "time_of_day": self.time_of_day}


def time_of_day(hour: int) -> str:
    """Bucket an hour (0-23) into morning/afternoon/evening/night"""
    if 5 <= hour < 12:
        return "morning"
    elif 12 <= hour < 17:
        return "afternoon"
    elif 17 <= hour < 21:
        return "evening"
    return "night"


def current_context(weather: Optional[str] = None,
                    now: Optional[datetime] = None) -> AmbientContext:
    now = now or datetime.now()
    return AmbientContext(
        weather=weather or CONFIG["default_weather"],
        time_of_day=time_of_day(now.hour),
    )
