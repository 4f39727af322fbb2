"""SQLite persistence for the active walk and finished-walk history."""

import json
import sqlite3
from contextlib import closing
from datetime import datetime
from typing import Optional

from .config import CONFIG
from .logger import Logger
from .models import Coordinate, PointOfInterest, Route, VisitedPoi, WalkMode
from .session import RouteSession


def _json_or(value: Optional[str], default):
    if value is None:
        return default
    try:
        return json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return default


def _number_or(value: Optional[str], default, cast=int):
    if value is None:
        return default
    try:
        return cast(float(value))
    except (TypeError, ValueError):
        return default


class SessionStore:
    """Key/value record of the active walk plus a walks history table.

    Each call opens its own connection; failures are logged and reported
    as False/None since losing the record only means the walk cannot be
    resumed after a restart.
    """

    def __init__(self, db_path: Optional[str] = None, logger: Optional[Logger] = None):
        self.db_path = db_path or CONFIG["session_db_path"]
        self.logger = logger or Logger()
        self._schema_ready = False

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        if not self._schema_ready:
            try:
                self._init_schema(conn)
            except sqlite3.Error:
                conn.close()
                raise
            self._schema_ready = True
        return conn

    def _init_schema(self, conn: sqlite3.Connection):
        """Create database tables"""
        conn.execute("""
            CREATE TABLE IF NOT EXISTS session_state (
                key TEXT PRIMARY KEY,
                value TEXT
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS walks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                proposal_id TEXT,
                title TEXT,
                started_at TEXT,
                ended_at TEXT,
                distance_meters REAL,
                visited_pois TEXT,
                recalculations INTEGER
            )
        """)
        conn.commit()

    def save(self, session: RouteSession) -> bool:
        """Persist the session so it can be resumed"""
        route = session.route
        record = {
            "proposal_id": route.id,
            "title": route.title,
            "duration_minutes": str(route.duration_minutes),
            "distance_meters": str(route.distance_meters),
            "description": route.story,
            "polyline": route.polyline,
            "highlights": json.dumps(list(route.highlights)),
            "step_descriptions": json.dumps([step.description for step in session.steps]),
            "pois": json.dumps([
                {"poi_id": poi.poi_id, "name": poi.name, **poi.coordinate.to_dict()}
                for poi in route.pois
            ]),
            "mode": session.mode.value,
            "destination": json.dumps(session.destination.to_dict()) if session.destination else None,
            "visited_pois": json.dumps([poi.to_dict() for poi in session.visited_pois]),
            "session_id": session.session_id,
            "started_at": str(session.started_at),
        }
        try:
            with closing(self._connect()) as conn:
                with conn:
                    conn.execute("DELETE FROM session_state")
                    conn.executemany(
                        "INSERT INTO session_state (key, value) VALUES (?, ?)",
                        [(k, v) for k, v in record.items() if v is not None],
                    )
        except sqlite3.Error as e:
            self.logger.log("Session save failed", {"error": str(e)})
            return False
        return True

    def _read_record(self) -> dict:
        with closing(self._connect()) as conn:
            cursor = conn.execute("SELECT key, value FROM session_state")
            return {row[0]: row[1] for row in cursor.fetchall()}

    @staticmethod
    def _pois_from_record(record: dict) -> list[PointOfInterest]:
        pois = []
        for item in _json_or(record.get("pois"), []) or []:
            try:
                pois.append(PointOfInterest(
                    poi_id=str(item["poi_id"]),
                    name=str(item.get("name", "")),
                    coordinate=Coordinate.from_dict(item),
                ))
            except (KeyError, TypeError, ValueError, AttributeError):
                continue
        return pois

    def load(self) -> Optional[RouteSession]:
        """Restore the saved session, or None if there is nothing resumable"""
        try:
            record = self._read_record()
        except sqlite3.Error as e:
            self.logger.log("Session load failed", {"error": str(e)})
            return None

        proposal_id = record.get("proposal_id")
        polyline = record.get("polyline")
        if not proposal_id or not polyline:
            return None

        highlights = _json_or(record.get("highlights"), [])
        if not isinstance(highlights, list):
            highlights = []
        route = Route.from_polyline(
            id=proposal_id,
            title=record.get("title") or "",
            story=record.get("description") or "",
            duration_minutes=_number_or(record.get("duration_minutes"), 0),
            distance_meters=_number_or(record.get("distance_meters"), 0),
            highlights=[str(h) for h in highlights],
            polyline=polyline,
            pois=self._pois_from_record(record),
        )
        if not route.is_usable:
            self.logger.log("Stored route is not usable", {"proposal_id": proposal_id})
            return None

        try:
            mode = WalkMode(record.get("mode") or WalkMode.DESTINATION.value)
        except ValueError:
            mode = WalkMode.DESTINATION

        destination = None
        dest_data = _json_or(record.get("destination"), None)
        if isinstance(dest_data, dict):
            try:
                destination = Coordinate.from_dict(dest_data)
            except (KeyError, TypeError, ValueError):
                destination = None

        visited = []
        for item in _json_or(record.get("visited_pois"), []) or []:
            if isinstance(item, dict) and item.get("poi_id"):
                visited.append(VisitedPoi(str(item["poi_id"]), str(item.get("name", ""))))

        return RouteSession(
            route,
            mode=mode,
            destination=destination,
            visited_pois=visited,
            session_id=record.get("session_id"),
            started_at=_number_or(record.get("started_at"), None, cast=float),
        )

    def clear(self) -> bool:
        """Forget the saved session"""
        try:
            with closing(self._connect()) as conn:
                with conn:
                    conn.execute("DELETE FROM session_state")
        except sqlite3.Error as e:
            self.logger.log("Session clear failed", {"error": str(e)})
            return False
        return True

    def record_walk(self, summary: dict) -> Optional[int]:
        """Add a finished walk to the history. Returns the walk ID."""
        now = datetime.now().isoformat()
        started = summary.get("started_at")
        started_at = datetime.fromtimestamp(started).isoformat() if started else now
        try:
            with closing(self._connect()) as conn:
                with conn:
                    cursor = conn.execute(
                        """INSERT INTO walks (proposal_id, title, started_at, ended_at,
                                              distance_meters, visited_pois, recalculations)
                           VALUES (?, ?, ?, ?, ?, ?, ?)""",
                        (summary.get("proposal_id"), summary.get("title"), started_at, now,
                         summary.get("distance_meters", 0),
                         json.dumps(summary.get("visited_pois", [])),
                         summary.get("recalculations", 0)),
                    )
                    return cursor.lastrowid
        except sqlite3.Error as e:
            self.logger.log("Walk history write failed", {"error": str(e)})
            return None

    def get_stats(self) -> dict:
        """Get overall walking stats"""
        try:
            with closing(self._connect()) as conn:
                rows = conn.execute("SELECT distance_meters, visited_pois FROM walks").fetchall()
        except sqlite3.Error as e:
            self.logger.log("Walk history read failed", {"error": str(e)})
            return {"total_walks": 0, "total_distance_km": 0, "pois_visited": 0}
        return {
            "total_walks": len(rows),
            "total_distance_km": sum(row[0] or 0 for row in rows) / 1000,
            "pois_visited": sum(len(_json_or(row[1], [])) for row in rows),
        }
