"""Build synthetic location traces along a route for playback.

Usage:
    python -m storywalk.trace route.json -o trace.json
    python -m storywalk.trace route.json --detour-at 0.4 --detour-meters 200
"""

import argparse
import json
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence

from .config import CONFIG
from .geo import bearing_between, destination_point, distance
from .models import Coordinate, Location
from .polyline import decode


def trace_entry(location: Optional[Location], elapsed: float, status: str,
                started: Optional[float] = None, **extra) -> dict:
    """One trace sample; location None records a failed fix"""
    started = started if started is not None else time.time() - elapsed
    entry = {
        "elapsed": round(elapsed, 3),
        "timestamp": started + elapsed,
        "location": location.to_dict() if location else None,
        "status": status,
    }
    entry.update(extra)
    return entry


def write_trace(path, entries: list[dict]):
    with open(path, "w") as f:
        json.dump({"recorded_at": datetime.now().isoformat(), "trace": entries}, f, indent=2)


def load_trace(path) -> list[dict]:
    """Read the samples of a trace file.

    Raises ValueError when the file is not a trace.
    """
    with open(path) as f:
        data = json.load(f)
    entries = data.get("trace") if isinstance(data, dict) else None
    if not isinstance(entries, list):
        raise ValueError(f"{path} is not a location trace")
    return entries


def walk_path(path: Sequence[Coordinate], spacing: float) -> list[tuple[Coordinate, float]]:
    """Sample a path every `spacing` meters.

    Returns (point, bearing) pairs, bearing being the heading of the segment
    the sample lies on. The last vertex is always included.
    """
    samples: list[tuple[Coordinate, float]] = []
    if not path:
        return samples
    if len(path) == 1:
        return [(path[0], 0.0)]

    carry = 0.0
    bearing = 0.0
    for start, end in zip(path, path[1:]):
        seg_len = distance(start, end)
        bearing = bearing_between(start.latitude, start.longitude, end.latitude, end.longitude)
        offset = carry
        while offset < seg_len:
            samples.append((destination_point(start.latitude, start.longitude, bearing, offset), bearing))
            offset += spacing
        carry = offset - seg_len
    samples.append((path[-1], bearing))
    return samples


def build_trace(path: Sequence[Coordinate], spacing: Optional[float] = None,
                interval: Optional[float] = None, detour_at: Optional[float] = None,
                detour_meters: float = 0.0, detour_samples: int = 5) -> dict:
    """Create a playback trace that walks the path.

    Args:
        path: Route path to follow
        spacing: Meters between samples
        interval: Seconds between samples
        detour_at: Fraction (0-1) of the samples where a detour starts
        detour_meters: Sideways offset of the detour, to the right of travel
        detour_samples: Number of samples pushed off the path
    """
    spacing = spacing or CONFIG["trace_spacing"]
    interval = interval or CONFIG["trace_interval"]
    samples = walk_path(path, spacing)

    detour_start = None
    if detour_at is not None and detour_meters and samples:
        detour_start = int(detour_at * (len(samples) - 1))

    now = time.time()
    trace = []
    for i, (point, bearing) in enumerate(samples):
        if detour_start is not None and detour_start <= i < detour_start + detour_samples:
            point = destination_point(point.latitude, point.longitude, (bearing + 90) % 360, detour_meters)
        location = Location(lat=round(point.latitude, 7), lon=round(point.longitude, 7),
                            accuracy=5.0, timestamp=now + i * interval)
        trace.append(trace_entry(location, i * interval, "synthetic", started=now))

    return {"recorded_at": datetime.now().isoformat(), "trace": trace}


def main(argv=None):
    parser = argparse.ArgumentParser(description="Create a synthetic location trace along a route")
    parser.add_argument("route", help="Route JSON (proposal with route_polyline) or a raw polyline string")
    parser.add_argument("-o", "--output", default="trace.json",
                        help="Output file (default: trace.json)")
    parser.add_argument("--spacing", type=float, default=CONFIG["trace_spacing"],
                        help="Meters between samples")
    parser.add_argument("--interval", type=float, default=CONFIG["trace_interval"],
                        help="Seconds between samples")
    parser.add_argument("--detour-at", type=float, metavar="FRACTION",
                        help="Where along the walk (0-1) to leave the route")
    parser.add_argument("--detour-meters", type=float, default=200.0,
                        help="How far off the route the detour goes")
    parser.add_argument("--detour-samples", type=int, default=5,
                        help="How many samples stay off the route")
    args = parser.parse_args(argv)

    if Path(args.route).exists():
        with open(args.route) as f:
            data = json.load(f)
        data = data.get("updated_route", data)
        encoded = data.get("route_polyline", "")
    else:
        encoded = args.route

    path = decode(encoded)
    if len(path) < 2:
        print("Route has fewer than two points")
        return 1

    trace = build_trace(path, args.spacing, args.interval, args.detour_at,
                        args.detour_meters, args.detour_samples)
    write_trace(args.output, trace["trace"])
    print(f"Trace saved to {args.output} ({len(trace['trace'])} samples)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
