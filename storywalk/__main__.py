#!/usr/bin/env python3
"""
StoryWalk - Follow a story route and get back on track when you stray

Usage:
    python -m storywalk [options]

Options:
    --route FILE        Start a walk from a route proposal JSON file
    --propose           Ask the routing service for proposals (requires --lat/--lon)
    --resume            Resume the walk saved in the session database
    --clear             Forget the saved walk and exit
    --stats             Print walk history totals and exit
    --walks             List shared walks near --lat/--lon (or inside --bbox) and exit
    --walk ID           Walk a shared walk again
    --decode POLYLINE   Print the coordinates of an encoded polyline and exit
    --playback FILE     Replay a location trace from JSON file
    --speed FACTOR      Playback speed multiplier (default: 1.0)
    --record FILE       Record the location trace to JSON file
    --lat LAT           Fixed latitude (for testing without GPS)
    --lon LON           Fixed longitude (for testing without GPS)
    --on-deviation X    ask | accept | dismiss (default: ask)
"""

import argparse
import asyncio
import json
import sys
from datetime import datetime
from pathlib import Path

from .app import Navigator, ask_user, fixed_decision
from .config import CONFIG
from .context import current_context
from .coordinator import RecalculationCoordinator
from .errors import RoutingError
from .gps import DeviceLocation, FixedLocation, TracePlayback, TraceRecorder
from .logger import Logger
from .models import Coordinate, WalkMode
from .monitor import DeviationMonitor
from .polyline import bounding_region, decode, is_valid
from .routing import RoutingClient, bbox_around, route_from_payload
from .session import RouteSession, format_distance
from .store import SessionStore


def _print_decoded(encoded: str):
    coords = decode(encoded)
    for i, c in enumerate(coords):
        print(f"{i:4d}  {c.latitude:.5f}, {c.longitude:.5f}")
    print(f"{len(coords)} points, valid: {is_valid(coords)}")
    region = bounding_region(coords)
    if region:
        print(f"center: {region.center.latitude:.5f}, {region.center.longitude:.5f}  "
              f"span: {region.lat_delta:.5f} x {region.lon_delta:.5f}")


def _session_from_file(path: str, args) -> RouteSession:
    with open(path) as f:
        data = json.load(f)
    route = route_from_payload(data)
    destination = None
    if args.dest_lat is not None:
        destination = Coordinate.checked(args.dest_lat, args.dest_lon)
    elif isinstance(data.get("destination"), dict):
        destination = Coordinate.from_dict(data["destination"])
    mode = WalkMode(data.get("mode") or (WalkMode.DESTINATION if destination else WalkMode.TIME_BASED))
    return RouteSession(route, mode=mode, destination=destination)


def _session_from_proposals(client: RoutingClient, args) -> RouteSession:
    start = Coordinate.checked(args.lat, args.lon)
    destination = None
    if args.dest_lat is not None:
        destination = Coordinate.checked(args.dest_lat, args.dest_lon)
    routes = client.propose(
        start,
        destination=destination,
        duration_minutes=args.minutes,
        theme=args.theme,
        context=current_context(args.weather),
    )
    if not routes:
        raise RoutingError("No route proposals returned")
    for i, route in enumerate(routes):
        print(f"  [{i}] {route.title} - {route.distance_meters}m, {route.duration_minutes} min")
    pick = min(max(args.pick, 0), len(routes) - 1)
    mode = WalkMode.DESTINATION if destination else WalkMode.TIME_BASED
    return RouteSession(routes[pick], mode=mode, destination=destination)


def _print_walks(client: RoutingClient, args):
    bbox = args.bbox
    if bbox is None and args.lat is not None:
        bbox = bbox_around(Coordinate.checked(args.lat, args.lon))
    walks = client.walks(bbox)
    if not walks:
        print("No shared walks found")
        return
    for walk in walks:
        area = f" ({walk.area_name})" if walk.area_name else ""
        print(f"  {walk.id}  {walk.title}{area} - {format_distance(walk.distance_meters)}, "
              f"{walk.duration_minutes} min")
        if walk.summary:
            print(f"      {walk.summary}")


def _print_stats(store: SessionStore):
    stats = store.get_stats()
    print(f"Walks completed: {stats['total_walks']}")
    print(f"Distance walked: {stats['total_distance_km']:.1f} km")
    print(f"Places visited: {stats['pois_visited']}")


def main():
    parser = argparse.ArgumentParser(
        description="StoryWalk - Follow a story route and get back on track when you stray"
    )
    parser.add_argument("--route", metavar="FILE",
                        help="Route proposal JSON file to walk")
    parser.add_argument("--propose", action="store_true",
                        help="Request route proposals from the service (requires --lat/--lon)")
    parser.add_argument("--pick", type=int, default=0,
                        help="Which proposal to walk (default: 0)")
    parser.add_argument("--dest-lat", type=float, metavar="LAT",
                        help="Destination latitude (destination mode)")
    parser.add_argument("--dest-lon", type=float, metavar="LON",
                        help="Destination longitude (destination mode)")
    parser.add_argument("--minutes", type=int, default=60,
                        help="Walk length for time-based proposals (default: 60)")
    parser.add_argument("--theme", default=CONFIG["default_theme"],
                        help=f"Proposal theme (default: {CONFIG['default_theme']})")
    parser.add_argument("--weather", default=None,
                        help=f"Weather sent to the service (default: {CONFIG['default_weather']})")
    parser.add_argument("--resume", action="store_true",
                        help="Resume the saved walk")
    parser.add_argument("--clear", action="store_true",
                        help="Forget the saved walk and exit")
    parser.add_argument("--stats", action="store_true",
                        help="Print walk history totals and exit")
    parser.add_argument("--walks", action="store_true",
                        help="List shared walks near --lat/--lon (or inside --bbox) and exit")
    parser.add_argument("--bbox", metavar="MINLON,MINLAT,MAXLON,MAXLAT",
                        help="Area for --walks")
    parser.add_argument("--walk", metavar="ID",
                        help="Walk a shared walk again")
    parser.add_argument("--decode", metavar="POLYLINE",
                        help="Decode an encoded polyline and exit")
    parser.add_argument("--playback", metavar="FILE",
                        help="Playback location trace from JSON file")
    parser.add_argument("--speed", type=float, default=1.0,
                        help="Playback speed multiplier (default: 1.0)")
    parser.add_argument("--record", metavar="FILE",
                        help="Record location trace to JSON file")
    parser.add_argument("--lat", type=float, metavar="LAT",
                        help="Fixed latitude (for testing without GPS)")
    parser.add_argument("--lon", type=float, metavar="LON",
                        help="Fixed longitude (for testing without GPS)")
    parser.add_argument("--threshold", type=float, default=CONFIG["deviation_threshold"],
                        help=f"Deviation threshold in meters (default: {CONFIG['deviation_threshold']})")
    parser.add_argument("--server", default=CONFIG["api_base_url"],
                        help=f"Routing service base URL (default: {CONFIG['api_base_url']})")
    parser.add_argument("--db", default=CONFIG["session_db_path"],
                        help=f"Session database (default: {CONFIG['session_db_path']})")
    parser.add_argument("--log", metavar="FILE",
                        help="Log file path (default: storywalk_TIMESTAMP.log)")
    parser.add_argument("--on-deviation", choices=["ask", "accept", "dismiss"], default="ask",
                        help="What to do when you leave the route (default: ask)")

    args = parser.parse_args()

    if (args.lat is None) != (args.lon is None):
        parser.error("--lat and --lon must be used together")
    if (args.dest_lat is None) != (args.dest_lon is None):
        parser.error("--dest-lat and --dest-lon must be used together")
    if args.propose and args.lat is None:
        parser.error("--propose requires --lat and --lon")

    # Decode: early exit
    if args.decode is not None:
        _print_decoded(args.decode)
        return
    if not (args.clear or args.stats or args.walks or args.resume or args.route
            or args.propose or args.walk):
        parser.error("one of --route, --propose, --walk, --walks, --resume, --stats or --clear is required")

    log_path = args.log
    if not log_path:
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_path = f"storywalk_{timestamp}.log"
    logger = Logger(log_path)
    store = SessionStore(args.db, logger=logger)

    # Clear saved walk: early exit
    if args.clear:
        store.clear()
        print("Saved walk cleared.")
        logger.close()
        return

    # Walk history: early exit
    if args.stats:
        _print_stats(store)
        logger.close()
        return

    client = RoutingClient(args.server, logger=logger)

    # Shared walks: early exit
    if args.walks:
        try:
            _print_walks(client, args)
        except (RoutingError, ValueError) as e:
            print(f"Could not list walks: {e}")
            logger.close()
            sys.exit(1)
        logger.close()
        return

    try:
        if args.resume:
            session = store.load()
            if session is None:
                print("No saved walk to resume")
                logger.close()
                sys.exit(1)
        elif args.route:
            if not Path(args.route).exists():
                print(f"Route file not found: {args.route}")
                logger.close()
                sys.exit(1)
            session = _session_from_file(args.route, args)
        elif args.walk:
            session = RouteSession(client.walk_detail(args.walk), mode=WalkMode.TIME_BASED)
        else:
            session = _session_from_proposals(client, args)
    except (RoutingError, ValueError, KeyError) as e:
        print(f"Could not start walk: {e}")
        logger.close()
        sys.exit(1)

    monitor = DeviationMonitor(threshold=args.threshold, logger=logger)

    # Location source
    live_gps = False
    if args.playback:
        if not Path(args.playback).exists():
            print(f"Playback file not found: {args.playback}")
            logger.close()
            sys.exit(1)
        try:
            source = TracePlayback(args.playback, args.speed)
        except ValueError as e:
            print(f"Cannot replay {args.playback}: {e}")
            logger.close()
            sys.exit(1)
    elif args.lat is not None and not args.propose:
        source = FixedLocation(args.lat, args.lon)
    else:
        source = DeviceLocation()
        live_gps = True
    if args.record:
        source = TraceRecorder(source, args.record,
                               tracking_state=lambda: monitor.state.value, logger=logger)

    if args.on_deviation == "ask":
        decide = ask_user
    else:
        decide = fixed_decision(args.on_deviation == "accept")

    coordinator = RecalculationCoordinator(
        client, monitor, store,
        context_provider=lambda: current_context(args.weather),
        logger=logger,
    )
    navigator = Navigator(monitor, coordinator, store, source, decide=decide, logger=logger)

    if not navigator.start(session):
        logger.close()
        sys.exit(1)

    print("Press Ctrl+C to stop")
    try:
        if live_gps and not navigator.acquire_first_fix():
            sys.exit(1)
        asyncio.run(navigator.run())
    except KeyboardInterrupt:
        print("\nWalk paused. Resume later with --resume")
        logger.log("Walk interrupted by user")
    finally:
        if isinstance(source, TraceRecorder):
            source.save()
        logger.close()


if __name__ == "__main__":
    main()
