"""Configuration settings for StoryWalk."""

CONFIG = {
    "gps_poll_interval": 3,  # seconds between location samples
    "first_fix_timeout": 30,  # seconds to keep asking for the first GPS fix
    "first_fix_max_delay": 8,  # seconds - cap on the backoff between first-fix attempts
    "deviation_poll_interval": 5,  # seconds - liveness backstop for deviation checks
    "deviation_threshold": 150,  # meters - off-route distance that raises a deviation
    "arrival_radius": 20,  # meters - walk is finished this close to the last path point
    "poi_arrival_radius": 30,  # meters - POI counts as visited this close
    "log_interval": 10,  # seconds between STATE log entries
    # Routing service
    "api_base_url": "http://localhost:8000",
    "request_timeout": 30,  # seconds
    "proposal_duration_minutes": 120,  # requested duration for destination-mode proposals
    "default_theme": "gourmet",
    "default_weather": "sunny",
    "walks_search_km": 5,  # reach of the walks map around a position
    # Persistence
    "session_db_path": "storywalk_session.db",
    # Polyline display region
    "region_min_span": 0.01,  # degrees - floor for single-point or very short routes
    "region_margin": 1.2,  # 20% margin around the route bounds
    # Step apportionment (display heuristic, not routing data)
    "step_weight_base": 0.8,
    "step_weight_increment": 0.1,
    # Synthetic traces
    "trace_spacing": 10,  # meters between generated samples
    "trace_interval": 3,  # seconds between generated samples
    "record_min_move": 10,  # meters - recorded fixes closer than this to the last one are skipped
}
