# Protocol event log: one key=value line per register / approve / refresh
# etc., on its own logger so it can be routed separately from app logs.
import logging

_events = logging.getLogger("devicelink.events")


def log_event(event_type: str, session_id: str, outcome: str, latency_ms: int = 0):
    _events.info("event=%s session=%s outcome=%s latency_ms=%s", event_type, session_id, outcome, latency_ms)
