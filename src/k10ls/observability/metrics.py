from prometheus_client import (
    Counter,
    Gauge,
    start_http_server,
)

SESSION_ATTEMPTS = Counter(
    "k10ls_session_attempts_total",
    "Connection attempts per target",
    ["context", "target"],
)

SESSION_FAILURES = Counter(
    "k10ls_session_failures_total",
    "Failed or terminated connection attempts per target",
    ["context", "target", "reason"],  # reason: resolution reason (no_members, ...) or error code
)

ACTIVE_SESSIONS = Gauge(
    "k10ls_active_sessions",
    "Sessions currently forwarding",
    ["context"],
)

SESSION_STATE = Gauge(
    "k10ls_session_state",
    "Current session state (1 for the current state, 0 otherwise)",
    ["context", "target", "state"],
)


def start_metrics_server(port: int, address: str = "0.0.0.0") -> None:
    start_http_server(port, addr=address)
