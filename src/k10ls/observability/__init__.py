from k10ls.observability.metrics import (
    ACTIVE_SESSIONS,
    SESSION_ATTEMPTS,
    SESSION_FAILURES,
    SESSION_STATE,
    start_metrics_server,
)

__all__ = [
    "ACTIVE_SESSIONS",
    "SESSION_ATTEMPTS",
    "SESSION_FAILURES",
    "SESSION_STATE",
    "start_metrics_server",
]
