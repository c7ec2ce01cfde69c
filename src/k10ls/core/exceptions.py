"""Error taxonomy for k10ls.

Only ConfigError (whole process) and ClientInitError (one context) are allowed
to stop anything. ResolutionError and TunnelError are recoverable: the session
supervisor catches them, logs them and retries.
"""

from __future__ import annotations

from enum import Enum


class K10lsError(Exception):
    """Base class for all k10ls errors."""

    code = "K10LS_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigError(K10lsError):
    """Configuration file is missing, unreadable or invalid."""

    code = "CONFIG_ERROR"

    def __init__(self, message: str, path: str | None = None) -> None:
        if path:
            message = f"{path}: {message}"
        super().__init__(message)
        self.path = path


class ClientInitError(K10lsError):
    """A cluster client could not be built for one context."""

    code = "CLIENT_INIT_ERROR"

    def __init__(self, context: str, reason: str) -> None:
        super().__init__(f"Cannot connect to context '{context}': {reason}")
        self.context = context
        self.reason = reason


class ResolutionReason(Enum):
    """Why a target could not be resolved to a pod."""

    NOT_FOUND = "not_found"
    NO_SELECTOR = "no_selector"
    NO_MEMBERS = "no_members"
    API_ERROR = "api_error"


class ResolutionError(K10lsError):
    """A target did not resolve to exactly one pod."""

    code = "RESOLUTION_ERROR"

    def __init__(self, reason: ResolutionReason, target: str, detail: str | None = None) -> None:
        messages = {
            ResolutionReason.NOT_FOUND: f"{target} not found",
            ResolutionReason.NO_SELECTOR: f"{target} has no selector",
            ResolutionReason.NO_MEMBERS: f"no pods found for {target}",
            ResolutionReason.API_ERROR: f"cluster API error while resolving {target}",
        }
        message = messages[reason]
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.reason = reason
        self.target = target


class TunnelError(K10lsError):
    """Port-forward tunnel failed to open or terminated."""

    code = "TUNNEL_ERROR"

    def __init__(self, message: str, endpoint: str | None = None) -> None:
        if endpoint:
            message = f"{endpoint}: {message}"
        super().__init__(message)
        self.endpoint = endpoint


def format_error_for_user(error: BaseException) -> str:
    """Render any exception as a single readable line."""
    if isinstance(error, K10lsError):
        return error.message

    if isinstance(error, OSError):
        text = error.strerror or str(error)
        if error.errno is not None:
            return f"{text} (errno {error.errno})"
        return text

    text = str(error).strip()
    if not text:
        return type(error).__name__
    first_line = text.splitlines()[0]
    return f"{type(error).__name__}: {first_line}"
