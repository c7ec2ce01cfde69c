"""Core."""

from .config import (
    ClusterContext,
    ForwardConfig,
    ForwardSettings,
    PortMapping,
    SelectorTarget,
    ServiceTarget,
    Target,
    WorkloadTarget,
    clear_settings,
    effective_address,
    effective_kubeconfig,
    effective_namespace,
    get_settings,
    load_config,
    parse_config,
)
from .exceptions import (
    ClientInitError,
    ConfigError,
    K10lsError,
    ResolutionError,
    ResolutionReason,
    TunnelError,
    format_error_for_user,
)

__all__ = [
    # Config
    "ClusterContext",
    "ForwardConfig",
    "ForwardSettings",
    "PortMapping",
    "SelectorTarget",
    "ServiceTarget",
    "Target",
    "WorkloadTarget",
    "clear_settings",
    "effective_address",
    "effective_kubeconfig",
    "effective_namespace",
    "get_settings",
    "load_config",
    "parse_config",
    # Errors
    "K10lsError",
    "ConfigError",
    "ClientInitError",
    "ResolutionError",
    "ResolutionReason",
    "TunnelError",
    "format_error_for_user",
]
