"""Tunnel channels, session supervision and dispatch."""

from k10ls.client.dispatcher import Dispatcher, SessionGroup
from k10ls.client.session import Session, SessionState
from k10ls.client.tunnel import Binding, TunnelChannel, kubectl_equivalent

__all__ = [
    "Binding",
    "Dispatcher",
    "Session",
    "SessionGroup",
    "SessionState",
    "TunnelChannel",
    "kubectl_equivalent",
]
