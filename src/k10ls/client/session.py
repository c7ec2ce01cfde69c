"""Session supervisor: keeps one target forwarded for the life of the process.

Each attempt resolves the target, opens a tunnel channel and blocks while it is
active. Whatever ends the attempt (resolution error, bind failure, pod gone,
closed channel) leads to DISCONNECTED, a fixed delay, and a new attempt.
There is no backoff, no jitter and no attempt cap. Only cancellation stops a
session.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from enum import Enum
from typing import Any

import structlog

from k10ls.client.tunnel import TunnelChannel, kubectl_equivalent
from k10ls.cluster.client import ClusterClient
from k10ls.cluster.resolver import EndpointResolver, ResolvedEndpoint
from k10ls.core.config import PortMapping, Target
from k10ls.core.exceptions import (
    K10lsError,
    ResolutionError,
    TunnelError,
    format_error_for_user,
)
from k10ls.observability.metrics import (
    ACTIVE_SESSIONS,
    SESSION_ATTEMPTS,
    SESSION_FAILURES,
    SESSION_STATE,
)

logger = structlog.get_logger()

ChannelFactory = Callable[[ClusterClient, ResolvedEndpoint, str, Sequence[PortMapping]], TunnelChannel]


class SessionState(Enum):
    """Session lifecycle state."""

    IDLE = "idle"
    RESOLVING = "resolving"
    CONNECTING = "connecting"
    ACTIVE = "active"
    DISCONNECTED = "disconnected"
    CANCELLED = "cancelled"


class Session:
    """Supervises the tunnel for one declared target.

    The bind address and namespace are fixed when the session is created and
    are not re-evaluated between attempts.
    """

    def __init__(
        self,
        context_name: str,
        target: Target,
        client: ClusterClient,
        *,
        address: str,
        namespace: str,
        retry_delay: float = 2.0,
        health_interval: float = 5.0,
        resolver: EndpointResolver | None = None,
        channel_factory: ChannelFactory | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize a session.

        Args:
            context_name: kubeconfig context the target belongs to
            target: Declared target to forward
            client: Shared read-only client for the context
            address: Effective local bind address
            namespace: Effective namespace
            retry_delay: Fixed delay between attempts (seconds)
            health_interval: Pod liveness poll interval for the default channel
            resolver: Endpoint resolver (defaults to one built on ``client``)
            channel_factory: Builds the tunnel channel for an attempt
            sleep: Coroutine used to wait out the retry delay
        """
        self.context_name = context_name
        self.target = target
        self.address = address
        self.namespace = namespace
        self.retry_delay = retry_delay

        self._client = client
        self._resolver = resolver or EndpointResolver(client)
        self._health_interval = health_interval
        self._channel_factory = channel_factory or self._default_channel
        self._sleep = sleep

        self._state = SessionState.IDLE
        self._state_hooks: list[Callable[[SessionState], None]] = []
        self._channel: TunnelChannel | None = None

        self.attempts = 0
        self.failures = 0
        self.last_error: BaseException | None = None
        self.endpoint: ResolvedEndpoint | None = None

    @property
    def name(self) -> str:
        """Unique name within the process, e.g. ``dev/svc/postgres``."""
        return f"{self.context_name}/{self.target.identity}"

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def channel(self) -> TunnelChannel | None:
        """The open channel while ACTIVE, otherwise None."""
        return self._channel

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self._state.value,
            "address": self.address,
            "namespace": self.namespace,
            "endpoint": str(self.endpoint) if self.endpoint else None,
            "attempts": self.attempts,
            "failures": self.failures,
            "last_error": format_error_for_user(self.last_error) if self.last_error else None,
        }

    def add_state_hook(self, hook: Callable[[SessionState], None]) -> None:
        """Add a hook to be called on state changes."""
        self._state_hooks.append(hook)

    def remove_state_hook(self, hook: Callable[[SessionState], None]) -> None:
        """Remove a state change hook."""
        if hook in self._state_hooks:
            self._state_hooks.remove(hook)

    def _set_state(self, state: SessionState) -> None:
        if self._state == state:
            return
        old_state = self._state
        self._state = state

        SESSION_STATE.labels(self.context_name, self.target.identity, old_state.value).set(0)
        SESSION_STATE.labels(self.context_name, self.target.identity, state.value).set(1)
        if state == SessionState.ACTIVE:
            ACTIVE_SESSIONS.labels(self.context_name).inc()
        elif old_state == SessionState.ACTIVE:
            ACTIVE_SESSIONS.labels(self.context_name).dec()

        logger.info(
            "Session state changed",
            context=self.context_name,
            target=self.target.identity,
            old=old_state.value,
            new=state.value,
        )
        for hook in self._state_hooks:
            try:
                hook(state)
            except Exception as e:
                logger.warning("State hook error", session=self.name, error=str(e))

    def _default_channel(
        self,
        client: ClusterClient,
        endpoint: ResolvedEndpoint,
        address: str,
        ports: Sequence[PortMapping],
    ) -> TunnelChannel:
        return TunnelChannel(client, endpoint, address, ports, health_interval=self._health_interval)

    async def run(self) -> None:
        """Supervise the target until cancelled."""
        logger.info(
            "Session started",
            context=self.context_name,
            target=self.target.identity,
            namespace=self.namespace,
            address=self.address,
            ports=[str(mapping) for mapping in self.target.ports],
        )
        try:
            while True:
                await self._attempt()
                logger.debug("Retry scheduled", session=self.name, delay_sec=self.retry_delay)
                await self._sleep(self.retry_delay)
        except asyncio.CancelledError:
            self._set_state(SessionState.CANCELLED)
            logger.info("Session cancelled", session=self.name, attempts=self.attempts)
            raise

    async def _attempt(self) -> None:
        """Run one resolve/connect/forward cycle, ending in DISCONNECTED."""
        self.attempts += 1
        SESSION_ATTEMPTS.labels(self.context_name, self.target.identity).inc()

        try:
            self._set_state(SessionState.RESOLVING)
            self.endpoint = await self._resolver.resolve(self.namespace, self.target)

            self._set_state(SessionState.CONNECTING)
            channel = self._channel_factory(self._client, self.endpoint, self.address, self.target.ports)
            async with channel:
                self._channel = channel
                self._set_state(SessionState.ACTIVE)
                self._announce(channel)
                await channel.wait_closed()

            self._record_failure(TunnelError("tunnel closed", endpoint=str(self.endpoint)))
        except Exception as e:
            self._record_failure(e)
        finally:
            self._channel = None

    def _announce(self, channel: TunnelChannel) -> None:
        logger.info(
            "Forwarding started",
            context=self.context_name,
            target=self.target.identity,
            pod=str(channel.endpoint),
            bindings=[str(binding) for binding in channel.bindings],
        )
        logger.info(
            "Equivalent kubectl command",
            command=kubectl_equivalent(self.context_name, channel.endpoint, self.target.ports, self.address),
        )

    def _record_failure(self, error: Exception) -> None:
        self.failures += 1
        self.last_error = error
        code = error.code if isinstance(error, K10lsError) else "UNEXPECTED_ERROR"
        reason = error.reason.value if isinstance(error, ResolutionError) else code
        SESSION_FAILURES.labels(self.context_name, self.target.identity, reason).inc()

        log = logger.warning if isinstance(error, K10lsError) else logger.error
        log(
            "Session attempt failed",
            context=self.context_name,
            target=self.target.identity,
            attempt=self.attempts,
            code=code,
            error=format_error_for_user(error),
            retry_in_sec=self.retry_delay,
        )
        self._set_state(SessionState.DISCONNECTED)
