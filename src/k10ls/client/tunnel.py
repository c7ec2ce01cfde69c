"""Tunnel channel: every port mapping of one target forwarded to one pod.

A channel is opened all-or-nothing: if any mapping fails to bind, the mappings
already bound are released and TunnelError is raised. Once open, the channel
stays up until it is closed, cancelled, or its pod stops running.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import structlog

from k10ls.cluster.client import ClusterClient
from k10ls.cluster.resolver import ResolvedEndpoint
from k10ls.core.config import PortMapping
from k10ls.core.exceptions import TunnelError, format_error_for_user

logger = structlog.get_logger()

RUNNING_PHASE = "Running"


@dataclass(frozen=True)
class Binding:
    """A local listener and the remote port it forwards to."""

    address: str
    local_port: int
    remote_port: int

    def __str__(self) -> str:
        return f"{self.address}:{self.local_port}->{self.remote_port}"


def kubectl_equivalent(
    context_name: str,
    endpoint: ResolvedEndpoint,
    ports: Sequence[PortMapping],
    address: str,
) -> str:
    """The kubectl command that would open the same tunnel. Used for logging only."""
    port_args = " ".join(str(mapping) for mapping in ports)
    return (
        f"kubectl --context {context_name} -n {endpoint.namespace} "
        f"port-forward pod/{endpoint.name} {port_args} --address {address}"
    )


class TunnelChannel:
    """Port-forward listeners for one resolved pod.

    Usage:
        async with TunnelChannel(client, endpoint, "127.0.0.1", ports) as channel:
            await channel.wait_closed()
    """

    def __init__(
        self,
        client: ClusterClient,
        endpoint: ResolvedEndpoint,
        address: str,
        ports: Sequence[PortMapping],
        health_interval: float = 5.0,
    ) -> None:
        self.endpoint = endpoint
        self.address = address
        self.ports = tuple(ports)
        self._client = client
        self._health_interval = health_interval
        self._stack: contextlib.AsyncExitStack | None = None
        self._bindings: list[Binding] = []
        self._closed = asyncio.Event()

    @property
    def bindings(self) -> list[Binding]:
        """Local listeners, in the order the mappings were declared."""
        return list(self._bindings)

    @property
    def is_open(self) -> bool:
        return self._stack is not None and not self._closed.is_set()

    async def open(self) -> None:
        """Bind every port mapping.

        Raises:
            TunnelError: If any mapping cannot be bound or forwarded
        """
        stack = contextlib.AsyncExitStack()
        mapping: PortMapping | None = None
        try:
            for mapping in self.ports:
                local_port = await stack.enter_async_context(
                    self._client.port_forward(self.endpoint, mapping, self.address)
                )
                self._bindings.append(Binding(self.address, local_port, mapping.target))
        except asyncio.CancelledError:
            self._bindings.clear()
            await stack.aclose()
            raise
        except Exception as e:
            self._bindings.clear()
            await stack.aclose()
            raise TunnelError(
                f"cannot forward {self.address}:{mapping}: {format_error_for_user(e)}",
                endpoint=str(self.endpoint),
            ) from e

        self._stack = stack

    async def wait_closed(self) -> None:
        """Block for the lifetime of the tunnel.

        Returns when close() is called.

        Raises:
            TunnelError: If the pod disappears or leaves the Running phase
        """
        while True:
            try:
                await asyncio.wait_for(self._closed.wait(), timeout=self._health_interval)
                return
            except TimeoutError:
                pass
            await self._check_endpoint()

    async def _check_endpoint(self) -> None:
        try:
            phase = await self._client.get_pod_phase(self.endpoint.namespace, self.endpoint.name)
        except Exception as e:
            # An API hiccup says nothing about the pod; keep forwarding.
            logger.warning(
                "Liveness check failed",
                endpoint=str(self.endpoint),
                error=format_error_for_user(e),
            )
            return

        if phase is None:
            raise TunnelError("pod no longer exists", endpoint=str(self.endpoint))
        if phase != RUNNING_PHASE:
            raise TunnelError(f"pod is {phase}", endpoint=str(self.endpoint))

    def close(self) -> None:
        """Ask the channel to terminate; wait_closed() returns promptly."""
        self._closed.set()

    async def aclose(self) -> None:
        """Release every listener."""
        self._closed.set()
        stack, self._stack = self._stack, None
        if stack is not None:
            await stack.aclose()

    async def __aenter__(self) -> TunnelChannel:
        await self.open()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()
