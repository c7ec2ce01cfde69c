"""Shared fixtures: an in-memory cluster client, scripted tunnel channels and helpers."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest

from k10ls.client.session import Session
from k10ls.client.tunnel import Binding
from k10ls.core.exceptions import TunnelError

_GONE = object()


class FakeClusterClient:
    """Cluster client backed by dictionaries.

    services: (namespace, name) -> selector dict ({} means no selector)
    pods: (namespace, label_selector) -> pod names in listing order
    phases: (namespace, pod) -> phase; pods not listed are Running
    """

    concurrent_reads = True

    def __init__(self, context_name: str = "dev") -> None:
        self.context_name = context_name
        self.services: dict[tuple[str, str], dict[str, str]] = {}
        self.pods: dict[tuple[str, str], list[str]] = {}
        self.phases: dict[tuple[str, str], Any] = {}
        self.calls: list[tuple[str, ...]] = []
        self.forwards: list[tuple[str, int, int, str]] = []
        self.open_ports: set[tuple[str, int]] = set()
        self.api_error: Exception | None = None
        self.phase_errors = 0

    def delete_pod(self, namespace: str, name: str) -> None:
        self.phases[(namespace, name)] = _GONE

    async def get_service_selector(self, namespace: str, name: str) -> dict[str, str] | None:
        self.calls.append(("get_service", namespace, name))
        if self.api_error:
            raise self.api_error
        return self.services.get((namespace, name))

    async def list_pod_names(self, namespace: str, label_selector: str) -> list[str]:
        self.calls.append(("list_pods", namespace, label_selector))
        if self.api_error:
            raise self.api_error
        return list(self.pods.get((namespace, label_selector), []))

    async def get_pod_phase(self, namespace: str, name: str) -> str | None:
        self.calls.append(("get_pod_phase", namespace, name))
        if self.phase_errors:
            self.phase_errors -= 1
            raise ConnectionError("apiserver unavailable")
        phase = self.phases.get((namespace, name), "Running")
        return None if phase is _GONE else phase

    @contextlib.asynccontextmanager
    async def port_forward(self, endpoint: Any, mapping: Any, address: str) -> AsyncIterator[int]:
        key = (address, mapping.source)
        if key in self.open_ports:
            raise OSError(98, "Address already in use")
        self.open_ports.add(key)
        self.forwards.append((str(endpoint), mapping.source, mapping.target, address))
        try:
            yield mapping.source
        finally:
            self.open_ports.discard(key)


class FakeClientFactory:
    """Async stand-in for create_cluster_client that records calls and can fail per context."""

    def __init__(self, broken: dict[str, Exception] | None = None) -> None:
        self.broken = broken or {}
        self.calls: list[tuple[str, str | None]] = []
        self.clients: dict[str, FakeClusterClient] = {}

    async def __call__(self, context_name: str, kubeconfig: str | None) -> FakeClusterClient:
        self.calls.append((context_name, kubeconfig))
        if context_name in self.broken:
            raise self.broken[context_name]
        client = FakeClusterClient(context_name)
        self.clients[context_name] = client
        return client


class FakeChannel:
    """Tunnel channel whose behaviour is chosen by ``mode``.

    block: opens and stays up until closed or cancelled
    drop: opens, then fails right away as if the remote side reset
    fail_open: raises TunnelError while opening
    hang_open: never finishes opening
    """

    def __init__(self, endpoint: Any, address: str, ports: Any, mode: str) -> None:
        self.endpoint = endpoint
        self.address = address
        self.ports = tuple(ports)
        self.mode = mode
        self.bindings = [Binding(address, p.source, p.target) for p in self.ports]
        self.entered = False
        self.exited = False
        self._closed = asyncio.Event()

    async def __aenter__(self) -> FakeChannel:
        if self.mode == "fail_open":
            raise TunnelError("address already in use", endpoint=str(self.endpoint))
        if self.mode == "hang_open":
            await asyncio.Event().wait()
        self.entered = True
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self.exited = True

    async def wait_closed(self) -> None:
        if self.mode == "drop":
            raise TunnelError("connection reset by peer", endpoint=str(self.endpoint))
        await self._closed.wait()

    def close(self) -> None:
        self._closed.set()


class FakeChannelFactory:
    """Hands out FakeChannels; modes come from ``sequence``, then ``by_pod``, then ``default``."""

    def __init__(
        self,
        *sequence: str,
        default: str = "block",
        by_pod: dict[str, str] | None = None,
    ) -> None:
        self.sequence = list(sequence)
        self.default = default
        self.by_pod = by_pod or {}
        self.channels: list[FakeChannel] = []

    def __call__(self, client: Any, endpoint: Any, address: str, ports: Any) -> FakeChannel:
        if self.sequence:
            mode = self.sequence.pop(0)
        else:
            mode = self.by_pod.get(endpoint.name, self.default)
        channel = FakeChannel(endpoint, address, ports, mode)
        self.channels.append(channel)
        return channel


class SleepRecorder:
    """Replacement for asyncio.sleep that records delays.

    After ``stop_after`` sleeps it raises CancelledError, which ends a session
    the same way a shutdown would.
    """

    def __init__(self, stop_after: int | None = None) -> None:
        self.stop_after = stop_after
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self.stop_after is not None and len(self.delays) >= self.stop_after:
            raise asyncio.CancelledError
        await asyncio.sleep(0)


async def _wait_until(predicate: Callable[[], Any], timeout: float = 2.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


@pytest.fixture
def cluster_client() -> FakeClusterClient:
    return FakeClusterClient()


@pytest.fixture
def make_client_factory() -> type[FakeClientFactory]:
    return FakeClientFactory


@pytest.fixture
def make_channels() -> type[FakeChannelFactory]:
    """Build a channel factory: ``make_channels("fail_open", default="drop")``."""
    return FakeChannelFactory


@pytest.fixture
def make_sleep() -> type[SleepRecorder]:
    """Build a sleep replacement: ``make_sleep(stop_after=3)``."""
    return SleepRecorder


@pytest.fixture
def wait_until() -> Callable[..., Any]:
    """Poll until a predicate is true, failing after a timeout."""
    return _wait_until


@pytest.fixture
def make_session(cluster_client):
    """Build a Session wired to fakes; each default can be overridden."""

    def build(
        target,
        *,
        context: str = "dev",
        client=None,
        factory=None,
        sleep=None,
        address: str = "127.0.0.1",
        namespace: str = "apps",
        retry_delay: float = 2.0,
    ) -> Session:
        return Session(
            context,
            target,
            client or cluster_client,
            address=address,
            namespace=namespace,
            retry_delay=retry_delay,
            channel_factory=factory or FakeChannelFactory(),
            sleep=sleep or SleepRecorder(),
        )

    return build
