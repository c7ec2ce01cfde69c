"""Cluster client used by resolution and tunnels.

One client is built per kubeconfig context and shared by every session of that
context. Sessions only read through it (get/list) and open port-forward
streams; nothing here mutates cluster state, so the client carries no locks.
"""

from __future__ import annotations

import contextlib
import os
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager
from typing import TYPE_CHECKING, Any, ClassVar, Protocol

import kr8s
import kr8s.asyncio
import structlog
from kr8s.asyncio.objects import Pod, Service
from kr8s.asyncio.portforward import PortForward

from k10ls.core.exceptions import ClientInitError, format_error_for_user

if TYPE_CHECKING:
    from k10ls.cluster.resolver import ResolvedEndpoint
    from k10ls.core.config import PortMapping

logger = structlog.get_logger()


class ClusterClient(Protocol):
    """Read capability over one cluster context.

    Implementations must support concurrent read calls from many sessions
    (``concurrent_reads`` is True) and must never mutate cluster state.
    """

    concurrent_reads: ClassVar[bool]
    context_name: str

    async def get_service_selector(self, namespace: str, name: str) -> dict[str, str] | None:
        """Return the service's pod selector, ``{}`` if it has none, None if the service is absent."""
        ...

    async def list_pod_names(self, namespace: str, label_selector: str) -> list[str]:
        """Return names of pods matching the selector, in listing order."""
        ...

    async def get_pod_phase(self, namespace: str, name: str) -> str | None:
        """Return the pod's phase, or None if the pod does not exist."""
        ...

    def port_forward(
        self,
        endpoint: ResolvedEndpoint,
        mapping: PortMapping,
        address: str,
    ) -> AbstractAsyncContextManager[int]:
        """Listen on ``address:mapping.source`` and forward to ``mapping.target`` on the pod."""
        ...


class KubeClusterClient:
    """kr8s-backed client bound to one kubeconfig context."""

    concurrent_reads: ClassVar[bool] = True

    def __init__(self, api: Any, context_name: str) -> None:
        self._api = api
        self.context_name = context_name

    async def get_service_selector(self, namespace: str, name: str) -> dict[str, str] | None:
        try:
            service = await Service.get(name, namespace=namespace, api=self._api)
        except kr8s.NotFoundError:
            return None
        spec = service.raw.get("spec") or {}
        return dict(spec.get("selector") or {})

    async def list_pod_names(self, namespace: str, label_selector: str) -> list[str]:
        names = []
        async for pod in self._api.get("pods", namespace=namespace, label_selector=label_selector):
            names.append(pod.name)
        return names

    async def get_pod_phase(self, namespace: str, name: str) -> str | None:
        try:
            pod = await Pod.get(name, namespace=namespace, api=self._api)
        except kr8s.NotFoundError:
            return None
        status = pod.raw.get("status") or {}
        return status.get("phase")

    @contextlib.asynccontextmanager
    async def port_forward(
        self,
        endpoint: ResolvedEndpoint,
        mapping: PortMapping,
        address: str,
    ) -> AsyncIterator[int]:
        pod = await Pod.get(endpoint.name, namespace=endpoint.namespace, api=self._api)
        forward = PortForward(pod, mapping.target, local_port=mapping.source, address=address)
        async with forward as local_port:
            yield local_port


async def create_cluster_client(context_name: str, kubeconfig: str | None = None) -> KubeClusterClient:
    """Build a client for a kubeconfig context.

    Args:
        context_name: Context to select inside the kubeconfig
        kubeconfig: Explicit kubeconfig path; None uses the default discovery
            (KUBECONFIG, ~/.kube/config, then the in-cluster service account)

    Raises:
        ClientInitError: If the kubeconfig is missing or the context cannot be loaded
    """
    if kubeconfig is not None and not os.path.exists(kubeconfig):
        raise ClientInitError(context_name, f"kubeconfig not found: {kubeconfig}")

    try:
        api = await kr8s.asyncio.api(kubeconfig=kubeconfig, context=context_name)
    except Exception as e:
        raise ClientInitError(context_name, format_error_for_user(e)) from e

    logger.debug("Cluster client ready", context=context_name, kubeconfig=kubeconfig or "<default>")
    return KubeClusterClient(api, context_name)
