"""Endpoint resolution: declared target to one concrete pod.

Resolution runs once per connection attempt and is never cached. When several
pods match, the first one in listing order wins. Listing order is not stable
across calls, so a retry may land on a different pod.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from k10ls.cluster.client import ClusterClient
from k10ls.core.config import SelectorTarget, ServiceTarget, Target, WorkloadTarget
from k10ls.core.exceptions import ResolutionError, ResolutionReason, format_error_for_user

logger = structlog.get_logger()


@dataclass(frozen=True)
class ResolvedEndpoint:
    """The pod a tunnel is opened to."""

    name: str
    namespace: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


def format_selector(selector: dict[str, str]) -> str:
    """Render a selector mapping as a label query, e.g. ``app=db,tier=backend``."""
    return ",".join(f"{key}={value}" for key, value in sorted(selector.items()))


class EndpointResolver:
    """Resolves targets against one cluster context."""

    def __init__(self, client: ClusterClient) -> None:
        self._client = client

    async def resolve(self, namespace: str, target: Target) -> ResolvedEndpoint:
        """Resolve a target to a single pod in ``namespace``.

        Raises:
            ResolutionError: NOT_FOUND, NO_SELECTOR, NO_MEMBERS or API_ERROR
        """
        if isinstance(target, WorkloadTarget):
            return ResolvedEndpoint(name=target.name, namespace=namespace)

        try:
            if isinstance(target, ServiceTarget):
                return await self._resolve_service(namespace, target)
            if isinstance(target, SelectorTarget):
                return await self._resolve_selector(namespace, target.label, target.identity)
        except ResolutionError:
            raise
        except Exception as e:
            raise ResolutionError(
                ResolutionReason.API_ERROR, target.identity, format_error_for_user(e)
            ) from e

        raise TypeError(f"Unsupported target type: {type(target).__name__}")

    async def _resolve_service(self, namespace: str, target: ServiceTarget) -> ResolvedEndpoint:
        selector = await self._client.get_service_selector(namespace, target.name)
        if selector is None:
            raise ResolutionError(ResolutionReason.NOT_FOUND, target.identity)
        if not selector:
            raise ResolutionError(ResolutionReason.NO_SELECTOR, target.identity)
        return await self._resolve_selector(namespace, format_selector(selector), target.identity)

    async def _resolve_selector(self, namespace: str, label_selector: str, identity: str) -> ResolvedEndpoint:
        names = await self._client.list_pod_names(namespace, label_selector)
        if not names:
            raise ResolutionError(ResolutionReason.NO_MEMBERS, identity)

        logger.debug(
            "Resolved target",
            target=identity,
            selector=label_selector,
            candidates=len(names),
            pod=names[0],
        )
        return ResolvedEndpoint(name=names[0], namespace=namespace)
