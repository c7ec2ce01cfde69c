"""Dispatcher: one cluster client per context, one session per target.

The dispatcher only fans out. Retrying belongs to the sessions. A context whose
client cannot be built is skipped; the other contexts keep running.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from k10ls.client.session import ChannelFactory, Session
from k10ls.cluster.client import ClusterClient, create_cluster_client
from k10ls.core.config import (
    ClusterContext,
    ForwardConfig,
    ForwardSettings,
    effective_address,
    effective_kubeconfig,
    effective_namespace,
)
from k10ls.core.exceptions import ClientInitError, format_error_for_user

logger = structlog.get_logger()

ClientFactory = Callable[[str, str | None], Awaitable[ClusterClient]]


class SessionGroup:
    """Owns the tasks running sessions.

    Sessions can be cancelled one at a time or all together, and the group can
    be joined with a timeout for a deterministic shutdown.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task[None]] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    @property
    def names(self) -> list[str]:
        return list(self._tasks)

    def running(self) -> list[str]:
        return [name for name, task in self._tasks.items() if not task.done()]

    def spawn(self, session: Session) -> str:
        """Start ``session.run()`` as a task and return the name it is tracked under."""
        name = session.name
        suffix = 2
        while name in self._tasks:
            name = f"{session.name}#{suffix}"
            suffix += 1

        task = asyncio.create_task(session.run(), name=name)
        task.add_done_callback(self._on_done)
        self._tasks[name] = task
        return name

    def _on_done(self, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Session crashed", session=task.get_name(), error=format_error_for_user(error))

    def cancel(self, name: str) -> bool:
        """Cancel one session. Returns False if it is unknown or already finished."""
        task = self._tasks.get(name)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    def cancel_all(self) -> None:
        for task in self._tasks.values():
            if not task.done():
                task.cancel()

    async def join(self, timeout: float | None = None) -> bool:
        """Wait for every session task to finish.

        Returns:
            True if all tasks finished within ``timeout``
        """
        pending = [task for task in self._tasks.values() if not task.done()]
        if not pending:
            return True
        _, still_pending = await asyncio.wait(pending, timeout=timeout)
        return not still_pending

    async def shutdown(self, grace: float | None = None) -> bool:
        """Cancel every session and wait up to ``grace`` seconds for them to stop."""
        self.cancel_all()
        return await self.join(grace)


class Dispatcher:
    """Launches and owns every session declared in the configuration."""

    def __init__(
        self,
        config: ForwardConfig,
        settings: ForwardSettings | None = None,
        *,
        client_factory: ClientFactory = create_cluster_client,
        channel_factory: ChannelFactory | None = None,
    ) -> None:
        self.config = config
        self.settings = settings or ForwardSettings()
        self.sessions: list[Session] = []
        self.failed_contexts: dict[str, ClientInitError] = {}
        self.group = SessionGroup()

        self._client_factory = client_factory
        self._channel_factory = channel_factory
        self._stop_event = asyncio.Event()
        self._started = False

    def stop(self) -> None:
        """Request shutdown. run() cancels every session and returns."""
        self._stop_event.set()

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    async def start(self) -> None:
        """Build clients for all contexts concurrently and spawn their sessions."""
        if self._started:
            return
        self._started = True
        await asyncio.gather(*(self._start_context(context) for context in self.config.contexts))
        logger.info(
            "Dispatcher started",
            sessions=len(self.sessions),
            contexts=len(self.config.contexts) - len(self.failed_contexts),
            failed_contexts=sorted(self.failed_contexts),
        )

    async def _start_context(self, context: ClusterContext) -> None:
        targets = context.targets
        if not targets:
            logger.warning("Context has no targets", context=context.name)
            return

        logger.info("Processing context", context=context.name, targets=len(targets))
        kubeconfig = effective_kubeconfig(context, self.config.global_kubeconfig)
        try:
            client = await self._client_factory(context.name, kubeconfig)
        except ClientInitError as e:
            self._skip_context(context, e)
            return
        except Exception as e:
            self._skip_context(context, ClientInitError(context.name, format_error_for_user(e)))
            return

        for target in targets:
            session = Session(
                context.name,
                target,
                client,
                address=effective_address(target, context, self.config.default_address),
                namespace=effective_namespace(target, context),
                retry_delay=self.settings.retry_delay,
                health_interval=self.settings.health_interval,
                channel_factory=self._channel_factory,
            )
            self.sessions.append(session)
            self.group.spawn(session)

    def _skip_context(self, context: ClusterContext, error: ClientInitError) -> None:
        self.failed_contexts[context.name] = error
        logger.error(
            "Context skipped",
            context=context.name,
            targets=len(context.targets),
            error=error.message,
        )

    async def run(self) -> None:
        """Start everything and block until stop() is called or this task is cancelled."""
        try:
            await self.start()
            if not self.sessions:
                logger.error("No sessions running; waiting for shutdown")
            await self._stop_event.wait()
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        """Cancel every session and wait for their tunnels to close."""
        grace = self.settings.shutdown_grace
        clean = await self.group.shutdown(grace)
        if clean:
            logger.info("All sessions stopped", sessions=len(self.sessions))
        else:
            logger.warning(
                "Sessions still running after grace period",
                grace_sec=grace,
                sessions=self.group.running(),
            )
