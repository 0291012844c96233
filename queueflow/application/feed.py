"""Live Ticket Feed: cached ticket list for one profile, kept fresh."""
from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime, timezone
from typing import Callable

from queueflow.core.schema import ServicePoint, Ticket, WorkflowDefinition
from queueflow.domain import Failure, FailureReason, FeedSnapshot, FeedStatus, Result, Success, SyncMode
from queueflow.infrastructure import (
    BackingStoreError,
    ChangeChannel,
    ChangeEvent,
    ChannelUnavailableError,
    RecordNotFoundError,
    TicketStore,
    TransitionRejectedError,
)

from .scope import ALL_GROUPS, ScopeResolver, fifo

logger = logging.getLogger(__name__)

FeedListener = Callable[[FeedSnapshot], None]


class LiveTicketFeed:
    """Authoritative-ticket cache for the selected profile.

    Refreshes always fetch the full list and replace the cache wholesale.
    Push notifications drive refreshes when a channel is reachable; otherwise
    the feed polls every ``poll_interval`` seconds and tries push again after
    ``push_retry_interval`` seconds.
    """

    def __init__(
        self,
        store: TicketStore,
        channel: ChangeChannel | None = None,
        *,
        poll_interval: float = 5.0,
        push_retry_interval: float = 60.0,
    ) -> None:
        self._store = store
        self._channel = channel
        self.poll_interval = poll_interval
        self.push_retry_interval = push_retry_interval

        self._profile_id: str | None = None
        self._status = FeedStatus.UNINITIALIZED
        self._tickets: list[Ticket] = []
        self._loaded_at: datetime | None = None
        self._error: str | None = None
        self._generation = 0
        self._listeners: list[FeedListener] = []
        self._task: asyncio.Task[None] | None = None
        self.mode = SyncMode.IDLE

    @property
    def profile_id(self) -> str | None:
        return self._profile_id

    @property
    def status(self) -> FeedStatus:
        return self._status

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def snapshot(self) -> FeedSnapshot:
        return FeedSnapshot(
            profile_id=self._profile_id,
            status=self._status,
            tickets=list(self._tickets),
            loaded_at=self._loaded_at,
            error=self._error,
        )

    # ------------------------------------------------------------------
    # listeners
    # ------------------------------------------------------------------
    def add_listener(self, listener: FeedListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _emit(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:  # noqa: BLE001
                logger.exception("Feed listener %r failed", listener)

    # ------------------------------------------------------------------
    # fetching
    # ------------------------------------------------------------------
    def _switch(self, profile_id: str) -> None:
        if profile_id == self._profile_id:
            return
        self._profile_id = profile_id
        self._status = FeedStatus.UNINITIALIZED
        self._tickets = []
        self._loaded_at = None
        self._error = None

    async def select_profile(self, profile_id: str) -> Result[list[Ticket]]:
        self._switch(profile_id)
        return await self.fetch_all(profile_id)

    async def fetch_all(self, profile_id: str | None = None) -> Result[list[Ticket]]:
        """Fetch the full ticket list and replace the cache.

        Responses belonging to an older request, or to a profile that is no
        longer selected, are dropped.
        """

        if profile_id is not None:
            self._switch(profile_id)
        target = self._profile_id
        if target is None:
            return Failure(FailureReason.NOT_FOUND, "no profile selected")

        self._generation += 1
        generation = self._generation
        self._status = FeedStatus.LOADING
        try:
            tickets = await self._store.list_tickets(target)
        except (BackingStoreError, RecordNotFoundError, TransitionRejectedError) as exc:
            if generation != self._generation or target != self._profile_id:
                return Failure(FailureReason.SUPERSEDED, "a newer fetch replaced this one")
            self._status = FeedStatus.ERROR
            self._error = str(exc)
            logger.warning("Ticket feed refresh for %s failed: %s", target, exc)
            self._emit()
            return Failure(FailureReason.CONNECTIVITY, "ticket store unavailable", [str(exc)])

        if generation != self._generation or target != self._profile_id:
            logger.warning("Discarding superseded ticket list for %s", target)
            return Failure(FailureReason.SUPERSEDED, "a newer fetch replaced this one")

        self._tickets = fifo(tickets)
        self._status = FeedStatus.READY
        self._loaded_at = datetime.now(timezone.utc)
        self._error = None
        self._emit()
        return Success(list(self._tickets))

    async def on_external_change_notification(self, event: ChangeEvent | None) -> Result[list[Ticket]] | None:
        """Refresh when ``event`` concerns the selected profile; ignore anything else."""

        if event is None or self._profile_id is None or event.profile_id != self._profile_id:
            return None
        return await self.fetch_all()

    # ------------------------------------------------------------------
    # filtered views
    # ------------------------------------------------------------------
    def for_service_point(
        self, point: ServicePoint, workflow: WorkflowDefinition, group_filter: str = ALL_GROUPS
    ) -> list[Ticket]:
        return ScopeResolver.resolve_for_service_point(point, workflow, self._tickets, group_filter)

    # ------------------------------------------------------------------
    # synchronisation loop
    # ------------------------------------------------------------------
    async def run(self) -> None:
        """Keep the cache fresh until cancelled."""

        if self._profile_id is None:
            raise ValueError("select a profile before starting the feed")
        while True:
            if self._channel is not None:
                try:
                    await self._follow_push()
                except ChannelUnavailableError as exc:
                    logger.warning(
                        "Push channel unavailable for %s, polling every %ss: %s",
                        self._profile_id,
                        self.poll_interval,
                        exc,
                    )
                await self._poll(self.push_retry_interval)
            else:
                await self._poll(None)

    async def _follow_push(self) -> None:
        self.mode = SyncMode.PUSH
        subscription = self._channel.subscribe(self._profile_id, heartbeat=self.push_retry_interval)
        async for event in subscription:
            if event is None:
                # subscribed or idle, resync
                await self.fetch_all()
                continue
            await self.on_external_change_notification(event)
        raise ChannelUnavailableError("subscription closed")

    async def _poll(self, duration: float | None) -> None:
        self.mode = SyncMode.POLLING
        loop = asyncio.get_running_loop()
        deadline = None if duration is None else loop.time() + duration
        while deadline is None or loop.time() < deadline:
            await self.fetch_all()
            await asyncio.sleep(self.poll_interval)

    def start(self) -> asyncio.Task[None]:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
            self._task.add_done_callback(self._finished)
        return self._task

    def _finished(self, task: asyncio.Task[None]) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error("Ticket feed for %s stopped", self._profile_id, exc_info=task.exception())

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self.mode = SyncMode.IDLE


__all__ = ["FeedListener", "LiveTicketFeed"]
