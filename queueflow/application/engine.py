"""Process-wide wiring of the routing engine's services."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable

import yaml

from queueflow.core.config import Settings, load_settings
from queueflow.core.schema import Profile, ServiceGroup, Ticket, WorkflowDefinition
from queueflow.domain import Failure, FailureReason, RenderPlan, Result, Success, TouchpointKind
from queueflow.infrastructure import (
    BackingStoreError,
    ChangeChannel,
    HttpQueueBackend,
    InMemoryChangeChannel,
    InMemoryTicketStore,
    InMemoryWorkflowRepository,
    RecordNotFoundError,
    RedisChangeChannel,
    TicketIssuer,
    TicketStore,
    TransitionRejectedError,
    WorkflowRepository,
)

from .display import DisplayRouter
from .feed import LiveTicketFeed
from .scope import ALL_GROUPS, ScopeResolver
from .session import TouchpointSession
from .tickets import TicketService
from .transitions import TransitionValidator
from .workflow_store import WorkflowStore

logger = logging.getLogger(__name__)


class QueueEngine:
    """Holds one designer draft, one strict workflow, one validator and one feed per profile."""

    def __init__(
        self,
        repository: WorkflowRepository,
        tickets: TicketStore,
        issuer: TicketIssuer,
        channel: ChangeChannel | None = None,
        *,
        poll_interval: float = 5.0,
        push_retry_interval: float = 60.0,
        closers: list[Callable[[], Awaitable[None]]] | None = None,
    ) -> None:
        self.repository = repository
        self.tickets = tickets
        self.channel = channel
        self.poll_interval = poll_interval
        self.push_retry_interval = push_retry_interval
        self.ticket_service = TicketService(issuer, tickets)
        self._closers = list(closers or [])
        self._designers: dict[str, WorkflowStore] = {}
        self._workflows: dict[str, WorkflowStore] = {}
        self._validators: dict[str, TransitionValidator] = {}
        self._feeds: dict[str, LiveTicketFeed] = {}

    # ------------------------------------------------------------------
    # profiles
    # ------------------------------------------------------------------
    async def list_profiles(self) -> Result[list[Profile]]:
        try:
            return Success(await self.repository.get_profiles())
        except (BackingStoreError, TransitionRejectedError) as exc:
            return Failure(FailureReason.CONNECTIVITY, "profiles unavailable", [str(exc)])

    async def create_profile(self, profile: Profile) -> Result[Profile]:
        return await self._profile_call(self.repository.create_profile(profile), profile.code)

    async def update_profile(self, code: str, profile: Profile) -> Result[Profile]:
        return await self._profile_call(self.repository.update_profile(code, profile), code)

    async def delete_profile(self, code: str) -> Result[str]:
        deleted = await self._profile_call(self.repository.delete_profile(code), code)
        if isinstance(deleted, Failure):
            return deleted
        self.invalidate(code)
        self._designers.pop(code, None)
        self._validators.pop(code, None)
        feed = self._feeds.pop(code, None)
        if feed is not None:
            await feed.stop()
        return Success(code)

    @staticmethod
    async def _profile_call(call: Awaitable[Any], code: str) -> Result[Any]:
        try:
            return Success(await call)
        except RecordNotFoundError:
            return Failure(FailureReason.NOT_FOUND, f"profile {code} not found")
        except TransitionRejectedError as exc:
            return Failure(FailureReason.INVALID_CONFIGURATION, str(exc))
        except BackingStoreError as exc:
            logger.warning("Profile call for %s failed: %s", code, exc)
            return Failure(FailureReason.CONNECTIVITY, "profile repository unavailable", [str(exc)])

    # ------------------------------------------------------------------
    # workflow definitions
    # ------------------------------------------------------------------
    def designer(self, profile_id: str) -> WorkflowStore:
        """Editable draft for the workflow designer."""

        store = self._designers.get(profile_id)
        if store is None:
            store = self._designers[profile_id] = WorkflowStore(self.repository)
        return store

    async def open_designer(self, profile_id: str, *, reload: bool = False) -> Result[WorkflowStore]:
        store = self.designer(profile_id)
        if store.current() is None or reload:
            loaded = await store.load(profile_id, strict=False)
            if isinstance(loaded, Failure):
                return loaded
        return Success(store)

    async def save_designer(self, profile_id: str, definition: WorkflowDefinition | None = None) -> Result[WorkflowDefinition]:
        saved = await self.designer(profile_id).save(definition)
        if isinstance(saved, Success):
            self.invalidate(profile_id)
        return saved

    async def workflow(self, profile_id: str, *, refresh: bool = False) -> Result[WorkflowDefinition]:
        """The validated workflow touchpoints run against."""

        store = self._workflows.get(profile_id)
        if store is None:
            store = self._workflows[profile_id] = WorkflowStore(self.repository)
        current = store.current()
        if current is not None and not refresh:
            return Success(current)
        return await store.load(profile_id, strict=True)

    def invalidate(self, profile_id: str) -> None:
        self._workflows.pop(profile_id, None)

    async def validator(self, profile_id: str) -> Result[TransitionValidator]:
        loaded = await self.workflow(profile_id)
        if isinstance(loaded, Failure):
            return loaded
        validator = self._validators.get(profile_id)
        if validator is None:
            validator = self._validators[profile_id] = TransitionValidator(self.tickets, loaded.value)
        else:
            validator.workflow = loaded.value
        return Success(validator)

    # ------------------------------------------------------------------
    # live tickets
    # ------------------------------------------------------------------
    def feed(self, profile_id: str) -> LiveTicketFeed:
        feed = self._feeds.get(profile_id)
        if feed is None:
            feed = self._feeds[profile_id] = LiveTicketFeed(
                self.tickets,
                self.channel,
                poll_interval=self.poll_interval,
                push_retry_interval=self.push_retry_interval,
            )
        return feed

    async def current_feed(self, profile_id: str) -> Result[LiveTicketFeed]:
        """The profile's feed, kept fresh by its background push/poll loop.

        The first access loads the tickets and starts the loop. A failed
        refresh still returns the feed when it holds earlier data so callers
        can show it as stale.
        """

        feed = self.feed(profile_id)
        if not feed.running:
            fetched = await self._start(feed, profile_id)
        elif feed.snapshot().ever_loaded:
            return Success(feed)
        else:
            fetched = await feed.fetch_all(profile_id)
        if isinstance(fetched, Failure) and not feed.snapshot().ever_loaded:
            return fetched
        return Success(feed)

    async def watch(self, profile_id: str) -> LiveTicketFeed:
        """Start the background push/poll loop for a profile."""

        feed = self.feed(profile_id)
        if not feed.running:
            await self._start(feed, profile_id)
        return feed

    @staticmethod
    async def _start(feed: LiveTicketFeed, profile_id: str) -> Result[list[Ticket]]:
        fetched = await feed.select_profile(profile_id)
        feed.start()
        logger.info("Watching ticket feed for %s", profile_id)
        return fetched

    # ------------------------------------------------------------------
    # touchpoint views
    # ------------------------------------------------------------------
    async def kiosk_groups(self, profile_id: str, kiosk_code: str) -> Result[list[ServiceGroup]]:
        loaded = await self.workflow(profile_id)
        if isinstance(loaded, Failure):
            return loaded
        kiosk = loaded.value.kiosk(kiosk_code)
        if kiosk is None:
            return Failure(FailureReason.NOT_FOUND, f"kiosk {kiosk_code} not found")
        return Success(ScopeResolver.resolve_for_kiosk(kiosk, loaded.value))

    async def service_point_queue(
        self, profile_id: str, point_code: str, group_filter: str = ALL_GROUPS
    ) -> Result[list[Ticket]]:
        loaded = await self.workflow(profile_id)
        if isinstance(loaded, Failure):
            return loaded
        point = loaded.value.service_point(point_code)
        if point is None:
            return Failure(FailureReason.NOT_FOUND, f"service point {point_code} not found")
        feed = await self.current_feed(profile_id)
        if isinstance(feed, Failure):
            return feed
        return Success(feed.value.for_service_point(point, loaded.value, group_filter))

    async def board_plan(self, profile_id: str, board_code: str) -> Result[RenderPlan]:
        loaded = await self.workflow(profile_id)
        if isinstance(loaded, Failure):
            return loaded
        board = loaded.value.display_board(board_code)
        if board is None:
            return Failure(FailureReason.NOT_FOUND, f"display board {board_code} not found")
        feed = await self.current_feed(profile_id)
        if isinstance(feed, Failure):
            return feed
        return Success(DisplayRouter(feed.value, board, loaded.value).render())

    async def issue_ticket(
        self, profile_id: str, kiosk_code: str, group_code: str, attributes: dict[str, Any] | None = None
    ) -> Result[Ticket]:
        loaded = await self.workflow(profile_id)
        if isinstance(loaded, Failure):
            return loaded
        return await self.ticket_service.issue_ticket(loaded.value, kiosk_code, group_code, attributes)

    async def ticket_status(self, profile_id: str, doc_no: str) -> Result[dict[str, Any]]:
        loaded = await self.workflow(profile_id)
        if isinstance(loaded, Failure):
            return loaded
        return await self.ticket_service.ticket_status(loaded.value, doc_no)

    def session(self, kind: TouchpointKind) -> TouchpointSession:
        return TouchpointSession(self.repository, kind)

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    async def aclose(self) -> None:
        for feed in self._feeds.values():
            await feed.stop()
        if self.channel is not None:
            await self.channel.close()
        for closer in self._closers:
            await closer()


def _read_seed(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as fp:
        if path.suffix.lower() in (".yaml", ".yml"):
            return yaml.safe_load(fp)
        return json.load(fp)


def load_seed(path: Path, repository: InMemoryWorkflowRepository, store: InMemoryTicketStore) -> list[str]:
    """Seed in-memory stores from a JSON or YAML workflow document, a list of
    them, or ``{"workflows": [...], "tickets": [...]}``."""

    data = _read_seed(path)
    tickets: list[dict[str, Any]] = []
    if isinstance(data, list):
        documents = data
    elif isinstance(data, dict) and "workflows" in data:
        documents = list(data.get("workflows") or [])
        tickets = list(data.get("tickets") or [])
    else:
        documents = [data]

    seeded = [repository.seed(document) for document in documents]
    for row in tickets:
        store.add(Ticket.model_validate(row))
    logger.info("Seeded %d workflow(s) and %d ticket(s) from %s", len(seeded), len(tickets), path)
    return seeded


def build_engine(settings: Settings) -> QueueEngine:
    if settings.upstream_url:
        backend = HttpQueueBackend(settings.upstream_url, timeout=settings.request_timeout)
        channel: ChangeChannel | None = RedisChangeChannel(settings.redis_url) if settings.redis_url else None
        logger.info("Using upstream backing store at %s", settings.upstream_url)
        return QueueEngine(
            backend,
            backend,
            backend,
            channel,
            poll_interval=settings.poll_interval,
            push_retry_interval=settings.push_retry_interval,
            closers=[backend.aclose],
        )

    channel = RedisChangeChannel(settings.redis_url) if settings.redis_url else InMemoryChangeChannel()
    repository = InMemoryWorkflowRepository()
    store = InMemoryTicketStore(repository, channel=channel)
    if settings.seed_path is not None:
        load_seed(settings.seed_path, repository, store)
    return QueueEngine(
        repository,
        store,
        store,
        channel,
        poll_interval=settings.poll_interval,
        push_retry_interval=settings.push_retry_interval,
    )


_engine: QueueEngine | None = None


def configure_engine(engine: QueueEngine) -> None:
    global _engine
    _engine = engine


def get_engine() -> QueueEngine:
    """Return the engine for the process, building it from the environment on first use."""

    global _engine
    if _engine is None:
        _engine = build_engine(load_settings())
    return _engine


def reset_engine_state() -> None:
    """Forget the process engine (used in tests)."""

    global _engine
    _engine = None


__all__ = [
    "QueueEngine",
    "build_engine",
    "configure_engine",
    "get_engine",
    "load_seed",
    "reset_engine_state",
]
