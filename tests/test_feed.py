from __future__ import annotations

import asyncio

from conftest import PROFILE_ID, issue, make_ticket
from queueflow.application import LiveTicketFeed
from queueflow.domain import FailureReason, FeedStatus, Success, SyncMode
from queueflow.infrastructure import ChangeEvent


async def _eventually(condition, attempts: int = 200) -> bool:
    for _ in range(attempts):
        if condition():
            return True
        await asyncio.sleep(0.01)
    return condition()


class _GatedStore:
    """Ticket store whose first list call waits until released."""

    def __init__(self) -> None:
        self.gate = asyncio.Event()
        self.calls = 0

    async def list_tickets(self, profile_id):
        self.calls += 1
        if self.calls == 1:
            await self.gate.wait()
            return [make_ticket("OLD", "WAIT")]
        return [make_ticket("NEW", "WAIT")]


def test_feed_starts_uninitialized_then_ready(ticket_store):
    ticket_store.add(make_ticket("B", "WAIT", minutes=2))
    ticket_store.add(make_ticket("A", "WAIT", minutes=1))
    feed = LiveTicketFeed(ticket_store)
    seen = []
    feed.add_listener(lambda snapshot: seen.append(snapshot.status))

    assert feed.status is FeedStatus.UNINITIALIZED
    result = asyncio.run(feed.select_profile(PROFILE_ID))

    assert isinstance(result, Success)
    assert [ticket.doc_no for ticket in result.value] == ["A", "B"]
    assert feed.status is FeedStatus.READY
    assert seen == [FeedStatus.READY]


def test_failed_refresh_keeps_last_known_tickets(ticket_store):
    ticket_store.add(make_ticket("A", "WAIT"))
    feed = LiveTicketFeed(ticket_store)
    asyncio.run(feed.select_profile(PROFILE_ID))
    ticket_store.available = False

    result = asyncio.run(feed.fetch_all())
    snapshot = feed.snapshot()

    assert result.reason is FailureReason.CONNECTIVITY
    assert snapshot.status is FeedStatus.ERROR
    assert snapshot.stale
    assert [ticket.doc_no for ticket in snapshot.tickets] == ["A"]


def test_first_fetch_failure_is_not_stale(ticket_store):
    ticket_store.available = False
    feed = LiveTicketFeed(ticket_store)

    asyncio.run(feed.select_profile(PROFILE_ID))

    assert feed.status is FeedStatus.ERROR
    assert not feed.snapshot().stale


def test_older_response_is_discarded():
    async def scenario():
        store = _GatedStore()
        feed = LiveTicketFeed(store)
        first = asyncio.create_task(feed.select_profile(PROFILE_ID))
        await asyncio.sleep(0)
        second = await feed.fetch_all()
        store.gate.set()
        return await first, second, feed.snapshot()

    first, second, snapshot = asyncio.run(scenario())

    assert first.reason is FailureReason.SUPERSEDED
    assert isinstance(second, Success)
    assert [ticket.doc_no for ticket in snapshot.tickets] == ["NEW"]


def test_notifications_for_other_profiles_are_ignored(ticket_store):
    feed = LiveTicketFeed(ticket_store)
    asyncio.run(feed.select_profile(PROFILE_ID))
    ticket_store.add(make_ticket("A", "WAIT"))

    ignored = asyncio.run(feed.on_external_change_notification(ChangeEvent("OTHER")))
    refreshed = asyncio.run(feed.on_external_change_notification(ChangeEvent(PROFILE_ID)))

    assert ignored is None
    assert [ticket.doc_no for ticket in refreshed.value] == ["A"]


def test_run_requires_selected_profile(ticket_store):
    feed = LiveTicketFeed(ticket_store)

    try:
        asyncio.run(feed.run())
    except ValueError as exc:
        assert "profile" in str(exc)
    else:
        raise AssertionError("run() without a profile should fail")


def test_push_refreshes_then_falls_back_to_polling(ticket_store, channel):
    async def scenario():
        feed = LiveTicketFeed(ticket_store, channel, poll_interval=0.01, push_retry_interval=0.2)
        await feed.select_profile(PROFILE_ID)
        feed.start()
        assert await _eventually(lambda: channel.subscriber_count(PROFILE_ID) == 1)
        assert feed.mode is SyncMode.PUSH

        await ticket_store.create(PROFILE_ID, "Q-ER", {})
        pushed = await _eventually(lambda: len(feed.snapshot().tickets) == 1)

        channel.disconnect()
        polling = await _eventually(lambda: feed.mode is SyncMode.POLLING)
        ticket_store.add(make_ticket("LATE", "WAIT"))
        polled = await _eventually(lambda: len(feed.snapshot().tickets) == 2)

        await feed.stop()
        return pushed, polling, polled, feed.mode

    pushed, polling, polled, mode = asyncio.run(scenario())

    assert pushed
    assert polling
    assert polled
    assert mode is SyncMode.IDLE


def test_push_resyncs_once_the_subscription_is_live(ticket_store, channel):
    async def scenario():
        feed = LiveTicketFeed(ticket_store, channel, poll_interval=0.01, push_retry_interval=30.0)
        await feed.select_profile(PROFILE_ID)
        ticket_store.add(make_ticket("QUIET", "WAIT"))
        feed.start()
        found = await _eventually(lambda: len(feed.snapshot().tickets) == 1)
        await feed.stop()
        return found

    assert asyncio.run(scenario())


def test_feed_without_channel_polls(ticket_store):
    async def scenario():
        feed = LiveTicketFeed(ticket_store, poll_interval=0.01)
        await feed.select_profile(PROFILE_ID)
        feed.start()
        ticket_store.add(make_ticket("A", "WAIT"))
        found = await _eventually(lambda: len(feed.snapshot().tickets) == 1)
        mode = feed.mode
        await feed.stop()
        return found, mode

    found, mode = asyncio.run(scenario())

    assert found
    assert mode is SyncMode.POLLING


def test_for_service_point_filters_cache(ticket_store, workflow):
    issue(ticket_store, "Q-ER")
    issue(ticket_store, "DEPOSIT")
    feed = LiveTicketFeed(ticket_store)
    asyncio.run(feed.select_profile(PROFILE_ID))

    tickets = feed.for_service_point(workflow.service_point("ER-1"), workflow)

    assert [ticket.service_group for ticket in tickets] == ["Q-ER"]
