from __future__ import annotations

import asyncio
import json

import pytest

from conftest import PROFILE_ID
from queueflow.infrastructure import ChannelUnavailableError, InMemoryChangeChannel, RedisChangeChannel
from queueflow.infrastructure.notifications import _decode
from queueflow.routes.touchpoints import event_stream


def test_in_memory_channel_delivers_per_profile(channel):
    async def scenario():
        received = []

        async def consume():
            async for event in channel.subscribe(PROFILE_ID):
                if event is not None:
                    received.append(event)
                    return

        task = asyncio.create_task(consume())
        while channel.subscriber_count(PROFILE_ID) == 0:
            await asyncio.sleep(0)
        await channel.publish("OTHER", {"reason": "created"})
        await channel.publish(PROFILE_ID, {"reason": "transition"})
        await task
        return received

    received = asyncio.run(scenario())

    assert len(received) == 1
    assert received[0].payload == {"reason": "transition"}
    assert channel.subscriber_count(PROFILE_ID) == 0


def test_heartbeat_ticks_while_idle(channel):
    async def scenario():
        subscription = channel.subscribe(PROFILE_ID, heartbeat=0.01)
        ticks = [await subscription.__anext__(), await subscription.__anext__()]
        await subscription.aclose()
        return ticks

    assert asyncio.run(scenario()) == [None, None]


def test_subscription_ticks_once_live_so_no_change_is_missed(channel):
    async def scenario():
        subscription = channel.subscribe(PROFILE_ID)
        live = await subscription.__anext__()
        assert channel.subscriber_count(PROFILE_ID) == 1
        await channel.publish(PROFILE_ID, {"reason": "created"})
        event = await subscription.__anext__()
        await subscription.aclose()
        return live, event

    live, event = asyncio.run(scenario())

    assert live is None
    assert event.payload == {"reason": "created"}


def test_offline_channel_refuses_publish_and_subscribe(channel):
    channel.disconnect()

    with pytest.raises(ChannelUnavailableError):
        asyncio.run(channel.publish(PROFILE_ID))

    async def subscribe():
        async for _ in channel.subscribe(PROFILE_ID):
            pass

    with pytest.raises(ChannelUnavailableError):
        asyncio.run(subscribe())


def test_event_stream_relays_updates_until_channel_closes(channel):
    async def scenario():
        stream = event_stream(channel, PROFILE_ID, heartbeat=0.01)
        frames = [await stream.__anext__()]
        await channel.publish(PROFILE_ID, {"reason": "created"})
        frame = await stream.__anext__()
        while '"heartbeat"' in frame:
            frame = await stream.__anext__()
        frames.append(frame)
        channel.disconnect()
        async for remaining in stream:
            frames.append(remaining)
        return frames

    frames = asyncio.run(scenario())
    payloads = [json.loads(frame.removeprefix("data: ").strip()) for frame in frames]

    assert payloads[0] == {"type": "heartbeat"}
    assert payloads[1] == {"reason": "created", "type": "queue_update", "profileId": PROFILE_ID}
    assert all(frame.endswith("\n\n") for frame in frames)


def test_redis_channel_naming_and_decoding():
    assert RedisChangeChannel.channel_name(PROFILE_ID) == f"queue:update:{PROFILE_ID}"
    assert _decode('{"type": "queue_update"}') == {"type": "queue_update"}
    assert _decode(b"plain") == {"raw": "plain"}
    assert _decode(None) == {}
    with pytest.raises(ValueError):
        RedisChangeChannel()


def test_unreachable_redis_is_channel_unavailable():
    channel = RedisChangeChannel("redis://127.0.0.1:1/0")

    with pytest.raises(ChannelUnavailableError):
        asyncio.run(channel.publish(PROFILE_ID, {"reason": "created"}))


def test_in_memory_close_ends_subscriptions():
    channel = InMemoryChangeChannel()

    async def scenario():
        async def consume():
            return [event async for event in channel.subscribe(PROFILE_ID)]

        task = asyncio.create_task(consume())
        while channel.subscriber_count(PROFILE_ID) == 0:
            await asyncio.sleep(0)
        await channel.close()
        return await task

    assert asyncio.run(scenario()) == [None]
