"""Tests for StateBus — in-process pub/sub of published live state."""

import asyncio

import pytest

from serenity.kernel.event_bus import StateBus


@pytest.mark.asyncio
async def test_publish_and_listen():
    bus = StateBus()
    queue = bus.subscribe("live.cycle")

    bus.publish("live.cycle", {"cycle_id": 1})
    bus.close()

    events = [e async for e in bus.listen(queue)]
    assert len(events) == 1
    assert events[0].topic == "live.cycle"
    assert events[0].payload == {"cycle_id": 1}


@pytest.mark.asyncio
async def test_multiple_subscribers():
    bus = StateBus()
    q1 = bus.subscribe("chat.message")
    q2 = bus.subscribe("chat.message")

    delivered = bus.publish("chat.message", "hello")
    assert delivered == 2

    bus.close()
    assert [e.payload async for e in bus.listen(q1)] == ["hello"]
    assert [e.payload async for e in bus.listen(q2)] == ["hello"]


@pytest.mark.asyncio
async def test_topic_isolation():
    bus = StateBus()
    q_overlay = bus.subscribe("live.overlay")
    q_chat = bus.subscribe("chat.message")

    bus.publish("live.overlay", "overlay")
    bus.publish("chat.message", "chat")
    bus.close()

    assert [e.payload async for e in bus.listen(q_overlay)] == ["overlay"]
    assert [e.payload async for e in bus.listen(q_chat)] == ["chat"]


@pytest.mark.asyncio
async def test_subscribe_without_topics_receives_everything():
    bus = StateBus()
    queue = bus.subscribe()

    bus.publish("live.cycle", 1)
    bus.publish("events.added", 2)
    bus.close()

    topics = [e.topic async for e in bus.listen(queue)]
    assert topics == ["live.cycle", "events.added"]


@pytest.mark.asyncio
async def test_publish_without_subscribers():
    bus = StateBus()
    assert bus.publish("live.progress", 50) == 0


@pytest.mark.asyncio
async def test_unsubscribe_idempotent():
    bus = StateBus()
    queue = bus.subscribe("live.cycle", "live.progress")
    assert bus.subscriber_count("live.cycle") == 1

    bus.unsubscribe(queue)
    bus.unsubscribe(queue)  # Should not raise
    assert bus.subscriber_count("live.cycle") == 0
    assert bus.subscriber_count("live.progress") == 0


@pytest.mark.asyncio
async def test_full_queue_drops_instead_of_blocking():
    bus = StateBus(maxsize=1)
    queue = bus.subscribe("live.progress")

    assert bus.publish("live.progress", 10) == 1
    assert bus.publish("live.progress", 20) == 0
    assert queue.qsize() == 1


@pytest.mark.asyncio
async def test_listen_yields_none_when_idle():
    bus = StateBus()
    queue = bus.subscribe()
    stream = bus.listen(queue, idle_timeout=0.01)

    assert await stream.__anext__() is None

    bus.publish("live.cycle", "x")
    event = await stream.__anext__()
    assert event.payload == "x"
    await stream.aclose()


@pytest.mark.asyncio
async def test_close_ends_every_stream():
    bus = StateBus()
    queue = bus.subscribe("live.cycle")
    listener = asyncio.create_task(_collect(bus, queue))
    await asyncio.sleep(0)

    bus.close()
    assert await asyncio.wait_for(listener, timeout=1) == []
    assert bus.subscriber_count("live.cycle") == 0


@pytest.mark.asyncio
async def test_close_ends_stream_of_full_subscriber():
    """A full queue still gets the end marker; the oldest event is dropped."""
    bus = StateBus(maxsize=1)
    queue = bus.subscribe("live.progress")
    bus.publish("live.progress", 10)

    bus.close()
    events = await asyncio.wait_for(_collect(bus, queue), timeout=1)
    assert events == []


async def _collect(bus, queue):
    return [e async for e in bus.listen(queue)]
