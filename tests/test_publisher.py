"""Status publisher tests: fan-out, terminal close, heartbeat, unsubscribe."""

import asyncio
import json

import pytest

from vidgenie.services.workflow.publisher import ProgressEvent, StatusPublisher


def _event(kind="workflow:update", status="GENERATING_VIDEO", job_id="job-1") -> ProgressEvent:
    return ProgressEvent(type=kind, job_id=job_id, status=status, progress=75)


async def _next(subscription, timeout=1.0) -> ProgressEvent:
    return await asyncio.wait_for(subscription.__anext__(), timeout=timeout)


@pytest.mark.asyncio
async def test_every_subscriber_receives_every_event():
    publisher = StatusPublisher()
    first = await publisher.subscribe("job-1")
    second = await publisher.subscribe("job-1")

    delivered = await publisher.publish("job-1", _event())

    assert delivered == 2
    assert (await _next(first)).status == "GENERATING_VIDEO"
    assert (await _next(second)).status == "GENERATING_VIDEO"
    await first.aclose()
    await second.aclose()


@pytest.mark.asyncio
async def test_events_are_scoped_to_job():
    publisher = StatusPublisher()
    subscription = await publisher.subscribe("job-1")

    assert await publisher.publish("job-2", _event(job_id="job-2")) == 0
    assert subscription.queue.empty()
    await subscription.aclose()


@pytest.mark.asyncio
async def test_iteration_stops_after_terminal_event():
    publisher = StatusPublisher()
    subscription = await publisher.subscribe("job-1")

    await publisher.publish("job-1", _event())
    await publisher.publish("job-1", _event("workflow:complete", "VIDEO_READY"))
    await publisher.publish("job-1", _event())

    received = [event async for event in subscription]

    assert [e.type for e in received] == ["workflow:update", "workflow:complete"]
    assert await publisher.subscriber_count("job-1") == 0


@pytest.mark.asyncio
async def test_late_subscriber_gets_no_replay():
    publisher = StatusPublisher()
    await publisher.publish("job-1", _event())

    async with await publisher.subscribe("job-1") as subscription:
        assert subscription.queue.empty()


@pytest.mark.asyncio
async def test_heartbeat_pings_without_traffic():
    publisher = StatusPublisher(heartbeat_seconds=0.02)

    async with await publisher.subscribe("job-1") as subscription:
        event = await _next(subscription)

    assert event.type == "ping"
    assert event.job_id == "job-1"


@pytest.mark.asyncio
async def test_close_unregisters_and_stops_heartbeat():
    publisher = StatusPublisher(heartbeat_seconds=0.01)
    subscription = await publisher.subscribe("job-1")
    assert await publisher.subscriber_count("job-1") == 1

    await subscription.aclose()
    await subscription.aclose()

    assert await publisher.subscriber_count("job-1") == 0
    assert await publisher.publish("job-1", _event()) == 0
    await asyncio.gather(subscription._heartbeat, return_exceptions=True)
    assert subscription._heartbeat.cancelled()
    with pytest.raises(StopAsyncIteration):
        await subscription.__anext__()


@pytest.mark.asyncio
async def test_backlogged_subscriber_does_not_block_others():
    publisher = StatusPublisher(max_queue_size=1)
    slow = await publisher.subscribe("job-1")
    fast = await publisher.subscribe("job-1")

    await publisher.publish("job-1", _event())
    await _next(fast)
    delivered = await publisher.publish("job-1", _event())

    assert delivered == 1
    await slow.aclose()
    await fast.aclose()


def test_sse_encoding():
    frame = _event().to_sse()

    assert frame.startswith("data: ")
    assert frame.endswith("\n\n")
    body = json.loads(frame[len("data: ") :])
    assert body["type"] == "workflow:update"
    assert body["progress"] == 75
    assert "message" not in body
