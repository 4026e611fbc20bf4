import pytest

from messaging.outbound_queue import OutboundQueue, QueueFullError


def test_enqueue_assigns_increasing_order_keys():
    queue = OutboundQueue()
    first = queue.enqueue("1@c.us", "a")
    second = queue.enqueue("2@c.us", "b")
    assert first.enqueued_at < second.enqueued_at
    assert len(queue) == 2


def test_take_all_is_fifo_and_clears():
    queue = OutboundQueue()
    for i in range(5):
        queue.enqueue(f"{i % 2}@c.us", str(i))

    items = queue.take_all()

    assert [m.payload for m in items] == ["0", "1", "2", "3", "4"]
    assert len(queue) == 0


def test_bounded_queue_raises_when_full():
    queue = OutboundQueue(max_size=2)
    queue.enqueue("1@c.us", "a")
    queue.enqueue("1@c.us", "b")
    with pytest.raises(QueueFullError):
        queue.enqueue("1@c.us", "c")
    assert [m.payload for m in queue.snapshot()] == ["a", "b"]


def test_clear_returns_dropped_count():
    queue = OutboundQueue()
    queue.enqueue("1@c.us", "a")
    queue.enqueue("1@c.us", "b")
    assert queue.clear() == 2
    assert queue.clear() == 0


@pytest.mark.asyncio
async def test_drain_dispatches_in_order_and_reports_failures():
    queue = OutboundQueue()
    for text in ("a", "b", "c", "d"):
        queue.enqueue("1@c.us", text)
    dispatched = []

    async def dispatch(message):
        dispatched.append(message.payload)
        if message.payload == "b":
            raise RuntimeError("invalid wid")

    failures = await queue.drain(dispatch)

    assert dispatched == ["a", "b", "c", "d"]
    assert [(m.payload, str(e)) for m, e in failures] == [("b", "invalid wid")]
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_drain_empty_queue_is_noop():
    queue = OutboundQueue()

    async def dispatch(message):
        raise AssertionError("should not be called")

    assert await queue.drain(dispatch) == []
