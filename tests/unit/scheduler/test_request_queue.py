"""Unit tests for RequestQueue ordering and bookkeeping."""

import pytest

from origin_dispatch.scheduler.queue import RequestQueue
from origin_dispatch.types import QueueItem, RequestOptions, new_future


def make_item(item_id: int) -> QueueItem:
    return QueueItem(
        options=RequestOptions(method="GET", path=f"/{item_id}"),
        future=new_future(),
        item_id=item_id,
    )


class TestRequestQueue:
    """Tests for RequestQueue."""

    @pytest.mark.asyncio
    async def test_fifo_order(self):
        """Items pushed to the tail come out in submission order."""
        queue = RequestQueue()
        for i in range(3):
            queue.push(make_item(i))

        assert [queue.pop().item_id for _ in range(3)] == [0, 1, 2]
        assert queue.pop() is None

    @pytest.mark.asyncio
    async def test_push_front_goes_first(self):
        """A priority item jumps ahead of everything queued."""
        queue = RequestQueue()
        queue.push(make_item(1))
        queue.push(make_item(2))
        queue.push_front(make_item(99))

        assert queue.pop().item_id == 99
        assert queue.total_enqueued == 3

    @pytest.mark.asyncio
    async def test_requeue_goes_first(self):
        """A retried item is served before newer work."""
        queue = RequestQueue()
        queue.push(make_item(1))
        retried = make_item(0)
        retried.attempts = 1
        queue.requeue(retried)

        assert queue.pop() is retried
        assert queue.total_requeued == 1
        assert queue.total_enqueued == 1

    @pytest.mark.asyncio
    async def test_len_and_is_empty(self):
        """len() and is_empty track the pending count."""
        queue = RequestQueue()
        assert queue.is_empty
        queue.push(make_item(1))
        assert len(queue) == 1
        assert not queue.is_empty

    @pytest.mark.asyncio
    async def test_snapshot_does_not_remove(self):
        """snapshot() copies the items head first."""
        queue = RequestQueue()
        queue.push(make_item(1))
        queue.push_front(make_item(0))

        assert [i.item_id for i in queue.snapshot()] == [0, 1]
        assert len(queue) == 2

    @pytest.mark.asyncio
    async def test_drain_empties(self):
        """drain() returns every item and leaves the queue empty."""
        queue = RequestQueue()
        queue.push(make_item(1))
        queue.push(make_item(2))

        assert [i.item_id for i in queue.drain()] == [1, 2]
        assert queue.is_empty
