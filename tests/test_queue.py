"""Tests for the priority request queue."""

import asyncio

import pytest

from contextkeeper.agent.queue import PriorityRequestQueue
from contextkeeper.bus.events import MessageQueueEntry, clamp_priority

LOCAL = "ollama/llama3.1"
REMOTE = "openai/gpt-4"


async def _settle():
    for _ in range(5):
        await asyncio.sleep(0)


class TestPriorities:
    def test_default(self):
        assert PriorityRequestQueue().get_priority("c1") == 5

    def test_clamped(self):
        q = PriorityRequestQueue()
        assert q.set_priority("c1", 42) == 10
        assert q.set_priority("c2", -3) == 1
        assert q.get_priority("c1") == 10

    def test_clamp_helper(self):
        assert clamp_priority(None) == 5
        assert MessageQueueEntry("c1", "hi", "u1", priority=0).priority == 1

    def test_invalidate_restores_default(self):
        q = PriorityRequestQueue()
        q.set_priority("c1", 9)
        q.set_priority("c2", 2)
        q.invalidate("c1")
        assert q.get_priority("c1") == 5
        assert q.get_priority("c2") == 2

    def test_clear(self):
        q = PriorityRequestQueue()
        q.set_priority("c1", 9)
        q.clear()
        assert q.get_priority("c1") == 5


class TestInferConcurrency:
    def test_remote_api_unlimited(self):
        group = PriorityRequestQueue().infer_concurrency(REMOTE)
        assert group.unlimited
        assert group.group_id == "remote-api-openai"

    def test_local_ollama_single(self):
        group = PriorityRequestQueue().infer_concurrency(LOCAL)
        assert group.limit == 1
        assert group.base_url == "http://localhost:11434"

    def test_lmstudio_single(self):
        assert PriorityRequestQueue().infer_concurrency("lmstudio/local-model").limit == 1

    def test_remote_ollama_host_unlimited(self):
        group = PriorityRequestQueue().infer_concurrency(LOCAL, base_url="http://gpu-box:11434")
        assert group.unlimited

    def test_override(self):
        q = PriorityRequestQueue(overrides={"ollama/qwen2.5": 4})
        assert q.infer_concurrency("ollama/qwen2.5").limit == 4

    def test_models_on_one_server_share_group(self):
        q = PriorityRequestQueue()
        assert q.group_for(LOCAL).group_id == q.group_for("ollama/qwen2.5").group_id


class TestScheduling:
    @pytest.mark.asyncio
    async def test_unlimited_runs_immediately(self):
        q = PriorityRequestQueue()
        slots = [await q.acquire(REMOTE, f"c{i}") for i in range(5)]
        assert len({s.request_id for s in slots}) == 5
        assert q.pending(REMOTE) == []

    @pytest.mark.asyncio
    async def test_highest_priority_served_first(self):
        q = PriorityRequestQueue()
        busy = await q.acquire(LOCAL, "busy")
        order = []

        async def request(cid):
            slot = await q.acquire(LOCAL, cid)
            order.append(cid)
            q.release(slot)

        for cid, priority in [("p10", 10), ("p3", 3), ("p8", 8)]:
            q.set_priority(cid, priority)
        tasks = [asyncio.create_task(request(cid)) for cid in ("p10", "p3", "p8")]
        await _settle()
        assert [e.priority for e in q.pending(LOCAL)] == [10, 8, 3]

        q.release(busy)
        await asyncio.gather(*tasks)
        assert order == ["p10", "p8", "p3"]

    @pytest.mark.asyncio
    async def test_equal_priority_is_fifo(self):
        q = PriorityRequestQueue()
        busy = await q.acquire(LOCAL, "busy")
        order = []

        async def request(cid):
            slot = await q.acquire(LOCAL, cid)
            order.append(cid)
            q.release(slot)

        first = asyncio.create_task(request("A"))
        await _settle()
        second = asyncio.create_task(request("B"))
        await _settle()
        q.release(busy)
        await asyncio.gather(first, second)
        assert order == ["A", "B"]

    @pytest.mark.asyncio
    async def test_set_priority_reorders_waiters(self):
        q = PriorityRequestQueue()
        busy = await q.acquire(LOCAL, "busy")
        tasks = [asyncio.create_task(q.acquire(LOCAL, cid)) for cid in ("A", "B")]
        await _settle()
        q.set_priority("B", 9)
        assert [e.conversation_id for e in q.pending(LOCAL)] == ["B", "A"]

        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        q.release(busy)

    @pytest.mark.asyncio
    async def test_cancel_waiting_leaves_queue(self):
        q = PriorityRequestQueue()
        busy = await q.acquire(LOCAL, "busy")
        task = asyncio.create_task(q.acquire(LOCAL, "c1"))
        await _settle()
        assert len(q.pending(LOCAL)) == 1

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert q.pending(LOCAL) == []
        q.release(busy)
        assert q.stats()[q.group_for(LOCAL).group_id]["active"] == 0

    @pytest.mark.asyncio
    async def test_cancel_running_releases_slot(self):
        q = PriorityRequestQueue()
        started = asyncio.Event()

        async def forever():
            started.set()
            await asyncio.sleep(3600)

        running = asyncio.create_task(q.run(LOCAL, "c1", forever))
        await started.wait()
        waiting = asyncio.create_task(q.run(LOCAL, "c2", lambda: asyncio.sleep(0, result="done")))
        await _settle()
        assert len(q.pending(LOCAL)) == 1

        running.cancel()
        with pytest.raises(asyncio.CancelledError):
            await running
        assert await waiting == "done"

    @pytest.mark.asyncio
    async def test_cancel_pending_by_conversation(self):
        q = PriorityRequestQueue()
        busy = await q.acquire(LOCAL, "busy")
        tasks = [asyncio.create_task(q.acquire(LOCAL, "c1")) for _ in range(2)]
        await _settle()
        assert q.cancel_pending("c1") == 2
        results = await asyncio.gather(*tasks, return_exceptions=True)
        assert all(isinstance(r, asyncio.CancelledError) for r in results)
        q.release(busy)

    @pytest.mark.asyncio
    async def test_release_is_idempotent(self):
        q = PriorityRequestQueue()
        slot = await q.acquire(LOCAL, "c1")
        q.release(slot)
        q.release(slot)
        stats = q.stats()[slot.group_id]
        assert stats == {"limit": 1, "active": 0, "pending": 0}

    @pytest.mark.asyncio
    async def test_invalidate_drops_waiters(self):
        q = PriorityRequestQueue()
        busy = await q.acquire(LOCAL, "busy")
        task = asyncio.create_task(q.acquire(LOCAL, "c1"))
        await _settle()
        q.invalidate("c1")
        with pytest.raises(asyncio.CancelledError):
            await task
        assert q.pending(LOCAL) == []
        q.release(busy)
