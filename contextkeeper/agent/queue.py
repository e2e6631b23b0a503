"""Priority request queue bounding concurrent inference calls per backend."""

import asyncio
import itertools
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from contextkeeper.bus.events import DEFAULT_PRIORITY, MessageQueueEntry, clamp_priority
from contextkeeper.config.models import get_provider_name, is_local_provider

DEFAULT_BASE_URLS = {
    "ollama": "http://localhost:11434",
    "lmstudio": "http://localhost:1234",
}
LOCAL_HOSTS = ("localhost", "127.0.0.1", "0.0.0.0", "[::1]")


@dataclass
class ConcurrencyGroup:
    """Backends sharing one concurrency limit. ``limit=None`` means unlimited."""

    group_id: str
    limit: int | None
    provider: str = ""
    base_url: str | None = None

    @property
    def unlimited(self) -> bool:
        return self.limit is None


@dataclass
class Slot:
    """An acquired right to call a backend."""

    request_id: str
    model_id: str
    conversation_id: str
    group_id: str
    started_at: float = field(default_factory=time.monotonic)


@dataclass
class _Waiter:
    entry: MessageQueueEntry
    model_id: str
    seq: int
    future: asyncio.Future

    def sort_key(self) -> tuple:
        return (-self.entry.priority, self.entry.enqueued_at, self.seq)


class PriorityRequestQueue:
    """Advisory scheduler for prompt-build+infer requests.

    Requests for an unlimited group run immediately. For limited groups,
    waiting requests are served by priority (highest first), then arrival
    order. Running requests are never preempted.
    """

    def __init__(
        self,
        default_priority: int = DEFAULT_PRIORITY,
        overrides: dict[str, int | None] | None = None,
        api_base: str | None = None,
    ):
        self.default_priority = clamp_priority(default_priority)
        self.overrides = dict(overrides or {})
        self.api_base = api_base
        self._priorities: dict[str, int] = {}
        self._models: dict[str, ConcurrencyGroup] = {}
        self._active: dict[str, dict[str, Slot]] = {}
        self._pending: dict[str, list[_Waiter]] = {}
        self._seq = itertools.count()

    # ── priorities ──────────────────────────────────────────────

    def set_priority(self, conversation_id: str, priority: int) -> int:
        """Set a conversation's priority (clamped to 1..10). Re-orders waiters."""
        value = clamp_priority(priority)
        self._priorities[conversation_id] = value
        for waiters in self._pending.values():
            touched = False
            for waiter in waiters:
                if waiter.entry.conversation_id == conversation_id:
                    waiter.entry.priority = value
                    touched = True
            if touched:
                waiters.sort(key=_Waiter.sort_key)
        return value

    def get_priority(self, conversation_id: str) -> int:
        return self._priorities.get(conversation_id, self.default_priority)

    # ── concurrency groups ──────────────────────────────────────

    def infer_concurrency(self, model_id: str, base_url: str | None = None) -> ConcurrencyGroup:
        """Derive the concurrency group of a model from its provider and host."""
        provider = get_provider_name(model_id)
        if model_id in self.overrides:
            return ConcurrencyGroup(f"model-{model_id}", self.overrides[model_id], provider)

        if not is_local_provider(provider):
            return ConcurrencyGroup(f"remote-api-{provider}", None, provider)

        url = base_url or self.api_base or DEFAULT_BASE_URLS.get(provider, "local")
        if url == "local" or any(host in url for host in LOCAL_HOSTS):
            return ConcurrencyGroup(f"local-{provider}-{url}", 1, provider, url)
        return ConcurrencyGroup(f"remote-{provider}-{url}", None, provider, url)

    def register_model(self, model_id: str, group: ConcurrencyGroup) -> None:
        self._models[model_id] = group
        logger.debug(
            f"Concurrency for {model_id}: group={group.group_id} "
            f"limit={'unlimited' if group.unlimited else group.limit}"
        )

    def group_for(self, model_id: str) -> ConcurrencyGroup:
        group = self._models.get(model_id)
        if group is None:
            group = self.infer_concurrency(model_id)
            self.register_model(model_id, group)
        return group

    def _limit(self, group_id: str) -> int | None:
        for group in self._models.values():
            if group.group_id == group_id:
                return group.limit
        return 1

    # ── slots ───────────────────────────────────────────────────

    def _grant(self, model_id: str, conversation_id: str, group_id: str) -> Slot:
        slot = Slot(
            request_id=uuid.uuid4().hex[:12],
            model_id=model_id,
            conversation_id=conversation_id,
            group_id=group_id,
        )
        self._active.setdefault(group_id, {})[slot.request_id] = slot
        return slot

    async def acquire(
        self,
        model_id: str,
        conversation_id: str,
        text: str = "",
        sender_id: str = "",
    ) -> Slot:
        """Wait for a backend slot. Cancelling the wait leaves the queue."""
        group = self.group_for(model_id)
        active = self._active.get(group.group_id, {})
        waiting = self._pending.get(group.group_id)

        if group.unlimited or (len(active) < group.limit and not waiting):
            return self._grant(model_id, conversation_id, group.group_id)

        entry = MessageQueueEntry(
            conversation_id=conversation_id,
            text=text,
            sender_id=sender_id,
            priority=self.get_priority(conversation_id),
        )
        waiter = _Waiter(
            entry=entry,
            model_id=model_id,
            seq=next(self._seq),
            future=asyncio.get_running_loop().create_future(),
        )
        queue = self._pending.setdefault(group.group_id, [])
        queue.append(waiter)
        queue.sort(key=_Waiter.sort_key)
        logger.info(
            f"Queued {conversation_id} for {model_id} (priority {entry.priority}, "
            f"{len(active)}/{group.limit} active, {len(queue)} waiting)"
        )

        try:
            return await waiter.future
        except asyncio.CancelledError:
            if waiter.future.done() and not waiter.future.cancelled():
                self.release(waiter.future.result())
            elif waiter in queue:
                queue.remove(waiter)
            raise

    def release(self, slot: Slot) -> None:
        """Free a slot and hand it to the next waiter, if any."""
        active = self._active.get(slot.group_id, {})
        if active.pop(slot.request_id, None) is None:
            return
        logger.debug(f"Released slot {slot.request_id} for {slot.model_id} ({len(active)} active)")
        self._dispatch(slot.group_id)

    def _dispatch(self, group_id: str) -> None:
        queue = self._pending.get(group_id, [])
        limit = self._limit(group_id)
        active = self._active.setdefault(group_id, {})
        while queue and (limit is None or len(active) < limit):
            waiter = queue.pop(0)
            if waiter.future.done():
                continue
            slot = self._grant(waiter.model_id, waiter.entry.conversation_id, group_id)
            waiter.future.set_result(slot)

    async def run(
        self,
        model_id: str,
        conversation_id: str,
        factory: Callable[[], Awaitable[Any]],
        text: str = "",
        sender_id: str = "",
    ) -> Any:
        """Run ``factory()`` inside a slot; the slot is freed on completion or cancel."""
        slot = await self.acquire(model_id, conversation_id, text, sender_id)
        try:
            return await factory()
        finally:
            self.release(slot)

    # ── introspection ───────────────────────────────────────────

    def cancel_pending(self, conversation_id: str) -> int:
        """Drop every waiting request of a conversation. Returns how many."""
        dropped = 0
        for queue in self._pending.values():
            for waiter in [w for w in queue if w.entry.conversation_id == conversation_id]:
                queue.remove(waiter)
                waiter.future.cancel()
                dropped += 1
        return dropped

    def invalidate(self, conversation_id: str) -> None:
        """Forget a conversation's priority and drop its waiting requests."""
        self._priorities.pop(conversation_id, None)
        dropped = self.cancel_pending(conversation_id)
        if dropped:
            logger.debug(f"Dropped {dropped} pending request(s) for {conversation_id}")

    def clear(self) -> None:
        """Forget all priorities and cancel every waiting request."""
        self._priorities.clear()
        for queue in self._pending.values():
            for waiter in queue:
                waiter.future.cancel()
            queue.clear()

    def pending(self, model_id: str) -> list[MessageQueueEntry]:
        group = self.group_for(model_id)
        return [w.entry for w in self._pending.get(group.group_id, [])]

    def stats(self) -> dict[str, dict[str, Any]]:
        groups = {g.group_id: g for g in self._models.values()}
        return {
            group_id: {
                "limit": group.limit,
                "active": len(self._active.get(group_id, {})),
                "pending": len(self._pending.get(group_id, [])),
            }
            for group_id, group in groups.items()
        }
