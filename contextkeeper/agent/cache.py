"""Short-lived per-conversation caches."""

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from loguru import logger

DEFAULT_TTL = 5.0  # seconds


@dataclass
class _Entry:
    value: Any
    stored_at: float


class TTLCache:
    """Key-value cache where every entry carries its own timestamp.

    Expired entries are dropped lazily on read. Concurrent population of the
    same key simply overwrites: last write wins.
    """

    def __init__(self, ttl: float = DEFAULT_TTL, clock: Callable[[], float] = time.monotonic):
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, _Entry] = {}

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None when missing or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.stored_at >= self.ttl:
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = _Entry(value=value, stored_at=self._clock())

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)


class HistoryCache(TTLCache):
    """Conversation history cache keyed by conversation id."""

    def append(self, conversation_id: str, message: Any) -> bool:
        """Append a sent message to a live entry instead of invalidating it.

        Returns False when nothing is cached for the conversation; the next
        read reloads from the transport and will include the message.
        """
        messages = self.get(conversation_id)
        if messages is None:
            return False
        messages.append(message)
        logger.debug(f"History cache append for {conversation_id} ({len(messages)} messages)")
        return True
