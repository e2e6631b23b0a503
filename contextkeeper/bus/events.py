"""Event types flowing between transport, processor and queue."""

import time
from dataclasses import dataclass, field
from typing import Any

MIN_PRIORITY = 1
MAX_PRIORITY = 10
DEFAULT_PRIORITY = 5


def clamp_priority(priority: int | None) -> int:
    """Clamp a priority into [1, 10]; None means the default."""
    if priority is None:
        return DEFAULT_PRIORITY
    return max(MIN_PRIORITY, min(MAX_PRIORITY, int(priority)))


@dataclass
class InboundMessage:
    """A new message posted to a conversation."""

    conversation_id: str
    sender_id: str
    content: str
    timestamp: float = field(default_factory=time.time)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class OutboundMessage:
    """A reply produced by the inference backend."""

    conversation_id: str
    content: str
    thinking: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class MessageQueueEntry:
    """A pending prompt-build+infer request. Never persisted."""

    conversation_id: str
    text: str
    sender_id: str
    enqueued_at: float = field(default_factory=time.monotonic)
    priority: int = DEFAULT_PRIORITY

    def __post_init__(self):
        self.priority = clamp_priority(self.priority)
