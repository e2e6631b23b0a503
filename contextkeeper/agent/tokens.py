"""Approximate token estimation for context budgeting."""

import math

CHARS_PER_TOKEN = 4  # Conservative cross-model proxy, not a real tokenizer


def estimate_tokens(text: str | None) -> int:
    """Estimate token count from character count, rounded up."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_messages_tokens(messages: list[dict]) -> int:
    """Estimate total tokens for a list of ``{"role", "content"}`` dicts."""
    return sum(estimate_tokens(m.get("content", "") or "") for m in messages)


def estimate_texts_tokens(texts) -> int:
    """Estimate total tokens for an iterable of strings."""
    return sum(estimate_tokens(t) for t in texts)


def truncate_to_tokens(text: str | None, max_tokens: int, marker: str = "...") -> str:
    """Cut ``text`` so its estimate stays within ``max_tokens``."""
    if not text or max_tokens <= 0:
        return ""
    limit = max_tokens * CHARS_PER_TOKEN
    if len(text) <= limit:
        return text
    return text[: max(0, limit - len(marker))].rstrip() + marker
