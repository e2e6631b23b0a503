"""Render subjects as prompt text at decreasing levels of detail."""

from dataclasses import dataclass
from enum import Enum

from contextkeeper.agent.abstraction import DEFAULT_LEVEL, get_level_name
from contextkeeper.agent.tokens import estimate_tokens
from contextkeeper.analysis.types import Subject

DESCRIPTION_LIMIT = 100
RICH_KEYWORD_LIMIT = 5


class Tier(str, Enum):
    rich = "rich"
    balanced = "balanced"
    minimal = "minimal"
    extreme = "extreme"

    def next(self) -> "Tier":
        """The next, more compressed tier (extreme stays extreme)."""
        idx = TIER_SEQUENCE.index(self)
        return TIER_SEQUENCE[min(idx + 1, len(TIER_SEQUENCE) - 1)]


TIER_SEQUENCE = [Tier.rich, Tier.balanced, Tier.minimal, Tier.extreme]


@dataclass
class SubjectSummary:
    text: str
    estimated_tokens: int
    tier: Tier


@dataclass
class BatchSummary:
    summaries: list[SubjectSummary]
    total_tokens: int
    tier: Tier


def _truncate(text: str, limit: int = DESCRIPTION_LIMIT) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def _render(subject: Subject, tier: Tier) -> str:
    level = subject.abstraction_level if subject.abstraction_level is not None else DEFAULT_LEVEL
    name = subject.display_name

    if tier == Tier.rich:
        lines = [f"{name} (level {level}: {get_level_name(level)})"]
        if subject.description:
            lines.append(f'  Description: "{_truncate(subject.description)}"')
        if subject.keywords:
            lines.append(f"  Keywords: {', '.join(subject.keywords[:RICH_KEYWORD_LIMIT])}")
        lines.append(f"  {subject.message_count} messages")
        return "\n".join(lines)

    if tier == Tier.balanced:
        return f"{level}: {name}"

    if tier == Tier.minimal:
        # Never longer than the balanced line
        keyword = subject.primary_keyword
        if len(keyword) > len(name):
            keyword = name
        return f"{level}: {keyword}"

    return f"{level}"


def summarize_subject(subject: Subject, tier: Tier = Tier.balanced) -> SubjectSummary:
    """Format one subject at one tier."""
    tier = Tier(tier)
    text = _render(subject, tier)
    return SubjectSummary(text=text, estimated_tokens=estimate_tokens(text), tier=tier)


def summarize_subjects(
    subjects: list[Subject],
    budget: int,
    start_tier: Tier = Tier.balanced,
) -> BatchSummary:
    """Render all subjects at one shared tier that fits ``budget``.

    Starts at ``start_tier`` and steps down the tier sequence, re-rendering
    every subject each time, until the total fits or ``extreme`` is reached.
    """
    tier = Tier(start_tier)
    while True:
        summaries = [summarize_subject(s, tier) for s in subjects]
        total = sum(s.estimated_tokens for s in summaries)
        if total <= budget or tier == Tier.extreme:
            return BatchSummary(summaries=summaries, total_tokens=total, tier=tier)
        tier = tier.next()


def format_past_subjects(
    subjects: list[Subject],
    budget: int,
    start_tier: Tier = Tier.balanced,
) -> tuple[str, Tier]:
    """Render the past-subject digest block. Returns (text, tier used)."""
    if not subjects:
        return "", Tier(start_tier)
    batch = summarize_subjects(subjects, budget, start_tier)
    lines = [f"Past subjects ({len(subjects)}) [{batch.tier.value} mode]:"]
    lines.extend(f"- {s.text}" for s in batch.summaries)
    return "\n".join(lines), batch.tier


def compression_stats(subjects: list[Subject]) -> dict[str, int]:
    """Estimated tokens for the whole set at every tier."""
    return {
        tier.value: sum(summarize_subject(s, tier).estimated_tokens for s in subjects)
        for tier in TIER_SEQUENCE
    }
