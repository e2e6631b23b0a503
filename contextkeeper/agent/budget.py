"""Budget-constrained prompt assembly.

A prompt has four parts:
  1. system prompt (fixed cost)
  2. past-subject digest (compressed via the summarizer)
  3. current conversation history (verbatim, newest kept)
  4. the new message (always included whole)
"""

from dataclasses import dataclass, field

from loguru import logger

from contextkeeper.agent.summarizer import Tier, format_past_subjects
from contextkeeper.agent.tokens import estimate_messages_tokens, estimate_tokens
from contextkeeper.analysis.types import Subject

RESPONSE_RESERVE_RATIO = 0.25
PAST_SUBJECTS_SHARE = 0.2

DEFAULT_SUBJECT_COUNT = 20
DEFAULT_MESSAGE_LIMIT = 30
MIN_SUBJECT_COUNT = 3
MIN_MESSAGE_LIMIT = 5
TRIM_STEP = 5


@dataclass
class ContextBudget:
    """Token allocation for one request plus the settings finally used."""

    context_window: int
    system_prompt_tokens: int
    response_reserve: int
    past_subjects_budget: int
    current_messages_budget: int
    subject_count: int = DEFAULT_SUBJECT_COUNT
    message_limit: int = DEFAULT_MESSAGE_LIMIT
    tier: Tier = Tier.balanced
    total_used: int = 0

    @property
    def usable(self) -> int:
        return self.context_window - self.response_reserve

    @property
    def remaining(self) -> int:
        return self.usable - self.total_used


def create_budget(
    context_window: int,
    system_prompt_tokens: int,
    subject_count: int = DEFAULT_SUBJECT_COUNT,
    message_limit: int = DEFAULT_MESSAGE_LIMIT,
    tier: Tier = Tier.balanced,
    reserve_ratio: float = RESPONSE_RESERVE_RATIO,
) -> ContextBudget:
    """Split a context window into per-part allotments."""
    if context_window <= 0:
        raise ValueError("context_window must be positive")
    reserve = int(context_window * reserve_ratio)
    after_system = max(0, context_window - reserve - system_prompt_tokens)
    past_budget = int(after_system * PAST_SUBJECTS_SHARE)
    return ContextBudget(
        context_window=context_window,
        system_prompt_tokens=system_prompt_tokens,
        response_reserve=reserve,
        past_subjects_budget=past_budget,
        current_messages_budget=after_system - past_budget,
        subject_count=subject_count,
        message_limit=message_limit,
        tier=Tier(tier),
        total_used=system_prompt_tokens,
    )


@dataclass
class PromptParts:
    """The four token-counted prompt parts and the budget that produced them."""

    system_prompt: str
    past_subjects: str
    messages: list[dict]
    new_message: str
    budget: ContextBudget
    subjects_included: int = 0
    overflow: bool = False
    restart: bool = False
    metadata: dict = field(default_factory=dict)

    @property
    def system_tokens(self) -> int:
        return estimate_tokens(self.system_prompt)

    @property
    def past_subjects_tokens(self) -> int:
        return estimate_tokens(self.past_subjects)

    @property
    def messages_tokens(self) -> int:
        return estimate_messages_tokens(self.messages)

    @property
    def new_message_tokens(self) -> int:
        return estimate_tokens(self.new_message)

    @property
    def total_tokens(self) -> int:
        return (
            self.system_tokens
            + self.past_subjects_tokens
            + self.messages_tokens
            + self.new_message_tokens
        )

    @property
    def tier(self) -> Tier:
        return self.budget.tier

    @property
    def messages_included(self) -> int:
        return len(self.messages)

    def to_messages(self) -> list[dict]:
        """Flatten into a role-tagged list for OpenAI-style chat APIs."""
        system = "\n\n".join(p for p in (self.system_prompt, self.past_subjects) if p)
        out = [{"role": "system", "content": system}]
        out.extend({"role": m["role"], "content": m["content"]} for m in self.messages)
        out.append({"role": "user", "content": self.new_message})
        return out

    def to_anthropic(self) -> dict:
        """Split into cacheable system blocks plus user/assistant turns."""
        system = [{
            "type": "text",
            "text": self.system_prompt,
            "cache_control": {"type": "ephemeral"},
        }]
        if self.past_subjects.strip():
            system.append({
                "type": "text",
                "text": self.past_subjects,
                "cache_control": {"type": "ephemeral"},
            })
        messages = [
            {"role": m["role"], "content": m["content"]}
            for m in self.messages if m["role"] != "system"
        ]
        messages.append({"role": "user", "content": self.new_message})
        return {"system": system, "messages": messages}


def _ordered(history: list[dict]) -> list[dict]:
    # Stable sort keeps arrival order for messages without timestamps
    return sorted(history, key=lambda m: m.get("timestamp") or 0)


def _build(
    system_prompt: str,
    subjects: list[Subject],
    history: list[dict],
    new_message: str,
    budget: ContextBudget,
) -> PromptParts:
    included = subjects[: budget.subject_count]
    digest, tier = format_past_subjects(included, budget.past_subjects_budget, budget.tier)
    # Even the extreme tier overflows the digest allotment: drop the least relevant
    while included and estimate_tokens(digest) > budget.past_subjects_budget:
        included = included[:-1]
        digest, tier = format_past_subjects(included, budget.past_subjects_budget, budget.tier)
    budget.tier = tier

    # History gets its own allotment plus whatever the digest left unused
    allowance = (
        budget.current_messages_budget
        + budget.past_subjects_budget
        - estimate_tokens(digest)
        - estimate_tokens(new_message)
    )
    messages = history[-budget.message_limit:] if budget.message_limit > 0 else []
    while messages and estimate_messages_tokens(messages) > allowance:
        messages = messages[1:]
    parts = PromptParts(
        system_prompt=system_prompt,
        past_subjects=digest,
        messages=[{"role": m["role"], "content": m["content"]} for m in messages],
        new_message=new_message,
        budget=budget,
        subjects_included=len(included),
    )
    budget.total_used = parts.total_tokens
    return parts


def build_context_within_budget(
    context_window: int,
    system_prompt: str,
    past_subjects: list[Subject],
    history: list[dict],
    new_message: str,
    subject_count: int = DEFAULT_SUBJECT_COUNT,
    message_limit: int = DEFAULT_MESSAGE_LIMIT,
    start_tier: Tier = Tier.balanced,
    reserve_ratio: float = RESPONSE_RESERVE_RATIO,
) -> PromptParts:
    """Assemble the four parts so their total fits the usable window.

    The digest is held to its allotment (tier first, then subject count) and
    the history to the rest, oldest messages going first. If the total still
    does not fit, it shrinks in this order until the prompt fits: oldest history messages
    (down to ``MIN_MESSAGE_LIMIT``), digest tier, digest subject count (down
    to ``MIN_SUBJECT_COUNT``), the whole digest, then the remaining history
    one message at a time. The new message is never dropped; when system
    prompt plus new message alone exceed the window the result is flagged
    ``overflow``.
    """
    ordered = _ordered(history)
    budget = create_budget(
        context_window,
        estimate_tokens(system_prompt),
        subject_count=min(subject_count, len(past_subjects)),
        message_limit=min(message_limit, len(ordered)),
        tier=start_tier,
        reserve_ratio=reserve_ratio,
    )

    parts = _build(system_prompt, past_subjects, ordered, new_message, budget)
    while parts.total_tokens > budget.usable:
        if budget.message_limit > MIN_MESSAGE_LIMIT:
            budget.message_limit = max(MIN_MESSAGE_LIMIT, budget.message_limit - TRIM_STEP)
        elif budget.subject_count and budget.tier != Tier.extreme:
            budget.tier = budget.tier.next()
        elif budget.subject_count > MIN_SUBJECT_COUNT:
            budget.subject_count = max(MIN_SUBJECT_COUNT, budget.subject_count - TRIM_STEP)
        elif budget.subject_count > 0:
            budget.subject_count = 0
        elif budget.message_limit > 0:
            budget.message_limit -= 1
        else:
            parts.overflow = True
            logger.warning(
                f"Prompt overflow: system prompt and new message need "
                f"{parts.total_tokens} tokens, usable window is {budget.usable}"
            )
            break
        parts = _build(system_prompt, past_subjects, ordered, new_message, budget)

    logger.debug(
        f"Prompt assembled: {parts.total_tokens}/{budget.usable} tokens, "
        f"{parts.subjects_included} subjects ({budget.tier.value}), "
        f"{parts.messages_included} messages"
    )
    return parts


def build_minimal_parts(
    context_window: int, system_prompt: str, new_message: str,
) -> PromptParts:
    """System prompt plus the new message, nothing else."""
    budget = create_budget(
        max(context_window, 1), estimate_tokens(system_prompt),
        subject_count=0, message_limit=0, tier=Tier.extreme,
    )
    parts = PromptParts(
        system_prompt=system_prompt,
        past_subjects="",
        messages=[],
        new_message=new_message,
        budget=budget,
    )
    budget.total_used = parts.total_tokens
    parts.overflow = parts.total_tokens > budget.usable
    return parts


def budget_stats(budget: ContextBudget) -> dict:
    """Utilization summary of a budget for logging and the CLI."""
    total = budget.context_window
    utilization = budget.total_used / total * 100
    if utilization > 90:
        status = "critical"
    elif utilization > 75:
        status = "tight"
    else:
        status = "healthy"
    return {
        "utilization_percent": round(utilization, 1),
        "allocation": {
            "system_prompt": f"{budget.system_prompt_tokens / total * 100:.1f}%",
            "past_subjects": f"{budget.past_subjects_budget / total * 100:.1f}%",
            "current_messages": f"{budget.current_messages_budget / total * 100:.1f}%",
            "reserved": f"{budget.response_reserve / total * 100:.1f}%",
        },
        "status": status,
    }
