"""Prompt orchestration: history, restart detection and budgeted assembly."""

import re
import time
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from loguru import logger

from contextkeeper.agent.budget import PromptParts, build_context_within_budget, build_minimal_parts
from contextkeeper.agent.cache import HistoryCache
from contextkeeper.agent.proposals import ProposalService, format_hints
from contextkeeper.agent.summarizer import Tier
from contextkeeper.agent.tokens import estimate_tokens, truncate_to_tokens
from contextkeeper.analysis.analyzer import ConversationAnalyzer
from contextkeeper.analysis.ledger import AnalysisLedger
from contextkeeper.analysis.types import Subject
from contextkeeper.config.models import get_context_window
from contextkeeper.config.schema import Config
from contextkeeper.errors import WiringError
from contextkeeper.prompts.restart import (
    DEFAULT_SYSTEM_PROMPT,
    FALLBACK_TEMPLATE,
    MINIMAL_SYSTEM_PROMPT,
    RESTART_HEADER,
    RESTART_TEMPLATE,
)
from contextkeeper.session.transport import ChatMessage, ConversationTransport

_WORD_RE = re.compile(r"[^\W\d_]+")
MIN_TOPIC_LENGTH = 6  # words longer than 5 characters


def _is_latest(messages: list[ChatMessage], text: str, sender: str) -> bool:
    return bool(messages) and messages[-1].text == text and messages[-1].sender == sender


class PromptState(str, Enum):
    idle = "idle"
    retrieving_history = "retrieving_history"
    checking_budget = "checking_budget"
    needs_restart = "needs_restart"
    normal = "normal"
    assembled = "assembled"


@dataclass
class RestartCheck:
    needs_restart: bool
    restart_text: str | None
    estimated_tokens: int
    threshold: int


@dataclass
class RestartRecord:
    """Where a conversation was condensed and what replaced the history."""

    conversation_id: str
    message_count: int
    summary_text: str
    source: str  # "summary" | "analysis" | "heuristic"
    created_at: float


class PromptOrchestrator:
    """Builds the prompt for each new message of a conversation.

    Must be wired with an agent-sender classifier (``set_agent_classifier``)
    before use.
    """

    def __init__(
        self,
        transport: ConversationTransport,
        ledger: AnalysisLedger,
        config: Config | None = None,
        analyzer: ConversationAnalyzer | None = None,
        proposals: ProposalService | None = None,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        history_cache: HistoryCache | None = None,
    ):
        self.transport = transport
        self.ledger = ledger
        self.config = config or Config()
        self.analyzer = analyzer
        self.proposals = proposals
        self.system_prompt = system_prompt
        if history_cache is None:
            history_cache = HistoryCache(self.config.cache.history_ttl)
        self.history_cache = history_cache
        self._states: dict[str, PromptState] = {}
        self._restarts: dict[str, RestartRecord] = {}
        self._is_agent_sender: Callable[[str], bool] | None = None

    # ── wiring ──────────────────────────────────────────────────

    def set_agent_classifier(self, classifier: Callable[[str], bool]) -> None:
        self._is_agent_sender = classifier

    @property
    def wired(self) -> bool:
        return self._is_agent_sender is not None

    def _require_wired(self) -> None:
        if not self.wired:
            raise WiringError("PromptOrchestrator used before wire(): no agent-sender classifier")

    # ── state ───────────────────────────────────────────────────

    def get_state(self, conversation_id: str) -> PromptState:
        return self._states.get(conversation_id, PromptState.idle)

    def _set_state(self, conversation_id: str, state: PromptState) -> None:
        self._states[conversation_id] = state

    def get_restart_record(self, conversation_id: str) -> RestartRecord | None:
        return self._restarts.get(conversation_id)

    def context_window(self, model: str | None = None) -> int:
        return get_context_window(
            model or self.config.agent.model, self.config.budget.default_context_window,
        )

    # ── history ─────────────────────────────────────────────────

    async def get_history(self, conversation_id: str) -> list[ChatMessage]:
        """Conversation history through the short-lived cache.

        Transport failures propagate: a conversation cannot proceed without
        its history.
        """
        cached = self.history_cache.get(conversation_id)
        if cached is not None:
            logger.debug(f"History cache hit for {conversation_id} ({len(cached)} messages)")
            return cached
        messages = list(await self.transport.retrieve_all_messages(conversation_id))
        self.history_cache.set(conversation_id, messages)
        return messages

    def add_message_to_cache(self, conversation_id: str, message: ChatMessage) -> None:
        self.history_cache.append(conversation_id, message)

    def add_inbound_to_cache(self, conversation_id: str, message: ChatMessage) -> None:
        """Append an inbound message unless the transport already delivered it."""
        cached = self.history_cache.get(conversation_id)
        if cached is not None and _is_latest(cached, message.text, message.sender):
            return
        self.history_cache.append(conversation_id, message)

    def estimate_history_tokens(self, messages: list[ChatMessage]) -> int:
        overhead = self.config.restart.system_overhead_tokens
        return sum(estimate_tokens(m.text) for m in messages) + overhead

    # ── restart ─────────────────────────────────────────────────

    async def check_and_prepare_restart(
        self,
        conversation_id: str,
        messages: list[ChatMessage],
        model: str | None = None,
    ) -> RestartCheck:
        """Decide whether the running history must be replaced by a summary.

        Only messages after the last restart count, plus the restart summary
        that replaced the earlier ones.
        """
        self._require_wired()
        record = self._restarts.get(conversation_id)
        active = messages
        base = 0
        if record and record.message_count <= len(messages):
            active = messages[record.message_count:]
            base = estimate_tokens(record.summary_text)

        estimated = base + self.estimate_history_tokens(active)
        threshold = int(self.context_window(model) * self.config.restart.threshold)
        if estimated < threshold:
            self._set_state(conversation_id, PromptState.normal)
            return RestartCheck(False, None, estimated, threshold)

        self._set_state(conversation_id, PromptState.needs_restart)
        logger.info(
            f"Context filling for {conversation_id} ({estimated}/{threshold} tokens), "
            f"preparing restart"
        )
        record = await self.restart_with_summary(conversation_id, messages, model)
        return RestartCheck(True, record.summary_text, estimated, threshold)

    def summary_limit(self, model: str | None = None) -> int:
        """Token cap of a restart summary, a share of the usable window."""
        window = self.context_window(model)
        usable = window - int(window * self.config.budget.reserve_ratio)
        return int(usable * self.config.restart.summary_share)

    async def restart_with_summary(
        self,
        conversation_id: str,
        messages: list[ChatMessage] | None = None,
        model: str | None = None,
    ) -> RestartRecord:
        """Condense a conversation now and remember where it happened."""
        self._require_wired()
        if messages is None:
            messages = await self.get_history(conversation_id)

        limit = self.summary_limit(model)
        summary, source = await self._restart_summary(conversation_id, messages, limit)
        record = RestartRecord(
            conversation_id=conversation_id,
            message_count=len(messages),
            summary_text=truncate_to_tokens(
                RESTART_TEMPLATE.format(
                    header=RESTART_HEADER, message_count=len(messages), summary=summary,
                ),
                limit,
            ),
            source=source,
            created_at=time.time(),
        )
        self._restarts[conversation_id] = record
        logger.info(
            f"Conversation {conversation_id} restarted at {len(messages)} messages "
            f"({source} summary, {estimate_tokens(record.summary_text)} tokens)"
        )
        return record

    async def _restart_summary(
        self, conversation_id: str, messages: list[ChatMessage], limit: int,
    ) -> tuple[str, str]:
        try:
            text = await self._ledger_summary(conversation_id, limit)
            if text:
                return text, "summary"
            if self.analyzer is not None:
                await self.analyzer.analyze(conversation_id, messages)
                text = await self._ledger_summary(conversation_id, limit)
                if text:
                    return text, "analysis"
        except Exception as e:
            logger.warning(f"Restart summary failed for {conversation_id}: {e}, using heuristic")
        return self.heuristic_summary(messages), "heuristic"

    async def _ledger_summary(self, conversation_id: str, limit: int) -> str | None:
        """Stored summary, active subjects and top keywords.

        The prose gets at most half of ``limit`` so that subjects and
        keywords survive a long summary.
        """
        summary = await self.ledger.get_current_summary(conversation_id)
        if summary is None or not summary.prose.strip():
            return None

        restart = self.config.restart
        prose = truncate_to_tokens(summary.prose.strip(), limit // 2)
        parts = [f"Previous summary:\n{prose}"]

        subjects = (await self.ledger.get_subjects(conversation_id))[: restart.summary_subjects]
        if subjects:
            lines = [
                f"- {s.display_name}: {s.description or 'ongoing discussion'}" for s in subjects
            ]
            parts.append("Active subjects:\n" + "\n".join(lines))

        keywords = await self.ledger.get_top_keywords(conversation_id, restart.summary_keywords)
        if keywords:
            parts.append("Key concepts: " + ", ".join(k.term for k in keywords))

        return "\n\n".join(parts)

    def heuristic_summary(self, messages: list[ChatMessage]) -> str:
        """Summary built from the latest messages alone, no inference involved."""
        restart = self.config.restart
        sample = messages[-restart.fallback_messages:]

        counts: Counter[str] = Counter()
        participants: set[str] = set()
        for msg in sample:
            for word in _WORD_RE.findall(msg.text.lower()):
                if len(word) >= MIN_TOPIC_LENGTH:
                    counts[word] += 1
            if msg.sender and not self._is_agent_sender(msg.sender):
                participants.add(msg.sender)

        topics = [word for word, _ in counts.most_common(restart.fallback_topics)]
        return FALLBACK_TEMPLATE.format(
            topics=", ".join(topics) if topics else "general discussion",
            message_count=len(messages),
            participants=len(participants),
        )

    # ── assembly ────────────────────────────────────────────────

    def _to_turn(self, message: ChatMessage) -> dict:
        role = "assistant" if self._is_agent_sender(message.sender) else "user"
        return {"role": role, "content": message.text, "timestamp": message.timestamp}

    async def _past_subjects(self, conversation_id: str) -> tuple[list[Subject], str]:
        """Own active subjects plus proposed subjects from other conversations.

        Loading own subjects and ranking proposals fail independently.
        """
        try:
            subjects = list(await self.ledger.get_subjects(conversation_id))
        except Exception as e:
            logger.warning(f"Loading subjects failed for {conversation_id}: {e}")
            subjects = []

        hints = ""
        if self.proposals is not None and self.config.proposals.enabled:
            try:
                proposals = await self.proposals.rank_proposals(conversation_id)
                hints = format_hints(proposals, self.config.proposals.hint_count)
                seen = {s.id for s in subjects}
                for proposal in proposals:
                    if proposal.subject_id in seen:
                        continue
                    subject = await self.ledger.get_subject(proposal.subject_id)
                    if subject is None:
                        logger.warning(f"Proposed subject {proposal.subject_id[:12]} vanished, skipping")
                        continue
                    subjects.append(subject)
                    seen.add(subject.id)
            except Exception as e:
                logger.warning(f"Proposal ranking failed for {conversation_id}: {e}")

        for i, subject in enumerate(subjects):
            if subject.abstraction_level is None:
                try:
                    subjects[i] = await self.ledger.ensure_abstraction_level(subject)
                except Exception as e:
                    logger.warning(f"Abstraction level not stored for {subject.display_name}: {e}")
        return subjects, hints

    async def _assemble(
        self,
        conversation_id: str,
        text: str,
        messages: list[ChatMessage],
        window: int,
        check: RestartCheck,
        model: str | None = None,
        compact: bool = False,
    ) -> PromptParts:
        """Build the prompt parts. ``compact`` drops hints and halves the restart summary."""
        record = self._restarts.get(conversation_id)
        subjects, hints = await self._past_subjects(conversation_id)
        system_prompt = self.system_prompt

        if record is not None:
            start = max(0, record.message_count - self.config.restart.carry_messages)
            tail = messages[start:]
            summary_text = record.summary_text
            if compact:
                summary_text = truncate_to_tokens(summary_text, self.summary_limit(model) // 2)
            system_prompt = f"{system_prompt}\n\n{summary_text}"
        else:
            tail = messages[-self.config.restart.normal_messages:]
            if hints and not compact:
                system_prompt = f"{system_prompt}\n\n{hints}"

        budget = self.config.budget
        parts = build_context_within_budget(
            window,
            system_prompt,
            subjects,
            [self._to_turn(m) for m in tail],
            text,
            subject_count=budget.subject_count,
            message_limit=budget.message_limit,
            start_tier=Tier(budget.start_tier),
            reserve_ratio=budget.reserve_ratio,
        )
        parts.restart = check.needs_restart
        parts.metadata = {
            "state": self.get_state(conversation_id).value,
            "estimated_history_tokens": check.estimated_tokens,
            "restart_source": record.source if record else None,
        }
        return parts

    async def build_prompt(
        self,
        conversation_id: str,
        text: str,
        sender_id: str,
        model: str | None = None,
    ) -> PromptParts:
        """Assemble the prompt for a new message.

        History retrieval errors propagate. Anything failing after that
        degrades to a minimal system prompt plus the new message.
        """
        self._require_wired()
        window = self.context_window(model)

        self._set_state(conversation_id, PromptState.retrieving_history)
        messages = await self.get_history(conversation_id)
        if _is_latest(messages, text, sender_id):
            messages = messages[:-1]

        try:
            self._set_state(conversation_id, PromptState.checking_budget)
            check = await self.check_and_prepare_restart(conversation_id, messages, model)
            parts = await self._assemble(conversation_id, text, messages, window, check, model)
            if parts.overflow:
                logger.warning(
                    f"Prompt for {conversation_id} exceeds the window, retrying without hints "
                    f"and with a shorter summary"
                )
                parts = await self._assemble(
                    conversation_id, text, messages, window, check, model, compact=True,
                )
            if parts.overflow:
                logger.warning(f"Prompt for {conversation_id} still too large, sending minimal prompt")
                parts = build_minimal_parts(window, MINIMAL_SYSTEM_PROMPT, text)
                parts.restart = check.needs_restart
        except WiringError:
            raise
        except Exception as e:
            logger.error(f"Prompt assembly failed for {conversation_id}: {e}, sending minimal prompt")
            parts = build_minimal_parts(window, MINIMAL_SYSTEM_PROMPT, text)

        self._set_state(conversation_id, PromptState.assembled)
        logger.debug(
            f"Prompt for {conversation_id}: {parts.total_tokens} tokens, "
            f"{parts.messages_included} messages, {parts.subjects_included} subjects"
        )
        return parts

    # ── eviction ────────────────────────────────────────────────

    def invalidate(self, conversation_id: str) -> None:
        """Forget cached history, restart state and proposals of a conversation."""
        self.history_cache.invalidate(conversation_id)
        self._restarts.pop(conversation_id, None)
        self._states.pop(conversation_id, None)
        self.ledger.invalidate(conversation_id)
        if self.proposals is not None:
            self.proposals.invalidate(conversation_id)

    def clear(self) -> None:
        self.history_cache.clear()
        self._restarts.clear()
        self._states.clear()
        self.ledger.clear()
        if self.proposals is not None:
            self.proposals.clear()
