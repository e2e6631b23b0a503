"""Cross-conversation proposals: past subjects relevant to the current talk."""

import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Protocol

from loguru import logger

from contextkeeper.analysis.ledger import AnalysisLedger
from contextkeeper.analysis.types import Subject, normalize_term
from contextkeeper.config.schema import ProposalsConfig

DAY = 24 * 60 * 60


def jaccard(a, b) -> float:
    """Jaccard overlap of two term collections (case and whitespace insensitive)."""
    set_a = {normalize_term(t) for t in a} - {""}
    set_b = {normalize_term(t) for t in b} - {""}
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)


def recency_score(created_at: float, window: float, now: float | None = None) -> float:
    """Linear decay from 1 (just now) to 0 (``window`` seconds old or more)."""
    if window <= 0:
        return 0.0
    now = now if now is not None else time.time()
    age = max(0.0, now - created_at)
    return max(0.0, 1.0 - age / window)


@dataclass
class Proposal:
    """A past subject from another conversation, suggested into a target one."""

    source_conversation: str
    subject_id: str
    subject_name: str
    target_conversation: str
    matched_keywords: list[str] = field(default_factory=list)
    similarity: float = 0.0
    recency: float = 0.0
    relevance: float = 0.0
    created_at: float = field(default_factory=time.time)


class SemanticIndex(Protocol):
    """Embedding search over subject descriptions."""

    async def query(self, text: str, limit: int, min_similarity: float) -> list[tuple[str, float]]:
        """Return (subject id, similarity in [0, 1]) pairs, best first."""
        ...


class ProposalEngine:
    """Collects unranked keyword-overlap candidates from other conversations."""

    def __init__(self, ledger: AnalysisLedger, clock=time.time):
        self.ledger = ledger
        self._clock = clock

    async def current_keywords(self, conversation_id: str) -> tuple[list[Subject], set[str]]:
        subjects = await self.ledger.get_subjects(conversation_id)
        keywords: set[str] = set()
        for subject in subjects:
            keywords.update(subject.keywords)
        return subjects, keywords

    def _make(
        self, target: str, source: str, subject: Subject,
        current: set[str], similarity: float, config: ProposalsConfig,
    ) -> Proposal:
        return Proposal(
            source_conversation=source,
            subject_id=subject.id,
            subject_name=subject.display_name,
            target_conversation=target,
            matched_keywords=sorted(current & set(subject.keywords)),
            similarity=similarity,
            recency=recency_score(
                subject.created_at, config.recency_window_days * DAY, self._clock(),
            ),
            created_at=self._clock(),
        )

    async def candidates(self, conversation_id: str, config: ProposalsConfig) -> list[Proposal]:
        """Subjects of other conversations whose keyword overlap passes ``min_jaccard``."""
        _, current = await self.current_keywords(conversation_id)
        if not current:
            return []

        found: list[Proposal] = []
        for other in await self.ledger.get_all_conversations():
            if other == conversation_id:
                continue
            try:
                subjects = await self.ledger.get_subjects(other)
            except Exception as e:
                logger.warning(f"Skipping proposals from {other}: {e}")
                continue
            for subject in subjects:
                if conversation_id in subject.conversations:
                    continue
                score = jaccard(current, subject.keywords)
                if score < config.min_jaccard:
                    continue
                found.append(self._make(conversation_id, other, subject, current, score, config))

        logger.debug(f"Proposal candidates for {conversation_id}: {len(found)}")
        return found


class SemanticProposalEngine(ProposalEngine):
    """Candidates from embedding similarity, boosted by literal keyword overlap."""

    def __init__(self, ledger: AnalysisLedger, index: SemanticIndex | None, clock=time.time):
        super().__init__(ledger, clock)
        self.index = index

    async def candidates(self, conversation_id: str, config: ProposalsConfig) -> list[Proposal]:
        if self.index is None:
            return await super().candidates(conversation_id, config)

        subjects, current = await self.current_keywords(conversation_id)
        query = " ".join(s.description for s in subjects if s.description)
        if not query:
            return []

        own = {s.id for s in subjects}
        results = await self.index.query(query, config.max_proposals * 2, config.min_similarity)

        found: list[Proposal] = []
        for subject_id, similarity in results:
            if subject_id in own or similarity < config.min_similarity:
                continue
            subject = await self.ledger.get_subject(subject_id)
            if subject is None:
                logger.warning(f"Semantic match {subject_id[:12]} no longer resolves, skipping")
                continue
            sources = [c for c in subject.conversations if c != conversation_id]
            if not sources or conversation_id in subject.conversations:
                continue
            combined = similarity + config.jaccard_boost * jaccard(current, subject.keywords)
            found.append(self._make(conversation_id, sources[0], subject, current, combined, config))
        return found


class ProposalRanker:
    """Blends similarity with recency and orders the result."""

    def rank(self, candidates: list[Proposal], config: ProposalsConfig) -> list[Proposal]:
        """Score, de-duplicate by subject and cap at ``max_proposals``.

        relevance = similarity * match_weight + recency * recency_weight,
        sorted descending with ties going to the more recent candidate.
        """
        best: dict[str, Proposal] = {}
        for candidate in candidates:
            if candidate.source_conversation == candidate.target_conversation:
                continue
            candidate.relevance = (
                candidate.similarity * config.match_weight
                + candidate.recency * config.recency_weight
            )
            kept = best.get(candidate.subject_id)
            if kept is None or (candidate.relevance, candidate.recency) > (kept.relevance, kept.recency):
                best[candidate.subject_id] = candidate

        ranked = sorted(best.values(), key=lambda p: (p.relevance, p.recency), reverse=True)
        return ranked[: config.max_proposals]


class ProposalCache:
    """LRU cache of ranked proposals per conversation with a TTL."""

    def __init__(self, max_size: int = 50, ttl: float = 60.0, clock=time.monotonic):
        self.max_size = max_size
        self.ttl = ttl
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, list[Proposal]]] = OrderedDict()

    def get(self, conversation_id: str) -> list[Proposal] | None:
        entry = self._entries.get(conversation_id)
        if entry is None:
            return None
        stored_at, proposals = entry
        if self._clock() - stored_at >= self.ttl:
            del self._entries[conversation_id]
            return None
        self._entries.move_to_end(conversation_id)
        return proposals

    def set(self, conversation_id: str, proposals: list[Proposal]) -> None:
        self._entries[conversation_id] = (self._clock(), proposals)
        self._entries.move_to_end(conversation_id)
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)

    def invalidate(self, conversation_id: str) -> None:
        self._entries.pop(conversation_id, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class ProposalService:
    """Engine + ranker + cache behind ``rank_proposals``."""

    def __init__(
        self,
        engine: ProposalEngine,
        config: ProposalsConfig | None = None,
        ranker: ProposalRanker | None = None,
        cache: ProposalCache | None = None,
    ):
        self.engine = engine
        self.config = config or ProposalsConfig()
        self.ranker = ranker or ProposalRanker()
        if cache is None:
            cache = ProposalCache(self.config.cache_size, self.config.cache_ttl)
        self.cache = cache

    async def rank_proposals(self, conversation_id: str) -> list[Proposal]:
        cached = self.cache.get(conversation_id)
        if cached is not None:
            return cached
        candidates = await self.engine.candidates(conversation_id, self.config)
        ranked = self.ranker.rank(candidates, self.config)
        self.cache.set(conversation_id, ranked)
        if ranked:
            logger.info(f"{len(ranked)} proposals for {conversation_id}")
        return ranked

    def invalidate(self, conversation_id: str) -> None:
        self.cache.invalidate(conversation_id)

    def clear(self) -> None:
        self.cache.clear()


def format_hints(proposals: list[Proposal], limit: int = 3) -> str:
    """Render top proposals as a short context block for the system prompt."""
    if not proposals or limit <= 0:
        return ""
    lines = ["Related subjects from other conversations:"]
    for p in proposals[:limit]:
        matched = f" (shared: {', '.join(p.matched_keywords)})" if p.matched_keywords else ""
        lines.append(f"- {p.subject_name}{matched}")
    return "\n".join(lines)
