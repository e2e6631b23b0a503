"""Analysis ledger: keywords, subjects and summaries over the object store."""

import time
from dataclasses import replace

from loguru import logger

from contextkeeper.agent import abstraction
from contextkeeper.agent.cache import DEFAULT_TTL, TTLCache
from contextkeeper.analysis.store import ObjectStore
from contextkeeper.analysis.types import (
    Keyword,
    Subject,
    Summary,
    normalize_term,
    normalize_terms,
    subject_id_for,
    summary_id_for,
)
from contextkeeper.errors import StoreError

# Word-overlap ratio above which two subject descriptions are the same concept
ALIGNMENT_THRESHOLD = 0.5


def descriptions_align(existing: str | None, new: str | None) -> bool:
    """Whether two descriptions describe the same concept."""
    if not existing or not new:
        return True
    a = " ".join(existing.lower().split())
    b = " ".join(new.lower().split())
    if a == b or a in b or b in a:
        return True
    words_a, words_b = set(a.split()), set(b.split())
    overlap = len(words_a & words_b) / len(words_a | words_b)
    return overlap >= ALIGNMENT_THRESHOLD


def _merge(items: list[str], extra) -> list[str]:
    merged = list(items)
    for item in extra:
        if item not in merged:
            merged.append(item)
    return merged


class AnalysisLedger:
    """Creates, versions and queries analysis objects per conversation.

    Every update is written as a new revision under an unchanged identity;
    objects returned by the store are never mutated in place.
    """

    def __init__(self, store: ObjectStore, cache_ttl: float = DEFAULT_TTL):
        self.store = store
        self._keyword_cache = TTLCache(cache_ttl)
        self._subject_cache = TTLCache(cache_ttl)

    # ── keywords ────────────────────────────────────────────────

    async def get_or_create_keyword(
        self, conversation_id: str, term: str, score: float | None = None,
    ) -> Keyword:
        """Return the keyword for ``term``, bumping its frequency if it exists."""
        normalized = normalize_term(term)
        if not normalized:
            raise ValueError("keyword term must not be empty")

        now = time.time()
        existing = await self.store.get_by_identity(Keyword.kind, normalized)
        if existing is None:
            keyword = Keyword(
                term=normalized,
                frequency=1,
                last_seen=now,
                created_at=now,
                score=score,
                conversations=[conversation_id],
            )
            ref = await self.store.create_or_get_by_identity(keyword)
            if ref.created:
                keyword.revision = ref.revision
                self._keyword_cache.invalidate(conversation_id)
                logger.debug(f"Keyword created: {normalized}")
                return keyword
            # Lost a creation race; fall through and count this mention
            existing = await self.store.get_by_identity(Keyword.kind, normalized)
            if existing is None:
                raise StoreError(f"keyword {normalized} reported as existing but not readable")

        updated = replace(
            existing,
            frequency=existing.frequency + 1,
            last_seen=now,
            score=score if score is not None else existing.score,
            conversations=_merge(existing.conversations, [conversation_id]),
        )
        updated.revision = await self.store.put_new_revision(updated)
        self._keyword_cache.invalidate(conversation_id)
        return updated

    async def link_keyword(self, keyword: Keyword, subject_id: str) -> Keyword:
        """Record a subject back-reference on a keyword."""
        if subject_id in keyword.subjects:
            return keyword
        updated = replace(keyword, subjects=_merge(keyword.subjects, [subject_id]))
        updated.revision = await self.store.put_new_revision(updated)
        for conversation_id in updated.conversations:
            self._keyword_cache.invalidate(conversation_id)
        return updated

    async def get_keywords(self, conversation_id: str) -> list[Keyword]:
        """All keywords seen in a conversation (cached briefly)."""
        cached = self._keyword_cache.get(conversation_id)
        if cached is not None:
            return cached
        keywords = [k async for k in self.store.iterate(conversation_id, Keyword.kind)]
        self._keyword_cache.set(conversation_id, keywords)
        return keywords

    async def get_top_keywords(self, conversation_id: str, limit: int = 12) -> list[Keyword]:
        """Most frequent keywords of a conversation, ties broken by recency."""
        keywords = await self.get_keywords(conversation_id)
        ranked = sorted(keywords, key=lambda k: (k.frequency, k.last_seen), reverse=True)
        return ranked[:limit]

    async def resolve_keywords(self, terms) -> list[Keyword]:
        """Load keyword objects by term, skipping references that no longer resolve."""
        resolved = []
        for term in terms:
            keyword = await self.store.get_by_identity(Keyword.kind, normalize_term(term))
            if keyword is None:
                logger.warning(f"Keyword reference '{term}' does not resolve, skipping")
                continue
            resolved.append(keyword)
        return resolved

    # ── subjects ────────────────────────────────────────────────

    async def create_or_update_subject(
        self,
        conversation_id: str,
        keywords,
        description: str = "",
        name: str = "",
        timestamp: float | None = None,
        memories: list[str] | None = None,
    ) -> Subject:
        """Record a mention of the subject identified by ``keywords``.

        A new keyword set creates a subject. A known set with an aligned
        description becomes a new revision (new time range, one more message).
        A known set whose description diverges gains a differentiating
        keyword, which yields a different identity.
        """
        terms = normalize_terms(keywords)
        if not terms:
            raise ValueError("a subject needs at least one keyword")

        now = timestamp if timestamp is not None else time.time()
        subject_id = subject_id_for(terms)
        existing = await self.store.get_by_identity(Subject.kind, subject_id)

        if existing is not None and not descriptions_align(existing.description, description):
            differentiator = normalize_term(description.split()[0]) if description.split() else ""
            if differentiator and differentiator not in terms:
                logger.warning(
                    f"Subject divergence for [{', '.join(terms)}]: "
                    f"'{existing.description}' vs '{description}', adding '{differentiator}'"
                )
                return await self.create_or_update_subject(
                    conversation_id,
                    terms + [differentiator],
                    description=description,
                    name=name,
                    timestamp=now,
                    memories=memories,
                )

        if existing is None:
            subject = Subject(
                keywords=terms,
                name=name,
                description=description,
                time_ranges=[(now, now)],
                created_at=now,
                last_seen_at=now,
                message_count=1,
                conversations=[conversation_id],
                memories=list(memories or []),
            )
            subject.abstraction_level = abstraction.score(terms, description, 1)
            ref = await self.store.create_or_get_by_identity(subject)
            subject.revision = ref.revision
            logger.info(f"Subject created: {subject.display_name} (level {subject.abstraction_level})")
        else:
            message_count = existing.message_count + 1
            new_description = description or existing.description
            subject = replace(
                existing,
                name=name or existing.name,
                description=new_description,
                abstraction_level=abstraction.score(terms, new_description, message_count),
                time_ranges=existing.time_ranges + [(now, now)],
                last_seen_at=now,
                message_count=message_count,
                conversations=_merge(existing.conversations, [conversation_id]),
                memories=_merge(existing.memories, memories or []),
            )
            subject.revision = await self.store.put_new_revision(subject)
            logger.debug(f"Subject revision {subject.revision}: {subject.display_name}")

        for term in terms:
            keyword = await self.get_or_create_keyword(conversation_id, term)
            await self.link_keyword(keyword, subject.id)

        for owner in subject.conversations:
            self._subject_cache.invalidate(owner)
        return subject

    async def get_subject(self, subject_id: str) -> Subject | None:
        return await self.store.get_by_identity(Subject.kind, subject_id)

    async def ensure_abstraction_level(self, subject: Subject) -> Subject:
        """Compute and persist a missing abstraction level."""
        if subject.abstraction_level is not None:
            return subject
        level = abstraction.score(subject.keywords, subject.description, subject.message_count)
        updated = replace(subject, abstraction_level=level)
        updated.revision = await self.store.put_new_revision(updated)
        return updated

    async def set_archived(self, subject_id: str, archived: bool = True) -> Subject | None:
        """Archive or restore a subject. Subjects are never deleted."""
        subject = await self.get_subject(subject_id)
        if subject is None:
            logger.warning(f"Cannot archive unknown subject {subject_id[:12]}")
            return None
        if subject.archived == archived:
            return subject
        updated = replace(subject, archived=archived)
        updated.revision = await self.store.put_new_revision(updated)
        for owner in updated.conversations:
            self._subject_cache.invalidate(owner)
        logger.info(f"Subject {'archived' if archived else 'restored'}: {updated.display_name}")
        return updated

    async def get_subjects(
        self, conversation_id: str, include_archived: bool = False,
    ) -> list[Subject]:
        """Subjects of a conversation, most recently seen first (cached briefly)."""
        subjects = self._subject_cache.get(conversation_id)
        if subjects is None:
            subjects = [s async for s in self.store.iterate(conversation_id, Subject.kind)]
            subjects.sort(key=lambda s: s.last_seen_at, reverse=True)
            self._subject_cache.set(conversation_id, subjects)
        if include_archived:
            return list(subjects)
        return [s for s in subjects if not s.archived]

    async def get_subject_keywords(self, subject: Subject) -> list[Keyword]:
        return await self.resolve_keywords(subject.keywords)

    async def get_all_conversations(self) -> list[str]:
        return await self.store.list_conversations()

    # ── summaries ───────────────────────────────────────────────

    async def create_or_update_summary(
        self,
        conversation_id: str,
        prose: str,
        subject_id: str | None = None,
        subjects: list[str] | None = None,
        keywords: list[str] | None = None,
        change_reason: str = "",
    ) -> Summary:
        """Write the next version of the (subject, conversation) summary.

        ``subject_id`` defaults to the conversation itself, which holds the
        conversation-wide summary used for restarts.
        """
        subject_id = subject_id or conversation_id
        existing = await self.store.get_by_identity(
            Summary.kind, summary_id_for(subject_id, conversation_id),
        )
        if existing is None:
            summary = Summary(
                subject_id=subject_id,
                conversation_id=conversation_id,
                prose=prose,
                subjects=list(subjects or []),
                keywords=normalize_terms(keywords),
                change_reason=change_reason,
            )
            ref = await self.store.create_or_get_by_identity(summary)
            summary.revision = ref.revision
        else:
            summary = replace(
                existing,
                prose=prose,
                subjects=list(subjects) if subjects is not None else existing.subjects,
                keywords=normalize_terms(keywords) if keywords is not None else existing.keywords,
                version=existing.version + 1,
                previous=existing.revision,
                change_reason=change_reason,
                created_at=time.time(),
            )
            summary.revision = await self.store.put_new_revision(summary)
        logger.info(f"Summary v{summary.version} stored for {conversation_id}")
        return summary

    async def get_current_summary(
        self, conversation_id: str, subject_id: str | None = None,
    ) -> Summary | None:
        """Latest summary version for a (subject, conversation) pair."""
        subject_id = subject_id or conversation_id
        return await self.store.get_by_identity(
            Summary.kind, summary_id_for(subject_id, conversation_id),
        )

    async def get_summaries(self, conversation_id: str) -> list[Summary]:
        return [s async for s in self.store.iterate(conversation_id, Summary.kind)]

    # ── cache control ───────────────────────────────────────────

    def invalidate(self, conversation_id: str) -> None:
        self._keyword_cache.invalidate(conversation_id)
        self._subject_cache.invalidate(conversation_id)

    def clear(self) -> None:
        self._keyword_cache.clear()
        self._subject_cache.clear()
