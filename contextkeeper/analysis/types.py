"""Analysis objects: keywords, subjects and summaries."""

import hashlib
import time
from dataclasses import dataclass, field


def normalize_term(term: str) -> str:
    """Canonical keyword form: trimmed, lower-cased, inner whitespace collapsed."""
    return " ".join(str(term).lower().split())


def normalize_terms(terms) -> list[str]:
    """Normalize, de-duplicate and sort a keyword collection."""
    return sorted({normalize_term(t) for t in terms or ()} - {""})


def subject_id_for(terms) -> str:
    """Derive a subject identity from its keyword set (order independent)."""
    joined = "\n".join(normalize_terms(terms))
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


def summary_id_for(subject_id: str, conversation_id: str) -> str:
    """Identity of the live summary for a (subject, conversation) pair."""
    return hashlib.sha256(f"{subject_id}\n{conversation_id}".encode("utf-8")).hexdigest()


@dataclass
class Keyword:
    """A normalized term associated with one or more subjects."""

    kind = "Keyword"

    term: str
    frequency: int = 1
    last_seen: float = field(default_factory=time.time)
    created_at: float = field(default_factory=time.time)
    score: float | None = None
    subjects: list[str] = field(default_factory=list)
    conversations: list[str] = field(default_factory=list)
    revision: int = 0

    def __post_init__(self):
        self.term = normalize_term(self.term)

    @property
    def id(self) -> str:
        return self.term


@dataclass
class Subject:
    """A tracked discussion theme identified by its keyword set."""

    kind = "Subject"

    keywords: list[str]
    name: str = ""
    description: str = ""
    abstraction_level: int | None = None
    time_ranges: list[tuple[float, float]] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    last_seen_at: float = field(default_factory=time.time)
    message_count: int = 0
    conversations: list[str] = field(default_factory=list)
    memories: list[str] = field(default_factory=list)
    archived: bool = False
    revision: int = 0

    def __post_init__(self):
        self.keywords = normalize_terms(self.keywords)

    @property
    def id(self) -> str:
        return subject_id_for(self.keywords)

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        return ", ".join(self.keywords[:3]) or "Unknown Subject"

    @property
    def primary_keyword(self) -> str:
        return self.keywords[0] if self.keywords else self.display_name.lower()


@dataclass
class Summary:
    """Generated prose for one subject within one conversation."""

    kind = "Summary"

    subject_id: str
    conversation_id: str
    prose: str
    subjects: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)
    version: int = 1
    previous: int | None = None
    change_reason: str = ""
    created_at: float = field(default_factory=time.time)
    revision: int = 0

    @property
    def id(self) -> str:
        return summary_id_for(self.subject_id, self.conversation_id)

    @property
    def conversations(self) -> list[str]:
        return [self.conversation_id]
