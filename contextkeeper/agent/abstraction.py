"""Abstraction level scoring for subjects.

Levels run from 1 (most abstract) to 42 (most concrete). A subject with no
signals sits at ``DEFAULT_LEVEL``; every signal (a specific keyword, a longer
description, sustained message volume) can only push the level up, so adding
information never makes a subject look more abstract.
"""

import math
import re
from dataclasses import dataclass, field

MIN_LEVEL = 1
MAX_LEVEL = 42
DEFAULT_LEVEL = 20

# Caps on each signal's contribution (levels above DEFAULT_LEVEL)
KEYWORD_CAP = 13.0
KEYWORD_SCALE = 3.0
DESCRIPTION_CAP = 6.0
DESCRIPTION_WORDS_PER_LEVEL = 8
# Known terms at or below this generality count as specific in descriptions
SPECIFIC_GENERALITY = 15
SPECIFIC_TERM_BONUS = 0.5

# Message volume steps: (more than N messages, bonus)
VOLUME_STEPS = ((100, 3), (50, 2), (20, 1))

# Generality of known terms: 1 = implementation detail, 42 = existential.
# Specificity weight is derived as (42 - generality) / 41.
TERM_GENERALITY: dict[str, int] = {
    # implementation details
    "variable": 1, "string": 1, "number": 1, "boolean": 1,
    "sql": 2, "function": 2, "parameter": 2, "array": 2, "method": 2, "property": 2,
    "query": 3, "database": 3, "class": 3, "code": 3,
    "bug": 4, "error": 4, "fix": 4,
    "implementation": 5,
    # technical patterns
    "props": 6,
    "typescript": 7, "javascript": 7, "python": 7, "component": 7, "hook": 7, "http": 7,
    "react": 8, "state": 8, "endpoint": 8, "rest": 8, "type": 8, "interface": 8,
    "api": 9, "graphql": 9, "generic": 9,
    # design patterns
    "module": 11, "structure": 12, "inheritance": 12, "encapsulation": 12,
    "pattern": 13, "composition": 13, "polymorphism": 13, "coupling": 13, "cohesion": 13,
    "design": 14, "refactoring": 14, "architecture": 15,
    # methodologies
    "performance": 16, "testing": 16,
    "framework": 17, "practice": 17, "optimization": 17, "maintainability": 17, "quality": 17,
    "system": 18, "strategy": 18, "scalability": 18,
    "methodology": 19, "principle": 19,
    # concepts
    "approach": 21, "domain": 21,
    "model": 22, "concept": 22, "context": 22,
    "theory": 23, "learning": 23,
    "paradigm": 24, "knowledge": 24, "understanding": 24,
    "cognition": 25,
    # abstract thinking
    "logic": 27, "representation": 27, "formalization": 27,
    "thinking": 28, "semantics": 28, "interpretation": 28, "generalization": 28,
    "reasoning": 29, "abstraction": 29,
    # philosophy
    "principles": 32, "perspective": 32,
    "values": 33, "beliefs": 33,
    "ethics": 34, "wisdom": 34,
    "philosophy": 35, "worldview": 35, "truth": 35,
    "reality": 36,
    # epistemology / metaphysics
    "hermeneutics": 37, "dialectic": 37, "substance": 37,
    "epistemology": 38, "phenomenology": 38, "essence": 38,
    "metaphysics": 39, "ontology": 39, "immanence": 39,
    "transcendence": 40, "identity": 40,
    # existential
    "awareness": 41, "self": 41, "purpose": 41, "meaning": 41, "life": 41, "death": 41,
    "existence": 42, "being": 42, "consciousness": 42, "infinity": 42,
    "nothingness": 42, "void": 42,
}

# Generality assumed for unknown terms
SHORT_TERM_GENERALITY = 5    # short alphabetic tokens are usually jargon
LONG_TERM_GENERALITY = 25    # long words tend to be conceptual
UNKNOWN_TERM_GENERALITY = 15

_WORD_RE = re.compile(r"[a-z]+")


@dataclass
class AbstractionAnalysis:
    """Level plus the per-signal breakdown that produced it."""

    level: int
    reasoning: str
    confidence: float
    signals: dict[str, float] = field(default_factory=dict)


def _term_generality(term: str) -> tuple[int, bool]:
    """Return (generality, recognized) for a normalized term."""
    if term in TERM_GENERALITY:
        return TERM_GENERALITY[term], True

    for known, generality in TERM_GENERALITY.items():
        if len(known) > 2 and (known in term or (len(term) > 2 and term in known)):
            return generality, True

    if " " in term or any(ch.isdigit() for ch in term):
        return SHORT_TERM_GENERALITY, False
    if len(term) <= 4 and term.isalpha():
        return SHORT_TERM_GENERALITY, False
    if len(term) > 12:
        return LONG_TERM_GENERALITY, False
    return UNKNOWN_TERM_GENERALITY, False


def term_specificity(term: str) -> float:
    """Specificity weight of one term in [0, 1]; 1 is an implementation detail."""
    normalized = " ".join(term.lower().split())
    if not normalized:
        return 0.0
    generality, _ = _term_generality(normalized)
    return (MAX_LEVEL - generality) / (MAX_LEVEL - 1)


def _keyword_signal(keywords) -> tuple[float, float]:
    terms = {" ".join(k.lower().split()) for k in keywords or ()}
    terms.discard("")
    if not terms:
        return 0.0, 0.0

    total = 0.0
    recognized = 0
    for term in terms:
        generality, known = _term_generality(term)
        total += (MAX_LEVEL - generality) / (MAX_LEVEL - 1)
        recognized += int(known)

    contribution = min(KEYWORD_CAP, total * KEYWORD_SCALE)
    return contribution, recognized / len(terms)


def _description_signal(description: str | None) -> float:
    if not description:
        return 0.0
    words = _WORD_RE.findall(description.lower())
    hits = sum(1 for w in words if TERM_GENERALITY.get(w, MAX_LEVEL) <= SPECIFIC_GENERALITY)
    raw = len(words) / DESCRIPTION_WORDS_PER_LEVEL + hits * SPECIFIC_TERM_BONUS
    return min(DESCRIPTION_CAP, raw)


def _volume_signal(message_count: int) -> int:
    for threshold, bonus in VOLUME_STEPS:
        if message_count > threshold:
            return bonus
    return 0


def analyze(
    keywords,
    description: str | None = None,
    message_count: int = 0,
) -> AbstractionAnalysis:
    """Score a subject and explain the result."""
    keyword_part, confidence = _keyword_signal(keywords)
    description_part = _description_signal(description)
    volume_part = _volume_signal(message_count or 0)

    raw = DEFAULT_LEVEL + keyword_part + description_part + volume_part
    level = max(MIN_LEVEL, min(MAX_LEVEL, math.floor(raw + 0.5)))

    reasons = [f"Level {level} ({get_level_name(level)})"]
    if keyword_part:
        reasons.append(f"+{keyword_part:.1f} from keyword specificity")
    if description_part:
        reasons.append(f"+{description_part:.1f} from description detail")
    if volume_part:
        reasons.append(f"+{volume_part} for discussion depth")
    if len(reasons) == 1:
        reasons.append("no signals, default level")

    return AbstractionAnalysis(
        level=level,
        reasoning=". ".join(reasons),
        confidence=confidence,
        signals={
            "keywords": keyword_part,
            "description": description_part,
            "message_count": float(volume_part),
        },
    )


def score(keywords, description: str | None = None, message_count: int = 0) -> int:
    """Map a subject's keywords, description and volume to a level in [1, 42]."""
    return analyze(keywords, description, message_count).level


def get_level_name(level: int) -> str:
    """Human-readable band name for a level."""
    if level >= 38:
        return "Atomic/Technical"
    if level >= 33:
        return "Technical Patterns"
    if level >= 28:
        return "Design Patterns"
    if level >= 23:
        return "Methodologies"
    if level >= 18:
        return "Concepts"
    if level >= 13:
        return "Abstract Thinking"
    if level >= 8:
        return "Philosophy"
    if level >= 3:
        return "Epistemology/Metaphysics"
    return "Existential"


def get_level_range(level: int) -> tuple[int, int, str]:
    """Coarse grouping of a level as (min, max, name)."""
    if level >= 33:
        return 33, 42, "Technical"
    if level >= 23:
        return 23, 32, "Design"
    if level >= 13:
        return 13, 22, "Conceptual"
    if level >= 3:
        return 3, 12, "Philosophical"
    return 1, 2, "Existential"
