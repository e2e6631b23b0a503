"""Tests for subject compression tiers."""

from contextkeeper.agent.summarizer import (
    TIER_SEQUENCE,
    Tier,
    compression_stats,
    format_past_subjects,
    summarize_subject,
    summarize_subjects,
)
from contextkeeper.analysis.types import Subject


def _subject(name="Database Indexing", keywords=("postgres", "index", "btree"),
             description="How to index large tables without locking writes", level=30,
             message_count=12):
    return Subject(
        keywords=list(keywords),
        name=name,
        description=description,
        abstraction_level=level,
        message_count=message_count,
    )


class TestTier:
    def test_sequence(self):
        assert [t.value for t in TIER_SEQUENCE] == ["rich", "balanced", "minimal", "extreme"]

    def test_next(self):
        assert Tier.rich.next() == Tier.balanced
        assert Tier.minimal.next() == Tier.extreme
        assert Tier.extreme.next() == Tier.extreme


class TestSummarizeSubject:
    def test_rich(self):
        text = summarize_subject(_subject(), Tier.rich).text
        lines = text.split("\n")
        assert lines[0] == "Database Indexing (level 30: Design Patterns)"
        assert lines[1] == '  Description: "How to index large tables without locking writes"'
        assert lines[2] == "  Keywords: btree, index, postgres"
        assert lines[3] == "  12 messages"

    def test_rich_truncates_description(self):
        text = summarize_subject(_subject(description="d" * 150), Tier.rich).text
        assert '"' + "d" * 97 + '..."' in text

    def test_rich_caps_keywords(self):
        subject = _subject(keywords=["a1", "b2", "c3", "d4", "e5", "f6", "g7"])
        text = summarize_subject(subject, Tier.rich).text
        assert "Keywords: a1, b2, c3, d4, e5\n" in text

    def test_balanced(self):
        assert summarize_subject(_subject(), Tier.balanced).text == "30: Database Indexing"

    def test_minimal_uses_primary_keyword(self):
        assert summarize_subject(_subject(), Tier.minimal).text == "30: btree"

    def test_extreme(self):
        assert summarize_subject(_subject(), Tier.extreme).text == "30"

    def test_missing_level_uses_default(self):
        subject = _subject(level=None)
        assert summarize_subject(subject, Tier.extreme).text == "20"

    def test_unnamed_subject(self):
        subject = _subject(name="")
        assert summarize_subject(subject, Tier.balanced).text == "30: btree, index, postgres"

    def test_tokens_never_increase_down_the_tiers(self):
        subjects = [
            _subject(),
            _subject(name="X", keywords=["averyveryverylongkeyword"]),
            _subject(name="", keywords=["k"], description=""),
        ]
        for subject in subjects:
            tokens = [summarize_subject(subject, t).estimated_tokens for t in TIER_SEQUENCE]
            assert tokens == sorted(tokens, reverse=True)


class TestSummarizeSubjects:
    def test_fits_at_start_tier(self):
        batch = summarize_subjects([_subject()], budget=1000, start_tier=Tier.rich)
        assert batch.tier == Tier.rich

    def test_degrades_all_subjects_together(self):
        subjects = [_subject(name=f"Subject number {i}") for i in range(5)]
        balanced = sum(summarize_subject(s, Tier.balanced).estimated_tokens for s in subjects)
        batch = summarize_subjects(subjects, budget=balanced - 1, start_tier=Tier.rich)
        assert batch.tier in (Tier.minimal, Tier.extreme)
        assert {s.tier for s in batch.summaries} == {batch.tier}
        assert batch.total_tokens <= balanced - 1

    def test_extreme_is_final_even_if_over_budget(self):
        batch = summarize_subjects([_subject()] * 3, budget=0)
        assert batch.tier == Tier.extreme
        assert batch.total_tokens > 0

    def test_empty(self):
        batch = summarize_subjects([], budget=0)
        assert batch.summaries == []
        assert batch.total_tokens == 0


class TestFormatPastSubjects:
    def test_header_and_lines(self):
        text, tier = format_past_subjects([_subject(), _subject(name="Caching")], 1000)
        assert tier == Tier.balanced
        assert text == (
            "Past subjects (2) [balanced mode]:\n"
            "- 30: Database Indexing\n"
            "- 30: Caching"
        )

    def test_empty(self):
        assert format_past_subjects([], 100) == ("", Tier.balanced)


class TestCompressionStats:
    def test_ordering(self):
        stats = compression_stats([_subject(), _subject(name="Caching")])
        assert list(stats) == ["rich", "balanced", "minimal", "extreme"]
        assert stats["rich"] > stats["balanced"] >= stats["minimal"] >= stats["extreme"]
