"""Tests for LLM-driven conversation analysis."""

import json

import pytest

from contextkeeper.analysis.analyzer import ConversationAnalyzer, format_transcript, parse_analysis
from contextkeeper.config.schema import AnalysisConfig
from contextkeeper.errors import AnalysisError
from contextkeeper.providers.base import LLMResponse
from tests.conftest import FakeBackend, make_history

PAYLOAD = {
    "subjects": [
        {
            "name": "Async Rust",
            "description": "tokio runtime and task scheduling",
            "keywords": [{"term": "Rust", "confidence": 0.9}, {"term": "tokio"}],
        },
        {"name": "Empty", "keywords": []},
    ],
    "summary": "Discussed running async Rust on tokio.",
}


def _ok(payload=PAYLOAD):
    return LLMResponse(content=json.dumps(payload))


class TestParseAnalysis:
    def test_plain_json(self):
        payload = parse_analysis(json.dumps(PAYLOAD))
        assert payload.summary.startswith("Discussed")
        assert payload.subjects[0].keywords[1].confidence == 0.8

    def test_fenced_json(self):
        payload = parse_analysis("```json\n" + json.dumps(PAYLOAD) + "\n```")
        assert len(payload.subjects) == 2

    @pytest.mark.parametrize("text", [None, "", "not json", "[1, 2]", '{"subjects": []}'])
    def test_unusable(self, text):
        with pytest.raises(ValueError):
            parse_analysis(text)


class TestFormatTranscript:
    def test_lines(self):
        assert format_transcript(make_history(["hi", "yo"])) == "[alice] hi\n[alice] yo"


class TestCandidateModels:
    def test_primary_then_bounded_alternates(self, ledger):
        config = AnalysisConfig(alternate_models=["m2", "m3", "m4"], max_attempts=2)
        analyzer = ConversationAnalyzer(FakeBackend(), ledger, "m1", config)
        assert analyzer.candidate_models() == ["m1", "m2"]

    def test_excludes_known_incompatible(self, ledger):
        config = AnalysisConfig(alternate_models=["ollama/nomic-embed-text", "m2"])
        analyzer = ConversationAnalyzer(FakeBackend(), ledger, "openai/whisper-1", config)
        assert analyzer.candidate_models() == ["m2"]


class TestAnalyze:
    @pytest.mark.asyncio
    async def test_persists_subjects_and_summary(self, ledger):
        backend = FakeBackend([_ok()])
        analyzer = ConversationAnalyzer(backend, ledger, "m1")
        summary = await analyzer.analyze("c1", make_history(["a", "b"]))

        assert summary.prose == "Discussed running async Rust on tokio."
        assert summary.keywords == ["rust", "tokio"]
        subjects = await ledger.get_subjects("c1")
        assert [s.name for s in subjects] == ["Async Rust"]
        assert summary.subjects == [subjects[0].id]
        assert backend.calls[0]["response_format"] == {"type": "json_object"}

    @pytest.mark.asyncio
    async def test_falls_back_to_alternate_on_bad_output(self, ledger):
        backend = FakeBackend([LLMResponse(content="I cannot do JSON"), _ok()])
        config = AnalysisConfig(alternate_models=["m2"])
        analyzer = ConversationAnalyzer(backend, ledger, "m1", config)
        await analyzer.analyze("c1", make_history(["a"]))
        assert [c["model"] for c in backend.calls] == ["m1", "m2"]
        # The failing model is not tried again
        assert analyzer.candidate_models() == ["m2"]

    @pytest.mark.asyncio
    async def test_attempts_are_bounded(self, ledger):
        backend = FakeBackend([LLMResponse(content="nope")] * 10)
        config = AnalysisConfig(alternate_models=["m2", "m3", "m4", "m5"], max_attempts=2)
        analyzer = ConversationAnalyzer(backend, ledger, "m1", config)
        with pytest.raises(AnalysisError) as exc:
            await analyzer.analyze("c1", make_history(["a"]))
        assert exc.value.attempted == ["m1", "m2"]
        assert len(backend.calls) == 2

    @pytest.mark.asyncio
    async def test_backend_failure_raises(self, ledger):
        backend = FakeBackend([LLMResponse(content="Error calling LLM: boom", finish_reason="error")])
        analyzer = ConversationAnalyzer(backend, ledger, "m1")
        with pytest.raises(AnalysisError):
            await analyzer.analyze("c1", make_history(["a"]))

    @pytest.mark.asyncio
    async def test_nothing_to_analyze(self, ledger):
        analyzer = ConversationAnalyzer(FakeBackend(), ledger, "m1")
        with pytest.raises(AnalysisError):
            await analyzer.analyze("c1", [])

    @pytest.mark.asyncio
    async def test_disabled(self, ledger):
        analyzer = ConversationAnalyzer(FakeBackend(), ledger, "m1", AnalysisConfig(enabled=False))
        with pytest.raises(AnalysisError):
            await analyzer.analyze("c1", make_history(["a"]))
