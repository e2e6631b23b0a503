"""LLM-driven conversation analysis persisted into the ledger."""

import json
import re

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from contextkeeper.analysis.ledger import AnalysisLedger
from contextkeeper.analysis.types import Summary
from contextkeeper.config.schema import AnalysisConfig
from contextkeeper.errors import AnalysisError, ModelIncompatibleError
from contextkeeper.prompts.analysis import ANALYSIS_SYSTEM_PROMPT, ANALYSIS_USER_TEMPLATE
from contextkeeper.providers.base import InferenceBackend
from contextkeeper.session.transport import ChatMessage

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


class KeywordPayload(BaseModel):
    term: str
    confidence: float = 0.8


class SubjectPayload(BaseModel):
    name: str = ""
    description: str = ""
    keywords: list[KeywordPayload] = Field(default_factory=list)


class AnalysisPayload(BaseModel):
    subjects: list[SubjectPayload] = Field(default_factory=list)
    summary: str = ""


def parse_analysis(text: str | None) -> AnalysisPayload:
    """Parse model output into a payload. Raises ValueError when unusable."""
    if not text or not text.strip():
        raise ValueError("empty analysis output")
    cleaned = _FENCE_RE.sub("", text.strip()).strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ValueError(f"analysis output is not JSON: {e}") from e
    try:
        payload = AnalysisPayload.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"analysis output has the wrong shape: {e}") from e
    if not payload.summary.strip():
        raise ValueError("analysis output has no summary")
    return payload


def format_transcript(messages: list[ChatMessage]) -> str:
    return "\n".join(f"[{m.sender}] {m.text}" for m in messages)


class ConversationAnalyzer:
    """Extracts subjects, keywords and a summary, with bounded model fallback."""

    def __init__(
        self,
        backend: InferenceBackend,
        ledger: AnalysisLedger,
        model: str,
        config: AnalysisConfig | None = None,
    ):
        self.backend = backend
        self.ledger = ledger
        self.model = model
        self.config = config or AnalysisConfig()
        self._incompatible: set[str] = set()

    def _is_excluded(self, model: str) -> bool:
        lower = model.lower()
        if model in self._incompatible:
            return True
        return any(pattern.lower() in lower for pattern in self.config.incompatible_models)

    def candidate_models(self) -> list[str]:
        """Primary model, then usable alternates, ``max_attempts`` models at most."""
        models: list[str] = []
        if not self._is_excluded(self.model):
            models.append(self.model)
        for alt in self.config.alternate_models:
            if len(models) >= self.config.max_attempts:
                break
            if alt in models or self._is_excluded(alt):
                continue
            models.append(alt)
        return models

    async def _request(self, model: str, transcript: str) -> AnalysisPayload:
        response = await self.backend.chat(
            messages=[
                {"role": "system", "content": ANALYSIS_SYSTEM_PROMPT},
                {"role": "user", "content": ANALYSIS_USER_TEMPLATE.format(transcript=transcript)},
            ],
            model=model,
            response_format={"type": "json_object"},
            temperature=self.config.temperature,
        )
        if response.failed:
            raise AnalysisError(response.content or "analysis call failed", [model])
        try:
            return parse_analysis(response.content)
        except ValueError as e:
            raise ModelIncompatibleError(model, str(e)) from e

    async def analyze(self, conversation_id: str, messages: list[ChatMessage]) -> Summary:
        """Analyze a conversation and persist subjects, keywords and summary."""
        if not self.config.enabled:
            raise AnalysisError("analysis is disabled")
        if not messages:
            raise AnalysisError(f"nothing to analyze in {conversation_id}")

        transcript = format_transcript(messages[-self.config.max_messages:])
        attempted: list[str] = []
        payload = None
        for model in self.candidate_models():
            attempted.append(model)
            try:
                payload = await self._request(model, transcript)
                break
            except ModelIncompatibleError as e:
                self._incompatible.add(model)
                logger.warning(f"Analysis model {model} incompatible: {e.detail}")

        if payload is None:
            raise AnalysisError(
                f"no compatible analysis model for {conversation_id}", attempted,
            )

        subject_ids: list[str] = []
        terms: list[str] = []
        for item in payload.subjects:
            keywords = [k.term for k in item.keywords if k.term.strip()]
            if not keywords:
                continue
            subject = await self.ledger.create_or_update_subject(
                conversation_id, keywords, description=item.description, name=item.name,
            )
            subject_ids.append(subject.id)
            terms.extend(keywords)

        summary = await self.ledger.create_or_update_summary(
            conversation_id,
            payload.summary.strip(),
            subjects=subject_ids,
            keywords=terms,
            change_reason=f"analysis of {len(messages)} messages",
        )
        logger.info(
            f"Analyzed {conversation_id} with {attempted[-1]}: "
            f"{len(subject_ids)} subjects, summary v{summary.version}"
        )
        return summary
