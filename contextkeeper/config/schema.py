"""Configuration schema using Pydantic."""

from typing import Annotated

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class AgentDefaults(BaseModel):
    """Default inference settings."""
    model: str = "ollama/llama3.1"
    api_key: str = ""
    api_base: str | None = None  # e.g. "http://localhost:11434" for a local server
    max_tokens: int = 2048
    temperature: float = 0.7
    agent_senders: list[str] = Field(default_factory=list)  # Sender ids authored by the agent


class BudgetConfig(BaseModel):
    """Prompt budget allocation."""
    reserve_ratio: float = Field(0.25, ge=0.0, lt=1.0)  # Share kept free for the response
    subject_count: int = 20
    message_limit: int = 30
    start_tier: str = "balanced"  # rich | balanced | minimal | extreme
    default_context_window: int = 4096


class RestartConfig(BaseModel):
    """Conversation restart behaviour."""
    threshold: float = 0.75  # Share of the window that triggers a restart
    system_overhead_tokens: int = 200
    carry_messages: int = 3  # Messages kept verbatim after a restart
    normal_messages: int = 10  # Recent messages in normal mode
    summary_subjects: int = 5
    summary_keywords: int = 12
    # Share of the usable window a restart summary may take
    summary_share: float = Field(0.4, gt=0.0, le=1.0)
    fallback_messages: int = 20
    fallback_topics: int = 8


class ProposalsConfig(BaseModel):
    """Cross-conversation proposal ranking."""
    enabled: bool = True
    match_weight: float = Field(0.7, ge=0.0, le=1.0)
    recency_weight: float = Field(0.3, ge=0.0, le=1.0)
    recency_window_days: float = 30.0
    min_jaccard: float = 0.1
    min_similarity: float = 0.5
    jaccard_boost: float = 0.1
    max_proposals: int = 10
    hint_count: int = 3  # Proposals rendered into the system prompt
    cache_size: int = 50
    cache_ttl: float = 60.0


class CacheConfig(BaseModel):
    """Per-conversation cache lifetimes (seconds)."""
    history_ttl: float = 5.0
    ledger_ttl: float = 5.0


class QueueConfig(BaseModel):
    """Backend concurrency limits."""
    default_priority: int = Field(5, ge=1, le=10)
    # Per-model overrides; null means unlimited
    concurrency: dict[str, Annotated[int, Field(ge=1)] | None] = Field(default_factory=dict)


class AnalysisConfig(BaseModel):
    """Structured conversation analysis."""
    enabled: bool = True
    max_attempts: int = Field(2, ge=1)  # Models tried per analysis, primary included
    max_messages: int = 60  # Most recent messages sent for analysis
    alternate_models: list[str] = Field(default_factory=list)
    # Substrings of model ids that cannot produce structured output
    incompatible_models: list[str] = Field(
        default_factory=lambda: ["embed", "whisper", "tts", "granite-4.0-350m"]
    )
    temperature: float = 0.2


class Config(BaseSettings):
    """Root configuration for contextkeeper."""
    agent: AgentDefaults = Field(default_factory=AgentDefaults)
    budget: BudgetConfig = Field(default_factory=BudgetConfig)
    restart: RestartConfig = Field(default_factory=RestartConfig)
    proposals: ProposalsConfig = Field(default_factory=ProposalsConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    queue: QueueConfig = Field(default_factory=QueueConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)

    class Config:
        env_prefix = "CONTEXTKEEPER_"
        env_nested_delimiter = "__"
