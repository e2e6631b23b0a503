"""Inference backend interface."""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

StreamCallback = Callable[[str], Awaitable[None] | None]


@dataclass
class LLMResponse:
    """Response from an inference backend."""
    content: str | None
    thinking: str | None = None
    context_blob: Any = None
    finish_reason: str = "stop"
    usage: dict[str, int] = field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return self.finish_reason == "error"


class InferenceBackend(ABC):
    """
    Abstract base class for inference backends.

    Implementations hide the provider's wire protocol behind a single
    role-tagged chat call.
    """

    def __init__(self, api_key: str | None = None, api_base: str | None = None):
        self.api_key = api_key
        self.api_base = api_base
        self.default_temperature: float = 0.7
        self.default_max_tokens: int = 4096

    @abstractmethod
    async def chat(
        self,
        messages: list[dict[str, Any]],
        model: str | None = None,
        on_stream: StreamCallback | None = None,
        on_thinking_stream: StreamCallback | None = None,
        response_format: dict[str, Any] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        context_blob: Any = None,
    ) -> LLMResponse:
        """
        Send a chat completion request.

        Args:
            messages: List of message dicts with 'role' and 'content'.
            model: Model identifier (provider-prefixed, e.g. 'ollama/llama3').
            on_stream: Called with each content chunk when streaming.
            on_thinking_stream: Called with each reasoning chunk when streaming.
            response_format: Structured output request, e.g. {"type": "json_object"}.
            temperature: Sampling temperature (uses backend default if None).
            max_tokens: Maximum tokens in response (uses backend default if None).
            context_blob: Opaque state returned by a previous call.

        Returns:
            LLMResponse with content and optional thinking text / context blob.

        Raises:
            ModelIncompatibleError: the model cannot honor ``response_format``.
        """
        pass

    @abstractmethod
    def get_default_model(self) -> str:
        """Get the default model for this backend."""
        pass
