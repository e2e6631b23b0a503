"""LiteLLM backend implementation for multi-provider support."""

import inspect
import os
from typing import Any

import litellm
from litellm import acompletion
from loguru import logger

from contextkeeper.errors import ModelIncompatibleError
from contextkeeper.providers.base import InferenceBackend, LLMResponse, StreamCallback

_KEY_ENV = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "gemini": "GEMINI_API_KEY",
}


async def _emit(callback: StreamCallback | None, text: str | None) -> None:
    if not callback or not text:
        return
    result = callback(text)
    if inspect.isawaitable(result):
        await result


def _is_format_rejection(error: Exception) -> bool:
    if isinstance(error, litellm.UnsupportedParamsError):
        return True
    message = str(error).lower()
    return "response_format" in message or "json mode" in message or "json_object" in message


class LiteLLMProvider(InferenceBackend):
    """
    Inference backend using LiteLLM.

    Covers remote APIs (Anthropic, OpenAI, Gemini) and local servers
    (Ollama, LM Studio) through one call signature.
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str | None = None,
        default_model: str = "ollama/llama3.1",
    ):
        super().__init__(api_key, api_base)
        self.default_model = default_model

        if api_key:
            provider = default_model.split("/")[0].lower()
            env_name = _KEY_ENV.get(provider)
            if env_name:
                os.environ.setdefault(env_name, api_key)

        # Disable LiteLLM logging noise
        litellm.suppress_debug_info = True

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
        Send a chat completion request via LiteLLM.

        Streams when a callback is given. ``context_blob`` is accepted for
        interface compatibility; LiteLLM keeps no server-side context so the
        full message list is always sent.
        """
        model = model or self.default_model
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens if max_tokens is not None else self.default_max_tokens,
            "temperature": temperature if temperature is not None else self.default_temperature,
        }
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if response_format:
            kwargs["response_format"] = response_format

        streaming = on_stream is not None or on_thinking_stream is not None
        try:
            if streaming:
                return await self._stream(kwargs, on_stream, on_thinking_stream)
            response = await acompletion(**kwargs)
            return self._parse_response(response)
        except Exception as e:
            if response_format and _is_format_rejection(e):
                raise ModelIncompatibleError(model, str(e)) from e
            logger.error(f"LLM call failed for {model}: {e}")
            # Return error as content for graceful handling
            return LLMResponse(
                content=f"Error calling LLM: {str(e)}",
                finish_reason="error",
            )

    async def _stream(
        self,
        kwargs: dict[str, Any],
        on_stream: StreamCallback | None,
        on_thinking_stream: StreamCallback | None,
    ) -> LLMResponse:
        content_parts: list[str] = []
        thinking_parts: list[str] = []
        finish_reason = "stop"
        usage: dict[str, int] = {}

        response = await acompletion(stream=True, **kwargs)
        async for chunk in response:
            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            delta = choice.delta
            text = getattr(delta, "content", None)
            thinking = getattr(delta, "reasoning_content", None)
            if text:
                content_parts.append(text)
                await _emit(on_stream, text)
            if thinking:
                thinking_parts.append(thinking)
                await _emit(on_thinking_stream, thinking)
            if choice.finish_reason:
                finish_reason = choice.finish_reason
            chunk_usage = getattr(chunk, "usage", None)
            if chunk_usage:
                usage = self._parse_usage(chunk_usage)

        return LLMResponse(
            content="".join(content_parts),
            thinking="".join(thinking_parts) or None,
            finish_reason=finish_reason,
            usage=usage,
        )

    @staticmethod
    def _parse_usage(usage: Any) -> dict[str, int]:
        return {
            "prompt_tokens": getattr(usage, "prompt_tokens", 0) or 0,
            "completion_tokens": getattr(usage, "completion_tokens", 0) or 0,
            "total_tokens": getattr(usage, "total_tokens", 0) or 0,
        }

    def _parse_response(self, response: Any) -> LLMResponse:
        """Parse LiteLLM response into our standard format."""
        choice = response.choices[0]
        message = choice.message

        usage = {}
        if getattr(response, "usage", None):
            usage = self._parse_usage(response.usage)

        return LLMResponse(
            content=message.content,
            thinking=getattr(message, "reasoning_content", None),
            finish_reason=choice.finish_reason or "stop",
            usage=usage,
        )

    def get_default_model(self) -> str:
        """Get the default model."""
        return self.default_model
