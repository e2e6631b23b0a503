"""Known models and their context windows."""

DEFAULT_CONTEXT_WINDOW = 4096

LOCAL_PROVIDERS = ("ollama", "lmstudio", "transformers")

MODELS = [
    {"id": "anthropic/claude-opus-4-5", "provider": "anthropic", "context_window": 200_000},
    {"id": "anthropic/claude-sonnet-4-5", "provider": "anthropic", "context_window": 200_000},
    {"id": "anthropic/claude-haiku-4-5", "provider": "anthropic", "context_window": 200_000},
    {"id": "openai/gpt-5", "provider": "openai", "context_window": 1_000_000},
    {"id": "openai/gpt-4.1", "provider": "openai", "context_window": 1_000_000},
    {"id": "openai/gpt-4.1-mini", "provider": "openai", "context_window": 128_000},
    {"id": "openai/gpt-4", "provider": "openai", "context_window": 8192},
    {"id": "openai/gpt-3.5-turbo", "provider": "openai", "context_window": 16_385},
    {"id": "gemini/gemini-2.5-pro", "provider": "gemini", "context_window": 1_000_000},
    {"id": "gemini/gemini-2.5-flash", "provider": "gemini", "context_window": 1_000_000},
    {"id": "deepseek/deepseek-chat", "provider": "deepseek", "context_window": 128_000},
    {"id": "ollama/llama3.3", "provider": "ollama", "context_window": 128_000},
    {"id": "ollama/llama3.1", "provider": "ollama", "context_window": 128_000},
    {"id": "ollama/qwen2.5", "provider": "ollama", "context_window": 32_768},
    {"id": "ollama/gpt-oss:20b", "provider": "ollama", "context_window": 128_000},
    {"id": "lmstudio/local-model", "provider": "lmstudio", "context_window": 32_768},
]


def get_model(model_id: str) -> dict | None:
    """Look up a model by exact id, then by unprefixed name, then by longest prefix."""
    for m in MODELS:
        if m["id"] == model_id:
            return m

    bare = model_id.split("/", 1)[-1]
    for m in MODELS:
        if m["id"].split("/", 1)[-1] == bare:
            return m

    # "ollama/llama3.1:8b" matches "ollama/llama3.1"
    candidates = [m for m in MODELS if model_id.startswith(m["id"])]
    if candidates:
        return max(candidates, key=lambda m: len(m["id"]))
    return None


def get_context_window(model_id: str | None, default: int = DEFAULT_CONTEXT_WINDOW) -> int:
    """Context window of a model, or ``default`` when unknown."""
    if not model_id:
        return default
    model = get_model(model_id)
    if model is None:
        return default
    return model["context_window"]


def get_provider_name(model_id: str) -> str:
    """Provider of a model id, inferred from its prefix when not registered."""
    model = get_model(model_id)
    if model:
        return model["provider"]
    if "/" in model_id:
        return model_id.split("/", 1)[0].lower()
    lower = model_id.lower()
    if "claude" in lower:
        return "anthropic"
    if "gemini" in lower:
        return "gemini"
    if lower.startswith(("gpt-", "o1-", "o3-")) and "oss" not in lower:
        return "openai"
    return "ollama"


def is_local_provider(provider: str) -> bool:
    return provider in LOCAL_PROVIDERS
