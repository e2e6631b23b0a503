"""Load and save the JSON configuration file."""

import json
import re
from pathlib import Path
from typing import Any

from loguru import logger

from contextkeeper.config.schema import Config


def get_config_path() -> Path:
    """Default config file location."""
    return Path.home() / ".contextkeeper" / "config.json"


def camel_to_snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def snake_to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def convert_keys(data: Any, converter=camel_to_snake) -> Any:
    """Recursively convert dict keys."""
    if isinstance(data, dict):
        return {converter(k): convert_keys(v, converter) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_keys(v, converter) for v in data]
    return data


def load_config(path: Path | None = None) -> Config:
    """Load config from JSON; missing or broken files fall back to defaults.

    Environment variables (``CONTEXTKEEPER_BUDGET__MESSAGE_LIMIT=...``) still
    apply on top of the defaults.
    """
    path = path or get_config_path()
    if not path.exists():
        return Config()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Failed to read config {path}: {e}, using defaults")
        return Config()
    return Config(**convert_keys(data))


def save_config(config: Config, path: Path | None = None) -> Path:
    """Write config as camelCase JSON."""
    path = path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    data = convert_keys(config.model_dump(), snake_to_camel)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return path
