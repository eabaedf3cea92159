"""Global app configuration (LLM connection, history limits, default model)."""

import json
import os
from pathlib import Path
from typing import Any

from anomady.errors import ValidationError

from .core import data_dir

_CONFIG_DEFAULTS: dict[str, Any] = {
    "llm_connection": {
        "provider_url": "https://generativelanguage.googleapis.com",
        "api_key": "",
        "provider_format": "gemini",
        "model": "gemini-1.5-flash-latest",
    },
    "history": {
        "max_buffer": 25,
        "chunk_size": 15,
        "recent_window": 10,
        "max_history_turns": 200,
        "max_turn_chars": 20000,
    },
    "default_model": "gemini-1.5-flash-latest",
}


def _config_path() -> Path:
    return data_dir() / "config.json"


def _defaults() -> dict[str, Any]:
    config = json.loads(json.dumps(_CONFIG_DEFAULTS))  # deep copy
    config["llm_connection"]["api_key"] = os.getenv("GEMINI_API_KEY", "")
    return config


def _validate_history(history: dict[str, Any]) -> None:
    errors = []
    for key in (
        "max_buffer", "chunk_size", "recent_window", "max_history_turns", "max_turn_chars",
    ):
        value = history.get(key)
        if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
            errors.append(f"history.{key} must be a positive integer.")
    if not errors:
        if history["chunk_size"] >= history["max_buffer"]:
            errors.append("history.chunk_size must be smaller than history.max_buffer.")
        if history["recent_window"] >= history["max_buffer"]:
            errors.append("history.recent_window must be smaller than history.max_buffer.")
        if history["max_history_turns"] < history["max_buffer"]:
            errors.append("history.max_history_turns must be at least history.max_buffer.")
    if errors:
        raise ValidationError("Invalid settings.", details=errors)


def get_config() -> dict[str, Any]:
    """Read config, returning defaults merged with stored values."""
    config = _defaults()
    path = _config_path()
    if path.is_file():
        stored = json.loads(path.read_text())
        if isinstance(stored.get("llm_connection"), dict):
            config["llm_connection"].update(stored["llm_connection"])
        if isinstance(stored.get("history"), dict):
            config["history"].update(stored["history"])
        if "default_model" in stored:
            config["default_model"] = stored["default_model"]
    return config


def update_config(fields: dict[str, Any]) -> dict[str, Any]:
    """Merge fields into config and persist. Returns full config."""
    config = get_config()
    if isinstance(fields.get("llm_connection"), dict):
        config["llm_connection"].update(fields["llm_connection"])
    if isinstance(fields.get("history"), dict):
        config["history"].update(fields["history"])
    if "default_model" in fields:
        config["default_model"] = fields["default_model"]
    _validate_history(config["history"])
    _config_path().write_text(json.dumps(config, indent=2))
    return config
