import logging
import os
from typing import Any

from pydantic import ValidationError

from chatbox.models import ApiConfig

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = ".chatbox"

# Presets only fill in endpoint and model; the request body is always the
# OpenAI chat-completions shape.
PRESETS: dict[str, dict[str, str]] = {
    "openai": {
        "endpoint": "https://api.openai.com/v1/chat/completions",
        "model": "gpt-3.5-turbo",
    },
    "anthropic": {
        "endpoint": "https://api.anthropic.com/v1/messages",
        "model": "claude-3-sonnet",
    },
    "google": {
        "endpoint": "https://generativelanguage.googleapis.com/v1beta/models/gemini-pro:generateContent",
        "model": "gemini-pro",
    },
    "local": {
        "endpoint": "http://localhost:11434/api/chat",
        "model": "llama3",
    },
}

ENV_OVERRIDES = {
    "CHATBOX_ENDPOINT": "endpoint",
    "CHATBOX_API_KEY": "api_key",
    "CHATBOX_MODEL": "model",
}

CONNECT_TIMEOUT = 60.0
READ_TIMEOUT = 120.0
WRITE_TIMEOUT = 60.0


class ConfigError(Exception):
    pass


def get_optional_env(name: str, default: str) -> str:
    return os.environ.get(name, default)


def data_dir_from_env() -> str:
    return get_optional_env("CHATBOX_DATA_DIR", DEFAULT_DATA_DIR)


def list_presets() -> list[str]:
    return sorted(PRESETS)


def update_config(config: ApiConfig, **changes: Any) -> ApiConfig:
    """Return a validated copy of ``config`` with ``changes`` applied.

    ``None`` values are ignored so argparse namespaces can be passed through.
    """
    data = config.model_dump()
    data.update({k: v for k, v in changes.items() if v is not None})
    try:
        return ApiConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(_format_validation_error(e)) from e


def apply_preset(config: ApiConfig, name: str) -> ApiConfig:
    preset = PRESETS.get(name.lower())
    if preset is None:
        raise ConfigError(f"Unknown preset: {name} (available: {', '.join(list_presets())})")
    return update_config(config, **preset)


def apply_env_overrides(config: ApiConfig, environ: dict[str, str] | None = None) -> ApiConfig:
    environ = os.environ if environ is None else environ
    changes = {}
    for env_name, field_name in ENV_OVERRIDES.items():
        value = environ.get(env_name)
        if value:
            changes[field_name] = value
    if changes:
        logger.debug(f"Applying environment overrides: {sorted(changes)}")
    return update_config(config, **changes)


def mask_secret(value: str) -> str:
    if not value:
        return "(not set)"
    if len(value) <= 8:
        return "*" * len(value)
    return f"{value[:3]}...{value[-4:]}"


def describe_config(config: ApiConfig) -> list[str]:
    return [
        f"endpoint:      {config.endpoint}",
        f"api key:       {mask_secret(config.api_key)}",
        f"model:         {config.model}",
        f"temperature:   {config.temperature}",
        f"max tokens:    {config.max_tokens}",
        f"system prompt: {config.system_prompt or '(none)'}",
    ]


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        loc = ".".join(str(p) for p in item.get("loc", ()))
        parts.append(f"{loc}: {item.get('msg')}")
    return "; ".join(parts) or str(error)
