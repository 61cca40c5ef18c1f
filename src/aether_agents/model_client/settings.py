"""Settings helpers for the model client plugin."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from hopeit.dataobjects import dataclass, dataobject, field

from .models import CompletionConfig

SETTINGS_KEY = "model_client"


@dataobject
@dataclass
class ModelClientSettings:
    """Configuration loaded from hopeit.app context settings."""

    api_base: str
    api_key_env: str | None = None
    default_model: str = "gpt-4o-mini"
    timeout_seconds: float = 60.0
    extra_headers: dict[str, str] = field(default_factory=dict)
    default_config: CompletionConfig = field(default_factory=CompletionConfig)

    def resolve_api_key(self, env: Mapping[str, Any]) -> str | None:
        """Return the API key found in context env using api_key_env."""
        if self.api_key_env is None:
            return None
        api_key = env.get(self.api_key_env)
        if isinstance(api_key, str) and api_key:
            return api_key
        if isinstance(api_key, Mapping):
            value = api_key.get("value")
            return str(value) if value is not None else None
        return None


def load_settings(context_settings: Mapping[str, Any]) -> ModelClientSettings:
    """Load ModelClientSettings from context settings mapping."""
    try:
        raw_settings = context_settings[SETTINGS_KEY]
    except KeyError as exc:
        raise KeyError(f"Missing '{SETTINGS_KEY}' entry in context settings.") from exc
    if isinstance(raw_settings, ModelClientSettings):
        return raw_settings
    if not isinstance(raw_settings, Mapping):
        raise TypeError(
            f"{SETTINGS_KEY} settings must be a mapping, received: {type(raw_settings).__name__}",
        )
    return ModelClientSettings(**raw_settings)


def merge_config(
    settings: ModelClientSettings,
    override: CompletionConfig | None,
) -> CompletionConfig:
    """Merge request config with defaults defined in settings."""
    base = settings.default_config
    if override is None:
        return CompletionConfig(
            model=base.model or settings.default_model,
            temperature=base.temperature,
            max_output_tokens=base.max_output_tokens,
            response_format=base.response_format,
            stop=base.stop,
        )
    return CompletionConfig(
        model=override.model or base.model or settings.default_model,
        temperature=override.temperature
        if override.temperature is not None
        else base.temperature,
        max_output_tokens=override.max_output_tokens
        if override.max_output_tokens is not None
        else base.max_output_tokens,
        response_format=override.response_format or base.response_format,
        stop=_merge_stop(base.stop, override.stop),
    )


def _merge_stop(base: list[str] | None, override: list[str] | None) -> list[str] | None:
    merged = [*(base or []), *(item for item in override or [] if item not in (base or []))]
    return merged or None
