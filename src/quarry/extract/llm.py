"""LiteLLM settings and API key validation shared by the extractors."""

from __future__ import annotations

import os

import litellm

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "ollama": None,  # Local, no key required
}


class ExtractionError(RuntimeError):
    """An extractor could not produce output for a content item."""


def validate_api_key(model: str) -> None:
    """Raise ExtractionError if the API key env var for *model* is missing."""
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    env_var = _PROVIDER_ENV.get(provider)
    if env_var is None:
        return
    if not os.getenv(env_var):
        raise ExtractionError(
            f"No API key found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )
