import os
from typing import Optional

import config
from ai.service import AIService
from errors import ProviderNotConfiguredError

# Provider -> env vars that can hold its API key (any one suffices).
_API_KEY_VARS = {
    "claude": ("ANTHROPIC_API_KEY",),
    "openai": ("OPENAI_API_KEY",),
    "gemini": ("GEMINI_API_KEY", "GOOGLE_API_KEY"),
}


def _normalise(provider: str) -> str:
    provider = provider.lower().strip()
    if provider == "anthropic":
        return "claude"
    if provider not in _API_KEY_VARS:
        raise ValueError(f"Unknown AI provider: {provider!r}")
    return provider


def check_provider_configured(provider: str) -> None:
    """Raise ``ProviderNotConfiguredError`` when the provider has no API key."""
    names = _API_KEY_VARS[_normalise(provider)]
    if not any(os.getenv(name) for name in names):
        raise ProviderNotConfiguredError(
            f"{' or '.join(names)} not configured. "
            f"Please set the {names[0]} environment variable"
        )


def _make_service(provider: str) -> AIService:
    """Instantiate the appropriate AIService for a provider name."""
    provider = _normalise(provider)
    check_provider_configured(provider)
    # Imported lazily so only the selected provider's SDK has to be importable.
    if provider == "gemini":
        from ai.gemini_service import GeminiService

        return GeminiService()
    if provider == "openai":
        from ai.openai_service import OpenAIService

        return OpenAIService()
    from ai.claude_service import ClaudeService

    return ClaudeService()


def get_assistant_service(provider: Optional[str] = None) -> AIService:
    """
    Return the AIService that drives the spreadsheet assistant.

    The provider is chosen via the AI_ASSISTANT_PROVIDER env var:
      - "openai"     → OpenAIService
      - "gemini"     → GeminiService
      - "claude"     → ClaudeService  (default)
    """
    return _make_service(provider or config.AI_ASSISTANT_PROVIDER)
