"""
LLM Factory
Build an LLM client for a run's provider configuration.
"""
from typing import Optional
import logging

from .base import BaseLLM
from .openai_llm import OpenAILLM
from .anthropic_llm import AnthropicLLM


logger = logging.getLogger(__name__)


DEFAULT_MODELS = {
    "openai": "gpt-4o-mini",
    "anthropic": "claude-3-5-sonnet-latest",
}

SUPPORTED_PROVIDERS = tuple(DEFAULT_MODELS)


def get_llm(
    provider: Optional[str] = None,
    model: Optional[str] = None,
    **kwargs,
) -> BaseLLM:
    """
    Create an LLM client.

    Settings supply the provider, key and timeout when not passed explicitly.

    Example:
        llm = get_llm(provider="anthropic", api_key=key, max_tokens=2200)
    """
    from config import get_llm_settings, get_research_settings

    settings = get_llm_settings()
    provider = provider or get_research_settings().llm_provider
    model = model or DEFAULT_MODELS.get(provider)

    api_keys = {
        "openai": settings.openai_api_key,
        "anthropic": settings.anthropic_api_key,
    }
    api_key = kwargs.pop("api_key", None) or api_keys.get(provider)
    kwargs.setdefault("timeout", settings.timeout)

    if provider == "openai":
        return OpenAILLM(
            model=model,
            api_key=api_key,
            base_url=kwargs.pop("base_url", None),
            **kwargs,
        )
    elif provider == "anthropic":
        return AnthropicLLM(
            model=model,
            api_key=api_key,
            **kwargs,
        )
    else:
        raise ValueError(f"Unsupported LLM provider: {provider}")
