"""Shared runtime singletons for web/CLI entrypoints."""

from __future__ import annotations

from typing import Optional

from config import get_llm_settings, get_research_settings, get_search_settings
from core import ResearchCredentials
from orchestrator import RunRegistry


class EnvCredentialStore:
    """Settings-backed stand-in for the encrypted credential vault."""

    def credentials_for(self, llm_provider: Optional[str] = None) -> ResearchCredentials:
        llm = get_llm_settings()
        provider = str(llm_provider or get_research_settings().llm_provider).strip().lower()
        llm_key = llm.openai_api_key if provider == "openai" else llm.anthropic_api_key
        return ResearchCredentials(search_api_key=get_search_settings().api_key, llm_api_key=llm_key)


_REGISTRY: Optional[RunRegistry] = None
_CREDENTIALS = EnvCredentialStore()


def get_registry() -> RunRegistry:
    global _REGISTRY
    if _REGISTRY is None:
        _REGISTRY = RunRegistry()
    return _REGISTRY


def get_credential_store() -> EnvCredentialStore:
    return _CREDENTIALS
