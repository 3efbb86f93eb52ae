"""
Settings Configuration
Pydantic-based configuration for research runs.
"""
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ResearchSettings(BaseSettings):
    """Run defaults, pricing and persistence."""
    runs_file: str = Field(default="./data/research_runs.json", description="Flat JSON run table")

    max_usd: float = Field(default=5.0, description="Default USD ceiling")
    max_input_tokens: int = Field(default=200_000, description="Default input token ceiling")
    max_output_tokens: int = Field(default=40_000, description="Default output token ceiling")
    max_minutes: float = Field(default=45.0, description="Default wall-clock ceiling (minutes)")
    max_sources: int = Field(default=12, description="Default source ceiling")

    llm_provider: str = Field(default="anthropic", description="Synthesis provider: anthropic, openai")
    llm_model: str = Field(default="claude-3-5-sonnet-latest", description="Synthesis model")
    search_enabled: bool = Field(default=True, description="Run the web search phase")

    input_token_cost: float = Field(default=0.000003, description="USD per input token")
    output_token_cost: float = Field(default=0.000015, description="USD per output token")

    context_clip: int = Field(default=2000, description="Context chars kept in checkpoint")
    body_clip: int = Field(default=4000, description="Fetched body chars kept per source")
    synthesis_max_tokens: int = Field(default=2200, description="Synthesis completion limit")
    synthesis_temperature: float = Field(default=0.2, description="Synthesis temperature")

    model_config = SettingsConfigDict(env_prefix="RESEARCH_")


class SearchSettings(BaseSettings):
    """Web search provider (Tavily)."""
    api_key: Optional[str] = Field(default=None, description="Tavily API key")
    endpoint: str = Field(default="https://api.tavily.com/search", description="Search endpoint")
    request_timeout: float = Field(default=20.0, description="Request timeout (seconds)")
    user_agent: str = Field(default="ResearchRuns/1.0", description="User agent for source fetches")

    model_config = SettingsConfigDict(env_prefix="SEARCH_")


class LLMSettings(BaseSettings):
    """LLM provider credentials."""
    anthropic_api_key: Optional[str] = Field(default=None, description="Anthropic API Key")
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API Key")
    timeout: float = Field(default=60.0, description="Request timeout (seconds)")

    model_config = SettingsConfigDict(env_prefix="LLM_")


class PollSettings(BaseSettings):
    """Client-side run supervisor."""
    interval_sec: float = Field(default=2.5, description="Steady polling interval")
    backoff_base_sec: float = Field(default=0.4, description="First retry delay after a failure")
    max_failures: int = Field(default=3, description="Consecutive failures before giving up")
    base_url: str = Field(default="http://127.0.0.1:8000", description="Run API base URL")

    model_config = SettingsConfigDict(env_prefix="POLL_")


class Settings(BaseSettings):
    """Aggregated settings."""

    research: ResearchSettings = Field(default_factory=ResearchSettings)
    search: SearchSettings = Field(default_factory=SearchSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    poll: PollSettings = Field(default_factory=PollSettings)

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @classmethod
    def load_from_env_file(cls, env_path: Optional[Path] = None) -> "Settings":
        """Load settings, reading ``config/.env`` first when present."""
        if env_path is None:
            env_path = Path(__file__).parent / ".env"

        if env_path.exists():
            from dotenv import load_dotenv
            load_dotenv(env_path)

        return cls(
            research=ResearchSettings(),
            search=SearchSettings(),
            llm=LLMSettings(),
            poll=PollSettings(),
        )


@lru_cache()
def get_settings() -> Settings:
    """Process-wide settings singleton."""
    return Settings.load_from_env_file()


def get_research_settings() -> ResearchSettings:
    return get_settings().research


def get_search_settings() -> SearchSettings:
    return get_settings().search


def get_llm_settings() -> LLMSettings:
    return get_settings().llm


def get_poll_settings() -> PollSettings:
    return get_settings().poll
