from __future__ import annotations

from types import SimpleNamespace

import pytest

from config import get_settings
from intelligence.llm import AnthropicLLM, OpenAILLM, get_llm
from webapp.runtime import EnvCredentialStore


@pytest.fixture
def fresh_settings(monkeypatch):
    get_settings.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()


def test_settings_read_prefixed_env(fresh_settings) -> None:
    fresh_settings.setenv("RESEARCH_MAX_USD", "0.75")
    fresh_settings.setenv("RESEARCH_SEARCH_ENABLED", "false")
    fresh_settings.setenv("POLL_MAX_FAILURES", "5")

    settings = get_settings()

    assert settings.research.max_usd == 0.75
    assert settings.research.search_enabled is False
    assert settings.research.max_sources == 12
    assert settings.poll.max_failures == 5
    assert settings.poll.interval_sec == 2.5


def test_credential_store_picks_key_for_provider(fresh_settings) -> None:
    fresh_settings.setenv("SEARCH_API_KEY", "tvly-env")
    fresh_settings.setenv("LLM_ANTHROPIC_API_KEY", "sk-ant-env")
    fresh_settings.setenv("LLM_OPENAI_API_KEY", "  ")

    store = EnvCredentialStore()
    anthropic = store.credentials_for("anthropic")
    openai = store.credentials_for("OpenAI")

    assert anthropic.search_api_key == "tvly-env"
    assert anthropic.llm_api_key == "sk-ant-env"
    assert openai.search_api_key == "tvly-env"
    assert openai.llm_api_key is None


def test_get_llm_builds_provider_clients(fresh_settings) -> None:
    fresh_settings.setenv("LLM_TIMEOUT", "12")

    claude = get_llm(provider="anthropic", api_key="sk-ant", max_tokens=900)
    gpt = get_llm(provider="openai", model="gpt-test", api_key="sk-oa")

    assert isinstance(claude, AnthropicLLM)
    assert claude.model == "claude-3-5-sonnet-latest"
    assert claude.max_tokens == 900
    assert claude.timeout == 12
    assert isinstance(gpt, OpenAILLM)
    assert gpt.model == "gpt-test"
    assert gpt.api_key == "sk-oa"
    with pytest.raises(ValueError):
        get_llm(provider="gemini", api_key="x")


class _StubMessages:
    """Messages endpoint of an SDK release without ``temperature``."""

    def __init__(self) -> None:
        self.calls = []

    async def create(self, *, model, messages, max_tokens, system=None):
        self.calls.append({"model": model, "messages": messages, "max_tokens": max_tokens, "system": system})
        return SimpleNamespace(
            content=[SimpleNamespace(type="text", text='{"ok": true}')],
            model=model,
            usage=SimpleNamespace(input_tokens=7, output_tokens=3),
            stop_reason="end_turn",
        )


class _StubMessagesWithTemperature(_StubMessages):
    async def create(self, *, model, messages, max_tokens, system=None, temperature=None):
        response = await super().create(model=model, messages=messages, max_tokens=max_tokens, system=system)
        self.calls[-1]["temperature"] = temperature
        return response


@pytest.mark.asyncio
async def test_anthropic_omits_temperature_when_sdk_lacks_it() -> None:
    messages = _StubMessages()
    llm = AnthropicLLM(model="claude-test", api_key="sk-test", max_tokens=321)
    llm._async_client = SimpleNamespace(messages=messages)

    response = await llm.achat("hi", system_prompt="be brief")

    assert messages.calls == [
        {
            "model": "claude-test",
            "messages": [{"role": "user", "content": "hi"}],
            "max_tokens": 321,
            "system": "be brief",
        }
    ]
    assert response.content == '{"ok": true}'
    assert (response.input_tokens, response.output_tokens) == (7, 3)


@pytest.mark.asyncio
async def test_anthropic_sends_temperature_when_supported() -> None:
    messages = _StubMessagesWithTemperature()
    llm = AnthropicLLM(model="claude-test", api_key="sk-test", temperature=0.3)
    llm._async_client = SimpleNamespace(messages=messages)

    await llm.achat("hi")

    assert messages.calls[0]["temperature"] == 0.3
    assert messages.calls[0]["system"] is None
