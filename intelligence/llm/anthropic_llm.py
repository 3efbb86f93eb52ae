"""
Anthropic LLM
Claude models through the Messages API.
"""
from typing import List, Optional
import logging
import inspect

from utils.exceptions import LLMError

from .base import BaseLLM, Message, MessageRole, LLMResponse


logger = logging.getLogger(__name__)


def _accepts_param(fn, name: str) -> bool:
    """Whether the installed SDK method takes keyword ``name``."""
    try:
        params = inspect.signature(fn).parameters
    except (TypeError, ValueError):
        return True
    if name in params:
        return True
    return any(p.kind is inspect.Parameter.VAR_KEYWORD for p in params.values())


class AnthropicLLM(BaseLLM):
    """Anthropic Claude implementation."""

    def __init__(
        self,
        model: str = "claude-3-5-sonnet-latest",
        api_key: Optional[str] = None,
        temperature: float = 0.2,
        max_tokens: int = 2200,
        timeout: float = 60.0,
        **kwargs,
    ):
        super().__init__(model, temperature, max_tokens, timeout, **kwargs)
        self.api_key = api_key
        self._async_client = None

    @property
    def provider(self) -> str:
        return "anthropic"

    def _get_async_client(self):
        if self._async_client is None:
            from anthropic import AsyncAnthropic
            self._async_client = AsyncAnthropic(
                api_key=self.api_key,
                timeout=self.timeout,
            )
        return self._async_client

    @staticmethod
    def _convert_messages(messages: List[Message]) -> tuple:
        """Split out the system prompt; Anthropic takes it separately."""
        system_prompt = None
        converted = []
        for msg in messages:
            if msg.role == MessageRole.SYSTEM:
                system_prompt = msg.content
            else:
                converted.append(msg.to_dict())
        return system_prompt, converted

    async def acomplete(self, messages: List[Message], **kwargs) -> LLMResponse:
        from anthropic import APIError

        client = self._get_async_client()
        system_prompt, converted_messages = self._convert_messages(messages)

        request_params = {
            "model": self.model,
            "messages": converted_messages,
            "max_tokens": kwargs.get("max_tokens", self.max_tokens),
        }
        if system_prompt:
            request_params["system"] = system_prompt
        if _accepts_param(client.messages.create, "temperature"):
            request_params["temperature"] = kwargs.get("temperature", self.temperature)
        else:
            logger.debug("anthropic_temperature_unsupported model=%s", self.model)

        try:
            response = await client.messages.create(**request_params)
        except APIError as exc:
            raise LLMError(f"Anthropic request failed: {exc}", provider=self.provider) from exc

        content = "\n".join(
            block.text for block in response.content if block.type == "text"
        ).strip()

        return LLMResponse(
            content=content,
            model=response.model,
            usage={
                "prompt_tokens": response.usage.input_tokens,
                "completion_tokens": response.usage.output_tokens,
                "total_tokens": response.usage.input_tokens + response.usage.output_tokens,
            },
            finish_reason=response.stop_reason,
            raw_response=response,
        )

    async def aclose(self) -> None:
        client = self._async_client
        if client is None:
            return
        close_fn = getattr(client, "close", None)
        if callable(close_fn):
            maybe_awaitable = close_fn()
            if inspect.isawaitable(maybe_awaitable):
                await maybe_awaitable
        self._async_client = None
