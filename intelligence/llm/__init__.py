"""
LLM Module
Multi-provider LLM abstraction.
"""
from .base import BaseLLM, LLMResponse, Message, MessageRole
from .openai_llm import OpenAILLM
from .anthropic_llm import AnthropicLLM
from .factory import SUPPORTED_PROVIDERS, get_llm

__all__ = [
    "BaseLLM",
    "LLMResponse",
    "Message",
    "MessageRole",
    "OpenAILLM",
    "AnthropicLLM",
    "SUPPORTED_PROVIDERS",
    "get_llm",
]
