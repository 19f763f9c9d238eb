"""LLM adapter layer: OpenAI and Anthropic behind a common protocol."""

from ticketforge.llm.anthropic_provider import AnthropicProvider
from ticketforge.llm.base import ChatMessage, Completion, LLMProvider
from ticketforge.llm.openai_provider import OpenAIProvider


def get_provider(provider_name: str, **kwargs: object) -> LLMProvider:
    """Return the configured LLM provider. provider_name: 'openai' | 'anthropic'."""
    if provider_name.lower() == "anthropic":
        return AnthropicProvider(**kwargs)
    return OpenAIProvider(**kwargs)


__all__ = [
    "AnthropicProvider",
    "ChatMessage",
    "Completion",
    "LLMProvider",
    "OpenAIProvider",
    "get_provider",
]
