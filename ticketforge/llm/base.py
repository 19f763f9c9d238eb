"""Abstract LLM provider protocol."""

from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Protocol

ChatMessage = dict[str, str]


@dataclass
class Completion:
    content: str
    model: str
    tokens_used: int | None = None


class LLMProvider(Protocol):
    """Protocol for LLM backends (OpenAI, Anthropic).

    Implementations raise ``ticketforge.errors.UpstreamError`` with a
    classified ``ErrorKind``; they never retry on their own.
    """

    name: str

    async def complete(
        self,
        model: str,
        messages: list[ChatMessage],
        *,
        temperature: float,
        max_tokens: int,
    ) -> Completion:
        """Return a full completion."""
        ...

    def stream(
        self,
        model: str,
        messages: list[ChatMessage],
        *,
        temperature: float,
        max_tokens: int,
    ) -> AsyncIterator[str]:
        """Yield text deltas as they arrive."""
        ...
