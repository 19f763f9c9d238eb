"""Anthropic messages adapter (async, streaming-capable)."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import anthropic
from anthropic import AsyncAnthropic

from ticketforge.errors import ErrorKind, UpstreamError
from ticketforge.llm.base import ChatMessage, Completion


def classify_anthropic_error(exc: BaseException) -> ErrorKind:
    """Map an Anthropic SDK exception onto the upstream error taxonomy."""
    if isinstance(exc, (anthropic.APITimeoutError, asyncio.TimeoutError)):
        return ErrorKind.TIMEOUT
    if isinstance(exc, anthropic.RateLimitError):
        return ErrorKind.RATE_LIMITED
    if isinstance(exc, anthropic.NotFoundError):
        return ErrorKind.MODEL_UNAVAILABLE
    if isinstance(exc, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
        return ErrorKind.AUTH
    if isinstance(exc, anthropic.BadRequestError):
        # Billing problems come back as 400s
        if "credit balance" in str(exc).lower():
            return ErrorKind.QUOTA_EXCEEDED
        return ErrorKind.BAD_REQUEST
    if isinstance(exc, anthropic.APIStatusError) and exc.status_code >= 500:
        return ErrorKind.SERVER_ERROR
    if isinstance(exc, anthropic.APIConnectionError):
        return ErrorKind.SERVER_ERROR
    return ErrorKind.UNKNOWN


def _upstream(exc: anthropic.AnthropicError) -> UpstreamError:
    return UpstreamError(
        classify_anthropic_error(exc),
        str(exc)[:300],
        status_code=getattr(exc, "status_code", None),
    )


def _split_system(messages: list[ChatMessage]) -> tuple[str, list[ChatMessage]]:
    """Anthropic takes the system prompt as a separate parameter."""
    system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
    rest = [m for m in messages if m["role"] != "system"]
    return system, rest


class AnthropicProvider:
    """Anthropic messages API. SDK-level retries are disabled; the engine owns them."""

    name = "anthropic"

    def __init__(self, api_key: str | None = None, client: AsyncAnthropic | None = None):
        self._client = client or AsyncAnthropic(api_key=api_key, max_retries=0)

    async def complete(
        self,
        model: str,
        messages: list[ChatMessage],
        *,
        temperature: float,
        max_tokens: int,
    ) -> Completion:
        system, rest = _split_system(messages)
        try:
            response = await self._client.messages.create(
                model=model,
                system=system,
                messages=rest,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except anthropic.AnthropicError as e:
            raise _upstream(e) from e
        text = "".join(block.text for block in response.content if getattr(block, "type", "") == "text")
        tokens = None
        if response.usage:
            tokens = response.usage.input_tokens + response.usage.output_tokens
        return Completion(content=text, model=response.model or model, tokens_used=tokens)

    async def stream(
        self,
        model: str,
        messages: list[ChatMessage],
        *,
        temperature: float,
        max_tokens: int,
    ) -> AsyncIterator[str]:
        system, rest = _split_system(messages)
        try:
            async with self._client.messages.stream(
                model=model,
                system=system,
                messages=rest,
                temperature=temperature,
                max_tokens=max_tokens,
            ) as stream:
                async for text in stream.text_stream:
                    if text:
                        yield text
        except anthropic.AnthropicError as e:
            raise _upstream(e) from e
