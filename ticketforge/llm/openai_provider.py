"""OpenAI chat completion adapter (async, streaming-capable)."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator

import openai
from openai import AsyncOpenAI

from ticketforge.errors import ErrorKind, UpstreamError
from ticketforge.llm.base import ChatMessage, Completion

_QUOTA_CODES = {"insufficient_quota", "billing_hard_limit_reached"}
_UNAVAILABLE_CODES = {"model_not_available", "model_not_found"}


def classify_openai_error(exc: BaseException) -> ErrorKind:
    """Map an OpenAI SDK exception onto the upstream error taxonomy."""
    if isinstance(exc, (openai.APITimeoutError, asyncio.TimeoutError)):
        return ErrorKind.TIMEOUT
    code = getattr(exc, "code", None)
    if code in _QUOTA_CODES:
        return ErrorKind.QUOTA_EXCEEDED
    if code in _UNAVAILABLE_CODES or isinstance(exc, openai.NotFoundError):
        return ErrorKind.MODEL_UNAVAILABLE
    if isinstance(exc, openai.RateLimitError) or code == "rate_limit_exceeded":
        return ErrorKind.RATE_LIMITED
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return ErrorKind.AUTH
    if isinstance(exc, (openai.BadRequestError, openai.UnprocessableEntityError)):
        return ErrorKind.BAD_REQUEST
    if isinstance(exc, openai.APIStatusError) and exc.status_code >= 500:
        return ErrorKind.SERVER_ERROR
    if isinstance(exc, openai.APIConnectionError):
        return ErrorKind.SERVER_ERROR
    return ErrorKind.UNKNOWN


def _upstream(exc: openai.OpenAIError) -> UpstreamError:
    return UpstreamError(
        classify_openai_error(exc),
        str(exc)[:300],
        status_code=getattr(exc, "status_code", None),
    )


class OpenAIProvider:
    """OpenAI chat completions. SDK-level retries are disabled; the engine owns them."""

    name = "openai"

    def __init__(self, api_key: str | None = None, client: AsyncOpenAI | None = None):
        self._client = client or AsyncOpenAI(api_key=api_key, max_retries=0)

    async def complete(
        self,
        model: str,
        messages: list[ChatMessage],
        *,
        temperature: float,
        max_tokens: int,
    ) -> Completion:
        try:
            response = await self._client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except openai.OpenAIError as e:
            raise _upstream(e) from e
        content = response.choices[0].message.content if response.choices else None
        usage = response.usage.total_tokens if response.usage else None
        return Completion(content=content or "", model=response.model or model, tokens_used=usage)

    async def stream(
        self,
        model: str,
        messages: list[ChatMessage],
        *,
        temperature: float,
        max_tokens: int,
    ) -> AsyncIterator[str]:
        try:
            stream = await self._client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                stream=True,
            )
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    yield delta
        except openai.OpenAIError as e:
            raise _upstream(e) from e
