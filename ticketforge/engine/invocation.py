"""Invocation Engine: retried, model-fallback calls to the LLM backend.

One engine serves both transports:

* ``generate``: full completion (polled jobs, synchronous endpoint)
* ``open_stream``: live token stream, opened once the first chunk arrived

Policy per candidate model (most capable first):

* timeout / abort            -> abandon the whole call
* rate limit / quota / auth  -> fail immediately, other models share the account
* model unavailable          -> next model right away (no retry on this one)
* anything else              -> retry with exponential backoff, then next model

Fallback models get a simplified invocation: truncated user prompt, lower
``max_tokens`` and lower temperature. A hard overall deadline wraps the loop.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass, field, replace

from ticketforge.deadline import Deadline
from ticketforge.errors import (
    FATAL_KINDS,
    ConfigurationError,
    DeadlineExceeded,
    ErrorKind,
    InvocationError,
    UpstreamError,
)
from ticketforge.llm.base import ChatMessage, LLMProvider

logger = logging.getLogger(__name__)


@dataclass
class GenerationOptions:
    temperature: float = 0.5
    max_tokens: int = 1500


@dataclass
class ModelAttempt:
    model_name: str
    succeeded: bool
    error_kind: ErrorKind | None
    latency: float


@dataclass
class GenerationResult:
    content: str
    model_used: str
    tokens_used: int | None
    attempts: list[ModelAttempt] = field(default_factory=list)


@dataclass
class EngineConfig:
    models: list[str]
    max_retries: int = 2
    initial_delay: float = 1.0
    attempt_timeout: float = 25.0
    overall_timeout: float = 50.0
    fallback_prompt_chars: int = 2000
    fallback_max_tokens: int = 1000
    fallback_temperature: float = 0.3
    first_chunk_timeout: float = 10.0

    def __post_init__(self) -> None:
        if not self.models:
            raise ConfigurationError("Nenhum modelo configurado.", detail="empty model list")
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1")

    @classmethod
    def from_settings(cls, settings, *, streaming: bool = False) -> EngineConfig:
        return cls(
            models=settings.stream_model_list if streaming else settings.model_list,
            max_retries=settings.tf_max_retries,
            initial_delay=settings.tf_initial_delay_seconds,
            attempt_timeout=settings.tf_attempt_timeout_seconds,
            overall_timeout=settings.tf_overall_timeout_seconds,
            fallback_prompt_chars=settings.tf_fallback_prompt_chars,
            fallback_max_tokens=settings.tf_fallback_max_tokens,
            fallback_temperature=settings.tf_fallback_temperature,
            first_chunk_timeout=settings.tf_first_chunk_timeout_seconds,
        )


@dataclass
class OpenedStream:
    """A live stream whose first chunk has already been received."""

    model: str
    first_chunk: str
    chunks: AsyncIterator[str]
    attempts: list[ModelAttempt] = field(default_factory=list)

    async def aclose(self) -> None:
        aclose = getattr(self.chunks, "aclose", None)
        if aclose is not None:
            await aclose()


def build_messages(prompt: str, system_prompt: str | None) -> list[ChatMessage]:
    messages: list[ChatMessage] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": prompt})
    return messages


class InvocationEngine:
    def __init__(self, provider: LLMProvider | None, config: EngineConfig):
        self._provider = provider
        self.config = config

    @property
    def configured(self) -> bool:
        return self._provider is not None

    def _require_provider(self) -> LLMProvider:
        if self._provider is None:
            raise ConfigurationError(
                "Serviço de IA não configurado.", detail="no API key for the selected provider"
            )
        return self._provider

    def _variant(
        self, index: int, messages: list[ChatMessage], opts: GenerationOptions
    ) -> tuple[list[ChatMessage], GenerationOptions]:
        """Primary model gets the full request; fallbacks get the simplified one."""
        if index == 0:
            return messages, opts
        cfg = self.config
        simplified = [
            {**m, "content": m["content"][: cfg.fallback_prompt_chars]} if m["role"] == "user" else m
            for m in messages
        ]
        return simplified, replace(
            opts,
            max_tokens=min(opts.max_tokens, cfg.fallback_max_tokens),
            temperature=min(opts.temperature, cfg.fallback_temperature),
        )

    def _overall(self, deadline: Deadline | None) -> Deadline:
        parent = deadline or Deadline()
        return parent.child(self.config.overall_timeout, label="invocation deadline")

    async def generate(
        self,
        prompt: str,
        system_prompt: str | None = None,
        opts: GenerationOptions | None = None,
        deadline: Deadline | None = None,
    ) -> GenerationResult:
        provider = self._require_provider()
        opts = opts or GenerationOptions()
        overall = self._overall(deadline)
        messages = build_messages(prompt, system_prompt)
        attempts: list[ModelAttempt] = []
        last_kind = ErrorKind.UNKNOWN
        last_detail = ""

        for index, model in enumerate(self.config.models):
            call_messages, call_opts = self._variant(index, messages, opts)
            if index > 0:
                logger.info(
                    "Falling back to model %s (prompt truncated to %d chars, max_tokens=%d)",
                    model,
                    self.config.fallback_prompt_chars,
                    call_opts.max_tokens,
                )
            for attempt in range(1, self.config.max_retries + 1):
                started = time.monotonic()
                try:
                    completion = await overall.run(
                        provider.complete(
                            model,
                            call_messages,
                            temperature=call_opts.temperature,
                            max_tokens=call_opts.max_tokens,
                        ),
                        timeout=self.config.attempt_timeout,
                    )
                except DeadlineExceeded as e:
                    attempts.append(ModelAttempt(model, False, ErrorKind.TIMEOUT, time.monotonic() - started))
                    logger.warning("Model %s attempt %d timed out: %s", model, attempt, e.detail)
                    raise InvocationError(ErrorKind.TIMEOUT, e.detail, model=model, attempts=attempts) from e
                except UpstreamError as e:
                    kind, detail = e.kind, str(e)
                except Exception as e:
                    logger.warning("Unexpected error from %s: %r", model, e)
                    kind, detail = ErrorKind.UNKNOWN, str(e)[:300]
                else:
                    latency = time.monotonic() - started
                    if completion.content.strip():
                        attempts.append(ModelAttempt(model, True, None, latency))
                        logger.info(
                            "Model %s succeeded on attempt %d (%.2fs, tokens=%s)",
                            model,
                            attempt,
                            latency,
                            completion.tokens_used,
                        )
                        return GenerationResult(
                            content=completion.content,
                            model_used=completion.model or model,
                            tokens_used=completion.tokens_used,
                            attempts=attempts,
                        )
                    kind, detail = ErrorKind.EMPTY_RESPONSE, "empty completion"

                attempts.append(ModelAttempt(model, False, kind, time.monotonic() - started))
                last_kind, last_detail = kind, detail
                logger.warning(
                    "Model %s attempt %d/%d failed (%s): %s",
                    model,
                    attempt,
                    self.config.max_retries,
                    kind.value,
                    detail,
                )
                if kind in FATAL_KINDS:
                    raise InvocationError(kind, detail, model=model, attempts=attempts)
                if kind is ErrorKind.MODEL_UNAVAILABLE:
                    break
                if attempt < self.config.max_retries:
                    delay = self.config.initial_delay * 2 ** (attempt - 1)
                    try:
                        await overall.sleep(delay)
                    except DeadlineExceeded as e:
                        raise InvocationError(ErrorKind.TIMEOUT, e.detail, model=model, attempts=attempts) from e

        raise InvocationError(last_kind, last_detail, attempts=attempts)

    async def open_stream(
        self,
        prompt: str,
        system_prompt: str | None = None,
        opts: GenerationOptions | None = None,
        deadline: Deadline | None = None,
    ) -> OpenedStream:
        """Open a stream on the first model that produces data.

        Failure before the first chunk falls back to the next model with a
        fresh call. No data within ``first_chunk_timeout`` fails the operation.
        """
        provider = self._require_provider()
        opts = opts or GenerationOptions()
        overall = self._overall(deadline)
        messages = build_messages(prompt, system_prompt)
        attempts: list[ModelAttempt] = []
        last_kind = ErrorKind.UNKNOWN
        last_detail = ""

        for index, model in enumerate(self.config.models):
            call_messages, call_opts = self._variant(index, messages, opts)
            chunks = provider.stream(
                model,
                call_messages,
                temperature=call_opts.temperature,
                max_tokens=call_opts.max_tokens,
            )
            started = time.monotonic()
            try:
                first = await overall.run(anext(chunks), timeout=self.config.first_chunk_timeout)
            except DeadlineExceeded as e:
                await _close(chunks)
                attempts.append(ModelAttempt(model, False, ErrorKind.TIMEOUT, time.monotonic() - started))
                logger.warning("No data from %s before first-chunk timeout", model)
                raise InvocationError(ErrorKind.TIMEOUT, e.detail, model=model, attempts=attempts) from e
            except StopAsyncIteration:
                kind, detail = ErrorKind.EMPTY_RESPONSE, "stream ended without data"
            except UpstreamError as e:
                kind, detail = e.kind, str(e)
            except Exception as e:
                logger.warning("Unexpected stream error from %s: %r", model, e)
                kind, detail = ErrorKind.UNKNOWN, str(e)[:300]
            else:
                attempts.append(ModelAttempt(model, True, None, time.monotonic() - started))
                logger.info("Stream opened on model %s", model)
                return OpenedStream(model=model, first_chunk=first, chunks=chunks, attempts=attempts)

            await _close(chunks)
            attempts.append(ModelAttempt(model, False, kind, time.monotonic() - started))
            last_kind, last_detail = kind, detail
            logger.warning("Stream on %s failed before first chunk (%s): %s", model, kind.value, detail)
            if kind in FATAL_KINDS:
                raise InvocationError(kind, detail, model=model, attempts=attempts)

        raise InvocationError(last_kind, last_detail, attempts=attempts)


async def _close(chunks: AsyncIterator[str]) -> None:
    aclose = getattr(chunks, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception as e:
        logger.debug("Error closing abandoned stream: %r", e)
