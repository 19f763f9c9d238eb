"""Streaming Transport: live token stream instead of a polled job.

``open`` does everything that can fail *before* the first byte (validation,
cache lookup, opening an upstream stream that produced data) so the HTTP layer
can still answer with a non-2xx status. After that the ``TicketStream`` relays
chunks while watching for stalls:

* no chunk for ``stall_timeout`` (checked every ``stall_check_interval``),
  an upstream error mid-stream, or the stream outliving ``max_duration``
  -> keep the partial text (annotated) when it is at least
  ``min_partial_length`` long, otherwise raise ``StreamInterruptedError``
* clean end -> append the responsible footer and insert into the cache
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from ticketforge.cache import ResponseCache
from ticketforge.deadline import Deadline
from ticketforge.engine import GenerationOptions, InvocationEngine, OpenedStream
from ticketforge.errors import StreamInterruptedError
from ticketforge.schemas import GenerationRequest, validate_generation_request
from ticketforge.tickets import (
    PARTIAL_RESULT_NOTE,
    SYSTEM_PROMPT,
    build_ticket_prompt,
    determine_responsible,
    responsible_footer,
)

logger = logging.getLogger(__name__)

_END = object()


@dataclass
class TicketStream:
    """An opened ticket stream; iterate ``chunks`` to relay it."""

    source: str
    chunks: AsyncIterator[str]
    model: str | None = None
    responsible: str | None = None

    def __aiter__(self) -> AsyncIterator[str]:
        return self.chunks

    async def aclose(self) -> None:
        aclose = getattr(self.chunks, "aclose", None)
        if aclose is not None:
            await aclose()


class StreamingTransport:
    def __init__(
        self,
        engine: InvocationEngine,
        cache: ResponseCache,
        *,
        options: GenerationOptions | None = None,
        stall_timeout: float = 10.0,
        stall_check_interval: float = 3.0,
        min_partial_length: int = 100,
        cache_hit_delay: float = 0.5,
        max_duration: float = 180.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._engine = engine
        self._cache = cache
        self._options = options or GenerationOptions()
        self.stall_timeout = stall_timeout
        self.stall_check_interval = stall_check_interval
        self.min_partial_length = min_partial_length
        self._cache_hit_delay = cache_hit_delay
        self._max_duration = max_duration
        self._clock = clock
        self._sleep = sleep

    async def open(self, request: GenerationRequest, deadline: Deadline | None = None) -> TicketStream:
        """Prepare a stream; raises ``TicketForgeError`` on any pre-stream failure."""
        validate_generation_request(request)
        cached = self._cache.lookup(request.scope, request.request_text)
        if cached is not None:
            logger.info("Stream for scope=%s served from cache", request.scope)
            return TicketStream(source="cache", chunks=self._replay(cached))

        responsible = determine_responsible(request.request_text)
        prompt = build_ticket_prompt(request.scope, request.request_text, responsible)
        stream_deadline = (deadline or Deadline()).child(self._max_duration, label="stream deadline")
        opened = await self._engine.open_stream(prompt, SYSTEM_PROMPT, self._options, stream_deadline)
        return TicketStream(
            source="model",
            chunks=self._relay(opened, request, responsible, stream_deadline),
            model=opened.model,
            responsible=responsible,
        )

    async def _replay(self, content: str) -> AsyncIterator[str]:
        # Short pause so a cached answer still reads as a generation
        await self._sleep(self._cache_hit_delay)
        yield content

    def _interrupted(self, content: str, reason: str) -> str:
        """Return the partial-result note to append, or raise if too little arrived."""
        if len(content) >= self.min_partial_length:
            logger.warning(
                "Stream interrupted (%s); accepting partial result of %d chars", reason, len(content)
            )
            return PARTIAL_RESULT_NOTE
        logger.warning("Stream interrupted (%s) after only %d chars", reason, len(content))
        raise StreamInterruptedError(reason)

    async def _relay(
        self,
        opened: OpenedStream,
        request: GenerationRequest,
        responsible: str,
        deadline: Deadline,
    ) -> AsyncIterator[str]:
        queue: asyncio.Queue = asyncio.Queue()
        pump = asyncio.create_task(_pump(opened.chunks, queue), name=f"stream-pump-{opened.model}")
        parts = [opened.first_chunk]
        last_chunk_at = self._clock()
        interruption: str | None = None
        try:
            yield opened.first_chunk
            while True:
                if deadline.done:
                    interruption = "maximum stream duration reached"
                    break
                try:
                    item = await asyncio.wait_for(queue.get(), timeout=self.stall_check_interval)
                except asyncio.TimeoutError:
                    idle = self._clock() - last_chunk_at
                    if idle >= self.stall_timeout:
                        interruption = f"no data for {idle:.1f}s"
                        break
                    continue
                if item is _END:
                    break
                if isinstance(item, BaseException):
                    interruption = f"upstream error: {item}"
                    break
                parts.append(item)
                last_chunk_at = self._clock()
                yield item
        finally:
            pump.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await pump
            with contextlib.suppress(Exception):
                await opened.aclose()

        content = "".join(parts)
        if interruption is not None:
            note = self._interrupted(content, interruption)
            yield note + responsible_footer(content, responsible)
            return

        footer = responsible_footer(content, responsible)
        if footer:
            yield footer
        self._cache.insert(request.scope, request.request_text, content + footer)
        logger.info("Stream on %s completed (%d chars), cached", opened.model, len(content))


async def _pump(chunks: AsyncIterator[str], queue: asyncio.Queue) -> None:
    """Move upstream chunks into ``queue``; ends with ``_END`` or the exception raised."""
    try:
        async for chunk in chunks:
            if chunk:
                await queue.put(chunk)
    except Exception as e:
        await queue.put(e)
        return
    await queue.put(_END)
