"""Service wiring: builds the shared cache, engines, job store and worker pool.

One ``Services`` instance is created per application. The polled and the
streaming paths share the same ``SimilarityCache``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import asdict
from typing import Any

from ticketforge.cache import SimilarityCache
from ticketforge.config import Settings, get_settings
from ticketforge.engine import EngineConfig, GenerationOptions, InvocationEngine
from ticketforge.errors import ConfigurationError
from ticketforge.jobs import JobRunner, JobService, JobStore, WorkerPool, create_job_store
from ticketforge.llm import LLMProvider, get_provider
from ticketforge.schemas import GenerationRequest, TicketMetadata, validate_generation_request
from ticketforge.streaming import StreamingTransport
from ticketforge.tickets import (
    SYSTEM_PROMPT,
    build_ticket_prompt,
    determine_responsible,
    ensure_responsible,
)

logger = logging.getLogger(__name__)


def build_provider(settings: Settings) -> LLMProvider | None:
    """Provider for the configured backend, or None when its API key is missing."""
    api_key = settings.llm_api_key
    if not api_key:
        logger.warning(
            "No API key configured for provider '%s'; generation endpoints will fail",
            settings.tf_llm_provider,
        )
        return None
    return get_provider(settings.tf_llm_provider, api_key=api_key)


class Services:
    def __init__(
        self,
        settings: Settings,
        provider: LLMProvider | None = None,
        store: JobStore | None = None,
    ):
        self.settings = settings
        self.provider = provider if provider is not None else build_provider(settings)
        self.options = GenerationOptions(
            temperature=settings.tf_temperature, max_tokens=settings.tf_max_tokens
        )
        self.cache = SimilarityCache(
            capacity=settings.tf_cache_capacity,
            ttl_seconds=settings.tf_cache_ttl_seconds,
            threshold=settings.tf_cache_similarity_threshold,
        )
        self.engine = InvocationEngine(self.provider, EngineConfig.from_settings(settings))
        self.stream_engine = InvocationEngine(
            self.provider, EngineConfig.from_settings(settings, streaming=True)
        )
        self.store = store or create_job_store(settings)
        self.runner = JobRunner(
            self.store,
            self.cache,
            self.engine,
            options=self.options,
            cache_hit_delay=settings.tf_cache_hit_delay_seconds,
        )
        self.pool = WorkerPool(
            self.runner,
            self.store,
            concurrency=settings.tf_worker_concurrency,
            queue_size=settings.tf_worker_queue_size,
        )
        self.jobs = JobService(self.store, self.pool)
        self.streaming = StreamingTransport(
            self.stream_engine,
            self.cache,
            options=self.options,
            stall_timeout=settings.tf_stall_timeout_seconds,
            stall_check_interval=settings.tf_stall_check_interval_seconds,
            min_partial_length=settings.tf_min_partial_length,
            cache_hit_delay=settings.tf_stream_cache_hit_delay_seconds,
            max_duration=settings.tf_stream_max_duration_seconds,
        )
        self._sweeper: asyncio.Task | None = None

    def ensure_configured(self) -> None:
        """Raise ``ConfigurationError`` when no LLM provider is available."""
        if self.provider is None:
            raise ConfigurationError(
                "Serviço de IA não configurado. Verifique a chave de API.",
                detail=f"missing API key for provider '{self.settings.tf_llm_provider}'",
            )

    async def generate_ticket(self, request: GenerationRequest) -> tuple[str, TicketMetadata]:
        """Generate in the request itself (no job), bounded by the engine deadline."""
        validate_generation_request(request)
        self.ensure_configured()
        cached = self.cache.lookup(request.scope, request.request_text)
        if cached is not None:
            return cached, TicketMetadata(source="cache")
        responsible = determine_responsible(request.request_text)
        prompt = build_ticket_prompt(request.scope, request.request_text, responsible)
        result = await self.engine.generate(prompt, SYSTEM_PROMPT, self.options)
        content = ensure_responsible(result.content, responsible)
        self.cache.insert(request.scope, request.request_text, content)
        return content, TicketMetadata(
            model=result.model_used,
            tokens_used=result.tokens_used,
            source="model",
            responsible=responsible,
        )

    async def start(self) -> None:
        # Nothing from a previous process is still running its jobs
        await asyncio.to_thread(self.jobs.recover_stale_jobs)
        self.pool.start()
        self._sweeper = asyncio.create_task(self._sweep_stale_loop(), name="stale-job-sweeper")

    async def stop(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None
        await self.pool.stop(self.settings.tf_shutdown_grace_seconds)

    async def _sweep_stale_loop(self) -> None:
        interval = self.settings.tf_stale_sweep_interval_seconds
        while True:
            await asyncio.sleep(interval)
            try:
                await asyncio.to_thread(
                    self.jobs.recover_stale_jobs, self.settings.tf_stale_job_seconds
                )
            except Exception:
                logger.exception("Stale job sweep failed")

    def diagnostics(self) -> dict[str, Any]:
        """Configuration and runtime state; never includes secrets."""
        s = self.settings
        return {
            "provider": s.tf_llm_provider,
            "api_key_configured": bool(s.llm_api_key) or self.provider is not None,
            "models": self.engine.config.models,
            "stream_models": self.stream_engine.config.models,
            "job_store": self.store.backend_name,
            "worker_pool": asdict(self.pool.stats()),
            "cache": asdict(self.cache.stats()),
            "timeouts": {
                "attempt_seconds": s.tf_attempt_timeout_seconds,
                "overall_seconds": s.tf_overall_timeout_seconds,
                "first_chunk_seconds": s.tf_first_chunk_timeout_seconds,
                "stall_seconds": s.tf_stall_timeout_seconds,
            },
        }


def build_services(settings: Settings | None = None, provider: LLMProvider | None = None) -> Services:
    return Services(settings or get_settings(), provider=provider)
