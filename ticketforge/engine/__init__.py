"""Invocation Engine: retry and model fallback over an LLM provider."""

from ticketforge.engine.invocation import (
    EngineConfig,
    GenerationOptions,
    GenerationResult,
    InvocationEngine,
    ModelAttempt,
    OpenedStream,
    build_messages,
)

__all__ = [
    "EngineConfig",
    "GenerationOptions",
    "GenerationResult",
    "InvocationEngine",
    "ModelAttempt",
    "OpenedStream",
    "build_messages",
]
