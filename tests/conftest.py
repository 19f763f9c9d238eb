"""Pytest configuration and shared fixtures."""

import asyncio
from dataclasses import dataclass

import pytest

from ticketforge.config import Settings
from ticketforge.errors import ErrorKind, UpstreamError
from ticketforge.jobs import FileJobStore
from ticketforge.llm import Completion

DATABASE_REQUEST = "Precisamos excluir 500 registros de boletos duplicados no banco de dados"
SCREEN_REQUEST = "Criar uma nova tela de cadastro de associados com validação de CPF"

DEFAULT_TICKET = (
    "### Título:\nTicket gerado\n\n"
    "### Descrição:\nDescrição detalhada da solicitação com fases e tarefas.\n"
)


@dataclass
class Call:
    model: str
    messages: list
    temperature: float
    max_tokens: int


@dataclass
class Sleep:
    """Scripted pause inside a fake completion or stream."""

    seconds: float


def upstream(kind: ErrorKind, message: str = "") -> UpstreamError:
    return UpstreamError(kind, message or kind.value)


class FakeProvider:
    """Scripted LLM provider.

    ``script(model, *outcomes)`` queues completion outcomes per model: a string
    (content), an exception (raised), a ``Sleep`` (waits, then continues with
    the next outcome) or a zero-arg callable (called, its return used).
    ``script_stream(model, *items)`` queues one stream per call: a list of
    strings / exceptions / ``Sleep``.
    Unscripted calls return ``default``.
    """

    name = "fake"

    def __init__(self, default: str = DEFAULT_TICKET):
        self.default = default
        self.calls: list[Call] = []
        self.stream_calls: list[Call] = []
        self.closed_streams = 0
        self._outcomes: dict[str, list] = {}
        self._streams: dict[str, list] = {}

    def script(self, model: str, *outcomes) -> "FakeProvider":
        self._outcomes.setdefault(model, []).extend(outcomes)
        return self

    def script_stream(self, model: str, *streams: list) -> "FakeProvider":
        self._streams.setdefault(model, []).extend(streams)
        return self

    def models_called(self) -> list[str]:
        return [c.model for c in self.calls]

    async def complete(self, model, messages, *, temperature, max_tokens):
        self.calls.append(Call(model, messages, temperature, max_tokens))
        queue = self._outcomes.get(model)
        while queue:
            outcome = queue.pop(0)
            if isinstance(outcome, Sleep):
                await asyncio.sleep(outcome.seconds)
                continue
            if isinstance(outcome, BaseException):
                raise outcome
            if callable(outcome):
                outcome = outcome()
            return Completion(content=outcome, model=model, tokens_used=321)
        return Completion(content=self.default, model=model, tokens_used=321)

    async def stream(self, model, messages, *, temperature, max_tokens):
        self.stream_calls.append(Call(model, messages, temperature, max_tokens))
        queue = self._streams.get(model)
        items = queue.pop(0) if queue else [self.default]
        try:
            for item in items:
                if isinstance(item, Sleep):
                    await asyncio.sleep(item.seconds)
                elif isinstance(item, BaseException):
                    raise item
                else:
                    yield item
        finally:
            self.closed_streams += 1


def make_settings(tmp_path, **overrides) -> Settings:
    """Fast, isolated settings: file store under tmp_path, no .env, short timers."""
    values = {
        "tf_data_dir": str(tmp_path),
        "tf_database_url": None,
        "tf_llm_provider": "openai",
        "openai_api_key": "sk-test",
        "tf_models": "model-a,model-b",
        "tf_initial_delay_seconds": 0.0,
        "tf_attempt_timeout_seconds": 2.0,
        "tf_overall_timeout_seconds": 5.0,
        "tf_cache_hit_delay_seconds": 0.0,
        "tf_stream_cache_hit_delay_seconds": 0.0,
        "tf_first_chunk_timeout_seconds": 1.0,
        "tf_stall_timeout_seconds": 0.3,
        "tf_stall_check_interval_seconds": 0.05,
        "tf_stale_sweep_interval_seconds": 3600.0,
        "tf_shutdown_grace_seconds": 1.0,
    }
    values.update(overrides)
    settings = Settings(_env_file=None, **values)
    settings.ensure_dirs()
    return settings


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def job_store(tmp_path):
    return FileJobStore(tmp_path / "jobs")
