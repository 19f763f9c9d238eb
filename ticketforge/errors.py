"""Error taxonomy shared by the engine, the worker, the transports and the API.

Every failure that can reach a user is a ``TicketForgeError`` carrying an HTTP
status and a short, human-readable message. Raw upstream error text stays in
``detail`` (logged, never rendered to end users).
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    QUOTA_EXCEEDED = "quota_exceeded"
    MODEL_UNAVAILABLE = "model_unavailable"
    SERVER_ERROR = "server_error"
    BAD_REQUEST = "bad_request"
    AUTH = "auth"
    EMPTY_RESPONSE = "empty_response"
    UNKNOWN = "unknown"


_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.TIMEOUT: 504,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.QUOTA_EXCEEDED: 402,
    ErrorKind.MODEL_UNAVAILABLE: 503,
    ErrorKind.SERVER_ERROR: 502,
    ErrorKind.BAD_REQUEST: 400,
    ErrorKind.AUTH: 500,
    ErrorKind.EMPTY_RESPONSE: 502,
    ErrorKind.UNKNOWN: 500,
}

_MESSAGE_BY_KIND: dict[ErrorKind, str] = {
    ErrorKind.TIMEOUT: "Tempo limite excedido ao gerar o ticket.",
    ErrorKind.RATE_LIMITED: "Limite de requisições do serviço de IA atingido. Tente novamente em instantes.",
    ErrorKind.QUOTA_EXCEEDED: "Cota do serviço de IA esgotada.",
    ErrorKind.MODEL_UNAVAILABLE: "Nenhum modelo de IA disponível no momento.",
    ErrorKind.SERVER_ERROR: "O serviço de IA está instável. Tente novamente mais tarde.",
    ErrorKind.BAD_REQUEST: "O serviço de IA recusou a solicitação.",
    ErrorKind.AUTH: "Configuração do serviço de IA inválida.",
    ErrorKind.EMPTY_RESPONSE: "O serviço de IA retornou uma resposta vazia.",
    ErrorKind.UNKNOWN: "Erro desconhecido ao gerar o ticket.",
}

# Kinds that abort the whole invocation: no retry, no fallback to other models
FATAL_KINDS = frozenset(
    {ErrorKind.TIMEOUT, ErrorKind.RATE_LIMITED, ErrorKind.QUOTA_EXCEEDED, ErrorKind.AUTH}
)


def status_for_kind(kind: ErrorKind) -> int:
    return _STATUS_BY_KIND.get(kind, 500)


def message_for_kind(kind: ErrorKind) -> str:
    return _MESSAGE_BY_KIND.get(kind, _MESSAGE_BY_KIND[ErrorKind.UNKNOWN])


class TicketForgeError(Exception):
    """Base error: short user-facing message plus an HTTP status."""

    status_code: int = 500
    error_type: str = "internal_error"

    def __init__(self, message: str = "", *, detail: str | None = None):
        super().__init__(message or self.__class__.__name__)
        self.user_message = message or "Erro interno."
        self.detail = detail


class InvalidRequestError(TicketForgeError):
    """Missing or empty request fields."""

    status_code = 400
    error_type = "invalid_request"


class ConfigurationError(TicketForgeError):
    """Upstream credentials or required settings are missing."""

    status_code = 500
    error_type = "missing_configuration"


class JobNotFoundError(TicketForgeError):
    status_code = 404
    error_type = "job_not_found"

    def __init__(self, job_id: str):
        super().__init__("Ticket não encontrado.", detail=job_id)
        self.job_id = job_id


class ServiceBusyError(TicketForgeError):
    """The worker queue is full; the submission was rejected."""

    status_code = 503
    error_type = "queue_full"


class InternalError(TicketForgeError):
    status_code = 500
    error_type = "internal_error"


class InvocationError(TicketForgeError):
    """Typed failure of an Invocation Engine call (after retry/fallback policy)."""

    def __init__(
        self,
        kind: ErrorKind,
        detail: str | None = None,
        *,
        model: str | None = None,
        attempts: list | None = None,
    ):
        super().__init__(message_for_kind(kind), detail=detail)
        self.kind = kind
        self.model = model
        self.attempts = attempts or []

    @property
    def status_code(self) -> int:  # type: ignore[override]
        return status_for_kind(self.kind)

    @property
    def error_type(self) -> str:  # type: ignore[override]
        return self.kind.value

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.detail or self.user_message}"


class DeadlineExceeded(InvocationError):
    """A deadline (global, overall, per-attempt or first-chunk) expired or was cancelled."""

    def __init__(self, detail: str = "deadline exceeded"):
        super().__init__(ErrorKind.TIMEOUT, detail)


class UpstreamError(Exception):
    """Provider-level failure already classified into an ``ErrorKind``.

    Raised by the LLM adapters; only the Invocation Engine turns these into
    ``InvocationError`` after applying retry/fallback policy.
    """

    def __init__(self, kind: ErrorKind, message: str = "", *, status_code: int | None = None):
        super().__init__(message or kind.value)
        self.kind = kind
        self.status_code = status_code


class StreamInterruptedError(TicketForgeError):
    """A live stream stalled or broke before producing enough content to keep."""

    status_code = 502
    error_type = "stream_interrupted"

    def __init__(self, detail: str | None = None):
        super().__init__(
            "A geração foi interrompida antes de produzir conteúdo suficiente.", detail=detail
        )
