"""Tests for the OpenAI / Anthropic adapters and their error classification."""

from types import SimpleNamespace

import anthropic
import httpx
import openai
import pytest

from ticketforge.errors import ErrorKind, UpstreamError
from ticketforge.llm import AnthropicProvider, OpenAIProvider, get_provider
from ticketforge.llm.anthropic_provider import classify_anthropic_error
from ticketforge.llm.openai_provider import classify_openai_error

REQUEST = httpx.Request("POST", "https://api.example.com/v1/chat")
MESSAGES = [
    {"role": "system", "content": "Você cria tickets."},
    {"role": "user", "content": "Crie um ticket"},
]


def response(status: int) -> httpx.Response:
    return httpx.Response(status, request=REQUEST)


async def _aiter(items):
    for item in items:
        yield item


class TestOpenAIClassification:

    @pytest.mark.parametrize(
        "exc, kind",
        [
            (openai.RateLimitError("slow down", response=response(429), body=None), ErrorKind.RATE_LIMITED),
            (
                openai.RateLimitError(
                    "quota", response=response(429), body={"code": "insufficient_quota"}
                ),
                ErrorKind.QUOTA_EXCEEDED,
            ),
            (openai.NotFoundError("no model", response=response(404), body=None), ErrorKind.MODEL_UNAVAILABLE),
            (openai.AuthenticationError("bad key", response=response(401), body=None), ErrorKind.AUTH),
            (openai.BadRequestError("bad", response=response(400), body=None), ErrorKind.BAD_REQUEST),
            (openai.InternalServerError("boom", response=response(500), body=None), ErrorKind.SERVER_ERROR),
            (openai.APITimeoutError(request=REQUEST), ErrorKind.TIMEOUT),
            (openai.APIConnectionError(message="reset", request=REQUEST), ErrorKind.SERVER_ERROR),
            (ValueError("other"), ErrorKind.UNKNOWN),
        ],
    )
    def test_classification(self, exc, kind):
        assert classify_openai_error(exc) is kind


class TestAnthropicClassification:

    @pytest.mark.parametrize(
        "exc, kind",
        [
            (anthropic.RateLimitError("slow down", response=response(429), body=None), ErrorKind.RATE_LIMITED),
            (
                anthropic.BadRequestError(
                    "Your credit balance is too low", response=response(400), body=None
                ),
                ErrorKind.QUOTA_EXCEEDED,
            ),
            (anthropic.BadRequestError("bad", response=response(400), body=None), ErrorKind.BAD_REQUEST),
            (anthropic.NotFoundError("no model", response=response(404), body=None), ErrorKind.MODEL_UNAVAILABLE),
            (anthropic.AuthenticationError("bad key", response=response(401), body=None), ErrorKind.AUTH),
            (anthropic.InternalServerError("boom", response=response(500), body=None), ErrorKind.SERVER_ERROR),
            (anthropic.APITimeoutError(request=REQUEST), ErrorKind.TIMEOUT),
        ],
    )
    def test_classification(self, exc, kind):
        assert classify_anthropic_error(exc) is kind


def openai_client(create):
    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))


class TestOpenAIProvider:

    @pytest.mark.asyncio
    async def test_complete(self):
        seen = {}

        async def create(**kwargs):
            seen.update(kwargs)
            return SimpleNamespace(
                choices=[SimpleNamespace(message=SimpleNamespace(content="ticket"))],
                usage=SimpleNamespace(total_tokens=42),
                model="gpt-test",
            )

        provider = OpenAIProvider(client=openai_client(create))
        completion = await provider.complete("gpt-test", MESSAGES, temperature=0.5, max_tokens=100)
        assert completion.content == "ticket"
        assert completion.tokens_used == 42
        assert seen["messages"] == MESSAGES
        assert seen["max_tokens"] == 100

    @pytest.mark.asyncio
    async def test_sdk_errors_become_upstream_errors(self):
        async def create(**kwargs):
            raise openai.RateLimitError("Rate limit reached", response=response(429), body=None)

        provider = OpenAIProvider(client=openai_client(create))
        with pytest.raises(UpstreamError) as exc_info:
            await provider.complete("gpt-test", MESSAGES, temperature=0.5, max_tokens=100)
        assert exc_info.value.kind is ErrorKind.RATE_LIMITED
        assert exc_info.value.status_code == 429

    @pytest.mark.asyncio
    async def test_stream_yields_non_empty_deltas(self):
        def chunk(content):
            return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])

        async def create(**kwargs):
            assert kwargs["stream"] is True
            return _aiter([chunk("Olá"), SimpleNamespace(choices=[]), chunk(None), chunk(" mundo")])

        provider = OpenAIProvider(client=openai_client(create))
        deltas = [d async for d in provider.stream("gpt-test", MESSAGES, temperature=0.5, max_tokens=10)]
        assert deltas == ["Olá", " mundo"]


class _FakeAnthropicStream:
    def __init__(self, texts):
        self.text_stream = _aiter(texts)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False


class TestAnthropicProvider:

    @pytest.mark.asyncio
    async def test_complete_moves_system_prompt(self):
        seen = {}

        async def create(**kwargs):
            seen.update(kwargs)
            return SimpleNamespace(
                content=[SimpleNamespace(type="text", text="ticket")],
                usage=SimpleNamespace(input_tokens=10, output_tokens=5),
                model="claude-test",
            )

        client = SimpleNamespace(messages=SimpleNamespace(create=create))
        completion = await AnthropicProvider(client=client).complete(
            "claude-test", MESSAGES, temperature=0.2, max_tokens=50
        )
        assert completion.content == "ticket"
        assert completion.tokens_used == 15
        assert seen["system"] == "Você cria tickets."
        assert seen["messages"] == [{"role": "user", "content": "Crie um ticket"}]

    @pytest.mark.asyncio
    async def test_stream(self):
        client = SimpleNamespace(
            messages=SimpleNamespace(stream=lambda **kwargs: _FakeAnthropicStream(["a", "", "b"]))
        )
        provider = AnthropicProvider(client=client)
        deltas = [d async for d in provider.stream("claude-test", MESSAGES, temperature=0.2, max_tokens=5)]
        assert deltas == ["a", "b"]


def test_get_provider_selects_backend():
    assert isinstance(get_provider("anthropic", api_key="k"), AnthropicProvider)
    assert isinstance(get_provider("openai", api_key="k"), OpenAIProvider)
