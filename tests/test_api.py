"""API tests: exercise the FastAPI app end to end with a scripted LLM provider."""

import time

import pytest
from fastapi.testclient import TestClient

from backend.main import create_app
from ticketforge.errors import ErrorKind

from conftest import DATABASE_REQUEST, SCREEN_REQUEST, FakeProvider, make_settings, upstream


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def client(settings, provider):
    app = create_app(settings, provider=provider)
    with TestClient(app) as c:
        yield c


def wait_for_job(client, job_id, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get("/api/job-status", params={"jobId": job_id}).json()
        if body["status"] in ("done", "error"):
            return body
        time.sleep(0.02)
    raise AssertionError(f"job {job_id} did not finish")


class TestHealth:

    def test_health(self, client):
        for path in ("/health", "/api/health"):
            body = client.get(path).json()
            assert body == {"status": "ok", "job_store": "file", "workers_running": True}


class TestJobs:

    def test_submit_and_poll_until_done(self, client):
        response = client.post(
            "/api/submit-job", json={"scope": "SindicatoX", "requestText": DATABASE_REQUEST}
        )
        assert response.status_code == 202
        submitted = response.json()
        assert submitted["status"] == "pending"
        assert submitted["jobId"].startswith("job_")

        job = wait_for_job(client, submitted["jobId"])
        assert job["status"] == "done"
        assert job["progressPercent"] == 100
        assert "Responsável Principal: Walter" in job["result"]
        assert job["metadata"]["source"] == "model"
        assert "createdAt" in job and "updatedAt" in job

    def test_legacy_field_names_accepted(self, client):
        response = client.post(
            "/api/submit-job",
            json={"sindicato": "SindicatoY", "solicitacaoOriginal": SCREEN_REQUEST},
        )
        assert response.status_code == 202
        job = wait_for_job(client, response.json()["jobId"])
        assert "Responsável Principal: Denilson" in job["result"]

    @pytest.mark.parametrize(
        "body",
        [{}, {"scope": "SindicatoX"}, {"requestText": DATABASE_REQUEST}, {"scope": " ", "requestText": "x"}],
    )
    def test_missing_fields_rejected(self, client, body):
        response = client.post("/api/submit-job", json=body)
        assert response.status_code == 400
        payload = response.json()
        assert payload["success"] is False
        assert payload["error"] == "Escopo e descrição da solicitação são obrigatórios."
        assert payload["details"]["type"] == "invalid_request"

    def test_malformed_body_rejected(self, client):
        response = client.post(
            "/api/submit-job", content=b"not json", headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400
        assert response.json()["details"]["type"] == "invalid_request"

    def test_unknown_job(self, client):
        response = client.get("/api/job-status", params={"jobId": "job_missing"})
        assert response.status_code == 404
        assert response.json()["details"]["type"] == "job_not_found"
        assert client.post("/api/mark-job-timeout", params={"jobId": "job_missing"}).status_code == 404

    def test_missing_job_id_parameter(self, client):
        assert client.get("/api/job-status").status_code == 400

    def test_failed_job_has_readable_message(self, client, provider):
        provider.script("model-a", upstream(ErrorKind.QUOTA_EXCEEDED, "insufficient_quota org-42"))
        job_id = client.post(
            "/api/submit-job", json={"scope": "SindicatoX", "requestText": DATABASE_REQUEST}
        ).json()["jobId"]
        job = wait_for_job(client, job_id)
        assert job["status"] == "error"
        assert job["message"] == "Cota do serviço de IA esgotada."
        assert job["result"] is None

    def test_mark_timeout_after_done_keeps_result(self, client):
        job_id = client.post(
            "/api/submit-job", json={"scope": "SindicatoX", "requestText": DATABASE_REQUEST}
        ).json()["jobId"]
        done = wait_for_job(client, job_id)

        response = client.post("/api/mark-job-timeout", params={"jobId": job_id})
        assert response.json() == {"success": True, "status": "done"}
        again = client.get("/api/job-status", params={"jobId": job_id}).json()
        assert again["status"] == "done"
        assert again["result"] == done["result"]

    def test_mark_timeout_on_running_job(self, client, provider):
        from conftest import Sleep

        provider.script("model-a", Sleep(1.5), "tarde demais")
        job_id = client.post(
            "/api/submit-job", json={"scope": "SindicatoX", "requestText": DATABASE_REQUEST}
        ).json()["jobId"]
        response = client.post("/api/mark-job-timeout", params={"jobId": job_id})
        assert response.json() == {"success": True, "status": "error"}

        job = wait_for_job(client, job_id)
        assert job["status"] == "error"
        assert job["message"].startswith("Tempo limite excedido")
        assert job["result"] is None


class TestStreaming:

    def test_stream_returns_ticket_with_footer(self, client, provider):
        provider.script_stream("model-a", ["### Título:", " Limpeza de boletos"])
        response = client.post(
            "/api/stream-generate", json={"scope": "SindicatoX", "requestText": DATABASE_REQUEST}
        )
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert response.headers["x-ticket-source"] == "model"
        assert response.text.startswith("### Título: Limpeza de boletos")
        assert response.text.endswith("Responsável Principal: Walter")

    def test_second_stream_served_from_cache(self, client):
        body = {"scope": "SindicatoX", "requestText": DATABASE_REQUEST}
        first = client.post("/api/stream-generate", json=body)
        second = client.post("/api/stream-generate", json=body)
        assert second.headers["x-ticket-source"] == "cache"
        assert second.text == first.text

    def test_failure_before_first_byte_is_plain_text(self, client, provider):
        provider.script_stream("model-a", [upstream(ErrorKind.RATE_LIMITED)])
        response = client.post(
            "/api/stream-generate", json={"scope": "SindicatoX", "requestText": DATABASE_REQUEST}
        )
        assert response.status_code == 429
        assert response.headers["content-type"].startswith("text/plain")
        assert response.text.startswith("Limite de requisições")

    def test_invalid_stream_request(self, client):
        response = client.post("/api/stream-generate", json={"scope": "SindicatoX"})
        assert response.status_code == 400
        assert response.text == "Escopo e descrição da solicitação são obrigatórios."


class TestGenerateTicket:

    def test_generates_then_serves_from_cache(self, client, provider):
        body = {"scope": "SindicatoX", "requestText": DATABASE_REQUEST}
        first = client.post("/api/generate-ticket", json=body).json()
        assert first["success"] is True
        assert "Responsável Principal: Walter" in first["ticket"]
        assert first["metadata"]["source"] == "model"
        assert first["metadata"]["tokensUsed"] == 321
        assert first["metadata"]["responsible"] == "Walter"

        # Near-identical wording still hits the cache
        similar = {"scope": "sindicatox", "requestText": DATABASE_REQUEST.upper() + "  "}
        second = client.post("/api/generate-ticket", json=similar).json()
        assert second["metadata"]["source"] == "cache"
        assert second["ticket"] == first["ticket"]
        assert len(provider.calls) == 1

    def test_upstream_failure_maps_to_status(self, client, provider):
        provider.script("model-a", upstream(ErrorKind.RATE_LIMITED))
        response = client.post(
            "/api/generate-ticket", json={"scope": "SindicatoX", "requestText": DATABASE_REQUEST}
        )
        assert response.status_code == 429
        assert response.json()["details"]["type"] == "rate_limited"


class TestAdmin:

    def test_cache_stats_and_clear(self, client):
        client.post("/api/generate-ticket", json={"scope": "SindicatoX", "requestText": DATABASE_REQUEST})
        stats = client.get("/api/cache/stats").json()
        assert stats["success"] is True
        assert stats["stats"]["total_items"] == 1
        assert stats["stats"]["max_size"] == 50

        cleared = client.delete("/api/cache").json()
        assert cleared == {"success": True, "message": "Cache limpo com sucesso"}
        assert client.get("/api/cache/stats").json()["stats"]["total_items"] == 0

    def test_diagnostics_never_expose_the_key(self, client):
        response = client.get("/api/diagnostics")
        body = response.json()["diagnostics"]
        assert body["api_key_configured"] is True
        assert body["models"] == ["model-a", "model-b"]
        assert body["job_store"] == "file"
        assert "sk-test" not in response.text


def test_missing_api_key_fails_generation_but_not_startup(tmp_path):
    settings = make_settings(tmp_path, openai_api_key=None)
    with TestClient(create_app(settings)) as client:
        assert client.get("/health").status_code == 200
        assert client.get("/api/diagnostics").json()["diagnostics"]["api_key_configured"] is False
        body = {"scope": "SindicatoX", "requestText": DATABASE_REQUEST}
        response = client.post("/api/submit-job", json=body)
        assert response.status_code == 500
        assert response.json()["details"]["type"] == "missing_configuration"
        assert client.post("/api/stream-generate", json=body).status_code == 500
        assert client.post("/api/generate-ticket", json=body).status_code == 500


def test_unexpected_error_gets_internal_error_envelope(settings, provider):
    app = create_app(settings, provider=provider)

    async def broken(request):
        raise RuntimeError("database exploded")

    with TestClient(app, raise_server_exceptions=False) as client:
        app.state.services.generate_ticket = broken
        response = client.post(
            "/api/generate-ticket", json={"scope": "SindicatoX", "requestText": DATABASE_REQUEST}
        )
    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert body["details"]["type"] == "internal_error"
    assert "database exploded" not in response.text


@pytest.mark.asyncio
async def test_relay_closes_stream_when_client_goes_away():
    from backend.routes.tickets import _relay
    from ticketforge.streaming import TicketStream

    closed = []

    async def chunks():
        try:
            yield "### Título:"
            yield " resto do ticket"
        finally:
            closed.append(True)

    relay = _relay(TicketStream(source="model", chunks=chunks()))
    assert await relay.__anext__() == "### Título:"
    await relay.aclose()
    assert closed == [True]
