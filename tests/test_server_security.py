import httpx
import pytest

from procurement_ai.config import BackendConfig
from procurement_ai.http_security import presented_token, request_id_from, token_matches

EMAIL = {"threadId": "t1", "subject": "hi", "body": "", "sender": "a@b.test"}


def _fake_assistant():
    class FakeCompletion:
        provider = type("P", (), {"key": "gemini", "name": "Google Gemini"})()

        async def close(self) -> None:
            return None

    class FakeAssistant:
        completion = FakeCompletion()

        async def analyze_thread(self, email, user_id):
            return {"thread_summary": []}

        async def generate_draft(self, email, draft_type, analysis):
            return "draft"

    return FakeAssistant()


def _app(**cfg_overrides):
    pytest.importorskip("fastapi")
    from procurement_ai.server import create_app

    return create_app(cfg=BackendConfig(enable_metrics=False, **cfg_overrides), assistant=_fake_assistant())


@pytest.mark.asyncio
async def test_healthz_reports_provider():
    transport = httpx.ASGITransport(app=_app())
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "provider": "gemini"}


@pytest.mark.asyncio
async def test_server_requires_api_token_when_configured():
    transport = httpx.ASGITransport(app=_app(server_auth_token="sekret"))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.post("/api/analyze-thread", json={"email_data": EMAIL, "user_id": "u1"})
        assert resp.status_code == 401
        assert resp.headers.get("WWW-Authenticate", "").lower().startswith("bearer")
        assert "error" in resp.json()

        resp_ok = await client.post(
            "/api/analyze-thread",
            headers={"X-API-Key": "sekret", "Authorization": "Bearer google-oauth-token"},
            json={"email_data": EMAIL, "user_id": "u1"},
        )
        assert resp_ok.status_code == 200


@pytest.mark.asyncio
async def test_server_enforces_max_body_size_413():
    transport = httpx.ASGITransport(app=_app(max_request_body_bytes=60))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        payload = b'{"user_id":"u1","email_data":{"body":"' + (b"x" * 200) + b'"}}'
        resp = await client.post(
            "/api/analyze-thread",
            content=payload,
            headers={"Content-Type": "application/json"},
        )
    assert resp.status_code == 413
    assert resp.json() == {"error": "Request body too large."}


@pytest.mark.asyncio
async def test_server_sets_security_headers_and_request_id():
    transport = httpx.ASGITransport(app=_app())
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.get("/healthz", headers={"X-Request-Id": "req_12345678"})
        assert resp.headers.get("X-Request-Id") == "req_12345678"
        assert resp.headers.get("X-Content-Type-Options") == "nosniff"
        assert resp.headers.get("X-Frame-Options") == "DENY"

        resp2 = await client.post("/api/analyze-thread", json={"email_data": EMAIL, "user_id": "u1"})
        assert resp2.headers.get("Cache-Control") == "no-store"
        assert resp2.headers.get("X-Request-Id")


@pytest.mark.asyncio
async def test_server_cors_allowlist_applies_to_extension_origin():
    origin = "chrome-extension://abcdefghijklmnop"
    transport = httpx.ASGITransport(app=_app(cors_allow_origins=[origin]))
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        resp = await client.options(
            "/api/generate-draft",
            headers={"Origin": origin, "Access-Control-Request-Method": "POST"},
        )
    assert resp.status_code in (200, 204)
    assert resp.headers.get("access-control-allow-origin") == origin


def test_api_key_header_wins_over_oauth_bearer():
    headers = {"x-api-key": " sekret ", "authorization": "Bearer ya29.google-oauth"}
    assert presented_token(headers) == "sekret"
    assert presented_token({"authorization": "bearer sekret"}) == "sekret"
    assert presented_token({"authorization": "Basic abc"}) is None
    assert presented_token({}) is None


def test_token_matches_requires_a_presented_token():
    assert token_matches("sekret", "sekret")
    assert not token_matches("other", "sekret")
    assert not token_matches(None, "sekret")


def test_request_id_is_kept_only_when_well_formed():
    assert request_id_from({"x-request-id": "req_12345678"}) == "req_12345678"
    generated = request_id_from({"x-request-id": "bad id!"})
    assert generated != "bad id!"
    assert len(generated) == 32
