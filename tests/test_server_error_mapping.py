import asyncio
import json

import httpx
import pytest

from procurement_ai.config import BackendConfig
from procurement_ai.errors import ConfigurationError, InvalidResponseShape, ProviderError, RateLimitExceeded

EMAIL = {"threadId": "t1", "subject": "PO#12345 delayed", "body": "Late", "sender": "sales@acme.test"}


def _fake_assistant(*, analyze=None, draft=None):
    class FakeCompletion:
        provider = type("P", (), {"key": "groq", "name": "Groq"})()

        async def close(self) -> None:
            return None

    class FakeAssistant:
        completion = FakeCompletion()

        async def analyze_thread(self, email, user_id):
            if isinstance(analyze, Exception):
                raise analyze
            if callable(analyze):
                return await analyze(email, user_id)
            return analyze or {"thread_summary": ["ok"]}

        async def generate_draft(self, email, draft_type, analysis):
            if isinstance(draft, Exception):
                raise draft
            return draft or f"{draft_type.value} draft"

    return FakeAssistant()


async def _post(app, path, payload):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        return await client.post(path, json=payload)


def _app(assistant, **cfg_overrides):
    pytest.importorskip("fastapi")
    from procurement_ai.server import create_app

    cfg = BackendConfig(enable_metrics=False, **cfg_overrides)
    return create_app(cfg=cfg, assistant=assistant)


@pytest.mark.asyncio
async def test_analyze_thread_returns_analysis_json():
    app = _app(_fake_assistant(analyze={"thread_summary": ["Delay confirmed"]}))
    resp = await _post(app, "/api/analyze-thread", {"email_data": EMAIL, "user_id": "u1"})
    assert resp.status_code == 200
    assert resp.json() == {"thread_summary": ["Delay confirmed"]}


@pytest.mark.asyncio
async def test_generate_draft_returns_draft():
    app = _app(_fake_assistant())
    resp = await _post(
        app, "/api/generate-draft", {"email_data": EMAIL, "draft_type": "internal", "analysis": {"thread_summary": []}}
    )
    assert resp.status_code == 200
    assert resp.json() == {"draft": "internal draft"}


@pytest.mark.asyncio
async def test_missing_email_data_is_400_with_error_message():
    app = _app(_fake_assistant())
    resp = await _post(app, "/api/analyze-thread", {"user_id": "u1"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "Missing email_data in request"}


@pytest.mark.asyncio
async def test_unknown_draft_type_is_400():
    app = _app(_fake_assistant())
    resp = await _post(app, "/api/generate-draft", {"email_data": EMAIL, "draft_type": "casual"})
    assert resp.status_code == 400
    assert "draft_type" in resp.json()["error"]


@pytest.mark.asyncio
async def test_rate_limit_maps_to_429_with_retry_after():
    app = _app(_fake_assistant(analyze=RateLimitExceeded("Groq", attempts=3, retry_after_seconds=6.2)))
    resp = await _post(app, "/api/analyze-thread", {"email_data": EMAIL, "user_id": "u1"})
    assert resp.status_code == 429
    assert resp.headers.get("Retry-After") == "7"
    assert "rate limit" in resp.json()["error"]


@pytest.mark.asyncio
async def test_provider_error_maps_to_502():
    app = _app(_fake_assistant(draft=ProviderError("Groq", "invalid api key", status_code=401)))
    resp = await _post(app, "/api/generate-draft", {"email_data": EMAIL, "draft_type": "vendor"})
    assert resp.status_code == 502
    assert "invalid api key" in resp.json()["error"]


@pytest.mark.asyncio
async def test_invalid_response_shape_maps_to_502():
    app = _app(_fake_assistant(analyze=InvalidResponseShape("Groq", "no choices found")))
    resp = await _post(app, "/api/analyze-thread", {"email_data": EMAIL, "user_id": "u1"})
    assert resp.status_code == 502


@pytest.mark.asyncio
async def test_configuration_error_maps_to_500():
    app = _app(_fake_assistant(analyze=ConfigurationError("Groq API key (GROQ_API_KEY) is not configured.")))
    resp = await _post(app, "/api/analyze-thread", {"email_data": EMAIL, "user_id": "u1"})
    assert resp.status_code == 500
    assert "GROQ_API_KEY" in resp.json()["error"]


@pytest.mark.asyncio
async def test_request_deadline_maps_to_504():
    async def slow(_email, _user_id):
        await asyncio.sleep(0.05)
        return {}

    app = _app(_fake_assistant(analyze=slow), request_timeout_seconds=0.01)
    resp = await _post(app, "/api/analyze-thread", {"email_data": EMAIL, "user_id": "u1"})
    assert resp.status_code == 504


@pytest.mark.asyncio
async def test_end_to_end_analysis_through_completion_client(tmp_path):
    pytest.importorskip("fastapi")
    from procurement_ai.analysis import ThreadAssistant
    from procurement_ai.client import CompletionClient
    from procurement_ai.providers import DEFAULT_REGISTRY
    from procurement_ai.server import create_app
    from procurement_ai.storage import AnalysisCache, Database, ThreadStore

    reply = json.dumps({"thread_summary": ["Delay confirmed"]})

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content.decode("utf-8"))
        assert "PO Number: 12345" in body["messages"][0]["content"]
        return httpx.Response(200, json={"choices": [{"message": {"content": reply}}]})

    completion = CompletionClient(
        DEFAULT_REGISTRY,
        "openrouter",
        secrets={"OPENROUTER_API_KEY": "k"},
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    db = Database(str(tmp_path / "e2e.db"))
    assistant = ThreadAssistant(completion, ThreadStore(db), AnalysisCache(db))
    app = create_app(cfg=BackendConfig(enable_metrics=False), assistant=assistant)
    try:
        resp = await _post(app, "/api/analyze-thread", {"email_data": EMAIL, "user_id": "u1"})
        assert resp.status_code == 200
        assert resp.json()["thread_summary"] == ["Delay confirmed"]
    finally:
        await completion.close()
        db.close()
