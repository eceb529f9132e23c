from __future__ import annotations

import asyncio
import math
import os
import time
from contextlib import asynccontextmanager

import structlog

from .analysis import ThreadAssistant
from .client import CompletionClient
from .config import BackendConfig
from .errors import (
    ConfigurationError,
    CompletionError,
    InvalidResponseShape,
    ProviderError,
    RateLimitExceeded,
    RequestTimeoutError,
)
from .http_security import install_middlewares
from .logging import configure_logging
from .metrics import maybe_start_metrics, server_errors_total, server_request_latency_seconds, server_requests_total
from .providers import DEFAULT_REGISTRY
from .schemas import AnalyzeThreadRequest, DraftResponse, GenerateDraftRequest, make_error_response
from .storage import AnalysisCache, Database, ThreadStore

log = structlog.get_logger()


def build_assistant(cfg: BackendConfig) -> ThreadAssistant:
    completion = CompletionClient(
        DEFAULT_REGISTRY,
        cfg.llm_provider,
        secrets=cfg.provider_secrets(),
        max_retries=cfg.llm_max_retries,
        timeout_seconds=cfg.upstream_timeout_seconds,
        model=cfg.llm_model,
    )
    db = Database(cfg.database_path)
    return ThreadAssistant(
        completion,
        ThreadStore(db, internal_domains=cfg.internal_domains),
        AnalysisCache(db, ttl_seconds=cfg.cache_ttl_seconds),
    )


async def _close_assistant(assistant) -> None:
    close = getattr(assistant.completion, "close", None)
    if callable(close):
        await close()
    store = getattr(assistant, "store", None)
    db = getattr(store, "db", None)
    if db is not None and callable(getattr(db, "close", None)):
        db.close()


def _validation_message(exc) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request."
    first = errors[0]
    loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    if first.get("type") == "missing" and loc:
        return f"Missing {loc} in request"
    return f"Invalid {loc or 'request'}: {first.get('msg', 'invalid value')}"


def create_app(cfg: BackendConfig | None = None, assistant: ThreadAssistant | None = None):
    try:
        from fastapi import FastAPI
        from fastapi.exceptions import RequestValidationError
        from fastapi.responses import JSONResponse
    except ImportError as e:  # pragma: no cover
        raise RuntimeError('Install the "server" extra: pip install -e ".[server]"') from e

    cfg = cfg or BackendConfig()
    configure_logging(level=cfg.log_level, fmt=cfg.log_format, secrets=cfg.secret_values())
    assistant = assistant or build_assistant(cfg)
    provider = getattr(assistant.completion, "provider", None)
    provider_key = getattr(provider, "key", None) or "unknown"

    def _observe(path: str, status_code: int, started_at: float) -> None:
        server_requests_total.labels(path=path, status=str(status_code)).inc()
        server_request_latency_seconds.labels(path=path).observe(max(0.0, time.monotonic() - started_at))

    def _error(status_code: int, error_type: str, message: str, headers: dict[str, str] | None = None):
        server_errors_total.labels(type=error_type).inc()
        return JSONResponse(
            status_code=status_code,
            content=make_error_response(message).model_dump(),
            headers=headers,
        )

    async def _with_deadline(coro):
        timeout = max(0.0, float(cfg.request_timeout_seconds or 0)) or None
        try:
            return await asyncio.wait_for(coro, timeout=timeout)
        except asyncio.TimeoutError as e:
            raise RequestTimeoutError("Request timed out.") from e

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        maybe_start_metrics(enable=cfg.enable_metrics, bind=cfg.metrics_bind, port=cfg.metrics_port)
        try:
            yield
        finally:
            await _close_assistant(assistant)

    app = FastAPI(
        title="procurement-ai-backend",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if cfg.enable_api_docs else None,
        redoc_url="/redoc" if cfg.enable_api_docs else None,
        openapi_url="/openapi.json" if cfg.enable_api_docs else None,
    )
    install_middlewares(app, cfg=cfg)

    @app.exception_handler(RequestValidationError)
    async def _validation_error_handler(_request, exc: RequestValidationError):
        return _error(400, "invalid_request", _validation_message(exc))

    @app.exception_handler(ConfigurationError)
    async def _config_error_handler(_request, exc: ConfigurationError):
        log.error("configuration_error", error=str(exc))
        return _error(500, "configuration_error", str(exc))

    @app.exception_handler(RateLimitExceeded)
    async def _rate_limit_handler(_request, exc: RateLimitExceeded):
        headers = {}
        if exc.retry_after_seconds is not None:
            headers["Retry-After"] = str(math.ceil(exc.retry_after_seconds))
        return _error(429, "rate_limited", str(exc), headers=headers)

    @app.exception_handler(ProviderError)
    async def _provider_error_handler(_request, exc: ProviderError):
        return _error(502, "provider_error", str(exc))

    @app.exception_handler(InvalidResponseShape)
    async def _invalid_response_handler(_request, exc: InvalidResponseShape):
        return _error(502, "invalid_response", str(exc))

    @app.exception_handler(RequestTimeoutError)
    async def _timeout_handler(_request, exc: RequestTimeoutError):
        return _error(504, "timeout", str(exc) or "Request timed out.")

    @app.exception_handler(CompletionError)
    async def _completion_error_handler(_request, exc: CompletionError):
        return _error(500, "api_error", str(exc))

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok", "provider": provider_key}

    @app.post("/api/analyze-thread")
    async def analyze_thread(req: AnalyzeThreadRequest):
        started_at = time.monotonic()
        analysis = await _with_deadline(assistant.analyze_thread(req.email_data, req.user_id))
        _observe("/api/analyze-thread", 200, started_at)
        return analysis

    @app.post("/api/generate-draft", response_model=DraftResponse)
    async def generate_draft(req: GenerateDraftRequest):
        started_at = time.monotonic()
        draft = await _with_deadline(assistant.generate_draft(req.email_data, req.draft_type, req.analysis))
        _observe("/api/generate-draft", 200, started_at)
        return DraftResponse(draft=draft)

    return app


def main() -> None:  # pragma: no cover
    try:
        import uvicorn
    except ImportError as e:
        raise RuntimeError('Install the "server" extra: pip install -e ".[server]"') from e

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("procurement_ai.server:create_app", factory=True, host=host, port=port)


if __name__ == "__main__":  # pragma: no cover
    main()
