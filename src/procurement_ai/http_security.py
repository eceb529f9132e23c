from __future__ import annotations

import asyncio
import re
import secrets
import uuid
from collections.abc import Mapping
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .config import BackendConfig

_REQUEST_ID_RE = re.compile(r"[A-Za-z0-9._:-]{8,128}")

API_PREFIX = "/api/"


def request_id_from(headers: Mapping[str, str]) -> str:
    supplied = headers.get("x-request-id") or ""
    return supplied if _REQUEST_ID_RE.fullmatch(supplied) else uuid.uuid4().hex


def presented_token(headers: Mapping[str, str]) -> str | None:
    """
    Shared-secret token sent by the caller.

    `X-API-Key` wins because the extension's own `Authorization: Bearer` header
    usually carries a Google OAuth token rather than our secret.
    """
    api_key = (headers.get("x-api-key") or "").strip()
    if api_key:
        return api_key
    scheme, _, token = (headers.get("authorization") or "").partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return None


def token_matches(presented: str | None, expected: str) -> bool:
    if not presented:
        return False
    return secrets.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


def _is_api_path(path: str) -> bool:
    return path.startswith(API_PREFIX)

def install_middlewares(app, *, cfg: BackendConfig) -> None:
    """
    Install request-id, security headers, body size, concurrency and auth middleware.

    The extension sends its Google OAuth token as `Authorization: Bearer`, so the
    shared-secret check also accepts `X-API-Key` and is off unless SERVER_AUTH_TOKEN is set.
    """
    import structlog
    from fastapi.responses import JSONResponse
    from starlette.middleware.base import BaseHTTPMiddleware
    from starlette.requests import Request

    from .schemas import make_error_response

    def _error(status_code: int, message: str, headers: dict[str, str] | None = None) -> JSONResponse:
        return JSONResponse(
            status_code=status_code,
            content=make_error_response(message).model_dump(),
            headers=headers,
        )

    class RequestIdMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request: Request, call_next):
            request_id = request_id_from(request.headers)
            request.state.request_id = request_id
            structlog.contextvars.bind_contextvars(request_id=request_id)
            try:
                response = await call_next(request)
            finally:
                structlog.contextvars.clear_contextvars()
            response.headers.setdefault("X-Request-Id", request_id)
            return response

    class SecurityHeadersMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request: Request, call_next):
            response = await call_next(request)
            response.headers.setdefault("X-Content-Type-Options", "nosniff")
            response.headers.setdefault("X-Frame-Options", "DENY")
            response.headers.setdefault("Referrer-Policy", "no-referrer")
            if _is_api_path(request.url.path):
                # Analyses contain mail content.
                response.headers.setdefault("Cache-Control", "no-store")
                response.headers.setdefault("Pragma", "no-cache")
            return response

    class MaxBodySizeMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request: Request, call_next):
            limit = cfg.max_request_body_bytes
            if limit > 0 and request.method == "POST" and _is_api_path(request.url.path):
                content_length = request.headers.get("content-length")
                if content_length and content_length.isdigit() and int(content_length) > limit:
                    return _error(413, "Request body too large.")
                body = await request.body()
                if len(body) > limit:
                    return _error(413, "Request body too large.")
            return await call_next(request)

    class ConcurrencyLimitMiddleware(BaseHTTPMiddleware):
        def __init__(self, app_):
            super().__init__(app_)
            self._sem = asyncio.Semaphore(max(1, cfg.max_inflight_requests))

        async def dispatch(self, request: Request, call_next):
            if not _is_api_path(request.url.path):
                return await call_next(request)
            if self._sem.locked():
                return _error(429, "Server is busy. Try again later.")
            await self._sem.acquire()
            try:
                return await call_next(request)
            finally:
                self._sem.release()

    class ApiTokenMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request: Request, call_next):
            expected = cfg.server_auth_token
            if not expected or not _is_api_path(request.url.path) or request.method == "OPTIONS":
                return await call_next(request)

            if not token_matches(presented_token(request.headers), expected):
                return _error(
                    401,
                    "Missing or invalid API token.",
                    headers={"WWW-Authenticate": 'Bearer realm="procurement-ai"'},
                )
            return await call_next(request)

    app.add_middleware(MaxBodySizeMiddleware)
    app.add_middleware(ConcurrencyLimitMiddleware)
    app.add_middleware(ApiTokenMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    # Outermost so `X-Request-Id` is set even when inner middleware short-circuits.
    app.add_middleware(RequestIdMiddleware)

    allowed_hosts: list[str] = list(cfg.allowed_hosts)
    if allowed_hosts:
        from starlette.middleware.trustedhost import TrustedHostMiddleware

        app.add_middleware(TrustedHostMiddleware, allowed_hosts=allowed_hosts)

    cors_allow_origins: list[str] = list(cfg.cors_allow_origins)
    if cors_allow_origins:
        from fastapi.middleware.cors import CORSMiddleware

        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_allow_origins,
            allow_credentials=False,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Authorization", "Content-Type", "X-Request-Id", "X-API-Key"],
            max_age=600,
        )
