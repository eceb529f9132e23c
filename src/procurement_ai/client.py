from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from .errors import ConfigurationError, InvalidResponseShape, ProviderError, RateLimitExceeded, truncate
from .formats import ProviderHttpRequest, build_request, error_message, extract_text
from .metrics import completion_latency_seconds, completion_retries_total, completions_total
from .providers import DEFAULT_REGISTRY, ProviderConfig, ProviderRegistry
from .retry import next_rate_limit_step, parse_retry_after

log = structlog.get_logger()


@dataclass(frozen=True)
class CompletionRequest:
    prompt: str
    provider: ProviderConfig
    max_retries: int = 3


def _safe_url(url: str) -> str:
    # Query strings can carry the API key.
    return url.split("?", 1)[0]


def describe_error_body(resp: httpx.Response) -> str:
    text = resp.text
    try:
        data = resp.json()
    except ValueError:
        data = None
    if isinstance(data, dict):
        if data.get("error"):
            return truncate(error_message(data["error"]))
        message = data.get("message")
        if isinstance(message, str) and message:
            return truncate(message)
    if text:
        return truncate(text)
    return resp.reason_phrase or f"HTTP {resp.status_code}"


def _check_attempts(max_retries: int) -> int:
    if max_retries < 1:
        raise ConfigurationError(f"max_retries must allow at least one attempt, got {max_retries}.")
    return max_retries


class CompletionClient:
    """
    Single-prompt completion against one configured provider.

    Retries only on HTTP 429 (Retry-After or 2^attempt seconds); every other
    failure surfaces to the caller as a typed `CompletionError`.
    """

    def __init__(
        self,
        registry: ProviderRegistry = DEFAULT_REGISTRY,
        provider_name: str | None = None,
        *,
        secrets: Mapping[str, str | None] | None = None,
        client: httpx.AsyncClient | None = None,
        max_retries: int = 3,
        timeout_seconds: float = 60,
        model: str | None = None,
        sleeper: Callable[[float], Awaitable[None]] | None = None,
    ):
        provider = registry.select(provider_name)
        if model:
            provider = provider.with_model(model)
        self.provider = provider
        self.max_retries = _check_attempts(int(max_retries))
        self._secrets: Mapping[str, str | None] = secrets or {}
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)
        self._sleep: Callable[[float], Awaitable[None]] = sleeper or asyncio.sleep

    async def close(self) -> None:
        await self._client.aclose()

    def api_key(self, provider: ProviderConfig | None = None) -> str | None:
        provider = provider or self.provider
        return self._secrets.get(provider.key_env_name) or None

    async def complete(self, prompt: str) -> str:
        return await self.complete_request(
            CompletionRequest(prompt=prompt, provider=self.provider, max_retries=self.max_retries)
        )

    async def complete_request(self, request: CompletionRequest) -> str:
        provider = request.provider
        api_key = self.api_key(provider)
        if provider.requires_key and not api_key:
            completions_total.labels(provider=provider.key, status="configuration_error").inc()
            raise ConfigurationError(
                f"{provider.name} API key ({provider.key_env_name}) is not configured."
            )

        _check_attempts(request.max_retries)
        http_request = build_request(provider, request.prompt, api_key=api_key)
        start = time.monotonic()
        try:
            text = await self._send_with_retries(provider, http_request, request.max_retries)
        except RateLimitExceeded:
            completions_total.labels(provider=provider.key, status="rate_limited").inc()
            raise
        except ProviderError:
            completions_total.labels(provider=provider.key, status="provider_error").inc()
            raise
        except InvalidResponseShape:
            completions_total.labels(provider=provider.key, status="invalid_response").inc()
            raise
        finally:
            completion_latency_seconds.labels(provider=provider.key).observe(max(0.0, time.monotonic() - start))

        completions_total.labels(provider=provider.key, status="success").inc()
        log.debug("llm_completion_ok", provider=provider.key, prompt_chars=len(request.prompt), text_chars=len(text))
        return text

    async def _send_with_retries(
        self, provider: ProviderConfig, http_request: ProviderHttpRequest, max_attempts: int
    ) -> str:
        log.info(
            "llm_request",
            provider=provider.key,
            model=provider.model_id,
            url=_safe_url(http_request.url),
            max_attempts=max_attempts,
        )
        for attempt in range(max_attempts):
            try:
                resp = await self._client.post(
                    http_request.url, headers=http_request.headers, json=http_request.body
                )
            except httpx.HTTPError as e:
                log.warning("llm_transport_error", provider=provider.key, error=type(e).__name__)
                raise ProviderError(provider.name, f"request failed ({type(e).__name__})") from e

            if resp.status_code == 429:
                retry_after = parse_retry_after(resp.headers.get("retry-after"))
                decision = next_rate_limit_step(attempt, max_attempts, retry_after)
                if not decision.retry:
                    log.error(
                        "llm_rate_limit_exhausted",
                        provider=provider.key,
                        attempts=attempt + 1,
                        body=truncate(resp.text),
                    )
                    raise RateLimitExceeded(provider.name, attempts=attempt + 1, retry_after_seconds=retry_after)
                completion_retries_total.labels(provider=provider.key).inc()
                log.info(
                    "llm_rate_limited",
                    provider=provider.key,
                    attempt=attempt + 1,
                    max_attempts=max_attempts,
                    wait_seconds=decision.wait_seconds,
                )
                await self._sleep(decision.wait_seconds)
                continue

            if not resp.is_success:
                message = describe_error_body(resp)
                log.error("llm_provider_error", provider=provider.key, status_code=resp.status_code, message=message)
                raise ProviderError(provider.name, message, status_code=resp.status_code)

            try:
                data: Any = resp.json()
            except ValueError as e:
                log.error("llm_invalid_response", provider=provider.key, body=truncate(resp.text))
                raise InvalidResponseShape(provider.name, "body is not JSON", truncate(resp.text)) from e

            try:
                return extract_text(provider, data, status_code=resp.status_code)
            except InvalidResponseShape as e:
                log.error("llm_invalid_response", provider=provider.key, payload=e.payload_excerpt)
                raise

        # Unreachable: the last 429 attempt raises above.
        raise RateLimitExceeded(provider.name, attempts=max_attempts)  # pragma: no cover
