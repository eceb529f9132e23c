"""
Provider wire formats.

Each shape family knows how to turn a plain-text prompt into an HTTP request and
how to pull the generated text back out of a successful response body. The
family is chosen by `ProviderConfig.format`, never by the provider's display name.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Protocol
from urllib.parse import urlencode

from .errors import ConfigurationError, InvalidResponseShape, ProviderError, truncate
from .providers import ProviderConfig, ProviderFormat

JSON_HEADERS = {"Content-Type": "application/json"}


@dataclass(frozen=True)
class ProviderHttpRequest:
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: dict[str, Any] = field(default_factory=dict)


def _dump_excerpt(data: Any) -> str:
    try:
        return truncate(json.dumps(data, ensure_ascii=False))
    except (TypeError, ValueError):
        return truncate(repr(data))


def error_message(error: Any) -> str:
    """Best-effort message from an `error` field (string or `{message: ...}` object)."""
    if isinstance(error, dict):
        message = error.get("message")
        if isinstance(message, str) and message:
            return message
        return _dump_excerpt(error)
    if isinstance(error, str):
        return error
    return _dump_excerpt(error)


def _bearer_headers(api_key: str | None) -> dict[str, str]:
    headers = dict(JSON_HEADERS)
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    return headers


class ResponseFormat(Protocol):
    def build_request(self, provider: ProviderConfig, prompt: str, api_key: str | None) -> ProviderHttpRequest: ...

    def extract_text(self, provider: ProviderConfig, data: Any, status_code: int | None = None) -> str: ...


class ChatCompletionFormat:
    """OpenAI-style `/chat/completions` with Bearer auth."""

    def build_request(self, provider: ProviderConfig, prompt: str, api_key: str | None) -> ProviderHttpRequest:
        if not provider.base_url:
            raise ConfigurationError(f"{provider.name} has no endpoint URL configured.")
        body = {
            "model": provider.model_id,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": provider.temperature,
            "max_tokens": provider.output_budget(),
        }
        return ProviderHttpRequest(url=provider.base_url, headers=_bearer_headers(api_key), body=body)

    def extract_text(self, provider: ProviderConfig, data: Any, status_code: int | None = None) -> str:
        if isinstance(data, dict) and data.get("error"):
            raise ProviderError(provider.name, error_message(data["error"]), status_code=status_code)

        choices = data.get("choices") if isinstance(data, dict) else None
        if not isinstance(choices, list) or not choices:
            raise InvalidResponseShape(provider.name, "no choices found", _dump_excerpt(data))

        first = choices[0]
        message = first.get("message") if isinstance(first, dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str) or not content:
            raise InvalidResponseShape(provider.name, "missing message content", _dump_excerpt(first))
        return content


class GenerativeContentFormat:
    """Gemini `generateContent`: model in the URL path, key as a query parameter."""

    def build_request(self, provider: ProviderConfig, prompt: str, api_key: str | None) -> ProviderHttpRequest:
        if not provider.base_url or not provider.model_id:
            raise ConfigurationError(f"{provider.name} needs both a base URL and a model id.")
        url = f"{provider.base_url.rstrip('/')}/models/{provider.model_id}:generateContent"
        if api_key:
            url = f"{url}?{urlencode({'key': api_key})}"
        body = {"contents": [{"parts": [{"text": prompt}]}]}
        return ProviderHttpRequest(url=url, headers=dict(JSON_HEADERS), body=body)

    def extract_text(self, provider: ProviderConfig, data: Any, status_code: int | None = None) -> str:
        if isinstance(data, dict) and data.get("error"):
            raise ProviderError(provider.name, error_message(data["error"]), status_code=status_code)

        candidates = data.get("candidates") if isinstance(data, dict) else None
        if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
            raise InvalidResponseShape(provider.name, "missing candidates", _dump_excerpt(data))

        content = candidates[0].get("content")
        parts = content.get("parts") if isinstance(content, dict) else None
        if not isinstance(parts, list) or not parts or not isinstance(parts[0], dict):
            raise InvalidResponseShape(provider.name, "missing content parts", _dump_excerpt(candidates[0]))

        text = parts[0].get("text")
        if not isinstance(text, str) or not text:
            raise InvalidResponseShape(provider.name, "missing text", _dump_excerpt(parts[0]))
        return text


class RawInferenceFormat:
    """Hugging Face style inference: raw `inputs`, no chat roles."""

    def build_request(self, provider: ProviderConfig, prompt: str, api_key: str | None) -> ProviderHttpRequest:
        if not provider.base_url:
            raise ConfigurationError(f"{provider.name} has no endpoint URL configured.")
        url = provider.base_url
        if provider.model_id:
            # The model lives in the endpoint path; an explicit model id replaces it.
            root, sep, _ = url.partition("/models/")
            if not sep:
                raise ConfigurationError(f"{provider.name} endpoint has no /models/ path to place {provider.model_id!r}.")
            url = f"{root}/models/{provider.model_id}"
        body = {
            "inputs": prompt,
            "parameters": {
                "max_new_tokens": provider.output_budget(),
                "temperature": provider.temperature,
            },
        }
        return ProviderHttpRequest(url=url, headers=_bearer_headers(api_key), body=body)

    def extract_text(self, provider: ProviderConfig, data: Any, status_code: int | None = None) -> str:
        if isinstance(data, list) and data and isinstance(data[0], dict):
            text = data[0].get("generated_text")
            if isinstance(text, str) and text:
                return text
        if isinstance(data, dict) and data.get("error"):
            raise ProviderError(provider.name, error_message(data["error"]), status_code=status_code)
        raise InvalidResponseShape(provider.name, "expected a list with generated_text", _dump_excerpt(data))


FORMATS: dict[ProviderFormat, ResponseFormat] = {
    ProviderFormat.CHAT_COMPLETION: ChatCompletionFormat(),
    ProviderFormat.GENERATIVE_CONTENT: GenerativeContentFormat(),
    ProviderFormat.RAW_INFERENCE: RawInferenceFormat(),
}


def format_for(provider: ProviderConfig) -> ResponseFormat:
    try:
        return FORMATS[provider.format]
    except KeyError as e:
        raise ConfigurationError(f"Unsupported provider format: {provider.format!r}") from e


def build_request(provider: ProviderConfig, prompt: str, *, api_key: str | None) -> ProviderHttpRequest:
    if provider.requires_key and not api_key:
        raise ConfigurationError(
            f"{provider.name} API key ({provider.key_env_name}) is not configured."
        )
    return format_for(provider).build_request(provider, prompt, api_key)


def extract_text(provider: ProviderConfig, data: Any, *, status_code: int | None = None) -> str:
    return format_for(provider).extract_text(provider, data, status_code)
