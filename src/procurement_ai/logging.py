from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Mapping, MutableMapping
from typing import Any, TypeAlias

import structlog

from .errors import truncate

_REDACTED = "[REDACTED]"

# Header and field names whose values are never logged.
_SENSITIVE_KEYS = frozenset({"authorization", "proxy-authorization", "cookie", "set-cookie", "x-api-key"})
_SENSITIVE_FRAGMENTS = ("api_key", "apikey", "token", "secret", "password")

# Thread content and model replies: logged truncated, never whole.
_BODY_KEYS = frozenset({"body", "payload", "prompt", "text"})

_BEARER_RE = re.compile(r"(?i)\bBearer\s+([A-Za-z0-9._-]{6,})")
_QUERY_KEY_RE = re.compile(r"(?i)([?&]key=)[^&\s]+")

ProcessorReturn: TypeAlias = Mapping[str, Any] | str | bytes | bytearray | tuple[Any, ...]
Processor: TypeAlias = Callable[[Any, str, MutableMapping[str, Any]], ProcessorReturn]


class Redactor:
    """
    structlog processor masking provider keys before anything is rendered.

    Gemini takes its key as a `?key=` query parameter, so URLs are scrubbed as
    well as headers and configured secret values.
    """

    def __init__(self, secrets: Iterable[str] = ()):
        self.secrets = tuple(s for s in secrets if isinstance(s, str) and s)

    def __call__(self, _logger: Any, _method_name: str, event_dict: MutableMapping[str, Any]) -> ProcessorReturn:
        return {k: self._field(str(k).lower(), v) for k, v in event_dict.items()}

    def _field(self, name: str, value: Any) -> Any:
        if name in _SENSITIVE_KEYS or any(f in name for f in _SENSITIVE_FRAGMENTS):
            return _REDACTED
        if name in _BODY_KEYS and isinstance(value, str):
            return self.scrub(truncate(value))
        return self.walk(value)

    def walk(self, value: Any) -> Any:
        if isinstance(value, str):
            return self.scrub(value)
        if isinstance(value, Mapping):
            return {k: self._field(str(k).lower(), v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return type(value)(self.walk(v) for v in value)
        return value

    def scrub(self, text: str) -> str:
        for secret in self.secrets:
            text = text.replace(secret, _REDACTED)
        text = _BEARER_RE.sub(f"Bearer {_REDACTED}", text)
        return _QUERY_KEY_RE.sub(rf"\1{_REDACTED}", text)


def make_redaction_processor(*, secrets: list[str] | None = None) -> Processor:
    return Redactor(secrets or ())


def configure_logging(level: str = "INFO", fmt: str = "json", *, secrets: list[str] | None = None) -> None:
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=log_level)

    renderer = structlog.processors.JSONRenderer() if fmt == "json" else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            # Runs even without configured secrets: Bearer tokens and `key=` parameters are always masked.
            Redactor(secrets or ()),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        cache_logger_on_first_use=True,
    )
