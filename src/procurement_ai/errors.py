from __future__ import annotations

TRUNCATE_CHARS = 200


def truncate(value: str, limit: int = TRUNCATE_CHARS) -> str:
    if len(value) <= limit:
        return value
    return value[:limit] + "..."


class CompletionError(Exception):
    """Base error for completion and backend failures."""


class ConfigurationError(CompletionError):
    pass


class RateLimitExceeded(CompletionError):
    def __init__(
        self,
        provider: str,
        attempts: int,
        retry_after_seconds: float | None = None,
        message: str | None = None,
    ):
        super().__init__(
            message or f"{provider} API rate limit exceeded. Please wait a few minutes and try again."
        )
        self.provider = provider
        self.attempts = attempts
        self.retry_after_seconds = retry_after_seconds


class ProviderError(CompletionError):
    def __init__(self, provider: str, message: str, status_code: int | None = None):
        prefix = f"{provider} API error"
        if status_code is not None:
            prefix = f"{prefix} ({status_code})"
        super().__init__(f"{prefix}: {message}")
        self.provider = provider
        self.status_code = status_code
        self.message = message


class InvalidResponseShape(CompletionError):
    """Successful upstream response whose body does not match the provider contract."""

    def __init__(self, provider: str, message: str, payload_excerpt: str | None = None):
        super().__init__(f"Invalid response from {provider} API: {message}")
        self.provider = provider
        self.payload_excerpt = payload_excerpt


class RequestTimeoutError(CompletionError):
    """Server-side request deadline exceeded."""
