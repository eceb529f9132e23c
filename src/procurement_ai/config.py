from __future__ import annotations

import os

from pydantic import BaseModel, Field


def _parse_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


class BackendConfig(BaseModel):
    # LLM provider selection (groq|huggingface|together|openrouter|gemini)
    llm_provider: str | None = Field(default_factory=lambda: os.getenv("LLM_PROVIDER"))
    llm_model: str | None = Field(default_factory=lambda: os.getenv("LLM_MODEL") or None)
    llm_max_retries: int = Field(default_factory=lambda: int(os.getenv("LLM_MAX_RETRIES", "3")))
    upstream_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", "60"))
    )

    # Provider credentials
    groq_api_key: str | None = Field(default_factory=lambda: os.getenv("GROQ_API_KEY"))
    huggingface_api_key: str | None = Field(default_factory=lambda: os.getenv("HUGGINGFACE_API_KEY"))
    together_api_key: str | None = Field(default_factory=lambda: os.getenv("TOGETHER_API_KEY"))
    openrouter_api_key: str | None = Field(default_factory=lambda: os.getenv("OPENROUTER_API_KEY"))
    gemini_api_key: str | None = Field(default_factory=lambda: os.getenv("GEMINI_API_KEY"))

    # Storage
    database_path: str = Field(default_factory=lambda: os.getenv("DATABASE_PATH", "procurement_ai.db"))
    cache_ttl_seconds: int = Field(default_factory=lambda: int(os.getenv("CACHE_TTL_SECONDS", "86400")))
    internal_domains: list[str] = Field(
        default_factory=lambda: _parse_csv(os.getenv("INTERNAL_DOMAINS", "company.com"))
    )

    # Observability
    enable_metrics: bool = Field(default_factory=lambda: _env_flag("ENABLE_METRICS"))
    metrics_bind: str = Field(default_factory=lambda: os.getenv("METRICS_BIND", "127.0.0.1"))
    metrics_port: int = Field(default_factory=lambda: int(os.getenv("METRICS_PORT", "9109")))
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_format: str = Field(default_factory=lambda: os.getenv("LOG_FORMAT", "json"))

    # Server hardening
    server_auth_token: str | None = Field(default_factory=lambda: os.getenv("SERVER_AUTH_TOKEN"))
    enable_api_docs: bool = Field(default_factory=lambda: _env_flag("ENABLE_API_DOCS"))
    allowed_hosts: list[str] = Field(default_factory=lambda: _parse_csv(os.getenv("ALLOWED_HOSTS")))
    cors_allow_origins: list[str] = Field(default_factory=lambda: _parse_csv(os.getenv("CORS_ALLOW_ORIGINS")))
    max_request_body_bytes: int = Field(
        default_factory=lambda: int(os.getenv("MAX_REQUEST_BODY_BYTES", str(1024 * 1024)))
    )
    max_inflight_requests: int = Field(default_factory=lambda: int(os.getenv("MAX_INFLIGHT_REQUESTS", "32")))
    request_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("REQUEST_TIMEOUT_SECONDS", "90"))
    )

    def provider_secrets(self) -> dict[str, str | None]:
        return {
            "GROQ_API_KEY": self.groq_api_key,
            "HUGGINGFACE_API_KEY": self.huggingface_api_key,
            "TOGETHER_API_KEY": self.together_api_key,
            "OPENROUTER_API_KEY": self.openrouter_api_key,
            "GEMINI_API_KEY": self.gemini_api_key,
        }

    def secret_values(self) -> list[str]:
        values = [v for v in self.provider_secrets().values() if v]
        if self.server_auth_token:
            values.append(self.server_auth_token)
        return values
