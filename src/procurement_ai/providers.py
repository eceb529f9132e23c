from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType

import structlog

log = structlog.get_logger()


class ProviderFormat(str, Enum):
    CHAT_COMPLETION = "chat_completion"
    GENERATIVE_CONTENT = "generative_content"
    RAW_INFERENCE = "raw_inference"


@dataclass(frozen=True)
class ProviderConfig:
    key: str
    name: str
    base_url: str | None
    model_id: str | None
    key_env_name: str
    format: ProviderFormat
    requires_key: bool = True
    max_tokens: int = 2000
    # Output budgets keyed by model id or by a family marker contained in the id (e.g. "70b").
    model_max_tokens: Mapping[str, int] = field(default_factory=dict, hash=False)
    temperature: float = 0.7

    def __post_init__(self) -> None:
        object.__setattr__(self, "model_max_tokens", MappingProxyType(dict(self.model_max_tokens)))

    def output_budget(self) -> int:
        if not self.model_id:
            return self.max_tokens
        if self.model_id in self.model_max_tokens:
            return self.model_max_tokens[self.model_id]
        for marker, budget in self.model_max_tokens.items():
            if marker in self.model_id:
                return budget
        return self.max_tokens

    def with_model(self, model_id: str) -> ProviderConfig:
        return replace(self, model_id=model_id)


class ProviderRegistry:
    """
    Immutable set of provider entries plus the designated default.

    Selection never fails: unknown or empty names resolve to the default entry.
    """

    def __init__(self, providers: Iterable[ProviderConfig], *, default_key: str):
        entries = {p.key.lower(): p for p in providers}
        if default_key.lower() not in entries:
            raise ValueError(f"Default provider {default_key!r} is not in the registry.")
        self._providers: Mapping[str, ProviderConfig] = MappingProxyType(entries)
        self._default_key = default_key.lower()

    @property
    def default(self) -> ProviderConfig:
        return self._providers[self._default_key]

    def keys(self) -> list[str]:
        return list(self._providers.keys())

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.strip().lower() in self._providers

    def __len__(self) -> int:
        return len(self._providers)

    def select(self, name: str | None) -> ProviderConfig:
        normalized = (name or "").strip().lower()
        if not normalized:
            return self.default
        provider = self._providers.get(normalized)
        if provider is None:
            log.warning("llm_provider_unknown", requested=normalized, fallback=self._default_key)
            return self.default
        return provider


GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"

DEFAULT_REGISTRY = ProviderRegistry(
    [
        ProviderConfig(
            key="groq",
            name="Groq",
            base_url="https://api.groq.com/openai/v1/chat/completions",
            model_id="llama-3.1-8b-instant",
            key_env_name="GROQ_API_KEY",
            format=ProviderFormat.CHAT_COMPLETION,
            max_tokens=4000,
            model_max_tokens={"70b": 8000},
        ),
        ProviderConfig(
            key="huggingface",
            name="Hugging Face",
            base_url="https://api-inference.huggingface.co/models/meta-llama/Meta-Llama-3-8B-Instruct",
            model_id=None,
            key_env_name="HUGGINGFACE_API_KEY",
            format=ProviderFormat.RAW_INFERENCE,
        ),
        ProviderConfig(
            key="together",
            name="Together AI",
            base_url="https://api.together.xyz/v1/chat/completions",
            model_id="meta-llama/Llama-3-8b-chat-hf",
            key_env_name="TOGETHER_API_KEY",
            format=ProviderFormat.CHAT_COMPLETION,
        ),
        ProviderConfig(
            key="openrouter",
            name="OpenRouter",
            base_url="https://openrouter.ai/api/v1/chat/completions",
            model_id="meta-llama/llama-3.1-8b-instruct:free",
            key_env_name="OPENROUTER_API_KEY",
            format=ProviderFormat.CHAT_COMPLETION,
        ),
        ProviderConfig(
            key="gemini",
            name="Google Gemini",
            base_url=GEMINI_API_BASE,
            model_id="gemini-2.0-flash-exp",
            key_env_name="GEMINI_API_KEY",
            format=ProviderFormat.GENERATIVE_CONTENT,
        ),
    ],
    default_key="gemini",
)


def select_provider(name: str | None, registry: ProviderRegistry = DEFAULT_REGISTRY) -> ProviderConfig:
    return registry.select(name)
