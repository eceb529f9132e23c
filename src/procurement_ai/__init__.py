from .client import CompletionClient, CompletionRequest
from .config import BackendConfig
from .providers import DEFAULT_REGISTRY, ProviderConfig, ProviderFormat, ProviderRegistry, select_provider

__all__ = [
    "BackendConfig",
    "CompletionClient",
    "CompletionRequest",
    "DEFAULT_REGISTRY",
    "ProviderConfig",
    "ProviderFormat",
    "ProviderRegistry",
    "select_provider",
]
