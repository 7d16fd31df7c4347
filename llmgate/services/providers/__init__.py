from .anthropic import AnthropicClient
from .client import LLMClient, calculate_cost, estimate_tokens
from .errors import (
    AllProvidersFailed,
    FallbackCancelled,
    ProviderApplicationError,
    ProviderError,
    ProviderInfrastructureError,
    ProviderNotRegisteredError,
    ProviderTimeoutError,
)
from .fallback import Candidate, FallbackInvoker, make_fallback_model
from .health_tracker import ProviderHealthTracker
from .openai_compatible import OpenAICompatibleClient
from .registry import ProviderClientRegistry, build_default_registry

__all__ = [
    "AllProvidersFailed",
    "AnthropicClient",
    "Candidate",
    "FallbackCancelled",
    "FallbackInvoker",
    "LLMClient",
    "OpenAICompatibleClient",
    "ProviderApplicationError",
    "ProviderClientRegistry",
    "ProviderError",
    "ProviderHealthTracker",
    "ProviderInfrastructureError",
    "ProviderNotRegisteredError",
    "ProviderTimeoutError",
    "build_default_registry",
    "calculate_cost",
    "estimate_tokens",
    "make_fallback_model",
]
