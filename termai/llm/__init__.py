"""LLM integration components."""

from termai.llm.client import ChatClient, ProviderConfig, ProviderError, ProviderSelector

__all__ = [
    "ChatClient",
    "ProviderConfig",
    "ProviderError",
    "ProviderSelector",
]
