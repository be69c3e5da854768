"""LLM completion through a YAML-configured provider fallback chain."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import httpx
import yaml
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from litellm import acompletion

from config.settings import settings

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Every configured LLM provider failed or none is available."""


class ChatClient(Protocol):
    """Contract the auto-run loop needs from a language model."""

    async def chat(self, system_prompt: str, context: list[BaseMessage]) -> str: ...


@dataclass
class ProviderConfig:
    """Configuration for a provider in the fallback chain."""

    name: str
    model: str
    required: bool = False
    env_key: str | None = None
    check_availability: bool = False
    params: dict[str, Any] = field(default_factory=dict)


async def check_ollama_availability(model: str) -> bool:
    """Check if Ollama is reachable and has the model pulled."""
    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            response = await client.get(f"{settings.ollama_base_url}/api/tags")
        if response.status_code != 200:
            return False

        data = response.json()
        models = [m["name"] for m in data.get("models", [])]
        model_name = model.removeprefix("ollama/").split(":")[0]
        return any(model_name in m for m in models)

    except Exception as e:
        logger.warning(f"Ollama availability check failed: {e}")
        return False


class ProviderSelector:
    """Calls providers in fallback order until one answers."""

    def __init__(self, config_path: Path | None = None) -> None:
        """
        Initialize the provider selector.

        Args:
            config_path: Provider YAML (defaults to settings.provider_config_path)
        """
        self._config_path = config_path or settings.provider_config_path
        self._providers = self._load_provider_config()
        self._last_provider: str | None = None

    def _load_provider_config(self) -> list[ProviderConfig]:
        """Load provider configuration from YAML."""
        if not self._config_path.exists():
            logger.warning(f"Provider config not found: {self._config_path}")
            return [
                ProviderConfig(
                    name="default",
                    model=settings.llm_model,
                    required=True,
                    check_availability=settings.llm_model.startswith("ollama/"),
                )
            ]

        with open(self._config_path) as f:
            config = yaml.safe_load(f) or {}

        providers = []
        for p in config.get("fallback_priority", []):
            model, params = self._get_model_for_provider(p["name"], config)
            providers.append(
                ProviderConfig(
                    name=p["name"],
                    model=model,
                    required=p.get("required", False),
                    env_key=p.get("env_key"),
                    check_availability=p.get("check_availability", False),
                    params=params,
                )
            )

        if not settings.fallback_enabled:
            providers = providers[:1]

        return providers

    def _get_model_for_provider(self, name: str, config: dict) -> tuple[str, dict[str, Any]]:
        """Get the model string and extra litellm params for a provider."""
        for model_config in config.get("model_list", []):
            if model_config["model_name"] == name:
                params = dict(model_config.get("litellm_params", {}))
                return params.pop("model"), params
        return settings.llm_model, {}

    async def _is_provider_available(self, provider: ProviderConfig) -> bool:
        if provider.check_availability and provider.model.startswith("ollama/"):
            return await check_ollama_availability(provider.model)

        if provider.env_key:
            return bool(os.getenv(provider.env_key))

        return True

    async def _get_available_providers(self) -> list[ProviderConfig]:
        available = []
        for provider in self._providers:
            if await self._is_provider_available(provider):
                available.append(provider)
            else:
                logger.debug(f"Provider {provider.name} not available")
        return available

    def _convert_messages(self, messages: list[BaseMessage]) -> list[dict]:
        """Convert LangChain messages to LiteLLM format."""
        converted = []
        for msg in messages:
            if isinstance(msg, SystemMessage):
                converted.append({"role": "system", "content": msg.content})
            elif isinstance(msg, HumanMessage):
                converted.append({"role": "user", "content": msg.content})
            else:
                converted.append({"role": "assistant", "content": msg.content})
        return converted

    async def _call_provider(self, provider: ProviderConfig, messages: list[dict]) -> str:
        response = await acompletion(
            model=provider.model,
            messages=messages,
            timeout=settings.llm_timeout,
            **provider.params,
        )
        return response.choices[0].message.content or ""

    async def chat(self, system_prompt: str, context: list[BaseMessage]) -> str:
        """
        Generate the next assistant turn.

        Args:
            system_prompt: System prompt for this turn
            context: Conversation so far

        Returns:
            The response text of the first provider that succeeds

        Raises:
            ProviderError: If no provider is available or all of them fail
        """
        available_providers = await self._get_available_providers()
        if not available_providers:
            raise ProviderError("No LLM providers available")

        messages = self._convert_messages([SystemMessage(content=system_prompt), *context])

        for provider in available_providers:
            try:
                content = await self._call_provider(provider, messages)
            except Exception as e:
                logger.warning(f"Provider {provider.name} failed: {e}")
                continue

            self._last_provider = provider.name
            logger.info(f"Response from provider: {provider.name}")
            return content

        logger.error("All LLM providers failed")
        raise ProviderError("All providers failed")

    def get_last_provider(self) -> str | None:
        """Get the name of the last provider used."""
        return self._last_provider

    def list_providers(self) -> list[ProviderConfig]:
        """List the configured providers in fallback order."""
        return list(self._providers)

    async def list_available_providers(self) -> list[str]:
        """List names of available providers."""
        return [p.name for p in await self._get_available_providers()]


