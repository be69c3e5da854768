"""Tests for the provider fallback chain."""

import asyncio
from types import SimpleNamespace

import httpx
import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

import termai.llm.client as client_module
from config.settings import settings
from termai.llm.client import ProviderError, ProviderSelector

PROVIDERS_YAML = """
model_list:
  - model_name: primary
    litellm_params:
      model: openai/gpt-4o-mini
      temperature: 0.2
  - model_name: backup
    litellm_params:
      model: anthropic/claude-3-5-haiku-latest
  - model_name: keyed
    litellm_params:
      model: openai/gpt-4o

fallback_priority:
  - name: primary
    required: true
  - name: backup
  - name: keyed
    env_key: TERMAI_TEST_KEY
"""


def completion(content: str) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "providers.yaml"
    path.write_text(PROVIDERS_YAML)
    return path


@pytest.fixture
def calls(monkeypatch):
    """Records acompletion calls; models listed in `failing` raise."""
    recorded = SimpleNamespace(models=[], kwargs=[], failing=set())

    async def fake_acompletion(model, messages, **kwargs):
        recorded.models.append(model)
        recorded.kwargs.append({"messages": messages, **kwargs})
        if model in recorded.failing:
            raise RuntimeError(f"{model} unavailable")
        return completion(f"answer from {model}")

    monkeypatch.setattr(client_module, "acompletion", fake_acompletion)
    monkeypatch.delenv("TERMAI_TEST_KEY", raising=False)
    return recorded


@pytest.mark.asyncio
async def test_loads_chain_in_order(config_path, calls):
    selector = ProviderSelector(config_path)

    providers = selector.list_providers()

    assert [p.name for p in providers] == ["primary", "backup", "keyed"]
    assert providers[0].params == {"temperature": 0.2}
    assert providers[0].required
    assert await selector.list_available_providers() == ["primary", "backup"]


@pytest.mark.asyncio
async def test_env_key_enables_provider(config_path, calls, monkeypatch):
    monkeypatch.setenv("TERMAI_TEST_KEY", "secret")

    assert "keyed" in await ProviderSelector(config_path).list_available_providers()


def test_fallback_disabled_keeps_first_provider(config_path, calls, monkeypatch):
    monkeypatch.setattr(settings, "fallback_enabled", False)

    assert [p.name for p in ProviderSelector(config_path).list_providers()] == ["primary"]


@pytest.mark.asyncio
async def test_chat_uses_first_provider(config_path, calls):
    selector = ProviderSelector(config_path)
    context = [HumanMessage(content="hi"), AIMessage(content="hello"), SystemMessage(content="out")]

    response = await selector.chat("You are helpful.", context)

    assert response == "answer from openai/gpt-4o-mini"
    assert selector.get_last_provider() == "primary"
    assert calls.kwargs[0]["messages"] == [
        {"role": "system", "content": "You are helpful."},
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
        {"role": "system", "content": "out"},
    ]
    assert calls.kwargs[0]["temperature"] == 0.2


@pytest.mark.asyncio
async def test_chat_falls_back_in_order(config_path, calls):
    calls.failing.add("openai/gpt-4o-mini")
    selector = ProviderSelector(config_path)

    response = await selector.chat("sys", [HumanMessage(content="hi")])

    assert response == "answer from anthropic/claude-3-5-haiku-latest"
    assert calls.models == ["openai/gpt-4o-mini", "anthropic/claude-3-5-haiku-latest"]
    assert selector.get_last_provider() == "backup"


@pytest.mark.asyncio
async def test_all_providers_failing_raises(config_path, calls):
    calls.failing.update({"openai/gpt-4o-mini", "anthropic/claude-3-5-haiku-latest"})

    with pytest.raises(ProviderError, match="All providers failed"):
        await ProviderSelector(config_path).chat("sys", [HumanMessage(content="hi")])


@pytest.mark.asyncio
async def test_missing_config_uses_default_model(tmp_path, calls, monkeypatch):
    monkeypatch.setattr(settings, "llm_model", "openai/gpt-4o-mini")
    selector = ProviderSelector(tmp_path / "absent.yaml")

    assert [p.model for p in selector.list_providers()] == ["openai/gpt-4o-mini"]
    assert await selector.chat("sys", []) == "answer from openai/gpt-4o-mini"


@pytest.mark.asyncio
async def test_unreachable_ollama_means_no_provider(tmp_path, calls, monkeypatch):
    async def unreachable(model: str) -> bool:
        return False

    monkeypatch.setattr(client_module, "check_ollama_availability", unreachable)
    monkeypatch.setattr(settings, "llm_model", "ollama/mistral:7b")
    selector = ProviderSelector(tmp_path / "absent.yaml")

    with pytest.raises(ProviderError, match="No LLM providers available"):
        await selector.chat("sys", [])
    assert calls.models == []


@pytest.mark.asyncio
async def test_ollama_check_does_not_block_the_event_loop(tmp_path, calls, monkeypatch):
    ticks = []

    async def ticker():
        while True:
            ticks.append(1)
            await asyncio.sleep(0.01)

    class SlowTransport(httpx.AsyncBaseTransport):
        async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(0.2)
            return httpx.Response(200, json={"models": [{"name": "mistral:7b"}]})

    real_client = httpx.AsyncClient
    monkeypatch.setattr(
        client_module.httpx,
        "AsyncClient",
        lambda **kwargs: real_client(transport=SlowTransport(), **kwargs),
    )
    monkeypatch.setattr(settings, "llm_model", "ollama/mistral:7b")
    selector = ProviderSelector(tmp_path / "absent.yaml")

    task = asyncio.create_task(ticker())
    try:
        available = await selector.list_available_providers()
    finally:
        task.cancel()

    assert available == ["default"]
    assert len(ticks) >= 5
