import asyncio

import pytest

from chatio_core.domain.exceptions import MissingCredentialError, NoValidMessagesError, UnsupportedProviderError
from chatio_core.domain.models import ConnectionTestResult, ProviderResponse
from chatio_core.providers import create_dispatcher, create_provider
from chatio_core.providers.dispatcher import ProviderDispatcher
from chatio_core.providers.local_client import LocalClient
from chatio_core.providers.openai_client import OpenAIClient


class SettingsStub:
    http_timeout = 1.0


class FakeAdapter:
    """记录调用的假适配器，不走 HTTP。"""

    def __init__(self, name, requires_api_key=True):
        self.name = name
        self.requires_api_key = requires_api_key
        self.sent = []
        self.tested = []

    async def test_connection(self, request):
        self.tested.append(request)
        return ConnectionTestResult.ok("fine")

    async def send_message(self, messages, settings):
        self.sent.append((messages, settings))
        return ProviderResponse(content="pong", provider=self.name)


def test_create_dispatcher_registers_all_vendors():
    dispatcher = create_dispatcher(SettingsStub())
    assert set(dispatcher.provider_names) == {"openai", "anthropic", "google", "deepseek", "local"}
    assert isinstance(create_provider("OpenAI", SettingsStub()), OpenAIClient)
    assert isinstance(create_provider("local", SettingsStub()), LocalClient)


def test_unknown_provider_test_returns_failed_result():
    dispatcher = ProviderDispatcher([FakeAdapter("openai")])
    res = asyncio.run(dispatcher.test_connection("mistral", {"apiKey": "k"}))
    assert res.success is False
    assert "Unsupported provider" in res.error


def test_unknown_provider_send_raises():
    dispatcher = ProviderDispatcher([FakeAdapter("openai")])
    with pytest.raises(UnsupportedProviderError) as exc:
        asyncio.run(dispatcher.send_message([{"role": "user", "content": "hi"}], {"provider": "mistral"}))
    assert exc.value.code == "UNSUPPORTED_PROVIDER"


def test_missing_key_blocks_before_adapter():
    adapter = FakeAdapter("anthropic")
    dispatcher = ProviderDispatcher([adapter])

    res = asyncio.run(dispatcher.test_connection("anthropic", {"apiKey": "  "}))
    assert res.success is False
    assert adapter.tested == []

    with pytest.raises(MissingCredentialError) as exc:
        asyncio.run(dispatcher.send_message([{"role": "user", "content": "hi"}], {"provider": "anthropic"}))
    assert exc.value.code == "MISSING_CREDENTIAL"
    assert adapter.sent == []


def test_local_does_not_need_key():
    adapter = FakeAdapter("local", requires_api_key=False)
    dispatcher = ProviderDispatcher([adapter])

    res = asyncio.run(dispatcher.send_message([{"role": "user", "content": "hi"}], {"provider": "local"}))

    assert res.content == "pong"
    messages, settings = adapter.sent[0]
    assert messages[0].content == "hi"
    assert settings.api_key == ""


def test_dispatch_routes_actions():
    adapter = FakeAdapter("google")
    dispatcher = ProviderDispatcher([adapter])

    res = asyncio.run(dispatcher.dispatch("test", "google", {"apiKey": "g"}))
    assert res.success is True
    assert adapter.tested[0].api_key == "g"

    res = asyncio.run(
        dispatcher.dispatch(
            "send",
            "google",
            {"messages": [{"role": "user", "content": "hi"}], "settings": {"apiKey": "g", "model": "gemini-2.5-pro"}},
        )
    )
    assert res.provider == "google"
    assert adapter.sent[0][1].model == "gemini-2.5-pro"

    with pytest.raises(ValueError):
        asyncio.run(dispatcher.dispatch("stream", "google", {}))


def test_empty_content_is_no_valid_messages(monkeypatch):
    calls = []

    class Client:
        def __init__(self, *a, **kw):
            pass

        async def __aenter__(self):
            return self

        async def __aexit__(self, *a):
            return False

        async def post(self, *a, **kw):
            calls.append(kw)

    monkeypatch.setattr("httpx.AsyncClient", Client)
    dispatcher = create_dispatcher(SettingsStub())

    for content in ("", "   "):
        with pytest.raises(NoValidMessagesError) as exc:
            asyncio.run(
                dispatcher.send_message([{"role": "user", "content": content}], {"provider": "openai", "apiKey": "k"})
            )
        assert exc.value.code == "NO_VALID_MESSAGES"
    assert calls == []


def test_dispatch_test_without_payload_returns_result():
    dispatcher = ProviderDispatcher([FakeAdapter("openai")])
    res = asyncio.run(dispatcher.dispatch("test", "openai", None))
    assert res.success is False
    assert "API key is required" in res.error
