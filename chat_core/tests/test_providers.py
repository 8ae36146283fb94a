import asyncio
import json

import httpx
import pytest

from chat_core.domain.exceptions import ApiError, NetworkError, RateLimitError, TransportError, ValidationError
from chat_core.domain.models import ChatMessage, ChatRequest
from chat_core.providers import create_provider, create_provider_chain
from chat_core.providers.gateway_client import GatewayClient
from chat_core.providers.generator_client import GeneratorClient
from chat_core.providers.registry import GATEWAY_CONFIG, PROVIDER_REGISTRY, get_provider_config
from chat_core.providers.relay_client import RelayClient


class SettingsStub:
    http_timeout = 1.0
    provider_order = ["gateway", "generator"]
    relay_api_key = "relay-key"
    relay_url = None
    resolved_relay_url = "https://proj.test/functions/v1/chat"
    gateway_api_key = "gw-key"
    gateway_base_url = "https://gateway.test/api/v1/"
    gateway_model = "some/model"
    gateway_title = "Smart Shelf"
    gateway_referer = "https://shelf.test"
    generator_api_key = "gen-key"
    generator_base_url = "https://generator.test/v1beta"
    generator_model = "gen-model"


def _request():
    return ChatRequest(
        messages=[
            ChatMessage(role="system", content="ground"),
            ChatMessage(role="user", content="hi"),
        ],
        conversation_id="c1",
        language="en",
    )


class Recorder:
    def __init__(self, response):
        self.response = response
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        return self.response


def _open_and_drain(client):
    async def scenario():
        stream = await client.open(_request())
        chunks = []
        async with stream:
            async for chunk in stream:
                chunks.append(chunk)
        return b"".join(chunks)

    return asyncio.run(scenario())


def test_create_provider_by_name():
    cfg = SettingsStub()
    assert isinstance(create_provider("relay", cfg), RelayClient)
    assert isinstance(create_provider("Gateway", cfg), GatewayClient)
    assert isinstance(create_provider("generator", cfg), GeneratorClient)
    with pytest.raises(KeyError):
        create_provider("unknown", cfg)


def test_create_provider_chain_uses_configured_order():
    chain = create_provider_chain(cfg=SettingsStub())
    assert [p.name for p in chain] == ["gateway", "generator"]
    assert [p.streaming for p in chain] == [True, False]
    chain = create_provider_chain(order=["relay"], cfg=SettingsStub())
    assert [p.name for p in chain] == ["relay"]


def test_registry_lookup():
    assert get_provider_config("GENERATOR").streaming is False
    with pytest.raises(KeyError):
        get_provider_config("nope")
    for name, config in PROVIDER_REGISTRY.items():
        provider = create_provider(name, SettingsStub())
        assert provider.name == config.name
        assert provider.streaming is config.streaming
    assert [p.name for p in create_provider_chain(order=[], cfg=object())] == list(PROVIDER_REGISTRY)


def test_unset_endpoints_fall_back_to_registry():
    class Defaults(SettingsStub):
        gateway_base_url = None
        gateway_model = None

    rec = Recorder(httpx.Response(200, content=b"data: [DONE]\n\n"))
    client = GatewayClient(Defaults(), transport=httpx.MockTransport(rec))

    _open_and_drain(client)

    sent = rec.requests[0]
    assert str(sent.url) == f"{GATEWAY_CONFIG.base_url}/chat/completions"
    assert json.loads(sent.content)["model"] == GATEWAY_CONFIG.model


def test_relay_request_shape():
    rec = Recorder(httpx.Response(200, content=b'data: {"text": "a"}\n\n'))
    client = RelayClient(SettingsStub(), transport=httpx.MockTransport(rec))

    body = _open_and_drain(client)

    assert body == b'data: {"text": "a"}\n\n'
    sent = rec.requests[0]
    assert str(sent.url) == "https://proj.test/functions/v1/chat"
    assert sent.headers["Authorization"] == "Bearer relay-key"
    assert sent.headers["apikey"] == "relay-key"
    payload = json.loads(sent.content)
    assert payload["conversation_id"] == "c1"
    assert payload["language"] == "en"
    assert payload["messages"][1] == {"role": "user", "content": "hi"}


def test_relay_missing_key():
    class NoKey(SettingsStub):
        relay_api_key = None

    client = RelayClient(NoKey(), transport=httpx.MockTransport(Recorder(httpx.Response(200))))
    with pytest.raises(ValidationError) as ei:
        asyncio.run(client.open(_request()))
    assert ei.value.code == "MISSING_API_KEY"


def test_gateway_request_shape():
    rec = Recorder(httpx.Response(200, content=b"data: [DONE]\n\n"))
    client = GatewayClient(SettingsStub(), transport=httpx.MockTransport(rec))

    _open_and_drain(client)

    sent = rec.requests[0]
    assert str(sent.url) == "https://gateway.test/api/v1/chat/completions"
    assert sent.headers["Authorization"] == "Bearer gw-key"
    assert sent.headers["X-Title"] == "Smart Shelf"
    assert sent.headers["HTTP-Referer"] == "https://shelf.test"
    payload = json.loads(sent.content)
    assert payload["model"] == "some/model"
    assert payload["stream"] is True
    assert [m["role"] for m in payload["messages"]] == ["system", "user"]


def test_streaming_status_errors():
    cases = [
        (httpx.Response(429, text="later"), RateLimitError, "RATE_LIMIT"),
        (httpx.Response(500, text="boom"), ApiError, "API_ERROR"),
        (httpx.Response(204), TransportError, "EMPTY_BODY"),
    ]
    for response, exc_type, code in cases:
        client = GatewayClient(SettingsStub(), transport=httpx.MockTransport(Recorder(response)))
        with pytest.raises(exc_type) as ei:
            asyncio.run(client.open(_request()))
        assert ei.value.code == code


def test_api_error_carries_body_and_status():
    client = GatewayClient(
        SettingsStub(),
        transport=httpx.MockTransport(Recorder(httpx.Response(502, text="upstream down"))),
    )
    with pytest.raises(ApiError) as ei:
        asyncio.run(client.open(_request()))
    assert ei.value.http_status == 502
    assert ei.value.message == "upstream down"
    assert ei.value.extra["provider"] == "gateway"


def test_connection_error_is_network_error():
    def refuse(request):
        raise httpx.ConnectError("refused", request=request)

    client = RelayClient(SettingsStub(), transport=httpx.MockTransport(refuse))
    with pytest.raises(NetworkError):
        asyncio.run(client.open(_request()))


def test_generator_single_shot():
    rec = Recorder(
        httpx.Response(
            200,
            json={"candidates": [{"content": {"parts": [{"text": "Hel"}, {"text": "lo"}]}}]},
        )
    )
    client = GeneratorClient(SettingsStub(), transport=httpx.MockTransport(rec))

    text = asyncio.run(client.open(_request()))

    assert text == "Hello"
    sent = rec.requests[0]
    assert str(sent.url) == "https://generator.test/v1beta/models/gen-model:generateContent"
    assert sent.headers["x-goog-api-key"] == "gen-key"
    prompt = json.loads(sent.content)["contents"][0]["parts"][0]["text"]
    assert prompt == "system: ground\nuser: hi"


def test_generator_empty_candidates_is_empty_text():
    client = GeneratorClient(
        SettingsStub(),
        transport=httpx.MockTransport(Recorder(httpx.Response(200, json={"candidates": []}))),
    )
    assert asyncio.run(client.open(_request())) == ""


def test_generator_errors():
    for response, exc_type in [
        (httpx.Response(429), RateLimitError),
        (httpx.Response(400, text="bad"), ApiError),
    ]:
        client = GeneratorClient(SettingsStub(), transport=httpx.MockTransport(Recorder(response)))
        with pytest.raises(exc_type):
            asyncio.run(client.open(_request()))


def _tracking_clients(monkeypatch, client):
    created = []
    original = client._new_client

    def tracking():
        c = original()
        created.append(c)
        return c

    monkeypatch.setattr(client, "_new_client", tracking)
    return created


def test_timeout_during_connect_closes_client(monkeypatch):
    async def slow(request):
        await asyncio.sleep(5)
        return httpx.Response(200, content=b"data: [DONE]\n\n")

    client = GatewayClient(SettingsStub(), transport=httpx.MockTransport(slow))
    created = _tracking_clients(monkeypatch, client)

    async def scenario():
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(client.open(_request()), timeout=0.05)

    asyncio.run(scenario())
    assert len(created) == 1
    assert created[0].is_closed


def test_error_status_closes_client(monkeypatch):
    client = GatewayClient(
        SettingsStub(),
        transport=httpx.MockTransport(Recorder(httpx.Response(500, text="boom"))),
    )
    created = _tracking_clients(monkeypatch, client)
    with pytest.raises(ApiError):
        asyncio.run(client.open(_request()))
    assert created[0].is_closed
