from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from chat_dispatch.client import (
    RemoteConfig,
    RemoteReplyClient,
    ReplyTransportError,
    build_payload,
    create_from_config,
    extract_reply,
)


def _ok_body(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


def _run(handler, *args: str):
    """Call generate() once against a MockTransport-backed client."""
    async def go():
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        client = RemoteReplyClient(RemoteConfig(api_key="secret", model="m1", base_url="https://api.test/v1/models"), http=http)
        try:
            return await client.generate(*args)
        finally:
            await http.aclose()

    return asyncio.run(go())


def test_payload_shape():
    payload = build_payload("be nice", "a\nb", "hi")
    assert payload == {
        "contents": [{"parts": [{"text": "previous conversation: a\nb\nUser: hi"}]}],
        "systemInstruction": {"parts": [{"text": "be nice"}]},
    }


def test_generate_posts_payload_and_returns_text():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = request.url
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=_ok_body("vanakkam"))

    out = _run(handler, "persona text", "earlier", "hello")
    assert out == "vanakkam"
    assert seen["method"] == "POST"
    assert seen["url"].path == "/v1/models/m1:generateContent"
    assert seen["url"].params["key"] == "secret"
    assert seen["body"]["systemInstruction"]["parts"][0]["text"] == "persona text"
    assert seen["body"]["contents"][0]["parts"][0]["text"] == "previous conversation: earlier\nUser: hello"


def test_non_success_status_raises_transport_error():
    def handler(request):
        return httpx.Response(503, json={"error": "overloaded"})

    with pytest.raises(ReplyTransportError) as exc:
        _run(handler, "p", "", "hi")
    assert exc.value.status == 503


def test_network_failure_raises_transport_error():
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    with pytest.raises(ReplyTransportError) as exc:
        _run(handler, "p", "", "hi")
    assert exc.value.status is None


def test_undecodable_body_is_a_transport_failure():
    def handler(request):
        return httpx.Response(200, content=b"<html>oops</html>")

    with pytest.raises(ReplyTransportError):
        _run(handler, "p", "", "hi")


@pytest.mark.parametrize(
    "body",
    [
        {"candidates": []},
        {},
        {"candidates": [{"content": {"parts": []}}]},
        {"candidates": [{"content": {"parts": [{"text": ""}]}}]},
    ],
)
def test_missing_reply_text_returns_none(body):
    assert _run(lambda request: httpx.Response(200, json=body), "p", "", "hi") is None


def test_each_call_hits_the_endpoint():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=_ok_body("same"))

    async def go():
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        client = RemoteReplyClient(http=http)
        a = await client.generate("p", "", "hi")
        b = await client.generate("p", "", "hi")
        await http.aclose()
        return a, b

    assert asyncio.run(go()) == ("same", "same")
    assert len(calls) == 2


def test_extract_reply_ignores_non_mapping():
    assert extract_reply(["not", "a", "dict"]) is None


def test_create_from_config_reads_remote_section():
    client = create_from_config({"remote": {"model": "x", "api_key": "k", "timeout": 5}})
    assert client.config.model == "x"
    assert client.config.api_key == "k"
    assert client.config.timeout == 5.0
    asyncio.run(client.aclose())
