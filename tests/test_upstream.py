"""Tests for the outbound HTTP client and its error mapping."""

import httpx
import pytest

from chatbridge.errors import UpstreamAPIError, UpstreamConnectionError
from chatbridge.upstream import (
    UpstreamClient,
    claude_headers,
    decode_error_body,
    error_message,
    gpt_headers,
)
from conftest import FakeUpstream, make_config

URL = "https://upstream.example.com/v1/messages"


def test_claude_headers() -> None:
    config = make_config()
    assert claude_headers(config) == {
        "Content-Type": "application/json",
        "x-api-key": "claude-key",
        "anthropic-version": "2023-06-01",
    }
    assert claude_headers(config, "2024-10-22")["anthropic-version"] == "2024-10-22"


def test_gpt_headers_carry_both_credentials() -> None:
    headers = gpt_headers(make_config())
    assert headers["Authorization"] == "Bearer gpt-key"
    assert headers["api-key"] == "gpt-key"


@pytest.mark.parametrize(
    "body,expected",
    [
        ({"error": {"message": "nested"}}, "nested"),
        ({"error": "flat"}, "flat"),
        ({"message": "top level"}, "top level"),
        ({"detail": "unknown shape"}, "fallback"),
        ("plain text", "plain text"),
        ("", "fallback"),
        (None, "fallback"),
    ],
)
def test_error_message(body: object, expected: str) -> None:
    assert error_message(body, "fallback") == expected


def test_decode_error_body() -> None:
    assert decode_error_body(b'{"error": "x"}') == {"error": "x"}
    assert decode_error_body(b"<html>bad gateway</html>") == "<html>bad gateway</html>"


@pytest.mark.asyncio
async def test_post_json_success(fake_upstream: FakeUpstream) -> None:
    fake_upstream.respond_json({"ok": True})
    client = UpstreamClient(timeout=5.0, transport=fake_upstream.transport)

    data = await client.post_json(URL, {"q": 1}, {"x-api-key": "k"})

    assert data == {"ok": True}
    assert fake_upstream.last_json() == {"q": 1}
    assert fake_upstream.requests[0].headers["x-api-key"] == "k"


@pytest.mark.asyncio
async def test_post_json_error_status(fake_upstream: FakeUpstream) -> None:
    fake_upstream.respond_json({"error": {"message": "rate limited"}}, status=429)
    client = UpstreamClient(timeout=5.0, transport=fake_upstream.transport)

    with pytest.raises(UpstreamAPIError) as info:
        await client.post_json(URL, {}, {}, "Claude API error")

    assert info.value.status_code == 429
    assert info.value.detail == "rate limited"
    assert info.value.body == {"error": {"message": "rate limited"}}


@pytest.mark.asyncio
async def test_post_json_error_without_message_uses_fallback(fake_upstream: FakeUpstream) -> None:
    fake_upstream.respond_json({}, status=500)
    client = UpstreamClient(timeout=5.0, transport=fake_upstream.transport)

    with pytest.raises(UpstreamAPIError, match="GPT API error"):
        await client.post_json(URL, {}, {}, "GPT API error")


@pytest.mark.asyncio
async def test_post_json_non_json_body(fake_upstream: FakeUpstream) -> None:
    fake_upstream.responder = lambda request: httpx.Response(200, text="not json")
    client = UpstreamClient(timeout=5.0, transport=fake_upstream.transport)

    with pytest.raises(UpstreamAPIError) as info:
        await client.post_json(URL, {}, {})
    assert info.value.status_code == 502


@pytest.mark.asyncio
@pytest.mark.parametrize("failure", [httpx.ConnectError, httpx.ReadTimeout])
async def test_transport_failures_become_connection_errors(
    fake_upstream: FakeUpstream, failure: type
) -> None:
    def fail(request: httpx.Request) -> httpx.Response:
        raise failure("upstream gone", request=request)

    fake_upstream.responder = fail
    client = UpstreamClient(timeout=5.0, transport=fake_upstream.transport)

    with pytest.raises(UpstreamConnectionError, match="Unable to reach API") as info:
        await client.post_json(URL, {}, {})
    assert info.value.status_code == 503

    with pytest.raises(UpstreamConnectionError):
        await client.open_stream(URL, {}, {})


@pytest.mark.asyncio
async def test_open_stream_yields_body(fake_upstream: FakeUpstream) -> None:
    body = fake_upstream.respond_stream([b"data: one\n", b"\ndata: two\n\n"])
    client = UpstreamClient(timeout=5.0, transport=fake_upstream.transport)

    stream = await client.open_stream(URL, {"stream": True}, {})
    try:
        assert stream.response.status_code == 200
        text = "".join([piece async for piece in stream.aiter_text()])
    finally:
        await stream.aclose()

    assert text == "data: one\n\ndata: two\n\n"
    assert body.closed


@pytest.mark.asyncio
async def test_open_stream_error_is_drained_and_closed(fake_upstream: FakeUpstream) -> None:
    body = fake_upstream.respond_stream([b'{"error": {"message": ', b'"bad key"}}'], status=401)
    client = UpstreamClient(timeout=5.0, transport=fake_upstream.transport)

    with pytest.raises(UpstreamAPIError) as info:
        await client.open_stream(URL, {}, {})

    assert info.value.status_code == 401
    assert info.value.detail == "bad key"
    assert body.closed
