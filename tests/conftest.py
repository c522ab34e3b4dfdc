"""Shared test fixtures for the chat-completions bridge tests."""

import itertools
import json
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from chatbridge.config import ProxyConfig
from chatbridge.ids import IdGenerator

SERVICE_KEY = "test-service-key"
FIXED_TIME = 1700000000.0


def make_config(**overrides: Any) -> ProxyConfig:
    """Return a fully configured ProxyConfig with optional overrides."""
    values: Dict[str, Any] = {
        "claude_endpoint": "https://claude.example.com/v1/messages",
        "claude_api_key": "claude-key",
        "claude_deployment": "claude-deploy",
        "gpt_endpoint": "https://gpt.example.com/openai/responses?api-version=preview",
        "gpt_api_key": "gpt-key",
        "gpt_model": "gpt-deploy",
        "service_api_key": SERVICE_KEY,
    }
    values.update(overrides)
    return ProxyConfig(**values)


def deterministic_ids() -> IdGenerator:
    counter = itertools.count()
    return IdGenerator(token_factory=lambda: "tok{}".format(next(counter)))


class FakeUpstream:
    """Records outbound requests and answers them with a configurable responder."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.responder: Optional[Callable[[httpx.Request], httpx.Response]] = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        assert self.responder is not None, "no upstream response configured"
        return self.responder(request)

    def respond_json(self, body: Any, status: int = 200) -> None:
        self.responder = lambda request: httpx.Response(status, json=body)

    def respond_stream(self, chunks: List[bytes], status: int = 200) -> "TrackingStream":
        stream = TrackingStream(chunks)
        self.responder = lambda request: httpx.Response(
            status, stream=stream, headers={"content-type": "text/event-stream"}
        )
        return stream

    def last_json(self) -> Dict[str, Any]:
        return json.loads(self.requests[-1].content)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class TrackingStream(httpx.AsyncByteStream):
    """An upstream body that remembers whether it was closed."""

    def __init__(self, chunks: List[bytes]) -> None:
        self.chunks = chunks
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


def sse_payloads(text: str) -> List[Any]:
    """Parse an SSE body into decoded JSON payloads (``[DONE]`` kept as a string)."""
    payloads: List[Any] = []
    for frame in text.split("\n\n"):
        frame = frame.strip()
        if not frame.startswith("data: "):
            continue
        data = frame[len("data: "):]
        payloads.append(data if data == "[DONE]" else json.loads(data))
    return payloads


def assemble_stream(payloads: List[Any]) -> Dict[str, Any]:
    """Fold chunk payloads into a final message the way a chat client does."""
    content = ""
    calls: Dict[int, Dict[str, Any]] = {}
    finish_reason = None
    for payload in payloads:
        if payload == "[DONE]":
            continue
        choice = payload["choices"][0]
        delta = choice["delta"]
        if delta.get("content"):
            content += delta["content"]
        for fragment in delta.get("tool_calls") or []:
            call = calls.setdefault(
                fragment["index"], {"id": None, "name": "", "arguments": ""}
            )
            if fragment.get("id"):
                call["id"] = fragment["id"]
            function = fragment.get("function") or {}
            if function.get("name"):
                call["name"] = function["name"]
            call["arguments"] += function.get("arguments") or ""
        if choice.get("finish_reason"):
            finish_reason = choice["finish_reason"]
    return {
        "content": content or None,
        "tool_calls": [calls[i] for i in sorted(calls)],
        "finish_reason": finish_reason,
    }


@pytest.fixture()
def proxy_config() -> ProxyConfig:
    return make_config()


@pytest.fixture()
def ids() -> IdGenerator:
    return deterministic_ids()


@pytest.fixture()
def clock() -> Callable[[], float]:
    return lambda: FIXED_TIME


@pytest.fixture()
def fake_upstream() -> FakeUpstream:
    return FakeUpstream()
