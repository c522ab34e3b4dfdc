"""Outbound HTTP calls to the Claude and GPT upstreams.

Calls are made once, never retried. Transport failures and timeouts become
UpstreamConnectionError; error statuses become UpstreamAPIError carrying the
upstream status and message.
"""

import json
import logging
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from chatbridge.config import ProxyConfig
from chatbridge.errors import UpstreamAPIError, UpstreamConnectionError

logger = logging.getLogger("chatbridge")


def claude_headers(config: ProxyConfig, anthropic_version: Optional[str] = None) -> Dict[str, str]:
    return {
        "Content-Type": "application/json",
        "x-api-key": config.claude_api_key or "",
        "anthropic-version": anthropic_version or config.anthropic_version,
    }


def gpt_headers(config: ProxyConfig) -> Dict[str, str]:
    return {
        "Content-Type": "application/json",
        "Authorization": "Bearer {}".format(config.gpt_api_key or ""),
        "api-key": config.gpt_api_key or "",
    }


def decode_error_body(raw: bytes) -> Any:
    """Parse an error body as JSON, falling back to its text."""
    text = raw.decode("utf-8", errors="replace")
    try:
        return json.loads(text)
    except ValueError:
        return text


def error_message(body: Any, fallback: str) -> str:
    """Pull a human-readable message out of an upstream error body."""
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
        if body.get("message"):
            return str(body["message"])
        return fallback
    if isinstance(body, str) and body:
        return body
    return fallback


class UpstreamStream:
    """An open streaming upstream response.

    aclose() must be called once the caller is done (or gone) so the
    upstream connection is released.
    """

    def __init__(self, client: httpx.AsyncClient, response: httpx.Response) -> None:
        self._client = client
        self.response = response

    def aiter_text(self) -> AsyncIterator[str]:
        return self.response.aiter_text()

    def aiter_bytes(self) -> AsyncIterator[bytes]:
        return self.response.aiter_bytes()

    async def aclose(self) -> None:
        try:
            await self.response.aclose()
        finally:
            await self._client.aclose()


class UpstreamClient:
    """Thin httpx wrapper with the bridge's error mapping.

    Args:
        timeout: Ceiling in seconds for each outbound call.
        transport: Optional httpx transport (tests pass a MockTransport).
    """

    def __init__(
        self,
        timeout: float,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self.transport)

    async def post_json(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Dict[str, str],
        fallback_error: str = "Upstream API error",
    ) -> Any:
        """POST a JSON body and return the parsed JSON response.

        Raises:
            UpstreamAPIError: If the upstream answers with status >= 400.
            UpstreamConnectionError: If the upstream cannot be reached.
        """
        try:
            async with self._client() as client:
                resp = await client.post(url, json=payload, headers=headers)
        except httpx.TransportError as exc:
            logger.error("Upstream unreachable: %s", exc)
            raise UpstreamConnectionError("Unable to reach API") from exc

        if resp.status_code >= 400:
            body = decode_error_body(resp.content)
            raise UpstreamAPIError(resp.status_code, error_message(body, fallback_error), body)

        try:
            return resp.json()
        except ValueError as exc:
            raise UpstreamAPIError(502, "Upstream returned a non-JSON body") from exc

    async def open_stream(
        self,
        url: str,
        payload: Dict[str, Any],
        headers: Dict[str, str],
        fallback_error: str = "Upstream API error",
    ) -> UpstreamStream:
        """POST a JSON body and return the still-open streaming response.

        An error status is drained completely before raising, so the caller
        receives the whole upstream message.

        Raises:
            UpstreamAPIError: If the upstream answers with status >= 400.
            UpstreamConnectionError: If the upstream cannot be reached.
        """
        client = self._client()
        try:
            request = client.build_request("POST", url, json=payload, headers=headers)
            response = await client.send(request, stream=True)
        except httpx.TransportError as exc:
            await client.aclose()
            logger.error("Upstream unreachable: %s", exc)
            raise UpstreamConnectionError("Unable to reach API") from exc

        stream = UpstreamStream(client, response)
        if response.status_code >= 400:
            try:
                raw = await response.aread()
            except httpx.TransportError:
                raw = b""
            finally:
                await stream.aclose()
            body = decode_error_body(raw)
            raise UpstreamAPIError(response.status_code, error_message(body, fallback_error), body)
        return stream
