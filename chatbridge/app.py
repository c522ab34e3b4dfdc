"""FastAPI application for the chat-completions bridge.

Accepts OpenAI-style chat completion requests and serves them from one of two
upstreams:

1. Claude-family models go to the Claude messages API, with the request,
   the buffered response and the event stream all transcoded.
2. GPT-family models go to the GPT gateway, either forwarded as raw Chat
   Completions (passthrough mode) or rebuilt as a Responses request.

/v1/messages forwards native Claude requests without transcoding.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Iterable, Optional, Tuple, Union

import httpx
from fastapi import Body, Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from starlette.background import BackgroundTask
from starlette.exceptions import HTTPException as StarletteHTTPException

from chatbridge.auth import validate_service_key
from chatbridge.claude import from_claude, to_claude
from chatbridge.config import ProxyConfig, load_config
from chatbridge.errors import (
    ConfigurationError,
    InvalidRequestError,
    ProxyError,
    UpstreamAPIError,
)
from chatbridge.gpt import from_gpt, passthrough_body, to_gpt_responses
from chatbridge.ids import IdGenerator
from chatbridge.messages import fix_image_turns, has_usable_input
from chatbridge.models import ChatRequest, ErrorDetail, ErrorResponse
from chatbridge.router import Vendor, resolve_vendor
from chatbridge.streaming import ClaudeRechunker, ResponsesRechunker, replay_completion
from chatbridge.telemetry import log_request, setup_logging
from chatbridge.upstream import UpstreamClient, UpstreamStream, claude_headers, gpt_headers

logger = logging.getLogger("chatbridge")

SERVICE_NAME = "Multi-Model Chat Bridge (Claude + GPT)"
VERSION = "5.0.0"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

_config: Optional[ProxyConfig] = None


def get_config() -> ProxyConfig:
    """Return the process configuration (built once from the environment)."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def get_upstream(config: ProxyConfig = Depends(get_config)) -> UpstreamClient:
    """Return an upstream client bounded by the configured timeout."""
    return UpstreamClient(timeout=config.upstream_timeout)


def get_ids() -> IdGenerator:
    return IdGenerator()


async def require_service_key(
    authorization: Optional[str] = Header(default=None),
    config: ProxyConfig = Depends(get_config),
) -> None:
    """Reject requests that do not carry the shared service key."""
    validate_service_key(authorization, config.service_api_key)


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Load configuration and logging on startup."""
    cfg = get_config()
    setup_logging(cfg.log_file)
    logger.info("%s v%s listening on port %d", SERVICE_NAME, VERSION, cfg.port)
    logger.info("Claude: %s", "configured" if cfg.claude_api_key else "MISSING")
    logger.info("GPT: %s (%s mode)", "configured" if cfg.gpt_api_key else "MISSING", cfg.gpt_mode)
    if cfg.gpt_passthrough:
        logger.info("GPT chat endpoint: %s", cfg.gpt_chat_endpoint)
    yield


app = FastAPI(title=SERVICE_NAME, version=VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "x-api-key", "anthropic-version"],
)


@app.middleware("http")
async def log_inbound(request: Request, call_next: Any) -> Response:
    logger.info("[%s] %s", request.method, request.url.path)
    return await call_next(request)


def _error_response(status: int, error_type: str, message: str) -> JSONResponse:
    """Build a consistent JSON error response."""
    body = ErrorResponse(error=ErrorDetail(type=error_type, message=message))
    return JSONResponse(status_code=status, content=body.model_dump())


@app.exception_handler(ProxyError)
async def proxy_error_handler(request: Request, exc: ProxyError) -> JSONResponse:
    return _error_response(exc.status_code, exc.error_type, exc.detail)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Convert FastAPI's validation errors into our error envelope format."""
    return _error_response(
        400,
        "invalid_request_error",
        "Request validation failed: {}".format(exc.errors()),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    if exc.status_code in (404, 405):
        return _error_response(404, "not_found", "Endpoint not found")
    return _error_response(exc.status_code, "proxy_error", str(exc.detail))


def _stream_response(
    frames: Union[AsyncIterator[Any], Iterable[Any]],
    upstream_stream: Optional[UpstreamStream] = None,
    label: str = "",
) -> StreamingResponse:
    """Wrap outgoing frames in an SSE response.

    The upstream stream is closed when the body finishes, fails, or the
    caller disconnects. Headers are already out by the time the body runs,
    so a mid-stream upstream failure just ends the connection.
    """
    if upstream_stream is None:
        return StreamingResponse(frames, media_type="text/event-stream", headers=SSE_HEADERS)

    async def body() -> AsyncIterator[Any]:
        try:
            async for frame in frames:
                yield frame
        except httpx.HTTPError as exc:
            logger.error("[%s] Stream error: %s", label, exc)
        finally:
            await upstream_stream.aclose()
            logger.info("[%s] Stream ended", label)

    return StreamingResponse(
        body(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
        background=BackgroundTask(upstream_stream.aclose),
    )


@app.get("/")
async def index(config: ProxyConfig = Depends(get_config)) -> Dict[str, Any]:
    return {
        "status": "running",
        "name": SERVICE_NAME,
        "version": VERSION,
        "endpoints": {
            "health": "/health",
            "chat_cursor": "/chat/completions",
            "chat_openai": "/v1/chat/completions",
            "chat_anthropic": "/v1/messages",
        },
        "models": {
            "claude": "configured" if config.claude_endpoint else "not configured",
            "gpt": "configured" if config.gpt_endpoint else "not configured",
        },
    }


@app.get("/health")
async def health(config: ProxyConfig = Depends(get_config)) -> Dict[str, Any]:
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "claude": bool(config.claude_api_key),
        "gpt": bool(config.gpt_api_key),
        "port": config.port,
    }


@app.options("/{path:path}")
async def preflight(path: str) -> Response:
    return Response(status_code=200)


# A vendor handler's response plus the token usage it reported, when known.
Handled = Tuple[Response, Optional[Dict[str, Any]]]


def _usage_of(data: Any) -> Optional[Dict[str, Any]]:
    if isinstance(data, dict) and isinstance(data.get("usage"), dict):
        return data["usage"]
    return None


async def _handle_claude(
    payload: Dict[str, Any],
    model_name: str,
    stream: bool,
    config: ProxyConfig,
    upstream: UpstreamClient,
    ids: IdGenerator,
) -> Handled:
    if not config.claude_api_key:
        raise ConfigurationError("Claude API key not configured")
    if not config.claude_endpoint:
        raise ConfigurationError("Claude endpoint not configured")

    claude_payload = to_claude(payload, config.claude_deployment)
    logger.info(
        "[CLAUDE] Model: %s Tools: %d",
        claude_payload["model"],
        len(claude_payload.get("tools") or []),
    )
    headers = claude_headers(config)

    if stream:
        upstream_stream = await upstream.open_stream(
            config.claude_endpoint, claude_payload, headers, "Claude API error"
        )
        rechunker = ClaudeRechunker(model_name or config.claude_deployment, ids)
        return _stream_response(
            rechunker.stream(upstream_stream.aiter_text()), upstream_stream, "CLAUDE"
        ), None

    data = await upstream.post_json(
        config.claude_endpoint, claude_payload, headers, "Claude API error"
    )
    completion = from_claude(data, ids)
    return JSONResponse(completion.to_dict()), completion.usage.model_dump()


async def _handle_gpt(
    payload: Dict[str, Any],
    model_name: str,
    stream: bool,
    config: ProxyConfig,
    upstream: UpstreamClient,
    ids: IdGenerator,
) -> Handled:
    if not config.gpt_api_key:
        raise ConfigurationError("GPT API key not configured (AZURE_OPENAI_API_KEY)")
    if not config.gpt_endpoint:
        raise ConfigurationError("GPT endpoint not configured (AZURE_OPENAI_ENDPOINT)")

    headers = gpt_headers(config)

    if config.gpt_passthrough:
        forward = passthrough_body(payload, config.gpt_model)
        url = config.gpt_chat_endpoint
        logger.info(
            "[GPT][PASSTHROUGH] Model: %s Messages: %d Tools: %d tool_choice: %s",
            config.gpt_model,
            len(payload.get("messages") or []),
            len(payload.get("tools") or []),
            payload.get("tool_choice") or "(none)",
        )
        if stream:
            upstream_stream = await upstream.open_stream(url, forward, headers, "GPT API error")
            return _stream_response(upstream_stream.aiter_bytes(), upstream_stream, "GPT"), None
        data = await upstream.post_json(url, forward, headers, "GPT API error")
        return JSONResponse(data), _usage_of(data)

    gpt_payload = to_gpt_responses(payload, config.gpt_model)
    logger.info(
        "[GPT] Model: %s Input items: %d Tools: %d",
        gpt_payload["model"],
        len(gpt_payload["input"]),
        len(gpt_payload.get("tools") or []),
    )

    if stream and not config.gpt_buffered_stream:
        upstream_stream = await upstream.open_stream(
            config.gpt_endpoint, gpt_payload, headers, "GPT API error"
        )
        rechunker = ResponsesRechunker(model_name or config.gpt_model, ids)
        return _stream_response(
            rechunker.stream(upstream_stream.aiter_text()), upstream_stream, "GPT"
        ), None

    if stream:
        gpt_payload["stream"] = False
    data = await upstream.post_json(config.gpt_endpoint, gpt_payload, headers, "GPT API error")
    completion = from_gpt(data, ids, default_model=config.gpt_model)
    if stream:
        return _stream_response(replay_completion(completion)), completion.usage.model_dump()
    return JSONResponse(completion.to_dict()), completion.usage.model_dump()


@app.post(
    "/chat/completions",
    response_model=None,
    dependencies=[Depends(require_service_key)],
)
@app.post(
    "/v1/chat/completions",
    response_model=None,
    dependencies=[Depends(require_service_key)],
)
async def chat_completions(
    request: Request,
    body: ChatRequest,
    config: ProxyConfig = Depends(get_config),
    upstream: UpstreamClient = Depends(get_upstream),
    ids: IdGenerator = Depends(get_ids),
) -> Response:
    """Handle an OpenAI-style chat completion request.

    Request flow:
    1. Check the body carries messages, content or input
    2. Drop assistant turns that precede image turns
    3. Route the model name to a vendor
    4. Transcode, call the upstream, and reshape the result
    """
    request_id = ids.request_id()
    payload = body.to_payload()
    model_name = payload.get("model") or ""
    vendor = resolve_vendor(model_name)
    stream = payload.get("stream") is True
    tool_count = len(payload.get("tools") or [])

    logger.info(
        "Model: %s Route: %s Stream: %s Tools: %d",
        model_name,
        vendor.value,
        stream,
        tool_count,
    )

    def _log(
        outcome: str,
        error: Optional[str] = None,
        usage: Optional[Dict[str, Any]] = None,
    ) -> None:
        log_request(
            request_id=request_id,
            route=request.url.path,
            vendor=vendor.value,
            model=model_name,
            outcome=outcome,
            stream=stream,
            tools=tool_count,
            usage=usage,
            error=error,
        )

    try:
        if not has_usable_input(payload):
            raise InvalidRequestError("Invalid request: must include messages")
        if isinstance(payload.get("messages"), list):
            payload["messages"] = fix_image_turns(payload["messages"])

        if vendor is Vendor.GPT:
            response, usage = await _handle_gpt(payload, model_name, stream, config, upstream, ids)
        else:
            response, usage = await _handle_claude(payload, model_name, stream, config, upstream, ids)
    except ProxyError as exc:
        _log(exc.error_type, exc.detail)
        return _error_response(exc.status_code, exc.error_type, exc.detail)
    except Exception as exc:
        logger.exception("Unhandled error for request %s", request_id)
        _log("proxy_error", str(exc))
        return _error_response(500, "proxy_error", str(exc))

    _log("success", usage=usage)
    return response


@app.post(
    "/v1/messages",
    response_model=None,
    dependencies=[Depends(require_service_key)],
)
async def anthropic_messages(
    request: Request,
    body: Dict[str, Any] = Body(...),
    config: ProxyConfig = Depends(get_config),
    upstream: UpstreamClient = Depends(get_upstream),
) -> Response:
    """Forward a native Claude messages request without transcoding."""
    if not config.claude_api_key:
        raise ConfigurationError("Claude API key not configured")
    if not config.claude_endpoint:
        raise ConfigurationError("Claude endpoint not configured")

    headers = claude_headers(config, request.headers.get("anthropic-version"))
    try:
        if body.get("stream") is True:
            upstream_stream = await upstream.open_stream(config.claude_endpoint, body, headers)
            return _stream_response(upstream_stream.aiter_bytes(), upstream_stream, "MESSAGES")
        data = await upstream.post_json(config.claude_endpoint, body, headers)
    except UpstreamAPIError as exc:
        # Native callers get the upstream's own error body.
        if isinstance(exc.body, dict):
            return JSONResponse(status_code=exc.status_code, content=exc.body)
        raise
    return JSONResponse(data)
