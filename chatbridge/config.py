"""Configuration loader for the chat-completions bridge.

All settings come from environment variables and are frozen into a single
ProxyConfig value at startup. Missing upstream endpoints or keys are not load
errors; they are reported per request as configuration errors.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

DEFAULT_CLAUDE_DEPLOYMENT = "claude-opus-4-5"
DEFAULT_ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_GPT_MODEL = "gpt-5.3-codex"
DEFAULT_PORT = 8080
DEFAULT_UPSTREAM_TIMEOUT = 300.0

GPT_MODE_CHAT_COMPLETIONS = "chat_completions"
GPT_MODE_RESPONSES = "responses"

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class ProxyConfig:
    """Immutable bridge configuration."""

    claude_endpoint: Optional[str] = None
    claude_api_key: Optional[str] = None
    claude_deployment: str = DEFAULT_CLAUDE_DEPLOYMENT
    anthropic_version: str = DEFAULT_ANTHROPIC_VERSION

    gpt_endpoint: Optional[str] = None
    gpt_api_key: Optional[str] = None
    gpt_model: str = DEFAULT_GPT_MODEL
    gpt_mode: str = GPT_MODE_CHAT_COMPLETIONS
    gpt_buffered_stream: bool = False

    service_api_key: Optional[str] = None
    port: int = DEFAULT_PORT
    upstream_timeout: float = DEFAULT_UPSTREAM_TIMEOUT
    log_file: Optional[str] = None

    @property
    def gpt_passthrough(self) -> bool:
        """True when GPT requests are forwarded as raw Chat Completions."""
        return self.gpt_mode == GPT_MODE_CHAT_COMPLETIONS

    @property
    def gpt_chat_endpoint(self) -> str:
        """The Chat Completions URL derived from the configured GPT endpoint."""
        return (self.gpt_endpoint or "").replace(
            "/openai/responses", "/openai/chat/completions"
        )


def _optional(environ: Mapping[str, str], name: str) -> Optional[str]:
    value = environ.get(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def load_config(environ: Optional[Mapping[str, str]] = None) -> ProxyConfig:
    """Build a ProxyConfig from environment variables.

    Args:
        environ: Mapping to read from. Defaults to ``os.environ``.

    Returns:
        A frozen ProxyConfig.

    Raises:
        ValueError: If PORT or UPSTREAM_TIMEOUT is not a number.
    """
    if environ is None:
        environ = os.environ

    port_raw = _optional(environ, "PORT")
    timeout_raw = _optional(environ, "UPSTREAM_TIMEOUT")
    try:
        port = int(port_raw) if port_raw else DEFAULT_PORT
    except ValueError:
        raise ValueError(f"PORT must be an integer, got {port_raw!r}")
    try:
        timeout = float(timeout_raw) if timeout_raw else DEFAULT_UPSTREAM_TIMEOUT
    except ValueError:
        raise ValueError(f"UPSTREAM_TIMEOUT must be a number, got {timeout_raw!r}")

    # GPT_USE_CHAT_COMPLETIONS is on unless explicitly "0".
    if environ.get("GPT_USE_CHAT_COMPLETIONS", "").strip() == "0":
        gpt_mode = GPT_MODE_RESPONSES
    else:
        gpt_mode = GPT_MODE_CHAT_COMPLETIONS

    buffered = environ.get("GPT_BUFFERED_STREAM", "").strip().lower() in _TRUTHY

    return ProxyConfig(
        claude_endpoint=_optional(environ, "AZURE_ENDPOINT"),
        claude_api_key=_optional(environ, "AZURE_API_KEY"),
        claude_deployment=_optional(environ, "AZURE_DEPLOYMENT_NAME")
        or DEFAULT_CLAUDE_DEPLOYMENT,
        anthropic_version=_optional(environ, "ANTHROPIC_VERSION")
        or DEFAULT_ANTHROPIC_VERSION,
        gpt_endpoint=_optional(environ, "AZURE_OPENAI_ENDPOINT"),
        gpt_api_key=_optional(environ, "AZURE_OPENAI_API_KEY"),
        gpt_model=_optional(environ, "AZURE_OPENAI_MODEL") or DEFAULT_GPT_MODEL,
        gpt_mode=gpt_mode,
        gpt_buffered_stream=buffered,
        service_api_key=_optional(environ, "SERVICE_API_KEY"),
        port=port,
        upstream_timeout=timeout,
        log_file=_optional(environ, "LOG_FILE"),
    )
