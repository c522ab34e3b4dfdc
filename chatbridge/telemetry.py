"""Logging and telemetry for the chat-completions bridge.

Emits structured log records to stdout and, when configured, appends them to
an append-only log file for local review.
"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger("chatbridge")


def setup_logging(log_file: Optional[str] = None) -> None:
    """Configure the bridge logger with a stdout handler and optional file handler.

    Args:
        log_file: Path to an append-only log file, or None for stdout only.
    """
    logger.setLevel(logging.INFO)

    if not logger.handlers:
        fmt = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )
        stdout_handler = logging.StreamHandler()
        stdout_handler.setLevel(logging.INFO)
        stdout_handler.setFormatter(fmt)
        logger.addHandler(stdout_handler)

        if log_file:
            log_path = Path(log_file)
            os.makedirs(log_path.parent, exist_ok=True)
            file_handler = logging.FileHandler(log_path, mode="a")
            file_handler.setLevel(logging.INFO)
            file_handler.setFormatter(fmt)
            logger.addHandler(file_handler)


def log_request(
    *,
    request_id: str,
    route: str,
    vendor: Optional[str],
    model: Optional[str],
    outcome: str,
    stream: bool = False,
    tools: int = 0,
    usage: Optional[Dict[str, Any]] = None,
    error: Optional[str] = None
) -> None:
    """Log a single request event as one JSON line.

    Args:
        request_id: Bridge-assigned request ID.
        route: The inbound path.
        vendor: The resolved vendor (None if the request never got that far).
        model: The model name the caller asked for.
        outcome: Short outcome label (e.g. "success", "upstream_error").
        stream: Whether the caller asked for a stream.
        tools: Number of tools on the request.
        usage: Token usage dict if available.
        error: Error message if the request failed.
    """
    record: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "request_id": request_id,
        "route": route,
        "vendor": vendor,
        "model": model,
        "outcome": outcome,
        "stream": stream,
        "tools": tools,
    }

    if usage:
        record["usage"] = usage

    if error:
        record["error"] = error

    logger.info(json.dumps(record))
