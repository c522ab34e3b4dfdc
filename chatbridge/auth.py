"""Shared-secret authentication for the chat-completions bridge.

Callers present the service key as ``Authorization: Bearer <key>`` or as the
raw header value. Keys are compared by SHA-256 digest in constant time.
"""

import hashlib
import hmac
from typing import Optional

from chatbridge.errors import AuthenticationError, ConfigurationError

BEARER_PREFIX = "Bearer "


def hash_api_key(raw_key: str) -> str:
    """Compute the hex SHA-256 digest of a key."""
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def extract_token(header_value: str) -> str:
    if header_value.startswith(BEARER_PREFIX):
        return header_value[len(BEARER_PREFIX):]
    return header_value


def validate_service_key(header_value: Optional[str], service_key: Optional[str]) -> None:
    """Check an Authorization header against the configured service key.

    Args:
        header_value: The raw Authorization header (may be None).
        service_key: The configured shared secret (may be None).

    Raises:
        ConfigurationError: If no service key is configured.
        AuthenticationError: If the header is missing or does not match.
    """
    if not service_key:
        raise ConfigurationError("SERVICE_API_KEY not configured")
    if not header_value:
        raise AuthenticationError("Missing Authorization header")

    incoming = hash_api_key(extract_token(header_value))
    if not hmac.compare_digest(incoming, hash_api_key(service_key)):
        raise AuthenticationError("Invalid API key")
