"""Tests for shared-secret authentication."""

import pytest

from chatbridge.auth import extract_token, hash_api_key, validate_service_key
from chatbridge.errors import AuthenticationError, ConfigurationError


class TestHashApiKey:
    """Tests for the hash_api_key helper."""

    def test_deterministic(self) -> None:
        assert hash_api_key("test") == hash_api_key("test")

    def test_returns_hex_sha256(self) -> None:
        digest = hash_api_key("test")
        assert len(digest) == 64
        assert all(c in "0123456789abcdef" for c in digest)


def test_extract_token() -> None:
    assert extract_token("Bearer abc") == "abc"
    assert extract_token("abc") == "abc"


def test_bearer_token_accepted() -> None:
    validate_service_key("Bearer secret", "secret")


def test_raw_token_accepted() -> None:
    validate_service_key("secret", "secret")


def test_missing_header() -> None:
    with pytest.raises(AuthenticationError, match="Missing Authorization header") as info:
        validate_service_key(None, "secret")
    assert info.value.status_code == 401
    assert info.value.error_type == "authentication_error"


def test_wrong_key() -> None:
    with pytest.raises(AuthenticationError, match="Invalid API key"):
        validate_service_key("Bearer nope", "secret")


def test_unconfigured_service_key() -> None:
    with pytest.raises(ConfigurationError, match="SERVICE_API_KEY not configured") as info:
        validate_service_key("Bearer anything", None)
    assert info.value.status_code == 500
