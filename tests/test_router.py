"""Tests for the model router."""

import pytest

from chatbridge.router import Vendor, resolve_vendor


@pytest.mark.parametrize(
    "model_name",
    ["gpt-4o", "GPT-5.3-Codex", "openai/gpt", "o1-preview", "o3-mini", "codex-mini"],
)
def test_gpt_keywords_route_to_gpt(model_name: str) -> None:
    assert resolve_vendor(model_name) is Vendor.GPT


@pytest.mark.parametrize(
    "model_name",
    ["claude-opus-4-5", "Anthropic/Claude", "llama-3", "mistral-large"],
)
def test_other_models_route_to_claude(model_name: str) -> None:
    assert resolve_vendor(model_name) is Vendor.CLAUDE


@pytest.mark.parametrize("model_name", [None, ""])
def test_empty_model_defaults_to_claude(model_name: object) -> None:
    assert resolve_vendor(model_name) is Vendor.CLAUDE


def test_gpt_keywords_checked_first() -> None:
    """A name matching both keyword sets goes to GPT."""
    assert resolve_vendor("claude-vs-gpt-eval") is Vendor.GPT


def test_routing_is_deterministic() -> None:
    assert resolve_vendor("claude-sonnet") == resolve_vendor("claude-sonnet")
