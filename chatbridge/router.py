"""Routing: decide which upstream vendor serves a requested model name.

The decision is a keyword match on the lower-cased model name. GPT keywords
are checked first; anything unmatched (including an empty name) goes to
Claude.
"""

from enum import Enum
from typing import Optional


class Vendor(str, Enum):
    """Upstream vendor families."""

    CLAUDE = "claude"
    GPT = "gpt"


GPT_KEYWORDS = ("gpt", "openai", "codex", "o1", "o3")
CLAUDE_KEYWORDS = ("claude", "anthropic")


def resolve_vendor(model_name: Optional[str]) -> Vendor:
    """Resolve a requested model name to a vendor.

    Args:
        model_name: The caller-supplied model name (may be empty or None).

    Returns:
        Vendor.GPT if any GPT keyword occurs in the name, else Vendor.CLAUDE.
    """
    if not model_name:
        return Vendor.CLAUDE

    lowered = model_name.lower()
    if any(keyword in lowered for keyword in GPT_KEYWORDS):
        return Vendor.GPT
    if any(keyword in lowered for keyword in CLAUDE_KEYWORDS):
        return Vendor.CLAUDE
    return Vendor.CLAUDE
