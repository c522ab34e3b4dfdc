"""Helpers shared by the request transcoders."""

import json
from typing import Any, Dict, List, Mapping

TEXT_PART_TYPES = ("text", "input_text", "output_text")


def fix_image_turns(messages: Any) -> Any:
    """Drop an assistant turn that directly precedes an image-bearing message.

    Given ``[user(text), assistant(text), user(image)]`` the result is
    ``[user(text), user(image)]``. Anything that is not a list is returned
    unchanged.
    """
    if not isinstance(messages, list):
        return messages

    fixed: List[Any] = []
    for position, message in enumerate(messages):
        if position > 0 and _has_image(message) and fixed:
            previous = fixed[-1]
            if isinstance(previous, dict) and previous.get("role") == "assistant":
                fixed.pop()
        fixed.append(message)
    return fixed


def _has_image(message: Any) -> bool:
    if not isinstance(message, dict):
        return False
    content = message.get("content")
    if not isinstance(content, list):
        return False
    return any(
        isinstance(part, dict) and part.get("type") == "image_url" for part in content
    )


def text_from_parts(content: Any) -> str:
    """Flatten message content to plain text.

    Strings pass through. For a list of parts, only bare strings and
    text-typed parts are kept (images and other media are dropped), joined
    by newlines.
    """
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""

    texts = []
    for part in content:
        if isinstance(part, str):
            text = part
        elif isinstance(part, dict) and part.get("type") in TEXT_PART_TYPES:
            text = part.get("text") or ""
        else:
            text = ""
        if text:
            texts.append(text)
    return "\n".join(texts)


def parse_arguments(raw: Any) -> Dict[str, Any]:
    """Parse a tool call's arguments into an object.

    Unparseable or non-object arguments become ``{}`` rather than an error.
    """
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str) or not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


def stringify(content: Any) -> str:
    """Return content as a string, JSON-encoding anything structured."""
    if isinstance(content, str):
        return content
    return json.dumps(content)


def has_usable_input(body: Mapping[str, Any]) -> bool:
    """Whether the body carries messages, content or input at all."""
    if isinstance(body.get("messages"), list):
        return True
    return bool(body.get("content")) or bool(body.get("input"))
