"""Transcoding between OpenAI chat payloads and the Claude messages API.

to_claude() builds the upstream request body; from_claude() turns a
buffered upstream response back into a chat.completion.
"""

import json
import time
from typing import Any, Callable, Dict, List, Mapping, Optional

from chatbridge.errors import EmptyMessageSet, InvalidRequestFormat, TransformError
from chatbridge.ids import IdGenerator
from chatbridge.messages import parse_arguments, stringify, text_from_parts
from chatbridge.models import (
    AssistantMessage,
    ChatCompletion,
    Choice,
    FunctionCall,
    ToolCall,
    UsageInfo,
)

DEFAULT_MAX_TOKENS = 8192
SYSTEM_PREFIX = "System: "

# Optional request fields forwarded verbatim when present.
PASSTHROUGH_FIELDS = ("metadata", "stop_sequences", "top_p", "top_k")

_EMPTY_SCHEMA = {"type": "object", "properties": {}}

STOP_REASONS = {
    "tool_use": "tool_calls",
    "end_turn": "stop",
}


def _system_turn(content: Any) -> Dict[str, Any]:
    if isinstance(content, str):
        return {"role": "user", "content": SYSTEM_PREFIX + content}
    return {"role": "user", "content": content}


def _prefixed_system_turn(content: Any) -> Dict[str, Any]:
    # Outside the messages array a system turn is always flattened to prefixed text.
    text = text_from_parts(content) if isinstance(content, list) else stringify(content)
    return {"role": "user", "content": SYSTEM_PREFIX + text}


def _tool_result_turn(message: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "role": "user",
        "content": [
            {
                "type": "tool_result",
                "tool_use_id": message.get("tool_call_id") or message.get("name"),
                "content": stringify(message.get("content")),
            }
        ],
    }


def _tool_use_turn(message: Mapping[str, Any]) -> Dict[str, Any]:
    blocks: List[Dict[str, Any]] = []
    if message.get("content"):
        blocks.append({"type": "text", "text": message["content"]})
    for call in message["tool_calls"]:
        if not isinstance(call, dict):
            continue
        function = call.get("function") or {}
        blocks.append(
            {
                "type": "tool_use",
                "id": call.get("id"),
                "name": function.get("name") or call.get("name"),
                "input": parse_arguments(function.get("arguments")),
            }
        )
    return {"role": "assistant", "content": blocks}


def _keep(message: Any) -> bool:
    # Empty-string content still counts as content.
    if not isinstance(message, dict):
        return False
    return message.get("content") is not None or bool(message.get("tool_calls"))


def convert_message(message: Mapping[str, Any]) -> Dict[str, Any]:
    """Convert one OpenAI chat message to a Claude turn."""
    role = message.get("role")
    if role == "system":
        return _system_turn(message.get("content"))
    if role in ("tool", "function"):
        return _tool_result_turn(message)
    if role == "assistant" and isinstance(message.get("tool_calls"), list):
        return _tool_use_turn(message)
    return {
        "role": "assistant" if role == "assistant" else "user",
        "content": message.get("content"),
    }


def _select_messages(body: Mapping[str, Any]) -> List[Dict[str, Any]]:
    messages = body.get("messages")
    role = body.get("role")
    content = body.get("content")
    input_value = body.get("input")

    if isinstance(messages, list) and messages:
        return [convert_message(m) for m in messages if _keep(m)]

    if role and content:
        if role == "system":
            return [_prefixed_system_turn(content)]
        return [{"role": role, "content": content}]

    if input_value:
        if isinstance(input_value, list):
            converted = []
            for item in input_value:
                if not isinstance(item, dict) or "content" not in item:
                    continue
                if item.get("role") == "system":
                    converted.append(_prefixed_system_turn(item["content"]))
                else:
                    converted.append(
                        {
                            "role": "assistant" if item.get("role") == "assistant" else "user",
                            "content": item["content"],
                        }
                    )
            return converted
        return [{"role": "user", "content": input_value}]

    if content:
        return [{"role": "user", "content": content}]

    raise InvalidRequestFormat("Invalid request format")


def convert_tools(tools: List[Any]) -> List[Any]:
    """Map OpenAI function tools to Claude tools; other entries pass through."""
    converted = []
    for tool in tools:
        if isinstance(tool, dict) and tool.get("type") == "function":
            function = tool.get("function") or {}
            converted.append(
                {
                    "name": function.get("name"),
                    "description": function.get("description") or "",
                    "input_schema": function.get("parameters") or dict(_EMPTY_SCHEMA),
                }
            )
        else:
            converted.append(tool)
    return converted


def _apply_tool_choice(payload: Dict[str, Any], tool_choice: Any) -> None:
    if tool_choice == "auto":
        payload["tool_choice"] = {"type": "auto"}
    elif tool_choice == "none":
        payload.pop("tools", None)
    elif tool_choice == "required":
        payload["tool_choice"] = {"type": "any"}
    elif isinstance(tool_choice, dict):
        name = (tool_choice.get("function") or {}).get("name") or tool_choice.get("name")
        if name:
            payload["tool_choice"] = {"type": "tool", "name": name}


def to_claude(body: Mapping[str, Any], deployment: str) -> Dict[str, Any]:
    """Build a Claude messages request from an OpenAI-style chat body.

    The caller's model name is never forwarded; ``deployment`` replaces it.

    Args:
        body: The caller's chat request body.
        deployment: Fixed upstream deployment name.

    Returns:
        The Claude request payload.

    Raises:
        InvalidRequestFormat: If the body has no recognizable message shape.
        EmptyMessageSet: If no message survives filtering.
    """
    messages = _select_messages(body)
    if not messages:
        raise EmptyMessageSet("Invalid request: no valid messages found")

    payload: Dict[str, Any] = {
        "model": deployment,
        "messages": messages,
        "max_tokens": body.get("max_tokens")
        or body.get("max_output_tokens")
        or DEFAULT_MAX_TOKENS,
    }
    if body.get("temperature") is not None:
        payload["temperature"] = body["temperature"]
    if body.get("stream") is not None:
        payload["stream"] = body["stream"]

    tools = body.get("tools")
    if isinstance(tools, list) and tools:
        payload["tools"] = convert_tools(tools)

    if body.get("tool_choice"):
        _apply_tool_choice(payload, body["tool_choice"])

    for field in PASSTHROUGH_FIELDS:
        if body.get(field) is not None:
            payload[field] = body[field]

    system = body.get("system")
    if system is not None:
        payload["system"] = system if isinstance(system, list) else str(system)

    return payload


def map_stop_reason(stop_reason: Optional[str]) -> Optional[str]:
    return STOP_REASONS.get(stop_reason, stop_reason)


def from_claude(
    data: Any,
    ids: IdGenerator,
    clock: Callable[[], float] = time.time,
) -> ChatCompletion:
    """Convert a buffered Claude response into a chat.completion.

    Raises:
        TransformError: If the payload is not a well-formed Claude message.
    """
    try:
        return _completion_from_claude(data, ids, clock)
    except (AttributeError, TypeError, ValueError) as exc:
        raise TransformError("malformed upstream response ({})".format(exc)) from exc


def _completion_from_claude(
    data: Any, ids: IdGenerator, clock: Callable[[], float]
) -> ChatCompletion:
    if not isinstance(data, dict):
        raise TransformError("upstream response is not an object")
    content = data.get("content") or []
    if not isinstance(content, list):
        raise TransformError("upstream content is not a list")

    text = ""
    tool_calls: List[ToolCall] = []
    for block in content:
        if not isinstance(block, dict):
            raise TransformError("malformed content block")
        if block.get("type") == "text":
            text += block.get("text") or ""
        elif block.get("type") == "tool_use":
            tool_calls.append(
                ToolCall(
                    id=block.get("id") or ids.call_id(),
                    function=FunctionCall(
                        name=block.get("name") or "",
                        arguments=json.dumps(block.get("input", {})),
                    ),
                )
            )

    usage = data.get("usage") or {}
    return ChatCompletion(
        id=data.get("id") or ids.completion_id(),
        created=int(clock()),
        model=data.get("model"),
        choices=[
            Choice(
                message=AssistantMessage(
                    content=text or None,
                    tool_calls=tool_calls or None,
                ),
                finish_reason=map_stop_reason(data.get("stop_reason")),
            )
        ],
        usage=UsageInfo.from_counts(usage.get("input_tokens"), usage.get("output_tokens")),
    )
