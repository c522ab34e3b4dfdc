"""Transcoding between OpenAI chat payloads and the GPT gateway.

Two request modes exist. In passthrough mode the chat body is forwarded to a
Chat Completions endpoint with only the model swapped. In responses mode the
conversation is rebuilt as a Responses-style ``input`` item list with system
text moved into ``instructions``.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from chatbridge.errors import NoUsableInput, TransformError
from chatbridge.ids import IdGenerator
from chatbridge.messages import stringify, text_from_parts
from chatbridge.models import (
    AssistantMessage,
    ChatCompletion,
    Choice,
    FunctionCall,
    ToolCall,
    UsageInfo,
)

logger = logging.getLogger("chatbridge")

DEFAULT_MAX_OUTPUT_TOKENS = 16384
INSTRUCTION_ROLES = ("system", "developer")
TOOL_CHOICE_KEYWORDS = ("auto", "none", "required")

_EMPTY_SCHEMA = {"type": "object", "properties": {}}


def passthrough_body(body: Mapping[str, Any], model: str) -> Dict[str, Any]:
    """Return the chat body unchanged apart from the model name."""
    forwarded = dict(body)
    forwarded["model"] = model
    return forwarded


def _tool_output(content: Any) -> str:
    if isinstance(content, list):
        return text_from_parts(content) or stringify(content)
    if content is None:
        return ""
    return stringify(content)


class _InputBuilder:
    """Accumulates input items and instruction text for one request."""

    def __init__(self) -> None:
        self.items: List[Dict[str, Any]] = []
        self.instructions: Optional[str] = None

    def add_instructions(self, text: str) -> None:
        if not text:
            return
        if self.instructions:
            self.instructions = self.instructions + "\n" + text
        else:
            self.instructions = text

    def add_text(self, role: str, text: str) -> None:
        if text:
            self.items.append({"type": "message", "role": role, "content": text})

    def add_message(self, message: Mapping[str, Any]) -> None:
        role = message.get("role")
        if role in INSTRUCTION_ROLES:
            self.add_instructions(text_from_parts(message.get("content")))
        elif role == "user":
            self.add_text("user", text_from_parts(message.get("content")))
        elif role == "assistant":
            self.add_text("assistant", text_from_parts(message.get("content")))
            for call in message.get("tool_calls") or []:
                if not isinstance(call, dict):
                    continue
                function = call.get("function") or {}
                self.items.append(
                    {
                        "type": "function_call",
                        "call_id": call.get("id"),
                        "name": function.get("name") or call.get("name"),
                        "arguments": function.get("arguments") or "{}",
                    }
                )
        elif role in ("tool", "function"):
            self.items.append(
                {
                    "type": "function_call_output",
                    "call_id": message.get("tool_call_id"),
                    "output": _tool_output(message.get("content")),
                }
            )

    def add_input(self, input_value: Any) -> None:
        if isinstance(input_value, str):
            self.add_text("user", input_value)
            return
        if not isinstance(input_value, list):
            return
        for item in input_value:
            if not item:
                continue
            if isinstance(item, str):
                self.add_text("user", item)
                continue
            if not isinstance(item, dict):
                continue
            role = item.get("role") or ""
            text = text_from_parts(item.get("content"))
            if role in INSTRUCTION_ROLES:
                self.add_instructions(text)
            elif item.get("type") == "message" or role:
                self.add_text("assistant" if role == "assistant" else "user", text)

    def fold_instruction_items(self) -> None:
        """Move any system/developer message items into instructions."""
        kept = []
        for item in self.items:
            if item.get("type") == "message" and item.get("role") in INSTRUCTION_ROLES:
                self.add_instructions(text_from_parts(item.get("content")))
            else:
                kept.append(item)
        self.items = kept


def build_input_items(body: Mapping[str, Any]) -> Tuple[List[Dict[str, Any]], Optional[str]]:
    """Build the Responses ``input`` list and ``instructions`` for a chat body."""
    builder = _InputBuilder()
    messages = body.get("messages")
    if isinstance(messages, list):
        for message in messages:
            if isinstance(message, dict):
                builder.add_message(message)

    if (not builder.items or not isinstance(messages, list)) and body.get("input") is not None:
        builder.add_input(body["input"])

    builder.fold_instruction_items()
    return builder.items, builder.instructions


def convert_tools(tools: List[Any]) -> List[Dict[str, Any]]:
    """Normalize tools to flat Responses function tools.

    Accepts the nested ``function`` shape or a flat shape (with
    ``input_schema`` as a parameters fallback). Tools without a name are
    dropped.
    """
    converted = []
    for tool in tools:
        if not isinstance(tool, dict):
            continue
        function = tool.get("function")
        if tool.get("type") == "function" and isinstance(function, dict) and function.get("name"):
            source = function
        elif tool.get("name"):
            source = tool
        else:
            continue
        converted.append(
            {
                "type": "function",
                "name": source["name"],
                "description": source.get("description") or "",
                "parameters": source.get("parameters")
                or source.get("input_schema")
                or dict(_EMPTY_SCHEMA),
                "strict": False,
            }
        )
    return converted


def convert_tool_choice(tool_choice: Any) -> Optional[Any]:
    if tool_choice in TOOL_CHOICE_KEYWORDS:
        return tool_choice
    if isinstance(tool_choice, dict):
        name = (tool_choice.get("function") or {}).get("name") or tool_choice.get("name")
        if name:
            return {"type": "function", "name": name}
    return None


def to_gpt_responses(body: Mapping[str, Any], model: str) -> Dict[str, Any]:
    """Build a Responses-style request from an OpenAI-style chat body.

    Raises:
        NoUsableInput: If no input item survives normalization.
    """
    items, instructions = build_input_items(body)
    if not items:
        raise NoUsableInput("No usable input/messages for GPT request")

    payload: Dict[str, Any] = {
        "model": model,
        "input": items,
        "max_output_tokens": body.get("max_tokens")
        or body.get("max_output_tokens")
        or DEFAULT_MAX_OUTPUT_TOKENS,
    }
    if instructions:
        payload["instructions"] = instructions
    else:
        logger.warning("GPT request has no system prompt; model may not use tools")

    if body.get("temperature") is not None:
        payload["temperature"] = body["temperature"]
    if body.get("stream") is not None:
        payload["stream"] = body["stream"]

    tools = body.get("tools")
    if isinstance(tools, list) and tools:
        converted = convert_tools(tools)
        if converted:
            payload["tools"] = converted
            payload["tool_choice"] = "auto"

    if body.get("tool_choice"):
        choice = convert_tool_choice(body["tool_choice"])
        if choice is not None:
            payload["tool_choice"] = choice

    return payload


def from_gpt(
    data: Any,
    ids: IdGenerator,
    default_model: Optional[str] = None,
    clock: Callable[[], float] = time.time,
) -> ChatCompletion:
    """Convert a buffered Responses-style result into a chat.completion.

    Raises:
        TransformError: If the payload is not a well-formed response object.
    """
    try:
        return _completion_from_gpt(data, ids, default_model, clock)
    except (AttributeError, TypeError, ValueError) as exc:
        raise TransformError("malformed upstream response ({})".format(exc)) from exc


def _completion_from_gpt(
    data: Any,
    ids: IdGenerator,
    default_model: Optional[str],
    clock: Callable[[], float],
) -> ChatCompletion:
    if not isinstance(data, dict):
        raise TransformError("upstream response is not an object")
    output = data.get("output") or []
    if not isinstance(output, list):
        raise TransformError("upstream output is not a list")

    text = ""
    tool_calls: List[ToolCall] = []
    for item in output:
        if not isinstance(item, dict):
            raise TransformError("malformed output item")
        if item.get("type") == "message" and item.get("content"):
            content = item["content"]
            if isinstance(content, list):
                for part in content:
                    if isinstance(part, dict) and part.get("type") in ("output_text", "text"):
                        text += part.get("text") or ""
            elif isinstance(content, str):
                text += content
        elif item.get("type") == "function_call":
            tool_calls.append(
                ToolCall(
                    id=item.get("call_id") or item.get("id") or ids.call_id(),
                    function=FunctionCall(
                        name=item.get("name") or "",
                        arguments=item.get("arguments") or "{}",
                    ),
                )
            )

    usage = data.get("usage") or {}
    return ChatCompletion(
        id=data.get("id") or ids.completion_id(),
        created=int(clock()),
        model=data.get("model") or default_model,
        choices=[
            Choice(
                message=AssistantMessage(
                    content=text or None,
                    tool_calls=tool_calls or None,
                ),
                finish_reason="tool_calls" if tool_calls else "stop",
            )
        ],
        usage=UsageInfo.from_counts(usage.get("input_tokens"), usage.get("output_tokens")),
    )
