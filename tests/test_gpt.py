"""Tests for the GPT request and response transcoders."""

import pytest

from chatbridge.errors import NoUsableInput, TransformError
from chatbridge.gpt import (
    build_input_items,
    convert_tools,
    from_gpt,
    passthrough_body,
    to_gpt_responses,
)
from chatbridge.ids import IdGenerator

MODEL = "gpt-deploy"


def test_passthrough_only_rewrites_model() -> None:
    body = {
        "model": "gpt-4o",
        "messages": [{"role": "system", "content": "x"}, {"role": "user", "content": "hi"}],
        "tools": [{"type": "function", "function": {"name": "f"}}],
        "stream": True,
        "logprobs": True,
    }
    forwarded = passthrough_body(body, MODEL)

    assert forwarded == dict(body, model=MODEL)
    assert body["model"] == "gpt-4o"


def test_system_and_developer_go_to_instructions() -> None:
    payload = to_gpt_responses(
        {
            "messages": [
                {"role": "system", "content": "rule one"},
                {"role": "developer", "content": [{"type": "text", "text": "rule two"}]},
                {"role": "user", "content": "hi"},
            ]
        },
        MODEL,
    )
    assert payload["instructions"] == "rule one\nrule two"
    assert payload["input"] == [{"type": "message", "role": "user", "content": "hi"}]
    assert payload["model"] == MODEL
    assert payload["max_output_tokens"] == 16384


def test_content_parts_flattened_and_images_dropped() -> None:
    items, _ = build_input_items(
        {
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": "look at"},
                        {"type": "image_url", "image_url": {"url": "data:..."}},
                        {"type": "input_text", "text": "this"},
                    ],
                }
            ]
        }
    )
    assert items == [{"type": "message", "role": "user", "content": "look at\nthis"}]


def test_assistant_tool_calls_and_outputs() -> None:
    items, instructions = build_input_items(
        {
            "messages": [
                {"role": "user", "content": "weather?"},
                {
                    "role": "assistant",
                    "content": "Checking.",
                    "tool_calls": [
                        {"id": "call_1", "function": {"name": "get_weather", "arguments": '{"city":"Oslo"}'}},
                        {"id": "call_2", "function": {"name": "noop"}},
                    ],
                },
                {"role": "tool", "tool_call_id": "call_1", "content": "20C"},
                {"role": "tool", "tool_call_id": "call_2", "content": {"ok": True}},
            ]
        }
    )
    assert instructions is None
    assert items == [
        {"type": "message", "role": "user", "content": "weather?"},
        {"type": "message", "role": "assistant", "content": "Checking."},
        {"type": "function_call", "call_id": "call_1", "name": "get_weather", "arguments": '{"city":"Oslo"}'},
        {"type": "function_call", "call_id": "call_2", "name": "noop", "arguments": "{}"},
        {"type": "function_call_output", "call_id": "call_1", "output": "20C"},
        {"type": "function_call_output", "call_id": "call_2", "output": '{"ok": true}'},
    ]


def test_input_fallback_when_no_messages() -> None:
    items, instructions = build_input_items(
        {
            "input": [
                "plain",
                {"role": "system", "content": "sys"},
                {"type": "message", "content": "typed"},
                {"role": "assistant", "content": [{"type": "output_text", "text": "prior"}]},
                None,
            ]
        }
    )
    assert instructions == "sys"
    assert items == [
        {"type": "message", "role": "user", "content": "plain"},
        {"type": "message", "role": "user", "content": "typed"},
        {"type": "message", "role": "assistant", "content": "prior"},
    ]


def test_input_string_used_when_messages_yield_nothing() -> None:
    items, instructions = build_input_items(
        {"messages": [{"role": "system", "content": "sys"}], "input": "question"}
    )
    assert items == [{"type": "message", "role": "user", "content": "question"}]
    assert instructions == "sys"


def test_no_usable_input_raises() -> None:
    with pytest.raises(NoUsableInput, match="No usable input"):
        to_gpt_responses({"messages": [{"role": "system", "content": "only rules"}]}, MODEL)


def test_convert_tools_accepts_both_shapes() -> None:
    tools = convert_tools(
        [
            {"type": "function", "function": {"name": "nested", "description": "d", "parameters": {"type": "object"}}},
            {"name": "flat", "input_schema": {"type": "object", "required": ["a"]}},
            {"type": "function", "function": {"description": "nameless"}},
            {"type": "web_search"},
        ]
    )
    assert tools == [
        {"type": "function", "name": "nested", "description": "d", "parameters": {"type": "object"}, "strict": False},
        {
            "type": "function",
            "name": "flat",
            "description": "",
            "parameters": {"type": "object", "required": ["a"]},
            "strict": False,
        },
    ]


def test_tools_default_tool_choice_auto() -> None:
    payload = to_gpt_responses(
        {"messages": [{"role": "user", "content": "hi"}], "tools": [{"name": "f"}]},
        MODEL,
    )
    assert payload["tool_choice"] == "auto"
    assert payload["tools"][0]["parameters"] == {"type": "object", "properties": {}}


@pytest.mark.parametrize(
    "tool_choice,expected",
    [
        ("none", "none"),
        ("required", "required"),
        ({"type": "function", "function": {"name": "f"}}, {"type": "function", "name": "f"}),
    ],
)
def test_explicit_tool_choice(tool_choice: object, expected: object) -> None:
    payload = to_gpt_responses(
        {"messages": [{"role": "user", "content": "hi"}], "tools": [{"name": "f"}], "tool_choice": tool_choice},
        MODEL,
    )
    assert payload["tool_choice"] == expected


def test_no_tools_means_no_tool_choice() -> None:
    payload = to_gpt_responses({"messages": [{"role": "user", "content": "hi"}]}, MODEL)
    assert "tools" not in payload
    assert "tool_choice" not in payload
    assert "instructions" not in payload


def test_sampling_fields() -> None:
    payload = to_gpt_responses(
        {"input": "hi", "max_tokens": 50, "temperature": 0.1, "stream": False},
        MODEL,
    )
    assert payload["max_output_tokens"] == 50
    assert payload["temperature"] == 0.1
    assert payload["stream"] is False


# --- Response side ---


def test_message_and_function_call_output(ids: IdGenerator, clock) -> None:
    completion = from_gpt(
        {
            "id": "resp_1",
            "model": "gpt-deploy",
            "output": [
                {"type": "reasoning", "summary": []},
                {
                    "type": "message",
                    "content": [
                        {"type": "output_text", "text": "Sure. "},
                        {"type": "refusal", "refusal": "no"},
                        {"type": "text", "text": "Calling."},
                    ],
                },
                {"type": "function_call", "call_id": "call_1", "name": "f", "arguments": '{"a":1}'},
                {"type": "function_call", "id": "fc_2", "name": "g"},
                {"type": "function_call", "name": "h", "arguments": "{}"},
            ],
            "usage": {"input_tokens": 7, "output_tokens": 4},
        },
        ids,
        clock=clock,
    )
    body = completion.to_dict()
    choice = body["choices"][0]

    assert body["id"] == "resp_1"
    assert choice["message"]["content"] == "Sure. Calling."
    assert [c["id"] for c in choice["message"]["tool_calls"]] == ["call_1", "fc_2", "call_tok0"]
    assert choice["message"]["tool_calls"][1]["function"]["arguments"] == "{}"
    assert choice["finish_reason"] == "tool_calls"
    assert body["usage"] == {"prompt_tokens": 7, "completion_tokens": 4, "total_tokens": 11}


def test_string_message_content_and_defaults(ids: IdGenerator) -> None:
    completion = from_gpt({"output": [{"type": "message", "content": "plain"}]}, ids, default_model=MODEL)
    body = completion.to_dict()

    assert body["model"] == MODEL
    assert body["id"] == "chatcmpl-tok0"
    assert body["choices"][0]["message"] == {"role": "assistant", "content": "plain"}
    assert body["choices"][0]["finish_reason"] == "stop"


def test_malformed_gpt_response_raises(ids: IdGenerator) -> None:
    with pytest.raises(TransformError):
        from_gpt("oops", ids)
    with pytest.raises(TransformError):
        from_gpt({"output": {"type": "message"}}, ids)


@pytest.mark.parametrize(
    "data",
    [
        {"output": [], "usage": "bad"},
        {"output": [{"type": "message", "content": [{"type": "output_text", "text": 5}]}]},
        {"output": [{"type": "function_call", "call_id": "c", "name": 3}]},
    ],
)
def test_wrongly_typed_fields_raise_transform_error(ids: IdGenerator, data: dict) -> None:
    with pytest.raises(TransformError, match="malformed upstream response"):
        from_gpt(data, ids)
