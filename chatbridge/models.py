"""Request and response models for the chat-completions bridge."""

import json
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ChatRequest(BaseModel):
    """Incoming OpenAI-style chat request.

    Every field is optional and unknown fields are kept, since the caller may
    use any of several alternative shapes and passthrough mode forwards the
    body as sent.
    """

    model_config = ConfigDict(extra="allow")

    model: Optional[str] = None
    messages: Optional[List[Any]] = None
    role: Optional[str] = None
    content: Optional[Any] = None
    input: Optional[Any] = None
    max_tokens: Optional[int] = None
    max_output_tokens: Optional[int] = None
    temperature: Optional[float] = None
    stream: Optional[bool] = None
    tools: Optional[List[Dict[str, Any]]] = None
    tool_choice: Optional[Union[str, Dict[str, Any]]] = None

    def to_payload(self) -> Dict[str, Any]:
        """Return the body as the caller sent it (extras included)."""
        return self.model_dump(exclude_unset=True)


class UsageInfo(BaseModel):
    """Token usage; total_tokens is always derived from the two counts."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_counts(cls, prompt_tokens: Optional[int], completion_tokens: Optional[int]) -> "UsageInfo":
        prompt = prompt_tokens or 0
        completion = completion_tokens or 0
        return cls(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=prompt + completion,
        )


class FunctionCall(BaseModel):
    name: str
    arguments: str


class ToolCall(BaseModel):
    id: str
    type: str = "function"
    function: FunctionCall


class AssistantMessage(BaseModel):
    role: str = "assistant"
    content: Optional[str] = None
    tool_calls: Optional[List[ToolCall]] = None


class Choice(BaseModel):
    index: int = 0
    message: AssistantMessage = Field(default_factory=AssistantMessage)
    finish_reason: Optional[str] = "stop"


class ChatCompletion(BaseModel):
    """OpenAI chat.completion response envelope."""

    id: str
    object: str = "chat.completion"
    created: int
    model: Optional[str] = None
    choices: List[Choice]
    usage: UsageInfo = Field(default_factory=UsageInfo)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize, omitting tool_calls on messages that carry none."""
        body = self.model_dump()
        for choice in body["choices"]:
            if choice["message"].get("tool_calls") is None:
                choice["message"].pop("tool_calls", None)
        return body


class FunctionDelta(BaseModel):
    name: Optional[str] = None
    arguments: Optional[str] = None


class ToolCallDelta(BaseModel):
    """One tool-call fragment; index is stable for every chunk of a call."""

    index: int
    id: Optional[str] = None
    type: Optional[str] = None
    function: Optional[FunctionDelta] = None


class ChunkDelta(BaseModel):
    role: Optional[str] = None
    content: Optional[str] = None
    tool_calls: Optional[List[ToolCallDelta]] = None


class ChunkChoice(BaseModel):
    index: int = 0
    delta: ChunkDelta = Field(default_factory=ChunkDelta)
    finish_reason: Optional[str] = None


class ChatCompletionChunk(BaseModel):
    """OpenAI chat.completion.chunk envelope."""

    id: str
    object: str = "chat.completion.chunk"
    created: int
    model: Optional[str] = None
    choices: List[ChunkChoice]

    def to_sse(self) -> str:
        """Render as one SSE ``data:`` frame.

        Unset delta fields are omitted; finish_reason is always present,
        null until the terminal chunk.
        """
        body = self.model_dump(exclude_none=True)
        for rendered, choice in zip(body["choices"], self.choices):
            rendered["finish_reason"] = choice.finish_reason
        return "data: {}\n\n".format(json.dumps(body))


class ErrorDetail(BaseModel):
    """Structured error detail."""

    message: str
    type: str


class ErrorResponse(BaseModel):
    """Error response envelope."""

    error: ErrorDetail
