"""Server-Sent Events re-chunking into OpenAI chat.completion.chunk frames.

Each upstream vendor speaks its own event vocabulary. A re-chunker consumes
the raw upstream text, splits it into ``data:`` lines and maps each known
event kind to zero or more outgoing chunks. All state (line buffer, content
blocks, tool-call counter) lives on the instance, one instance per request.
"""

import json
import logging
import time
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

from chatbridge.ids import IdGenerator
from chatbridge.models import (
    ChatCompletion,
    ChatCompletionChunk,
    ChunkChoice,
    ChunkDelta,
    FunctionDelta,
    ToolCallDelta,
)

logger = logging.getLogger("chatbridge")

DATA_PREFIX = "data: "
DONE_MARKER = "[DONE]"
DONE_FRAME = "data: [DONE]\n\n"


class SSELineBuffer:
    """Splits streamed text into complete ``data:`` payloads.

    Lines without the ``data: `` prefix are ignored. An incomplete trailing
    line is held back and prepended to the next piece of text.
    """

    def __init__(self) -> None:
        self._pending = ""

    def feed(self, text: str) -> List[str]:
        self._pending += text
        lines = self._pending.split("\n")
        self._pending = lines.pop()
        return [payload for payload in map(self._payload, lines) if payload is not None]

    def flush(self) -> List[str]:
        """Return the payload of a final unterminated line, if any."""
        remainder, self._pending = self._pending, ""
        payload = self._payload(remainder)
        return [payload] if payload is not None else []

    @staticmethod
    def _payload(line: str) -> Optional[str]:
        line = line.rstrip("\r")
        if not line.startswith(DATA_PREFIX):
            return None
        return line[len(DATA_PREFIX):].strip()


class ChunkFactory:
    """Builds SSE chunk frames sharing one id, timestamp and model."""

    def __init__(self, completion_id: str, created: int, model: Optional[str]) -> None:
        self.completion_id = completion_id
        self.created = created
        self.model = model

    def frame(self, delta: ChunkDelta, finish_reason: Optional[str] = None) -> str:
        chunk = ChatCompletionChunk(
            id=self.completion_id,
            created=self.created,
            model=self.model,
            choices=[ChunkChoice(delta=delta, finish_reason=finish_reason)],
        )
        return chunk.to_sse()

    def role(self) -> str:
        return self.frame(ChunkDelta(role="assistant"))

    def text(self, text: str) -> str:
        return self.frame(ChunkDelta(content=text))

    def tool_header(self, index: int, call_id: str, name: str) -> str:
        return self.frame(
            ChunkDelta(
                tool_calls=[
                    ToolCallDelta(
                        index=index,
                        id=call_id,
                        type="function",
                        function=FunctionDelta(name=name, arguments=""),
                    )
                ]
            )
        )

    def tool_arguments(self, index: int, fragment: str) -> str:
        return self.frame(
            ChunkDelta(
                tool_calls=[
                    ToolCallDelta(index=index, function=FunctionDelta(arguments=fragment))
                ]
            )
        )

    def finish(self, finish_reason: str) -> str:
        return self.frame(ChunkDelta(), finish_reason=finish_reason)


class _Rechunker:
    """Shared framing and dispatch; subclasses supply the event table."""

    event_kinds: Any = None

    def __init__(
        self,
        model: Optional[str],
        ids: IdGenerator,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.ids = ids
        self.chunks = ChunkFactory(ids.completion_id(), int(clock()), model)
        self.tool_call_index = 0
        self.saw_tool_call = False
        self.finished = False
        self._lines = SSELineBuffer()
        self._handlers: Dict[Any, Callable[[Dict[str, Any]], List[str]]] = {}

    def feed(self, text: str) -> List[str]:
        frames: List[str] = []
        for payload in self._lines.feed(text):
            frames.extend(self._process(payload))
        return frames

    def flush(self) -> List[str]:
        frames: List[str] = []
        for payload in self._lines.flush():
            frames.extend(self._process(payload))
        return frames

    async def stream(self, pieces: AsyncIterator[str]) -> AsyncIterator[str]:
        """Re-chunk an async text stream, one batch of frames per piece."""
        async for piece in pieces:
            for frame in self.feed(piece):
                yield frame
        for frame in self.flush():
            yield frame

    def _process(self, payload: str) -> List[str]:
        if payload == DONE_MARKER:
            return [DONE_FRAME]
        try:
            event = json.loads(payload)
        except ValueError as exc:
            logger.warning("Skipping unparseable stream line: %s (%s)", payload[:100], exc)
            return []
        if not isinstance(event, dict):
            logger.warning("Skipping non-object stream event: %s", payload[:100])
            return []

        try:
            kind = self.event_kinds(event.get("type"))
        except ValueError:
            logger.debug("Ignoring unrecognized stream event type %r", event.get("type"))
            return []
        handler = self._handlers.get(kind)
        if handler is None:
            return []
        try:
            return handler(event)
        except (AttributeError, TypeError, ValueError) as exc:
            logger.warning("Skipping malformed %s event: %s (%s)", kind.value, payload[:100], exc)
            return []

    def _terminal(self) -> List[str]:
        if self.finished:
            return []
        self.finished = True
        reason = "tool_calls" if self.saw_tool_call else "stop"
        return [self.chunks.finish(reason), DONE_FRAME]

    def _header(self, call_id: Optional[str], name: Optional[str]) -> List[str]:
        self.saw_tool_call = True
        return [
            self.chunks.tool_header(
                self.tool_call_index, call_id or self.ids.call_id(), name or ""
            )
        ]


class ClaudeEvent(str, Enum):
    MESSAGE_START = "message_start"
    CONTENT_BLOCK_START = "content_block_start"
    CONTENT_BLOCK_DELTA = "content_block_delta"
    CONTENT_BLOCK_STOP = "content_block_stop"
    MESSAGE_DELTA = "message_delta"
    MESSAGE_STOP = "message_stop"
    PING = "ping"
    ERROR = "error"


class ClaudeRechunker(_Rechunker):
    """Re-chunks a Claude messages stream.

    A tool_use block opens a tool call at the current index; its
    input_json_delta fragments are emitted at that same index, and the index
    advances when the block closes.
    """

    event_kinds = ClaudeEvent

    def __init__(
        self,
        model: Optional[str],
        ids: IdGenerator,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(model, ids, clock)
        self.blocks: Dict[Any, Dict[str, Any]] = {}
        self._handlers = {
            ClaudeEvent.MESSAGE_START: self._on_message_start,
            ClaudeEvent.CONTENT_BLOCK_START: self._on_block_start,
            ClaudeEvent.CONTENT_BLOCK_DELTA: self._on_block_delta,
            ClaudeEvent.CONTENT_BLOCK_STOP: self._on_block_stop,
            ClaudeEvent.MESSAGE_STOP: self._on_message_stop,
            ClaudeEvent.ERROR: self._on_error,
        }

    def _on_message_start(self, event: Dict[str, Any]) -> List[str]:
        return [self.chunks.role()]

    def _on_block_start(self, event: Dict[str, Any]) -> List[str]:
        block = event.get("content_block") or {}
        self.blocks[event.get("index")] = block
        if block.get("type") != "tool_use":
            return []
        return self._header(block.get("id"), block.get("name"))

    def _on_block_delta(self, event: Dict[str, Any]) -> List[str]:
        delta = event.get("delta") or {}
        if delta.get("type") == "text_delta":
            return [self.chunks.text(delta.get("text") or "")]
        if delta.get("type") == "input_json_delta":
            return [
                self.chunks.tool_arguments(
                    self.tool_call_index, delta.get("partial_json") or ""
                )
            ]
        return []

    def _on_block_stop(self, event: Dict[str, Any]) -> List[str]:
        block = self.blocks.get(event.get("index")) or {}
        if block.get("type") == "tool_use":
            self.tool_call_index += 1
        return []

    def _on_message_stop(self, event: Dict[str, Any]) -> List[str]:
        return self._terminal()

    def _on_error(self, event: Dict[str, Any]) -> List[str]:
        logger.warning("Upstream stream error event: %s", event.get("error"))
        return []


class ResponsesEvent(str, Enum):
    CREATED = "response.created"
    OUTPUT_ITEM_ADDED = "response.output_item.added"
    OUTPUT_TEXT_DELTA = "response.output_text.delta"
    TEXT_DELTA = "response.text.delta"
    ARGUMENTS_DELTA = "response.function_call_arguments.delta"
    OUTPUT_ITEM_DONE = "response.output_item.done"
    DONE = "response.done"
    COMPLETED = "response.completed"
    # Claude-shaped text deltas seen from some gateways.
    CONTENT_BLOCK_DELTA = "content_block_delta"


class ResponsesRechunker(_Rechunker):
    """Re-chunks a Responses-style GPT stream."""

    event_kinds = ResponsesEvent

    def __init__(
        self,
        model: Optional[str],
        ids: IdGenerator,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(model, ids, clock)
        self._handlers = {
            ResponsesEvent.CREATED: self._on_created,
            ResponsesEvent.OUTPUT_ITEM_ADDED: self._on_item_added,
            ResponsesEvent.OUTPUT_TEXT_DELTA: self._on_text_delta,
            ResponsesEvent.TEXT_DELTA: self._on_text_delta,
            ResponsesEvent.ARGUMENTS_DELTA: self._on_arguments_delta,
            ResponsesEvent.OUTPUT_ITEM_DONE: self._on_item_done,
            ResponsesEvent.DONE: self._on_completed,
            ResponsesEvent.COMPLETED: self._on_completed,
            ResponsesEvent.CONTENT_BLOCK_DELTA: self._on_content_block_delta,
        }

    def _on_created(self, event: Dict[str, Any]) -> List[str]:
        return [self.chunks.role()]

    def _on_item_added(self, event: Dict[str, Any]) -> List[str]:
        item = event.get("item") or {}
        if item.get("type") != "function_call":
            return []
        return self._header(item.get("call_id") or item.get("id"), item.get("name"))

    def _on_text_delta(self, event: Dict[str, Any]) -> List[str]:
        delta = event.get("delta")
        if not isinstance(delta, str):
            return []
        return [self.chunks.text(delta)]

    def _on_arguments_delta(self, event: Dict[str, Any]) -> List[str]:
        delta = event.get("delta")
        if not isinstance(delta, str):
            return []
        return [self.chunks.tool_arguments(self.tool_call_index, delta)]

    def _on_item_done(self, event: Dict[str, Any]) -> List[str]:
        item = event.get("item") or {}
        if item.get("type") == "function_call":
            self.tool_call_index += 1
        return []

    def _on_completed(self, event: Dict[str, Any]) -> List[str]:
        return self._terminal()

    def _on_content_block_delta(self, event: Dict[str, Any]) -> List[str]:
        delta = event.get("delta")
        if isinstance(delta, dict) and delta.get("text"):
            return [self.chunks.text(delta["text"])]
        return []


def replay_completion(completion: ChatCompletion) -> List[str]:
    """Render a finished chat.completion as an SSE frame sequence.

    Tool calls are announced together in the first chunk, followed by one
    arguments chunk per call; text responses go out in a single chunk.
    """
    chunks = ChunkFactory(completion.id, completion.created, completion.model)
    choice = completion.choices[0]
    message = choice.message
    frames: List[str] = []

    if message.tool_calls:
        headers = [
            ToolCallDelta(
                index=position,
                id=call.id,
                type="function",
                function=FunctionDelta(name=call.function.name, arguments=""),
            )
            for position, call in enumerate(message.tool_calls)
        ]
        frames.append(chunks.frame(ChunkDelta(role="assistant", tool_calls=headers)))
        for position, call in enumerate(message.tool_calls):
            frames.append(chunks.tool_arguments(position, call.function.arguments or "{}"))
        frames.append(chunks.finish("tool_calls"))
    else:
        frames.append(chunks.frame(ChunkDelta(role="assistant", content=message.content or "")))
        frames.append(chunks.finish(choice.finish_reason or "stop"))

    frames.append(DONE_FRAME)
    return frames
