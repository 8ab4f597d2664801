"""Streaming protocol parser.

Rebuilds one model turn (text segments and tool invocations, in stream
order) from the incremental event sequence a model provider emits.

Raw events use the content-block shape::

    {"type": "content_block_start", "content_block": {"type": "tool_use", "id": ..., "name": ...}}
    {"type": "content_block_delta", "delta": {"type": "input_json_delta", "partial_json": ...}}
    {"type": "content_block_delta", "delta": {"type": "text_delta", "text": ...}}
    {"type": "content_block_stop"}
    {"type": "message_delta", "delta": {"stop_reason": ...}}
    {"type": "message_stop"}

They are normalized into StreamEvent first, so the parser itself only
knows five event kinds. Undecodable tool input degrades to ``{}`` with
a warning on the turn; it never aborts the turn.
"""
from __future__ import annotations

import inspect
import json
import logging
from collections.abc import AsyncIterable, Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .cancellation import CancellationToken
from .errors import OperationCancelledError
from .models import ContentBlock, TextBlock, ToolCall, Turn

logger = logging.getLogger(__name__)

TextCallback = Callable[[str], Awaitable[None] | None]


class EventType(str, Enum):
    TEXT_DELTA = "text_delta"
    TOOL_BLOCK_START = "tool_block_start"
    TOOL_INPUT_DELTA = "tool_input_delta"
    BLOCK_STOP = "block_stop"
    MESSAGE_DELTA = "message_delta"
    TURN_STOP = "turn_stop"


# Raw event types carrying nothing the parser needs
_IGNORED_RAW_TYPES = frozenset({"message_start", "ping"})


@dataclass(frozen=True)
class StreamEvent:
    """Normalized low-level stream event."""
    type: EventType
    text: str = ""
    partial_json: str = ""
    tool_id: str = ""
    tool_name: str = ""
    initial_input: dict[str, Any] = field(default_factory=dict)
    stop_reason: str | None = None

    @classmethod
    def text_delta(cls, text: str) -> StreamEvent:
        return cls(EventType.TEXT_DELTA, text=text)

    @classmethod
    def tool_start(cls, tool_id: str, name: str) -> StreamEvent:
        return cls(EventType.TOOL_BLOCK_START, tool_id=tool_id, tool_name=name)

    @classmethod
    def input_delta(cls, fragment: str) -> StreamEvent:
        return cls(EventType.TOOL_INPUT_DELTA, partial_json=fragment)

    @classmethod
    def block_stop(cls) -> StreamEvent:
        return cls(EventType.BLOCK_STOP)

    @classmethod
    def turn_stop(cls, stop_reason: str | None = None) -> StreamEvent:
        return cls(EventType.TURN_STOP, stop_reason=stop_reason)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> StreamEvent | None:
        """Map a raw provider event dict. Returns None for events to skip."""
        kind = raw.get("type")
        if kind in _IGNORED_RAW_TYPES:
            return None
        if kind == "content_block_start":
            block = raw.get("content_block") or {}
            if block.get("type") == "tool_use":
                initial = block.get("input")
                return cls(
                    EventType.TOOL_BLOCK_START,
                    tool_id=str(block.get("id", "")),
                    tool_name=str(block.get("name", "")),
                    initial_input=initial if isinstance(initial, dict) else {},
                )
            text = block.get("text") or ""
            return cls.text_delta(text) if text else None
        if kind == "content_block_delta":
            delta = raw.get("delta") or {}
            delta_type = delta.get("type")
            if delta_type == "text_delta":
                return cls.text_delta(delta.get("text", ""))
            if delta_type == "input_json_delta":
                return cls.input_delta(delta.get("partial_json", ""))
            logger.debug("Skipping unsupported delta type %r", delta_type)
            return None
        if kind == "content_block_stop":
            return cls.block_stop()
        if kind == "message_delta":
            delta = raw.get("delta") or {}
            return cls(EventType.MESSAGE_DELTA, stop_reason=delta.get("stop_reason"))
        if kind == "message_stop":
            return cls.turn_stop()
        logger.debug("Skipping unknown stream event type %r", kind)
        return None

    @classmethod
    def coerce(cls, raw: StreamEvent | dict[str, Any]) -> StreamEvent | None:
        if isinstance(raw, StreamEvent):
            return raw
        return cls.from_dict(raw)


@dataclass
class _OpenToolBlock:
    tool_id: str
    name: str
    initial_input: dict[str, Any]
    buffer: list[str] = field(default_factory=list)


class StreamParser:
    """Single-pass, incremental turn builder.

    ``feed`` each event in order, then ``finalize``. ``feed`` returns
    True once the turn-stop event has been seen.
    """

    def __init__(self) -> None:
        self._content: list[ContentBlock] = []
        self._text: list[str] = []
        self._open: _OpenToolBlock | None = None
        self._warnings: list[str] = []
        self._stop_reason: str | None = None
        self._stopped = False

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def warnings(self) -> list[str]:
        return list(self._warnings)

    def feed(self, event: StreamEvent) -> bool:
        if self._stopped:
            logger.debug("Ignoring %s after turn stop", event.type.value)
            return True
        if event.type is EventType.TEXT_DELTA:
            self._text.append(event.text)
        elif event.type is EventType.TOOL_BLOCK_START:
            if self._open is not None:
                self._discard_open("superseded by a new tool block")
            self._flush_text()
            self._open = _OpenToolBlock(
                tool_id=event.tool_id,
                name=event.tool_name,
                initial_input=dict(event.initial_input),
            )
        elif event.type is EventType.TOOL_INPUT_DELTA:
            if self._open is None:
                self._warn("Input fragment received with no open tool block")
            else:
                self._open.buffer.append(event.partial_json)
        elif event.type is EventType.BLOCK_STOP:
            if self._open is not None:
                self._close_tool_block()
            else:
                self._flush_text()
        elif event.type is EventType.MESSAGE_DELTA:
            if event.stop_reason:
                self._stop_reason = event.stop_reason
        elif event.type is EventType.TURN_STOP:
            if event.stop_reason:
                self._stop_reason = event.stop_reason
            self._stopped = True
        return self._stopped

    def finalize(self, *, complete: bool = True) -> Turn:
        if self._open is not None:
            reason = "turn ended" if complete else "stream cancelled"
            self._discard_open(reason)
        self._flush_text()
        if complete and not self._stopped:
            self._warn("Stream ended without a turn stop event")
        return Turn(
            content=tuple(self._content),
            complete=complete,
            stop_reason=self._stop_reason if complete else "cancelled",
            warnings=tuple(self._warnings),
        )

    def _flush_text(self) -> None:
        if self._text:
            text = "".join(self._text)
            self._text = []
            if text:
                self._content.append(TextBlock(text))

    def _close_tool_block(self) -> None:
        block = self._open
        self._open = None
        assert block is not None
        raw = "".join(block.buffer)
        if not raw.strip():
            tool_input = block.initial_input
        else:
            tool_input = self._decode(block, raw)
        self._content.append(
            ToolCall(id=block.tool_id, name=block.name, input=tool_input)
        )

    def _decode(self, block: _OpenToolBlock, raw: str) -> dict[str, Any]:
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError as exc:
            self._warn(
                f"Could not decode input for tool {block.name} "
                f"({block.tool_id}): {exc.msg}"
            )
            return {}
        if not isinstance(decoded, dict):
            self._warn(
                f"Input for tool {block.name} ({block.tool_id}) is "
                f"{type(decoded).__name__}, expected an object"
            )
            return {}
        return decoded

    def _discard_open(self, reason: str) -> None:
        block = self._open
        self._open = None
        if block is not None:
            self._warn(
                f"Discarded unfinished tool block {block.name} "
                f"({block.tool_id}): {reason}"
            )

    def _warn(self, message: str) -> None:
        logger.warning(message)
        self._warnings.append(message)


async def parse_stream(
    events: AsyncIterable[StreamEvent | dict[str, Any]],
    *,
    cancel: CancellationToken | None = None,
    on_text: TextCallback | None = None,
) -> Turn:
    """Consume *events* until the turn stops and return the finalized Turn.

    When *cancel* fires, consumption stops at once and the returned
    Turn has ``complete=False`` with any open tool block dropped.
    """
    parser = StreamParser()
    iterator = events.__aiter__()
    try:
        while True:
            try:
                if cancel is None:
                    raw = await iterator.__anext__()
                else:
                    raw = await cancel.run(iterator.__anext__())
            except StopAsyncIteration:
                break
            except OperationCancelledError:
                logger.info("Stream consumption cancelled")
                return parser.finalize(complete=False)
            event = StreamEvent.coerce(raw)
            if event is None:
                continue
            if event.type is EventType.TEXT_DELTA and on_text and event.text:
                outcome = on_text(event.text)
                if inspect.isawaitable(outcome):
                    await outcome
            if parser.feed(event):
                break
    finally:
        aclose = getattr(iterator, "aclose", None)
        if aclose is not None:
            await aclose()
    return parser.finalize(complete=True)
