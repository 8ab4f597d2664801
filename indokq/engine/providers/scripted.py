"""Scripted model provider.

Replays canned turns per agent type, for offline runs and tests. A
script is YAML (or JSON)::

    agents:
      terminus:
        - text: "Looking around."
          tool_calls:
            - name: grep_codebase
              input: {pattern: "TODO"}
        - tool_calls:
            - name: task_complete
              input: {summary: "Found 3 TODOs"}
      default:
        - text: "Nothing scripted for this agent."

Each turn may instead be a list of raw stream event dicts. Turns are
consumed in order per agent type; ``default`` is used for agent types
without their own script. An exhausted script yields a short text turn.
"""
from __future__ import annotations

import asyncio
import json
import logging
from collections import deque
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import yaml

from .base import ModelProvider, ModelRequest

logger = logging.getLogger(__name__)

DEFAULT_KEY = "default"
EXHAUSTED_TEXT = "No further scripted output."
# Tool input JSON is streamed in this many fragments
INPUT_FRAGMENTS = 3


def _fragments(text: str, count: int) -> list[str]:
    if not text:
        return []
    size = max(1, -(-len(text) // count))
    return [text[i:i + size] for i in range(0, len(text), size)]


def turn_events(
    text: str = "",
    tool_calls: list[dict[str, Any]] | None = None,
    *,
    stop_reason: str | None = None,
    turn_index: int = 0,
) -> list[dict[str, Any]]:
    """Raw content-block events for one turn of text plus tool calls."""
    events: list[dict[str, Any]] = [{"type": "message_start"}]
    index = 0
    if text:
        events.append({
            "type": "content_block_start",
            "index": index,
            "content_block": {"type": "text", "text": ""},
        })
        for piece in _fragments(text, 2):
            events.append({
                "type": "content_block_delta",
                "index": index,
                "delta": {"type": "text_delta", "text": piece},
            })
        events.append({"type": "content_block_stop", "index": index})
        index += 1
    for n, call in enumerate(tool_calls or []):
        raw_input = call.get("raw_input")
        if raw_input is None:
            raw_input = json.dumps(call.get("input", {}))
        events.append({
            "type": "content_block_start",
            "index": index,
            "content_block": {
                "type": "tool_use",
                "id": call.get("id") or f"toolu_{turn_index}_{n}",
                "name": call["name"],
                "input": {},
            },
        })
        for piece in _fragments(raw_input, INPUT_FRAGMENTS):
            events.append({
                "type": "content_block_delta",
                "index": index,
                "delta": {"type": "input_json_delta", "partial_json": piece},
            })
        events.append({"type": "content_block_stop", "index": index})
        index += 1
    reason = stop_reason or ("tool_use" if tool_calls else "end_turn")
    events.append({"type": "message_delta", "delta": {"stop_reason": reason}})
    events.append({"type": "message_stop"})
    return events


class ScriptedProvider(ModelProvider):
    def __init__(
        self,
        script: dict[str, list[Any]],
        *,
        event_delay: float = 0.0,
    ) -> None:
        self._queues: dict[str, deque[Any]] = {
            agent: deque(turns or []) for agent, turns in script.items()
        }
        self._event_delay = event_delay
        self._served = 0
        self.requests: list[ModelRequest] = []

    @property
    def name(self) -> str:
        return "scripted"

    @classmethod
    def from_file(cls, path: str | Path, **kwargs: Any) -> ScriptedProvider:
        path = Path(path)
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
        agents = raw.get("agents", raw) if isinstance(raw, dict) else {}
        if not isinstance(agents, dict):
            raise ValueError(f"{path}: expected a mapping of agent type to turns")
        logger.info("Loaded script %s for agents: %s", path, ", ".join(sorted(agents)))
        return cls(agents, **kwargs)

    def _next_turn(self, agent_type: str) -> Any:
        for key in (agent_type, DEFAULT_KEY):
            queue = self._queues.get(key)
            if queue:
                return queue.popleft()
        logger.debug("Script exhausted for %s", agent_type)
        return {"text": EXHAUSTED_TEXT}

    async def stream_turn(
        self, request: ModelRequest,
    ) -> AsyncIterator[dict[str, Any]]:
        self.requests.append(request)
        turn = self._next_turn(request.agent_type)
        self._served += 1
        if isinstance(turn, list):
            events = turn
        else:
            events = turn_events(
                turn.get("text", ""),
                turn.get("tool_calls"),
                stop_reason=turn.get("stop_reason"),
                turn_index=self._served,
            )
            if turn.get("truncate"):
                # Simulate a dropped connection: cut before the turn ends
                events = events[: -2]
        for event in events:
            if self._event_delay:
                await asyncio.sleep(self._event_delay)
            yield event
