"""Abstract model stream source.

The engine never talks to a model API directly. A ModelProvider turns a
request into the ordered event stream of one model turn; the stream
parser does the rest. Network clients live outside this package.
"""
from __future__ import annotations

import abc
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

from ..stream_parser import StreamEvent

logger = logging.getLogger(__name__)


@dataclass
class ModelRequest:
    """Everything a provider needs for one turn of one run."""
    run_id: str
    agent_type: str
    messages: list[dict[str, Any]]
    tools: list[dict[str, Any]] = field(default_factory=list)
    # Only set on a run's first turn
    system: str | None = None
    max_tokens: int = 8192


class ModelProvider(abc.ABC):
    """Source of streamed model turns."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Short provider name."""

    @abc.abstractmethod
    def stream_turn(
        self, request: ModelRequest,
    ) -> AsyncIterator[StreamEvent | dict[str, Any]]:
        """Yield the raw events of one model turn, in order."""

    async def shutdown(self) -> None:
        """Release any held resources. Default: no-op."""
