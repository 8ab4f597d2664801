"""In-memory queue of approvals awaiting a human decision.

A request suspends the calling run until a front end resolves it, the
configured approval callback answers it, or the run is cancelled
(which counts as a rejection). Nothing here is persisted; a restart
loses pending approvals.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..cancellation import CancellationToken
from ..config import ApprovalCallback, EventCallback, fire_event
from ..errors import OperationCancelledError
from ..models import PendingChange, _make_id, _utcnow

logger = logging.getLogger(__name__)


@dataclass
class ApprovalRequest:
    run_id: str
    agent_type: str
    tool_name: str
    tool_input: dict[str, Any]
    reason: str
    change: PendingChange | None = None
    request_id: str = field(default_factory=_make_id)
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def diff(self) -> str | None:
        return self.change.diff if self.change else None


class ApprovalQueue:
    def __init__(
        self,
        callback: ApprovalCallback | None = None,
        event_callback: EventCallback | None = None,
    ) -> None:
        self._callback = callback
        self._event_callback = event_callback
        self._pending: dict[str, tuple[ApprovalRequest, asyncio.Future[bool]]] = {}

    def pending(self) -> list[ApprovalRequest]:
        return [request for request, _ in self._pending.values()]

    def get(self, request_id: str) -> ApprovalRequest | None:
        entry = self._pending.get(request_id)
        return entry[0] if entry else None

    async def request(
        self,
        request: ApprovalRequest,
        *,
        cancel: CancellationToken | None = None,
    ) -> bool:
        """Suspend until *request* is approved (True) or rejected (False)."""
        loop = asyncio.get_running_loop()
        future: asyncio.Future[bool] = loop.create_future()
        self._pending[request.request_id] = (request, future)
        logger.info(
            "Approval requested %s: %s by %s (%s)",
            request.request_id, request.tool_name,
            request.agent_type, request.reason,
        )
        await fire_event(self._event_callback, {
            "event": "approval_requested",
            "request_id": request.request_id,
            "run_id": request.run_id,
            "tool_name": request.tool_name,
            "reason": request.reason,
            "diff": request.diff,
        })
        responder: asyncio.Task | None = None
        if self._callback is not None:
            responder = asyncio.create_task(self._ask_callback(request))
        try:
            if cancel is None:
                approved = await future
            else:
                approved = await cancel.run(asyncio.shield(future))
        except OperationCancelledError:
            logger.info("Approval %s cancelled", request.request_id)
            approved = False
        finally:
            self._pending.pop(request.request_id, None)
            if responder is not None and not responder.done():
                responder.cancel()
        await fire_event(self._event_callback, {
            "event": "approval_resolved",
            "request_id": request.request_id,
            "approved": approved,
        })
        return approved

    def resolve(self, request_id: str, approved: bool) -> bool:
        """Answer a pending request. Returns False if it is not pending."""
        entry = self._pending.get(request_id)
        if entry is None:
            logger.warning("No pending approval with id %s", request_id)
            return False
        _, future = entry
        if future.done():
            return False
        future.set_result(bool(approved))
        logger.info(
            "Approval %s %s", request_id, "granted" if approved else "rejected",
        )
        return True

    def reject_all(self) -> int:
        count = 0
        for request_id in list(self._pending):
            if self.resolve(request_id, False):
                count += 1
        return count

    async def _ask_callback(self, request: ApprovalRequest) -> None:
        assert self._callback is not None
        try:
            approved = await self._callback(request)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(
                "Approval callback failed for %s; rejecting", request.request_id,
            )
            approved = False
        self.resolve(request.request_id, approved)
