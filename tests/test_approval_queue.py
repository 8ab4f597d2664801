from __future__ import annotations

import asyncio

import pytest

from indokq.engine.cancellation import CancellationToken
from indokq.engine.tools.approval_queue import ApprovalQueue, ApprovalRequest


def _request(tool: str = "execute_command") -> ApprovalRequest:
    return ApprovalRequest(
        run_id="r1", agent_type="execution", tool_name=tool,
        tool_input={"command": "make deploy"}, reason="unknown safety",
    )


async def _wait_pending(queue: ApprovalQueue) -> ApprovalRequest:
    for _ in range(100):
        if queue.pending():
            return queue.pending()[0]
        await asyncio.sleep(0.01)
    raise AssertionError("request never became pending")


@pytest.mark.asyncio
async def test_resolve_wakes_the_waiter() -> None:
    events: list[dict] = []

    async def record(event: dict) -> None:
        events.append(event)

    queue = ApprovalQueue(event_callback=record)
    waiter = asyncio.create_task(queue.request(_request()))
    pending = await _wait_pending(queue)

    assert queue.resolve(pending.request_id, True)
    assert await waiter is True
    assert queue.pending() == []
    assert not queue.resolve(pending.request_id, False)
    assert [e["event"] for e in events] == ["approval_requested", "approval_resolved"]


@pytest.mark.asyncio
async def test_cancellation_counts_as_rejection() -> None:
    queue = ApprovalQueue()
    cancel = CancellationToken()
    waiter = asyncio.create_task(queue.request(_request(), cancel=cancel))
    await _wait_pending(queue)

    cancel.cancel("user abort")

    assert await waiter is False
    assert queue.pending() == []


@pytest.mark.asyncio
async def test_failing_callback_rejects() -> None:
    async def broken(request: ApprovalRequest) -> bool:
        raise RuntimeError("ui crashed")

    queue = ApprovalQueue(callback=broken)
    assert await queue.request(_request()) is False


@pytest.mark.asyncio
async def test_reject_all() -> None:
    queue = ApprovalQueue()
    waiters = [asyncio.create_task(queue.request(_request(t))) for t in ("a", "b")]
    for _ in range(100):
        if len(queue.pending()) == 2:
            break
        await asyncio.sleep(0.01)
    assert queue.reject_all() == 2
    assert await asyncio.gather(*waiters) == [False, False]
