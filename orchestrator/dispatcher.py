import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any, List, Sequence, Set

from .budget import DeadlineBudget
from .errors import ClientDisconnected
from .events import EventStream, ToolCallResultEvent
from .models import ToolInvocation, ToolResult
from .tools import ToolContext, ToolExecutor


# Timed-out tool tasks still winding down; held so they are not collected mid-flight.
_STRAGGLERS: Set["asyncio.Future[Any]"] = set()


class ToolDispatcher:
    """Runs a batch of tool invocations concurrently under one shared deadline.

    Every invocation ends in a ``ToolResult``; nothing raises out of
    ``dispatch``. Results come back in request order while the
    ``tool_call_result`` events go out in completion order.
    """

    def __init__(self, executor: ToolExecutor, stream: EventStream) -> None:
        self._executor = executor
        self._stream = stream

    async def dispatch(
        self,
        invocations: Sequence[ToolInvocation],
        deadline: DeadlineBudget,
        right_now: bool = False,
        current_hour: int | None = None,
    ) -> List[ToolResult]:
        if not invocations:
            return []
        context = ToolContext(right_now=right_now, current_hour=current_hour, deadline=deadline)
        results = await asyncio.gather(
            *(self._run_one(inv, deadline, context) for inv in invocations),
            return_exceptions=True,
        )
        normalized: List[ToolResult] = []
        for inv, res in zip(invocations, results):
            if isinstance(res, BaseException):
                # _run_one already absorbs failures; this only covers cancellation leaks.
                logging.error(f"[dispatcher] {inv.name} escaped normalization: {res!r}")
                normalized.append(ToolResult.fail("Tool execution failed"))
            else:
                normalized.append(res)
        return normalized

    async def _run_one(self, inv: ToolInvocation, deadline: DeadlineBudget, context: ToolContext) -> ToolResult:
        started = deadline.elapsed()
        task = asyncio.ensure_future(self._executor.execute(inv.name, dict(inv.arguments), context))
        try:
            done, _ = await asyncio.wait({task}, timeout=deadline.remaining())
        except asyncio.CancelledError:
            task.cancel()
            raise

        if task in done:
            result = _task_result(inv, task)
        else:
            # The expired clock decides; a tool that ignores cancellation finishes in the background.
            task.cancel()
            _STRAGGLERS.add(task)
            task.add_done_callback(_forget)
            result = ToolResult.fail(f"Timed out after {deadline.horizon:.1f}s")

        log_data = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "svc": "orchestrator",
            "fn": "dispatch",
            "tool": inv.name,
            "call_id": inv.id,
            "duration_ms": f"{(deadline.elapsed() - started) * 1000:.2f}",
            "ok": result.success,
        }
        logging.info(json.dumps(log_data))

        try:
            await self._stream.emit(ToolCallResultEvent(tool=inv.name, result=result))
        except ClientDisconnected:
            # The controller notices the closed stream at its next checkpoint.
            pass
        return result


def _coerce_result(raw: Any) -> ToolResult:
    if isinstance(raw, ToolResult):
        return raw
    if isinstance(raw, dict) and isinstance(raw.get("success"), bool):
        try:
            return ToolResult.model_validate(raw)
        except ValueError:
            pass
    return ToolResult.fail("Tool returned malformed data")


def _task_result(inv: ToolInvocation, task: "asyncio.Future[Any]") -> ToolResult:
    try:
        return _coerce_result(task.result())
    except asyncio.CancelledError:
        logging.warning(f"[dispatcher] {inv.name} was cancelled")
        return ToolResult.fail("Tool execution was cancelled")
    except Exception as e:
        logging.warning(f"[dispatcher] {inv.name} raised {e.__class__.__name__}: {e}")
        return ToolResult.fail(str(e) or e.__class__.__name__)


def _forget(task: "asyncio.Future[Any]") -> None:
    _STRAGGLERS.discard(task)
    if not task.cancelled() and task.exception() is not None:
        logging.warning(f"[dispatcher] late tool failure after timeout: {task.exception()!r}")
