"""Conversation controller.

Drives one plan request through its phases and writes every observable
step to the request's ``EventStream``. Exactly one terminal event is
emitted per run unless the caller disconnects first.
"""
import asyncio
import json
import logging
from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, List, Optional, TypeVar

from .budget import Clock, DeadlineBudget
from .city import CityResolver
from .config import CONFIG, _Config
from .dispatcher import ToolDispatcher
from .errors import (
    ClientDisconnected,
    ConfigurationError,
    DeadlineExceeded,
    LLMError,
    PlanError,
    SynthesisError,
    ToolElicitationError,
    UnknownToolError,
)
from .events import (
    CityResolvedEvent,
    ConnectedEvent,
    ContentChunkEvent,
    DoneEvent,
    ErrorEvent,
    EventStream,
    ThinkingChunkEvent,
    ToolCallStartEvent,
)
from .llm import Completion, LLMClient, new_call_id
from .models import ConversationTranscript, Message, PlanRequest, ToolInvocation, ToolResult
from .prompts import CORRECTIVE_TOOL_INSTRUCTION, build_system_prompt, build_user_message
from .tools import ToolExecutor, ToolName, resolve_tool, tool_schemas


T = TypeVar("T")

GATHERING_TOO_LONG = "Request took too long gathering data. Please try again."
SYNTHESIS_FAILED = "Failed to generate itinerary after retrying. Please try again."
ELICITATION_FAILED = "The planner failed to invoke tools. Please try again."
UNEXPECTED_ERROR = "Something went wrong while planning your day. Please try again."


class Phase(str, Enum):
    RESOLVING_CITY = "resolving_city"
    ELICITING_TOOLS = "eliciting_tools"
    DISPATCHING_TOOLS = "dispatching_tools"
    FORCING_MANDATORY_TOOLS = "forcing_mandatory_tools"
    SYNTHESIZING = "synthesizing"
    DONE = "done"
    FAILED = "failed"


@dataclass
class PlanRun:
    """Per-request state. Never shared between requests."""

    request: PlanRequest
    stream: EventStream
    budget: DeadlineBudget
    transcript: ConversationTranscript = field(default_factory=ConversationTranscript)
    city: str = ""
    phase: Optional[Phase] = None
    elicit_calls: int = 0
    synthesis_calls: int = 0
    invocations: List[ToolInvocation] = field(default_factory=list)
    results: List[ToolResult] = field(default_factory=list)


def token_budget(request: PlanRequest, remaining: float, config: _Config = CONFIG) -> int:
    if request.is_multi_day:
        tokens = min(request.days * config.tokens_per_day, config.max_tokens_multi_day)
    else:
        tokens = config.tokens_single_day
    for threshold, cap in config.token_pressure_tiers:
        if remaining < threshold:
            tokens = min(tokens, cap)
    return tokens


def tool_window(budget: DeadlineBudget, config: _Config = CONFIG) -> DeadlineBudget:
    """Sub-deadline for a tool batch, leaving room for synthesis."""
    return budget.child(max(budget.remaining() - config.synthesis_reserve_sec, config.min_tool_budget_sec))


def _accommodation_budget(budget: str) -> Optional[str]:
    if budget in ("free", "low"):
        return "low"
    if budget in ("medium", "high"):
        return budget
    return None


class PlanOrchestrator:
    def __init__(
        self,
        llm: LLMClient,
        executor: ToolExecutor,
        resolver: CityResolver,
        config: _Config = CONFIG,
        clock: Optional[Clock] = None,
    ) -> None:
        self._llm = llm
        self._executor = executor
        self._resolver = resolver
        self._config = config
        self._clock = clock

    @property
    def llm_configured(self) -> bool:
        return self._llm.configured

    async def run(self, request: PlanRequest, stream: EventStream) -> PlanRun:
        run = PlanRun(
            request=request,
            stream=stream,
            budget=DeadlineBudget(self._config.deadline_sec, clock=self._clock),
        )
        try:
            await stream.emit(ConnectedEvent())
            if not self._llm.configured:
                raise ConfigurationError("The planner is not configured: missing LLM API key.")

            await self._resolve_city(run)
            completion = await self._elicit(run)
            await self._dispatch(run, completion)
            await self._force_mandatory(run)
            self._record_tool_turn(run, completion)
            await self._synthesize(run)

            self._enter(run, Phase.DONE)
            await stream.emit(DoneEvent())
        except ClientDisconnected:
            logging.info(f"[controller] client disconnected during {run.phase.value if run.phase else 'start'}")
        except PlanError as e:
            self._enter(run, Phase.FAILED, error=e.message)
            await self._fail(stream, e.message)
        except Exception:
            logging.exception(f"[controller] unexpected failure during {run.phase.value if run.phase else 'start'}")
            self._enter(run, Phase.FAILED, error="unexpected")
            await self._fail(stream, UNEXPECTED_ERROR)
        return run

    # -- phases -----------------------------------------------------------

    async def _resolve_city(self, run: PlanRun) -> None:
        self._enter(run, Phase.RESOLVING_CITY)
        try:
            run.city = await asyncio.wait_for(self._resolver.resolve(run.request.city), run.budget.remaining())
        except asyncio.TimeoutError:
            run.city = run.request.city
        run.stream.checkpoint()
        await run.stream.emit(CityResolvedEvent(content=run.city))
        if run.request.is_multi_day:
            opening = f"Planning your {run.request.days}-day adventure in {run.city}..."
        else:
            opening = f"Planning your perfect day in {run.city}..."
        await run.stream.emit(ThinkingChunkEvent(thinking=opening))

    async def _elicit(self, run: PlanRun) -> Completion:
        self._enter(run, Phase.ELICITING_TOOLS)
        run.transcript.append(Message(role="system", content=build_system_prompt(run.request, run.city)))
        run.transcript.append(Message(role="user", content=build_user_message(run.request, run.city)))

        attempts = self._config.elicit_max_attempts
        for attempt in range(1, attempts + 1):
            run.stream.checkpoint()
            run.budget.require(self._config.elicit_floor_sec, Phase.ELICITING_TOOLS.value)
            run.elicit_calls += 1
            try:
                completion = await self._bounded(
                    run,
                    Phase.ELICITING_TOOLS,
                    self._llm.complete(
                        run.transcript.messages,
                        tools=tool_schemas(),
                        tool_choice="auto",
                        temperature=self._config.elicit_temperature,
                        max_tokens=self._config.elicit_max_tokens,
                    ),
                )
            except LLMError as e:
                logging.warning(f"[controller] elicitation attempt {attempt} failed: {e}")
                continue
            run.stream.checkpoint()

            if completion.tool_calls:
                if completion.content:
                    await run.stream.emit(ThinkingChunkEvent(thinking=completion.content))
                return completion

            logging.warning(f"[controller] elicitation attempt {attempt} returned prose without tool calls")
            if attempt < attempts:
                run.transcript.append(Message(role="assistant", content=completion.content or ""))
                run.transcript.append(Message(role="user", content=CORRECTIVE_TOOL_INSTRUCTION))

        raise ToolElicitationError(ELICITATION_FAILED)

    async def _dispatch(self, run: PlanRun, completion: Completion) -> None:
        self._enter(run, Phase.DISPATCHING_TOOLS)
        run.stream.checkpoint()
        run.budget.require(self._config.dispatch_floor_sec, Phase.DISPATCHING_TOOLS.value, GATHERING_TOO_LONG)
        invocations = [self._with_city(inv, run.city) for inv in completion.tool_calls]
        results = await self._run_batch(run, invocations)
        run.invocations.extend(invocations)
        run.results.extend(results)

    async def _force_mandatory(self, run: PlanRun) -> None:
        self._enter(run, Phase.FORCING_MANDATORY_TOOLS)
        run.stream.checkpoint()
        if run.request.right_now:
            return
        if run.budget.remaining() < self._config.mandatory_tool_floor_sec:
            logging.info(f"[controller] skipping mandatory tools, {run.budget.remaining():.1f}s left")
            return

        requested = {inv.name for inv in run.invocations}
        forced: List[ToolInvocation] = []
        for name in self._config.mandatory_tools:
            try:
                tool = resolve_tool(name)
            except UnknownToolError as e:
                logging.warning(f"[controller] ignoring mandatory tool: {e}")
                continue
            if tool.value in requested:
                continue
            args = {"city": run.city}
            if tool is ToolName.GET_ACCOMMODATIONS:
                budget = _accommodation_budget(run.request.budget)
                if budget:
                    args["budget"] = budget
            forced.append(ToolInvocation(id=new_call_id(), name=tool.value, arguments=args))

        if not forced:
            return
        results = await self._run_batch(run, forced)
        run.invocations.extend(forced)
        run.results.extend(results)

    def _record_tool_turn(self, run: PlanRun, completion: Completion) -> None:
        # The forced calls join the model's own turn so every call is answered in one block.
        run.transcript.append(
            Message(role="assistant", content=completion.content, tool_calls=list(run.invocations))
        )
        for inv, result in zip(run.invocations, run.results):
            run.transcript.append(
                Message(
                    role="tool",
                    tool_call_id=inv.id,
                    name=inv.name,
                    content=json.dumps(result.for_model(), default=str),
                )
            )

    async def _synthesize(self, run: PlanRun) -> None:
        self._enter(run, Phase.SYNTHESIZING)
        run.stream.checkpoint()
        run.budget.require(self._config.synthesis_floor_sec, Phase.SYNTHESIZING.value, GATHERING_TOO_LONG)
        await run.stream.emit(ThinkingChunkEvent(thinking=f"Gathered data from {sum(r.success for r in run.results)} sources..."))

        if await self._stream_synthesis(run):
            return

        for _ in range(1, self._config.synthesis_max_attempts):
            run.stream.checkpoint()
            if run.budget.remaining() < self._config.synthesis_retry_floor_sec:
                break
            await run.stream.emit(ThinkingChunkEvent(thinking="Generating itinerary (retry)..."))
            if await self._fallback_synthesis(run):
                return

        raise SynthesisError(SYNTHESIS_FAILED)

    async def _stream_synthesis(self, run: PlanRun) -> bool:
        run.synthesis_calls += 1
        max_tokens = token_budget(run.request, run.budget.remaining(), self._config)
        received = False
        try:
            async with asyncio.timeout(run.budget.remaining()):
                async with aclosing(
                    self._llm.stream(
                        run.transcript.messages,
                        temperature=self._config.synthesis_temperature,
                        max_tokens=max_tokens,
                    )
                ) as deltas:
                    async for delta in deltas:
                        if delta.content:
                            received = True
                            await run.stream.emit(ContentChunkEvent(content=delta.content))
                        if delta.finish_reason == "length":
                            logging.warning(f"[controller] itinerary hit the {max_tokens} token limit and may be cut off")
        except TimeoutError:
            raise DeadlineExceeded(Phase.SYNTHESIZING.value) from None
        except LLMError as e:
            if received:
                raise SynthesisError("The itinerary stream was interrupted. Please try again.") from e
            logging.warning(f"[controller] streaming synthesis failed: {e}")
        if not received:
            logging.warning("[controller] streaming synthesis produced no content")
        return received

    async def _fallback_synthesis(self, run: PlanRun) -> bool:
        run.synthesis_calls += 1
        try:
            completion = await self._bounded(
                run,
                Phase.SYNTHESIZING,
                self._llm.complete(
                    run.transcript.messages,
                    tools=None,
                    tool_choice="none",
                    temperature=self._config.synthesis_temperature,
                    max_tokens=token_budget(run.request, run.budget.remaining(), self._config),
                ),
            )
        except LLMError as e:
            logging.warning(f"[controller] fallback synthesis failed: {e}")
            return False
        text = completion.content or ""
        if not text:
            return False
        size = self._config.fallback_chunk_size
        for i in range(0, len(text), size):
            await run.stream.emit(ContentChunkEvent(content=text[i:i + size]))
        return True

    # -- helpers ----------------------------------------------------------

    async def _run_batch(self, run: PlanRun, invocations: List[ToolInvocation]) -> List[ToolResult]:
        for inv in invocations:
            await run.stream.emit(ToolCallStartEvent(tool=inv.name, args=inv.arguments))
        dispatcher = ToolDispatcher(self._executor, run.stream)
        return await dispatcher.dispatch(
            invocations,
            tool_window(run.budget, self._config),
            right_now=run.request.right_now,
            current_hour=run.request.current_hour,
        )

    @staticmethod
    def _with_city(inv: ToolInvocation, city: str) -> ToolInvocation:
        if inv.arguments.get("city"):
            return inv
        return ToolInvocation(id=inv.id or new_call_id(), name=inv.name, arguments={**inv.arguments, "city": city})

    async def _bounded(self, run: PlanRun, phase: Phase, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=run.budget.remaining())
        except asyncio.TimeoutError:
            raise DeadlineExceeded(phase.value) from None

    def _enter(self, run: PlanRun, phase: Phase, **extra: Any) -> None:
        run.phase = phase
        log_data = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "svc": "orchestrator",
            "fn": "plan",
            "phase": phase.value,
            "elapsed_ms": f"{run.budget.elapsed_ms():.2f}",
            "city": run.city or run.request.city,
            **extra,
        }
        logging.info(json.dumps(log_data))

    @staticmethod
    async def _fail(stream: EventStream, message: str) -> None:
        try:
            await stream.emit(ErrorEvent(error=message))
        except ClientDisconnected:
            pass
