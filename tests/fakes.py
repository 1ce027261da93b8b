import asyncio
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from orchestrator.config import _Config
from orchestrator.events import EventStream
from orchestrator.llm import Completion, CompletionDelta
from orchestrator.models import Message, PlanRequest, ToolInvocation, ToolResult
from orchestrator.tools import ToolContext, resolve_tool, validate_arguments


def make_config(**overrides) -> _Config:
    config = _Config()
    config.llm_provider = "gemini"
    config.gemini_api_key = "test-key"
    config.mcp_tools_url = "http://tools.test"
    config.mcp_api_key = "tools-key"
    config.deadline_sec = 55.0
    config.mandatory_tools = ("get_accommodations",)
    config.plan_rate_limit = "1000/minute"
    for key, value in overrides.items():
        if not hasattr(config, key):
            raise AttributeError(f"unknown config field {key}")
        setattr(config, key, value)
    return config


async def run_and_collect(orchestrator, request: PlanRequest, stream: Optional[EventStream] = None, timeout: float = 10.0):
    """Run one plan with a concurrent reader; returns (events, run)."""
    stream = stream or EventStream()
    reader = asyncio.create_task(stream.collect())
    run = await asyncio.wait_for(orchestrator.run(request, stream), timeout)
    if not stream.terminated:
        stream.close()
    events = await asyncio.wait_for(reader, timeout)
    return events, run


def types(events) -> List[str]:
    return [e.type for e in events]


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def tool_call(name: str, call_id: Optional[str] = None, **arguments: Any) -> ToolInvocation:
    return ToolInvocation(id=call_id or f"call_{name}", name=name, arguments=arguments)


def calls(*names: str, city: str = "Paris") -> Completion:
    return Completion(tool_calls=[tool_call(n, city=city) for n in names], finish_reason="tool_calls")


def prose(text: str) -> Completion:
    return Completion(content=text, finish_reason="stop")


# A stream script is either an exception raised up front or a list of pieces: strings become
# content deltas, a CompletionDelta is yielded as is, an exception is raised mid-stream and a
# callable runs at that point.
StreamScript = Union[List[Union[str, CompletionDelta, Exception, Callable[[], None]]], Exception]


class FakeLLMClient:
    """Scripted LLM: pops one scripted reply per call and records what it was sent."""

    def __init__(
        self,
        completions: Optional[List[Union[Completion, Exception]]] = None,
        streams: Optional[List[StreamScript]] = None,
        configured: bool = True,
        on_complete: Optional[Callable[[], None]] = None,
        stream_delay: float = 0.0,
    ) -> None:
        self._completions = list(completions or [])
        self._streams = list(streams or [])
        self._configured = configured
        self._on_complete = on_complete
        self._stream_delay = stream_delay
        self.complete_calls: List[Dict[str, Any]] = []
        self.stream_calls: List[Dict[str, Any]] = []

    @property
    def configured(self) -> bool:
        return self._configured

    async def complete(
        self,
        messages: Sequence[Message],
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: str = "auto",
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ) -> Completion:
        self.complete_calls.append(
            {
                "messages": list(messages),
                "tools": tools,
                "tool_choice": tool_choice,
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
        )
        if self._on_complete is not None:
            self._on_complete()
        reply = self._completions.pop(0) if self._completions else prose("")
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def stream(
        self,
        messages: Sequence[Message],
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ):
        self.stream_calls.append({"messages": list(messages), "temperature": temperature, "max_tokens": max_tokens})
        script = self._streams.pop(0) if self._streams else []
        if isinstance(script, Exception):
            raise script
        for piece in script:
            if self._stream_delay:
                await asyncio.sleep(self._stream_delay)
            if isinstance(piece, Exception):
                raise piece
            if isinstance(piece, CompletionDelta):
                yield piece
            elif callable(piece):
                piece()
            else:
                yield CompletionDelta(content=piece)
        yield CompletionDelta(finish_reason="stop")


Behavior = Union[ToolResult, Dict[str, Any], Exception, float, Callable[[], Any]]


class FakeToolExecutor:
    """Per-tool scripted behavior.

    A ``float`` means "sleep that long, then succeed"; use a large value to
    simulate a hung tool. Unknown tool names and bad arguments raise the
    same typed errors the real executor does.
    """

    def __init__(self, behaviors: Optional[Dict[str, Behavior]] = None, on_execute=None) -> None:
        self.behaviors = behaviors or {}
        self.on_execute = on_execute
        self.calls: List[Dict[str, Any]] = []

    async def execute(self, name: str, args: Dict[str, Any], context: ToolContext) -> ToolResult:
        self.calls.append({"name": name, "args": dict(args), "context": context})
        if self.on_execute is not None:
            self.on_execute(name)
        tool = resolve_tool(name)
        validate_arguments(tool, args)
        behavior = self.behaviors.get(name)
        if behavior is None:
            return ToolResult.ok({"tool": name, "city": args.get("city")})
        if isinstance(behavior, Exception):
            raise behavior
        if isinstance(behavior, (int, float)) and not isinstance(behavior, bool):
            await asyncio.sleep(behavior)
            return ToolResult.ok({"tool": name, "slow": True})
        if callable(behavior):
            return behavior()
        return behavior


class FakeCityResolver:
    def __init__(self, mapping: Optional[Dict[str, str]] = None, delay: float = 0.0) -> None:
        self.mapping = mapping or {}
        self.delay = delay
        self.calls: List[str] = []

    async def resolve(self, raw: str) -> str:
        self.calls.append(raw)
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.mapping.get(raw, raw)
