import asyncio
from typing import Annotated, Any, AsyncIterator, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from .errors import ClientDisconnected, StreamClosed
from .models import ToolResult


class ConnectedEvent(BaseModel):
    type: Literal["connected"] = "connected"


class CityResolvedEvent(BaseModel):
    type: Literal["city_resolved"] = "city_resolved"
    content: str


class ThinkingChunkEvent(BaseModel):
    type: Literal["thinking_chunk"] = "thinking_chunk"
    thinking: str


class ToolCallStartEvent(BaseModel):
    type: Literal["tool_call_start"] = "tool_call_start"
    tool: str
    args: Dict[str, Any] = Field(default_factory=dict)


class ToolCallResultEvent(BaseModel):
    type: Literal["tool_call_result"] = "tool_call_result"
    tool: str
    result: ToolResult


class ContentChunkEvent(BaseModel):
    type: Literal["content_chunk"] = "content_chunk"
    content: str


class DoneEvent(BaseModel):
    type: Literal["done"] = "done"


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    error: str


StreamEvent = Annotated[
    Union[
        ConnectedEvent,
        CityResolvedEvent,
        ThinkingChunkEvent,
        ToolCallStartEvent,
        ToolCallResultEvent,
        ContentChunkEvent,
        DoneEvent,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]

stream_event_adapter: TypeAdapter = TypeAdapter(StreamEvent)

TERMINAL_TYPES = frozenset({"done", "error"})


def is_terminal(event: BaseModel) -> bool:
    return getattr(event, "type", None) in TERMINAL_TYPES


def to_sse(event: BaseModel) -> str:
    return f"data: {event.model_dump_json(exclude_none=True)}\n\n"


_END = object()


class EventStream:
    """Ordered one-way channel from the orchestration task to the transport.

    The writer calls ``emit``; the reader iterates with ``async for``. A
    terminal event ends the stream. ``close`` models the caller going away:
    any later ``emit``/``checkpoint`` raises ``ClientDisconnected`` and the
    reader stops.
    """

    def __init__(self, maxsize: int = 64) -> None:
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue(maxsize=maxsize)
        self._terminated = False
        self._closed = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def terminated(self) -> bool:
        return self._terminated

    def checkpoint(self) -> None:
        if self._closed.is_set():
            raise ClientDisconnected()

    async def emit(self, event: BaseModel) -> None:
        self.checkpoint()
        if self._terminated:
            raise StreamClosed(f"stream already terminated; dropped {getattr(event, 'type', event)!r}")
        terminal = is_terminal(event)
        if terminal:
            self._terminated = True
        await self._put(event)
        if terminal:
            await self._put(_END)

    async def _put(self, item: Any) -> None:
        # A full queue must not wedge the writer once the reader is gone.
        put = asyncio.ensure_future(self._queue.put(item))
        closed = asyncio.ensure_future(self._closed.wait())
        try:
            await asyncio.wait({put, closed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not put.done():
                put.cancel()
            closed.cancel()
        if put.cancelled() or not put.done():
            raise ClientDisconnected()

    def close(self) -> None:
        """Called by the transport when the caller disconnects."""
        if self._closed.is_set():
            return
        self._closed.set()
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_END)

    def __aiter__(self) -> AsyncIterator[BaseModel]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[BaseModel]:
        while True:
            item = await self._queue.get()
            if item is _END:
                return
            yield item

    async def collect(self, timeout: Optional[float] = None) -> list:
        """Drain the stream into a list; used by tests and the CLI smoke path."""
        async def _drain() -> list:
            return [event async for event in self]

        if timeout is None:
            return await _drain()
        return await asyncio.wait_for(_drain(), timeout)
