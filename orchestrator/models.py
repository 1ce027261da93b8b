from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PlanRequest(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    city: str = Field(..., min_length=1, max_length=200)
    interests: List[str] = Field(default_factory=list)
    budget: Literal["any", "free", "low", "medium", "high"] = "any"
    mood: Optional[str] = Field(default=None, max_length=500)
    energy_level: Optional[Literal["low", "medium", "high"]] = Field(default=None, alias="energyLevel")
    dietary: List[str] = Field(default_factory=list)
    accessible: bool = False
    date_night: bool = Field(default=False, alias="dateNight")
    anti_routine: bool = Field(default=False, alias="antiRoutine")
    past_places: List[str] = Field(default_factory=list, alias="pastPlaces")
    recurring: bool = False
    right_now: bool = Field(default=False, alias="rightNow")
    days: int = Field(default=1, ge=1, le=7)
    current_hour: Optional[int] = Field(default=None, ge=0, le=23, alias="currentHour")
    timezone: Optional[str] = None

    @field_validator("city")
    @classmethod
    def _strip_city(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("city must not be blank")
        return v

    @property
    def is_multi_day(self) -> bool:
        return self.days > 1


class ToolInvocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ToolResult(BaseModel):
    success: bool
    data: Any = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Any) -> "ToolResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> "ToolResult":
        return cls(success=False, error=error or "Tool execution failed")

    def for_model(self) -> Dict[str, Any]:
        """Payload written into the transcript for the LLM to read."""
        if self.success:
            return {"success": True, "data": self.data}
        return {"success": False, "error": self.error}


Role = Literal["system", "user", "assistant", "tool"]


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Role
    content: Optional[str] = None
    tool_calls: List[ToolInvocation] = Field(default_factory=list)
    tool_call_id: Optional[str] = None
    name: Optional[str] = None


class ConversationTranscript:
    """Append-only message history for one request."""

    def __init__(self, messages: Optional[List[Message]] = None) -> None:
        self._messages: List[Message] = []
        for m in messages or []:
            self.append(m)

    def append(self, message: Message) -> None:
        self._messages.append(message)

    def extend(self, messages: List[Message]) -> None:
        for m in messages:
            self.append(m)

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    def pending_tool_calls(self) -> List[str]:
        """Ids of assistant tool calls that have no matching tool message yet."""
        requested: List[str] = []
        answered = set()
        for m in self._messages:
            if m.role == "assistant":
                requested.extend(tc.id for tc in m.tool_calls)
            elif m.role == "tool" and m.tool_call_id:
                answered.add(m.tool_call_id)
        return [tc_id for tc_id in requested if tc_id not in answered]

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self):
        return iter(list(self._messages))
