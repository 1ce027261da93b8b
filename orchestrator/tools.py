"""Typed tool registry.

Every tool the model may call is a ``ToolName`` member mapped to a
``ToolSpec``: its schema for the LLM, a pydantic model for its arguments,
and the tool-service endpoint that serves it.
"""
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Type

import httpx
from pydantic import BaseModel, Field, ValidationError

from .budget import DeadlineBudget
from .config import CONFIG, _Config
from .errors import InvalidToolArguments, UnknownToolError
from .models import ToolResult


class ToolName(str, Enum):
    GET_WEATHER = "get_weather"
    GET_SUNRISE_SUNSET = "get_sunrise_sunset"
    GET_AIR_QUALITY = "get_air_quality"
    GET_PUBLIC_HOLIDAYS = "get_public_holidays"
    GET_ATTRACTIONS = "get_attractions"
    GET_RESTAURANT_RECOMMENDATIONS = "get_restaurant_recommendations"
    GET_ACCOMMODATIONS = "get_accommodations"


def resolve_tool(name: str) -> ToolName:
    try:
        return ToolName(name)
    except ValueError:
        raise UnknownToolError(name) from None


class CityArgs(BaseModel):
    city: str = Field(..., min_length=1)


class RestaurantArgs(CityArgs):
    cuisine: Optional[str] = None
    budget: Optional[str] = None


class AttractionArgs(CityArgs):
    interest: Optional[str] = None


class AccommodationArgs(CityArgs):
    budget: Optional[str] = None
    type: Optional[str] = None


@dataclass(frozen=True)
class ToolSpec:
    name: ToolName
    description: str
    args_model: Type[BaseModel]
    path: str
    parameters: Dict[str, Any]
    fixed_body: Dict[str, Any] = field(default_factory=dict)

    def schema(self) -> Dict[str, Any]:
        return {
            "name": self.name.value,
            "description": self.description,
            "parameters": self.parameters,
        }


def _city_params(extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    props: Dict[str, Any] = {
        "city": {"type": "string", "description": 'City name (e.g., "San Francisco", "Kyoto")'},
    }
    props.update(extra or {})
    return {"type": "object", "properties": props, "required": ["city"]}


_BUDGET_PARAM = {
    "type": "string",
    "description": 'Budget level: "low", "medium" or "high"',
    "enum": ["low", "medium", "high"],
}


TOOL_SPECS: Dict[ToolName, ToolSpec] = {
    ToolName.GET_WEATHER: ToolSpec(
        name=ToolName.GET_WEATHER,
        description=(
            "Current weather and today's hourly outlook for a city: temperature, feels-like, "
            "rain probability, wind and UV. Use it to give concrete weather advice per time of day."
        ),
        args_model=CityArgs,
        path="/weather/current",
        parameters=_city_params(),
    ),
    ToolName.GET_SUNRISE_SUNSET: ToolSpec(
        name=ToolName.GET_SUNRISE_SUNSET,
        description="Sunrise, sunset and golden-hour windows for today in a city.",
        args_model=CityArgs,
        path="/sun/times",
        parameters=_city_params(),
    ),
    ToolName.GET_AIR_QUALITY: ToolSpec(
        name=ToolName.GET_AIR_QUALITY,
        description="Current air quality (PM2.5, PM10, ozone) and a health category for a city.",
        args_model=CityArgs,
        path="/air/quality",
        parameters=_city_params(),
    ),
    ToolName.GET_PUBLIC_HOLIDAYS: ToolSpec(
        name=ToolName.GET_PUBLIC_HOLIDAYS,
        description="Public holidays today and in the coming week for the country a city is in.",
        args_model=CityArgs,
        path="/calendar/upcoming",
        parameters=_city_params(),
    ),
    ToolName.GET_ATTRACTIONS: ToolSpec(
        name=ToolName.GET_ATTRACTIONS,
        description="Attractions, museums, parks and landmarks in a city with map links.",
        args_model=AttractionArgs,
        path="/places/search",
        parameters=_city_params(
            {"interest": {"type": "string", "description": "Optional focus, e.g. museums, parks, art"}}
        ),
        fixed_body={"category": "attractions"},
    ),
    ToolName.GET_RESTAURANT_RECOMMENDATIONS: ToolSpec(
        name=ToolName.GET_RESTAURANT_RECOMMENDATIONS,
        description="Restaurant recommendations for a city with cuisine, opening hours and map links.",
        args_model=RestaurantArgs,
        path="/places/search",
        parameters=_city_params(
            {
                "cuisine": {"type": "string", "description": "Preferred cuisine type (optional)"},
                "budget": _BUDGET_PARAM,
            }
        ),
        fixed_body={"category": "restaurants"},
    ),
    ToolName.GET_ACCOMMODATIONS: ToolSpec(
        name=ToolName.GET_ACCOMMODATIONS,
        description="Hotels, hostels and guest houses in a city with map links.",
        args_model=AccommodationArgs,
        path="/places/search",
        parameters=_city_params(
            {
                "budget": _BUDGET_PARAM,
                "type": {"type": "string", "description": "hotel, hostel, boutique or apartment (optional)"},
            }
        ),
        fixed_body={"category": "accommodations"},
    ),
}


def tool_schemas() -> List[Dict[str, Any]]:
    return [spec.schema() for spec in TOOL_SPECS.values()]


def validate_arguments(name: ToolName, args: Dict[str, Any]) -> BaseModel:
    spec = TOOL_SPECS[name]
    try:
        return spec.args_model.model_validate(args or {})
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) or "arguments" for err in e.errors())
        raise InvalidToolArguments(f"Invalid arguments for {name.value}: {fields}") from e


@dataclass(frozen=True)
class ToolContext:
    right_now: bool = False
    current_hour: Optional[int] = None
    deadline: Optional[DeadlineBudget] = None


class ToolExecutor(Protocol):
    async def execute(self, name: str, args: Dict[str, Any], context: ToolContext) -> ToolResult:
        ...


class McpToolExecutor:
    """Executes tools by calling the ``mcp_tools`` service over HTTP."""

    def __init__(self, client: httpx.AsyncClient, config: _Config = CONFIG) -> None:
        self._client = client
        self._config = config

    def _headers(self) -> Dict[str, str]:
        return {
            "X-API-KEY": self._config.mcp_api_key or "",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": self._config.user_agent,
        }

    def _timeout(self, context: ToolContext) -> float:
        timeout = self._config.http_timeout_sec
        if context.deadline is not None:
            timeout = min(timeout, context.deadline.remaining())
        return max(timeout, 0.001)

    async def execute(self, name: str, args: Dict[str, Any], context: ToolContext) -> ToolResult:
        tool = resolve_tool(name)
        spec = TOOL_SPECS[tool]
        parsed = validate_arguments(tool, args)
        body: Dict[str, Any] = {**parsed.model_dump(exclude_none=True), **spec.fixed_body}
        body["right_now"] = context.right_now
        if context.current_hour is not None:
            body["local_hour"] = context.current_hour

        start_time = time.monotonic()
        ok = False
        http_status: Optional[int] = None
        try:
            resp = await self._client.post(
                f"{self._config.mcp_tools_url}{spec.path}",
                json=body,
                headers=self._headers(),
                timeout=self._timeout(context),
            )
            http_status = resp.status_code
            if resp.status_code != 200:
                detail = _error_detail(resp)
                return ToolResult.fail(f"{tool.value} failed ({resp.status_code}): {detail}")
            result = ToolResult.ok(resp.json())
            ok = True
            return result
        except httpx.TimeoutException:
            return ToolResult.fail(f"{tool.value} timed out")
        except httpx.HTTPError as e:
            return ToolResult.fail(f"{tool.value} request failed: {e}")
        except ValueError:
            return ToolResult.fail(f"{tool.value} returned malformed data")
        finally:
            log_data = {
                "ts": datetime.now(timezone.utc).isoformat(),
                "svc": "orchestrator",
                "tool": tool.value,
                "latency_ms": f"{(time.monotonic() - start_time) * 1000:.2f}",
                "ok": ok,
                "http_status": http_status,
            }
            logging.info(json.dumps(log_data))


def _error_detail(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text[:200] or "no detail"
    if isinstance(data, dict) and data.get("detail"):
        return str(data["detail"])
    return json.dumps(data)[:200]
