import os
from typing import Final


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


def _parse_tiers(raw: str) -> list[tuple[float, int]]:
    """Parse "25:8000,15:4000" into [(25.0, 8000), (15.0, 4000)], loosest first."""
    tiers: list[tuple[float, int]] = []
    for part in raw.split(","):
        if ":" not in part:
            continue
        secs, cap = part.split(":", 1)
        try:
            tiers.append((float(secs), int(cap)))
        except ValueError:
            continue
    tiers.sort(key=lambda t: t[0], reverse=True)
    return tiers


class _Config:
    def __init__(self) -> None:
        # LLM endpoint
        self.llm_provider: str = os.getenv("LLM_PROVIDER", "gemini").strip().lower()
        self.gemini_api_key: str | None = os.getenv("GEMINI_API_KEY")
        self.gemini_model: str = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
        self.llm_base_url: str = os.getenv("LLM_BASE_URL", "https://api.dedaluslabs.ai/v1")
        self.llm_api_key: str | None = os.getenv("LLM_API_KEY")
        self.llm_model: str = os.getenv("LLM_MODEL", "anthropic/claude-sonnet-4-5")
        self.elicit_temperature: float = _float_env("ELICIT_TEMPERATURE", 0.3)
        self.synthesis_temperature: float = _float_env("SYNTHESIS_TEMPERATURE", 0.7)
        self.elicit_max_tokens: int = _int_env("ELICIT_MAX_TOKENS", 2048)

        # Tool service
        self.mcp_tools_url: str = os.getenv("MCP_TOOLS_URL", "http://mcp-tools:3001").rstrip("/")
        self.mcp_api_key: str | None = os.getenv("MCP_API_KEY")
        self.http_timeout_sec: float = _float_env("HTTP_TIMEOUT_SEC", 15.0)
        self.user_agent: str = os.getenv("ORCHESTRATOR_USER_AGENT", "CityDayPlanner-Orchestrator")

        # City resolution
        self.nominatim_base: str = os.getenv("NOMINATIM_BASE", "https://nominatim.openstreetmap.org")
        self.city_resolve_timeout_sec: float = _float_env("CITY_RESOLVE_TIMEOUT_SEC", 1.5)

        # Deadline budget (seconds)
        self.deadline_sec: float = _float_env("PLAN_DEADLINE_SEC", 55.0)
        self.elicit_floor_sec: float = _float_env("ELICIT_FLOOR_SEC", 20.0)
        self.dispatch_floor_sec: float = _float_env("DISPATCH_FLOOR_SEC", 10.0)
        self.synthesis_floor_sec: float = _float_env("SYNTHESIS_FLOOR_SEC", 8.0)
        self.synthesis_reserve_sec: float = _float_env("SYNTHESIS_RESERVE_SEC", 30.0)
        self.min_tool_budget_sec: float = _float_env("MIN_TOOL_BUDGET_SEC", 5.0)
        self.synthesis_retry_floor_sec: float = _float_env("SYNTHESIS_RETRY_FLOOR_SEC", 10.0)

        # Mandatory tools
        self.mandatory_tools: tuple[str, ...] = tuple(
            t.strip() for t in os.getenv("MANDATORY_TOOLS", "get_accommodations").split(",") if t.strip()
        )
        self.mandatory_tool_floor_sec: float = _float_env("MANDATORY_TOOL_FLOOR_SEC", 30.0)

        # Retry ceilings
        self.elicit_max_attempts: int = max(1, _int_env("ELICIT_MAX_ATTEMPTS", 2))
        self.synthesis_max_attempts: int = max(1, _int_env("SYNTHESIS_MAX_ATTEMPTS", 2))

        # Token budget
        self.tokens_single_day: int = _int_env("TOKENS_SINGLE_DAY", 12000)
        self.tokens_per_day: int = _int_env("TOKENS_PER_DAY", 4000)
        self.max_tokens_multi_day: int = _int_env("MAX_TOKENS_MULTI_DAY", 16000)
        self.token_pressure_tiers: list[tuple[float, int]] = _parse_tiers(
            os.getenv("TOKEN_PRESSURE_TIERS", "25:8000,15:4000")
        )

        # Streaming
        self.fallback_chunk_size: int = max(1, _int_env("FALLBACK_CHUNK_SIZE", 100))
        self.event_queue_size: int = max(1, _int_env("EVENT_QUEUE_SIZE", 64))

        # HTTP surface
        self.plan_rate_limit: str = os.getenv("PLAN_RATE_LIMIT", "20/minute")


CONFIG: Final[_Config] = _Config()
