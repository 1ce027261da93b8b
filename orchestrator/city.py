import asyncio
import json
import logging
import re
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from .config import CONFIG, _Config


# Names that exist in several countries/states; keep the state to disambiguate.
AMBIGUOUS_CITY_NAMES = {
    "cambridge", "springfield", "portland", "richmond", "columbia", "jackson",
    "lincoln", "franklin", "madison", "clinton", "greenville", "burlington",
    "manchester", "windsor", "hamilton", "georgetown", "newcastle", "victoria",
}

LOW_IMPORTANCE = 0.3
_CITY_OF = re.compile(r"^City of\s+", re.IGNORECASE)


def _importance(item: Dict[str, Any]) -> float:
    try:
        return float(item.get("importance") or 0.0)
    except (TypeError, ValueError):
        return 0.0


def _city_from_address(addr: Dict[str, Any]) -> Optional[str]:
    raw = addr.get("city") or addr.get("town") or addr.get("village") or addr.get("municipality") or addr.get("hamlet")
    if not raw:
        return None
    return _CITY_OF.sub("", str(raw)).strip() or None


def disambiguate(city: str, addr: Dict[str, Any]) -> str:
    state = addr.get("state")
    if state and city.lower() in AMBIGUOUS_CITY_NAMES:
        return f"{city}, {state}"
    return city


class CityResolver:
    """Best-effort normalization of a free-text destination.

    "Cornell" becomes "Ithaca", "Cambridge" becomes "Cambridge, Massachusetts".
    Any failure returns the input unchanged.
    """

    def __init__(self, client: httpx.AsyncClient, config: _Config = CONFIG) -> None:
        self._client = client
        self._config = config

    async def _search(self, query: str) -> List[Dict[str, Any]]:
        params = {"q": query, "format": "json", "limit": 5, "addressdetails": 1}
        headers = {"User-Agent": self._config.user_agent}
        resp = await self._client.get(
            f"{self._config.nominatim_base}/search",
            params=params,
            headers=headers,
            timeout=self._config.city_resolve_timeout_sec,
        )
        if resp.status_code != 200:
            return []
        data = resp.json()
        return data if isinstance(data, list) else []

    def _pick(self, raw: str, results: List[Dict[str, Any]]) -> tuple[Optional[str], float]:
        if not results:
            return None, 0.0
        best = max(results, key=_importance)
        addr = best.get("address") or {}
        resolved = _city_from_address(addr)
        if resolved and resolved.lower() != raw.lower():
            return disambiguate(resolved, addr), _importance(best)
        return None, _importance(best)

    async def resolve(self, raw: str) -> str:
        start_time = time.monotonic()
        resolved = raw
        try:
            picked, importance = self._pick(raw, await self._search(raw))
            if picked:
                resolved = picked
            elif importance < LOW_IMPORTANCE:
                # Institutions ("Stanford", "MIT") resolve better with a hint.
                picked, _ = self._pick(raw, await self._search(f"{raw} university"))
                if picked:
                    resolved = picked
        except (httpx.HTTPError, ValueError, asyncio.TimeoutError) as e:
            logging.warning(f"[city] resolution failed for {raw!r}: {e}")
            resolved = raw

        log_data = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "svc": "orchestrator",
            "fn": "resolve_city",
            "latency_ms": f"{(time.monotonic() - start_time) * 1000:.2f}",
            "input": raw,
            "resolved": resolved,
        }
        logging.info(json.dumps(log_data))
        return resolved
