"""City geocoding shared by every tool endpoint.

Results are cached in-process by normalized city name; the cache holds at
most ``CONFIG.geocode_cache_size`` entries and evicts the oldest first.
"""
import json
import logging
import time
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Optional

import httpx
from fastapi import HTTPException, status
from pydantic import BaseModel

from .config import CONFIG


class CityRequest(BaseModel):
    city: str
    right_now: bool = False
    local_hour: Optional[int] = None


class GeoPoint(BaseModel):
    lat: float
    lon: float
    display_name: str
    country_code: Optional[str] = None


_CACHE: "OrderedDict[str, GeoPoint]" = OrderedDict()


def _cache_key(city: str, country_hint: Optional[str]) -> str:
    return f"{city.strip().lower()}|{(country_hint or '').strip().lower()}"


def clear_cache() -> None:
    _CACHE.clear()


def cache_size() -> int:
    return len(_CACHE)


async def geocode_city(
    client: httpx.AsyncClient,
    city: str,
    country_hint: Optional[str] = None,
) -> GeoPoint:
    key = _cache_key(city, country_hint)
    cached = _CACHE.get(key)
    if cached is not None:
        _CACHE.move_to_end(key)
        return cached

    start_time = time.monotonic()
    query = city if not country_hint else f"{city}, {country_hint}"
    params = {
        "q": query,
        "format": "jsonv2",
        "limit": 1,
        "addressdetails": 1,
    }
    headers = {"User-Agent": CONFIG.user_agent}
    try:
        resp = await client.get(f"{CONFIG.nominatim_base}/search", params=params, headers=headers)
    except httpx.HTTPError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Nominatim request failed: {str(e)}",
        )
    if resp.status_code != 200:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Nominatim error: {resp.status_code}",
        )
    data = resp.json()
    latency_ms = (time.monotonic() - start_time) * 1000

    log_data = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "tool": "mcp-geo",
        "fn": "geocode",
        "latency_ms": f"{latency_ms:.2f}",
        "ok": bool(data),
        "http_status": resp.status_code,
    }
    logging.info(json.dumps(log_data))

    if not data:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"City not found: {city}")

    first = data[0]
    address = first.get("address") or {}
    point = GeoPoint(
        lat=float(first["lat"]),
        lon=float(first["lon"]),
        display_name=first.get("display_name", ""),
        country_code=(address.get("country_code") or "").upper() or None,
    )
    _CACHE[key] = point
    while len(_CACHE) > max(CONFIG.geocode_cache_size, 1):
        _CACHE.popitem(last=False)
    return point
