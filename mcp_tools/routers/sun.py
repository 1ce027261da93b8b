from typing import Optional
import logging
import time
import json
from datetime import datetime, timedelta, timezone

import httpx
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from ..deps import get_api_key, get_http_client
from ..config import CONFIG
from ..geocoding import CityRequest, geocode_city


router = APIRouter(dependencies=[Depends(get_api_key)])

GOLDEN_HOUR = timedelta(hours=1)


class Window(BaseModel):
    start: str
    end: str


class SunTimesResponse(BaseModel):
    city: str
    sunrise: str
    sunset: str
    daylight_hours: Optional[float] = None
    golden_hour_morning: Window
    golden_hour_evening: Window


def _fmt(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%dT%H:%M")


@router.post("/times", response_model=SunTimesResponse)
async def times(req: CityRequest, client: httpx.AsyncClient = Depends(get_http_client)) -> SunTimesResponse:
    point = await geocode_city(client, req.city)
    start_time = time.monotonic()
    params = {
        "latitude": point.lat,
        "longitude": point.lon,
        "daily": "sunrise,sunset,daylight_duration",
        "forecast_days": 1,
        "timezone": "auto",
    }
    headers = {"User-Agent": CONFIG.user_agent}
    try:
        resp = await client.get(CONFIG.open_meteo_base, params=params, headers=headers)
        if resp.status_code != 200:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=f"Open-Meteo error: {resp.status_code}",
            )
        data = resp.json()
        latency_ms = (time.monotonic() - start_time) * 1000
        http_status = resp.status_code
    except httpx.HTTPError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Open-Meteo request failed: {str(e)}",
        )

    daily = data.get("daily") or {}
    try:
        sunrise = datetime.fromisoformat(daily["sunrise"][0])
        sunset = datetime.fromisoformat(daily["sunset"][0])
    except (KeyError, IndexError, TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Open-Meteo response malformed",
        )
    daylight = (daily.get("daylight_duration") or [None])[0]

    log_data = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "tool": "mcp-sun",
        "fn": "times",
        "latency_ms": f"{latency_ms:.2f}",
        "ok": True,
        "http_status": http_status,
    }
    logging.info(json.dumps(log_data))
    return SunTimesResponse(
        city=req.city,
        sunrise=_fmt(sunrise),
        sunset=_fmt(sunset),
        daylight_hours=None if daylight is None else round(float(daylight) / 3600, 2),
        golden_hour_morning=Window(start=_fmt(sunrise), end=_fmt(sunrise + GOLDEN_HOUR)),
        golden_hour_evening=Window(start=_fmt(sunset - GOLDEN_HOUR), end=_fmt(sunset)),
    )
