from typing import List, Optional
import logging
import time
import json
from datetime import datetime, timezone

import httpx
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from ..deps import get_api_key, get_http_client
from ..config import CONFIG
from ..geocoding import CityRequest, geocode_city


router = APIRouter(dependencies=[Depends(get_api_key)])

# WMO weather interpretation codes used by Open-Meteo
WEATHER_CODES = {
    0: "clear sky",
    1: "mainly clear",
    2: "partly cloudy",
    3: "overcast",
    45: "fog",
    48: "rime fog",
    51: "light drizzle",
    53: "drizzle",
    55: "dense drizzle",
    61: "light rain",
    63: "rain",
    65: "heavy rain",
    71: "light snow",
    73: "snow",
    75: "heavy snow",
    80: "rain showers",
    81: "heavy rain showers",
    82: "violent rain showers",
    95: "thunderstorm",
    96: "thunderstorm with hail",
    99: "thunderstorm with heavy hail",
}


class HourlyPoint(BaseModel):
    time: str
    temp_c: Optional[float] = None
    precip_prob: Optional[float] = None
    uv_index: Optional[float] = None


class CurrentWeatherResponse(BaseModel):
    city: str
    temp_c: float
    feels_like_c: Optional[float] = None
    wind_kph: Optional[float] = None
    condition: str
    precip_prob_max: float
    uv_index_max: Optional[float] = None
    hourly: List[HourlyPoint]
    summary: str


def _at(values: list, i: int) -> Optional[float]:
    try:
        v = values[i]
    except IndexError:
        return None
    return None if v is None else float(v)


@router.post("/current", response_model=CurrentWeatherResponse)
async def current(req: CityRequest, client: httpx.AsyncClient = Depends(get_http_client)) -> CurrentWeatherResponse:
    point = await geocode_city(client, req.city)
    start_time = time.monotonic()
    params = {
        "latitude": point.lat,
        "longitude": point.lon,
        "current": "temperature_2m,apparent_temperature,weather_code,wind_speed_10m",
        "hourly": "temperature_2m,precipitation_probability,uv_index",
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

    now = data.get("current") or {}
    hourly = data.get("hourly") or {}
    times = hourly.get("time") or []
    temps = hourly.get("temperature_2m") or []
    precips = hourly.get("precipitation_probability") or []
    uvs = hourly.get("uv_index") or []

    try:
        temp_c = float(now["temperature_2m"])
    except (KeyError, TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Open-Meteo response malformed",
        )

    # Only the rest of the caller's day is relevant.
    first_hour = req.local_hour if req.local_hour is not None else 0
    points: List[HourlyPoint] = []
    for i, t in enumerate(times):
        try:
            hour = int(t[11:13])
        except (TypeError, ValueError):
            continue
        if hour < first_hour:
            continue
        if req.right_now and hour > first_hour + 2:
            break
        points.append(HourlyPoint(time=t, temp_c=_at(temps, i), precip_prob=_at(precips, i), uv_index=_at(uvs, i)))

    precip_max = max((p.precip_prob for p in points if p.precip_prob is not None), default=0.0)
    uv_values = [p.uv_index for p in points if p.uv_index is not None]
    uv_max = max(uv_values) if uv_values else None
    condition = WEATHER_CODES.get(now.get("weather_code"), "unknown")
    feels_like = now.get("apparent_temperature")
    wind = now.get("wind_speed_10m")

    summary = f"{temp_c:.0f}°C, {condition}, {precip_max:.0f}% max chance of rain"
    if uv_max is not None and uv_max >= 6:
        summary += f", high UV ({uv_max:.0f})"

    log_data = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "tool": "mcp-weather",
        "fn": "current",
        "latency_ms": f"{latency_ms:.2f}",
        "ok": True,
        "http_status": http_status,
    }
    logging.info(json.dumps(log_data))
    return CurrentWeatherResponse(
        city=req.city,
        temp_c=temp_c,
        feels_like_c=None if feels_like is None else float(feels_like),
        wind_kph=None if wind is None else float(wind),
        condition=condition,
        precip_prob_max=precip_max,
        uv_index_max=uv_max,
        hourly=points,
        summary=summary,
    )
