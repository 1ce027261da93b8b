from typing import Optional
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


class AirQualityResponse(BaseModel):
    city: str
    pm25: Optional[float] = None
    pm10: Optional[float] = None
    no2: Optional[float] = None
    o3: Optional[float] = None
    us_aqi: Optional[float] = None
    category: str
    advice: str


def categorize(pm25: Optional[float]) -> str:
    if pm25 is not None and pm25 > 75:
        return "Unhealthy"
    if pm25 is not None and pm25 > 35:
        return "Moderate"
    return "Good"


ADVICE = {
    "Unhealthy": "Mask recommended outdoors; favour indoor activities.",
    "Moderate": "Sensitive groups should limit long outdoor exertion.",
    "Good": "Air is clean; outdoor plans are fine.",
}


def _num(value) -> Optional[float]:
    try:
        return None if value is None else float(value)
    except (TypeError, ValueError):
        return None


@router.post("/quality", response_model=AirQualityResponse)
async def quality(req: CityRequest, client: httpx.AsyncClient = Depends(get_http_client)) -> AirQualityResponse:
    point = await geocode_city(client, req.city)
    start_time = time.monotonic()
    params = {
        "latitude": point.lat,
        "longitude": point.lon,
        "current": "pm2_5,pm10,ozone,nitrogen_dioxide,us_aqi",
        "timezone": "auto",
    }
    try:
        resp = await client.get(CONFIG.open_meteo_air_base, params=params, headers={"User-Agent": CONFIG.user_agent})
        if resp.status_code != 200:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=f"Open-Meteo air quality error: {resp.status_code}",
            )
        data = resp.json() or {}
        http_status = resp.status_code
    except httpx.HTTPError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Air quality request failed: {str(e)}")

    now = data.get("current") or {}
    pm25 = _num(now.get("pm2_5"))
    pm10 = _num(now.get("pm10"))
    ok = pm25 is not None or pm10 is not None

    latency_ms = (time.monotonic() - start_time) * 1000
    logging.info(json.dumps({
        "ts": datetime.now(timezone.utc).isoformat(),
        "tool": "mcp-air",
        "fn": "quality",
        "latency_ms": f"{latency_ms:.2f}",
        "ok": ok,
        "http_status": http_status,
    }))
    if not ok:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No air quality data found nearby")

    category = categorize(pm25)
    return AirQualityResponse(
        city=req.city,
        pm25=pm25,
        pm10=pm10,
        no2=_num(now.get("nitrogen_dioxide")),
        o3=_num(now.get("ozone")),
        us_aqi=_num(now.get("us_aqi")),
        category=category,
        advice=ADVICE[category],
    )
