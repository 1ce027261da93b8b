from typing import List, Optional
import logging
import time
import json
from datetime import date, datetime, timedelta, timezone

import httpx
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from ..deps import get_api_key, get_http_client
from ..config import CONFIG
from ..geocoding import CityRequest, geocode_city


router = APIRouter(dependencies=[Depends(get_api_key)])

LOOKAHEAD_DAYS = 7


class UpcomingRequest(CityRequest):
    on: Optional[date] = None


class Holiday(BaseModel):
    date: str
    localName: str
    name: str = ""


class UpcomingResponse(BaseModel):
    city: str
    country_code: str
    is_holiday_today: bool
    today: List[Holiday]
    upcoming: List[Holiday]


async def _fetch_year(client: httpx.AsyncClient, year: int, country_code: str) -> list:
    url = f"{CONFIG.nager_base}/PublicHolidays/{year}/{country_code}"
    resp = await client.get(url, headers={"User-Agent": CONFIG.user_agent})
    if resp.status_code == 204:
        return []
    if resp.status_code != 200:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Nager.Date error: {resp.status_code}",
        )
    data = resp.json()
    return data if isinstance(data, list) else []


@router.post("/upcoming", response_model=UpcomingResponse)
async def upcoming(req: UpcomingRequest, client: httpx.AsyncClient = Depends(get_http_client)) -> UpcomingResponse:
    point = await geocode_city(client, req.city)
    if not point.country_code:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No country found for {req.city}")

    start_time = time.monotonic()
    today = req.on or datetime.now(timezone.utc).date()
    horizon = today + timedelta(days=LOOKAHEAD_DAYS)
    try:
        raw = await _fetch_year(client, today.year, point.country_code)
        if horizon.year != today.year:
            raw += await _fetch_year(client, horizon.year, point.country_code)
    except httpx.HTTPError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Nager.Date request failed: {str(e)}",
        )

    todays: List[Holiday] = []
    coming: List[Holiday] = []
    for item in raw:
        try:
            day = date.fromisoformat(str(item.get("date", "")))
        except ValueError:
            continue
        holiday = Holiday(
            date=day.isoformat(),
            localName=str(item.get("localName", "")),
            name=str(item.get("name", "")),
        )
        if day == today:
            todays.append(holiday)
        elif today < day <= horizon:
            coming.append(holiday)

    latency_ms = (time.monotonic() - start_time) * 1000
    log_data = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "tool": "mcp-calendar",
        "fn": "upcoming",
        "latency_ms": f"{latency_ms:.2f}",
        "ok": True,
        "country": point.country_code,
    }
    logging.info(json.dumps(log_data))
    return UpcomingResponse(
        city=req.city,
        country_code=point.country_code,
        is_holiday_today=bool(todays),
        today=todays,
        upcoming=coming,
    )
