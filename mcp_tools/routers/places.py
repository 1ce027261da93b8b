from typing import Dict, List, Literal, Optional
import logging
import math
import time
import json
from datetime import datetime, timezone

import httpx
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from ..deps import get_api_key, get_http_client
from ..config import CONFIG
from ..geocoding import CityRequest, geocode_city


router = APIRouter(dependencies=[Depends(get_api_key)])

Category = Literal["attractions", "restaurants", "accommodations"]

DEFAULT_QUERY = {
    "attractions": "tourist attraction",
    "restaurants": "restaurant",
    "accommodations": "hotel",
}

# OSM tags worth handing to the planner.
KEPT_TAGS = ("cuisine", "opening_hours", "website", "phone", "stars", "tourism", "amenity", "wheelchair", "diet:vegetarian", "diet:vegan")


class PlacesRequest(CityRequest):
    category: Category
    interest: Optional[str] = None
    cuisine: Optional[str] = None
    type: Optional[str] = None
    budget: Optional[str] = None
    limit: int = Field(default=10, ge=1, le=15)


class Place(BaseModel):
    name: str
    lat: float
    lon: float
    address: str = ""
    link: str
    tags: Dict[str, str] = {}


class PlacesResponse(BaseModel):
    city: str
    category: Category
    query: str
    budget: Optional[str] = None
    results: List[Place]


def build_query(req: PlacesRequest) -> str:
    if req.category == "restaurants" and req.cuisine:
        return f"{req.cuisine} restaurant"
    if req.category == "attractions" and req.interest:
        return req.interest
    if req.category == "accommodations" and req.type:
        return req.type
    return DEFAULT_QUERY[req.category]


def _bbox_from_center(lat: float, lon: float, radius_m: int) -> str:
    # 1 deg lat ~ 111.32 km; 1 deg lon ~ 111.32 km * cos(lat)
    delta_lat = radius_m / 111_320.0
    delta_lon = radius_m / (111_320.0 * max(math.cos(math.radians(lat)), 1e-6))
    # Nominatim expects "left,top,right,bottom"
    return f"{lon - delta_lon},{lat + delta_lat},{lon + delta_lon},{lat - delta_lat}"


def _dist2(a_lat: float, a_lon: float, b_lat: float, b_lon: float) -> float:
    dlat = a_lat - b_lat
    dlon = (a_lon - b_lon) * math.cos(math.radians((a_lat + b_lat) / 2.0))
    return dlat * dlat + dlon * dlon


def map_link(lat: float, lon: float) -> str:
    return f"https://www.openstreetmap.org/?mlat={lat:.6f}&mlon={lon:.6f}#map=18/{lat:.6f}/{lon:.6f}"


@router.post("/search", response_model=PlacesResponse)
async def search(req: PlacesRequest, client: httpx.AsyncClient = Depends(get_http_client)) -> PlacesResponse:
    center = await geocode_city(client, req.city)
    start_time = time.monotonic()
    query = build_query(req)
    params = {
        "q": query,
        "format": "jsonv2",
        "limit": req.limit,
        "addressdetails": 0,
        "viewbox": _bbox_from_center(center.lat, center.lon, CONFIG.places_radius_m),
        "bounded": 1,
        "extratags": 1,
    }
    headers = {"User-Agent": CONFIG.user_agent}
    try:
        resp = await client.get(f"{CONFIG.nominatim_base}/search", params=params, headers=headers)
        if resp.status_code != 200:
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail=f"Nominatim error: {resp.status_code}",
            )
        data = resp.json()
        http_status = resp.status_code
    except httpx.HTTPError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Nominatim request failed: {str(e)}",
        )

    enriched: List[Dict[str, object]] = []
    for item in data if isinstance(data, list) else []:
        try:
            i_lat = float(item["lat"])
            i_lon = float(item["lon"])
        except (TypeError, ValueError, KeyError):
            continue
        display = str(item.get("display_name") or "")
        name = item.get("name") or display.split(",")[0]
        if not name:
            continue
        enriched.append({
            "name": str(name),
            "lat": i_lat,
            "lon": i_lon,
            "address": display,
            "tags": item.get("extratags") or {},
            "dist2": _dist2(center.lat, center.lon, i_lat, i_lon),
        })

    # Deterministic ranking: distance from center, then name
    enriched.sort(key=lambda x: (x["dist2"], str(x["name"]).lower()))
    enriched = enriched[: req.limit]

    results: List[Place] = []
    for e in enriched:
        raw_tags = e.get("tags") or {}
        tags = {str(k): str(v) for k, v in raw_tags.items() if k in KEPT_TAGS} if isinstance(raw_tags, dict) else {}
        results.append(
            Place(
                name=str(e["name"]),
                lat=float(e["lat"]),
                lon=float(e["lon"]),
                address=str(e["address"]),
                link=map_link(float(e["lat"]), float(e["lon"])),
                tags=tags,
            )
        )

    latency_ms = (time.monotonic() - start_time) * 1000
    log_data = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "tool": "mcp-places",
        "fn": "search",
        "category": req.category,
        "latency_ms": f"{latency_ms:.2f}",
        "ok": True,
        "http_status": http_status,
        "count": len(results),
    }
    logging.info(json.dumps(log_data))
    return PlacesResponse(city=req.city, category=req.category, query=query, budget=req.budget, results=results)
