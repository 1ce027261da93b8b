from typing import Optional

import httpx
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..deps import get_api_key, get_http_client
from ..geocoding import geocode_city


router = APIRouter(dependencies=[Depends(get_api_key)])


class GeocodeRequest(BaseModel):
    city: str
    country_hint: Optional[str] = None


class GeocodeResponse(BaseModel):
    lat: float
    lon: float
    display_name: str
    country_code: Optional[str] = None


@router.post("/geocode", response_model=GeocodeResponse)
async def geocode(req: GeocodeRequest, client: httpx.AsyncClient = Depends(get_http_client)) -> GeocodeResponse:
    point = await geocode_city(client, req.city, req.country_hint)
    return GeocodeResponse(**point.model_dump())
