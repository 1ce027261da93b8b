import os
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import httpx
import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.gzip import GZipMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from mcp_tools.routers import air, calendar, geo, places, sun, weather
from .config import CONFIG
from .deps import get_api_key
from .geocoding import cache_size


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()],
)

# prefix -> router; each router carries its own API-key dependency
ROUTERS = {
    "/geo": geo.router,
    "/weather": weather.router,
    "/sun": sun.router,
    "/air": air.router,
    "/calendar": calendar.router,
    "/places": places.router,
}

limiter = Limiter(key_func=get_remote_address, default_limits=[CONFIG.rate_limit])


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with httpx.AsyncClient(timeout=CONFIG.http_timeout_sec, follow_redirects=True) as http_client:
        app.state.http_client = http_client
        logging.info("tool service ready: %s", ", ".join(ROUTERS))
        yield


app = FastAPI(title="City Day Planner - MCP Tools", lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=512)
for prefix, router in ROUTERS.items():
    app.include_router(router, prefix=prefix)


@app.get("/health")
@limiter.exempt
async def health(_: Request):
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "auth_configured": bool(CONFIG.api_key),
        "geocode_cache_entries": cache_size(),
    }


@app.get("/", dependencies=[Depends(get_api_key)])
async def root(_: Request):
    return {
        "status": "ok",
        "tools": sorted(route.path for route in app.routes if route.path.startswith(tuple(ROUTERS))),
    }


if __name__ == "__main__":
    port = int(os.getenv("PORT", "3001"))
    uvicorn.run(app, host="0.0.0.0", port=port)
