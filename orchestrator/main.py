import asyncio
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Callable, Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import StreamingResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from .city import CityResolver
from .config import CONFIG, _Config
from .controller import PlanOrchestrator
from .events import EventStream, to_sse
from .llm import build_llm_client
from .models import PlanRequest
from .tools import McpToolExecutor


# --- Logging Configuration ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler()
    ]
)
# --------------------------

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}

OrchestratorFactory = Callable[[httpx.AsyncClient, _Config], PlanOrchestrator]


def build_orchestrator(http_client: httpx.AsyncClient, config: _Config = CONFIG) -> PlanOrchestrator:
    return PlanOrchestrator(
        llm=build_llm_client(config, http_client),
        executor=McpToolExecutor(http_client, config),
        resolver=CityResolver(http_client, config),
        config=config,
    )


def create_app(config: _Config = CONFIG, factory: Optional[OrchestratorFactory] = None) -> FastAPI:
    factory = factory or build_orchestrator
    limiter = Limiter(key_func=get_remote_address)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        http_client = httpx.AsyncClient(timeout=config.http_timeout_sec)
        app.state.http_client = http_client
        app.state.tasks = set()
        app.state.orchestrator = factory(http_client, config)
        try:
            yield
        finally:
            pending = list(app.state.tasks)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            await http_client.aclose()

    app = FastAPI(title="City Day Planner - Orchestrator", lifespan=lifespan)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    @app.get("/health")
    async def health(request: Request):
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "llm_configured": request.app.state.orchestrator.llm_configured,
            "tools_url": config.mcp_tools_url,
        }

    @app.post("/api/plan")
    @limiter.limit(config.plan_rate_limit)
    async def plan(request: Request, body: PlanRequest):
        orchestrator: PlanOrchestrator = request.app.state.orchestrator
        stream = EventStream(maxsize=config.event_queue_size)
        task = asyncio.create_task(orchestrator.run(body, stream))
        tasks: set = request.app.state.tasks
        tasks.add(task)
        task.add_done_callback(tasks.discard)

        async def frames():
            try:
                async for event in stream:
                    yield to_sse(event)
            finally:
                # Reader gone (normal end or disconnect); the task stops at its next checkpoint.
                stream.close()

        return StreamingResponse(frames(), media_type="text/event-stream", headers=SSE_HEADERS)

    return app


app = create_app()


if __name__ == "__main__":
    port = int(os.getenv("PORT", "3002"))
    uvicorn.run(app, host="0.0.0.0", port=port)
