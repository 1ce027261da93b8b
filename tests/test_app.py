import json

import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient

from tests.fakes import FakeLLMClient, calls


def _events(body: str):
    out = []
    for line in body.splitlines():
        if line.startswith("data: "):
            out.append(json.loads(line[len("data: "):]))
    return out


@pytest.mark.asyncio
async def test_health_reports_configuration(client):
    res = await client.get("/health")
    assert res.status_code == 200
    data = res.json()
    assert data["status"] == "ok"
    assert data["llm_configured"] is True
    assert data["tools_url"] == "http://tools.test"
    assert "timestamp" in data


@pytest.mark.asyncio
async def test_plan_streams_sse_frames(app_factory):
    llm = FakeLLMClient(completions=[calls("get_weather", "get_accommodations", city="Kyoto")], streams=[["# Kyoto", " day"]])
    app, _, executor = app_factory(llm=llm)
    async with LifespanManager(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            res = await client.post("/api/plan", json={"city": "Kyoto", "energyLevel": "low", "days": 1})

    assert res.status_code == 200
    assert res.headers["content-type"].startswith("text/event-stream")
    assert res.headers["cache-control"] == "no-cache"
    events = _events(res.text)
    kinds = [e["type"] for e in events]
    assert kinds[0] == "connected"
    assert kinds[-1] == "done"
    assert "".join(e["content"] for e in events if e["type"] == "content_chunk") == "# Kyoto day"
    results = [e for e in events if e["type"] == "tool_call_result"]
    assert {e["tool"] for e in results} == {"get_weather", "get_accommodations"}
    assert all(e["result"]["success"] for e in results)
    assert len(executor.calls) == 2


@pytest.mark.asyncio
async def test_plan_error_is_a_single_terminal_frame(app_factory):
    app, _, _ = app_factory(llm=FakeLLMClient(configured=False))
    async with LifespanManager(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            res = await client.post("/api/plan", json={"city": "Kyoto"})
    events = _events(res.text)
    assert [e["type"] for e in events] == ["connected", "error"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {},
        {"city": "   "},
        {"city": "Kyoto", "days": 0},
        {"city": "Kyoto", "days": 8},
        {"city": "Kyoto", "budget": "lavish"},
        {"city": "Kyoto", "currentHour": 24},
    ],
)
async def test_invalid_requests_are_rejected(client, body):
    res = await client.post("/api/plan", json=body)
    assert res.status_code == 422


@pytest.mark.asyncio
async def test_rate_limit_applies_per_client(app_factory):
    llm = FakeLLMClient(configured=False)
    app, _, _ = app_factory(llm=llm, plan_rate_limit="2/minute")
    async with LifespanManager(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            codes = [(await client.post("/api/plan", json={"city": "Kyoto"})).status_code for _ in range(3)]
    assert codes == [200, 200, 429]
