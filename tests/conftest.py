from typing import Optional

import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient

from orchestrator.controller import PlanOrchestrator
from orchestrator.main import create_app
from tests.fakes import FakeCityResolver, FakeLLMClient, FakeToolExecutor, make_config


@pytest.fixture
def app_factory():
    def _factory(
        *,
        llm: Optional[FakeLLMClient] = None,
        executor: Optional[FakeToolExecutor] = None,
        resolver: Optional[FakeCityResolver] = None,
        **overrides,
    ):
        cfg = make_config(**overrides)
        fake_llm = llm or FakeLLMClient()
        fake_executor = executor or FakeToolExecutor()
        fake_resolver = resolver or FakeCityResolver()

        def factory(http_client, config):
            return PlanOrchestrator(fake_llm, fake_executor, fake_resolver, config)

        return create_app(cfg, factory=factory), fake_llm, fake_executor

    return _factory


@pytest.fixture
async def client(app_factory):
    app, fake_llm, fake_executor = app_factory()
    async with LifespanManager(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as http_client:
            http_client.app = app  # type: ignore[attr-defined]
            http_client.fake_llm = fake_llm  # type: ignore[attr-defined]
            yield http_client
