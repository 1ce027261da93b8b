import json
from types import SimpleNamespace

import httpx
import pytest
import respx
from httpx import Response

from orchestrator.controller import PlanOrchestrator
from orchestrator.errors import LLMError
from orchestrator.events import EventStream
from orchestrator.llm import GeminiClient, OpenAIChatClient, build_llm_client, parse_arguments
from orchestrator.models import Message, PlanRequest, ToolInvocation
from orchestrator.tools import tool_schemas
from tests.fakes import FakeCityResolver, FakeToolExecutor, make_config, run_and_collect


BASE = "http://llm.test/v1"


def _transcript():
    return [
        Message(role="system", content="sys"),
        Message(role="user", content="Plan Rome"),
        Message(
            role="assistant",
            tool_calls=[ToolInvocation(id="call_1", name="get_weather", arguments={"city": "Rome"})],
        ),
        Message(role="tool", tool_call_id="call_1", name="get_weather", content='{"success": true, "data": {"t": 20}}'),
    ]


@pytest.mark.asyncio
async def test_complete_maps_tool_calls_and_payload():
    captured = {}
    async with httpx.AsyncClient() as http:
        client = OpenAIChatClient(http, BASE, "sk-test", "test-model")
        with respx.mock(assert_all_called=True) as respx_mock:

            def handler(request):
                captured["json"] = json.loads(request.content.decode("utf-8"))
                captured["auth"] = request.headers.get("Authorization")
                return Response(
                    200,
                    json={
                        "choices": [
                            {
                                "finish_reason": "tool_calls",
                                "message": {
                                    "content": None,
                                    "tool_calls": [
                                        {
                                            "id": "call_a",
                                            "type": "function",
                                            "function": {"name": "get_attractions", "arguments": '{"city": "Rome"}'},
                                        },
                                        {
                                            "id": "call_b",
                                            "type": "function",
                                            "function": {"name": "get_weather", "arguments": "{not json"},
                                        },
                                    ],
                                },
                            }
                        ]
                    },
                )

            respx_mock.post(f"{BASE}/chat/completions").mock(side_effect=handler)
            completion = await client.complete(_transcript(), tools=tool_schemas(), tool_choice="auto", temperature=0.3, max_tokens=64)

    assert [tc.name for tc in completion.tool_calls] == ["get_attractions", "get_weather"]
    assert completion.tool_calls[0].arguments == {"city": "Rome"}
    assert completion.tool_calls[1].arguments == {}
    assert completion.finish_reason == "tool_calls"

    payload = captured["json"]
    assert captured["auth"] == "Bearer sk-test"
    assert payload["model"] == "test-model"
    assert payload["stream"] is False
    assert payload["tool_choice"] == "auto"
    assert payload["tools"][0]["type"] == "function"
    wire = payload["messages"]
    assert wire[2]["tool_calls"][0]["function"]["arguments"] == '{"city": "Rome"}'
    assert wire[3]["role"] == "tool" and wire[3]["tool_call_id"] == "call_1"


@pytest.mark.asyncio
async def test_complete_raises_llm_error_on_http_failure():
    async with httpx.AsyncClient() as http:
        client = OpenAIChatClient(http, BASE, "sk-test", "test-model")
        with respx.mock() as respx_mock:
            respx_mock.post(f"{BASE}/chat/completions").mock(return_value=Response(500, text="upstream down"))
            with pytest.raises(LLMError):
                await client.complete(_transcript())


@pytest.mark.asyncio
async def test_stream_parses_sse_deltas_until_done():
    body = (
        'data: {"choices": [{"delta": {"content": "Hel"}}]}\n\n'
        ": keep-alive\n\n"
        'data: {"choices": [{"delta": {"content": "lo"}}]}\n\n'
        'data: {"choices": [{"delta": {}, "finish_reason": "stop"}]}\n\n'
        "data: [DONE]\n\n"
        'data: {"choices": [{"delta": {"content": "ignored"}}]}\n\n'
    )
    async with httpx.AsyncClient() as http:
        client = OpenAIChatClient(http, BASE, "sk-test", "test-model")
        with respx.mock() as respx_mock:
            respx_mock.post(f"{BASE}/chat/completions").mock(
                return_value=Response(200, text=body, headers={"Content-Type": "text/event-stream"})
            )
            deltas = [d async for d in client.stream(_transcript(), max_tokens=100)]

    assert "".join(d.content or "" for d in deltas) == "Hello"
    assert deltas[-1].finish_reason == "stop"


@pytest.mark.asyncio
async def test_stream_error_status_raises():
    async with httpx.AsyncClient() as http:
        client = OpenAIChatClient(http, BASE, "sk-test", "test-model")
        with respx.mock() as respx_mock:
            respx_mock.post(f"{BASE}/chat/completions").mock(return_value=Response(429, text="slow down"))
            with pytest.raises(LLMError):
                async for _ in client.stream(_transcript()):
                    pass


def test_parse_arguments_tolerates_garbage():
    assert parse_arguments('{"city": "Oslo"}') == {"city": "Oslo"}
    assert parse_arguments({"city": "Oslo"}) == {"city": "Oslo"}
    assert parse_arguments("[1, 2]") == {}
    assert parse_arguments(None) == {}


def test_gemini_contents_group_tool_answers_into_one_turn():
    messages = _transcript() + [
        Message(role="tool", tool_call_id="call_2", name="get_attractions", content="not json"),
    ]
    system, contents = GeminiClient.to_contents(messages)

    assert system == "sys"
    assert [c["role"] for c in contents] == ["user", "model", "user"]
    assert contents[1]["parts"][0]["function_call"] == {"name": "get_weather", "args": {"city": "Rome"}}
    responses = [p["function_response"] for p in contents[2]["parts"]]
    assert responses[0] == {"name": "get_weather", "response": {"success": True, "data": {"t": 20}}}
    assert responses[1] == {"name": "get_attractions", "response": {"result": "not json"}}


def test_gemini_response_parsing():
    response = SimpleNamespace(
        candidates=[
            SimpleNamespace(
                finish_reason=SimpleNamespace(name="STOP"),
                content=SimpleNamespace(
                    parts=[
                        SimpleNamespace(function_call=None, text="Checking the weather."),
                        SimpleNamespace(
                            function_call=SimpleNamespace(name="get_weather", args={"city": "Rome", "days": [1, 2]}),
                            text="",
                        ),
                    ]
                ),
            )
        ]
    )
    completion = GeminiClient.parse_response(response)
    assert completion.content == "Checking the weather."
    assert completion.finish_reason == "stop"
    assert completion.tool_calls[0].name == "get_weather"
    assert completion.tool_calls[0].arguments == {"city": "Rome", "days": [1, 2]}
    assert completion.tool_calls[0].id.startswith("call_")


def test_gemini_max_tokens_finish_maps_to_length():
    response = SimpleNamespace(
        candidates=[SimpleNamespace(finish_reason=SimpleNamespace(name="MAX_TOKENS"), content=SimpleNamespace(parts=[]))]
    )
    assert GeminiClient.parse_response(response).finish_reason == "length"


@pytest.mark.asyncio
async def test_provider_selection():
    async with httpx.AsyncClient() as http:
        openai = build_llm_client(make_config(llm_provider="openai", llm_api_key="sk"), http)
        assert isinstance(openai, OpenAIChatClient) and openai.configured
    gemini = build_llm_client(make_config(gemini_api_key=None))
    assert isinstance(gemini, GeminiClient)
    assert not gemini.configured


@pytest.mark.asyncio
@pytest.mark.parametrize("key", [None, "", "   ", "your_api_key_here", "your_gemini_api_key_here", "CHANGE_ME"])
async def test_placeholder_keys_are_not_configured(key):
    assert not GeminiClient(key, "gemini-test").configured
    async with httpx.AsyncClient() as http:
        assert not OpenAIChatClient(http, BASE, key, "test-model").configured


@pytest.mark.asyncio
async def test_placeholder_key_fails_the_plan_before_any_llm_call():
    llm = build_llm_client(make_config(gemini_api_key="your_api_key_here"))
    orchestrator = PlanOrchestrator(llm, FakeToolExecutor(), FakeCityResolver(), make_config())
    events, _ = await run_and_collect(orchestrator, PlanRequest(city="Rome"), stream=EventStream())
    assert [e.type for e in events] == ["connected", "error"]
    assert "API key" in events[-1].error
