import json
import logging
import uuid
from collections.abc import Mapping, Sequence as SequenceABC
from typing import Any, AsyncIterator, Dict, List, Literal, Optional, Protocol, Sequence

import google.generativeai as genai
import httpx
from google.api_core import exceptions as google_exceptions
from pydantic import BaseModel, Field

from .config import CONFIG, _Config
from .errors import LLMError
from .models import Message, ToolInvocation


ToolChoice = Literal["auto", "required", "none"]

# Sample values shipped in env templates; a key left at one of these is treated as missing.
PLACEHOLDER_KEYS = frozenset({"your_api_key_here", "your_gemini_api_key_here", "your_dedalus_api_key_here", "CHANGE_ME"})


def usable_key(key: Optional[str]) -> bool:
    return bool(key and key.strip()) and key.strip() not in PLACEHOLDER_KEYS


class Completion(BaseModel):
    content: Optional[str] = None
    tool_calls: List[ToolInvocation] = Field(default_factory=list)
    finish_reason: Optional[str] = None


class CompletionDelta(BaseModel):
    content: Optional[str] = None
    finish_reason: Optional[str] = None


class LLMClient(Protocol):
    @property
    def configured(self) -> bool:
        ...

    async def complete(
        self,
        messages: Sequence[Message],
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: ToolChoice = "auto",
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ) -> Completion:
        ...

    def stream(
        self,
        messages: Sequence[Message],
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ) -> AsyncIterator[CompletionDelta]:
        ...


def new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:16]}"


def parse_arguments(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        logging.warning(f"[llm] dropping unparseable tool arguments: {str(raw)[:200]!r}")
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _normalize_finish(reason: Any) -> Optional[str]:
    if reason is None:
        return None
    name = getattr(reason, "name", None) or str(reason)
    name = name.lower()
    if name in ("", "0", "finish_reason_unspecified"):
        return None
    if name == "max_tokens":
        return "length"
    return name


# ---------------------------------------------------------------------------
# OpenAI-compatible chat completions over httpx
# ---------------------------------------------------------------------------


class OpenAIChatClient:
    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        api_key: Optional[str],
        model: str,
        timeout: float = 60.0,
    ) -> None:
        self._client = client
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self.model = model
        self._timeout = timeout

    @property
    def configured(self) -> bool:
        return usable_key(self._api_key)

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key or ''}", "Content-Type": "application/json"}

    @staticmethod
    def _to_wire(message: Message) -> Dict[str, Any]:
        out: Dict[str, Any] = {"role": message.role, "content": message.content}
        if message.role == "assistant" and message.tool_calls:
            out["tool_calls"] = [
                {
                    "id": tc.id,
                    "type": "function",
                    "function": {"name": tc.name, "arguments": json.dumps(tc.arguments)},
                }
                for tc in message.tool_calls
            ]
        if message.role == "tool":
            out["tool_call_id"] = message.tool_call_id
        return out

    def _payload(
        self,
        messages: Sequence[Message],
        temperature: float,
        max_tokens: int,
        stream: bool,
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: ToolChoice = "auto",
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [self._to_wire(m) for m in messages],
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": stream,
        }
        if tools:
            payload["tools"] = [{"type": "function", "function": t} for t in tools]
            payload["tool_choice"] = tool_choice
        return payload

    async def complete(
        self,
        messages: Sequence[Message],
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: ToolChoice = "auto",
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ) -> Completion:
        payload = self._payload(messages, temperature, max_tokens, False, tools, tool_choice)
        try:
            resp = await self._client.post(
                f"{self.base_url}/chat/completions",
                json=payload,
                headers=self._headers(),
                timeout=self._timeout,
            )
        except httpx.HTTPError as e:
            raise LLMError(f"LLM request failed: {e}") from e
        if resp.status_code != 200:
            raise LLMError(f"LLM endpoint returned {resp.status_code}: {resp.text[:300]}")
        try:
            data = resp.json()
            choice = (data.get("choices") or [{}])[0]
        except (ValueError, AttributeError) as e:
            raise LLMError("LLM endpoint returned malformed JSON") from e
        message = choice.get("message") or {}
        calls: List[ToolInvocation] = []
        for tc in message.get("tool_calls") or []:
            fn = tc.get("function") or {}
            if not fn.get("name"):
                continue
            calls.append(
                ToolInvocation(
                    id=tc.get("id") or new_call_id(),
                    name=fn["name"],
                    arguments=parse_arguments(fn.get("arguments")),
                )
            )
        return Completion(
            content=message.get("content") or None,
            tool_calls=calls,
            finish_reason=_normalize_finish(choice.get("finish_reason")),
        )

    async def stream(
        self,
        messages: Sequence[Message],
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ) -> AsyncIterator[CompletionDelta]:
        payload = self._payload(messages, temperature, max_tokens, True)
        try:
            async with self._client.stream(
                "POST",
                f"{self.base_url}/chat/completions",
                json=payload,
                headers=self._headers(),
                timeout=self._timeout,
            ) as resp:
                if resp.status_code != 200:
                    body = await resp.aread()
                    raise LLMError(f"LLM endpoint returned {resp.status_code}: {body[:300]!r}")
                async for line in resp.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    chunk = line[len("data:"):].strip()
                    if chunk == "[DONE]":
                        break
                    try:
                        data = json.loads(chunk)
                    except json.JSONDecodeError:
                        continue
                    choices = data.get("choices") or []
                    if not choices:
                        continue
                    delta = choices[0].get("delta") or {}
                    yield CompletionDelta(
                        content=delta.get("content") or None,
                        finish_reason=_normalize_finish(choices[0].get("finish_reason")),
                    )
        except httpx.HTTPError as e:
            raise LLMError(f"LLM stream failed: {e}") from e


# ---------------------------------------------------------------------------
# Gemini via google-generativeai
# ---------------------------------------------------------------------------


_GEMINI_MODES = {"auto": "AUTO", "required": "ANY", "none": "NONE"}


def _plain(value: Any) -> Any:
    """Convert proto map/repeated composites into plain dicts and lists."""
    if isinstance(value, Mapping):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, SequenceABC) and not isinstance(value, (str, bytes)):
        return [_plain(v) for v in value]
    return value


def _tool_response_payload(content: Optional[str]) -> Dict[str, Any]:
    try:
        parsed = json.loads(content or "{}")
    except json.JSONDecodeError:
        return {"result": content}
    return parsed if isinstance(parsed, dict) else {"result": parsed}


class GeminiClient:
    def __init__(self, api_key: Optional[str], model_name: str, timeout: float = 60.0) -> None:
        self._api_key = api_key
        self.model_name = model_name
        self._timeout = timeout
        if usable_key(api_key):
            genai.configure(api_key=api_key)

    @property
    def configured(self) -> bool:
        return usable_key(self._api_key)

    @staticmethod
    def to_contents(messages: Sequence[Message]) -> tuple[Optional[str], List[Dict[str, Any]]]:
        system_parts: List[str] = []
        contents: List[Dict[str, Any]] = []
        tool_turn: Optional[Dict[str, Any]] = None
        for m in messages:
            if m.role == "system":
                if m.content:
                    system_parts.append(m.content)
                continue
            if m.role == "tool":
                part = {"function_response": {"name": m.name or "", "response": _tool_response_payload(m.content)}}
                # Consecutive tool answers share one turn, matching the preceding calls.
                if tool_turn is None:
                    tool_turn = {"role": "user", "parts": []}
                    contents.append(tool_turn)
                tool_turn["parts"].append(part)
                continue
            tool_turn = None
            if m.role == "user":
                contents.append({"role": "user", "parts": [{"text": m.content or ""}]})
            else:
                parts: List[Dict[str, Any]] = []
                if m.content:
                    parts.append({"text": m.content})
                for tc in m.tool_calls:
                    parts.append({"function_call": {"name": tc.name, "args": tc.arguments}})
                if parts:
                    contents.append({"role": "model", "parts": parts})
        system = "\n\n".join(system_parts) or None
        return system, contents

    @staticmethod
    def parse_response(response: Any) -> Completion:
        texts: List[str] = []
        calls: List[ToolInvocation] = []
        finish: Optional[str] = None
        candidates = getattr(response, "candidates", None) or []
        if candidates:
            candidate = candidates[0]
            finish = _normalize_finish(getattr(candidate, "finish_reason", None))
            content = getattr(candidate, "content", None)
            for part in getattr(content, "parts", None) or []:
                fc = getattr(part, "function_call", None)
                if fc is not None and getattr(fc, "name", ""):
                    calls.append(ToolInvocation(id=new_call_id(), name=fc.name, arguments=_plain(fc.args) or {}))
                    continue
                text = getattr(part, "text", "")
                if text:
                    texts.append(text)
        return Completion(content="".join(texts) or None, tool_calls=calls, finish_reason=finish)

    def _model(self, system: Optional[str], tools: Optional[List[Dict[str, Any]]]) -> Any:
        return genai.GenerativeModel(
            self.model_name,
            system_instruction=system,
            tools=[{"function_declarations": tools}] if tools else None,
        )

    async def complete(
        self,
        messages: Sequence[Message],
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: ToolChoice = "auto",
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ) -> Completion:
        system, contents = self.to_contents(messages)
        model = self._model(system, tools)
        kwargs: Dict[str, Any] = {
            "generation_config": {"temperature": temperature, "max_output_tokens": max_tokens},
            "request_options": {"timeout": self._timeout},
        }
        if tools:
            kwargs["tool_config"] = {"function_calling_config": {"mode": _GEMINI_MODES[tool_choice]}}
        try:
            response = await model.generate_content_async(contents, **kwargs)
        except (google_exceptions.GoogleAPIError, ValueError) as e:
            raise LLMError(f"Gemini request failed: {e}") from e
        return self.parse_response(response)

    async def stream(
        self,
        messages: Sequence[Message],
        temperature: float = 0.7,
        max_tokens: int = 1024,
    ) -> AsyncIterator[CompletionDelta]:
        system, contents = self.to_contents(messages)
        model = self._model(system, None)
        try:
            response = await model.generate_content_async(
                contents,
                generation_config={"temperature": temperature, "max_output_tokens": max_tokens},
                request_options={"timeout": self._timeout},
                stream=True,
            )
            async for chunk in response:
                parsed = self.parse_response(chunk)
                yield CompletionDelta(content=parsed.content, finish_reason=parsed.finish_reason)
        except (google_exceptions.GoogleAPIError, ValueError) as e:
            raise LLMError(f"Gemini stream failed: {e}") from e


def build_llm_client(config: _Config = CONFIG, http_client: Optional[httpx.AsyncClient] = None) -> LLMClient:
    if config.llm_provider == "openai":
        if http_client is None:
            raise ValueError("the openai provider needs a shared httpx.AsyncClient")
        return OpenAIChatClient(
            http_client,
            base_url=config.llm_base_url,
            api_key=config.llm_api_key,
            model=config.llm_model,
            timeout=config.deadline_sec,
        )
    return GeminiClient(config.gemini_api_key, config.gemini_model, timeout=config.deadline_sec)
