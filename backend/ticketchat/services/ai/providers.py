"""
LLM provider adapter.

Normalizes two vendor protocols into one request/response shape:

- "openai": any OpenAI-compatible ``/chat/completions`` API (bearer auth)
- "gemini": the native Gemini ``generateContent`` API (``x-goog-api-key``)

Callers always speak the canonical conversation types from
``ticketchat.services.ai.messages`` and OpenAI-style tool definitions;
translation in both directions happens here. Streaming output from either
vendor is transcoded into the common delta SSE format (see ``sse.py``).

Any non-2xx vendor response raises ``ProviderError`` carrying status and
body. The adapter never retries.
"""
import json
import time
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple, Union

import httpx
from pydantic import BaseModel, Field

from ticketchat.core.config import Settings
from ticketchat.core.errors import ProviderError, SetupRequiredError
from ticketchat.core.logging import get_logger
from ticketchat.core.metrics import record_llm_request
from ticketchat.core.rate_limit import RateConfig, RateLimiter
from ticketchat.services.ai.messages import (
    AssistantMessage,
    ConversationMessage,
    SystemMessage,
    ToolCall,
    ToolMessage,
    UserMessage,
    synthesize_tool_call_id,
    to_openai_message,
)
from ticketchat.services.ai.sse import DONE_FRAME, format_delta_frame

logger = get_logger(__name__)

PROVIDER_OPENAI = "openai"
PROVIDER_GEMINI = "gemini"
SUPPORTED_PROVIDERS = (PROVIDER_OPENAI, PROVIDER_GEMINI)

_STREAM_DONE = object()


class ProviderConfig(BaseModel):
    """Which vendor to call and with what credentials."""

    provider: str = PROVIDER_OPENAI
    api_key: Optional[str] = None
    model: str
    api_base: str
    timeout_seconds: float = 60.0

    @classmethod
    def default_for(cls, provider: str, api_key: Optional[str], settings: Settings,
                    model: Optional[str] = None, api_base: Optional[str] = None) -> "ProviderConfig":
        if provider == PROVIDER_GEMINI:
            return cls(
                provider=PROVIDER_GEMINI,
                api_key=api_key,
                model=model or settings.gemini_model,
                api_base=api_base or settings.gemini_api_base,
                timeout_seconds=settings.llm_timeout_seconds,
            )
        return cls(
            provider=PROVIDER_OPENAI,
            api_key=api_key,
            model=model or settings.llm_model,
            api_base=api_base or settings.llm_api_base,
            timeout_seconds=settings.llm_timeout_seconds,
        )


class Completion(BaseModel):
    """Normalized non-streaming model output."""

    text: str = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)
    finish_reason: Optional[str] = None

    def to_assistant_message(self) -> AssistantMessage:
        return AssistantMessage(content=self.text or None, tool_calls=list(self.tool_calls))


# ============================================================================
# OpenAI-compatible protocol
# ============================================================================

class OpenAIProtocol:
    name = PROVIDER_OPENAI

    def build_request(
        self,
        config: ProviderConfig,
        messages: Sequence[ConversationMessage],
        tools: Optional[List[Dict[str, Any]]],
        stream: bool,
    ) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {config.api_key}",
        }
        payload: Dict[str, Any] = {
            "model": config.model,
            "messages": [to_openai_message(m) for m in messages],
            "stream": stream,
        }
        if tools:
            payload["tools"] = tools
        return f"{config.api_base.rstrip('/')}/chat/completions", headers, payload

    def models_request(self, config: ProviderConfig) -> Tuple[str, Dict[str, str]]:
        return f"{config.api_base.rstrip('/')}/models", {"Authorization": f"Bearer {config.api_key}"}

    def parse_completion(self, data: Dict[str, Any]) -> Completion:
        choice = (data.get("choices") or [{}])[0]
        message = choice.get("message") or {}
        tool_calls = []
        for raw in message.get("tool_calls") or []:
            function = raw.get("function") or {}
            arguments = function.get("arguments")
            if not isinstance(arguments, str):
                arguments = json.dumps(arguments or {})
            tool_calls.append(ToolCall.model_validate({
                "id": raw.get("id") or synthesize_tool_call_id(),
                "function": {"name": function.get("name", ""), "arguments": arguments},
            }))
        return Completion(
            text=message.get("content") or "",
            tool_calls=tool_calls,
            finish_reason=choice.get("finish_reason"),
        )

    def parse_stream_line(self, line: str) -> Any:
        if not line.startswith("data:"):
            return None
        data = line[len("data:"):].strip()
        if data == "[DONE]":
            return _STREAM_DONE
        if not data:
            return None
        chunk = json.loads(data)
        choice = (chunk.get("choices") or [{}])[0]
        return (choice.get("delta") or {}).get("content")


# ============================================================================
# Native Gemini protocol
# ============================================================================

def _strip_unsupported_schema_keys(schema: Any) -> Any:
    """Gemini function declarations reject some JSON-schema keywords."""
    if isinstance(schema, dict):
        return {
            key: _strip_unsupported_schema_keys(value)
            for key, value in schema.items()
            if key not in ("additionalProperties", "$schema")
        }
    if isinstance(schema, list):
        return [_strip_unsupported_schema_keys(item) for item in schema]
    return schema


def _function_response_payload(content: str) -> Dict[str, Any]:
    """functionResponse.response must be a JSON object."""
    try:
        value = json.loads(content)
    except (TypeError, ValueError):
        return {"content": content}
    if isinstance(value, dict):
        return value
    return {"content": value}


class GeminiProtocol:
    name = PROVIDER_GEMINI

    def to_contents(self, messages: Sequence[ConversationMessage]) -> Tuple[List[Dict[str, Any]], List[Dict[str, str]]]:
        contents: List[Dict[str, Any]] = []
        system_parts: List[Dict[str, str]] = []
        tool_turn: Optional[Dict[str, Any]] = None

        for message in messages:
            if isinstance(message, SystemMessage):
                system_parts.append({"text": message.content})
                continue

            if isinstance(message, ToolMessage):
                part = {
                    "functionResponse": {
                        "name": message.name,
                        "response": _function_response_payload(message.content),
                    }
                }
                # Responses to one round of calls travel in a single turn
                if tool_turn is None:
                    tool_turn = {"role": "user", "parts": []}
                    contents.append(tool_turn)
                tool_turn["parts"].append(part)
                continue

            tool_turn = None
            if isinstance(message, UserMessage):
                contents.append({"role": "user", "parts": [{"text": message.content}]})
            elif isinstance(message, AssistantMessage):
                parts: List[Dict[str, Any]] = []
                if message.content:
                    parts.append({"text": message.content})
                for call in message.tool_calls:
                    try:
                        args = call.parsed_arguments()
                    except ValueError:
                        args = {}
                    parts.append({"functionCall": {"name": call.name, "args": args}})
                if parts:
                    contents.append({"role": "model", "parts": parts})

        return contents, system_parts

    def build_request(
        self,
        config: ProviderConfig,
        messages: Sequence[ConversationMessage],
        tools: Optional[List[Dict[str, Any]]],
        stream: bool,
    ) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
        contents, system_parts = self.to_contents(messages)
        payload: Dict[str, Any] = {"contents": contents}
        if system_parts:
            payload["systemInstruction"] = {"parts": system_parts}
        if tools:
            payload["tools"] = [{
                "functionDeclarations": [
                    {
                        "name": tool["function"]["name"],
                        "description": tool["function"].get("description", ""),
                        "parameters": _strip_unsupported_schema_keys(
                            tool["function"].get("parameters") or {"type": "object", "properties": {}}
                        ),
                    }
                    for tool in tools
                ]
            }]

        base = config.api_base.rstrip("/")
        if stream:
            url = f"{base}/models/{config.model}:streamGenerateContent?alt=sse"
        else:
            url = f"{base}/models/{config.model}:generateContent"
        headers = {
            "Content-Type": "application/json",
            "x-goog-api-key": config.api_key or "",
        }
        return url, headers, payload

    def models_request(self, config: ProviderConfig) -> Tuple[str, Dict[str, str]]:
        return f"{config.api_base.rstrip('/')}/models", {"x-goog-api-key": config.api_key or ""}

    @staticmethod
    def _candidate_parts(data: Dict[str, Any]) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        candidates = data.get("candidates") or []
        if not candidates:
            return [], None
        candidate = candidates[0]
        return (candidate.get("content") or {}).get("parts") or [], candidate.get("finishReason")

    def parse_completion(self, data: Dict[str, Any]) -> Completion:
        parts, finish_reason = self._candidate_parts(data)
        texts: List[str] = []
        tool_calls: List[ToolCall] = []
        for part in parts:
            if "functionCall" in part:
                call = part["functionCall"]
                tool_calls.append(ToolCall.create(call.get("name", ""), call.get("args") or {}))
            elif part.get("text"):
                texts.append(part["text"])
        if not parts:
            logger.warning(
                "gemini_empty_candidate",
                prompt_feedback=data.get("promptFeedback"),
            )
        return Completion(text="".join(texts), tool_calls=tool_calls, finish_reason=finish_reason)

    def parse_stream_line(self, line: str) -> Any:
        if not line.startswith("data:"):
            return None
        data = line[len("data:"):].strip()
        if not data:
            return None
        parts, _ = self._candidate_parts(json.loads(data))
        text = "".join(part.get("text", "") for part in parts if "text" in part)
        return text or None


_PROTOCOLS = {
    PROVIDER_OPENAI: OpenAIProtocol(),
    PROVIDER_GEMINI: GeminiProtocol(),
}


def get_protocol(provider: str):
    try:
        return _PROTOCOLS[provider]
    except KeyError:
        raise SetupRequiredError(f"Unsupported LLM provider: {provider}", service_type=provider)


# ============================================================================
# Adapter
# ============================================================================

class ProviderAdapter:
    """Async HTTP adapter over the supported LLM vendors."""

    def __init__(self, rate_limiter: RateLimiter, http_client: Optional[httpx.AsyncClient] = None):
        self.rate_limiter = rate_limiter
        self._http_client = http_client

    def _client(self, config: ProviderConfig) -> Tuple[httpx.AsyncClient, bool]:
        if self._http_client is not None:
            return self._http_client, False
        return httpx.AsyncClient(timeout=config.timeout_seconds), True

    @staticmethod
    def _check_credentials(config: ProviderConfig) -> None:
        if not config.api_key:
            raise SetupRequiredError(
                f"No API key configured for {config.provider}. Add an LLM connection in settings.",
                service_type=config.provider,
            )

    async def call(
        self,
        config: ProviderConfig,
        messages: Sequence[ConversationMessage],
        tools: Optional[List[Dict[str, Any]]] = None,
        stream: bool = False,
        rate_config: Optional[RateConfig] = None,
    ) -> Union[Completion, AsyncIterator[str]]:
        """
        Single entry point: a ``Completion``, or an iterator of SSE frames
        when ``stream`` is true.
        """
        if stream:
            return await self.open_stream(config, messages, tools=tools, rate_config=rate_config)
        return await self.complete(config, messages, tools=tools, rate_config=rate_config)

    async def complete(
        self,
        config: ProviderConfig,
        messages: Sequence[ConversationMessage],
        tools: Optional[List[Dict[str, Any]]] = None,
        rate_config: Optional[RateConfig] = None,
    ) -> Completion:
        self._check_credentials(config)
        protocol = get_protocol(config.provider)
        url, headers, payload = protocol.build_request(config, messages, tools, stream=False)

        await self.rate_limiter.throttle(rate_config)

        client, owned = self._client(config)
        start = time.time()
        outcome = "success"
        try:
            response = await client.post(url, headers=headers, json=payload, timeout=config.timeout_seconds)
        except httpx.HTTPError as exc:
            outcome = "transport_error"
            logger.warning(
                "llm_http_error",
                provider=config.provider,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise
        finally:
            if owned:
                await client.aclose()
            if outcome != "success":
                record_llm_request(config.provider, "complete", outcome, time.time() - start)

        if not response.is_success:
            record_llm_request(config.provider, "complete", "http_error", time.time() - start)
            logger.warning(
                "llm_vendor_error",
                provider=config.provider,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise ProviderError(config.provider, response.status_code, response.text)

        record_llm_request(config.provider, "complete", "success", time.time() - start)
        completion = protocol.parse_completion(response.json())
        logger.debug(
            "llm_completion",
            provider=config.provider,
            model=config.model,
            tool_calls=[call.name for call in completion.tool_calls],
            text_chars=len(completion.text),
        )
        return completion

    async def check_credentials(self, config: ProviderConfig) -> None:
        """
        List the vendor's models to confirm the key is accepted.

        Raises:
            SetupRequiredError: no API key, or an unsupported provider
            ProviderError: the vendor rejected the request
        """
        self._check_credentials(config)
        url, headers = get_protocol(config.provider).models_request(config)

        client, owned = self._client(config)
        start = time.time()
        try:
            response = await client.get(url, headers=headers, timeout=config.timeout_seconds)
        finally:
            if owned:
                await client.aclose()

        if not response.is_success:
            record_llm_request(config.provider, "check", "http_error", time.time() - start)
            logger.warning(
                "llm_credentials_rejected",
                provider=config.provider,
                status_code=response.status_code,
                body=response.text[:500],
            )
            raise ProviderError(config.provider, response.status_code, response.text)
        record_llm_request(config.provider, "check", "success", time.time() - start)

    async def open_stream(
        self,
        config: ProviderConfig,
        messages: Sequence[ConversationMessage],
        tools: Optional[List[Dict[str, Any]]] = None,
        rate_config: Optional[RateConfig] = None,
    ) -> AsyncIterator[str]:
        """
        Start a streaming call and return the transcoded frame iterator.

        The vendor status is checked before returning, so errors surface as
        ``ProviderError`` here rather than midway through a response.
        """
        self._check_credentials(config)
        protocol = get_protocol(config.provider)
        url, headers, payload = protocol.build_request(config, messages, tools, stream=True)

        await self.rate_limiter.throttle(rate_config)

        client, owned = self._client(config)
        start = time.time()
        request = client.build_request("POST", url, headers=headers, json=payload, timeout=config.timeout_seconds)
        try:
            response = await client.send(request, stream=True)
        except httpx.HTTPError as exc:
            if owned:
                await client.aclose()
            record_llm_request(config.provider, "stream", "transport_error", time.time() - start)
            logger.warning(
                "llm_http_error",
                provider=config.provider,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise

        if not response.is_success:
            body = (await response.aread()).decode("utf-8", errors="replace")
            await response.aclose()
            if owned:
                await client.aclose()
            record_llm_request(config.provider, "stream", "http_error", time.time() - start)
            logger.warning(
                "llm_vendor_error",
                provider=config.provider,
                status_code=response.status_code,
                body=body[:500],
            )
            raise ProviderError(config.provider, response.status_code, body)

        return self._transcode(protocol, response, client if owned else None, config.provider, start)

    async def _transcode(
        self,
        protocol: Any,
        response: httpx.Response,
        owned_client: Optional[httpx.AsyncClient],
        provider: str,
        start: float,
    ) -> AsyncIterator[str]:
        try:
            async for line in response.aiter_lines():
                text = protocol.parse_stream_line(line)
                if text is _STREAM_DONE:
                    break
                if text:
                    yield format_delta_frame(text)
            yield DONE_FRAME
        finally:
            await response.aclose()
            if owned_client is not None:
                await owned_client.aclose()
            record_llm_request(provider, "stream", "success", time.time() - start)
