"""
Tests for the LLM provider adapter.

Tests cover:
- OpenAI-compatible request shape and bearer auth
- Gemini request translation (system instruction, roles, grouped tool responses)
- Response normalization for both vendors
- Streaming transcoding into the common delta frame format
- Vendor errors and missing credentials
"""
import json

import httpx
import pytest

from ticketchat.core.errors import ProviderError, SetupRequiredError
from ticketchat.services.ai.messages import (
    AssistantMessage,
    SystemMessage,
    ToolCall,
    ToolMessage,
    UserMessage,
)
from ticketchat.services.ai.providers import (
    GeminiProtocol,
    ProviderAdapter,
    ProviderConfig,
)
from ticketchat.services.ai.sse import DONE_FRAME, text_to_frames
from ticketchat.services.ai.tools import function_tool

from conftest import ScriptedLLM, mock_client, openai_text, openai_tool_calls


SEARCH_TOOL = function_tool(
    "search_tickets",
    "Search tickets",
    {"status": {"type": "array", "items": {"type": "string"}}},
    [],
)


def openai_config(api_key="sk-test"):
    return ProviderConfig(provider="openai", api_key=api_key, model="test-model", api_base="https://llm.test/v1")


def gemini_config():
    return ProviderConfig(provider="gemini", api_key="g-key", model="gemini-test", api_base="https://gemini.test/v1beta")


def tool_round():
    call = ToolCall.create("search_tickets", {"status": ["2"]}, call_id="call_a")
    other = ToolCall.create("get_ticket_connections", {}, call_id="call_b")
    return [
        SystemMessage(content="You are a helpdesk assistant."),
        UserMessage(content="open tickets please"),
        AssistantMessage(content=None, tool_calls=[call, other]),
        ToolMessage(content='{"total": 3}', tool_call_id="call_a", name="search_tickets"),
        ToolMessage(content="[1, 2]", tool_call_id="call_b", name="get_ticket_connections"),
    ]


def capture(responses):
    seen = []

    def handler(request):
        seen.append(request)
        return responses.pop(0)

    return seen, handler


# ============================================================================
# OpenAI-compatible
# ============================================================================

@pytest.mark.asyncio
async def test_openai_request_shape(rate_limiter):
    seen, handler = capture([httpx.Response(200, json=openai_text("hello"))])
    adapter = ProviderAdapter(rate_limiter, http_client=mock_client(handler))

    completion = await adapter.complete(openai_config(), tool_round(), tools=[SEARCH_TOOL])

    request = seen[0]
    body = json.loads(request.content)
    assert str(request.url) == "https://llm.test/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer sk-test"
    assert body["model"] == "test-model"
    assert body["stream"] is False
    assert body["tools"] == [SEARCH_TOOL]
    assert [m["role"] for m in body["messages"]] == ["system", "user", "assistant", "tool", "tool"]
    assert body["messages"][2]["tool_calls"][0]["function"]["name"] == "search_tickets"
    assert body["messages"][3]["tool_call_id"] == "call_a"
    assert completion.text == "hello"
    assert completion.tool_calls == []


@pytest.mark.asyncio
async def test_openai_tool_calls_are_normalized(rate_limiter):
    llm = ScriptedLLM([openai_tool_calls(("call_1", "search_tickets", {"status": ["2"]}))])
    adapter = ProviderAdapter(rate_limiter, http_client=mock_client(llm))

    completion = await adapter.complete(openai_config(), [UserMessage(content="hi")])

    assert len(completion.tool_calls) == 1
    call = completion.tool_calls[0]
    assert call.id == "call_1"
    assert call.name == "search_tickets"
    assert call.parsed_arguments() == {"status": ["2"]}
    assert "tools" not in llm.requests[0]


@pytest.mark.asyncio
async def test_openai_missing_call_id_is_synthesized(rate_limiter):
    data = openai_tool_calls(("", "get_ticket", {"ticket_id": "5"}))
    adapter = ProviderAdapter(rate_limiter, http_client=mock_client(ScriptedLLM([data])))

    completion = await adapter.complete(openai_config(), [UserMessage(content="hi")])

    assert completion.tool_calls[0].id.startswith("call_")


@pytest.mark.asyncio
async def test_vendor_error_raises_provider_error(rate_limiter):
    llm = ScriptedLLM([httpx.Response(429, text="slow down")])
    adapter = ProviderAdapter(rate_limiter, http_client=mock_client(llm))

    with pytest.raises(ProviderError) as exc_info:
        await adapter.complete(openai_config(), [UserMessage(content="hi")])

    assert exc_info.value.status_code == 429
    assert exc_info.value.body == "slow down"
    assert exc_info.value.provider == "openai"
    assert len(llm.requests) == 1


@pytest.mark.asyncio
async def test_missing_api_key_is_setup_error(rate_limiter):
    llm = ScriptedLLM([])
    adapter = ProviderAdapter(rate_limiter, http_client=mock_client(llm))

    with pytest.raises(SetupRequiredError):
        await adapter.complete(openai_config(api_key=None), [UserMessage(content="hi")])
    assert llm.requests == []


@pytest.mark.asyncio
async def test_unknown_provider_is_setup_error(rate_limiter):
    adapter = ProviderAdapter(rate_limiter, http_client=mock_client(ScriptedLLM([])))
    config = ProviderConfig(provider="anthropic", api_key="k", model="m", api_base="https://x.test")

    with pytest.raises(SetupRequiredError):
        await adapter.complete(config, [UserMessage(content="hi")])


# ============================================================================
# Gemini
# ============================================================================

def test_gemini_translation_groups_tool_responses():
    contents, system_parts = GeminiProtocol().to_contents(tool_round())

    assert system_parts == [{"text": "You are a helpdesk assistant."}]
    assert [c["role"] for c in contents] == ["user", "model", "user"]
    assert contents[1]["parts"] == [
        {"functionCall": {"name": "search_tickets", "args": {"status": ["2"]}}},
        {"functionCall": {"name": "get_ticket_connections", "args": {}}},
    ]
    responses = contents[2]["parts"]
    assert responses[0] == {"functionResponse": {"name": "search_tickets", "response": {"total": 3}}}
    assert responses[1] == {"functionResponse": {"name": "get_ticket_connections", "response": {"content": [1, 2]}}}


def test_gemini_non_json_tool_output_is_wrapped():
    messages = [ToolMessage(content="plain text", tool_call_id="c", name="get_ticket")]
    contents, _ = GeminiProtocol().to_contents(messages)
    assert contents[0]["parts"][0]["functionResponse"]["response"] == {"content": "plain text"}


@pytest.mark.asyncio
async def test_gemini_request_shape(rate_limiter):
    tool = function_tool("search_tickets", "Search", {"status": {"type": "string"}}, [])
    tool["function"]["parameters"]["additionalProperties"] = False
    reply = {"candidates": [{"content": {"role": "model", "parts": [{"text": "Hi there"}]}, "finishReason": "STOP"}]}
    seen, handler = capture([httpx.Response(200, json=reply)])
    adapter = ProviderAdapter(rate_limiter, http_client=mock_client(handler))

    completion = await adapter.complete(gemini_config(), tool_round(), tools=[tool])

    request = seen[0]
    body = json.loads(request.content)
    assert str(request.url) == "https://gemini.test/v1beta/models/gemini-test:generateContent"
    assert request.headers["x-goog-api-key"] == "g-key"
    assert "Authorization" not in request.headers
    assert body["systemInstruction"] == {"parts": [{"text": "You are a helpdesk assistant."}]}
    declaration = body["tools"][0]["functionDeclarations"][0]
    assert declaration["name"] == "search_tickets"
    assert "additionalProperties" not in declaration["parameters"]
    assert completion.text == "Hi there"
    assert completion.finish_reason == "STOP"


@pytest.mark.asyncio
async def test_gemini_function_call_gets_synthesized_id(rate_limiter):
    reply = {"candidates": [{"content": {"parts": [
        {"functionCall": {"name": "search_tickets", "args": {"status": ["2"]}}},
    ]}}]}
    adapter = ProviderAdapter(rate_limiter, http_client=mock_client(lambda r: httpx.Response(200, json=reply)))

    completion = await adapter.complete(gemini_config(), [UserMessage(content="hi")])

    call = completion.tool_calls[0]
    assert call.id.startswith("call_")
    assert call.name == "search_tickets"
    assert call.parsed_arguments() == {"status": ["2"]}


@pytest.mark.asyncio
async def test_gemini_empty_candidate_is_empty_completion(rate_limiter):
    reply = {"candidates": [], "promptFeedback": {"blockReason": "SAFETY"}}
    adapter = ProviderAdapter(rate_limiter, http_client=mock_client(lambda r: httpx.Response(200, json=reply)))

    completion = await adapter.complete(gemini_config(), [UserMessage(content="hi")])

    assert completion.text == ""
    assert completion.tool_calls == []


# ============================================================================
# Streaming
# ============================================================================

async def collect(frames):
    return [frame async for frame in frames]


def delta_text(frames):
    text = ""
    for frame in frames:
        if frame == DONE_FRAME:
            continue
        payload = json.loads(frame[len("data: "):])
        text += payload["choices"][0]["delta"]["content"]
    return text


@pytest.mark.asyncio
async def test_openai_stream_is_transcoded(rate_limiter):
    body = "".join([
        'data: {"choices":[{"delta":{"role":"assistant"}}]}\n\n',
        'data: {"choices":[{"delta":{"content":"Hello"}}]}\n\n',
        ": keep-alive\n\n",
        'data: {"choices":[{"delta":{"content":" world"}}]}\n\n',
        "data: [DONE]\n\n",
    ])
    seen, handler = capture([httpx.Response(200, text=body)])
    adapter = ProviderAdapter(rate_limiter, http_client=mock_client(handler))

    frames = await collect(await adapter.call(openai_config(), [UserMessage(content="hi")], stream=True))

    assert json.loads(seen[0].content)["stream"] is True
    assert frames[-1] == DONE_FRAME
    assert frames.count(DONE_FRAME) == 1
    assert delta_text(frames) == "Hello world"


@pytest.mark.asyncio
async def test_gemini_stream_is_transcoded(rate_limiter):
    chunks = [
        {"candidates": [{"content": {"parts": [{"text": "Improved "}]}}]},
        {"candidates": [{"content": {"parts": [{"text": "prompt"}]}, "finishReason": "STOP"}]},
    ]
    body = "".join(f"data: {json.dumps(chunk)}\r\n\r\n" for chunk in chunks)
    seen, handler = capture([httpx.Response(200, text=body)])
    adapter = ProviderAdapter(rate_limiter, http_client=mock_client(handler))

    frames = await collect(await adapter.call(gemini_config(), [UserMessage(content="hi")], stream=True))

    assert str(seen[0].url) == "https://gemini.test/v1beta/models/gemini-test:streamGenerateContent?alt=sse"
    assert frames[-1] == DONE_FRAME
    assert delta_text(frames) == "Improved prompt"


@pytest.mark.asyncio
async def test_stream_vendor_error_raises_before_first_frame(rate_limiter):
    adapter = ProviderAdapter(rate_limiter, http_client=mock_client(lambda r: httpx.Response(402, text="pay up")))

    with pytest.raises(ProviderError) as exc_info:
        await adapter.call(openai_config(), [UserMessage(content="hi")], stream=True)
    assert exc_info.value.status_code == 402


def test_reframed_text_round_trips_whitespace():
    text = "Found 2 tickets:\n\n| Ticket ID | Subject |\n|---|---|\n| 1 | Printer |"
    frames = list(text_to_frames(text, words_per_frame=3))
    assert frames[-1] == DONE_FRAME
    assert len(frames) > 2
    assert delta_text(frames) == text
