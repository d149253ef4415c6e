"""
Tests for the tool dispatch loop.

Tests cover:
- Final answer after tool rounds, conversation growth
- Tool results keep the model's call order under concurrent execution
- Unknown tools, malformed arguments and tool exceptions become tool output
- A created job stops the loop and discards the model's text
- Iteration bound
"""
import asyncio
import json

import httpx
import pytest

from ticketchat.core.errors import IterationLimitError, ProviderError, SetupRequiredError
from ticketchat.services.ai.dispatch import AsyncJobStarted, FinalAnswer, ToolDispatchLoop
from ticketchat.services.ai.messages import AssistantMessage, ToolMessage, UserMessage
from ticketchat.services.ai.providers import ProviderAdapter, ProviderConfig
from ticketchat.services.ai.tools import Tool, ToolContext, ToolRegistry, ToolResult, function_tool
from ticketchat.services.jobs.manager import JobHandle

from conftest import ScriptedLLM, mock_client, openai_text, openai_tool_calls


class EchoTool(Tool):
    name = "echo"
    definition = function_tool(name, "Echo the arguments", {"value": {"type": "string"}})

    def __init__(self, delays=None):
        self.delays = delays or {}
        self.calls = []

    async def run(self, args, context):
        self.calls.append(args)
        await asyncio.sleep(self.delays.get(args.get("value"), 0))
        return ToolResult({"echo": args.get("value")})


class FailingTool(Tool):
    name = "explode"
    definition = function_tool(name, "Always fails", {})

    async def run(self, args, context):
        raise RuntimeError("vendor unreachable")


class SetupTool(Tool):
    name = "needs_setup"
    definition = function_tool(name, "Missing credentials", {})

    async def run(self, args, context):
        raise SetupRequiredError("Please configure your FreshService API token", service_type="freshservice")


class JobTool(Tool):
    name = "start_job"
    definition = function_tool(name, "Starts a background job", {})

    async def run(self, args, context):
        handle = JobHandle(
            job_id="5f0c7d0e-3a5b-4a3b-9c55-1f2e3d4c5b6a",
            job_name="Job #1",
            message="Job #1 started.",
            estimated_time="~9 seconds",
        )
        return ToolResult(handle.to_event(), job=handle)


def make_loop(rate_limiter, llm, tools, max_iterations=10):
    adapter = ProviderAdapter(rate_limiter, http_client=mock_client(llm))
    config = ProviderConfig(provider="openai", api_key="sk-test", model="test-model", api_base="https://llm.test/v1")
    return ToolDispatchLoop(adapter, ToolRegistry(tools), config, max_iterations=max_iterations)


@pytest.fixture
def context():
    return ToolContext(user_id="user-1", session_id="session-1")


@pytest.mark.asyncio
async def test_text_only_reply_is_final(rate_limiter, context):
    llm = ScriptedLLM([openai_text("Nothing to look up.")])
    conversation = [UserMessage(content="hello")]

    outcome = await make_loop(rate_limiter, llm, [EchoTool()]).run(conversation, context)

    assert isinstance(outcome, FinalAnswer)
    assert outcome.text == "Nothing to look up."
    assert outcome.iterations == 1
    assert len(conversation) == 1
    assert llm.requests[0]["tools"][0]["function"]["name"] == "echo"


@pytest.mark.asyncio
async def test_two_tool_rounds_then_answer(rate_limiter, context):
    llm = ScriptedLLM([
        openai_tool_calls(("call_1", "echo", {"value": "a"})),
        openai_tool_calls(("call_2", "echo", {"value": "b"})),
        openai_text("done"),
    ])
    conversation = [UserMessage(content="go")]

    outcome = await make_loop(rate_limiter, llm, [EchoTool()]).run(conversation, context)

    assert outcome.text == "done"
    assert outcome.iterations == 3
    assert len(conversation) == 5
    assert [type(m) for m in conversation[1:]] == [AssistantMessage, ToolMessage, AssistantMessage, ToolMessage]
    assert conversation[2].tool_call_id == "call_1"
    assert json.loads(conversation[4].content) == {"echo": "b"}
    # the third model call saw both rounds
    assert [m["role"] for m in llm.requests[2]["messages"]] == ["user", "assistant", "tool", "assistant", "tool"]


@pytest.mark.asyncio
async def test_tool_messages_follow_call_order(rate_limiter, context):
    llm = ScriptedLLM([
        openai_tool_calls(
            ("call_slow", "echo", {"value": "slow"}),
            ("call_fast", "echo", {"value": "fast"}),
            ("call_mid", "echo", {"value": "mid"}),
        ),
        openai_text("ok"),
    ])
    tool = EchoTool(delays={"slow": 0.05, "mid": 0.02})
    conversation = [UserMessage(content="go")]

    await make_loop(rate_limiter, llm, [tool]).run(conversation, context)

    tool_ids = [m.tool_call_id for m in conversation if isinstance(m, ToolMessage)]
    assert tool_ids == ["call_slow", "call_fast", "call_mid"]


@pytest.mark.asyncio
async def test_unknown_tool_becomes_error_output(rate_limiter, context):
    llm = ScriptedLLM([openai_tool_calls(("call_1", "delete_everything", {})), openai_text("sorry")])
    conversation = [UserMessage(content="go")]

    outcome = await make_loop(rate_limiter, llm, [EchoTool()]).run(conversation, context)

    assert outcome.text == "sorry"
    assert json.loads(conversation[2].content) == {"error": "Unknown tool: delete_everything"}


@pytest.mark.asyncio
async def test_malformed_arguments_become_error_output(rate_limiter, context):
    bad = openai_tool_calls(("call_1", "echo", {}))
    bad["choices"][0]["message"]["tool_calls"][0]["function"]["arguments"] = "{not json"
    llm = ScriptedLLM([bad, openai_text("retrying")])
    tool = EchoTool()
    conversation = [UserMessage(content="go")]

    await make_loop(rate_limiter, llm, [tool]).run(conversation, context)

    assert tool.calls == []
    assert json.loads(conversation[2].content)["error"].startswith("Invalid arguments")


@pytest.mark.asyncio
async def test_tool_exception_becomes_error_output(rate_limiter, context):
    llm = ScriptedLLM([openai_tool_calls(("call_1", "explode", {})), openai_text("the vendor is down")])
    conversation = [UserMessage(content="go")]

    outcome = await make_loop(rate_limiter, llm, [FailingTool()]).run(conversation, context)

    assert outcome.text == "the vendor is down"
    assert json.loads(conversation[2].content) == {"error": "vendor unreachable", "error_type": "RuntimeError"}


@pytest.mark.asyncio
async def test_setup_error_propagates(rate_limiter, context):
    llm = ScriptedLLM([openai_tool_calls(("call_1", "needs_setup", {}))])

    with pytest.raises(SetupRequiredError):
        await make_loop(rate_limiter, llm, [SetupTool()]).run([UserMessage(content="go")], context)


@pytest.mark.asyncio
async def test_created_job_ends_loop_and_drops_text(rate_limiter, context):
    llm = ScriptedLLM([
        openai_tool_calls(("call_1", "start_job", {}), content="Here are your tickets: #1, #2"),
        openai_text("should never be requested"),
    ])

    outcome = await make_loop(rate_limiter, llm, [JobTool()]).run([UserMessage(content="all tickets")], context)

    assert isinstance(outcome, AsyncJobStarted)
    assert outcome.job.job_id == "5f0c7d0e-3a5b-4a3b-9c55-1f2e3d4c5b6a"
    assert outcome.iterations == 1
    assert len(llm.requests) == 1
    assert context.created_jobs == [outcome.job]


@pytest.mark.asyncio
async def test_job_created_next_to_setup_error_is_reported(rate_limiter, context):
    llm = ScriptedLLM([
        openai_tool_calls(("call_1", "start_job", {}), ("call_2", "needs_setup", {})),
        openai_text("should never be requested"),
    ])
    conversation = [UserMessage(content="all tickets")]

    outcome = await make_loop(rate_limiter, llm, [JobTool(), SetupTool()]).run(conversation, context)

    assert isinstance(outcome, AsyncJobStarted)
    assert outcome.job.job_id == "5f0c7d0e-3a5b-4a3b-9c55-1f2e3d4c5b6a"
    assert context.created_jobs == [outcome.job]
    tool_messages = [m for m in conversation if isinstance(m, ToolMessage)]
    assert [m.tool_call_id for m in tool_messages] == ["call_1", "call_2"]
    assert "FreshService API token" in json.loads(tool_messages[1].content)["error"]


@pytest.mark.asyncio
async def test_setup_error_waits_for_sibling_calls(rate_limiter, context):
    echo = EchoTool(delays={"slow": 0.01})
    llm = ScriptedLLM([openai_tool_calls(("call_1", "needs_setup", {}), ("call_2", "echo", {"value": "slow"}))])

    with pytest.raises(SetupRequiredError):
        await make_loop(rate_limiter, llm, [SetupTool(), echo]).run([UserMessage(content="go")], context)

    assert echo.calls == [{"value": "slow"}]


@pytest.mark.asyncio
async def test_iteration_bound(rate_limiter, context):
    llm = ScriptedLLM([openai_tool_calls((f"call_{i}", "echo", {"value": str(i)})) for i in range(10)])

    with pytest.raises(IterationLimitError) as exc_info:
        await make_loop(rate_limiter, llm, [EchoTool()], max_iterations=3).run([UserMessage(content="go")], context)

    assert exc_info.value.max_iterations == 3
    assert len(llm.requests) == 3


@pytest.mark.asyncio
async def test_vendor_error_is_not_retried(rate_limiter, context):
    llm = ScriptedLLM([httpx.Response(500, text="boom"), openai_text("unused")])

    with pytest.raises(ProviderError) as exc_info:
        await make_loop(rate_limiter, llm, [EchoTool()]).run([UserMessage(content="go")], context)

    assert exc_info.value.status_code == 500
    assert len(llm.requests) == 1
