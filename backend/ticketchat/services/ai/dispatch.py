"""
Tool dispatch loop.

    AwaitingModel --tool_calls--> ToolCallsRequested --results--> AwaitingModel
    AwaitingModel --text only--> FinalAnswer

Each round appends the assistant message and one tool message per call, in
the order the model issued the calls; the calls themselves run
concurrently. The loop is bounded by ``max_iterations`` model calls and
raises ``IterationLimitError`` beyond that.

If a round creates a background job the loop stops right there and returns
``AsyncJobStarted``. Any text the model produced alongside the calls is
dropped: it was written before the search ran.
"""
import asyncio
from dataclasses import dataclass, field
from typing import List, Optional, Union

from ticketchat.core.errors import FilterCompilerError, IterationLimitError, SetupRequiredError
from ticketchat.core.logging import get_logger
from ticketchat.core.metrics import record_dispatch_iteration_limit, record_dispatch_iterations, record_tool_call
from ticketchat.core.rate_limit import RateConfig
from ticketchat.services.ai.messages import ConversationMessage, ToolCall, ToolMessage
from ticketchat.services.ai.providers import ProviderAdapter, ProviderConfig
from ticketchat.services.ai.tools import ToolContext, ToolRegistry, ToolResult
from ticketchat.services.jobs.manager import JobHandle

logger = get_logger(__name__)

DEFAULT_MAX_ITERATIONS = 10


@dataclass
class FinalAnswer:
    text: str
    iterations: int = 0
    guard_retries: int = 0


@dataclass
class AsyncJobStarted:
    jobs: List[JobHandle] = field(default_factory=list)
    iterations: int = 0

    @property
    def job(self) -> JobHandle:
        return self.jobs[0]


DispatchOutcome = Union[FinalAnswer, AsyncJobStarted]


class ToolDispatchLoop:
    def __init__(
        self,
        adapter: ProviderAdapter,
        registry: ToolRegistry,
        provider_config: ProviderConfig,
        rate_config: Optional[RateConfig] = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
    ):
        self.adapter = adapter
        self.registry = registry
        self.provider_config = provider_config
        self.rate_config = rate_config
        self.max_iterations = max_iterations

    async def run(self, conversation: List[ConversationMessage], context: ToolContext) -> DispatchOutcome:
        """
        Drive the conversation until a final answer or a created job.

        ``conversation`` is extended in place.

        Raises:
            IterationLimitError: no final answer within ``max_iterations``
            ProviderError: the model call failed
            SetupRequiredError: credentials missing for the model or a tool
        """
        tools = self.registry.definitions()
        for iteration in range(1, self.max_iterations + 1):
            completion = await self.adapter.complete(
                self.provider_config,
                conversation,
                tools=tools,
                rate_config=self.rate_config,
            )

            if not completion.tool_calls:
                record_dispatch_iterations(iteration)
                logger.info("dispatch_final_answer", iterations=iteration, text_chars=len(completion.text))
                return FinalAnswer(text=completion.text, iterations=iteration)

            logger.info(
                "dispatch_tool_calls",
                iteration=iteration,
                tools=[call.name for call in completion.tool_calls],
            )
            conversation.append(completion.to_assistant_message())

            jobs_before = len(context.created_jobs)
            results = await asyncio.gather(
                *(self._execute(call, context) for call in completion.tool_calls),
                return_exceptions=True,
            )
            new_jobs = context.created_jobs[jobs_before:]
            failures = [r for r in results if isinstance(r, BaseException)]
            if failures and not new_jobs:
                raise failures[0]

            # A job created next to a failed call is still reported
            conversation.extend(
                result if isinstance(result, ToolMessage) else self._message(call, {"error": str(result)})
                for call, result in zip(completion.tool_calls, results)
            )

            if new_jobs:
                record_dispatch_iterations(iteration)
                logger.info(
                    "dispatch_async_job_started",
                    iteration=iteration,
                    job_ids=[job.job_id for job in new_jobs],
                    discarded_text_chars=len(completion.text),
                    failed_calls=len(failures),
                )
                return AsyncJobStarted(jobs=list(new_jobs), iterations=iteration)

        record_dispatch_iteration_limit()
        logger.error("dispatch_iteration_limit", max_iterations=self.max_iterations)
        raise IterationLimitError(self.max_iterations)

    async def _execute(self, call: ToolCall, context: ToolContext) -> ToolMessage:
        tool = self.registry.get(call.name)
        if tool is None:
            record_tool_call(call.name, "unknown")
            logger.warning("tool_unknown", tool=call.name, tool_call_id=call.id)
            return self._message(call, {"error": f"Unknown tool: {call.name}"})

        try:
            args = call.parsed_arguments()
        except ValueError as e:
            record_tool_call(call.name, "bad_arguments")
            logger.warning("tool_arguments_invalid", tool=call.name, tool_call_id=call.id, error=str(e))
            return self._message(call, {"error": f"Invalid arguments: {e}"})

        try:
            result = await tool.run(args, context)
        except SetupRequiredError:
            record_tool_call(call.name, "setup_required")
            raise
        except FilterCompilerError as e:
            record_tool_call(call.name, "error")
            logger.warning("tool_vendor_error", tool=call.name, query=e.query, status_code=e.status_code)
            return self._message(call, e.to_dict())
        except Exception as e:
            record_tool_call(call.name, "error")
            logger.warning(
                "tool_execution_failed",
                tool=call.name,
                tool_call_id=call.id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return self._message(call, {"error": str(e) or type(e).__name__, "error_type": type(e).__name__})

        if result.job is not None:
            context.created_jobs.append(result.job)
        record_tool_call(call.name, "success")
        return ToolMessage(content=result.serialized(), tool_call_id=call.id, name=call.name)

    @staticmethod
    def _message(call: ToolCall, payload: dict) -> ToolMessage:
        return ToolMessage(content=ToolResult(payload).serialized(), tool_call_id=call.id, name=call.name)
