"""
Chat orchestration.

One chat request:
1. resolve the LLM provider (user's default connection, else server key)
2. prepend the system prompt
3. run the tool dispatch loop under the hallucination guard
4. render the outcome as SSE frames: the answer text, or a single job
   event when the search went to the background

NON-responsibilities:
- Does NOT talk to vendors directly (provider adapter, ticket client)
- Does NOT decide sync vs. async (job sizing, inside the search tool)
"""
from datetime import date
from typing import Iterator, List, Optional, Tuple

import httpx

from ticketchat.core.config import Settings
from ticketchat.core.errors import SetupRequiredError
from ticketchat.core.logging import get_logger
from ticketchat.core.rate_limit import RateConfig, RateLimiter
from ticketchat.services.ai.dispatch import AsyncJobStarted, DispatchOutcome, ToolDispatchLoop
from ticketchat.services.ai.guard import HallucinationGuard
from ticketchat.services.ai.messages import ConversationMessage, SystemMessage, last_user_text
from ticketchat.services.ai.providers import ProviderAdapter, ProviderConfig
from ticketchat.services.ai.sse import DONE_FRAME, format_event_frame, text_to_frames
from ticketchat.services.ai.tools import (
    GetTicketTool,
    SearchTicketsTool,
    TicketConnectionsTool,
    ToolContext,
    ToolRegistry,
)
from ticketchat.services.connections import ConnectionStore
from ticketchat.services.jobs.manager import JobManager

logger = get_logger(__name__)

SYSTEM_PROMPT = """You are a helpful assistant that answers questions about support tickets stored in FreshService.
Today is {today}.

When the user asks about tickets:
1. Call get_ticket_connections to find their ticket service.
2. Use the mcp_service_id from that result (not a connection id).
3. Call search_tickets with filters, or get_ticket for a single ticket number.

How to map requests to filters:
- "not closed" or "not resolved" -> exclude_status: ["4", "5"]
- "last month" / "last N days" -> created_after with the matching date
- company names go in department
- if no filter is given, search without filters

If search_tickets reports a background job, tell the user the job name and that results will appear when it finishes.
Never invent ticket numbers, job ids or any other identifiers.
Format ticket lists as a markdown table with columns: Ticket ID, Subject, Priority, Status."""


def build_system_prompt(today: Optional[date] = None) -> str:
    return SYSTEM_PROMPT.format(today=(today or date.today()).isoformat())


def outcome_frames(outcome: DispatchOutcome) -> Iterator[str]:
    """SSE frames for a finished orchestration run."""
    if isinstance(outcome, AsyncJobStarted):
        for job in outcome.jobs:
            yield format_event_frame(job.to_event())
        yield DONE_FRAME
        return
    yield from text_to_frames(outcome.text)


class ChatOrchestrator:
    def __init__(
        self,
        adapter: ProviderAdapter,
        connections: ConnectionStore,
        job_manager: JobManager,
        rate_limiter: RateLimiter,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.adapter = adapter
        self.connections = connections
        self.job_manager = job_manager
        self.rate_limiter = rate_limiter
        self.settings = settings
        self._http_client = http_client

    def resolve_provider(self, user_id: str) -> Tuple[ProviderConfig, RateConfig]:
        """
        Pick the LLM provider for this user.

        Raises:
            SetupRequiredError: no user connection and no server key
        """
        connection = self.connections.get_chat_connection(user_id)
        if connection is not None:
            logger.debug("llm_provider_from_connection", provider=connection.provider)
            config = ProviderConfig.default_for(
                connection.provider,
                connection.api_key,
                self.settings,
                model=connection.model,
                api_base=connection.endpoint,
            )
            return config, connection.rate_config

        if self.settings.llm_api_key:
            provider = self.settings.llm_provider
            config = ProviderConfig.default_for(provider, self.settings.llm_api_key, self.settings)
            return config, RateConfig.from_delay_ms(f"llm:{provider}", self.settings.default_call_delay_ms)

        logger.warning("llm_provider_not_configured", user_id=user_id)
        raise SetupRequiredError(
            "No AI connection configured. Add an OpenAI or Gemini connection and mark it as the chat default.",
            service_type="llm",
        )

    def build_registry(self) -> ToolRegistry:
        return ToolRegistry([
            TicketConnectionsTool(self.connections),
            SearchTicketsTool(
                self.connections,
                self.rate_limiter,
                self.settings,
                job_manager=self.job_manager,
                http_client=self._http_client,
            ),
            GetTicketTool(self.connections, self.rate_limiter, self.settings, http_client=self._http_client),
        ])

    async def run(
        self,
        messages: List[ConversationMessage],
        user_id: str,
        session_id: Optional[str] = None,
    ) -> DispatchOutcome:
        provider_config, rate_config = self.resolve_provider(user_id)

        conversation: List[ConversationMessage] = [SystemMessage(content=build_system_prompt())]
        conversation.extend(messages)
        context = ToolContext(user_id=user_id, session_id=session_id, query=last_user_text(messages))

        loop = ToolDispatchLoop(
            self.adapter,
            self.build_registry(),
            provider_config,
            rate_config=rate_config,
            max_iterations=self.settings.max_tool_iterations,
        )
        guard = HallucinationGuard(max_retries=self.settings.guard_max_retries)

        logger.info(
            "chat_orchestration_started",
            provider=provider_config.provider,
            model=provider_config.model,
            messages=len(messages),
        )
        outcome = await guard.run(lambda conv: loop.run(conv, context), conversation, context)
        logger.info(
            "chat_orchestration_completed",
            outcome=type(outcome).__name__,
            iterations=outcome.iterations,
        )
        return outcome
