"""
Tools exposed to the model during a chat run.

- get_ticket_connections: list the ticket services the user can query
- search_tickets: filtered ticket search, inline or as a background job
  depending on sizing
- get_ticket: one ticket by id

Each tool receives the decoded JSON arguments and the per-run
``ToolContext`` and returns a ``ToolResult``. A result carrying a
``JobHandle`` tells the dispatch loop that a background job now exists.
"""
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from ticketchat.core.config import Settings
from ticketchat.core.errors import FilterCompilerError
from ticketchat.core.logging import get_logger
from ticketchat.core.metrics import record_search_mode
from ticketchat.core.rate_limit import RateLimiter
from ticketchat.services.connections import ConnectionStore, TicketServiceConfig
from ticketchat.services.jobs.manager import JobHandle, JobManager
from ticketchat.services.jobs.sizing import decide_execution_mode
from ticketchat.services.tickets.catalog import FieldCatalog
from ticketchat.services.tickets.client import FreshServiceClient
from ticketchat.services.tickets.compiler import FilterSpec
from ticketchat.services.tickets.formatting import format_ticket, format_tickets, summarize_for_model
from ticketchat.services.tickets.search import search_tickets

logger = get_logger(__name__)


@dataclass
class ToolContext:
    user_id: str
    session_id: Optional[str]
    query: str = ""
    created_jobs: List[JobHandle] = field(default_factory=list)


@dataclass
class ToolResult:
    content: Any
    job: Optional[JobHandle] = None

    def serialized(self) -> str:
        if isinstance(self.content, str):
            return self.content
        return json.dumps(self.content, default=str)


def function_tool(name: str, description: str, properties: Dict[str, Any], required: Optional[List[str]] = None) -> Dict[str, Any]:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {
                "type": "object",
                "properties": properties,
                "required": required or [],
            },
        },
    }


_STRING_LIST = {"type": "array", "items": {"type": "string"}}
_FIELD_MAP = {
    "type": "object",
    "description": "Custom field name to list of values, e.g. {\"module\": [\"Billing\"]}",
    "additionalProperties": _STRING_LIST,
}


class Tool:
    name: str = ""
    definition: Dict[str, Any] = {}

    async def run(self, args: Dict[str, Any], context: ToolContext) -> ToolResult:
        raise NotImplementedError


class TicketConnectionsTool(Tool):
    name = "get_ticket_connections"
    definition = function_tool(
        name,
        "List the ticket services (FreshService) available to the user. "
        "Call this first to obtain the mcp_service_id for the other ticket tools.",
        {},
    )

    def __init__(self, connections: ConnectionStore):
        self.connections = connections

    async def run(self, args: Dict[str, Any], context: ToolContext) -> ToolResult:
        services = self.connections.list_ticket_services(context.user_id)
        if not services:
            return ToolResult({"error": "No FreshService service configured"})
        return ToolResult(services)


class _TicketServiceTool(Tool):
    def __init__(
        self,
        connections: ConnectionStore,
        rate_limiter: RateLimiter,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.connections = connections
        self.rate_limiter = rate_limiter
        self.settings = settings
        self._http_client = http_client

    def _client_for(self, config: TicketServiceConfig) -> FreshServiceClient:
        return FreshServiceClient.for_service(
            config, self.rate_limiter, self.settings.ticket_api_timeout_seconds, self._http_client
        )

    @staticmethod
    def _service_id(args: Dict[str, Any]) -> str:
        service_id = args.get("mcp_service_id") or args.get("service_id")
        if not service_id:
            raise ValueError("mcp_service_id is required; call get_ticket_connections first")
        return str(service_id)


class SearchTicketsTool(_TicketServiceTool):
    name = "search_tickets"
    definition = function_tool(
        name,
        "Search tickets with filters. Values may be ids or names. "
        "Common status ids: 2=Open, 3=Pending, 4=Resolved, 5=Closed. "
        "Priority ids: 1=Low, 2=Medium, 3=High, 4=Urgent. "
        "Large or broad searches run as a background job; in that case only job details are returned.",
        {
            "mcp_service_id": {"type": "string", "description": "Service id from get_ticket_connections"},
            "department": {"type": "string", "description": "Department (company) name or id"},
            "status": {**_STRING_LIST, "description": "Statuses to include (OR)"},
            "exclude_status": {**_STRING_LIST, "description": "Statuses to exclude, e.g. ['4','5'] for not closed"},
            "priority": {**_STRING_LIST, "description": "Priorities to include (OR)"},
            "exclude_priority": {**_STRING_LIST, "description": "Priorities to exclude"},
            "created_after": {"type": "string", "description": "ISO date, tickets created after it"},
            "created_before": {"type": "string", "description": "ISO date, tickets created before it"},
            "custom_fields": _FIELD_MAP,
            "exclude_custom_fields": _FIELD_MAP,
            "limit": {"type": "integer", "description": "Maximum number of tickets (default 100)"},
        },
        ["mcp_service_id"],
    )

    def __init__(self, connections, rate_limiter, settings, job_manager: JobManager, http_client=None):
        super().__init__(connections, rate_limiter, settings, http_client)
        self.job_manager = job_manager

    async def run(self, args: Dict[str, Any], context: ToolContext) -> ToolResult:
        service_id = self._service_id(args)
        spec = FilterSpec.model_validate(args)
        decision = decide_execution_mode(spec, self.settings)
        record_search_mode(decision.mode)
        logger.info(
            "ticket_search_sized",
            mode=decision.mode,
            reason=decision.reason,
            limit=decision.limit,
            service_id=service_id,
        )

        # Fail fast on missing credentials before a job is queued
        config = self.connections.resolve_ticket_service(service_id, context.user_id)

        if decision.is_async:
            handle = await self.job_manager.create_job(
                user_id=context.user_id,
                session_id=context.session_id,
                query=context.query,
                spec=spec,
                limit=decision.limit,
                service_id=service_id,
            )
            return ToolResult(handle.to_event(), job=handle)

        result = await search_tickets(self._client_for(config), spec, decision.limit)
        formatted = format_tickets(result.tickets, FieldCatalog.from_vendor(result.ticket_form_fields))
        return ToolResult({
            "query": result.query,
            "total": result.total,
            "total_matching": result.total_matching,
            "limited": result.limited,
            "tickets": summarize_for_model(formatted),
        })


class GetTicketTool(_TicketServiceTool):
    name = "get_ticket"
    definition = function_tool(
        name,
        "Fetch one ticket by its numeric id, with full details.",
        {
            "mcp_service_id": {"type": "string", "description": "Service id from get_ticket_connections"},
            "ticket_id": {"type": "integer", "description": "Ticket number"},
        },
        ["mcp_service_id", "ticket_id"],
    )

    async def run(self, args: Dict[str, Any], context: ToolContext) -> ToolResult:
        service_id = self._service_id(args)
        raw_id = str(args.get("ticket_id", "")).lstrip("#").strip()
        if not raw_id.isdigit():
            raise ValueError(f"Invalid ticket_id: {args.get('ticket_id')!r}")

        config = self.connections.resolve_ticket_service(service_id, context.user_id)
        client = self._client_for(config)
        catalog = await client.fetch_catalog()
        try:
            ticket = await client.get_ticket(int(raw_id))
        except FilterCompilerError as e:
            if e.status_code != 404:
                raise
            ticket = None
        if not ticket:
            return ToolResult({"error": f"Ticket {raw_id} not found"})
        return ToolResult(format_ticket(ticket, catalog))


class ToolRegistry:
    def __init__(self, tools: Optional[List[Tool]] = None):
        self._tools: Dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def definitions(self) -> List[Dict[str, Any]]:
        return [tool.definition for tool in self._tools.values()]

    def __contains__(self, name: str) -> bool:
        return name in self._tools
