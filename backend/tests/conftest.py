"""
Shared fixtures and in-memory fakes.

No test performs real network or database calls:
- ``FakeSupabase`` mimics the supabase table builder used by the stores
- ``FakeFreshService`` / ``ScriptedLLM`` are httpx.MockTransport handlers
"""
import json
import uuid
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from ticketchat.core.config import Settings
from ticketchat.core.rate_limit import RateLimiter


# ============================================================================
# Supabase
# ============================================================================

class FakeResponse:
    def __init__(self, data: List[Dict[str, Any]]):
        self.data = data


class FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table_name = table
        self.operation = "select"
        self.payload: Optional[Dict[str, Any]] = None
        self.filters: List[Callable[[Dict[str, Any]], bool]] = []
        self._order = None
        self._limit = None

    def select(self, *columns):
        self.operation = "select"
        return self

    def insert(self, row: Dict[str, Any]):
        self.operation = "insert"
        self.payload = row
        return self

    def update(self, fields: Dict[str, Any]):
        self.operation = "update"
        self.payload = fields
        return self

    def eq(self, column: str, value: Any):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def in_(self, column: str, values: List[Any]):
        self.filters.append(lambda row: row.get(column) in values)
        return self

    def order(self, column: str, desc: bool = False):
        self._order = (column, desc)
        return self

    def limit(self, count: int):
        self._limit = count
        return self

    def execute(self) -> FakeResponse:
        self.db.calls.append((self.table_name, self.operation, self.payload))
        rows = self.db.tables.setdefault(self.table_name, [])

        if self.operation == "insert":
            row = dict(self.payload)
            row.setdefault("id", str(uuid.uuid4()))
            rows.append(row)
            return FakeResponse([dict(row)])

        matched = [row for row in rows if all(check(row) for check in self.filters)]

        if self.operation == "update":
            for row in matched:
                row.update(self.payload)
            return FakeResponse([dict(row) for row in matched])

        if self._order:
            column, desc = self._order
            present = [r for r in matched if r.get(column) is not None]
            missing = [r for r in matched if r.get(column) is None]
            matched = sorted(present, key=lambda r: r[column], reverse=desc) + missing
        if self._limit is not None:
            matched = matched[:self._limit]
        return FakeResponse([dict(row) for row in matched])


class FakeSupabase:
    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.tables: Dict[str, List[Dict[str, Any]]] = tables or {}
        self.calls: List[Any] = []

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def row(self, table: str, row_id: str) -> Optional[Dict[str, Any]]:
        for row in self.tables.get(table, []):
            if row.get("id") == row_id:
                return row
        return None


# ============================================================================
# FreshService
# ============================================================================

FRESHSERVICE_ENDPOINT = "https://acme.freshservice.com"

STATUS_CHOICES = [
    {"id": 2, "value": "Open"},
    {"id": 3, "value": "Pending"},
    {"id": 4, "value": "Resolved"},
    {"id": 5, "value": "Closed"},
    {"id": 6, "value": "New"},
    {"id": 7, "value": "Pending access"},
]
PRIORITY_CHOICES = [
    {"id": 1, "value": "Low"},
    {"id": 2, "value": "Medium"},
    {"id": 3, "value": "High"},
    {"id": 4, "value": "Urgent"},
]
DEPARTMENT_CHOICES = [
    {"id": 19000123, "value": "CDW UK"},
    {"id": 19000456, "value": "Acme Corp"},
]
TICKET_FIELDS = [
    {"name": "status", "label": "Status", "choices": STATUS_CHOICES},
    {"name": "priority", "label": "Priority", "choices": PRIORITY_CHOICES},
    {"name": "department_id", "label": "Department", "choices": DEPARTMENT_CHOICES},
    {"name": "cf_module", "label": "Module", "choices": [{"id": 1, "value": "Billing"}, {"id": 2, "value": "Reporting"}]},
    {"name": "subject", "label": "Subject", "choices": []},
]


def make_ticket(ticket_id: int, **overrides) -> Dict[str, Any]:
    ticket = {
        "id": ticket_id,
        "subject": f"Printer issue {ticket_id}",
        "description_text": "The printer on floor 2 is jammed",
        "status": 2,
        "priority": 2,
        "department_id": 19000123,
        "group_id": None,
        "source": 2,
        "type": "Incident",
        "created_at": "2024-05-01T10:00:00Z",
        "updated_at": "2024-05-02T11:30:00Z",
        "custom_fields": {"module": "Billing", "escalated": "No", "ticket_type": "Bug"},
    }
    ticket.update(overrides)
    return ticket


class FakeFreshService:
    """MockTransport handler emulating the FreshService v2 API."""

    def __init__(self, total: int = 0, tickets: Optional[List[Dict[str, Any]]] = None):
        self.tickets = tickets if tickets is not None else [make_ticket(i) for i in range(1, total + 1)]
        self.requests: List[httpx.Request] = []
        self.queries: List[str] = []
        self.pages: List[int] = []
        self.rate_limited_responses = 0
        self.filter_error: Optional[httpx.Response] = None
        self.on_page: Optional[Callable[[int], None]] = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        params = request.url.params

        if self.rate_limited_responses > 0:
            self.rate_limited_responses -= 1
            return httpx.Response(429, json={"message": "Too many requests"})

        if path == "/api/v2/ticket_form_fields":
            return httpx.Response(200, json={"ticket_fields": TICKET_FIELDS})

        if path == "/api/v2/tickets/filter":
            self.queries.append(params["query"])
            if self.filter_error is not None:
                return self.filter_error
            page = int(params.get("page", 1))
            self.pages.append(page)
            if self.on_page:
                self.on_page(page)
            start = (page - 1) * 30
            return httpx.Response(200, json={"tickets": self.tickets[start:start + 30], "total": len(self.tickets)})

        if path == "/api/v2/tickets":
            page = int(params.get("page", 1))
            per_page = int(params.get("per_page", 30))
            self.pages.append(page)
            if self.on_page:
                self.on_page(page)
            start = (page - 1) * per_page
            return httpx.Response(200, json={"tickets": self.tickets[start:start + per_page]})

        if path.startswith("/api/v2/tickets/"):
            ticket_id = int(path.rsplit("/", 1)[-1])
            for ticket in self.tickets:
                if ticket["id"] == ticket_id:
                    return httpx.Response(200, json={"ticket": ticket})
            return httpx.Response(404, json={"code": "access_denied", "message": "not found"})

        return httpx.Response(404, json={"message": f"unexpected path {path}"})


# ============================================================================
# LLM
# ============================================================================

def openai_text(text: str) -> Dict[str, Any]:
    return {"choices": [{"message": {"role": "assistant", "content": text}, "finish_reason": "stop"}]}


def openai_tool_calls(*calls, content: Optional[str] = None) -> Dict[str, Any]:
    """``calls`` are (id, name, arguments dict) tuples."""
    return {
        "choices": [{
            "message": {
                "role": "assistant",
                "content": content,
                "tool_calls": [
                    {"id": call_id, "type": "function", "function": {"name": name, "arguments": json.dumps(args)}}
                    for call_id, name, args in calls
                ],
            },
            "finish_reason": "tool_calls",
        }]
    }


class ScriptedLLM:
    """Returns queued responses in order and records every request body."""

    def __init__(self, responses: List[Any]):
        self.responses = list(responses)
        self.requests: List[Dict[str, Any]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        if not self.responses:
            return httpx.Response(500, json={"error": "script exhausted"})
        item = self.responses.pop(0)
        if isinstance(item, httpx.Response):
            return item
        return httpx.Response(200, json=item)


class VendorRouter:
    """Dispatches MockTransport requests by host."""

    def __init__(self, llm=None, freshservice=None, worker=None):
        self.llm = llm
        self.freshservice = freshservice
        self.worker = worker or (lambda request: httpx.Response(202, json={"accepted": True}))
        self.worker_requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        if host in ("llm.test", "gemini.test") and self.llm is not None:
            return self.llm(request)
        if host == "acme.freshservice.com" and self.freshservice is not None:
            return self.freshservice(request)
        if host == "worker.test":
            self.worker_requests.append(request)
            return self.worker(request)
        return httpx.Response(404, json={"message": f"no route for {host}"})


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def settings():
    return Settings(
        llm_provider="openai",
        llm_api_key="sk-test",
        llm_api_base="https://llm.test/v1",
        llm_model="test-model",
        gemini_api_base="https://gemini.test/v1beta",
        gemini_model="gemini-test",
        worker_base_url="http://worker.test",
        worker_token="worker-secret",
        log_json=False,
    )


@pytest.fixture
def rate_limiter():
    return RateLimiter()


@pytest.fixture
def fake_db():
    return FakeSupabase({
        "mcp_services": [{
            "id": "svc-1",
            "service_name": "FreshService",
            "service_type": "freshservice",
            "endpoint_template": FRESHSERVICE_ENDPOINT,
            "call_delay_ms": 0,
            "max_retries": 2,
            "retry_delay_sec": 0,
        }],
        "mcp_service_tokens": [{"service_id": "svc-1", "encrypted_token": "fs-api-key", "auth_type": "basic"}],
        "connection_tokens": [],
        "connections": [],
        "chat_jobs": [],
        "chat_messages": [],
    })


@pytest.fixture
def freshservice():
    return FakeFreshService(total=5)
