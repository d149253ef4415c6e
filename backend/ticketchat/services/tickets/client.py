"""
FreshService REST client.

Endpoints used:
- GET /api/v2/ticket_form_fields          field catalog
- GET /api/v2/tickets/filter?query="..."  filtered search, 30 per page
- GET /api/v2/tickets?per_page=100        unfiltered listing
- GET /api/v2/tickets/{id}                single ticket

Every request is spaced through the shared ``RateLimiter``. HTTP 429 is
retried up to the service's ``max_retries`` with ``retry_delay_sec``
between attempts; every other failure raises ``FilterCompilerError`` with
the vendor status and body.
"""
import asyncio
import base64
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from ticketchat.core.errors import FilterCompilerError
from ticketchat.core.logging import get_logger
from ticketchat.core.metrics import record_ticket_page
from ticketchat.core.rate_limit import RateConfig, RateLimiter
from ticketchat.services.connections import TicketServiceConfig
from ticketchat.services.tickets.catalog import FieldCatalog

logger = get_logger(__name__)

FILTER_PAGE_SIZE = 30
LIST_PAGE_SIZE = 100


@dataclass
class TicketPage:
    tickets: List[Dict[str, Any]]
    total: Optional[int]
    has_more: bool


def build_auth_header(api_key: str, auth_type: str = "basic") -> str:
    if auth_type == "bearer":
        return f"Bearer {api_key}"
    token = base64.b64encode(f"{api_key}:X".encode()).decode()
    return f"Basic {token}"


class FreshServiceClient:
    def __init__(
        self,
        endpoint: str,
        api_key: str,
        rate_limiter: RateLimiter,
        rate_config: Optional[RateConfig] = None,
        auth_type: str = "basic",
        max_retries: int = 0,
        retry_delay_seconds: float = 0.0,
        timeout_seconds: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.rate_limiter = rate_limiter
        self.rate_config = rate_config
        self.max_retries = max(0, max_retries)
        self.retry_delay_seconds = max(0.0, retry_delay_seconds)
        self.timeout_seconds = timeout_seconds
        self._headers = {
            "Authorization": build_auth_header(api_key, auth_type),
            "Content-Type": "application/json",
        }
        self._http_client = http_client
        self._sleep = sleep

    @classmethod
    def for_service(
        cls,
        config: TicketServiceConfig,
        rate_limiter: RateLimiter,
        timeout_seconds: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> "FreshServiceClient":
        """Client for a resolved ticket service, with its auth, spacing and retry settings."""
        return cls(
            endpoint=config.endpoint,
            api_key=config.api_key,
            auth_type=config.auth_type,
            rate_limiter=rate_limiter,
            rate_config=config.rate_config,
            max_retries=config.max_retries,
            retry_delay_seconds=config.retry_delay_sec,
            timeout_seconds=timeout_seconds,
            http_client=http_client,
        )

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None, query: Optional[str] = None) -> httpx.Response:
        url = f"{self.endpoint}{path}"
        attempt = 0
        while True:
            await self.rate_limiter.throttle(self.rate_config)
            try:
                if self._http_client is not None:
                    response = await self._http_client.get(
                        url, params=params, headers=self._headers, timeout=self.timeout_seconds
                    )
                else:
                    async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                        response = await client.get(url, params=params, headers=self._headers)
            except httpx.HTTPError as e:
                record_ticket_page("transport_error")
                logger.error(
                    "ticket_api_request_failed",
                    path=path,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise FilterCompilerError(f"Ticket API request failed: {e}", query=query) from e

            if response.status_code == 429 and attempt < self.max_retries:
                attempt += 1
                record_ticket_page("retried")
                logger.warning(
                    "ticket_api_rate_limited",
                    path=path,
                    attempt=attempt,
                    max_retries=self.max_retries,
                    retry_delay_sec=self.retry_delay_seconds,
                )
                await self._sleep(self.retry_delay_seconds)
                continue

            if not response.is_success:
                record_ticket_page("http_error")
                logger.warning(
                    "ticket_api_error",
                    path=path,
                    status_code=response.status_code,
                    body=response.text[:500],
                    query=query,
                )
                raise FilterCompilerError(
                    f"FreshService API error: {response.status_code}",
                    query=query,
                    status_code=response.status_code,
                    body=response.text,
                )

            record_ticket_page("success")
            return response

    async def fetch_catalog(self) -> FieldCatalog:
        response = await self._get("/api/v2/ticket_form_fields")
        data = response.json()
        raw_fields = data.get("ticket_fields") or data.get("fields") or []
        logger.debug("ticket_catalog_fetched", fields=len(raw_fields))
        return FieldCatalog.from_vendor(raw_fields)

    async def fetch_page(self, query: str, page: int) -> TicketPage:
        """
        Fetch one page of tickets.

        An empty query lists all tickets instead of using the filter
        endpoint, which rejects empty queries.
        """
        if query:
            response = await self._get(
                "/api/v2/tickets/filter",
                params={"query": f'"{query}"', "page": page},
                query=query,
            )
            data = response.json()
            tickets = data.get("tickets") or []
            total = data.get("total")
            if total is not None:
                has_more = page * FILTER_PAGE_SIZE < total
            else:
                has_more = len(tickets) >= FILTER_PAGE_SIZE
            return TicketPage(tickets=tickets, total=total, has_more=has_more)

        response = await self._get(
            "/api/v2/tickets",
            params={"per_page": LIST_PAGE_SIZE, "page": page},
            query=query,
        )
        tickets = response.json().get("tickets") or []
        has_more = 'rel="next"' in response.headers.get("link", "") or len(tickets) >= LIST_PAGE_SIZE
        return TicketPage(tickets=tickets, total=None, has_more=has_more)

    async def get_ticket(self, ticket_id: int) -> Dict[str, Any]:
        response = await self._get(f"/api/v2/tickets/{ticket_id}")
        return response.json().get("ticket") or {}
