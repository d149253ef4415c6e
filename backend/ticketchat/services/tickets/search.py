"""
Ticket search: compile, paginate, post-filter, limit.

Bookkeeping:
- ``total`` is the number of tickets returned (never above ``limit``)
- ``limited`` is true when more matching tickets existed than were returned
- ``total_matching`` is the vendor-reported total minus tickets removed by
  post-filters seen so far; without a vendor total it falls back to the
  count of matching tickets actually fetched

Post-filters are applied to each page before the limit is taken, so
excluded tickets do not consume the limit.
"""
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from ticketchat.core.errors import FilterCompilerError
from ticketchat.core.logging import get_logger
from ticketchat.services.tickets.client import FreshServiceClient
from ticketchat.services.tickets.compiler import FilterSpec, apply_post_filters, compile_filters

logger = get_logger(__name__)

ProgressCallback = Callable[[int, int], Awaitable[None]]


class TicketSearchResult(BaseModel):
    success: bool = True
    query: str
    tickets: List[Dict[str, Any]] = Field(default_factory=list)
    total: int = 0
    total_matching: int = 0
    limited: bool = False
    excluded: int = 0
    ticket_form_fields: List[Dict[str, Any]] = Field(default_factory=list)


async def search_tickets(
    client: FreshServiceClient,
    spec: FilterSpec,
    limit: int,
    on_page: Optional[ProgressCallback] = None,
) -> TicketSearchResult:
    """
    Run a filtered ticket search.

    Args:
        client: Ticket vendor client for the resolved service
        spec: Abstract filters
        limit: Maximum number of tickets to return
        on_page: Awaited after each page with (page number, tickets so far)

    Returns:
        TicketSearchResult

    Raises:
        FilterCompilerError: the vendor rejected the query or a fetch failed
    """
    catalog = await client.fetch_catalog()
    compiled = compile_filters(spec, catalog)

    collected: List[Dict[str, Any]] = []
    vendor_total: Optional[int] = None
    excluded_seen = 0
    limited = False
    page = 1

    while True:
        try:
            result = await client.fetch_page(compiled.query, page)
        except FilterCompilerError as e:
            if e.query is None:
                e.query = compiled.query
            raise

        if vendor_total is None and result.total is not None:
            vendor_total = result.total

        kept, excluded = apply_post_filters(result.tickets, compiled.post_filters)
        excluded_seen += excluded

        room = limit - len(collected)
        if len(kept) > room:
            collected.extend(kept[:room])
            limited = True
            break
        collected.extend(kept)

        if on_page is not None:
            await on_page(page, len(collected))

        if not result.has_more or not result.tickets:
            break
        if len(collected) >= limit:
            # Stopped on a page boundary with pages left
            limited = True
            break
        page += 1

    if vendor_total is not None:
        total_matching = max(vendor_total - excluded_seen, len(collected))
    else:
        total_matching = len(collected)

    logger.info(
        "ticket_search_completed",
        query=compiled.query,
        pages=page,
        returned=len(collected),
        total_matching=total_matching,
        limited=limited,
        excluded=excluded_seen,
    )
    return TicketSearchResult(
        query=compiled.query,
        tickets=collected,
        total=len(collected),
        total_matching=total_matching,
        limited=limited,
        excluded=excluded_seen,
        ticket_form_fields=catalog.raw,
    )
