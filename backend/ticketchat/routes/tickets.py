"""
Ticket filter endpoint.

POST /tickets/filter
Body: {serviceId, filters, ownerType?, ownerId?}
Response: {success, query, tickets[], total, total_matching, limited, ticket_form_fields}
"""
import httpx
from fastapi import APIRouter, Depends

from ticketchat.core.config import Settings
from ticketchat.core.logging import get_logger
from ticketchat.core.rate_limit import RateLimiter
from ticketchat.models.requests import TicketFilterRequest
from ticketchat.routes.deps import get_app_settings, get_connections, get_http_client, get_rate_limiter, require_user_id
from ticketchat.services.connections import ConnectionStore
from ticketchat.services.tickets.client import FreshServiceClient
from ticketchat.services.tickets.search import TicketSearchResult, search_tickets

logger = get_logger(__name__)

router = APIRouter()


@router.post("/filter", response_model=TicketSearchResult)
async def filter_tickets(
    body: TicketFilterRequest,
    user_id: str = Depends(require_user_id),
    connections: ConnectionStore = Depends(get_connections),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    settings: Settings = Depends(get_app_settings),
    http_client: httpx.AsyncClient = Depends(get_http_client),
):
    """
    Compile the filters, page through the vendor and return raw tickets.

    Vendor failures are returned as 502 with the compiled query and the
    vendor's response body.
    """
    config = connections.resolve_ticket_service(body.service_id, user_id, body.owner_type, body.owner_id)
    client = FreshServiceClient.for_service(
        config, rate_limiter, settings.ticket_api_timeout_seconds, http_client
    )
    limit = body.filters.limit or settings.default_ticket_limit
    logger.info("ticket_filter_requested", service_id=body.service_id, limit=limit)
    return await search_tickets(client, body.filters, limit)
