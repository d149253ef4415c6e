"""Ticket vendor services: field catalog, filter compiler, client, search and formatting."""
from .catalog import FieldCatalog
from .client import FreshServiceClient
from .compiler import FilterSpec, compile_filters
from .search import TicketSearchResult, search_tickets

__all__ = [
    "FieldCatalog",
    "FreshServiceClient",
    "FilterSpec",
    "compile_filters",
    "TicketSearchResult",
    "search_tickets",
]
