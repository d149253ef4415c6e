"""
Sync vs. async sizing for ticket searches.

A search runs in the background when any of these holds:
- the requested limit exceeds ``SYNC_TICKET_LIMIT``
- more than ``SYNC_MAX_STATUS_VALUES`` status values are requested
- any exclude filter is present (expansion makes the query broad)
- no filters at all (the broadest possible query)

Otherwise it runs inline in the chat request.
"""
from dataclasses import dataclass

from ticketchat.core.config import Settings
from ticketchat.services.tickets.compiler import FilterSpec

MODE_SYNC = "sync"
MODE_ASYNC = "async"


@dataclass(frozen=True)
class SizingDecision:
    mode: str
    limit: int
    reason: str

    @property
    def is_async(self) -> bool:
        return self.mode == MODE_ASYNC


def decide_execution_mode(spec: FilterSpec, settings: Settings) -> SizingDecision:
    requested = spec.limit or settings.default_ticket_limit

    if spec.is_empty():
        reason = "no_filters"
    elif requested > settings.sync_ticket_limit:
        reason = "limit_exceeds_sync_ceiling"
    elif len(spec.status) > settings.sync_max_status_values:
        reason = "too_many_status_values"
    elif spec.has_exclusions():
        reason = "exclude_filter"
    else:
        return SizingDecision(mode=MODE_SYNC, limit=requested, reason="narrow_query")

    return SizingDecision(mode=MODE_ASYNC, limit=min(requested, settings.async_max_tickets), reason=reason)
