"""
Background job worker.

Runs one ``chat_jobs`` row to completion:

    pending -> processing (10%) -> fetching (30%, page progress up to 80%)
            -> finalizing (90%) -> completed (100%) | failed

Every write is conditional on the row still being active. When a write
finds the row terminal (the user stopped the job) processing stops and any
result is discarded; in-flight vendor calls are not cancelled.
"""
from typing import Any, Dict, Optional

import httpx

from ticketchat.core.config import Settings
from ticketchat.core.logging import get_logger, set_job_id, set_user_id
from ticketchat.core.metrics import record_job_finished
from ticketchat.core.rate_limit import RateLimiter
from ticketchat.services.connections import ConnectionStore
from ticketchat.services.jobs.store import JobStore
from ticketchat.services.tickets.catalog import FieldCatalog
from ticketchat.services.tickets.client import FreshServiceClient
from ticketchat.services.tickets.compiler import FilterSpec
from ticketchat.services.tickets.formatting import format_tickets, tickets_to_markdown
from ticketchat.services.tickets.search import search_tickets

logger = get_logger(__name__)

PROGRESS_FETCHING = 30
PROGRESS_FETCH_CEILING = 80
PROGRESS_FINALIZING = 90


class JobAborted(Exception):
    """The job row turned terminal while the worker was running."""


class JobWorker:
    def __init__(
        self,
        store: JobStore,
        connections: ConnectionStore,
        rate_limiter: RateLimiter,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.store = store
        self.connections = connections
        self.rate_limiter = rate_limiter
        self.settings = settings
        self._http_client = http_client

    def _progress(self, job_id: str, progress: int, message: str) -> None:
        if not self.store.update_progress(job_id, progress, message):
            raise JobAborted(job_id)

    def _service_id_for(self, job: Dict[str, Any]) -> str:
        service_id = (job.get("filters") or {}).get("service_id")
        if service_id:
            return service_id
        services = self.connections.list_ticket_services(job["user_id"])
        if not services:
            raise RuntimeError("No ticket service configured")
        return services[0]["mcp_service_id"]

    async def process(self, job_id: str) -> Optional[str]:
        """
        Process one job.

        Returns:
            Final status written by this worker, or None when nothing was
            written (unknown job, not pending, or aborted by a stop)
        """
        set_job_id(job_id)
        try:
            job = self.store.get(job_id)
            if job is None:
                logger.warning("job_not_found", job_id=job_id)
                return None
            set_user_id(job.get("user_id"))

            if not self.store.mark_processing(job_id):
                logger.info("job_not_pending", job_id=job_id, status=job.get("status"))
                return None
            logger.info("job_processing_started", job_id=job_id)

            try:
                return await self._run(job_id, job)
            except JobAborted:
                logger.info("job_aborted_terminal", job_id=job_id)
                record_job_finished("aborted")
                return None
            except Exception as e:
                logger.error(
                    "job_processing_failed",
                    job_id=job_id,
                    error=str(e),
                    error_type=type(e).__name__,
                    exc_info=True,
                )
                if self.store.fail(job_id, str(e) or type(e).__name__):
                    record_job_finished("failed")
                    return "failed"
                record_job_finished("aborted")
                return None
        finally:
            set_job_id(None)
            set_user_id(None)

    async def _run(self, job_id: str, job: Dict[str, Any]) -> str:
        filters = job.get("filters") or {}
        spec = FilterSpec.model_validate(filters)
        limit = int(filters.get("limit") or spec.limit or self.settings.default_ticket_limit)

        config = self.connections.resolve_ticket_service(self._service_id_for(job), job["user_id"])
        client = FreshServiceClient.for_service(
            config, self.rate_limiter, self.settings.ticket_api_timeout_seconds, self._http_client
        )

        self._progress(job_id, PROGRESS_FETCHING, "Fetching tickets...")

        async def on_page(page: int, fetched: int) -> None:
            span = PROGRESS_FETCH_CEILING - PROGRESS_FETCHING
            progress = PROGRESS_FETCHING + min(span, int(span * fetched / max(limit, 1)))
            self._progress(job_id, progress, f"Fetched {fetched} tickets (page {page})...")

        result = await search_tickets(client, spec, limit, on_page=on_page)

        self._progress(job_id, PROGRESS_FINALIZING, "Finalizing results...")
        formatted = format_tickets(result.tickets, FieldCatalog.from_vendor(result.ticket_form_fields))
        payload = {
            "query": result.query,
            "total": len(formatted),
            "total_matching": result.total_matching,
            "limited": result.limited,
            "tickets": formatted,
            "available_fields": list(formatted[0].keys()) if formatted else [],
        }

        if not self.store.complete(job_id, payload, total_tickets=len(formatted)):
            raise JobAborted(job_id)

        record_job_finished("completed")
        logger.info("job_completed", job_id=job_id, total=len(formatted), total_matching=result.total_matching)

        try:
            self.store.update_chat_message(job_id, tickets_to_markdown(formatted, result.total_matching))
        except Exception as e:
            logger.warning(
                "job_chat_message_update_failed",
                job_id=job_id,
                error=str(e),
                error_type=type(e).__name__,
            )
        return "completed"
