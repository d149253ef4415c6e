"""
Async job manager.

Creating a job inserts a ``pending`` row and fires the background worker
trigger (``POST {WORKER_BASE_URL}/jobs/process``) as a detached task. The
chat request does not wait for the worker, only the trigger task holds a
reference to the call. If the trigger raises or is not acknowledged with a
2xx, the task's done-callback marks the job failed with a diagnostic error
so it never sits at ``pending`` forever.
"""
import asyncio
import functools
import math
from typing import Any, Dict, Optional, Set

import httpx
from pydantic import BaseModel

from ticketchat.core.config import Settings
from ticketchat.core.errors import JobNotFoundError, WorkerDispatchError
from ticketchat.core.logging import get_logger
from ticketchat.core.metrics import record_job_created, record_job_dispatch_failure
from ticketchat.services.jobs.store import (
    ACTIVE_STATUSES,
    STATUS_FAILED,
    STATUS_PENDING,
    STOPPED_BY_USER,
    TERMINAL_STATUSES,
    JobStore,
    utc_now,
)
from ticketchat.services.tickets.client import FILTER_PAGE_SIZE
from ticketchat.services.tickets.compiler import FilterSpec

logger = get_logger(__name__)


class JobHandle(BaseModel):
    job_id: str
    job_name: str
    message: str
    estimated_time: str

    def to_event(self) -> Dict[str, Any]:
        return {"async_job": True, **self.model_dump()}


def estimate_duration(limit: int) -> str:
    """Rough wall time from page count (one page every ~2 seconds)."""
    pages = max(1, math.ceil(limit / FILTER_PAGE_SIZE))
    seconds = 5 + pages * 2
    if seconds < 60:
        return f"~{seconds} seconds"
    minutes = math.ceil(seconds / 60)
    return f"~{minutes} minute" + ("s" if minutes > 1 else "")


def job_status_payload(job: Dict[str, Any]) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "job_id": job.get("id"),
        "job_name": f"Job #{job['job_sequence']}" if job.get("job_sequence") else None,
        "status": job.get("status"),
        "progress": job.get("progress") or 0,
        "progress_message": job.get("progress_message"),
    }
    if job.get("result") is not None:
        payload["result"] = job["result"]
    if job.get("error"):
        payload["error"] = job["error"]
    return payload


class JobManager:
    def __init__(self, store: JobStore, settings: Settings, http_client: Optional[httpx.AsyncClient] = None):
        self.store = store
        self.settings = settings
        self._http_client = http_client
        self._dispatch_tasks: Set[asyncio.Task] = set()

    async def create_job(
        self,
        user_id: str,
        session_id: Optional[str],
        query: str,
        spec: FilterSpec,
        limit: int,
        service_id: Optional[str] = None,
    ) -> JobHandle:
        """
        Insert a pending job and dispatch the worker without waiting for it.

        Returns:
            JobHandle with the real job id
        """
        sequence = self.store.next_sequence(session_id)
        filters = spec.to_snapshot()
        filters["limit"] = limit
        if service_id:
            filters["service_id"] = service_id

        row = self.store.insert({
            "user_id": user_id,
            "chat_session_id": session_id,
            "job_sequence": sequence,
            "query": query or "Ticket search",
            "status": STATUS_PENDING,
            "progress": 0,
            "progress_message": "Queued",
            "filters": filters,
        })
        job_id = str(row["id"])
        record_job_created()
        logger.info("job_created", job_id=job_id, session_id=session_id, job_sequence=sequence, limit=limit)

        self._spawn_dispatch(job_id)

        job_name = f"Job #{sequence}"
        return JobHandle(
            job_id=job_id,
            job_name=job_name,
            message=f"{job_name} started. Searching up to {limit} tickets in the background.",
            estimated_time=estimate_duration(limit),
        )

    def _spawn_dispatch(self, job_id: str) -> None:
        task = asyncio.create_task(self._trigger_worker(job_id))
        self._dispatch_tasks.add(task)
        task.add_done_callback(functools.partial(self._on_dispatch_done, job_id))

    async def _trigger_worker(self, job_id: str) -> None:
        url = f"{self.settings.worker_base_url.rstrip('/')}/jobs/process"
        headers = {"Content-Type": "application/json"}
        if self.settings.worker_token:
            headers["X-Worker-Token"] = self.settings.worker_token
        timeout = self.settings.worker_trigger_timeout_seconds

        if self._http_client is not None:
            response = await self._http_client.post(url, json={"jobId": job_id}, headers=headers, timeout=timeout)
        else:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.post(url, json={"jobId": job_id}, headers=headers)

        if not response.is_success:
            raise WorkerDispatchError(
                f"Worker trigger returned HTTP {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )
        logger.info("job_dispatched", job_id=job_id, status_code=response.status_code)

    def _on_dispatch_done(self, job_id: str, task: asyncio.Task) -> None:
        self._dispatch_tasks.discard(task)
        if task.cancelled():
            error: BaseException = WorkerDispatchError("Worker trigger was cancelled")
            reason = "cancelled"
        else:
            exc = task.exception()
            if exc is None:
                return
            error = exc
            reason = "http_status" if isinstance(exc, WorkerDispatchError) else "transport"

        record_job_dispatch_failure(reason)
        logger.error(
            "job_dispatch_failed",
            job_id=job_id,
            reason=reason,
            error=str(error),
            error_type=type(error).__name__,
        )
        try:
            self.store.fail(job_id, f"Failed to start background worker: {error}")
        except Exception as e:
            logger.error(
                "job_dispatch_failure_not_recorded",
                job_id=job_id,
                error=str(e),
                error_type=type(e).__name__,
            )

    @property
    def dispatches_in_flight(self) -> int:
        return len(self._dispatch_tasks)

    async def wait_for_dispatches(self) -> None:
        """Wait for in-flight trigger calls (shutdown and tests)."""
        if self._dispatch_tasks:
            await asyncio.gather(*list(self._dispatch_tasks), return_exceptions=True)

    def get_status(self, job_id: str, user_id: Optional[str] = None) -> Dict[str, Any]:
        job = self.store.get(job_id, user_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job_status_payload(job)

    def stop(self, job_id: str, user_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Mark a job failed with the user-stop sentinel.

        Already terminal jobs are returned unchanged.
        """
        job = self.store.get(job_id, user_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.get("status") in TERMINAL_STATUSES:
            logger.info("job_stop_ignored", job_id=job_id, status=job.get("status"))
            return job_status_payload(job)

        stopped = self.store.update_if_status(
            job_id,
            {"status": STATUS_FAILED, "error": STOPPED_BY_USER, "completed_at": utc_now()},
            ACTIVE_STATUSES,
        )
        logger.info("job_stopped", job_id=job_id, applied=stopped)
        return self.get_status(job_id, user_id)
