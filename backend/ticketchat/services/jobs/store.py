"""
Persistence for the ``chat_jobs`` table.

Status moves pending -> processing -> completed | failed and never back.
Every write after creation is a conditional UPDATE filtered on the current
status, so a row that is already terminal (finished, failed, or stopped by
the user) is left untouched. The update methods return False in that case
and callers must stop working on the job.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from supabase import Client

from ticketchat.core.logging import get_logger

logger = get_logger(__name__)

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

ACTIVE_STATUSES = [STATUS_PENDING, STATUS_PROCESSING]
TERMINAL_STATUSES = [STATUS_COMPLETED, STATUS_FAILED]

STOPPED_BY_USER = "Stopped by user"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class JobStore:
    def __init__(self, client: Client):
        self.client = client

    def next_sequence(self, session_id: Optional[str]) -> int:
        """Next per-session job number (1-based)."""
        if not session_id:
            return 1
        response = (
            self.client.table("chat_jobs")
            .select("job_sequence")
            .eq("chat_session_id", session_id)
            .order("job_sequence", desc=True)
            .limit(1)
            .execute()
        )
        rows = response.data or []
        if not rows or rows[0].get("job_sequence") is None:
            return 1
        return int(rows[0]["job_sequence"]) + 1

    def insert(self, row: Dict[str, Any]) -> Dict[str, Any]:
        response = self.client.table("chat_jobs").insert(row).execute()
        if not response.data:
            raise RuntimeError("Job insert returned no row")
        return response.data[0]

    def get(self, job_id: str, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        query = self.client.table("chat_jobs").select("*").eq("id", job_id)
        if user_id:
            query = query.eq("user_id", user_id)
        rows = query.limit(1).execute().data or []
        return rows[0] if rows else None

    def update_if_status(self, job_id: str, fields: Dict[str, Any], statuses: List[str]) -> bool:
        """
        Apply ``fields`` only while the row's status is in ``statuses``.

        Returns:
            True if a row was updated
        """
        response = (
            self.client.table("chat_jobs")
            .update(fields)
            .eq("id", job_id)
            .in_("status", statuses)
            .execute()
        )
        updated = bool(response.data)
        if not updated:
            logger.info("job_update_skipped", job_id=job_id, fields=sorted(fields), statuses=statuses)
        return updated

    def mark_processing(self, job_id: str) -> bool:
        return self.update_if_status(
            job_id,
            {
                "status": STATUS_PROCESSING,
                "started_at": utc_now(),
                "progress": 10,
                "progress_message": "Starting ticket search...",
            },
            [STATUS_PENDING],
        )

    def update_progress(self, job_id: str, progress: int, message: str) -> bool:
        return self.update_if_status(
            job_id,
            {"progress": progress, "progress_message": message},
            [STATUS_PROCESSING],
        )

    def complete(self, job_id: str, result: Dict[str, Any], total_tickets: int) -> bool:
        return self.update_if_status(
            job_id,
            {
                "status": STATUS_COMPLETED,
                "completed_at": utc_now(),
                "result": result,
                "total_tickets": total_tickets,
                "progress": 100,
                "progress_message": "Completed",
            },
            [STATUS_PROCESSING],
        )

    def fail(self, job_id: str, error: str) -> bool:
        return self.update_if_status(
            job_id,
            {"status": STATUS_FAILED, "error": error, "completed_at": utc_now()},
            ACTIVE_STATUSES,
        )

    def update_chat_message(self, job_id: str, content: str) -> None:
        """Replace the placeholder chat message linked to this job, if any."""
        self.client.table("chat_messages").update({"content": content}).eq("job_id", job_id).execute()
