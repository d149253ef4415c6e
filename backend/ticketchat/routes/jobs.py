"""
Background job endpoints.

POST /jobs/status   {jobId} -> job status
POST /jobs/stop     {jobId} -> job status after stopping
POST /jobs/process  {jobId} -> 202, worker runs in a background task
"""
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException

from ticketchat.core.config import Settings
from ticketchat.core.logging import get_logger
from ticketchat.models.requests import JobRequest
from ticketchat.models.responses import JobStatusResponse, WorkerAcceptedResponse
from ticketchat.routes.deps import get_app_settings, get_job_manager, get_job_worker, require_user_id
from ticketchat.services.jobs.manager import JobManager
from ticketchat.services.jobs.worker import JobWorker

logger = get_logger(__name__)

router = APIRouter()


@router.post("/status", response_model=JobStatusResponse, response_model_exclude_none=True)
async def job_status(
    body: JobRequest,
    user_id: str = Depends(require_user_id),
    manager: JobManager = Depends(get_job_manager),
):
    """Polled by the client every couple of seconds while a job is active."""
    return manager.get_status(body.job_id, user_id)


@router.post("/stop", response_model=JobStatusResponse, response_model_exclude_none=True)
async def stop_job(
    body: JobRequest,
    user_id: str = Depends(require_user_id),
    manager: JobManager = Depends(get_job_manager),
):
    logger.info("job_stop_requested", job_id=body.job_id)
    return manager.stop(body.job_id, user_id)


@router.post("/process", status_code=202, response_model=WorkerAcceptedResponse)
async def process_job(
    body: JobRequest,
    background_tasks: BackgroundTasks,
    x_worker_token: Optional[str] = Header(None, alias="X-Worker-Token"),
    settings: Settings = Depends(get_app_settings),
    worker: JobWorker = Depends(get_job_worker),
):
    """
    Worker trigger.

    Acknowledges immediately; the job runs after the response is sent.
    """
    if settings.worker_token and x_worker_token != settings.worker_token:
        logger.warning("job_process_unauthorized", job_id=body.job_id)
        raise HTTPException(status_code=401, detail="Invalid worker token")

    background_tasks.add_task(worker.process, body.job_id)
    logger.info("job_process_accepted", job_id=body.job_id)
    return WorkerAcceptedResponse(job_id=body.job_id)
