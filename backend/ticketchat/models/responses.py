"""
Response models for API endpoints.

These models define the structure of API responses.
"""
from typing import Any, Dict, Optional

from pydantic import BaseModel


class JobStatusResponse(BaseModel):
    """Current state of one background job."""
    job_id: Optional[str] = None
    job_name: Optional[str] = None
    status: str
    progress: int = 0
    progress_message: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class WorkerAcceptedResponse(BaseModel):
    """Acknowledgement returned to the worker trigger."""
    accepted: bool = True
    job_id: str


class ChatTitleResponse(BaseModel):
    title: str


class ConnectionTestResponse(BaseModel):
    """Outcome of a connection check; ``error`` is set when it failed."""
    success: bool
    error: Optional[str] = None
