"""Pydantic models for API requests and responses."""

from .requests import (
    ChatRequest,
    ChatTitleRequest,
    ConnectionTestRequest,
    ImprovePromptRequest,
    JobRequest,
    TicketFilterRequest,
)
from .responses import ChatTitleResponse, ConnectionTestResponse, JobStatusResponse, WorkerAcceptedResponse

__all__ = [
    "ChatRequest",
    "ChatTitleRequest",
    "ConnectionTestRequest",
    "ImprovePromptRequest",
    "JobRequest",
    "TicketFilterRequest",
    "ChatTitleResponse",
    "ConnectionTestResponse",
    "JobStatusResponse",
    "WorkerAcceptedResponse",
]
