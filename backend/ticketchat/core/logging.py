"""
Structured logging configuration for the application.

JSON-structured logging with correlation IDs. Every entry carries:
- timestamp (ISO 8601 format)
- level
- service (service name identifier)
- trace_id / request_id (when inside a request)
- user_id, session_id, job_id (when bound for the current task)
"""
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional, Any, Dict

import structlog
from structlog.types import Processor

# Context variables for request/job correlation
trace_id_var: ContextVar[Optional[str]] = ContextVar("trace_id", default=None)
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar("user_id", default=None)
session_id_var: ContextVar[Optional[str]] = ContextVar("session_id", default=None)
job_id_var: ContextVar[Optional[str]] = ContextVar("job_id", default=None)

SERVICE_NAME = "ticketchat_orchestrator"

_CONTEXT_FIELDS = (
    ("trace_id", trace_id_var),
    ("request_id", request_id_var),
    ("user_id", user_id_var),
    ("session_id", session_id_var),
    ("job_id", job_id_var),
)


def add_trace_context(
    logger: structlog.BoundLogger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Add correlation context to log entries.

    Explicit keyword fields on the log call win over context values.
    """
    for key, var in _CONTEXT_FIELDS:
        value = var.get()
        if value and key not in event_dict:
            event_dict[key] = value

    event_dict["service"] = SERVICE_NAME

    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()

    return event_dict


def configure_logging(
    log_level: str = "INFO",
    service_name: Optional[str] = None,
    json_output: bool = True
) -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        service_name: Service name identifier (defaults to SERVICE_NAME)
        json_output: JSON lines when True, pretty console output when False
    """
    global SERVICE_NAME
    if service_name:
        SERVICE_NAME = service_name

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_trace_context,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """Get a structured logger instance (typically ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


def set_trace_id(trace_id: Optional[str]) -> None:
    trace_id_var.set(trace_id)


def get_trace_id() -> Optional[str]:
    return trace_id_var.get()


def set_request_id(request_id: Optional[str]) -> None:
    request_id_var.set(request_id)


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def set_user_id(user_id: Optional[str]) -> None:
    user_id_var.set(user_id)


def get_user_id() -> Optional[str]:
    return user_id_var.get()


def set_session_id(session_id: Optional[str]) -> None:
    session_id_var.set(session_id)


def set_job_id(job_id: Optional[str]) -> None:
    """
    Bind a job ID to the current task.

    Background workers run outside the request middleware, so they bind
    the job they are processing explicitly.
    """
    job_id_var.set(job_id)


def get_job_id() -> Optional[str]:
    return job_id_var.get()


def generate_request_id() -> str:
    """Generate a new unique request ID (UUID4 string)."""
    return str(uuid.uuid4())


def generate_trace_id() -> str:
    """Generate a new unique trace ID (UUID4 string)."""
    return str(uuid.uuid4())
