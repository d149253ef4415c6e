"""
Middleware for trace ID propagation and request context management.

This middleware:
- Extracts trace ID from HTTP headers (X-Trace-ID or X-Request-ID)
- Generates a new trace ID if not present
- Binds the caller identity from X-User-ID for structured logging
- Generates a unique request ID per request
- Echoes trace and request IDs in response headers
"""
import time
from typing import Callable

from fastapi import Request, Response, HTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from .logging import (
    set_trace_id,
    set_request_id,
    set_user_id,
    set_session_id,
    generate_trace_id,
    generate_request_id,
    get_logger,
)
from .metrics import record_http_request

logger = get_logger(__name__)


class TraceIDMiddleware(BaseHTTPMiddleware):
    """
    Handle trace ID propagation and request context.

    Streaming responses are logged as completed when the handler returns the
    response object, not when the last frame is sent.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        trace_id = (
            request.headers.get("X-Trace-ID") or
            request.headers.get("X-Request-ID") or
            generate_trace_id()
        )
        request_id = generate_request_id()
        user_id = request.headers.get("X-User-ID")

        set_trace_id(trace_id)
        set_request_id(request_id)
        if user_id:
            set_user_id(user_id)

        start_time = time.time()
        request.state.start_time = start_time
        logger.info(
            "request_started",
            method=request.method,
            path=request.url.path,
            client_host=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)

            process_time = time.time() - start_time
            record_http_request(
                method=request.method,
                endpoint=request.url.path,
                status_code=response.status_code,
                duration_seconds=process_time,
            )
            logger.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                latency_ms=int(process_time * 1000),
            )

            response.headers["X-Trace-ID"] = trace_id
            response.headers["X-Request-ID"] = request_id
            return response

        except HTTPException:
            # Handled by the FastAPI exception handlers
            raise
        except Exception as e:
            process_time = time.time() - start_time
            record_http_request(
                method=request.method,
                endpoint=request.url.path,
                status_code=500,
                duration_seconds=process_time,
            )
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
                error_type=type(e).__name__,
                latency_ms=int(process_time * 1000),
                exc_info=True,
            )
            raise
        finally:
            set_trace_id(None)
            set_request_id(None)
            set_user_id(None)
            set_session_id(None)
