"""
Request dependencies.

Services are constructed once at startup and stored on ``app.state``;
these helpers fetch them per request and enforce the caller identity.
"""
from typing import Any, Optional

from fastapi import Header, HTTPException, Request

from ticketchat.core.config import Settings, get_settings
from ticketchat.core.logging import get_logger, set_user_id

logger = get_logger(__name__)


def require_user_id(x_user_id: Optional[str] = Header(None, alias="X-User-ID")) -> str:
    if not x_user_id or not x_user_id.strip():
        logger.warning("request_unauthenticated")
        raise HTTPException(status_code=401, detail="Missing X-User-ID header")
    user_id = x_user_id.strip()
    set_user_id(user_id)
    return user_id


def _state_service(request: Request, name: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        logger.error("service_unavailable", service=name)
        raise HTTPException(status_code=503, detail="Service not configured. Check SUPABASE_URL and SUPABASE_SERVICE_KEY.")
    return service


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def get_orchestrator(request: Request):
    return _state_service(request, "orchestrator")


def get_job_manager(request: Request):
    return _state_service(request, "job_manager")


def get_job_worker(request: Request):
    return _state_service(request, "job_worker")


def get_connections(request: Request):
    return _state_service(request, "connections")


def get_adapter(request: Request):
    return _state_service(request, "adapter")


def get_rate_limiter(request: Request):
    return _state_service(request, "rate_limiter")


def get_http_client(request: Request):
    return getattr(request.app.state, "http_client", None)


def get_title_generator(request: Request):
    return _state_service(request, "title_generator")


def get_connection_checker(request: Request):
    return _state_service(request, "connection_checker")
