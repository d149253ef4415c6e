"""
Health check endpoints.
"""
from fastapi import APIRouter, Request

from ticketchat.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


@router.get("")
async def health_check():
    """
    Basic health check endpoint.
    """
    return {
        "status": "ok",
        "message": "API is running"
    }


@router.get("/dependencies")
async def dependencies_health(request: Request):
    """
    Report which collaborators are configured.

    Returns:
        - database: Supabase client available
        - default_llm: server-side LLM key present (users may still bring their own)
    """
    state = request.app.state
    settings = getattr(state, "settings", None)
    database = getattr(state, "connections", None) is not None
    default_llm = bool(settings and settings.llm_api_key)
    return {
        "status": "ok" if database else "degraded",
        "database": database,
        "default_llm": default_llm,
    }
