"""
Application settings.

All configuration comes from environment variables (optionally loaded from a
``.env`` file at the repository root). Values are parsed once into a pydantic
model and cached; tests construct ``Settings`` directly.

Environment variables:
- SUPABASE_URL / SUPABASE_SERVICE_KEY (or SUPABASE_KEY)
- LLM_PROVIDER: default provider when the user has no chat connection ("openai" | "gemini")
- LLM_API_KEY, LLM_API_BASE, LLM_MODEL: default provider credentials
- GEMINI_API_BASE: base URL for the native Gemini API
- LLM_TIMEOUT_SECONDS: provider request timeout
- MAX_TOOL_ITERATIONS: hard ceiling for the tool dispatch loop (default 10)
- GUARD_MAX_RETRIES: corrective retries for fabricated job ids (default 2)
- SYNC_TICKET_LIMIT: largest limit served synchronously (default 200)
- SYNC_MAX_STATUS_VALUES: most status values served synchronously (default 3)
- DEFAULT_TICKET_LIMIT: limit used when the caller gives none (default 100)
- ASYNC_MAX_TICKETS: safety cap for background jobs (default 5000)
- WORKER_BASE_URL, WORKER_TOKEN, WORKER_TRIGGER_TIMEOUT_SECONDS
- DEFAULT_CALL_DELAY_MS: spacing between calls to one service (default 0)
- TICKET_API_TIMEOUT_SECONDS
- LOG_LEVEL, LOG_JSON
"""
import os
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

env_path = Path(__file__).parent.parent.parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path, override=False)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


class Settings(BaseModel):
    """Runtime configuration for the orchestrator."""

    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None

    llm_provider: str = "openai"
    llm_api_key: Optional[str] = None
    llm_api_base: str = "https://api.openai.com/v1"
    llm_model: str = "gpt-4o-mini"
    gemini_api_base: str = "https://generativelanguage.googleapis.com/v1beta"
    gemini_model: str = "gemini-2.5-flash"
    llm_timeout_seconds: float = 60.0

    max_tool_iterations: int = Field(10, ge=1)
    guard_max_retries: int = Field(2, ge=0)

    sync_ticket_limit: int = 200
    sync_max_status_values: int = 3
    default_ticket_limit: int = 100
    async_max_tickets: int = 5000

    worker_base_url: str = "http://127.0.0.1:8000"
    worker_token: Optional[str] = None
    worker_trigger_timeout_seconds: float = 10.0

    default_call_delay_ms: int = 0
    ticket_api_timeout_seconds: float = 30.0

    log_level: str = "INFO"
    log_json: bool = True

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            supabase_url=os.getenv("SUPABASE_URL"),
            supabase_key=os.getenv("SUPABASE_SERVICE_KEY") or os.getenv("SUPABASE_KEY"),
            llm_provider=os.getenv("LLM_PROVIDER", "openai").lower(),
            llm_api_key=os.getenv("LLM_API_KEY") or None,
            llm_api_base=os.getenv("LLM_API_BASE", "https://api.openai.com/v1"),
            llm_model=os.getenv("LLM_MODEL", "gpt-4o-mini"),
            gemini_api_base=os.getenv(
                "GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta"
            ),
            gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
            llm_timeout_seconds=_env_float("LLM_TIMEOUT_SECONDS", 60.0),
            max_tool_iterations=_env_int("MAX_TOOL_ITERATIONS", 10),
            guard_max_retries=_env_int("GUARD_MAX_RETRIES", 2),
            sync_ticket_limit=_env_int("SYNC_TICKET_LIMIT", 200),
            sync_max_status_values=_env_int("SYNC_MAX_STATUS_VALUES", 3),
            default_ticket_limit=_env_int("DEFAULT_TICKET_LIMIT", 100),
            async_max_tickets=_env_int("ASYNC_MAX_TICKETS", 5000),
            worker_base_url=os.getenv("WORKER_BASE_URL", "http://127.0.0.1:8000"),
            worker_token=os.getenv("WORKER_TOKEN") or None,
            worker_trigger_timeout_seconds=_env_float("WORKER_TRIGGER_TIMEOUT_SECONDS", 10.0),
            default_call_delay_ms=_env_int("DEFAULT_CALL_DELAY_MS", 0),
            ticket_api_timeout_seconds=_env_float("TICKET_API_TIMEOUT_SECONDS", 30.0),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_json=os.getenv("LOG_JSON", "true").lower() == "true",
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor."""
    return Settings.from_env()
