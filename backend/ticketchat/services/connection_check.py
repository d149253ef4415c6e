"""
Credential checks for stored connections.

A FreshService connection passes when its ticket form fields can be
fetched; an LLM connection passes when the vendor lists its models with the
stored key. The outcome is written back to ``connections.is_active``, so a
failed check takes the connection out of credential resolution.
"""
from dataclasses import dataclass
from typing import Optional

import httpx

from ticketchat.core.config import Settings
from ticketchat.core.errors import FilterCompilerError, ProviderError, SetupRequiredError
from ticketchat.core.logging import get_logger
from ticketchat.core.metrics import record_connection_check
from ticketchat.core.rate_limit import RateLimiter
from ticketchat.services.ai.providers import ProviderAdapter, ProviderConfig
from ticketchat.services.connections import LLM_CONNECTION_TYPES, ConnectionStore
from ticketchat.services.tickets.client import FreshServiceClient

logger = get_logger(__name__)

CHECK_TIMEOUT_SECONDS = 10.0


@dataclass
class ConnectionCheckResult:
    success: bool
    error: Optional[str] = None


def _normalize_endpoint(endpoint: str) -> str:
    if endpoint.startswith(("http://", "https://")):
        return endpoint
    return f"https://{endpoint}"


class ConnectionChecker:
    def __init__(
        self,
        connections: ConnectionStore,
        adapter: ProviderAdapter,
        rate_limiter: RateLimiter,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.connections = connections
        self.adapter = adapter
        self.rate_limiter = rate_limiter
        self.settings = settings
        self._http_client = http_client

    async def check(self, connection_id: str, user_id: str) -> ConnectionCheckResult:
        """
        Check one of the user's connections and record the outcome.

        Raises:
            ServiceNotFoundError: the connection does not exist for this user
        """
        connection = self.connections.get_connection(connection_id, user_id)
        connection_type = (connection.get("connection_type") or "").lower()
        api_key = ConnectionStore.api_key_for(connection)
        logger.info("connection_check_started", connection_id=connection_id, connection_type=connection_type)

        if not api_key:
            result = ConnectionCheckResult(False, "No API key configured for this connection")
        elif connection_type == "freshservice":
            result = await self._check_freshservice(connection.get("endpoint") or "", api_key)
        elif connection_type in LLM_CONNECTION_TYPES:
            result = await self._check_llm(connection_type, connection.get("endpoint"), api_key)
        else:
            result = ConnectionCheckResult(False, f"Checking {connection_type or 'unknown'} connections is not supported")

        self.connections.set_connection_active(connection_id, result.success)
        record_connection_check(connection_type or "unknown", result.success)
        logger.info(
            "connection_check_completed",
            connection_id=connection_id,
            connection_type=connection_type,
            success=result.success,
            error=result.error,
        )
        return result

    async def _check_freshservice(self, endpoint: str, api_key: str) -> ConnectionCheckResult:
        if not endpoint:
            return ConnectionCheckResult(False, "No endpoint configured for this connection")
        client = FreshServiceClient(
            endpoint=_normalize_endpoint(endpoint),
            api_key=api_key,
            rate_limiter=self.rate_limiter,
            timeout_seconds=CHECK_TIMEOUT_SECONDS,
            http_client=self._http_client,
        )
        try:
            await client.fetch_catalog()
        except FilterCompilerError as e:
            return ConnectionCheckResult(False, str(e))
        return ConnectionCheckResult(True)

    async def _check_llm(self, provider: str, endpoint: Optional[str], api_key: str) -> ConnectionCheckResult:
        config = ProviderConfig.default_for(
            provider,
            api_key,
            self.settings,
            api_base=_normalize_endpoint(endpoint) if endpoint else None,
        ).model_copy(update={"timeout_seconds": CHECK_TIMEOUT_SECONDS})
        try:
            await self.adapter.check_credentials(config)
        except ProviderError as e:
            return ConnectionCheckResult(False, f"HTTP {e.status_code}")
        except SetupRequiredError as e:
            return ConnectionCheckResult(False, str(e))
        except httpx.HTTPError as e:
            logger.warning("connection_check_transport_error", provider=provider, error=str(e))
            return ConnectionCheckResult(False, str(e) or type(e).__name__)
        return ConnectionCheckResult(True)
