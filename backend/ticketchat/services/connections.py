"""
Connection and service-config lookups (Supabase).

Tables read:
- mcp_services: registered ticket services with endpoint template and
  rate-limit / retry settings
- mcp_service_tokens: app-provided credentials for a service
- connection_tokens: owner-provided credentials (user / team / account)
- connections: per-user connections; also holds the user's default LLM
  connection (``is_chat_default``)

Credential resolution for a ticket service, first hit wins:
1. app token for the service
2. owner token for (ownerType, ownerId) when given
3. the calling user's own token
4. the user's active connection of the service's type
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from supabase import Client

from ticketchat.core.errors import ServiceNotFoundError, SetupRequiredError
from ticketchat.core.logging import get_logger
from ticketchat.core.rate_limit import RateConfig

logger = get_logger(__name__)

LLM_CONNECTION_TYPES = ("openai", "gemini")


@dataclass
class TicketServiceConfig:
    service_id: str
    service_name: str
    service_type: str
    endpoint: str
    api_key: str
    auth_type: str = "basic"
    call_delay_ms: int = 0
    max_retries: int = 0
    retry_delay_sec: float = 0.0

    @property
    def rate_config(self) -> RateConfig:
        return RateConfig.from_delay_ms(f"{self.service_type}:{self.service_id}", self.call_delay_ms)


@dataclass
class LLMConnection:
    provider: str
    api_key: str
    endpoint: Optional[str] = None
    model: Optional[str] = None
    call_delay_ms: int = 0

    @property
    def rate_config(self) -> RateConfig:
        return RateConfig.from_delay_ms(f"llm:{self.provider}", self.call_delay_ms)


def _first(response: Any) -> Optional[Dict[str, Any]]:
    rows = getattr(response, "data", None) or []
    return rows[0] if rows else None


def _api_key_from(row: Dict[str, Any]) -> Optional[str]:
    auth_config = row.get("auth_config") or {}
    if isinstance(auth_config, dict) and auth_config.get("api_key"):
        return auth_config["api_key"]
    return row.get("encrypted_token") or None


class ConnectionStore:
    """Access to services, tokens and connections. Only a connection's active flag is written."""

    def __init__(self, client: Client):
        self.client = client

    def list_ticket_services(self, user_id: str, service_type: str = "freshservice") -> List[Dict[str, Any]]:
        response = self.client.table("mcp_services").select("*").eq("service_type", service_type).execute()
        services = response.data or []
        logger.info("ticket_services_listed", user_id=user_id, service_type=service_type, count=len(services))
        return [
            {
                "mcp_service_id": service["id"],
                "service_name": service.get("service_name"),
                "service_type": service.get("service_type"),
            }
            for service in services
        ]

    def get_service(self, service_id: str) -> Dict[str, Any]:
        response = self.client.table("mcp_services").select("*").eq("id", service_id).limit(1).execute()
        service = _first(response)
        if service is None:
            raise ServiceNotFoundError(f"Unknown ticket service: {service_id}")
        return service

    def _find_token(
        self,
        service: Dict[str, Any],
        user_id: str,
        owner_type: Optional[str],
        owner_id: Optional[str],
    ) -> Optional[Dict[str, Any]]:
        service_id = service["id"]
        app_token = _first(
            self.client.table("mcp_service_tokens").select("*").eq("service_id", service_id).limit(1).execute()
        )
        if app_token and _api_key_from(app_token):
            return {**app_token, "endpoint": None, "source": "app"}

        owners = []
        if owner_type and owner_id:
            owners.append((owner_type, owner_id))
        owners.append(("user", user_id))
        for o_type, o_id in owners:
            token = _first(
                self.client.table("connection_tokens")
                .select("*")
                .eq("service_id", service_id)
                .eq("owner_type", o_type)
                .eq("owner_id", o_id)
                .limit(1)
                .execute()
            )
            if token and _api_key_from(token):
                return {**token, "source": o_type}

        connection = _first(
            self.client.table("connections")
            .select("*")
            .eq("user_id", user_id)
            .eq("connection_type", service.get("service_type"))
            .eq("is_active", True)
            .limit(1)
            .execute()
        )
        if connection and _api_key_from(connection):
            return {**connection, "source": "connection"}
        return None

    def resolve_ticket_service(
        self,
        service_id: str,
        user_id: str,
        owner_type: Optional[str] = None,
        owner_id: Optional[str] = None,
    ) -> TicketServiceConfig:
        """
        Build the full call configuration for a ticket service.

        Raises:
            ServiceNotFoundError: unknown service id
            SetupRequiredError: no credentials or endpoint configured
        """
        service = self.get_service(service_id)
        token = self._find_token(service, user_id, owner_type, owner_id)
        if token is None:
            logger.warning("ticket_service_token_missing", service_id=service_id, user_id=user_id)
            raise SetupRequiredError(
                f"Please configure your {service.get('service_name') or 'ticket service'} API token",
                service_type=service.get("service_type"),
            )

        endpoint = token.get("endpoint") or service.get("endpoint_template")
        if not endpoint:
            raise SetupRequiredError(
                f"No endpoint configured for {service.get('service_name') or service_id}",
                service_type=service.get("service_type"),
            )

        # Connection-level settings override service defaults
        def setting(name: str, default: Any) -> Any:
            value = token.get(name)
            if value is None:
                value = service.get(name)
            return default if value is None else value

        logger.debug("ticket_service_resolved", service_id=service_id, token_source=token.get("source"))
        return TicketServiceConfig(
            service_id=str(service["id"]),
            service_name=service.get("service_name") or "",
            service_type=service.get("service_type") or "",
            endpoint=endpoint,
            api_key=_api_key_from(token),
            auth_type=token.get("auth_type") or "basic",
            call_delay_ms=int(setting("call_delay_ms", 0)),
            max_retries=int(setting("max_retries", 0)),
            retry_delay_sec=float(setting("retry_delay_sec", 0)),
        )

    def get_chat_connection(self, user_id: str) -> Optional[LLMConnection]:
        """The user's default active LLM connection, if any."""
        response = (
            self.client.table("connections")
            .select("*")
            .eq("user_id", user_id)
            .eq("is_chat_default", True)
            .eq("is_active", True)
            .execute()
        )
        for row in response.data or []:
            provider = (row.get("connection_type") or "").lower()
            api_key = _api_key_from(row)
            if provider in LLM_CONNECTION_TYPES and api_key:
                config = row.get("connection_config") or {}
                return LLMConnection(
                    provider=provider,
                    api_key=api_key,
                    endpoint=row.get("endpoint") or None,
                    model=config.get("model") if isinstance(config, dict) else None,
                    call_delay_ms=int(row.get("call_delay_ms") or 0),
                )
        return None

    def get_connection(self, connection_id: str, user_id: str) -> Dict[str, Any]:
        """
        One of the user's connections.

        Raises:
            ServiceNotFoundError: no such connection for this user
        """
        connection = _first(
            self.client.table("connections")
            .select("*")
            .eq("id", connection_id)
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
        if connection is None:
            raise ServiceNotFoundError(f"Connection not found: {connection_id}")
        return connection

    def set_connection_active(self, connection_id: str, is_active: bool) -> None:
        self.client.table("connections").update({
            "is_active": is_active,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }).eq("id", connection_id).execute()
        logger.info("connection_status_updated", connection_id=connection_id, is_active=is_active)

    @staticmethod
    def api_key_for(connection: Dict[str, Any]) -> Optional[str]:
        return _api_key_from(connection)
