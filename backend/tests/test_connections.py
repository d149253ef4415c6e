"""
Tests for service and credential resolution.
"""
import pytest

from ticketchat.core.errors import ServiceNotFoundError, SetupRequiredError
from ticketchat.services.connections import ConnectionStore

from conftest import FRESHSERVICE_ENDPOINT


def test_lists_freshservice_services(fake_db):
    services = ConnectionStore(fake_db).list_ticket_services("user-1")
    assert services == [{"mcp_service_id": "svc-1", "service_name": "FreshService", "service_type": "freshservice"}]


def test_app_token_is_preferred(fake_db):
    fake_db.tables["connection_tokens"].append({
        "service_id": "svc-1", "owner_type": "user", "owner_id": "user-1", "encrypted_token": "user-key",
    })

    config = ConnectionStore(fake_db).resolve_ticket_service("svc-1", "user-1")

    assert config.api_key == "fs-api-key"
    assert config.endpoint == FRESHSERVICE_ENDPOINT
    assert config.max_retries == 2
    assert config.rate_config.service_key == "freshservice:svc-1"


def test_owner_token_before_user_token(fake_db):
    fake_db.tables["mcp_service_tokens"] = []
    fake_db.tables["connection_tokens"].extend([
        {"service_id": "svc-1", "owner_type": "user", "owner_id": "user-1", "encrypted_token": "user-key"},
        {
            "service_id": "svc-1", "owner_type": "team", "owner_id": "team-9",
            "auth_config": {"api_key": "team-key"}, "endpoint": "https://team.freshservice.com",
            "call_delay_ms": 1000,
        },
    ])
    store = ConnectionStore(fake_db)

    team = store.resolve_ticket_service("svc-1", "user-1", owner_type="team", owner_id="team-9")
    user = store.resolve_ticket_service("svc-1", "user-1")

    assert team.api_key == "team-key"
    assert team.endpoint == "https://team.freshservice.com"
    assert team.rate_config.min_interval_seconds == 1.0
    assert user.api_key == "user-key"
    assert user.endpoint == FRESHSERVICE_ENDPOINT


def test_active_connection_is_last_resort(fake_db):
    fake_db.tables["mcp_service_tokens"] = []
    fake_db.tables["connections"].extend([
        {"user_id": "user-1", "connection_type": "freshservice", "is_active": False, "encrypted_token": "old"},
        {"user_id": "user-1", "connection_type": "freshservice", "is_active": True, "encrypted_token": "current"},
    ])

    config = ConnectionStore(fake_db).resolve_ticket_service("svc-1", "user-1")

    assert config.api_key == "current"


def test_missing_credentials_require_setup(fake_db):
    fake_db.tables["mcp_service_tokens"] = []

    with pytest.raises(SetupRequiredError) as exc_info:
        ConnectionStore(fake_db).resolve_ticket_service("svc-1", "user-1")
    assert exc_info.value.service_type == "freshservice"


def test_unknown_service(fake_db):
    with pytest.raises(ServiceNotFoundError):
        ConnectionStore(fake_db).resolve_ticket_service("svc-404", "user-1")


def test_chat_connection_requires_default_active_llm(fake_db):
    fake_db.tables["connections"].extend([
        {"user_id": "user-1", "connection_type": "freshservice", "is_chat_default": True, "is_active": True,
         "encrypted_token": "fs"},
        {"user_id": "user-1", "connection_type": "openai", "is_chat_default": False, "is_active": True,
         "encrypted_token": "not-default"},
        {"user_id": "user-1", "connection_type": "OpenAI", "is_chat_default": True, "is_active": True,
         "encrypted_token": "sk-user", "endpoint": "https://proxy.test/v1"},
    ])
    store = ConnectionStore(fake_db)

    connection = store.get_chat_connection("user-1")

    assert connection.provider == "openai"
    assert connection.api_key == "sk-user"
    assert connection.endpoint == "https://proxy.test/v1"
    assert store.get_chat_connection("user-2") is None
