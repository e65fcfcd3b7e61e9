from typing import Any, Generator

import pytest
from fastapi.testclient import TestClient
from pytest_mock import MockerFixture

from knowledge_connectors.config import Settings, get_settings
from knowledge_connectors.connectors.common.http_client import ConnectorHttpClient
from knowledge_connectors.connectors.confluence.connector import ConfluenceConnector
from knowledge_connectors.connectors.connector_type import AuthType, ConnectorType
from knowledge_connectors.connectors.notion.connector import NOTION_API_URL
from knowledge_connectors.connectors.sharepoint.connector import GRAPH_BASE_URL
from knowledge_connectors.main import app
from tests.unit.connectors.fakes import FakeTransport, make_config

CONFLUENCE_URL = "https://acme.atlassian.net/wiki"
SHAREPOINT_SITE_URL = f"{GRAPH_BASE_URL}/sites/acme.sharepoint.com:/sites/intranet"


def _notion_config(**overrides: Any) -> dict[str, Any]:
    return make_config(
        ConnectorType.NOTION,
        auth_type=AuthType.API_KEY,
        credentials={"api_key": "secret_notion"},
        **overrides,
    ).model_dump(mode="json")


def _confluence_config(**configuration: Any) -> dict[str, Any]:
    return make_config(
        ConnectorType.CONFLUENCE,
        auth_type=AuthType.BASIC,
        credentials={"username": "bot@acme.test", "api_key": "token"},
        configuration=configuration,
    ).model_dump(mode="json")


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,  # type: ignore
        CONNECTORS_API_KEY=None,
        DEFAULT_RETRY_AFTER_SECONDS=0,
    )


@pytest.fixture
def test_client(test_settings: Settings) -> Generator[TestClient, None, None]:
    app.dependency_overrides[get_settings] = lambda: test_settings
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def transport(mocker: MockerFixture) -> FakeTransport:
    transport = FakeTransport()

    async def send(self: ConnectorHttpClient, *args: Any, **kwargs: Any):
        return await transport.send(*args, **kwargs)

    mocker.patch.object(ConnectorHttpClient, "send", new=send)
    return transport


def test_healthcheck(test_client: TestClient) -> None:
    response = test_client.get("/healthcheck")

    assert response.status_code == 200
    data = response.json()
    assert data["api"]["status"] == "ok"
    assert data["connectors"]["registered"] == [
        "confluence",
        "sharepoint",
        "notion",
        "google_drive",
    ]


def test_api_key_is_enforced(test_settings: Settings, test_client: TestClient) -> None:
    test_settings.CONNECTORS_API_KEY = "admin-key"

    assert test_client.get("/connectors/types").status_code == 401
    assert (
        test_client.get(
            "/connectors/types", headers={"x-api-key": "wrong"}
        ).status_code
        == 401
    )
    assert (
        test_client.get(
            "/connectors/types", headers={"x-api-key": "admin-key"}
        ).status_code
        == 200
    )
    assert (
        test_client.get(
            "/connectors/types", headers={"Authorization": "Bearer admin-key"}
        ).status_code
        == 200
    )


def test_invalid_bearer_key_is_rejected(
    test_settings: Settings, test_client: TestClient
) -> None:
    test_settings.CONNECTORS_API_KEY = "admin-key"

    response = test_client.get(
        "/connectors/types", headers={"Authorization": "Bearer wrong"}
    )

    assert response.status_code == 401
    assert response.json()["detail"] == "API key is invalid"
    assert response.headers["www-authenticate"] == "Bearer"


def test_list_connector_types(test_client: TestClient) -> None:
    response = test_client.get("/connectors/types")

    assert response.status_code == 200
    types = {entry["type"]: entry for entry in response.json()}
    assert set(types) == {"confluence", "sharepoint", "notion", "google_drive"}
    assert types["confluence"]["capabilities"]["supports_webhooks"] is True


def test_get_connector_type(test_client: TestClient) -> None:
    response = test_client.get("/connectors/types/notion")
    assert response.status_code == 200
    assert response.json()["name"] == "Notion"

    missing = test_client.get("/connectors/types/jira")
    assert missing.status_code == 404
    assert missing.json()["detail"] == "Connector type 'jira' not found"

    assert test_client.get("/connectors/types/unknown").status_code == 422


def test_validate_connector(test_client: TestClient) -> None:
    config = make_config(
        ConnectorType.SHAREPOINT,
        auth_type=AuthType.OAUTH2,
        credentials={"access_token": "token"},
        configuration={"site_url": "https://acme.sharepoint.com/sites/intranet"},
    ).model_dump(mode="json")

    response = test_client.post("/connectors/validate", json={"config": config})

    assert response.status_code == 200
    assert response.json() == {
        "supported": True,
        "valid": False,
        "missing_fields": ["client_id", "client_secret", "tenant_id"],
    }


def test_validate_rejects_unknown_type(test_client: TestClient) -> None:
    config = _notion_config()
    config["type"] = "dropbox"

    response = test_client.post("/connectors/validate", json={"config": config})

    assert response.status_code == 422
    error = response.json()["errors"][0]
    assert error["loc"] == "body.config.type"
    assert error["msg"].startswith("Invalid 'type' field. Must be one of: confluence")


def test_test_connection(test_client: TestClient, transport: FakeTransport) -> None:
    transport.add(
        "GET", f"{CONFLUENCE_URL}/rest/api/user/current", json_body={"accountId": "a"}
    )
    transport.add("GET", f"{CONFLUENCE_URL}/rest/api/space", json_body={"results": []})

    response = test_client.post(
        "/connectors/test", json={"config": _confluence_config(base_url=CONFLUENCE_URL)}
    )

    assert response.status_code == 200
    data = response.json()
    assert data["health"]["status"] == "healthy"
    assert data["health"]["connector_id"] == "confluence-1"
    assert data["refreshed_credentials"] is None


def test_test_connection_requires_base_url(test_client: TestClient) -> None:
    response = test_client.post(
        "/connectors/test", json={"config": _confluence_config()}
    )

    assert response.status_code == 400
    assert "base_url" in response.json()["detail"]


def test_sync_returns_redacted_config(
    test_client: TestClient, transport: FakeTransport
) -> None:
    transport.add(
        "POST",
        f"{NOTION_API_URL}/search",
        json_body={"results": [], "has_more": False},
    )

    response = test_client.post(
        "/connectors/sync", json={"config": _notion_config(), "incremental": False}
    )

    assert response.status_code == 200
    data = response.json()
    assert data["result"]["status"] == "success"
    assert data["config"]["auth_credentials"]["api_key"] == "***"
    assert data["config"]["last_sync_at"] == data["result"]["started_at"]
    assert data["config"]["sync_cursor"] == data["result"]["started_at"]
    assert data["refreshed_credentials"] is None


def test_sync_returns_refreshed_tokens(
    test_client: TestClient, transport: FakeTransport
) -> None:
    config = make_config(
        ConnectorType.SHAREPOINT,
        auth_type=AuthType.OAUTH2,
        credentials={"access_token": "expired", "refresh_token": "sp-refresh"},
        configuration={
            "site_url": "https://acme.sharepoint.com/sites/intranet",
            "client_id": "client-id",
            "client_secret": "client-secret",
            "tenant_id": "tenant-id",
        },
    ).model_dump(mode="json")
    transport.add("GET", SHAREPOINT_SITE_URL, status=401)
    transport.add("GET", SHAREPOINT_SITE_URL, json_body={"id": "site-1"})
    transport.add(
        "POST",
        "https://login.microsoftonline.com/tenant-id/oauth2/v2.0/token",
        json_body={
            "access_token": "fresh",
            "refresh_token": "rotated",
            "expires_in": 3600,
        },
    )
    transport.add(
        "GET", f"{GRAPH_BASE_URL}/sites/site-1/drives", json_body={"value": []}
    )

    response = test_client.post("/connectors/sync", json={"config": config})

    assert response.status_code == 200
    data = response.json()
    assert data["result"]["status"] == "success"
    assert data["config"]["auth_credentials"]["refresh_token"] == "***"
    refreshed = data["refreshed_credentials"]
    assert refreshed["access_token"] == "fresh"
    assert refreshed["refresh_token"] == "rotated"
    assert refreshed["token_expires_at"] is not None


def test_search(test_client: TestClient, mocker: MockerFixture) -> None:
    search = mocker.patch.object(ConfluenceConnector, "search", return_value=[])

    response = test_client.post(
        "/connectors/search",
        json={
            "config": _confluence_config(base_url=CONFLUENCE_URL),
            "params": {"query": "leave", "limit": 5},
        },
    )

    assert response.status_code == 200
    assert response.json() == {"items": [], "refreshed_credentials": None}
    params = search.call_args.args[0]
    assert params.query == "leave"
    assert params.limit == 5


def test_fetch_missing_item(test_client: TestClient, transport: FakeTransport) -> None:
    response = test_client.post(
        "/connectors/items", json={"config": _notion_config(), "external_id": "gone"}
    )

    assert response.status_code == 404
    assert response.json()["detail"] == "Item 'gone' not found"


def test_fetch_item_auth_failure(
    test_client: TestClient, transport: FakeTransport
) -> None:
    transport.add("GET", f"{NOTION_API_URL}/pages/page-1", status=401)

    response = test_client.post(
        "/connectors/items", json={"config": _notion_config(), "external_id": "page-1"}
    )

    assert response.status_code == 401
    assert response.json()["code"] == "AUTH_FAILED"
    assert response.json()["upstream_status"] == 401


def test_webhook_for_other_connector_is_rejected(test_client: TestClient) -> None:
    response = test_client.post(
        "/connectors/webhook",
        json={
            "config": _notion_config(),
            "event": {
                "id": "evt-1",
                "connector_id": "someone-else",
                "event_type": "updated",
                "external_id": "page-1",
                "timestamp": "2024-01-01T00:00:00Z",
            },
        },
    )

    assert response.status_code == 400
