import pytest
from pytest_mock import MockerFixture

from knowledge_connectors.config import Settings
from knowledge_connectors.connectors.base.config import ConnectorConfig
from knowledge_connectors.connectors.common.cancellation import CancellationToken
from knowledge_connectors.connectors.common.schemas import ConnectorSearchParams
from knowledge_connectors.connectors.confluence.connector import ConfluenceConnector
from knowledge_connectors.connectors.confluence.cql import build_search_query
from knowledge_connectors.connectors.connector_type import AuthType, ConnectorType
from tests.unit.connectors.fakes import FakeTransport, attach_transport, make_config

BASE_URL = "https://acme.atlassian.net/wiki"
HR_SPACE = {"key": "HR", "name": "Human Resources"}


def _page(page_id: str, title: str, created: str, updated: str) -> dict:
    return {
        "id": page_id,
        "type": "page",
        "status": "current",
        "title": title,
        "body": {"storage": {"value": f"<p>{title} policy text</p>"}},
        "history": {
            "createdDate": created,
            "createdBy": {
                "accountId": "acc-1",
                "displayName": "Jane Smith",
                "profilePicture": {"path": "/avatars/jane.png"},
            },
            "lastUpdated": {"when": updated},
        },
        "_links": {"webui": f"/spaces/HR/pages/{page_id}"},
    }


@pytest.fixture
def connector(settings: Settings, confluence_config: ConnectorConfig):
    return ConfluenceConnector(settings, confluence_config)


def test_requires_base_url(settings: Settings) -> None:
    config = make_config(
        ConnectorType.CONFLUENCE,
        auth_type=AuthType.BASIC,
        credentials={"username": "bot", "api_key": "token"},
    )
    with pytest.raises(ValueError, match="base_url"):
        ConfluenceConnector(settings, config)


async def test_full_sync_converts_pages(
    mocker: MockerFixture, settings: Settings, transport: FakeTransport
) -> None:
    config = make_config(
        ConnectorType.CONFLUENCE,
        auth_type=AuthType.BASIC,
        credentials={"username": "bot@acme.test", "api_key": "confluence-token"},
        configuration={"base_url": BASE_URL, "space_keys": ["HR"]},
    )
    connector = ConfluenceConnector(settings, config)
    attach_transport(mocker, connector, transport)
    transport.add("GET", f"{BASE_URL}/rest/api/space/HR", json_body=HR_SPACE)
    transport.add(
        "GET",
        f"{BASE_URL}/rest/api/content",
        params={"spaceKey": "HR", "start": "0"},
        json_body={
            "results": [
                _page("1", "Leave", "2024-01-01T00:00:00Z", "2024-01-02T00:00:00Z"),
                _page("2", "Benefits", "2024-01-01T00:00:00Z", "2024-01-03T00:00:00Z"),
            ],
            "_links": {"next": "/rest/api/content?start=2"},
        },
    )
    transport.add(
        "GET",
        f"{BASE_URL}/rest/api/content",
        params={"spaceKey": "HR", "start": "2"},
        json_body={
            "results": [
                _page("3", "Payroll", "2024-01-01T00:00:00Z", "2024-01-04T00:00:00Z")
            ],
            "_links": {},
        },
    )

    result = await connector.full_sync()

    assert result.status == "success"
    assert result.stats.total_discovered == 3
    assert result.stats.new_items == 3
    assert result.cursor == result.started_at

    item = result.items[0]
    assert item.id == "confluence-1"
    assert item.content_type == "html"
    assert item.source_path == "HR/Leave"
    assert item.source_url == f"{BASE_URL}/spaces/HR/pages/1"
    assert item.tags == ["HR"]
    assert item.metadata["space_name"] == "Human Resources"
    assert item.excerpt == "Leave policy text"
    assert item.author is not None
    assert item.author.name == "Jane Smith"
    assert item.author.avatar_url == f"{BASE_URL}/avatars/jane.png"

    auth = transport.calls[0]["headers"]["Authorization"]
    assert auth.startswith("Basic ")


async def test_full_sync_lists_all_spaces_and_isolates_item_failures(
    mocker: MockerFixture, connector: ConfluenceConnector, transport: FakeTransport
) -> None:
    attach_transport(mocker, connector, transport)
    transport.add(
        "GET",
        f"{BASE_URL}/rest/api/space",
        json_body={"results": [HR_SPACE, {"key": "ENG", "name": "Engineering"}]},
    )
    broken = _page("2", "Broken", "2024-01-01T00:00:00Z", "2024-01-02T00:00:00Z")
    del broken["title"]
    transport.add(
        "GET",
        f"{BASE_URL}/rest/api/content",
        params={"spaceKey": "HR"},
        json_body={
            "results": [
                _page("1", "Leave", "2024-01-01T00:00:00Z", "2024-01-02T00:00:00Z"),
                broken,
            ]
        },
    )
    transport.add(
        "GET",
        f"{BASE_URL}/rest/api/content",
        params={"spaceKey": "ENG"},
        json_body={
            "results": [
                _page("3", "Runbook", "2024-01-01T00:00:00Z", "2024-01-02T00:00:00Z")
            ]
        },
    )

    result = await connector.full_sync()

    assert result.status == "partial"
    assert result.stats.new_items == 2
    assert result.stats.failed_items == 1
    assert result.errors[0].external_id == "2"
    assert [item.tags for item in result.items] == [["HR"], ["ENG"]]


async def test_full_sync_limits_to_configured_spaces(
    mocker: MockerFixture, settings: Settings, transport: FakeTransport
) -> None:
    config = make_config(
        ConnectorType.CONFLUENCE,
        auth_type=AuthType.BASIC,
        credentials={"username": "bot", "api_key": "token"},
        configuration={"base_url": BASE_URL, "space_keys": "HR, GONE"},
    )
    connector = ConfluenceConnector(settings, config)
    attach_transport(mocker, connector, transport)
    transport.add("GET", f"{BASE_URL}/rest/api/space/HR", json_body=HR_SPACE)
    transport.add(
        "GET",
        f"{BASE_URL}/rest/api/content",
        params={"spaceKey": "HR"},
        json_body={"results": []},
    )

    result = await connector.full_sync()

    assert result.status == "success"
    assert transport.calls_to(f"{BASE_URL}/rest/api/space") == []
    assert len(transport.calls_to(f"{BASE_URL}/rest/api/space/GONE")) == 1


async def test_full_sync_fails_when_no_space_is_reachable(
    mocker: MockerFixture, settings: Settings, transport: FakeTransport
) -> None:
    config = make_config(
        ConnectorType.CONFLUENCE,
        auth_type=AuthType.BASIC,
        credentials={"username": "bot", "api_key": "token"},
        configuration={"base_url": BASE_URL, "space_keys": ["GONE"]},
    )
    connector = ConfluenceConnector(settings, config)
    attach_transport(mocker, connector, transport)

    result = await connector.full_sync()

    assert result.status == "failed"


async def test_full_sync_reports_auth_failure_on_configured_space(
    mocker: MockerFixture, settings: Settings, transport: FakeTransport
) -> None:
    config = make_config(
        ConnectorType.CONFLUENCE,
        auth_type=AuthType.BASIC,
        credentials={"username": "bot", "api_key": "wrong"},
        configuration={"base_url": BASE_URL, "space_keys": ["HR", "IT"]},
    )
    connector = ConfluenceConnector(settings, config)
    attach_transport(mocker, connector, transport)
    transport.add("GET", f"{BASE_URL}/rest/api/space/HR", status=401)

    result = await connector.full_sync()

    assert result.status == "failed"
    assert result.errors[-1].code == "AUTH_FAILED"
    assert transport.calls_to(f"{BASE_URL}/rest/api/space/IT") == []


async def test_full_sync_reports_cancellation_before_space_lookup(
    mocker: MockerFixture, settings: Settings, transport: FakeTransport
) -> None:
    config = make_config(
        ConnectorType.CONFLUENCE,
        auth_type=AuthType.BASIC,
        credentials={"username": "bot", "api_key": "token"},
        configuration={"base_url": BASE_URL, "space_keys": ["HR"]},
    )
    connector = ConfluenceConnector(settings, config)
    attach_transport(mocker, connector, transport)
    token = CancellationToken()
    token.cancel()

    result = await connector.full_sync(cancellation=token)

    assert result.status == "failed"
    assert result.errors[-1].code == "SYNC_CANCELLED"
    assert transport.calls == []


async def test_incremental_sync_splits_new_and_updated(
    mocker: MockerFixture, connector: ConfluenceConnector, transport: FakeTransport
) -> None:
    attach_transport(mocker, connector, transport)
    transport.add(
        "GET",
        f"{BASE_URL}/rest/api/content/search",
        json_body={
            "results": [
                {
                    **_page("4", "New", "2024-02-02T00:00:00Z", "2024-02-02T00:00:00Z"),
                    "space": HR_SPACE,
                },
                {
                    **_page("1", "Leave", "2024-01-01T00:00:00Z", "2024-02-03T00:00:00Z"),
                    "space": HR_SPACE,
                },
            ]
        },
    )

    result = await connector.incremental_sync("2024-02-01T00:00:00+00:00")

    assert result.status == "success"
    assert result.stats.new_items == 1
    assert result.stats.updated_items == 1
    assert result.cursor == result.started_at
    assert result.has_more is False

    cql = transport.calls[0]["params"]["cql"]
    assert cql == 'lastModified >= "2024-02-01 00:00" order by lastModified asc'


async def test_search_sends_cql(
    mocker: MockerFixture, connector: ConfluenceConnector, transport: FakeTransport
) -> None:
    attach_transport(mocker, connector, transport)
    transport.add(
        "GET",
        f"{BASE_URL}/rest/api/content/search",
        json_body={
            "results": [
                {
                    **_page("1", "Leave", "2024-01-01T00:00:00Z", "2024-01-02T00:00:00Z"),
                    "space": HR_SPACE,
                }
            ]
        },
    )

    items = await connector.search(
        ConnectorSearchParams(query="leave", limit=5, offset=10, path_prefix="HR/Leave")
    )

    assert [item.external_id for item in items] == ["1"]
    params = transport.calls[0]["params"]
    assert params["cql"] == 'text ~ "leave" and space.key = "HR"'
    assert params["limit"] == "5"
    assert params["start"] == "10"


def test_build_search_query() -> None:
    assert build_search_query(ConnectorSearchParams()) == "type = page"
    query = build_search_query(
        ConnectorSearchParams(
            query='say "hi"',
            content_types=["page", "blogpost"],
            updated_after="2024-01-01T10:30:00Z",
            author_id="acc-1",
        )
    )
    assert query == (
        'text ~ "say \\"hi\\"" and (type = "page" or type = "blogpost") '
        'and lastModified >= "2024-01-01 10:30" and creator = "acc-1"'
    )


async def test_fetch_item_missing_returns_none(
    mocker: MockerFixture, connector: ConfluenceConnector, transport: FakeTransport
) -> None:
    attach_transport(mocker, connector, transport)

    assert await connector.fetch_item("404") is None


async def test_health_check_healthy(
    mocker: MockerFixture, connector: ConfluenceConnector, transport: FakeTransport
) -> None:
    attach_transport(mocker, connector, transport)
    transport.add(
        "GET", f"{BASE_URL}/rest/api/user/current", json_body={"accountId": "acc-1"}
    )
    transport.add("GET", f"{BASE_URL}/rest/api/space", json_body={"results": []})

    health = await connector.test_connection()

    assert health.status == "healthy"
    assert health.checks.permissions.scopes == ["read:confluence-content"]


async def test_health_check_bad_credentials(
    mocker: MockerFixture, connector: ConfluenceConnector, transport: FakeTransport
) -> None:
    attach_transport(mocker, connector, transport)
    transport.add("GET", f"{BASE_URL}/rest/api/user/current", status=401)

    health = await connector.test_connection()

    assert health.status == "unhealthy"
    assert health.checks.authentication.status == "fail"
    assert health.recommendations == [
        "Invalid API credentials. Please check your email and API token."
    ]
