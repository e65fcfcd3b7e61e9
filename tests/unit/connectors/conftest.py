import pytest

from knowledge_connectors.config import Settings
from knowledge_connectors.connectors.base.config import ConnectorConfig
from knowledge_connectors.connectors.connector_type import AuthType, ConnectorType
from tests.unit.connectors.fakes import FakeTransport, make_config


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,  # type: ignore
        DEFAULT_RETRY_AFTER_SECONDS=0,
        RATE_LIMIT_MAX_RETRIES=2,
    )


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def confluence_config() -> ConnectorConfig:
    return make_config(
        ConnectorType.CONFLUENCE,
        auth_type=AuthType.BASIC,
        credentials={"username": "bot@acme.test", "api_key": "confluence-token"},
        configuration={"base_url": "https://acme.atlassian.net/wiki"},
    )


@pytest.fixture
def sharepoint_config() -> ConnectorConfig:
    return make_config(
        ConnectorType.SHAREPOINT,
        auth_type=AuthType.OAUTH2,
        credentials={"access_token": "sp-token", "refresh_token": "sp-refresh"},
        configuration={
            "site_url": "https://acme.sharepoint.com/sites/intranet",
            "client_id": "client-id",
            "client_secret": "client-secret",
            "tenant_id": "tenant-id",
        },
    )


@pytest.fixture
def notion_config() -> ConnectorConfig:
    return make_config(
        ConnectorType.NOTION,
        auth_type=AuthType.API_KEY,
        credentials={"api_key": "secret_notion"},
    )


@pytest.fixture
def google_drive_config() -> ConnectorConfig:
    return make_config(
        ConnectorType.GOOGLE_DRIVE,
        auth_type=AuthType.OAUTH2,
        credentials={"access_token": "drive-token", "refresh_token": "drive-refresh"},
        configuration={"client_id": "client-id", "client_secret": "client-secret"},
    )
