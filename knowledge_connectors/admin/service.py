import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from knowledge_connectors.common.exceptions import (
    KnownException,
    ResourceNotFoundException,
    ResourceType,
)
from knowledge_connectors.config import Settings
from knowledge_connectors.connectors.base.config import AuthCredentials, ConnectorConfig
from knowledge_connectors.connectors.base.connector import BaseConnector
from knowledge_connectors.connectors.common.cancellation import CancellationToken
from knowledge_connectors.connectors.common.schemas import ConnectorRegistration
from knowledge_connectors.connectors.connector_type import ConnectorType
from knowledge_connectors.connectors.registry import (
    create_connector,
    get_available_connectors,
    get_registration,
    is_supported,
    validate_connector_config,
)
from knowledge_connectors.admin.schemas import (
    ConnectionTestResponse,
    FetchItemRequest,
    FetchItemResponse,
    SearchRequest,
    SearchResponse,
    SyncRequest,
    SyncResponse,
    ValidationResponse,
    WebhookRequest,
    WebhookResponse,
)

logger = logging.getLogger(__name__)

REDACTED = "***"
REFRESHED_TOKEN_FIELDS = ("access_token", "refresh_token", "token_expires_at")


def redact_credentials(config: ConnectorConfig) -> ConnectorConfig:
    credentials = config.auth_credentials
    redacted = AuthCredentials(
        **{
            field: REDACTED
            for field, value in credentials.model_dump(exclude={"custom_headers"}).items()
            if value is not None and field != "token_expires_at"
        },
        token_expires_at=credentials.token_expires_at,
        custom_headers=(
            {name: REDACTED for name in credentials.custom_headers}
            if credentials.custom_headers
            else None
        ),
    )
    return config.model_copy(update={"auth_credentials": redacted})


def refreshed_credentials(
    submitted: AuthCredentials, current: AuthCredentials
) -> AuthCredentials | None:
    """Tokens that changed while the connector ran, or None if no refresh happened."""
    if (
        current.access_token == submitted.access_token
        and current.refresh_token == submitted.refresh_token
    ):
        return None
    return AuthCredentials(
        **{field: getattr(current, field) for field in REFRESHED_TOKEN_FIELDS}
    )


class ConnectorService:
    def __init__(self, settings: Settings):
        self.settings = settings

    def list_connector_types(self) -> list[ConnectorRegistration]:
        return get_available_connectors()

    def get_connector_type(self, connector_type: ConnectorType) -> ConnectorRegistration:
        registration = get_registration(connector_type)
        if not registration:
            raise ResourceNotFoundException(
                ResourceType.CONNECTOR_TYPE, connector_type.value
            )
        return registration

    def validate_config(self, config: ConnectorConfig) -> ValidationResponse:
        missing = validate_connector_config(config)
        return ValidationResponse(
            supported=is_supported(config.type),
            valid=not missing,
            missing_fields=missing,
        )

    @asynccontextmanager
    async def _open_connector(
        self, config: ConnectorConfig
    ) -> AsyncIterator[BaseConnector]:
        try:
            connector = create_connector(config, self.settings)
        except ValueError as e:
            raise KnownException(str(e)) from e

        async with connector:
            yield connector

    def _refreshed(
        self, config: ConnectorConfig, connector: BaseConnector
    ) -> AuthCredentials | None:
        refreshed = refreshed_credentials(config.auth_credentials, connector.credentials)
        if refreshed:
            logger.info(f"Returning refreshed credentials for connector {config.id}")
        return refreshed

    async def test_connection(self, config: ConnectorConfig) -> ConnectionTestResponse:
        async with self._open_connector(config) as connector:
            health = await connector.test_connection()
            return ConnectionTestResponse(
                health=health, refreshed_credentials=self._refreshed(config, connector)
            )

    async def sync(self, request: SyncRequest) -> SyncResponse:
        cancellation = (
            CancellationToken(timeout=request.timeout_seconds)
            if request.timeout_seconds
            else None
        )

        async with self._open_connector(request.config) as connector:
            if request.incremental:
                result = await connector.incremental_sync(
                    cursor=request.cursor, cancellation=cancellation
                )
            else:
                result = await connector.full_sync(cancellation=cancellation)

            updated_config = connector.apply_sync_result(result)
            refreshed = self._refreshed(request.config, connector)

        logger.info(
            f"Sync of connector {request.config.id} finished with status {result.status}"
        )
        return SyncResponse(
            result=result,
            config=redact_credentials(updated_config),
            refreshed_credentials=refreshed,
        )

    async def search(self, request: SearchRequest) -> SearchResponse:
        cancellation = (
            CancellationToken(timeout=request.timeout_seconds)
            if request.timeout_seconds
            else None
        )
        async with self._open_connector(request.config) as connector:
            items = await connector.search(request.params, cancellation=cancellation)
            return SearchResponse(
                items=items,
                refreshed_credentials=self._refreshed(request.config, connector),
            )

    async def fetch_item(self, request: FetchItemRequest) -> FetchItemResponse:
        async with self._open_connector(request.config) as connector:
            item = await connector.fetch_item(request.external_id)
            refreshed = self._refreshed(request.config, connector)

        if not item:
            raise ResourceNotFoundException(ResourceType.ITEM, request.external_id)
        return FetchItemResponse(item=item, refreshed_credentials=refreshed)

    async def handle_webhook(self, request: WebhookRequest) -> WebhookResponse:
        if request.event.connector_id != request.config.id:
            raise KnownException(
                f"Webhook event targets connector '{request.event.connector_id}', "
                f"not '{request.config.id}'"
            )

        async with self._open_connector(request.config) as connector:
            item = await connector.handle_webhook(request.event)
            return WebhookResponse(
                item=item, refreshed_credentials=self._refreshed(request.config, connector)
            )
