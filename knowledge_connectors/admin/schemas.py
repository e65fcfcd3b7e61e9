from pydantic import BaseModel, Field

from knowledge_connectors.connectors.base.config import AuthCredentials, ConnectorConfig
from knowledge_connectors.connectors.common.schemas import (
    ConnectorHealthCheck,
    ConnectorItem,
    ConnectorSearchParams,
    ConnectorWebhookEvent,
    SyncResult,
)


class ConnectorRequest(BaseModel):
    config: ConnectorConfig


class SyncRequest(ConnectorRequest):
    incremental: bool = False
    cursor: str | None = None
    timeout_seconds: float | None = Field(default=None, gt=0)


class SearchRequest(ConnectorRequest):
    params: ConnectorSearchParams = Field(default_factory=ConnectorSearchParams)
    timeout_seconds: float | None = Field(default=None, gt=0)


class FetchItemRequest(ConnectorRequest):
    external_id: str = Field(..., min_length=1)


class WebhookRequest(ConnectorRequest):
    event: ConnectorWebhookEvent


class ValidationResponse(BaseModel):
    supported: bool
    valid: bool
    missing_fields: list[str]


class ConnectorResponse(BaseModel):
    refreshed_credentials: AuthCredentials | None = Field(
        default=None,
        description="OAuth2 tokens issued during the request, to be persisted by the caller",
    )


class ConnectionTestResponse(ConnectorResponse):
    health: ConnectorHealthCheck


class SyncResponse(ConnectorResponse):
    result: SyncResult
    config: ConnectorConfig


class SearchResponse(ConnectorResponse):
    items: list[ConnectorItem]


class FetchItemResponse(ConnectorResponse):
    item: ConnectorItem


class WebhookResponse(ConnectorResponse):
    item: ConnectorItem | None
