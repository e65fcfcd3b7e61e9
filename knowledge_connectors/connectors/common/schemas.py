from typing import Any, Literal

from pydantic import BaseModel, Field

from knowledge_connectors.connectors.connector_type import ConnectorType

ContentType = Literal["html", "markdown", "text", "pdf", "doc"]
ItemSyncStatus = Literal["pending", "synced", "failed", "deleted"]
SyncStatus = Literal["success", "partial", "failed"]
HealthStatus = Literal["healthy", "degraded", "unhealthy"]
CheckStatus = Literal["pass", "fail"]
WebhookEventType = Literal[
    "created", "updated", "deleted", "moved", "permissions_changed"
]


class ItemAuthor(BaseModel):
    id: str
    name: str
    email: str | None = None
    avatar_url: str | None = None


class ItemPermissions(BaseModel):
    public: bool
    allowed_users: list[str] | None = None
    allowed_groups: list[str] | None = None


class ConnectorItem(BaseModel):
    id: str
    connector_id: str
    external_id: str
    kb_item_id: str | None = None

    title: str
    content: str
    content_type: ContentType
    excerpt: str | None = None

    source_url: str | None = None
    source_path: str | None = None
    source_type: str | None = None
    author: ItemAuthor | None = None

    external_created_at: str | None = None
    external_updated_at: str | None = None
    synced_at: str

    sync_hash: str
    sync_status: ItemSyncStatus = "synced"
    sync_error: str | None = None

    metadata: dict[str, Any] = Field(default_factory=dict)
    tags: list[str] | None = None
    permissions: ItemPermissions | None = None


class SyncStats(BaseModel):
    total_discovered: int = 0
    new_items: int = 0
    updated_items: int = 0
    deleted_items: int = 0
    failed_items: int = 0
    unchanged_items: int = 0


class SyncError(BaseModel):
    external_id: str
    title: str | None = None
    error: str
    code: str | None = None


class SyncResult(BaseModel):
    connector_id: str
    status: SyncStatus
    started_at: str
    completed_at: str
    duration_ms: int

    stats: SyncStats
    errors: list[SyncError] = Field(default_factory=list)

    cursor: str | None = None
    has_more: bool = False

    items: list[ConnectorItem] = Field(default_factory=list)
    deleted_external_ids: list[str] = Field(default_factory=list)


class ConnectorCapabilities(BaseModel):
    supports_full_sync: bool
    supports_incremental_sync: bool
    supports_realtime_updates: bool = False
    supports_webhooks: bool = False

    supported_content_types: list[str] = Field(default_factory=list)

    supports_search: bool = False
    supports_permissions: bool = False
    supports_attachments: bool = False
    supports_comments: bool = False
    supports_versions: bool = False

    rate_limit_requests_per_minute: int | None = None
    max_items_per_request: int | None = None
    max_content_size_bytes: int | None = None


class ConnectorSearchParams(BaseModel):
    query: str = ""
    limit: int = Field(default=25, gt=0)
    offset: int = Field(default=0, ge=0)
    content_types: list[str] | None = None
    updated_after: str | None = None
    updated_before: str | None = None
    author_id: str | None = None
    path_prefix: str | None = None


class AuthenticationCheck(BaseModel):
    status: CheckStatus = "fail"
    message: str | None = None


class ConnectivityCheck(BaseModel):
    status: CheckStatus = "fail"
    latency_ms: int | None = None


class PermissionsCheck(BaseModel):
    status: CheckStatus = "fail"
    scopes: list[str] | None = None


class QuotaCheck(BaseModel):
    status: Literal["pass", "warn", "fail"] = "pass"
    remaining: int | None = None
    limit: int | None = None


class HealthChecks(BaseModel):
    authentication: AuthenticationCheck = Field(default_factory=AuthenticationCheck)
    connectivity: ConnectivityCheck = Field(default_factory=ConnectivityCheck)
    permissions: PermissionsCheck = Field(default_factory=PermissionsCheck)
    quota: QuotaCheck = Field(default_factory=QuotaCheck)

    def overall_status(self) -> HealthStatus:
        if self.authentication.status == "fail" or self.connectivity.status == "fail":
            return "unhealthy"
        if self.permissions.status == "fail" or self.quota.status != "pass":
            return "degraded"
        return "healthy"


class ConnectorHealthCheck(BaseModel):
    connector_id: str
    status: HealthStatus
    timestamp: str
    checks: HealthChecks
    recommendations: list[str] = Field(default_factory=list)


class ConnectorWebhookEvent(BaseModel):
    id: str
    connector_id: str
    event_type: WebhookEventType
    external_id: str
    timestamp: str
    payload: dict[str, Any] = Field(default_factory=dict)


class TokenRefreshResult(BaseModel):
    access_token: str
    refresh_token: str | None = None
    expires_at: str


class FieldOption(BaseModel):
    value: str
    label: str


class RequiredField(BaseModel):
    key: str
    label: str
    type: Literal["text", "password", "url", "select"]
    required: bool
    location: Literal["configuration", "auth_credentials"] = "configuration"
    options: list[FieldOption] | None = None
    placeholder: str | None = None
    help_text: str | None = None


class ConnectorRegistration(BaseModel):
    type: ConnectorType
    name: str
    description: str
    icon: str
    capabilities: ConnectorCapabilities
    required_fields: list[RequiredField]
