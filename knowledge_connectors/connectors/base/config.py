from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from knowledge_connectors.connectors.connector_type import (
    AuthType,
    ConnectorStatus,
    ConnectorType,
    SyncFrequency,
)

# Each inner tuple lists interchangeable fields, at least one of which must be set.
REQUIRED_CREDENTIAL_FIELDS: dict[AuthType, list[tuple[str, ...]]] = {
    AuthType.OAUTH2: [("access_token",)],
    AuthType.BEARER: [("access_token", "api_key")],
    AuthType.API_KEY: [("api_key",)],
    AuthType.BASIC: [("username",), ("password", "api_key")],
    AuthType.CUSTOM: [("custom_headers",)],
}


class AuthCredentials(BaseModel):
    # OAuth2
    access_token: str | None = None
    refresh_token: str | None = None
    token_expires_at: str | None = None
    # API Key
    api_key: str | None = None
    # Basic Auth
    username: str | None = None
    password: str | None = None
    # Custom
    custom_headers: dict[str, str] | None = None

    def missing_fields(self, auth_type: AuthType) -> list[str]:
        missing: list[str] = []
        for alternatives in REQUIRED_CREDENTIAL_FIELDS.get(auth_type, []):
            if not any(getattr(self, field) for field in alternatives):
                missing.append(" or ".join(alternatives))
        return missing


class ConnectorConfiguration(BaseModel):
    """Vendor-specific settings. Unknown keys are kept for custom connectors."""

    model_config = ConfigDict(extra="allow")

    base_url: str | None = None
    site_url: str | None = None
    workspace_id: str | None = None
    site_id: str | None = None
    folder_id: str | None = None
    drive_id: str | None = None
    project_key: str | None = None
    space_keys: list[str] | None = None
    root_page_id: str | None = None
    include_patterns: list[str] | None = None
    exclude_patterns: list[str] | None = None
    content_types: list[str] | None = None
    max_depth: int | None = None
    batch_size: int | None = None
    # OAuth2 configuration
    client_id: str | None = None
    client_secret: str | None = None
    redirect_uri: str | None = None
    tenant_id: str | None = None

    @field_validator("space_keys", mode="before")
    def split_space_keys(cls, v: Any):
        if isinstance(v, str):
            return [key.strip() for key in v.split(",") if key.strip()]
        return v

    @field_validator("batch_size", "max_depth")
    def validate_positive(cls, v: int | None) -> int | None:
        if v is not None and v <= 0:
            raise ValueError("Value must be a positive integer")
        return v


class SyncStatsSummary(BaseModel):
    total_items: int = 0
    synced_items: int = 0
    failed_items: int = 0
    last_duration_ms: int = 0


class ConnectorConfig(BaseModel):
    id: str
    name: str = ""
    type: ConnectorType
    status: ConnectorStatus = ConnectorStatus.PENDING
    organization_id: str
    kb_space_id: str | None = None

    auth_type: AuthType
    auth_credentials: AuthCredentials = Field(default_factory=AuthCredentials)

    configuration: ConnectorConfiguration = Field(
        default_factory=ConnectorConfiguration
    )

    sync_frequency: SyncFrequency = SyncFrequency.MANUAL
    last_sync_at: str | None = None
    next_sync_at: str | None = None
    sync_cursor: str | None = None
    sync_stats: SyncStatsSummary | None = None

    created_at: str | None = None
    updated_at: str | None = None
    created_by: str | None = None
