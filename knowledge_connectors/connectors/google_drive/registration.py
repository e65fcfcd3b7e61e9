from knowledge_connectors.connectors.common.schemas import (
    ConnectorRegistration,
    RequiredField,
)
from knowledge_connectors.connectors.connector_type import ConnectorType
from knowledge_connectors.connectors.google_drive.connector import GoogleDriveConnector

GOOGLE_DRIVE_REGISTRATION = ConnectorRegistration(
    type=ConnectorType.GOOGLE_DRIVE,
    name="Google Drive",
    description="Sync documents from Google Drive and Shared Drives",
    icon="google-drive",
    capabilities=GoogleDriveConnector.get_capabilities(),
    required_fields=[
        RequiredField(
            key="client_id",
            label="OAuth Client ID",
            type="text",
            required=True,
        ),
        RequiredField(
            key="client_secret",
            label="OAuth Client Secret",
            type="password",
            required=True,
        ),
        RequiredField(
            key="folder_id",
            label="Root Folder ID",
            type="text",
            required=False,
            placeholder="Leave empty to sync entire drive",
        ),
    ],
)
