from knowledge_connectors.connectors.common.schemas import (
    ConnectorRegistration,
    RequiredField,
)
from knowledge_connectors.connectors.connector_type import ConnectorType
from knowledge_connectors.connectors.sharepoint.connector import SharePointConnector

SHAREPOINT_REGISTRATION = ConnectorRegistration(
    type=ConnectorType.SHAREPOINT,
    name="SharePoint",
    description="Sync documents and lists from Microsoft SharePoint",
    icon="sharepoint",
    capabilities=SharePointConnector.get_capabilities(),
    required_fields=[
        RequiredField(
            key="site_url",
            label="SharePoint Site URL",
            type="url",
            required=True,
            placeholder="https://company.sharepoint.com/sites/intranet",
        ),
        RequiredField(
            key="client_id",
            label="Client ID",
            type="text",
            required=True,
            help_text="Azure AD App Registration Client ID",
        ),
        RequiredField(
            key="client_secret",
            label="Client Secret",
            type="password",
            required=True,
        ),
        RequiredField(
            key="tenant_id",
            label="Tenant ID",
            type="text",
            required=True,
        ),
    ],
)
