from knowledge_connectors.connectors.common.schemas import (
    ConnectorRegistration,
    RequiredField,
)
from knowledge_connectors.connectors.connector_type import ConnectorType
from knowledge_connectors.connectors.notion.connector import NotionConnector

NOTION_REGISTRATION = ConnectorRegistration(
    type=ConnectorType.NOTION,
    name="Notion",
    description="Sync pages and databases from Notion",
    icon="notion",
    capabilities=NotionConnector.get_capabilities(),
    required_fields=[
        RequiredField(
            key="api_key",
            label="Integration Token",
            type="password",
            required=True,
            location="auth_credentials",
            help_text="Create at https://www.notion.so/my-integrations",
        ),
        RequiredField(
            key="root_page_id",
            label="Root Page ID",
            type="text",
            required=False,
            placeholder="Optional - sync specific page and children",
        ),
    ],
)
