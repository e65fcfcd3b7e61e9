from knowledge_connectors.connectors.common.schemas import (
    ConnectorRegistration,
    RequiredField,
)
from knowledge_connectors.connectors.confluence.connector import ConfluenceConnector
from knowledge_connectors.connectors.connector_type import ConnectorType

CONFLUENCE_REGISTRATION = ConnectorRegistration(
    type=ConnectorType.CONFLUENCE,
    name="Confluence",
    description="Sync pages and spaces from Atlassian Confluence",
    icon="confluence",
    capabilities=ConfluenceConnector.get_capabilities(),
    required_fields=[
        RequiredField(
            key="base_url",
            label="Confluence URL",
            type="url",
            required=True,
            placeholder="https://your-domain.atlassian.net/wiki",
            help_text="Your Confluence Cloud or Server URL",
        ),
        RequiredField(
            key="username",
            label="Email",
            type="text",
            required=True,
            location="auth_credentials",
            placeholder="user@company.com",
            help_text="Your Atlassian account email",
        ),
        RequiredField(
            key="api_key",
            label="API Token",
            type="password",
            required=True,
            location="auth_credentials",
            help_text="Generate at https://id.atlassian.com/manage/api-tokens",
        ),
        RequiredField(
            key="space_keys",
            label="Space Keys",
            type="text",
            required=False,
            placeholder="HR,IT,DOCS (comma-separated)",
            help_text="Leave empty to sync all spaces",
        ),
    ],
)
