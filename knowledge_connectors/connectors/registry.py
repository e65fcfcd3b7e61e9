import logging
from dataclasses import dataclass
from typing import Type

from knowledge_connectors.config import Settings, get_settings
from knowledge_connectors.connectors.base.config import ConnectorConfig
from knowledge_connectors.connectors.base.connector import BaseConnector
from knowledge_connectors.connectors.common.schemas import ConnectorRegistration
from knowledge_connectors.connectors.confluence.connector import ConfluenceConnector
from knowledge_connectors.connectors.confluence.registration import (
    CONFLUENCE_REGISTRATION,
)
from knowledge_connectors.connectors.connector_type import ConnectorType
from knowledge_connectors.connectors.google_drive.connector import (
    GoogleDriveConnector,
)
from knowledge_connectors.connectors.google_drive.registration import (
    GOOGLE_DRIVE_REGISTRATION,
)
from knowledge_connectors.connectors.notion.connector import NotionConnector
from knowledge_connectors.connectors.notion.registration import NOTION_REGISTRATION
from knowledge_connectors.connectors.sharepoint.connector import SharePointConnector
from knowledge_connectors.connectors.sharepoint.registration import (
    SHAREPOINT_REGISTRATION,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectorRegistryEntry:
    connector_class: Type[BaseConnector]
    registration: ConnectorRegistration


ConnectorRegistryType = dict[ConnectorType, ConnectorRegistryEntry]

CONNECTOR_REGISTRY: ConnectorRegistryType = {
    ConnectorType.CONFLUENCE: ConnectorRegistryEntry(
        connector_class=ConfluenceConnector,
        registration=CONFLUENCE_REGISTRATION,
    ),
    ConnectorType.SHAREPOINT: ConnectorRegistryEntry(
        connector_class=SharePointConnector,
        registration=SHAREPOINT_REGISTRATION,
    ),
    ConnectorType.NOTION: ConnectorRegistryEntry(
        connector_class=NotionConnector,
        registration=NOTION_REGISTRATION,
    ),
    ConnectorType.GOOGLE_DRIVE: ConnectorRegistryEntry(
        connector_class=GoogleDriveConnector,
        registration=GOOGLE_DRIVE_REGISTRATION,
    ),
}


def _get_entry(connector_type: ConnectorType) -> ConnectorRegistryEntry:
    registry_entry = CONNECTOR_REGISTRY.get(connector_type)
    if not registry_entry:
        raise ValueError(f"Unknown connector type: {connector_type}")
    return registry_entry


def get_connector_class(connector_type: ConnectorType) -> Type[BaseConnector]:
    return _get_entry(connector_type).connector_class


def get_registration(connector_type: ConnectorType) -> ConnectorRegistration | None:
    registry_entry = CONNECTOR_REGISTRY.get(connector_type)
    return registry_entry.registration if registry_entry else None


def get_available_connectors() -> list[ConnectorRegistration]:
    return [entry.registration for entry in CONNECTOR_REGISTRY.values()]


def is_supported(connector_type: ConnectorType) -> bool:
    return connector_type in CONNECTOR_REGISTRY


def register_connector(
    connector_type: ConnectorType,
    connector_class: Type[BaseConnector],
    registration: ConnectorRegistration,
) -> None:
    if connector_type in CONNECTOR_REGISTRY:
        logger.warning(f"Replacing registered connector for type {connector_type.value}")
    CONNECTOR_REGISTRY[connector_type] = ConnectorRegistryEntry(
        connector_class=connector_class,
        registration=registration,
    )


def create_connector(
    config: ConnectorConfig, settings: Settings | None = None
) -> BaseConnector:
    connector_class = get_connector_class(config.type)
    return connector_class(settings or get_settings(), config)


def validate_connector_config(config: ConnectorConfig) -> list[str]:
    """Return the keys of required registration fields the config leaves empty."""
    registration = get_registration(config.type)
    if not registration:
        return []

    missing: list[str] = []
    for field in registration.required_fields:
        if not field.required:
            continue
        source = (
            config.auth_credentials
            if field.location == "auth_credentials"
            else config.configuration
        )
        if not getattr(source, field.key, None):
            missing.append(field.key)
    return missing
