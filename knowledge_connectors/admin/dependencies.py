from fastapi import Depends

from knowledge_connectors.admin.service import ConnectorService
from knowledge_connectors.config import Settings, get_settings


def get_connector_service(
    settings: Settings = Depends(get_settings),
) -> ConnectorService:
    return ConnectorService(settings=settings)
