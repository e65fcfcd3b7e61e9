import asyncio
import logging
from types import TracebackType
from typing import Type

from knowledge_connectors.config import Settings, get_settings
from knowledge_connectors.connectors.base.config import ConnectorConfig
from knowledge_connectors.connectors.base.connector import BaseConnector
from knowledge_connectors.connectors.common.schemas import SyncResult
from knowledge_connectors.connectors.connector_type import ConnectorStatus
from knowledge_connectors.connectors.registry import create_connector

logger = logging.getLogger(__name__)


class ConnectorManager:
    """Holds the live connectors of one organization, keyed by connector id."""

    def __init__(
        self, settings: Settings | None = None, organization_id: str | None = None
    ):
        self.settings = settings or get_settings()
        self.organization_id = organization_id
        self.connectors: dict[str, BaseConnector] = {}
        self.last_sync_results: dict[str, SyncResult] = {}

    async def __aenter__(self):
        return self

    async def __aexit__(
        self, exc_type: Type[Exception], exc: Exception, tb: TracebackType
    ):
        await self.close()

    async def initialize_connector(self, config: ConnectorConfig) -> BaseConnector:
        if self.organization_id and config.organization_id != self.organization_id:
            raise ValueError(
                f"Connector {config.id} belongs to organization {config.organization_id}, "
                f"not {self.organization_id}"
            )

        connector = create_connector(config, self.settings)
        previous = self.connectors.pop(config.id, None)
        if previous:
            await previous.close()

        self.connectors[config.id] = connector
        logger.info(f"Initialized {config.type.value} connector {config.id}")
        return connector

    def get_connector(self, connector_id: str) -> BaseConnector | None:
        return self.connectors.get(connector_id)

    async def remove_connector(self, connector_id: str) -> bool:
        connector = self.connectors.pop(connector_id, None)
        self.last_sync_results.pop(connector_id, None)
        if not connector:
            return False
        await connector.close()
        logger.info(f"Removed connector {connector_id}")
        return True

    def get_all_connectors(self) -> list[BaseConnector]:
        return list(self.connectors.values())

    async def health_check_all(self) -> dict[str, bool]:
        connector_ids = list(self.connectors.keys())
        results = await asyncio.gather(
            *(self.connectors[cid].test_connection() for cid in connector_ids),
            return_exceptions=True,
        )

        health: dict[str, bool] = {}
        for connector_id, result in zip(connector_ids, results):
            if isinstance(result, BaseException):
                logger.error(f"Health check raised for connector {connector_id}: {result}")
                health[connector_id] = False
            else:
                health[connector_id] = result.status == "healthy"
        return health

    async def sync_all(self, incremental: bool = True) -> dict[str, bool]:
        results: dict[str, bool] = {}

        for connector_id, connector in list(self.connectors.items()):
            if connector.status != ConnectorStatus.ACTIVE:
                logger.debug(f"Skipping connector {connector_id} with status {connector.status.value}")
                continue

            try:
                if incremental:
                    result = await connector.incremental_sync()
                else:
                    result = await connector.full_sync()
            except Exception as e:
                logger.exception(f"Sync raised for connector {connector_id}: {e}")
                results[connector_id] = False
                continue

            connector.apply_sync_result(result)
            self.last_sync_results[connector_id] = result
            results[connector_id] = result.status != "failed"

        return results

    async def close(self) -> None:
        await asyncio.gather(
            *(connector.close() for connector in self.connectors.values())
        )
        self.connectors.clear()
