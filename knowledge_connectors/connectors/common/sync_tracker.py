import logging
import time

from knowledge_connectors.common.current_datetime import get_current_datetime
from knowledge_connectors.connectors.common.schemas import (
    ConnectorItem,
    SyncError,
    SyncResult,
    SyncStats,
)
from knowledge_connectors.connectors.exceptions import ConnectorException

logger = logging.getLogger(__name__)


class SyncTracker:
    """Accumulates items, statistics and errors for a single sync run.

    Every ``record_*`` call counts one discovered item, so the finished result
    always satisfies ``total_discovered == new + updated + deleted + failed + unchanged``.
    """

    def __init__(self, connector_id: str):
        self.connector_id = connector_id
        self.started_at = get_current_datetime()
        self._start = time.monotonic()
        self.stats = SyncStats()
        self.errors: list[SyncError] = []
        self.items: list[ConnectorItem] = []
        self.deleted_external_ids: list[str] = []

    def record_new(self, item: ConnectorItem) -> None:
        self.stats.total_discovered += 1
        self.stats.new_items += 1
        self.items.append(item)

    def record_updated(self, item: ConnectorItem) -> None:
        self.stats.total_discovered += 1
        self.stats.updated_items += 1
        self.items.append(item)

    def record_unchanged(self, item: ConnectorItem) -> None:
        self.stats.total_discovered += 1
        self.stats.unchanged_items += 1
        self.items.append(item)

    def record_deleted(self, external_id: str) -> None:
        self.stats.total_discovered += 1
        self.stats.deleted_items += 1
        self.deleted_external_ids.append(external_id)

    def record_failure(
        self, external_id: str, title: str | None, error: Exception
    ) -> None:
        logger.warning(
            f"Failed to convert item {external_id} for connector {self.connector_id}: {error}"
        )
        self.stats.total_discovered += 1
        self.stats.failed_items += 1
        self.errors.append(
            SyncError(
                external_id=external_id,
                title=title,
                error=str(error) or type(error).__name__,
                code=_error_code(error),
            )
        )

    def _duration_ms(self) -> int:
        return int((time.monotonic() - self._start) * 1000)

    def build(self, *, cursor: str | None = None, has_more: bool = False) -> SyncResult:
        return SyncResult(
            connector_id=self.connector_id,
            status="success" if not self.errors else "partial",
            started_at=self.started_at,
            completed_at=get_current_datetime(),
            duration_ms=self._duration_ms(),
            stats=self.stats,
            errors=self.errors,
            cursor=cursor,
            has_more=has_more,
            items=self.items,
            deleted_external_ids=self.deleted_external_ids,
        )

    def build_failed(
        self, error: Exception, *, cursor: str | None = None
    ) -> SyncResult:
        """Result for a sync that aborted; ``cursor`` should be the one it started from."""
        synthetic = SyncError(
            external_id="sync",
            error=str(error) or "Sync failed",
            code=_error_code(error),
        )
        return SyncResult(
            connector_id=self.connector_id,
            status="failed",
            started_at=self.started_at,
            completed_at=get_current_datetime(),
            duration_ms=self._duration_ms(),
            stats=self.stats,
            errors=[*self.errors, synthetic],
            cursor=cursor,
            has_more=False,
            items=self.items,
            deleted_external_ids=self.deleted_external_ids,
        )


def _error_code(error: Exception) -> str | None:
    if isinstance(error, ConnectorException):
        return error.code.value
    return None
