import logging
from typing import Any, AsyncGenerator

from knowledge_connectors.common.current_datetime import (
    get_current_datetime,
    parse_timestamp,
)
from knowledge_connectors.config import Settings
from knowledge_connectors.connectors.base.config import ConnectorConfig
from knowledge_connectors.connectors.base.connector import BaseConnector
from knowledge_connectors.connectors.common.cancellation import check_cancelled
from knowledge_connectors.connectors.common.schemas import (
    ConnectorCapabilities,
    ConnectorItem,
    ConnectorSearchParams,
    HealthChecks,
    ItemAuthor,
)
from knowledge_connectors.connectors.common.sync_tracker import SyncTracker
from knowledge_connectors.connectors.confluence.cql import (
    build_search_query,
    modified_since_query,
)
from knowledge_connectors.connectors.connector_type import ConnectorType
from knowledge_connectors.connectors.exceptions import ConnectorException

logger = logging.getLogger(__name__)

PAGE_EXPAND = "body.storage,history"
SEARCH_EXPAND = "body.storage,history,space"


class ConfluenceConnector(BaseConnector):
    connector_type = ConnectorType.CONFLUENCE
    item_prefix = "confluence"

    auth_failure_recommendation = (
        "Invalid API credentials. Please check your email and API token."
    )
    connection_failure_recommendation = (
        "Unable to connect to Confluence. Please check your URL and network connectivity."
    )
    permissions_failure_recommendation = (
        "The account cannot list spaces. Grant it read access to the spaces you want to sync."
    )

    def __init__(self, settings: Settings, config: ConnectorConfig):
        super().__init__(settings, config)
        base_url = self.config.configuration.base_url
        if not base_url:
            raise ValueError("Confluence connector requires configuration.base_url")
        self.base_url = base_url.rstrip("/")

    @classmethod
    def get_capabilities(cls) -> ConnectorCapabilities:
        return ConnectorCapabilities(
            supports_full_sync=True,
            supports_incremental_sync=True,
            supports_webhooks=True,
            supported_content_types=["page", "blogpost", "attachment"],
            supports_search=True,
            supports_permissions=True,
            supports_attachments=True,
            supports_comments=True,
            supports_versions=True,
            rate_limit_requests_per_minute=60,
            max_items_per_request=100,
        )

    async def _run_health_checks(
        self, checks: HealthChecks, recommendations: list[str]
    ) -> None:
        authenticated = await self._check_authentication(
            checks, recommendations, "GET", f"{self.base_url}/rest/api/user/current"
        )
        if not authenticated:
            return

        await self._check_permissions(
            checks,
            recommendations,
            ["read:confluence-content"],
            "GET",
            f"{self.base_url}/rest/api/space",
            params={"limit": "1"},
        )

    async def _full_sync(self, tracker: SyncTracker) -> str | None:
        spaces = await self._get_spaces()
        logger.info(f"Syncing {len(spaces)} Confluence spaces for connector {self.id}")

        for space in spaces:
            async for page in self._paginate(
                f"{self.base_url}/rest/api/content",
                {"spaceKey": space["key"], "type": "page", "expand": PAGE_EXPAND},
            ):
                try:
                    tracker.record_new(self._convert_page(page, space))
                except Exception as e:
                    tracker.record_failure(str(page.get("id", "unknown")), page.get("title"), e)

        return tracker.started_at

    async def _incremental_sync(
        self, tracker: SyncTracker, cursor: str | None
    ) -> tuple[str | None, bool]:
        boundary = self._incremental_boundary(cursor)
        logger.info(f"Fetching Confluence changes since {boundary.isoformat()}")

        async for page in self._paginate(
            f"{self.base_url}/rest/api/content/search",
            {"cql": modified_since_query(boundary), "expand": SEARCH_EXPAND},
        ):
            try:
                item = self._convert_page(page)
                if parse_timestamp(item.external_created_at) > boundary:
                    tracker.record_new(item)
                else:
                    tracker.record_updated(item)
            except Exception as e:
                tracker.record_failure(str(page.get("id", "unknown")), page.get("title"), e)

        return tracker.started_at, False

    async def _fetch_item(self, external_id: str) -> ConnectorItem | None:
        page = await self._request(
            "GET",
            f"{self.base_url}/rest/api/content/{external_id}",
            params={"expand": SEARCH_EXPAND},
        )
        return self._convert_page(page)

    async def _search(self, params: ConnectorSearchParams) -> list[ConnectorItem]:
        response = await self._request(
            "GET",
            f"{self.base_url}/rest/api/content/search",
            params={
                "cql": build_search_query(params),
                "expand": SEARCH_EXPAND,
                "limit": str(params.limit),
                "start": str(params.offset),
            },
        )
        return [self._convert_page(page) for page in response.get("results", [])]

    async def _get_spaces(self) -> list[dict[str, Any]]:
        space_keys = self.config.configuration.space_keys
        if not space_keys:
            return [
                space
                async for space in self._paginate(f"{self.base_url}/rest/api/space", {})
            ]

        spaces: list[dict[str, Any]] = []
        for key in space_keys:
            try:
                spaces.append(
                    await self._request("GET", f"{self.base_url}/rest/api/space/{key}")
                )
            except ConnectorException as e:
                if not e.is_not_found:
                    raise
                logger.warning(f"Skipping Confluence space {key}: {e}")

        if not spaces:
            raise ConnectorException(
                f"None of the configured Confluence spaces are reachable: {', '.join(space_keys)}"
            )
        return spaces

    async def _paginate(
        self, url: str, params: dict[str, str]
    ) -> AsyncGenerator[dict[str, Any], None]:
        limit = self._batch_size()
        start = 0

        while True:
            check_cancelled()
            data = await self._request(
                "GET",
                url,
                params={**params, "start": str(start), "limit": str(limit)},
            )
            results = data.get("results", [])
            for result in results:
                yield result

            if not results or not data.get("_links", {}).get("next"):
                break
            start += len(results)

    def _convert_page(
        self, page: dict[str, Any], space: dict[str, Any] | None = None
    ) -> ConnectorItem:
        space = page.get("space") or space or {}
        body = page.get("body") or {}
        content = (body.get("storage") or {}).get("value") or (
            body.get("view") or {}
        ).get("value") or ""

        history = page.get("history") or {}
        created_by = history.get("createdBy") or {}
        updated_at = (history.get("lastUpdated") or {}).get("when")

        author = None
        if created_by:
            picture_path = (created_by.get("profilePicture") or {}).get("path")
            author = ItemAuthor(
                id=created_by.get("accountId") or created_by.get("username") or "unknown",
                name=created_by.get("displayName") or "Unknown",
                email=created_by.get("email"),
                avatar_url=f"{self.base_url}{picture_path}" if picture_path else None,
            )

        external_id = str(page["id"])
        title = page["title"]
        space_key = space.get("key", "")

        return ConnectorItem(
            id=self._item_id(external_id),
            connector_id=self.id,
            external_id=external_id,
            title=title,
            content=content,
            content_type="html",
            excerpt=self.extract_excerpt(content),
            source_url=f"{self.base_url}{page.get('_links', {}).get('webui', '')}",
            source_path=f"{space_key}/{title}",
            source_type=page.get("type", "page"),
            author=author,
            external_created_at=history.get("createdDate"),
            external_updated_at=updated_at,
            synced_at=get_current_datetime(),
            sync_hash=self.generate_sync_hash(
                title=title, content=content, external_updated_at=updated_at
            ),
            metadata={
                "space_key": space_key,
                "space_name": space.get("name"),
                "status": page.get("status"),
            },
            tags=[space_key] if space_key else [],
        )
