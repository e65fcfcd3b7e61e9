import logging
from typing import Any, AsyncGenerator

from knowledge_connectors.common.current_datetime import (
    get_current_datetime,
    parse_timestamp,
)
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
from knowledge_connectors.connectors.connector_type import ConnectorType
from knowledge_connectors.connectors.exceptions import SyncCancelledException
from knowledge_connectors.connectors.notion.markdown import (
    blocks_to_markdown,
    page_title,
)

logger = logging.getLogger(__name__)

NOTION_API_URL = "https://api.notion.com/v1"
DEFAULT_MAX_DEPTH = 10
PAGE_FILTER = {"property": "object", "value": "page"}


class NotionConnector(BaseConnector):
    """Syncs pages shared with a Notion integration, rendered as Markdown."""

    connector_type = ConnectorType.NOTION
    item_prefix = "notion"

    auth_failure_recommendation = (
        "Invalid integration token. Please check your Notion API key."
    )
    connection_failure_recommendation = (
        "Unable to connect to Notion. Please check your network connectivity."
    )
    permissions_failure_recommendation = (
        "Share the pages you want to sync with the Notion integration."
    )

    @classmethod
    def get_capabilities(cls) -> ConnectorCapabilities:
        return ConnectorCapabilities(
            supports_full_sync=True,
            supports_incremental_sync=True,
            supports_webhooks=False,
            supported_content_types=["page", "database"],
            supports_search=True,
            supports_permissions=True,
            supports_comments=True,
            rate_limit_requests_per_minute=180,
            max_items_per_request=100,
        )

    def get_auth_headers(self) -> dict[str, str]:
        return {
            **super().get_auth_headers(),
            "Notion-Version": self.settings.NOTION_API_VERSION,
        }

    def _api_key_headers(self, api_key: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {api_key}"}

    async def _run_health_checks(
        self, checks: HealthChecks, recommendations: list[str]
    ) -> None:
        authenticated = await self._check_authentication(
            checks, recommendations, "GET", f"{NOTION_API_URL}/users/me"
        )
        if not authenticated:
            return

        await self._check_permissions(
            checks,
            recommendations,
            ["read_content"],
            "POST",
            f"{NOTION_API_URL}/search",
            json={"page_size": 1},
        )

    async def _search_pages(
        self, body: dict[str, Any]
    ) -> AsyncGenerator[dict[str, Any], None]:
        start_cursor: str | None = None
        while True:
            check_cancelled()
            payload = {"page_size": self._batch_size(), "filter": PAGE_FILTER, **body}
            if start_cursor:
                payload["start_cursor"] = start_cursor

            data = await self._request("POST", f"{NOTION_API_URL}/search", json=payload)
            for page in data.get("results", []):
                yield page

            start_cursor = data.get("next_cursor")
            if not data.get("has_more") or not start_cursor:
                break

    async def _get_children(self, block_id: str) -> list[dict[str, Any]]:
        children: list[dict[str, Any]] = []
        start_cursor: str | None = None
        while True:
            params = {"page_size": "100"}
            if start_cursor:
                params["start_cursor"] = start_cursor

            data = await self._request(
                "GET", f"{NOTION_API_URL}/blocks/{block_id}/children", params=params
            )
            children.extend(data.get("results", []))

            start_cursor = data.get("next_cursor")
            if not data.get("has_more") or not start_cursor:
                return children

    async def _get_page_blocks(self, page_id: str) -> list[dict[str, Any]]:
        """Flatten the block tree of a page in document order."""
        max_depth = self.config.configuration.max_depth or DEFAULT_MAX_DEPTH
        blocks: list[dict[str, Any]] = []
        stack = [(block, 1) for block in reversed(await self._get_children(page_id))]

        while stack:
            check_cancelled()
            block, depth = stack.pop()
            if block.get("archived"):
                continue
            blocks.append(block)

            if block.get("has_children") and depth < max_depth:
                children = await self._get_children(block["id"])
                stack.extend((child, depth + 1) for child in reversed(children))

        return blocks

    def _in_scope(self, page: dict[str, Any]) -> bool:
        """With a root page configured, only the root and its direct child pages are synced."""
        root_page_id = self.config.configuration.root_page_id
        if not root_page_id:
            return True
        root = _normalize_id(root_page_id)
        parent_id = (page.get("parent") or {}).get("page_id") or ""
        return _normalize_id(page.get("id", "")) == root or _normalize_id(parent_id) == root

    async def _page_to_item(self, page: dict[str, Any]) -> ConnectorItem:
        content = blocks_to_markdown(await self._get_page_blocks(page["id"]))
        return self._convert_page(page, content)

    async def _full_sync(self, tracker: SyncTracker) -> str | None:
        async for page in self._search_pages({}):
            if page.get("archived") or not self._in_scope(page):
                continue
            try:
                tracker.record_new(await self._page_to_item(page))
            except SyncCancelledException:
                raise
            except Exception as e:
                tracker.record_failure(page.get("id", "unknown"), page_title(page), e)

        return tracker.started_at

    async def _incremental_sync(
        self, tracker: SyncTracker, cursor: str | None
    ) -> tuple[str | None, bool]:
        # Notion reports edit times rounded down to the minute
        boundary = self._incremental_boundary(cursor).replace(second=0, microsecond=0)
        body = {"sort": {"direction": "descending", "timestamp": "last_edited_time"}}

        async for page in self._search_pages(body):
            if parse_timestamp(page.get("last_edited_time")) < boundary:
                break
            if page.get("archived") or not self._in_scope(page):
                continue

            try:
                item = await self._page_to_item(page)
                if parse_timestamp(page.get("created_time")) > boundary:
                    tracker.record_new(item)
                else:
                    tracker.record_updated(item)
            except SyncCancelledException:
                raise
            except Exception as e:
                tracker.record_failure(page.get("id", "unknown"), page_title(page), e)

        return tracker.started_at, False

    async def _fetch_item(self, external_id: str) -> ConnectorItem | None:
        page = await self._request("GET", f"{NOTION_API_URL}/pages/{external_id}")
        return await self._page_to_item(page)

    async def _search(self, params: ConnectorSearchParams) -> list[ConnectorItem]:
        updated_after = parse_timestamp(params.updated_after) if params.updated_after else None
        updated_before = (
            parse_timestamp(params.updated_before) if params.updated_before else None
        )
        wanted = params.offset + params.limit

        matches: list[dict[str, Any]] = []
        async for page in self._search_pages({"query": params.query}):
            if page.get("archived"):
                continue
            edited = parse_timestamp(page.get("last_edited_time"))
            if updated_after and edited < updated_after:
                continue
            if updated_before and edited > updated_before:
                continue
            if params.author_id and (page.get("created_by") or {}).get("id") != params.author_id:
                continue
            if params.path_prefix and not _source_path(page).startswith(params.path_prefix):
                continue
            matches.append(page)
            if len(matches) >= wanted:
                break

        items: list[ConnectorItem] = []
        for page in matches[params.offset : wanted]:
            try:
                items.append(await self._page_to_item(page))
            except SyncCancelledException:
                raise
            except Exception as e:
                logger.warning(f"Skipping Notion page {page.get('id')} in search results: {e}")
        return items

    def _convert_page(self, page: dict[str, Any], content: str) -> ConnectorItem:
        title = page_title(page)
        parent = page.get("parent") or {}
        icon = page.get("icon") or {}
        updated_at = page.get("last_edited_time")

        return ConnectorItem(
            id=self._item_id(page["id"]),
            connector_id=self.id,
            external_id=page["id"],
            title=title,
            content=content,
            content_type="markdown",
            excerpt=self.extract_excerpt(content),
            source_url=page.get("url"),
            source_path=_source_path(page),
            source_type="page",
            author=ItemAuthor(
                id=(page.get("created_by") or {}).get("id", "unknown"),
                name="Notion User",
            ),
            external_created_at=page.get("created_time"),
            external_updated_at=updated_at,
            synced_at=get_current_datetime(),
            sync_hash=self.generate_sync_hash(
                title=title, content=content, external_updated_at=updated_at
            ),
            metadata={
                "icon": icon.get("emoji") or (icon.get("external") or {}).get("url"),
                "parent_type": parent.get("type"),
                "parent_id": parent.get("page_id") or parent.get("database_id"),
            },
        )


def _source_path(page: dict[str, Any]) -> str:
    parent = page.get("parent") or {}
    return parent.get("page_id") or parent.get("database_id") or "workspace"


def _normalize_id(value: str) -> str:
    return value.replace("-", "").lower()
