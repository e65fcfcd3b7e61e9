import json
import logging
from typing import Any, AsyncGenerator
from urllib.parse import quote, urlparse

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
    ContentType,
    HealthChecks,
    ItemAuthor,
    TokenRefreshResult,
)
from knowledge_connectors.connectors.common.sync_tracker import SyncTracker
from knowledge_connectors.connectors.connector_type import ConnectorType
from knowledge_connectors.connectors.exceptions import (
    ConnectorException,
    ErrorCode,
    SyncCancelledException,
)

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"

TEXT_MIME_TYPES = {"application/json", "application/xml", "text/csv"}
TEXT_EXTENSIONS = (".txt", ".md", ".markdown", ".csv", ".json", ".html", ".htm", ".xml")


def _is_text_like(name: str, mime_type: str) -> bool:
    return (
        mime_type.startswith("text/")
        or mime_type in TEXT_MIME_TYPES
        or name.lower().endswith(TEXT_EXTENSIONS)
    )


def _content_type(name: str, mime_type: str) -> ContentType:
    lowered = name.lower()
    if "pdf" in mime_type:
        return "pdf"
    if "word" in mime_type or "document" in mime_type:
        return "doc"
    if "html" in mime_type or lowered.endswith((".html", ".htm")):
        return "html"
    if "markdown" in mime_type or lowered.endswith((".md", ".markdown")):
        return "markdown"
    return "text"


class SharePointConnector(BaseConnector):
    connector_type = ConnectorType.SHAREPOINT
    item_prefix = "sharepoint"

    auth_failure_recommendation = (
        "Authentication failed. Please re-authorize the connector."
    )
    connection_failure_recommendation = (
        "Unable to connect to SharePoint. Please check the site URL and network connectivity."
    )
    permissions_failure_recommendation = (
        "Unable to access the SharePoint site. Check that the app has Sites.Read.All permission."
    )

    def __init__(self, settings: Settings, config: ConnectorConfig):
        super().__init__(settings, config)
        site_url = self.config.configuration.site_url or self.config.configuration.base_url
        if not site_url:
            raise ValueError("SharePoint connector requires configuration.site_url")
        self.site_url = site_url
        self._site: dict[str, Any] | None = None

    @classmethod
    def get_capabilities(cls) -> ConnectorCapabilities:
        return ConnectorCapabilities(
            supports_full_sync=True,
            supports_incremental_sync=True,
            supports_webhooks=True,
            supported_content_types=["document", "page", "list_item"],
            supports_search=True,
            supports_permissions=True,
            supports_versions=True,
            rate_limit_requests_per_minute=120,
            max_items_per_request=100,
            max_content_size_bytes=5 * 1024 * 1024,
        )

    async def refresh_tokens(self) -> TokenRefreshResult | None:
        credentials = self.credentials
        configuration = self.config.configuration
        if not credentials.refresh_token:
            return None

        if not configuration.tenant_id or not configuration.client_id:
            raise ConnectorException(
                "SharePoint token refresh requires tenant_id and client_id",
                ErrorCode.TOKEN_REFRESH_FAILED,
            )

        return await self._refresh_oauth2_token(
            f"https://login.microsoftonline.com/{configuration.tenant_id}/oauth2/v2.0/token",
            {
                "client_id": configuration.client_id,
                "client_secret": configuration.client_secret or credentials.password or "",
                "refresh_token": credentials.refresh_token,
                "grant_type": "refresh_token",
                "scope": GRAPH_SCOPE,
            },
        )

    def _site_lookup_url(self) -> str:
        parsed = urlparse(self.site_url)
        site_path = parsed.path.rstrip("/")
        return f"{GRAPH_BASE_URL}/sites/{parsed.hostname}:{site_path}"

    async def _run_health_checks(
        self, checks: HealthChecks, recommendations: list[str]
    ) -> None:
        authenticated = await self._check_authentication(
            checks, recommendations, "GET", f"{GRAPH_BASE_URL}/me"
        )
        if not authenticated:
            return

        await self._check_permissions(
            checks,
            recommendations,
            ["Sites.Read.All", "Files.Read.All"],
            "GET",
            self._site_lookup_url(),
        )

    async def _get_site(self) -> dict[str, Any]:
        if self._site is None:
            self._site = await self._request("GET", self._site_lookup_url())
        return self._site

    async def _get_drives(self, site_id: str) -> list[dict[str, Any]]:
        return [
            drive
            async for drive in self._paginate(f"{GRAPH_BASE_URL}/sites/{site_id}/drives")
        ]

    async def _paginate(self, url: str) -> AsyncGenerator[dict[str, Any], None]:
        next_link: str | None = url
        while next_link:
            check_cancelled()
            data = await self._request("GET", next_link)
            for value in data.get("value", []):
                yield value
            next_link = data.get("@odata.nextLink")

    async def _walk_drive(self, drive_id: str) -> AsyncGenerator[dict[str, Any], None]:
        """Yield every file in a drive, depth first; folders are only traversed."""
        stack = [f"{GRAPH_BASE_URL}/drives/{drive_id}/root/children"]
        while stack:
            url = stack.pop()
            async for entry in self._paginate(url):
                if "folder" in entry:
                    stack.append(
                        f"{GRAPH_BASE_URL}/drives/{drive_id}/items/{entry['id']}/children"
                    )
                else:
                    yield entry

    async def _latest_delta_link(self, drive_id: str) -> str | None:
        data = await self._request(
            "GET",
            f"{GRAPH_BASE_URL}/drives/{drive_id}/root/delta",
            params={"token": "latest"},
        )
        return data.get("@odata.deltaLink")

    async def _full_sync(self, tracker: SyncTracker) -> str | None:
        site = await self._get_site()
        drives = await self._get_drives(site["id"])
        logger.info(f"Syncing {len(drives)} SharePoint drives for connector {self.id}")

        delta_links: dict[str, str] = {}
        for drive in drives:
            # Delta link must predate the walk
            link = await self._latest_delta_link(drive["id"])
            if link:
                delta_links[drive["id"]] = link

            async for entry in self._walk_drive(drive["id"]):
                external_id = f"{drive['id']}:{entry.get('id')}"
                try:
                    tracker.record_new(await self._convert_item(entry, drive["id"], site))
                except SyncCancelledException:
                    raise
                except Exception as e:
                    tracker.record_failure(external_id, entry.get("name"), e)

        return json.dumps(delta_links, sort_keys=True) if delta_links else None

    def _parse_cursor(self, cursor: str | None) -> dict[str, str]:
        if not cursor:
            return {}
        try:
            parsed = json.loads(cursor)
        except json.JSONDecodeError:
            parsed = None
        if not isinstance(parsed, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in parsed.items()
        ):
            logger.warning(
                f"Invalid SharePoint delta cursor for connector {self.id}, starting a fresh delta"
            )
            return {}
        return parsed

    async def _incremental_sync(
        self, tracker: SyncTracker, cursor: str | None
    ) -> tuple[str | None, bool]:
        delta_links = self._parse_cursor(cursor)
        last_sync = parse_timestamp(self.config.last_sync_at)

        site = await self._get_site()
        drives = await self._get_drives(site["id"])
        next_links = dict(delta_links)

        for drive in drives:
            drive_id = drive["id"]
            next_link: str | None = (
                delta_links.get(drive_id) or f"{GRAPH_BASE_URL}/drives/{drive_id}/root/delta"
            )

            while next_link:
                check_cancelled()
                data = await self._request("GET", next_link)

                for entry in data.get("value", []):
                    external_id = f"{drive_id}:{entry.get('id')}"
                    if "deleted" in entry or "@removed" in entry:
                        tracker.record_deleted(external_id)
                        continue
                    if "file" not in entry:
                        continue

                    try:
                        item = await self._convert_item(entry, drive_id, site)
                        if parse_timestamp(entry.get("createdDateTime")) > last_sync:
                            tracker.record_new(item)
                        else:
                            tracker.record_updated(item)
                    except SyncCancelledException:
                        raise
                    except Exception as e:
                        tracker.record_failure(external_id, entry.get("name"), e)

                next_link = data.get("@odata.nextLink")
                if data.get("@odata.deltaLink"):
                    next_links[drive_id] = data["@odata.deltaLink"]

        return json.dumps(next_links, sort_keys=True), False

    async def _fetch_item(self, external_id: str) -> ConnectorItem | None:
        drive_id, separator, item_id = external_id.partition(":")
        if not separator or not drive_id or not item_id:
            return None

        entry = await self._request(
            "GET", f"{GRAPH_BASE_URL}/drives/{drive_id}/items/{item_id}"
        )
        if "folder" in entry:
            return None
        site = await self._get_site()
        return await self._convert_item(entry, drive_id, site)

    async def _search(self, params: ConnectorSearchParams) -> list[ConnectorItem]:
        site = await self._get_site()
        escaped = params.query.replace("'", "''")
        url = f"{GRAPH_BASE_URL}/sites/{site['id']}/drive/root/search(q='{quote(escaped, safe='')}')"

        updated_after = parse_timestamp(params.updated_after) if params.updated_after else None
        updated_before = (
            parse_timestamp(params.updated_before) if params.updated_before else None
        )

        matches: list[dict[str, Any]] = []
        wanted = params.offset + params.limit
        async for entry in self._paginate(url):
            if "folder" in entry:
                continue
            modified = parse_timestamp(entry.get("lastModifiedDateTime"))
            if updated_after and modified < updated_after:
                continue
            if updated_before and modified > updated_before:
                continue
            path = (entry.get("parentReference") or {}).get("path") or "/"
            if params.path_prefix and not path.startswith(params.path_prefix):
                continue
            matches.append(entry)
            if len(matches) >= wanted:
                break

        items: list[ConnectorItem] = []
        for entry in matches[params.offset : wanted]:
            drive_id = (entry.get("parentReference") or {}).get("driveId", "")
            items.append(await self._convert_item(entry, drive_id, site))
        return items

    async def _download_text(self, entry: dict[str, Any]) -> str | None:
        download_url = entry.get("@microsoft.graph.downloadUrl")
        name = entry.get("name", "")
        mime_type = (entry.get("file") or {}).get("mimeType", "")
        max_size = self.get_capabilities().max_content_size_bytes

        if not download_url or not _is_text_like(name, mime_type):
            return None
        if max_size and (entry.get("size") or 0) > max_size:
            logger.info(f"Skipping download of {name}: larger than {max_size} bytes")
            return None

        try:
            # Pre-authenticated URL
            response = await self._request_raw("GET", download_url, authenticated=False)
        except SyncCancelledException:
            raise
        except ConnectorException as e:
            logger.warning(f"Failed to download SharePoint file {name}: {e}")
            return None
        return response.text()

    async def _convert_item(
        self, entry: dict[str, Any], drive_id: str, site: dict[str, Any]
    ) -> ConnectorItem:
        name = entry["name"]
        item_id = entry["id"]
        mime_type = (entry.get("file") or {}).get("mimeType", "")
        parent = entry.get("parentReference") or {}
        drive_id = drive_id or parent.get("driveId", "")
        external_id = f"{drive_id}:{item_id}"

        downloaded = await self._download_text(entry)
        content = downloaded if downloaded is not None else f"Document: {name}"
        updated_at = entry.get("lastModifiedDateTime")

        user = (entry.get("createdBy") or {}).get("user")
        author = (
            ItemAuthor(
                id=user.get("id", "unknown"),
                name=user.get("displayName", "Unknown"),
                email=user.get("email"),
            )
            if user
            else None
        )

        return ConnectorItem(
            id=self._item_id(external_id),
            connector_id=self.id,
            external_id=external_id,
            title=name,
            content=content,
            content_type=_content_type(name, mime_type),
            excerpt=(
                self.extract_excerpt(content)
                if downloaded is not None
                else f"SharePoint document: {name}"
            ),
            source_url=entry.get("webUrl"),
            source_path=parent.get("path") or "/",
            source_type="document",
            author=author,
            external_created_at=entry.get("createdDateTime"),
            external_updated_at=updated_at,
            synced_at=get_current_datetime(),
            sync_hash=self.generate_sync_hash(
                title=name, content=content, external_updated_at=updated_at
            ),
            metadata={
                "site_name": site.get("displayName"),
                "drive_id": drive_id,
                "mime_type": mime_type,
                "size_bytes": entry.get("size"),
                "hash": ((entry.get("file") or {}).get("hashes") or {}).get(
                    "quickXorHash"
                ),
            },
        )
