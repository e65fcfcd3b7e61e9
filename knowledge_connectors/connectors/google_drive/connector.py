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
    ContentType,
    HealthChecks,
    ItemAuthor,
    QuotaCheck,
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

DRIVE_API_URL = "https://www.googleapis.com/drive/v3"
TOKEN_URL = "https://oauth2.googleapis.com/token"

GOOGLE_DOC = "application/vnd.google-apps.document"
GOOGLE_SHEET = "application/vnd.google-apps.spreadsheet"
GOOGLE_SLIDES = "application/vnd.google-apps.presentation"

EXPORTABLE_MIME_TYPES = {
    GOOGLE_DOC: "text/plain",
    GOOGLE_SHEET: "text/csv",
    GOOGLE_SLIDES: "text/plain",
}

SUPPORTED_MIME_TYPES = [
    GOOGLE_DOC,
    GOOGLE_SHEET,
    GOOGLE_SLIDES,
    "application/pdf",
    "text/plain",
    "text/markdown",
    "text/html",
]

FILE_FIELDS = (
    "id,name,mimeType,webViewLink,webContentLink,createdTime,modifiedTime,size,"
    "parents,trashed,owners,lastModifyingUser,md5Checksum"
)

QUOTA_WARN_PERCENT = 90


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def _mime_query(mime_types: list[str]) -> str:
    return "(" + " or ".join(f"mimeType='{_escape(m)}'" for m in mime_types) + ")"


def _content_type(mime_type: str) -> ContentType:
    if "pdf" in mime_type:
        return "pdf"
    if "word" in mime_type or mime_type == GOOGLE_DOC:
        return "doc"
    if "html" in mime_type:
        return "html"
    if mime_type == "text/markdown":
        return "markdown"
    return "text"


class GoogleDriveConnector(BaseConnector):
    connector_type = ConnectorType.GOOGLE_DRIVE
    item_prefix = "gdrive"

    auth_failure_recommendation = (
        "Authentication failed. Please re-authorize the connector."
    )
    connection_failure_recommendation = (
        "Unable to connect to Google Drive. Please verify your OAuth credentials."
    )
    permissions_failure_recommendation = (
        "The account cannot list files. Grant the drive.readonly scope."
    )

    @classmethod
    def get_capabilities(cls) -> ConnectorCapabilities:
        return ConnectorCapabilities(
            supports_full_sync=True,
            supports_incremental_sync=True,
            supports_webhooks=True,
            supported_content_types=["document", "spreadsheet", "presentation", "pdf"],
            supports_search=True,
            supports_permissions=True,
            supports_comments=True,
            supports_versions=True,
            rate_limit_requests_per_minute=100,
            max_items_per_request=100,
        )

    async def refresh_tokens(self) -> TokenRefreshResult | None:
        credentials = self.credentials
        configuration = self.config.configuration
        if not credentials.refresh_token:
            return None

        if not configuration.client_id:
            raise ConnectorException(
                "Google Drive token refresh requires client_id",
                ErrorCode.TOKEN_REFRESH_FAILED,
            )

        return await self._refresh_oauth2_token(
            TOKEN_URL,
            {
                "client_id": configuration.client_id,
                "client_secret": configuration.client_secret or credentials.password or "",
                "refresh_token": credentials.refresh_token,
                "grant_type": "refresh_token",
            },
        )

    async def _run_health_checks(
        self, checks: HealthChecks, recommendations: list[str]
    ) -> None:
        authenticated = await self._check_authentication(
            checks,
            recommendations,
            "GET",
            f"{DRIVE_API_URL}/about",
            params={"fields": "user"},
        )
        if not authenticated:
            return

        await self._check_permissions(
            checks,
            recommendations,
            ["drive.readonly"],
            "GET",
            f"{DRIVE_API_URL}/files",
            params={"pageSize": "1"},
        )

        response = await self._probe(
            checks, "GET", f"{DRIVE_API_URL}/about", params={"fields": "storageQuota"}
        )
        if not response.ok:
            return

        quota = response.json().get("storageQuota") or {}
        usage = int(quota.get("usage") or 0)
        limit = int(quota.get("limit") or 0)
        if limit > 0:
            percent_used = usage / limit * 100
            checks.quota = QuotaCheck(
                status="warn" if percent_used > QUOTA_WARN_PERCENT else "pass",
                remaining=limit - usage,
                limit=limit,
            )
            if checks.quota.status == "warn":
                recommendations.append(
                    f"Google Drive storage is {percent_used:.0f}% full."
                )

    async def _get_start_page_token(self) -> str:
        data = await self._request("GET", f"{DRIVE_API_URL}/changes/startPageToken")
        return data["startPageToken"]

    async def _list_files(
        self, query: str, page_size: int
    ) -> AsyncGenerator[dict[str, Any], None]:
        page_token: str | None = None
        while True:
            check_cancelled()
            params = {
                "q": query,
                "pageSize": str(page_size),
                "fields": f"nextPageToken,files({FILE_FIELDS})",
            }
            if page_token:
                params["pageToken"] = page_token

            data = await self._request("GET", f"{DRIVE_API_URL}/files", params=params)
            for file in data.get("files", []):
                yield file

            page_token = data.get("nextPageToken")
            if not page_token:
                break

    def _sync_query(self) -> str:
        clauses = [_mime_query(SUPPORTED_MIME_TYPES), "trashed=false"]
        folder_id = self.config.configuration.folder_id
        if folder_id:
            clauses.append(f"'{_escape(folder_id)}' in parents")
        return " and ".join(clauses)

    async def _full_sync(self, tracker: SyncTracker) -> str | None:
        start_page_token = await self._get_start_page_token()

        async for file in self._list_files(self._sync_query(), self._batch_size()):
            try:
                tracker.record_new(await self._convert_file(file))
            except SyncCancelledException:
                raise
            except Exception as e:
                tracker.record_failure(file.get("id", "unknown"), file.get("name"), e)

        return start_page_token

    async def _incremental_sync(
        self, tracker: SyncTracker, cursor: str | None
    ) -> tuple[str | None, bool]:
        page_token = cursor or await self._get_start_page_token()
        last_sync = parse_timestamp(self.config.last_sync_at)
        folder_id = self.config.configuration.folder_id

        data = await self._request(
            "GET",
            f"{DRIVE_API_URL}/changes",
            params={
                "pageToken": page_token,
                "pageSize": str(self._batch_size()),
                "fields": (
                    "nextPageToken,newStartPageToken,"
                    f"changes(changeType,fileId,removed,file({FILE_FIELDS}))"
                ),
            },
        )

        for change in data.get("changes", []):
            if change.get("changeType") == "drive":
                continue

            file = change.get("file") or {}
            file_id = change.get("fileId") or file.get("id")
            if change.get("removed") or file.get("trashed"):
                tracker.record_deleted(file_id)
                continue

            if file.get("mimeType") not in SUPPORTED_MIME_TYPES:
                continue
            if folder_id and folder_id not in (file.get("parents") or []):
                continue

            try:
                item = await self._convert_file(file)
                if parse_timestamp(file.get("createdTime")) > last_sync:
                    tracker.record_new(item)
                else:
                    tracker.record_updated(item)
            except SyncCancelledException:
                raise
            except Exception as e:
                tracker.record_failure(file_id or "unknown", file.get("name"), e)

        next_page_token = data.get("nextPageToken")
        if next_page_token:
            return next_page_token, True
        return data.get("newStartPageToken") or page_token, False

    async def _fetch_item(self, external_id: str) -> ConnectorItem | None:
        file = await self._request(
            "GET",
            f"{DRIVE_API_URL}/files/{external_id}",
            params={"fields": FILE_FIELDS},
        )
        if file.get("trashed"):
            return None
        return await self._convert_file(file)

    async def _search(self, params: ConnectorSearchParams) -> list[ConnectorItem]:
        clauses: list[str] = []
        if params.query:
            clauses.append(f"fullText contains '{_escape(params.query)}'")
        clauses.append(_mime_query(params.content_types or SUPPORTED_MIME_TYPES))
        clauses.append("trashed=false")
        if params.updated_after:
            clauses.append(f"modifiedTime > '{_escape(params.updated_after)}'")
        if params.updated_before:
            clauses.append(f"modifiedTime < '{_escape(params.updated_before)}'")
        if params.author_id:
            clauses.append(f"'{_escape(params.author_id)}' in owners")
        if params.path_prefix:
            clauses.append(f"'{_escape(params.path_prefix)}' in parents")

        wanted = params.offset + params.limit
        files: list[dict[str, Any]] = []
        async for file in self._list_files(" and ".join(clauses), min(wanted, 100)):
            files.append(file)
            if len(files) >= wanted:
                break

        items: list[ConnectorItem] = []
        for file in files[params.offset : wanted]:
            try:
                items.append(await self._convert_file(file))
            except SyncCancelledException:
                raise
            except Exception as e:
                logger.warning(f"Skipping Drive file {file.get('id')} in search results: {e}")
        return items

    async def _get_file_content(self, file: dict[str, Any]) -> str:
        mime_type = file.get("mimeType", "")
        export_mime_type = EXPORTABLE_MIME_TYPES.get(mime_type)

        if export_mime_type:
            try:
                response = await self._request_raw(
                    "GET",
                    f"{DRIVE_API_URL}/files/{file['id']}/export",
                    params={"mimeType": export_mime_type},
                )
            except ConnectorException as e:
                if e.code != ErrorCode.REQUEST_FAILED:
                    raise
                raise ConnectorException(
                    "Failed to export file content", ErrorCode.EXPORT_FAILED, e.status_code
                ) from e
            return response.text()

        if mime_type.startswith("text/") or mime_type == "application/json":
            try:
                response = await self._request_raw(
                    "GET",
                    f"{DRIVE_API_URL}/files/{file['id']}",
                    params={"alt": "media"},
                )
            except ConnectorException as e:
                if e.code != ErrorCode.REQUEST_FAILED:
                    raise
                raise ConnectorException(
                    "Failed to download file content",
                    ErrorCode.DOWNLOAD_FAILED,
                    e.status_code,
                ) from e
            return response.text()

        return f"[File: {file.get('name')}]"

    async def _convert_file(self, file: dict[str, Any]) -> ConnectorItem:
        name = file["name"]
        mime_type = file.get("mimeType", "")

        try:
            content = await self._get_file_content(file)
        except ConnectorException as e:
            if e.code not in (ErrorCode.EXPORT_FAILED, ErrorCode.DOWNLOAD_FAILED):
                raise
            logger.warning(f"Using placeholder content for Drive file {name}: {e}")
            content = f"Document: {name}"

        owners = file.get("owners") or []
        owner = owners[0] if owners else None
        author = (
            ItemAuthor(
                id=owner.get("emailAddress") or owner.get("displayName", "unknown"),
                name=owner.get("displayName", "Unknown"),
                email=owner.get("emailAddress"),
                avatar_url=owner.get("photoLink"),
            )
            if owner
            else None
        )

        updated_at = file.get("modifiedTime")
        md5 = file.get("md5Checksum")
        size = file.get("size")

        return ConnectorItem(
            id=self._item_id(file["id"]),
            connector_id=self.id,
            external_id=file["id"],
            title=name,
            content=content,
            content_type=_content_type(mime_type),
            excerpt=self.extract_excerpt(content),
            source_url=file.get("webViewLink") or file.get("webContentLink"),
            source_path=(file.get("parents") or ["/"])[0],
            source_type=mime_type,
            author=author,
            external_created_at=file.get("createdTime"),
            external_updated_at=updated_at,
            synced_at=get_current_datetime(),
            sync_hash=self.generate_sync_hash(
                title=name,
                content=content,
                external_updated_at=updated_at,
                metadata={"md5": md5},
            ),
            metadata={
                "mime_type": mime_type,
                "size_bytes": int(size) if size else None,
                "md5_checksum": md5,
                "last_modified_by": (file.get("lastModifyingUser") or {}).get(
                    "displayName"
                ),
            },
        )
