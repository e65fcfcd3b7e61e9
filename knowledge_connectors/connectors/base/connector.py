import asyncio
import base64
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from types import TracebackType
from typing import Any, ClassVar, Type

from knowledge_connectors.common.current_datetime import (
    get_current_datetime,
    parse_timestamp,
)
from knowledge_connectors.config import Settings
from knowledge_connectors.connectors.base.config import (
    AuthCredentials,
    ConnectorConfig,
    SyncStatsSummary,
)
from knowledge_connectors.connectors.common.cancellation import (
    CancellationToken,
    bind_cancellation,
    check_cancelled,
)
from knowledge_connectors.connectors.common.http_client import (
    ConnectorHttpClient,
    HttpResponse,
)
from knowledge_connectors.connectors.common.rate_limiter import RateLimiter
from knowledge_connectors.connectors.common.schemas import (
    AuthenticationCheck,
    ConnectivityCheck,
    ConnectorCapabilities,
    ConnectorHealthCheck,
    ConnectorItem,
    ConnectorSearchParams,
    ConnectorWebhookEvent,
    HealthChecks,
    PermissionsCheck,
    SyncResult,
    TokenRefreshResult,
)
from knowledge_connectors.connectors.common.sync_hash import generate_sync_hash
from knowledge_connectors.connectors.common.sync_tracker import SyncTracker
from knowledge_connectors.connectors.common.text import extract_excerpt, html_to_text
from knowledge_connectors.connectors.connector_type import (
    AuthType,
    ConnectorStatus,
    ConnectorType,
    SyncFrequency,
)
from knowledge_connectors.connectors.exceptions import ConnectorException, ErrorCode

logger = logging.getLogger(__name__)

SYNC_INTERVALS: dict[SyncFrequency, timedelta] = {
    SyncFrequency.HOURLY: timedelta(hours=1),
    SyncFrequency.DAILY: timedelta(days=1),
    SyncFrequency.WEEKLY: timedelta(weeks=1),
}


@dataclass(frozen=True)
class RetryPolicy:
    """Bounds the automatic retries performed on HTTP 429 responses."""

    max_attempts: int
    max_total_wait: float
    default_retry_after: float

    def retry_after_seconds(self, header: str | None) -> float:
        if not header:
            return self.default_retry_after
        try:
            return max(float(header), 0.0)
        except ValueError:
            pass
        try:
            retry_at = parsedate_to_datetime(header)
        except (TypeError, ValueError):
            return self.default_retry_after
        if retry_at.tzinfo is None:
            retry_at = retry_at.replace(tzinfo=timezone.utc)
        return max((retry_at - datetime.now(timezone.utc)).total_seconds(), 0.0)


class BaseConnector(ABC):
    """Base class for all knowledge source connectors.

    A connector owns a private copy of its ``ConnectorConfig``: token refreshes
    and sync bookkeeping replace that copy and never touch the object the
    caller passed in. Read the current state back through ``config`` and
    ``credentials``.
    """

    connector_type: ClassVar[ConnectorType]
    item_prefix: ClassVar[str]

    auth_failure_recommendation: ClassVar[str] = (
        "Authentication failed. Please check the connector credentials."
    )
    connection_failure_recommendation: ClassVar[str] = (
        "Unable to connect to the service. Please check the URL and network connectivity."
    )
    permissions_failure_recommendation: ClassVar[str] = (
        "The credentials are valid but lack read access to the content."
    )

    def __init__(self, settings: Settings, config: ConnectorConfig):
        self.settings = settings
        self.config = config.model_copy(deep=True)

        capabilities = self.get_capabilities()
        self.rate_limiter = RateLimiter(
            capabilities.rate_limit_requests_per_minute
            or settings.DEFAULT_REQUESTS_PER_MINUTE
        )
        self.retry_policy = RetryPolicy(
            max_attempts=settings.RATE_LIMIT_MAX_RETRIES,
            max_total_wait=settings.RATE_LIMIT_MAX_WAIT_SECONDS,
            default_retry_after=settings.DEFAULT_RETRY_AFTER_SECONDS,
        )
        self.http_client = ConnectorHttpClient(
            user_agent=settings.USER_AGENT,
            timeout=settings.REQUEST_TIMEOUT_SECONDS,
        )
        self._refresh_lock = asyncio.Lock()

    async def __aenter__(self):
        return self

    async def __aexit__(
        self, exc_type: Type[Exception], exc: Exception, tb: TracebackType
    ):
        await self.close()

    async def close(self) -> None:
        await self.http_client.close()

    @property
    def id(self) -> str:
        return self.config.id

    @property
    def type(self) -> ConnectorType:
        return self.config.type

    @property
    def status(self) -> ConnectorStatus:
        return self.config.status

    @property
    def last_sync_time(self) -> str | None:
        return self.config.last_sync_at

    @property
    def credentials(self) -> AuthCredentials:
        return self.config.auth_credentials

    # Abstract methods

    @classmethod
    @abstractmethod
    def get_capabilities(cls) -> ConnectorCapabilities:
        pass

    @abstractmethod
    async def _run_health_checks(
        self, checks: HealthChecks, recommendations: list[str]
    ) -> None:
        """Fill in ``checks``; raising is allowed and is reported as unhealthy."""
        pass

    @abstractmethod
    async def _full_sync(self, tracker: SyncTracker) -> str | None:
        """Enumerate all content into ``tracker`` and return the next cursor."""
        pass

    @abstractmethod
    async def _incremental_sync(
        self, tracker: SyncTracker, cursor: str | None
    ) -> tuple[str | None, bool]:
        """Record changes since ``cursor``; return ``(next_cursor, has_more)``."""
        pass

    @abstractmethod
    async def _fetch_item(self, external_id: str) -> ConnectorItem | None:
        pass

    @abstractmethod
    async def _search(self, params: ConnectorSearchParams) -> list[ConnectorItem]:
        pass

    # Public operations

    async def test_connection(self) -> ConnectorHealthCheck:
        checks = HealthChecks()
        recommendations: list[str] = []

        try:
            await self._run_health_checks(checks, recommendations)
        except Exception as e:
            logger.warning(f"Health check failed for connector {self.id}: {e}")
            if isinstance(e, ConnectorException) and e.code in (
                ErrorCode.AUTH_FAILED,
                ErrorCode.TOKEN_REFRESH_FAILED,
            ):
                checks.authentication = AuthenticationCheck(
                    status="fail", message=str(e)
                )
                recommendations.append(self.auth_failure_recommendation)
            else:
                recommendations.append(self.connection_failure_recommendation)

        status = checks.overall_status()
        if status != "healthy" and not recommendations:
            recommendations.append(self.connection_failure_recommendation)

        return ConnectorHealthCheck(
            connector_id=self.id,
            status=status,
            timestamp=get_current_datetime(),
            checks=checks,
            recommendations=recommendations,
        )

    async def full_sync(
        self, cancellation: CancellationToken | None = None
    ) -> SyncResult:
        tracker = SyncTracker(self.id)
        logger.info(f"Starting full sync for connector {self.id} ({self.type.value})")

        with bind_cancellation(cancellation):
            try:
                cursor = await self._full_sync(tracker)
            except Exception as e:
                logger.exception(f"Full sync failed for connector {self.id}")
                return tracker.build_failed(e, cursor=self.config.sync_cursor)

        result = tracker.build(cursor=cursor)
        logger.info(
            f"Full sync finished for connector {self.id}: {result.status}, "
            f"{result.stats.total_discovered} items discovered"
        )
        return result

    async def incremental_sync(
        self,
        cursor: str | None = None,
        cancellation: CancellationToken | None = None,
    ) -> SyncResult:
        tracker = SyncTracker(self.id)
        start_cursor = cursor or self.config.sync_cursor
        logger.info(
            f"Starting incremental sync for connector {self.id} ({self.type.value})"
        )

        with bind_cancellation(cancellation):
            try:
                next_cursor, has_more = await self._incremental_sync(
                    tracker, start_cursor
                )
            except Exception as e:
                logger.exception(f"Incremental sync failed for connector {self.id}")
                return tracker.build_failed(e, cursor=start_cursor)

        result = tracker.build(cursor=next_cursor, has_more=has_more)
        logger.info(
            f"Incremental sync finished for connector {self.id}: {result.status}, "
            f"{result.stats.total_discovered} changes discovered"
        )
        return result

    async def fetch_item(self, external_id: str) -> ConnectorItem | None:
        try:
            return await self._fetch_item(external_id)
        except ConnectorException as e:
            if e.is_not_found:
                return None
            raise

    async def search(
        self,
        params: ConnectorSearchParams,
        cancellation: CancellationToken | None = None,
    ) -> list[ConnectorItem]:
        with bind_cancellation(cancellation):
            return await self._search(params)

    async def refresh_tokens(self) -> TokenRefreshResult | None:
        return None

    async def handle_webhook(self, event: ConnectorWebhookEvent) -> ConnectorItem | None:
        logger.info(
            f"Webhook received for connector {self.id}: {event.event_type} {event.external_id}"
        )
        if not self.get_capabilities().supports_webhooks:
            return None
        if event.event_type == "deleted":
            return None
        return await self.fetch_item(event.external_id)

    def apply_sync_result(self, result: SyncResult) -> ConnectorConfig:
        """Record the outcome of a sync on this connector's own config copy."""
        now = get_current_datetime()
        updates: dict[str, Any] = {"updated_at": now}

        if result.status == "failed":
            updates["status"] = ConnectorStatus.ERROR
        else:
            updates["status"] = ConnectorStatus.ACTIVE
            updates["last_sync_at"] = result.started_at
            interval = SYNC_INTERVALS.get(self.config.sync_frequency)
            updates["next_sync_at"] = (
                (parse_timestamp(result.completed_at) + interval).isoformat()
                if interval
                else None
            )
            if result.cursor is not None:
                updates["sync_cursor"] = result.cursor

        stats = result.stats
        updates["sync_stats"] = SyncStatsSummary(
            total_items=stats.total_discovered,
            synced_items=stats.new_items + stats.updated_items + stats.unchanged_items,
            failed_items=stats.failed_items,
            last_duration_ms=result.duration_ms,
        )

        self.config = self.config.model_copy(update=updates)
        return self.config

    # Authentication helpers

    def get_auth_headers(self) -> dict[str, str]:
        auth_type = self.config.auth_type
        credentials = self.credentials

        missing = credentials.missing_fields(auth_type)
        if missing:
            raise ConnectorException(
                f"Missing credentials for {auth_type.value} authentication: "
                f"{', '.join(missing)}",
                ErrorCode.AUTH_FAILED,
            )

        if auth_type in (AuthType.BEARER, AuthType.OAUTH2):
            token = credentials.access_token or credentials.api_key
            return {"Authorization": f"Bearer {token}"}
        if auth_type == AuthType.API_KEY:
            return self._api_key_headers(credentials.api_key or "")
        if auth_type == AuthType.BASIC:
            secret = credentials.password or credentials.api_key
            encoded = base64.b64encode(
                f"{credentials.username}:{secret}".encode("utf-8")
            ).decode("ascii")
            return {"Authorization": f"Basic {encoded}"}
        if auth_type == AuthType.CUSTOM:
            return dict(credentials.custom_headers or {})
        return {}

    def _api_key_headers(self, api_key: str) -> dict[str, str]:
        return {"X-Api-Key": api_key}

    def _swap_credentials(self, refreshed: TokenRefreshResult) -> None:
        updates: dict[str, Any] = {
            "access_token": refreshed.access_token,
            "token_expires_at": refreshed.expires_at,
        }
        if refreshed.refresh_token:
            updates["refresh_token"] = refreshed.refresh_token
        credentials = self.credentials.model_copy(update=updates)
        self.config = self.config.model_copy(update={"auth_credentials": credentials})

    async def _refresh_oauth2_token(
        self, token_url: str, form: dict[str, str]
    ) -> TokenRefreshResult:
        response = await self.http_client.send(
            "POST",
            token_url,
            headers={"Accept": "application/json"},
            data=form,
        )
        if not response.ok:
            raise ConnectorException(
                "Token refresh failed", ErrorCode.TOKEN_REFRESH_FAILED, response.status
            )

        payload = response.json()
        access_token = payload.get("access_token")
        if not access_token:
            raise ConnectorException(
                "Token refresh response did not include an access token",
                ErrorCode.TOKEN_REFRESH_FAILED,
                response.status,
            )

        expires_in = int(payload.get("expires_in") or 3600)
        result = TokenRefreshResult(
            access_token=access_token,
            refresh_token=payload.get("refresh_token"),
            expires_at=(
                datetime.now(timezone.utc) + timedelta(seconds=expires_in)
            ).isoformat(),
        )
        self._swap_credentials(result)
        logger.info(f"Refreshed access token for connector {self.id}")
        return result

    async def _refresh_after_unauthorized(self, token_used: str | None) -> bool:
        """Refresh once per stale token; concurrent 401s reuse the first refresh."""
        async with self._refresh_lock:
            current = self.credentials.access_token
            if token_used is not None and current != token_used:
                return True
            return await self.refresh_tokens() is not None

    # Request helpers

    def _default_headers(self) -> dict[str, str]:
        return {"Accept": "application/json"}

    async def _send(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, str] | None = None,
        json: Any | None = None,
        data: Any | None = None,
        headers: dict[str, str] | None = None,
        authenticated: bool = True,
    ) -> HttpResponse:
        check_cancelled()
        request_headers = self._default_headers()
        if authenticated:
            request_headers.update(self.get_auth_headers())
        if headers:
            request_headers.update(headers)

        await self.rate_limiter.wait_for_slot()
        return await self.http_client.send(
            method, url, headers=request_headers, params=params, json=json, data=data
        )

    async def _request_raw(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, str] | None = None,
        json: Any | None = None,
        data: Any | None = None,
        headers: dict[str, str] | None = None,
        authenticated: bool = True,
    ) -> HttpResponse:
        refreshed = False
        rate_limit_retries = 0
        total_wait = 0.0

        while True:
            token_used = self.credentials.access_token
            response = await self._send(
                method,
                url,
                params=params,
                json=json,
                data=data,
                headers=headers,
                authenticated=authenticated,
            )

            if response.ok:
                return response

            if response.status == 401 and authenticated:
                if not refreshed and await self._refresh_after_unauthorized(token_used):
                    refreshed = True
                    continue
                raise ConnectorException(
                    "Authentication failed", ErrorCode.AUTH_FAILED, 401
                )

            if response.status == 429:
                wait_time = self.retry_policy.retry_after_seconds(
                    response.header("Retry-After")
                )
                if (
                    rate_limit_retries >= self.retry_policy.max_attempts
                    or total_wait + wait_time > self.retry_policy.max_total_wait
                ):
                    logger.error(
                        f"Rate limit retries exhausted for {url} after {rate_limit_retries} attempts"
                    )
                    raise ConnectorException(
                        "Rate limit exceeded", ErrorCode.REQUEST_FAILED, 429
                    )
                logger.warning(
                    f"Rate limit exceeded. Waiting for {wait_time} seconds."
                )
                await asyncio.sleep(wait_time)
                rate_limit_retries += 1
                total_wait += wait_time
                continue

            reason = f" {response.reason}" if response.reason else ""
            raise ConnectorException(
                f"Request failed: {response.status}{reason}",
                ErrorCode.REQUEST_FAILED,
                response.status,
            )

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        response = await self._request_raw(method, url, **kwargs)
        return response.json()

    # Health check helpers

    async def _probe(
        self, checks: HealthChecks, method: str, url: str, **kwargs: Any
    ) -> HttpResponse:
        start = time.monotonic()
        response = await self._send(method, url, **kwargs)
        checks.connectivity = ConnectivityCheck(
            status="pass", latency_ms=int((time.monotonic() - start) * 1000)
        )
        return response

    async def _check_authentication(
        self,
        checks: HealthChecks,
        recommendations: list[str],
        method: str,
        url: str,
        **kwargs: Any,
    ) -> bool:
        token_used = self.credentials.access_token
        response = await self._probe(checks, method, url, **kwargs)

        if response.status == 401 and await self._refresh_after_unauthorized(
            token_used
        ):
            response = await self._probe(checks, method, url, **kwargs)

        if response.status == 401:
            checks.authentication = AuthenticationCheck(
                status="fail", message="Authentication failed"
            )
            recommendations.append(self.auth_failure_recommendation)
            return False

        if not response.ok:
            raise ConnectorException(
                f"HTTP {response.status}", ErrorCode.REQUEST_FAILED, response.status
            )

        checks.authentication = AuthenticationCheck(status="pass")
        return True

    async def _check_permissions(
        self,
        checks: HealthChecks,
        recommendations: list[str],
        scopes: list[str],
        method: str,
        url: str,
        **kwargs: Any,
    ) -> bool:
        response = await self._probe(checks, method, url, **kwargs)
        if response.ok:
            checks.permissions = PermissionsCheck(status="pass", scopes=scopes)
            return True

        checks.permissions = PermissionsCheck(status="fail")
        recommendations.append(self.permissions_failure_recommendation)
        return False

    # Item helpers

    def _item_id(self, external_id: str) -> str:
        return f"{self.item_prefix}-{external_id}"

    def _batch_size(self) -> int:
        batch_size = self.config.configuration.batch_size or self.settings.DEFAULT_BATCH_SIZE
        max_items = self.get_capabilities().max_items_per_request
        return min(batch_size, max_items) if max_items else batch_size

    def _incremental_boundary(self, cursor: str | None) -> datetime:
        """Timestamp to sync from: the cursor, else the last sync, else epoch."""
        if cursor:
            try:
                return parse_timestamp(cursor)
            except ValueError:
                logger.warning(
                    f"Ignoring cursor that is not a timestamp for connector {self.id}"
                )
        return parse_timestamp(self.config.last_sync_at)

    def generate_sync_hash(
        self,
        *,
        title: str,
        content: str,
        external_updated_at: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        return generate_sync_hash(
            title=title,
            content=content,
            external_updated_at=external_updated_at,
            metadata=metadata,
        )

    def html_to_text(self, html: str) -> str:
        return html_to_text(html)

    def extract_excerpt(self, content: str, max_length: int | None = None) -> str:
        return extract_excerpt(content, max_length or self.settings.EXCERPT_LENGTH)
