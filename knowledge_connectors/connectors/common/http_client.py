import asyncio
import json
import logging
from dataclasses import dataclass, field
from types import TracebackType
from typing import Any, Type

from aiohttp import ClientError, ClientSession, ClientTimeout

from knowledge_connectors.connectors.exceptions import ConnectorException, ErrorCode

logger = logging.getLogger(__name__)


@dataclass
class HttpResponse:
    status: int
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def header(self, name: str) -> str | None:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        if not self.body:
            return {}
        try:
            return json.loads(self.body)
        except json.JSONDecodeError as e:
            raise ConnectorException(
                f"Invalid JSON in response: {e}",
                ErrorCode.REQUEST_FAILED,
                self.status,
            ) from e


class ConnectorHttpClient:
    """Thin wrapper around an aiohttp session owned by one connector."""

    def __init__(self, *, user_agent: str, timeout: float):
        self.user_agent = user_agent
        self.timeout = timeout
        self.session: ClientSession | None = None

    async def __aenter__(self):
        return self

    async def __aexit__(
        self, exc_type: Type[Exception], exc: Exception, tb: TracebackType
    ):
        await self.close()

    def _get_session(self) -> ClientSession:
        if self.session is None or self.session.closed:
            self.session = ClientSession(
                headers={"User-Agent": self.user_agent},
                timeout=ClientTimeout(total=self.timeout),
            )
        return self.session

    async def send(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
        json: Any | None = None,
        data: Any | None = None,
    ) -> HttpResponse:
        session = self._get_session()
        try:
            async with session.request(
                method, url, headers=headers, params=params, json=json, data=data
            ) as response:
                body = await response.read()
                return HttpResponse(
                    status=response.status,
                    headers=dict(response.headers),
                    body=body,
                    reason=response.reason,
                )
        except (ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"HTTP {method} {url} failed: {e!r}")
            raise ConnectorException(
                f"Unable to reach {url}: {e!r}", ErrorCode.REQUEST_FAILED
            ) from e

    async def close(self) -> None:
        if self.session and not self.session.closed:
            await self.session.close()
        self.session = None
