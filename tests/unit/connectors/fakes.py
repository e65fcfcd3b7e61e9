import json
from dataclasses import dataclass, field
from typing import Any

from pytest_mock import MockerFixture

from knowledge_connectors.connectors.base.config import (
    AuthCredentials,
    ConnectorConfig,
    ConnectorConfiguration,
)
from knowledge_connectors.connectors.base.connector import BaseConnector
from knowledge_connectors.connectors.common.http_client import HttpResponse
from knowledge_connectors.connectors.connector_type import (
    AuthType,
    ConnectorStatus,
    ConnectorType,
)


@dataclass
class Route:
    method: str
    url: str
    params: dict[str, str]
    responses: list[HttpResponse] = field(default_factory=list)


class FakeTransport:
    """Stands in for ``ConnectorHttpClient.send`` and serves canned responses.

    Routes match on method, URL and a subset of query params; the most specific
    route wins. Queued responses are served in order and the last one repeats.
    Unmatched requests get a 404.
    """

    def __init__(self):
        self.routes: list[Route] = []
        self.calls: list[dict[str, Any]] = []

    def add(
        self,
        method: str,
        url: str,
        *,
        status: int = 200,
        json_body: Any = None,
        text: str | None = None,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
    ) -> None:
        if text is not None:
            body = text.encode("utf-8")
        elif json_body is not None:
            body = json.dumps(json_body).encode("utf-8")
        else:
            body = b""

        response = HttpResponse(
            status=status, headers=headers or {}, body=body, reason=None
        )
        for route in self.routes:
            if route.method == method and route.url == url and route.params == (params or {}):
                route.responses.append(response)
                return
        self.routes.append(Route(method, url, params or {}, [response]))

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
        self.calls.append(
            {
                "method": method,
                "url": url,
                "headers": headers or {},
                "params": params or {},
                "json": json,
                "data": data,
            }
        )

        candidates = [
            route
            for route in self.routes
            if route.method == method
            and route.url == url
            and all((params or {}).get(k) == v for k, v in route.params.items())
        ]
        if not candidates:
            return HttpResponse(status=404, reason="Not Found")

        route = max(candidates, key=lambda r: len(r.params))
        if len(route.responses) > 1:
            return route.responses.pop(0)
        return route.responses[0]

    def calls_to(self, url: str) -> list[dict[str, Any]]:
        return [call for call in self.calls if call["url"] == url]


def make_config(
    connector_type: ConnectorType,
    *,
    auth_type: AuthType,
    credentials: dict[str, Any] | None = None,
    configuration: dict[str, Any] | None = None,
    **overrides: Any,
) -> ConnectorConfig:
    return ConnectorConfig(
        id=overrides.pop("id", f"{connector_type.value}-1"),
        name=overrides.pop("name", f"Test {connector_type.value}"),
        type=connector_type,
        status=overrides.pop("status", ConnectorStatus.ACTIVE),
        organization_id=overrides.pop("organization_id", "org-1"),
        auth_type=auth_type,
        auth_credentials=AuthCredentials(**(credentials or {})),
        configuration=ConnectorConfiguration(**(configuration or {})),
        **overrides,
    )


def attach_transport(
    mocker: MockerFixture, connector: BaseConnector, transport: FakeTransport
) -> None:
    mocker.patch.object(connector.http_client, "send", new=transport.send)
