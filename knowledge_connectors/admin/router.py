from fastapi import APIRouter, Depends

from knowledge_connectors.admin.dependencies import get_connector_service
from knowledge_connectors.admin.schemas import (
    ConnectionTestResponse,
    ConnectorRequest,
    FetchItemRequest,
    FetchItemResponse,
    SearchRequest,
    SearchResponse,
    SyncRequest,
    SyncResponse,
    ValidationResponse,
    WebhookRequest,
    WebhookResponse,
)
from knowledge_connectors.admin.service import ConnectorService
from knowledge_connectors.common.exceptions import (
    ResourceType,
    connector_error_response,
    resource_not_found_response,
)
from knowledge_connectors.connectors.common.schemas import ConnectorRegistration
from knowledge_connectors.connectors.connector_type import ConnectorType


router = APIRouter(
    prefix="/connectors",
    tags=["Connectors"],
)


@router.get("/types")
def list_connector_types(
    connector_service: ConnectorService = Depends(get_connector_service),
) -> list[ConnectorRegistration]:
    return connector_service.list_connector_types()


@router.get(
    "/types/{connector_type}",
    responses={**resource_not_found_response(ResourceType.CONNECTOR_TYPE)},
)
def get_connector_type(
    connector_type: ConnectorType,
    connector_service: ConnectorService = Depends(get_connector_service),
) -> ConnectorRegistration:
    return connector_service.get_connector_type(connector_type)


@router.post("/validate")
def validate_connector(
    request: ConnectorRequest,
    connector_service: ConnectorService = Depends(get_connector_service),
) -> ValidationResponse:
    return connector_service.validate_config(request.config)


@router.post("/test")
async def test_connector(
    request: ConnectorRequest,
    connector_service: ConnectorService = Depends(get_connector_service),
) -> ConnectionTestResponse:
    return await connector_service.test_connection(request.config)


@router.post("/sync")
async def sync_connector(
    request: SyncRequest,
    connector_service: ConnectorService = Depends(get_connector_service),
) -> SyncResponse:
    return await connector_service.sync(request)


@router.post("/search", responses={**connector_error_response})
async def search_connector(
    request: SearchRequest,
    connector_service: ConnectorService = Depends(get_connector_service),
) -> SearchResponse:
    return await connector_service.search(request)


@router.post(
    "/items",
    responses={
        **resource_not_found_response(ResourceType.ITEM),
        **connector_error_response,
    },
)
async def fetch_connector_item(
    request: FetchItemRequest,
    connector_service: ConnectorService = Depends(get_connector_service),
) -> FetchItemResponse:
    return await connector_service.fetch_item(request)


@router.post("/webhook", responses={**connector_error_response})
async def handle_connector_webhook(
    request: WebhookRequest,
    connector_service: ConnectorService = Depends(get_connector_service),
) -> WebhookResponse:
    return await connector_service.handle_webhook(request)
