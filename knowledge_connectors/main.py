import logging
from fastapi import FastAPI, Depends
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from knowledge_connectors.admin.router import router as connectors_router
from knowledge_connectors.common.api_key import get_api_key
from knowledge_connectors.common.exceptions import (
    KnownException,
    ResourceNotFoundException,
    connector_exception_handler,
    known_exception_handler,
    resource_not_found_handler,
    unexpected_exception_handler,
    validation_exception_handler,
    internal_error_response,
    validation_error_response,
)
from knowledge_connectors.common.opentelemetry import setup_opentelemetry
from knowledge_connectors.config import get_settings
from knowledge_connectors.connectors.exceptions import ConnectorException
from knowledge_connectors.healthcheck.router import router as health_router

settings = get_settings()

logging.basicConfig(
    level=settings.LOG_LEVEL,
)

logger = logging.getLogger(__name__)


app = FastAPI(
    title=settings.API_NAME,
    summary=settings.API_SUMMARY,
    dependencies=[Depends(get_api_key)],
    responses={
        **internal_error_response,
        **validation_error_response,
    },
    version=settings.CONNECTORS_VERSION,
)

if settings.OTEL_ENABLED:
    setup_opentelemetry(settings.OTEL_SERVICE_NAME, app)

if settings.CORS_ENABLED:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.exception_handler(RequestValidationError)(validation_exception_handler)
app.exception_handler(ResourceNotFoundException)(resource_not_found_handler)
app.exception_handler(KnownException)(known_exception_handler)
app.exception_handler(ConnectorException)(connector_exception_handler)
app.exception_handler(Exception)(unexpected_exception_handler)


app.include_router(health_router)
app.include_router(connectors_router)
