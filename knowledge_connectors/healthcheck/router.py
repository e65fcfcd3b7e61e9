from typing import Any
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from knowledge_connectors.config import Settings, get_settings
from knowledge_connectors.connectors.registry import get_available_connectors

router = APIRouter()


@router.get(
    "/healthcheck",
    tags=["Healthcheck"],
    status_code=status.HTTP_200_OK,
    responses={
        200: {
            "description": "Healthcheck status",
            "content": {
                "application/json": {
                    "example": {
                        "api": {"status": "ok", "version": "v0.1.x"},
                        "connectors": {
                            "status": "ok",
                            "registered": ["confluence", "sharepoint"],
                        },
                    }
                }
            },
        },
        503: {
            "description": "Service unavailable",
            "content": {
                "application/json": {
                    "example": {
                        "api": {"status": "ok", "version": "v0.1.x"},
                        "connectors": {
                            "status": "error",
                            "message": "No connectors registered",
                        },
                    }
                }
            },
        },
    },
)
def healthcheck(settings: Settings = Depends(get_settings)) -> JSONResponse:
    health_status: dict[str, Any] = {
        "api": {"status": "ok", "version": settings.CONNECTORS_VERSION},
        "connectors": {"status": "ok"},
    }

    registered = [registration.type.value for registration in get_available_connectors()]
    if not registered:
        health_status["connectors"].update(
            {"status": "error", "message": "No connectors registered"}
        )
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=health_status
        )

    health_status["connectors"]["registered"] = registered
    return JSONResponse(status_code=status.HTTP_200_OK, content=health_status)
