import logging
import secrets

from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from fastapi.security.api_key import APIKeyHeader

from knowledge_connectors.config import Settings, get_settings

logger = logging.getLogger(__name__)

api_key_header = APIKeyHeader(name="x-api-key", auto_error=False)
bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_api_key(
    request: Request,
    api_key: str | None = Security(api_key_header),
    bearer: HTTPAuthorizationCredentials | None = Security(bearer_scheme),
    settings: Settings = Depends(get_settings),
) -> None:
    """Guard the admin API with the connectors key, sent as x-api-key or a bearer token."""
    expected = settings.CONNECTORS_API_KEY
    if not expected:
        return

    provided = api_key or (bearer.credentials if bearer else None)
    client = request.client.host if request.client else "unknown"
    if not provided:
        logger.warning(f"Rejected {request.url.path} from {client}: API key is missing")
        raise _unauthorized("API key is missing")

    if not secrets.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        logger.warning(f"Rejected {request.url.path} from {client}: API key is invalid")
        raise _unauthorized("API key is invalid")
