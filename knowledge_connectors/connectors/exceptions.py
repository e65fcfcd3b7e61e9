from enum import Enum


class ErrorCode(str, Enum):
    AUTH_FAILED = "AUTH_FAILED"
    REQUEST_FAILED = "REQUEST_FAILED"
    TOKEN_REFRESH_FAILED = "TOKEN_REFRESH_FAILED"
    EXPORT_FAILED = "EXPORT_FAILED"
    DOWNLOAD_FAILED = "DOWNLOAD_FAILED"
    SYNC_CANCELLED = "SYNC_CANCELLED"


class ConnectorException(Exception):
    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.REQUEST_FAILED,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.status_code = status_code

    @property
    def is_not_found(self) -> bool:
        return self.status_code == 404


class SyncCancelledException(ConnectorException):
    def __init__(self, message: str = "Sync was cancelled"):
        super().__init__(message, code=ErrorCode.SYNC_CANCELLED)
