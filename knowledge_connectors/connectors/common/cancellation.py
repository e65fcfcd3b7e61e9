import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

from knowledge_connectors.connectors.exceptions import SyncCancelledException


class CancellationToken:
    """Lets a caller abort a long-running sync or search.

    The token trips either when ``cancel()`` is called or once the optional
    ``timeout`` (seconds, measured from construction) has elapsed.
    """

    def __init__(self, timeout: float | None = None):
        self._cancelled = False
        self._reason: str | None = None
        self.deadline = time.monotonic() + timeout if timeout is not None else None

    def cancel(self, reason: str | None = None) -> None:
        self._cancelled = True
        self._reason = reason

    @property
    def cancelled(self) -> bool:
        if self._cancelled:
            return True
        return self.deadline is not None and time.monotonic() >= self.deadline

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise SyncCancelledException(self._reason or "Sync was cancelled")
        if self.deadline is not None and time.monotonic() >= self.deadline:
            raise SyncCancelledException("Sync deadline exceeded")


_current_token: ContextVar[CancellationToken | None] = ContextVar(
    "connector_cancellation_token", default=None
)


@contextmanager
def bind_cancellation(token: CancellationToken | None) -> Iterator[None]:
    """Bind ``token`` to the running task for the duration of the block."""
    reset = _current_token.set(token)
    try:
        yield
    finally:
        _current_token.reset(reset)


def check_cancelled() -> None:
    token = _current_token.get()
    if token is not None:
        token.raise_if_cancelled()
