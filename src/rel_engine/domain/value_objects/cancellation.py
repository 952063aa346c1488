"""Cooperative cancellation signal for running pipelines."""

from __future__ import annotations

import threading

from rel_engine.domain.errors import QueryCancelledError


class CancellationToken:
    """Thread-safe flag checked by operators between row productions.

    Example:
        >>> token = CancellationToken()
        >>> token.cancel()
        >>> token.check()
        Traceback (most recent call last):
        ...
        QueryCancelledError: Query cancelled
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason = "Query cancelled"

    def cancel(self, reason: str | None = None) -> None:
        if reason:
            self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def check(self) -> None:
        """Raise if cancellation was requested."""
        if self._event.is_set():
            raise QueryCancelledError(self._reason)
