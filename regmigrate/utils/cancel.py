"""Cancellation token shared by network-facing calls."""

import threading
from typing import Optional

from ..errors import Cancelled


class CancelToken:
    """Thread-safe cancellation flag."""

    def __init__(self):
        self._event = threading.Event()
        self._reason = None

    def cancel(self, reason: str = "operation cancelled"):
        """Request cancellation of every call holding this token."""
        self._reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        """Raise Cancelled when the token has been cancelled."""
        if self._event.is_set():
            raise Cancelled(self._reason or "operation cancelled")


def check_cancelled(token: Optional[CancelToken]):
    """Raise Cancelled if token is set; None means not cancellable."""
    if token is not None:
        token.raise_if_cancelled()
