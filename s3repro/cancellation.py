"""Cooperative cancellation for uploads"""

import threading

from s3repro.errors import UploadCancelled


class CancellationToken:
    """
    Thread-safe cancellation flag

    The uploader checks the token before every store call. Cancelling does
    not interrupt a call already in flight.
    """

    def __init__(self):
        self._event = threading.Event()
        self.reason = "upload cancelled"

    def cancel(self, reason: str = "upload cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise UploadCancelled(self.reason)
