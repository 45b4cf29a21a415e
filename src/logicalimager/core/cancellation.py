# src/logicalimager/core/cancellation.py

import logging
import threading

from logicalimager.core.errors import IngestionCancelled

logger = logging.getLogger(__name__)


class CancellationToken:
    """
    Cooperative cancellation flag shared by the orchestrator and its sub-task.

    Workers poll it between manifest rows and between wait intervals; nothing
    is interrupted mid-row.
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()

    def cancel(self) -> bool:
        """Set the flag. Returns True only for the call that actually set it."""
        with self._lock:
            if self._event.is_set():
                return False
            self._event.set()
        logger.warning("Cancellation requested, processing may be incomplete")
        return True

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise IngestionCancelled("Ingestion cancelled")

    def wait(self, timeout: float) -> bool:
        return self._event.wait(timeout)
