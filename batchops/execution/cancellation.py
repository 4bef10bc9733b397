"""Cooperative cancellation for batch runs."""

import asyncio

from batchops.core.errors import BatchCancelledError


class CancellationToken:
    """
    Run-scoped cancellation signal.

    The executor polls it before each operation and each attempt, and
    waits on it during retry backoff so a cancel interrupts the wait.
    Updates already in flight are not aborted.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        """Whether cancellation has been requested."""
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Raise BatchCancelledError if cancellation was requested."""
        if self.cancelled:
            raise BatchCancelledError()

    async def sleep(self, seconds: float) -> bool:
        """Wait up to ``seconds`` unless cancelled first.

        Returns:
            True if the wait ended because of cancellation.
        """
        if self.cancelled:
            return True
        if seconds <= 0:
            return False
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except TimeoutError:
            return False
        return True
