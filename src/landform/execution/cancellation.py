from __future__ import annotations

import asyncio


class CancellationToken:
    """Run-wide cancellation signal.

    Cancelling stops scheduling of items that have not started. Provider
    calls already in flight finish or fail on their own, and state writes
    that follow a successful provider call always complete.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._timer: asyncio.TimerHandle | None = None
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "aborted") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def cancel_after(self, seconds: float) -> None:
        """Cancel with reason ``timeout`` once ``seconds`` have elapsed."""
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(seconds, self.cancel, "timeout")

    def dispose(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
