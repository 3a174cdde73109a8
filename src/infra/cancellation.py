from __future__ import annotations

import asyncio


class CancellationToken:
    """Cooperative cancellation signal threaded through every suspending call.

    Work checks is_cancelled at natural suspension points (before each file
    read, around each process spawn) and returns a Cancelled outcome; the
    token never raises into the caller. Deadlines are expressed by arming
    cancel_after() on the same token.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None
        self._timer: asyncio.TimerHandle | None = None

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        """Signal cancellation. Idempotent: the first reason is kept."""
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def wait(self) -> None:
        """Block until the token is cancelled."""
        await self._event.wait()

    def cancel_after(self, seconds: float) -> None:
        """Arm a deadline on the running loop that cancels this token."""
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(seconds, self.cancel, f"deadline of {seconds}s exceeded")

    def disarm(self) -> None:
        """Drop a pending deadline without cancelling."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
