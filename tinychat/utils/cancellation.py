"""Cooperative cancellation for streamed generations."""

import asyncio


class CancellationToken:
    """
    One-shot cancellation flag shared between a caller and a running reply.

    The orchestrator checks it between deltas and races queue reads
    against ``wait()``. Cancelling twice is harmless.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        """Request cancellation."""
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        """Block until cancellation is requested."""
        await self._event.wait()
