"""Cancellation signal shared by the tests of one run request."""

import asyncio


class CancellationToken:
    """One-way cancellation flag that can also be awaited."""

    def __init__(self) -> None:
        """Initialize an uncancelled token."""
        self._event = asyncio.Event()

    @property
    def is_cancellation_requested(self) -> bool:
        """Whether :meth:`cancel` has been called."""
        return self._event.is_set()

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    async def wait(self) -> None:
        """Block until cancellation is requested."""
        await self._event.wait()
