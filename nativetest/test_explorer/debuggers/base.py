"""Abstract base class for debugger backends."""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Literal

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class DebugSession(BaseModel):
    """A debug session as reported by a backend."""

    id: str = Field(..., description="Backend-unique session id")
    name: str = Field(..., description="Launch configuration name")
    type: str = Field(..., description="Debugger type, e.g. cppdbg or lldb-dap")


class DebugEvent(BaseModel):
    """Lifecycle event published by a backend."""

    kind: Literal["started", "terminated"] = Field(..., description="Event kind")
    session: DebugSession = Field(..., description="Session the event belongs to")
    exit_code: int | None = Field(
        default=None, description="Debuggee exit code, if the backend knows it"
    )


class DebugSessionHandle:
    """State owned by the caller that started one debug session.

    Several sessions may be active at once; lifecycle events are matched
    against the name and type requested here, and against the session id
    once the matching ``started`` event has been seen.
    """

    def __init__(self, name: str, type: str) -> None:
        """Initialize handle for a session about to be started."""
        self.name = name
        self.type = type
        self.session: DebugSession | None = None
        self.output: list[str] = []

    def matches(self, session: DebugSession) -> bool:
        """Return True if ``session`` is the one this handle started."""
        if session.name != self.name or session.type != self.type:
            return False
        return self.session is None or self.session.id == session.id

    def clear(self) -> None:
        """Drop session-scoped output."""
        self.output.clear()


class DebugBackend(ABC):
    """Abstract base for debugger backends."""

    def __init__(self) -> None:
        """Initialize event fan-out."""
        self._subscribers: list[asyncio.Queue[DebugEvent]] = []

    def subscribe(self) -> asyncio.Queue[DebugEvent]:
        """Return a queue receiving every event published from now on."""
        queue: asyncio.Queue[DebugEvent] = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[DebugEvent]) -> None:
        """Stop delivering events to ``queue``."""
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def publish(self, event: DebugEvent) -> None:
        """Deliver ``event`` to every subscriber."""
        logger.debug(
            f"Debug session {event.session.name} ({event.session.type}) {event.kind}"
        )
        for queue in list(self._subscribers):
            queue.put_nowait(event)

    @abstractmethod
    async def start_debugging(
        self, config: Mapping[str, object], handle: DebugSessionHandle
    ) -> bool:
        """Start a session for launch configuration ``config``.

        Args:
            config: Launch configuration with program, args, cwd and env
            handle: Handle whose ``output`` receives the session's output

        Returns:
            True if the session was started

        """

    @abstractmethod
    async def stop_debugging(self, session: DebugSession) -> None:
        """Terminate ``session``."""

    async def wait_for_termination(
        self,
        handle: DebugSessionHandle,
        events: asyncio.Queue[DebugEvent],
        timeout: float | None = None,
    ) -> DebugEvent:
        """Wait for the ``terminated`` event of the session behind ``handle``.

        Events of other sessions are ignored.

        Raises:
            TimeoutError: If the session does not terminate within timeout

        """
        loop = asyncio.get_event_loop()
        end_time = None if timeout is None else loop.time() + timeout

        while True:
            remaining = None if end_time is None else end_time - loop.time()
            if remaining is not None and remaining <= 0:
                raise TimeoutError(
                    f"Debug session {handle.name} did not terminate "
                    f"within {timeout} seconds"
                )
            try:
                event = await asyncio.wait_for(events.get(), remaining)
            except asyncio.TimeoutError:
                continue

            if not handle.matches(event.session):
                continue
            if event.kind == "started":
                handle.session = event.session
                continue
            return event
