"""Session manager: at most one live runner session per process.

The manager's handle slot is the only state shared between callers and
session workers. It is only touched under ``_lock``, and the lock is never
held across network I/O.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import websockets

from .backend import OllamaClient
from .config import DEFAULT_BACKEND_URL
from .events import EventSink
from .session import CancelSignal, Connector, RunnerSession

logger = logging.getLogger(__name__)


@dataclass
class SessionHandle:
    """Controls one running session."""

    cancel: CancelSignal
    session: RunnerSession
    task: asyncio.Task

    def stop(self) -> bool:
        """Signal the session to disconnect. False if already signalled."""
        return self.cancel.send()


class SessionManager:
    """
    Owns the runner's connection to the coordination service.

    ``connect`` replaces any existing session; ``disconnect`` ends it.
    Both return as soon as the slot is updated; the session itself runs
    in its own task.
    """

    def __init__(
        self,
        backend: OllamaClient,
        sink: EventSink,
        url: str = DEFAULT_BACKEND_URL,
        connector: Connector = websockets.connect,
        device_name: Optional[str] = None,
        send_timeout: float = 5.0,
    ):
        self.backend = backend
        self.sink = sink
        self.url = url
        self.connector = connector
        self.device_name = device_name
        self.send_timeout = send_timeout

        self._lock = asyncio.Lock()
        self._handle: SessionHandle | None = None

    @property
    def current(self) -> SessionHandle | None:
        """Handle of the live session, if any."""
        return self._handle

    @property
    def is_active(self) -> bool:
        return self._handle is not None and not self._handle.task.done()

    async def connect(self, token: str) -> SessionHandle:
        """Start a new session, cancelling the current one first."""
        async with self._lock:
            if self._handle is not None:
                logger.info("Replacing existing session")
                self._handle.stop()
                self._handle = None

            cancel = CancelSignal()
            session = RunnerSession(
                url=self.url,
                token=token,
                backend=self.backend,
                sink=self.sink,
                cancel=cancel,
                connector=self.connector,
                device_name=self.device_name,
                send_timeout=self.send_timeout,
            )
            task = asyncio.create_task(session.run(), name="runner-session")
            handle = SessionHandle(cancel=cancel, session=session, task=task)
            task.add_done_callback(lambda _: self._release(handle))
            self._handle = handle
            return handle

    async def disconnect(self) -> None:
        """End the current session. No-op when there is none."""
        async with self._lock:
            if self._handle is None:
                return
            self._handle.stop()
            self._handle = None

    def _release(self, handle: SessionHandle) -> None:
        """Drop the handle of a session that ended on its own.

        Runs as a task done-callback on the event loop thread, so it cannot
        interleave with ``connect``/``disconnect`` (neither awaits while
        holding the slot).
        """
        if self._handle is handle:
            logger.debug("Session ended, releasing handle")
            self._handle = None

    async def wait_closed(self) -> None:
        """Wait for the current session's worker to finish."""
        handle = self._handle
        if handle is not None:
            await asyncio.shield(handle.task)

    async def probe(self) -> bool:
        """Whether the local backend is reachable, independent of any session."""
        return await self.backend.probe()
