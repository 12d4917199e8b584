"""WebSocket session with the BottleCap coordination service.

One ``RunnerSession`` owns one socket for its whole life:

1. Opens the connection and sends the runner token
2. On ``auth_success``, advertises the locally installed models
3. Forwards each ``chat_request`` to the local Ollama server
4. Sends exactly one ``chat_response`` back per request

The session never reconnects. It ends when its cancel signal fires, when
the server closes the socket, or on a transport error, and always reports
one terminal ``connection-status`` event on the way out.
"""

import asyncio
import logging
import socket
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import websockets
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from .backend import BackendError, OllamaClient
from .events import CONNECTION_STATUS, LOG_MESSAGE, MODELS_UPDATED, EventSink, emit_safely
from .protocol import (
    Auth,
    AuthSuccess,
    ChatRequest,
    ChatResponse,
    ClientMessage,
    ProtocolError,
    Status,
    decode_server_message,
    encode_client_message,
)

logger = logging.getLogger(__name__)

Connector = Callable[[str], Awaitable[Any]]


class SessionState(str, Enum):
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    READY = "ready"
    CLOSING = "closing"
    CLOSED = "closed"


class CancelSignal:
    """Single-use cancellation handoff between a manager and one session.

    ``send()`` succeeds once; ``consume()`` reports the observation once.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self._consumed = False

    @property
    def sent(self) -> bool:
        return self._event.is_set()

    def send(self) -> bool:
        """Fire the signal. Returns False if it was already fired."""
        if self._event.is_set():
            return False
        self._event.set()
        return True

    async def wait(self) -> None:
        """Block until the signal fires."""
        await self._event.wait()

    def consume(self) -> bool:
        """Mark the signal as observed. True only for the first observer."""
        if not self._event.is_set() or self._consumed:
            return False
        self._consumed = True
        return True


def default_device_name() -> Optional[str]:
    """Short hostname of this machine, or None if it cannot be read."""
    try:
        return socket.gethostname().split(".")[0] or None
    except OSError:
        return None


def _is_clean_close(error: ConnectionClosed) -> bool:
    """True for a close frame or a plain end-of-stream."""
    if isinstance(error, ConnectionClosedOK) or error.rcvd is not None:
        return True
    cause = error.__cause__
    return cause is None or isinstance(cause, EOFError)


class RunnerSession:
    """
    One lifetime of the runner's connection to the coordination service.

    Created and cancelled by ``SessionManager``; ``run()`` is the worker
    coroutine. Inbound frames are handled one at a time, in arrival order.
    """

    def __init__(
        self,
        url: str,
        token: str,
        backend: OllamaClient,
        sink: EventSink,
        cancel: CancelSignal,
        connector: Connector = websockets.connect,
        device_name: Optional[str] = None,
        send_timeout: float = 5.0,
    ):
        self.url = url
        self.token = token
        self.backend = backend
        self.sink = sink
        self.cancel = cancel
        self.connector = connector
        self.device_name = device_name or default_device_name()
        self.send_timeout = send_timeout

        self.ws: Any = None
        self.runner_id: str | None = None
        self.error: str | None = None
        self.state = SessionState.CONNECTING
        self.state_history: list[SessionState] = [SessionState.CONNECTING]
        self._send_lock = asyncio.Lock()
        self._terminal_reported = False

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def _set_state(self, state: SessionState) -> None:
        if state is self.state:
            return
        logger.debug("Session state %s -> %s", self.state.value, state.value)
        self.state = state
        self.state_history.append(state)

    def _status(self, status: str, error: str | None = None) -> None:
        payload = {"status": status}
        if error:
            payload["error"] = error
        emit_safely(self.sink, CONNECTION_STATUS, payload)

    def _log(self, message: str, level: str = "info") -> None:
        emit_safely(self.sink, LOG_MESSAGE, {"message": message, "type": level})

    def _close_with_error(self, error: str) -> None:
        """Fatal transport failure: straight to CLOSED with an error report."""
        logger.error(error)
        self.error = error
        self._set_state(SessionState.CLOSED)
        if not self._terminal_reported:
            self._terminal_reported = True
            self._status("error", error)

    def _close_cleanly(self) -> None:
        """Cancellation or server close: CLOSING, report, then CLOSED."""
        self._set_state(SessionState.CLOSING)
        if not self._terminal_reported:
            self._terminal_reported = True
            self._status("disconnected")
        self._set_state(SessionState.CLOSED)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def run(self) -> None:
        """Drive the session from connect to close."""
        self._status("connecting")
        logger.info(f"Connecting to {self.url}...")

        try:
            try:
                self.ws = await self.connector(self.url)
            except Exception as e:
                self._close_with_error(f"WebSocket connection failed: {e}")
                return

            self._set_state(SessionState.AUTHENTICATING)
            try:
                await self._write(Auth(token=self.token))
            except Exception as e:
                self._close_with_error(f"Failed to send auth: {e}")
                return

            self._set_state(SessionState.READY)
            await self._message_loop()
        finally:
            await self._close_socket()
            if self.state is not SessionState.CLOSED:
                # Worker task cancelled from outside
                self._close_cleanly()

    async def _message_loop(self) -> None:
        """Wait on cancellation and the next frame; handle whichever comes first."""
        cancel_task = asyncio.create_task(self.cancel.wait())
        recv_task: asyncio.Task | None = None

        try:
            while True:
                if recv_task is None:
                    recv_task = asyncio.create_task(self.ws.recv())

                done, _ = await asyncio.wait(
                    {cancel_task, recv_task}, return_when=asyncio.FIRST_COMPLETED
                )

                if cancel_task in done:
                    self.cancel.consume()
                    logger.info("Disconnect requested")
                    self._close_cleanly()
                    return

                finished, recv_task = recv_task, None
                try:
                    frame = finished.result()
                except ConnectionClosed as e:
                    if _is_clean_close(e):
                        logger.info(f"Connection closed: {e}")
                        self._close_cleanly()
                    else:
                        self._close_with_error(f"WebSocket error: {e}")
                    return
                except Exception as e:
                    self._close_with_error(f"WebSocket error: {e}")
                    return

                await self._dispatch(frame)
        finally:
            if recv_task is not None and recv_task.done() and not recv_task.cancelled():
                # Frame that lost the race against cancellation
                recv_task.exception()
            pending = [t for t in (cancel_task, recv_task) if t is not None and not t.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

    async def _close_socket(self) -> None:
        ws, self.ws = self.ws, None
        if ws is None:
            return
        try:
            await ws.close()
        except Exception as e:
            logger.debug(f"Error closing socket: {e}")

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    async def _dispatch(self, frame: Any) -> None:
        """Handle one inbound frame. Never raises."""
        if not isinstance(frame, str):
            logger.debug("Ignoring binary frame (%d bytes)", len(frame))
            return

        message = decode_server_message(frame)
        try:
            if isinstance(message, AuthSuccess):
                await self._handle_auth_success(message)
            elif isinstance(message, ChatRequest):
                await self._handle_chat_request(message)
            else:
                logger.debug(f"Ignoring message: {message.reason}")
        except Exception:
            logger.exception("Error processing message")

    async def _handle_auth_success(self, message: AuthSuccess) -> None:
        """Report the connection and advertise installed models."""
        self.runner_id = message.runner_id
        logger.info(f"Authenticated as runner {message.runner_id}")
        self._status("connected")

        try:
            models = await self.backend.list_models()
        except BackendError as e:
            logger.warning(f"Could not list Ollama models: {e}")
            self._log(f"Could not list models: {e}", "error")
            return

        emit_safely(self.sink, MODELS_UPDATED, models)
        await self._send(Status(status="online", models=models, device_name=self.device_name))

    async def _handle_chat_request(self, request: ChatRequest) -> None:
        """Run a chat request on the backend and send exactly one response."""
        self._log(f"Request for model: {request.model}", "info")

        try:
            content, usage = await self.backend.chat_completion(
                request.model, request.messages, request.options
            )
            response = ChatResponse.success(request.request_id, content, usage)
        except BackendError as e:
            logger.warning(f"Chat request {request.request_id} failed: {e}")
            self._log(f"Error: {e}", "error")
            response = ChatResponse.failure(request.request_id, str(e))
        except Exception as e:
            logger.exception("Chat handling error")
            error = str(e) or type(e).__name__
            self._log(f"Error: {error}", "error")
            response = ChatResponse.failure(request.request_id, error)
        else:
            self._log(f"Completed: {usage.total_tokens} tokens", "success")

        await self._send(response)

    # -------------------------------------------------------------------------
    # Outbound
    # -------------------------------------------------------------------------

    async def _write(self, message: ClientMessage) -> None:
        """Send one frame, raising on any failure.

        Writes are serialized so frames never interleave, and each one is
        bounded by ``send_timeout``.
        """
        ws = self.ws
        if ws is None:
            raise ConnectionError("Not connected")

        text = encode_client_message(message)
        async with self._send_lock:
            await asyncio.wait_for(ws.send(text), timeout=self.send_timeout)

    async def _send(self, message: ClientMessage) -> bool:
        """Send one frame; failures are logged, never raised.

        A failed send does not end the session. If the socket is really
        gone, the next read fails and drives the teardown.
        """
        try:
            await self._write(message)
            return True
        except ProtocolError as e:
            logger.error(f"Encode error: {e}")
        except asyncio.TimeoutError:
            logger.error(
                f"WebSocket send timed out after {self.send_timeout}s - connection may be blocked"
            )
        except Exception as e:
            logger.error(f"Send error: {e}")
        return False
