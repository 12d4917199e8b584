"""Event sink for runner notifications.

The session reports everything user-visible as a named event:

- ``connection-status``  {"status": connecting|connected|disconnected|error, "error"?: str}
- ``models-updated``     list of model names
- ``log-message``        {"message": str, "type": info|success|error}

Delivery is fire-and-forget. A sink that raises must not take the
session down, so callers go through ``emit_safely``.
"""

import logging
from typing import Any, Protocol

from rich.console import Console

logger = logging.getLogger(__name__)

CONNECTION_STATUS = "connection-status"
MODELS_UPDATED = "models-updated"
LOG_MESSAGE = "log-message"


class EventSink(Protocol):
    """Anything that accepts named runner events."""

    def emit(self, name: str, payload: Any) -> None:
        ...


def emit_safely(sink: EventSink, name: str, payload: Any) -> None:
    """Emit an event, logging and discarding any sink failure."""
    try:
        sink.emit(name, payload)
    except Exception:
        logger.exception("Event sink failed on %s", name)


class ConsoleEventSink:
    """Renders events on a rich console."""

    color_map = {
        "info": "cyan",
        "success": "green",
        "error": "red",
        "warn": "yellow",
    }

    status_levels = {
        "connecting": "warn",
        "connected": "success",
        "disconnected": "warn",
        "error": "error",
    }

    def __init__(self, console: Console | None = None):
        self.console = console or Console()

    def _print(self, message: str, level: str) -> None:
        color = self.color_map.get(level, "white")
        self.console.print(f"[{color}]{message}[/{color}]")

    def emit(self, name: str, payload: Any) -> None:
        if name == CONNECTION_STATUS:
            status = payload.get("status", "")
            text = f"Connection: {status}"
            if payload.get("error"):
                text += f" ({payload['error']})"
            self._print(text, self.status_levels.get(status, "info"))
        elif name == MODELS_UPDATED:
            models = list(payload)
            self._print(f"Found {len(models)} models: {', '.join(models)}", "info")
        elif name == LOG_MESSAGE:
            self._print(payload.get("message", ""), payload.get("type", "info"))
        else:
            self._print(f"{name}: {payload}", "info")


class LoggingEventSink:
    """Forwards events to the logging module."""

    levels = {
        "error": logging.ERROR,
        "success": logging.INFO,
        "info": logging.INFO,
    }

    def __init__(self, log: logging.Logger | None = None):
        self.log = log or logging.getLogger("bottlecap_runner.events")

    def emit(self, name: str, payload: Any) -> None:
        level = logging.INFO
        if name == LOG_MESSAGE:
            level = self.levels.get(payload.get("type"), logging.INFO)
        elif name == CONNECTION_STATUS and payload.get("status") == "error":
            level = logging.ERROR
        self.log.log(level, "%s %s", name, payload)


class RecordingEventSink:
    """Keeps every event in memory, in emission order."""

    def __init__(self):
        self.events: list[tuple[str, Any]] = []

    def emit(self, name: str, payload: Any) -> None:
        self.events.append((name, payload))

    def named(self, name: str) -> list[Any]:
        """Payloads of all events with the given name."""
        return [payload for event, payload in self.events if event == name]

    def statuses(self) -> list[str]:
        """Sequence of reported connection statuses."""
        return [payload["status"] for payload in self.named(CONNECTION_STATUS)]
