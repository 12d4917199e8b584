"""BottleCap Runner - serve local Ollama models to the BottleCapAI cloud."""

from .backend import BackendError, OllamaClient
from .events import ConsoleEventSink, EventSink, LoggingEventSink, RecordingEventSink
from .manager import SessionHandle, SessionManager
from .session import CancelSignal, RunnerSession, SessionState

__version__ = "0.1.0"

__all__ = [
    "BackendError",
    "CancelSignal",
    "ConsoleEventSink",
    "EventSink",
    "LoggingEventSink",
    "OllamaClient",
    "RecordingEventSink",
    "RunnerSession",
    "SessionHandle",
    "SessionManager",
    "SessionState",
]
