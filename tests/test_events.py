"""Tests for event sinks."""

import io
import logging

from rich.console import Console

from bottlecap_runner.events import (
    CONNECTION_STATUS,
    LOG_MESSAGE,
    MODELS_UPDATED,
    ConsoleEventSink,
    LoggingEventSink,
    RecordingEventSink,
    emit_safely,
)


def test_recording_sink_keeps_order():
    sink = RecordingEventSink()
    sink.emit(CONNECTION_STATUS, {"status": "connecting"})
    sink.emit(MODELS_UPDATED, ["a"])
    sink.emit(CONNECTION_STATUS, {"status": "connected"})

    assert sink.statuses() == ["connecting", "connected"]
    assert sink.named(MODELS_UPDATED) == [["a"]]
    assert [name for name, _ in sink.events] == [CONNECTION_STATUS, MODELS_UPDATED, CONNECTION_STATUS]


def test_emit_safely_swallows_sink_errors(caplog):
    class BrokenSink:
        def emit(self, name, payload):
            raise RuntimeError("window closed")

    with caplog.at_level(logging.ERROR):
        emit_safely(BrokenSink(), LOG_MESSAGE, {"message": "hi", "type": "info"})

    assert "Event sink failed" in caplog.text


def test_console_sink_renders_events():
    output = io.StringIO()
    sink = ConsoleEventSink(Console(file=output, force_terminal=False, width=120))

    sink.emit(CONNECTION_STATUS, {"status": "error", "error": "WebSocket error: reset"})
    sink.emit(MODELS_UPDATED, ["llama3.2:latest", "mistral:7b"])
    sink.emit(LOG_MESSAGE, {"message": "Completed: 15 tokens", "type": "success"})

    text = output.getvalue()
    assert "Connection: error (WebSocket error: reset)" in text
    assert "Found 2 models: llama3.2:latest, mistral:7b" in text
    assert "Completed: 15 tokens" in text


def test_logging_sink_levels(caplog):
    sink = LoggingEventSink()

    with caplog.at_level(logging.INFO, logger="bottlecap_runner.events"):
        sink.emit(LOG_MESSAGE, {"message": "Error: boom", "type": "error"})
        sink.emit(CONNECTION_STATUS, {"status": "connected"})

    assert [r.levelno for r in caplog.records] == [logging.ERROR, logging.INFO]
