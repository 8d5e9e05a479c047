"""
core/logging.py -- Process-wide logging, configured once from Settings.

Application modules keep using stdlib loggers:

    logger = logging.getLogger("homebase.request")
    logger.info("ENTER", extra={"request_id": rid, "method": "GET", "url": "/"})

This module decides how those records are rendered, using structlog's
ProcessorFormatter so stdlib records go through structlog processors:

  development       -- ConsoleRenderer (pretty, coloured on a TTY), written
                       synchronously to stderr.
  production / test -- JSONRenderer, one object per line. Records are handed
                       to a QueueHandler and written by a QueueListener
                       thread, so request handling never waits on stderr.

Fields passed via extra= become top-level keys of the rendered event
(structlog.stdlib.ExtraAdder).

Layer rule: core/ is the kernel. No imports from api/, web/, or auth/.
"""

from __future__ import annotations

import logging
import queue
import sys
from logging.handlers import QueueHandler, QueueListener

import structlog

from core.config import Settings

# The handler this module installed on the root logger, and the listener
# draining it in async mode. Tracked so reconfiguring replaces only our own
# handler and leaves foreign ones (pytest's caplog, for example) in place.
_installed_handler: logging.Handler | None = None
_listener: QueueListener | None = None


class _StderrHandler(logging.StreamHandler):
    """StreamHandler that writes to whatever sys.stderr is when a record is emitted."""

    def __init__(self) -> None:
        super().__init__(sys.stderr)

    @property
    def stream(self):
        return sys.stderr

    @stream.setter
    def stream(self, value) -> None:
        pass


class _RecordQueueHandler(QueueHandler):
    """QueueHandler that enqueues records untouched.

    The stock prepare() formats the record on the calling thread, folding the
    traceback into msg and dropping exc_info. The listener's ProcessorFormatter
    needs exc_info to render the exception key itself.
    """

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        return record


def _build_formatter(pretty: bool) -> structlog.stdlib.ProcessorFormatter:
    foreign_pre_chain: list[structlog.types.Processor] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if pretty:
        renderer: structlog.types.Processor = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    else:
        foreign_pre_chain.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()

    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=foreign_pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )


def configure_logging(settings: Settings) -> None:
    """Install the root handler for the given settings.

    Safe to call more than once: the previously installed handler (and its
    listener thread) is removed before the new one goes in.
    """
    global _installed_handler, _listener

    shutdown_logging()

    stream = _StderrHandler()
    stream.setFormatter(_build_formatter(pretty=settings.is_development))

    if settings.is_development:
        handler: logging.Handler = stream
    else:
        records: queue.SimpleQueue = queue.SimpleQueue()
        handler = _RecordQueueHandler(records)
        _listener = QueueListener(records, stream, respect_handler_level=False)
        _listener.start()

    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(settings.log_level_name)
    _installed_handler = handler

    # uvicorn's access log duplicates the request middleware's EXIT line.
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    # Emitted statements are logged in development only.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if settings.is_development else logging.WARNING)


def shutdown_logging() -> None:
    """Stop the queue listener (flushing pending records) and detach our handler."""
    global _installed_handler, _listener

    if _listener is not None:
        _listener.stop()
        _listener = None
    if _installed_handler is not None:
        logging.getLogger().removeHandler(_installed_handler)
        _installed_handler.close()
        _installed_handler = None
