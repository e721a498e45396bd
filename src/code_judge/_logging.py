"""Logging for code-judge.

The library logger ``code_judge`` only carries a NullHandler; handlers are
the application's business. CODE_JUDGE_LOG_LEVEL sets its level at import.

configure_logging() is for applications that want the library's own output.
Records go through a bounded queue to a listener thread that prints them with
click.echo(err=True), so a judging coroutine never blocks on stderr. Records
arriving while the queue is full are dropped.

Output format, with the workspace of the run when the record names one:
    INFO [2026-10-17 10:02:54] code_judge.runner [judge_s1_3_9f2c...] - test 0 started
"""

import contextlib
import logging
import logging.handlers
import os
import queue

import click

LIBRARY_LOGGER_NAME: str = "code_judge"

_QUEUE_CAPACITY = 4096

logging.getLogger(LIBRARY_LOGGER_NAME).addHandler(logging.NullHandler())

_env_level = logging.getLevelNamesMapping().get(os.environ.get("CODE_JUDGE_LOG_LEVEL", "").strip().upper())
if _env_level:  # NOTSET and unknown names leave the level alone
    logging.getLogger(LIBRARY_LOGGER_NAME).setLevel(_env_level)


class _RunFormatter(logging.Formatter):
    """Adds the workspace id passed as ``extra`` (workspace_id or context_id)."""

    def __init__(self) -> None:
        super().__init__(fmt="%(levelname)s [%(asctime)s] %(name)s%(run)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        run = getattr(record, "workspace_id", None) or getattr(record, "context_id", None)
        record.run = f" [{run}]" if run and run != "-" else ""
        return super().format(record)


class _EchoHandler(logging.Handler):
    """Writes to stderr via click.echo; runs on the listener thread only."""

    def __init__(self) -> None:
        super().__init__()
        self.setFormatter(_RunFormatter())

    def emit(self, record: logging.LogRecord) -> None:
        try:
            text = self.format(record)
            click.echo(click.style(text, dim=record.levelno < logging.WARNING), err=True)
        except BlockingIOError:
            pass  # stderr saturated, drop
        except Exception:  # noqa: BLE001
            self.handleError(record)


class _QueueHandler(logging.handlers.QueueHandler):
    """put_nowait() into a bounded queue drained by an _EchoHandler listener."""

    def __init__(self) -> None:
        q: queue.Queue[logging.LogRecord] = queue.Queue(maxsize=_QUEUE_CAPACITY)
        super().__init__(q)
        self._listener = logging.handlers.QueueListener(q, _EchoHandler())
        self._listener.start()

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # Same process: keep extras and exc_info for _RunFormatter
        return record

    def enqueue(self, record: logging.LogRecord) -> None:
        with contextlib.suppress(queue.Full):
            self.queue.put_nowait(record)

    def close(self) -> None:
        self._listener.stop()
        super().close()


def get_logger(name: str) -> logging.Logger:
    """Module logger inside the ``code_judge`` hierarchy."""
    return logging.getLogger(name)


def configure_logging(*, level: int | str | None = None) -> None:
    """Print library logs to stderr.

    Idempotent: the queue handler is installed once. ``level`` overrides
    CODE_JUDGE_LOG_LEVEL.

    Raises:
        ValueError: unknown level name
    """
    lib_logger = logging.getLogger(LIBRARY_LOGGER_NAME)
    if not any(isinstance(h, _QueueHandler) for h in lib_logger.handlers):
        lib_logger.addHandler(_QueueHandler())
    if level is not None:
        lib_logger.setLevel(level)
