"""
core/logging_config.py - Logging Configuration

Every module logs through ``logging.getLogger(__name__)`` with messages of
the form ``event=<name> key=value ...``. Two file channels:

  - MAIN log  (logs/sim_main.log): WARNING+ plus the INFO events listed in
    MAIN_LOG_EVENTS (trade lifecycle, run summaries, orchestrator
    summaries, persistence). Small enough to tail during a live session.
  - DEBUG log (logs/sim_debug.log): every record, tagged with the thread
    and asyncio task that emitted it, so interleaved walk-forward windows
    and live instrument workers can be told apart.

The console only shows WARNING+.
"""

import asyncio
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional

from config import SimConfig

# INFO events that belong in the main log
MAIN_LOG_EVENTS = frozenset({
    "trade_opened", "trade_closed",
    "run_completed", "run_insufficient_data",
    "live_started", "live_stopped", "live_reset",
    "walk_forward", "monte_carlo",
    "result_saved", "state_loaded",
})

_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def event_name(message: str) -> Optional[str]:
    """The ``event=`` token of a log message, if any."""
    for token in message.split():
        if token.startswith("event="):
            return token[len("event="):]
    return None


class MainLogFilter(logging.Filter):
    """WARNING+ always; INFO only for whitelisted events; never DEBUG."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.WARNING:
            return True
        if record.levelno == logging.INFO:
            return event_name(record.getMessage()) in MAIN_LOG_EVENTS
        return False


class TaskContextFilter(logging.Filter):
    """Attach the current asyncio task name (or '-') as ``record.task``."""

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            task = asyncio.current_task()
        except RuntimeError:
            task = None
        record.task = task.get_name() if task is not None else "-"
        return True


class MainFormatter(logging.Formatter):
    """Single-line ``time LEVEL [logger] message``; coloured level on a TTY."""

    _COLORS = {
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    _RESET = "\033[0m"

    def __init__(self, use_color: bool = False):
        super().__init__(
            fmt="%(asctime)s %(levelname)-7s [%(name)s] %(message)s",
            datefmt=_TIME_FORMAT,
        )
        self._use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        color = self._COLORS.get(record.levelno) if self._use_color else None
        return f"{color}{line}{self._RESET}" if color else line


class DebugFormatter(logging.Formatter):
    """Verbose format with millisecond time, source line, thread and task."""

    def __init__(self):
        super().__init__(
            fmt=(
                "%(asctime)s.%(msecs)03d %(levelname)-8s %(name)s:%(lineno)d "
                "[%(threadName)s/%(task)s] | %(message)s"
            ),
            datefmt=_TIME_FORMAT,
        )


def _rotating_handler(path: str, max_bytes: int, backup_count: int) -> logging.Handler:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    return logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )


def setup_logging(
    level: str = SimConfig.LOG_LEVEL,
    console_output: bool = True,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    main_log_file: Optional[str] = str(SimConfig.LOG_DIR / "sim_main.log"),
    debug_log_file: Optional[str] = str(SimConfig.LOG_DIR / "sim_debug.log"),
) -> logging.Logger:
    """
    Replace the root handlers with the main / debug / console channels.

    Parameters
    ----------
    level          : Root level; keep DEBUG for a complete debug log.
    main_log_file  : Path of the main log, or None to skip it.
    debug_log_file : Path of the debug log, or None to skip it.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.DEBUG))
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    if main_log_file:
        main_handler = _rotating_handler(main_log_file, max_bytes, backup_count)
        main_handler.setLevel(logging.INFO)
        main_handler.addFilter(MainLogFilter())
        main_handler.setFormatter(MainFormatter())
        root.addHandler(main_handler)

    if debug_log_file:
        debug_handler = _rotating_handler(debug_log_file, max_bytes, backup_count)
        debug_handler.setLevel(logging.DEBUG)
        debug_handler.addFilter(TaskContextFilter())
        debug_handler.setFormatter(DebugFormatter())
        root.addHandler(debug_handler)

    if console_output:
        console = logging.StreamHandler(sys.stdout)
        console.setLevel(logging.WARNING)
        console.setFormatter(MainFormatter(use_color=sys.stdout.isatty()))
        root.addHandler(console)

    # asyncio's own debug chatter would swamp live-session debug logs
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    return root

