"""
Logging setup for scatterview.

Every record goes to a per-run file under ``<data dir>/logs/`` at DEBUG.
The console only shows WARNING and above unless ``verbose`` is set; its
look is chosen by the ``console_format`` config key:

    simple   message only, with a [LEVEL] prefix from WARNING up (default)
    full     the file format: time | level | logger | session | message
    clean    nothing on the console

Library code just does ``logging.getLogger(LOGGER_NAME)``. Only an entry
point (main.py) calls ``setup_logging()``.
"""

import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Optional

import config

LOGGER_NAME = "scatterview"

LOG_DIR = config.get_data_dir() / "logs"

_FILE_FORMAT = logging.Formatter(
    "%(asctime)s | %(levelname)-8s | %(name)s | %(session_id)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

_session_filter: Optional["_SessionFilter"] = None
_current_log_file: Optional[Path] = None


def tagged(tag: str) -> dict:
    """``extra=`` dict that marks a record, e.g. ``extra=tagged("data_fetched")``."""
    return {"log_tag": tag}


class _SessionFilter(logging.Filter):
    """Stamps the run's session id (and an empty log_tag default) on records."""

    def __init__(self) -> None:
        super().__init__()
        self.session_id = ""

    def filter(self, record: logging.LogRecord) -> bool:
        record.session_id = self.session_id or "-"
        if not hasattr(record, "log_tag"):
            record.log_tag = ""
        return True


class _ConsoleFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        prefix = f"[{record.levelname}] " if record.levelno >= logging.WARNING else ""
        return f"  {prefix}{record.getMessage()}"


def _get_session_filter() -> _SessionFilter:
    global _session_filter
    if _session_filter is None:
        _session_filter = _SessionFilter()
    return _session_filter


def _file_handler(log_dir: Path) -> logging.FileHandler:
    global _current_log_file
    log_dir.mkdir(parents=True, exist_ok=True)
    _current_log_file = log_dir / f"scatterview_{datetime.now():%Y%m%d_%H%M%S}.log"
    handler = logging.FileHandler(_current_log_file, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(_FILE_FORMAT)
    return handler


def _console_handler(verbose: bool) -> Optional[logging.Handler]:
    style = config.get("console_format", "simple")
    if style == "clean":
        return None
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    handler.setFormatter(_FILE_FORMAT if style == "full" else _ConsoleFormatter())
    return handler


def setup_logging(verbose: bool = False, log_dir: Optional[Path] = None) -> logging.Logger:
    """Attach the file and console handlers to the scatterview logger.

    Calling it again replaces the handlers; the session id is kept.

    Args:
        verbose: Show DEBUG records on the console.
        log_dir: Directory for the run's log file (defaults to LOG_DIR).

    Returns:
        The configured logger.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.addFilter(_get_session_filter())

    logger.addHandler(_file_handler(Path(log_dir) if log_dir is not None else LOG_DIR))
    console = _console_handler(verbose)
    if console is not None:
        logger.addHandler(console)

    logger.info("Run started %s, logging to %s", datetime.now().isoformat(), _current_log_file)
    return logger


def set_session_id(session_id: str) -> None:
    """Stamp ``session_id`` on every later record (may precede setup_logging)."""
    _get_session_filter().session_id = session_id


def log_error(
    message: str,
    exc: Optional[BaseException] = None,
    context: Optional[dict] = None,
) -> None:
    """Log a failure as one multi-line ERROR record.

    Args:
        message: What failed.
        exc: The exception, if any; its type, text and traceback are added.
        context: Extra key/value pairs (collection, variables, ...).
    """
    logger = logging.getLogger(LOGGER_NAME)
    lines = [message]
    for key, value in (context or {}).items():
        lines.append(f"  {key}: {value}")
    if exc is not None:
        lines.append(f"  {type(exc).__name__}: {exc}")
        if exc.__traceback__ is not None:
            lines.append("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    logger.error("\n".join(lines))
    logger.debug(message[:200], extra=tagged("error"))


def get_current_log_path() -> Optional[Path]:
    """Log file of the current run (None before setup_logging)."""
    return _current_log_file
