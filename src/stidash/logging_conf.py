import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str = "INFO", *, log_file: Path | None = None) -> None:
    """Root logger for the dashboard process: stdout, plus an optional rotating file."""
    numeric_level = getattr(logging, str(level).upper(), None)
    if not isinstance(numeric_level, int):
        print(f"Invalid log level: {level}, defaulting to INFO")
        numeric_level = logging.INFO

    # e.g. "2024-03-15 10:00:00 [WARNING] stidash.analytics.controller: Metrics fetch failed for ..."
    formatter = logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(log_file, maxBytes=2_000_000, backupCount=3, encoding="utf-8"))

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Avoid duplicate handlers when NiceGUI re-imports the entry module
    if root_logger.hasHandlers():
        root_logger.handlers.clear()

    for handler in handlers:
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    # Per-request and file-watch chatter
    for noisy in ("uvicorn.access", "watchfiles", "engineio", "socketio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
