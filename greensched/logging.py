import logging
import os
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional, Union

from pythonjsonlogger import jsonlogger

CONSOLE_FORMAT = "%(levelname)s:\t%(name)s - %(message)s"
JSON_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s %(module)s %(lineno)d"

_configured_handlers: list[logging.Handler] = []


def _resolve_level() -> int:
    log_level_str = os.environ.get("LOG_LEVEL", "INFO").upper()
    valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    if log_level_str not in valid_levels:
        log_level_str = "INFO"
    return getattr(logging, log_level_str)


def setup_logging(log_dir: Optional[Union[str, Path]] = None) -> None:
    """Configure console logging and, optionally, JSON file rotation under log_dir."""
    log_level = _resolve_level()
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Repeat calls replace our handlers instead of stacking them
    for handler in _configured_handlers:
        root_logger.removeHandler(handler)
        handler.close()
    _configured_handlers.clear()

    # 1. Console Handler (Simple format)
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    root_logger.addHandler(console_handler)
    _configured_handlers.append(console_handler)

    # 2. File Handler (JSON, Timed Rotation)
    if log_dir is not None:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        file_handler = TimedRotatingFileHandler(
            log_path / "greensched.log",
            when="midnight",
            interval=1,
            backupCount=7,
            encoding="utf-8",
        )
        file_handler.setFormatter(jsonlogger.JsonFormatter(JSON_FORMAT))
        root_logger.addHandler(file_handler)
        _configured_handlers.append(file_handler)

    logging.getLogger("greensched").setLevel(log_level)
