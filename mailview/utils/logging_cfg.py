"""
Logging configuration for the mail session layer.

Host applications call :func:`setup_logging` once at startup. Records go to a
size-rotated file under the configured log directory and, at WARNING and
above (everything in debug mode), to the console.
"""
import logging
import logging.handlers
from pathlib import Path
from typing import List, Optional

from mailview import config


LOG_FILE_NAME = "mailview.log"

# Rotate at 10 MB, keep 5 old files
MAX_LOG_SIZE = 10 * 1024 * 1024
BACKUP_COUNT = 5

FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
CONSOLE_FORMAT = "%(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

QUIET_LOGGERS = ("asyncio", "PyQt5")


def _build_handlers(log_file: Path, debug: bool) -> List[logging.Handler]:
    file_handler = logging.handlers.RotatingFileHandler(
        filename=str(log_file),
        maxBytes=MAX_LOG_SIZE,
        backupCount=BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG if debug else logging.INFO)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.DEBUG if debug else logging.WARNING)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    return [file_handler, console_handler]


def setup_logging(debug: bool = False, log_dir: Optional[Path] = None) -> Path:
    """
    Configure the root logger.

    Calling it again replaces (and closes) the handlers of the previous call.

    Args:
        debug: Log DEBUG records everywhere instead of INFO to file only.
        log_dir: Directory for the log file (defaults to config.LOG_DIR).

    Returns:
        Path of the log file.
    """
    log_dir = Path(log_dir) if log_dir else config.LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    root_logger.setLevel(logging.DEBUG if debug else logging.INFO)
    for handler in _build_handlers(log_file, debug):
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        f"{config.APP_NAME} logging to {log_file} "
        f"at {logging.getLevelName(root_logger.level)}"
    )
    return log_file


def set_log_level(level: int) -> None:
    """Apply a level to the root logger and every handler set up above."""
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers:
        handler.setLevel(level)
