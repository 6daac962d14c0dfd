"""
Global settings and constants for the mail session layer.

This module provides configuration constants and helpers. It is
framework-agnostic and designed to be easily unit-testable.
"""
import logging
import os
from pathlib import Path

from dotenv import load_dotenv


logger = logging.getLogger(__name__)

# Application paths
APP_NAME: str = "MailView"
BASE_DIR: Path = Path.home() / ".mailview"
SETTINGS_DB_PATH: Path = BASE_DIR / "settings.db"
LOG_DIR: Path = BASE_DIR / "logs"

# Paging and backend configuration
PAGE_SIZE: int = 20
BACKEND_TIMEOUT_SECONDS: float = 30.0

# Background sync interval; 0 disables the periodic loop
SYNC_INTERVAL_SECONDS: float = 0.0

DEFAULT_IMAP_PORT: int = 993

# Backend factory as "module:callable"; called with the push channel
BACKEND_FACTORY: str = ""


def _env_number(name: str, default, cast):
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = cast(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid value for {name}: {raw!r}")
        return default
    if value < 0:
        logger.warning(f"Ignoring negative value for {name}: {raw!r}")
        return default
    return value


def load_env() -> None:
    """
    Load environment variables and apply overrides.

    Reads a ``.env`` file if one exists, then applies the ``MAILVIEW_*``
    variables on top of the defaults above. It should be called at
    application startup, before the session is created.
    """
    global PAGE_SIZE, BACKEND_TIMEOUT_SECONDS, SYNC_INTERVAL_SECONDS
    global SETTINGS_DB_PATH, LOG_DIR, BACKEND_FACTORY

    load_dotenv()

    PAGE_SIZE = _env_number("MAILVIEW_PAGE_SIZE", PAGE_SIZE, int) or PAGE_SIZE
    BACKEND_TIMEOUT_SECONDS = _env_number(
        "MAILVIEW_BACKEND_TIMEOUT", BACKEND_TIMEOUT_SECONDS, float
    )
    SYNC_INTERVAL_SECONDS = _env_number(
        "MAILVIEW_SYNC_INTERVAL", SYNC_INTERVAL_SECONDS, float
    )

    db_path_env = os.environ.get("MAILVIEW_SETTINGS_DB")
    if db_path_env:
        SETTINGS_DB_PATH = Path(db_path_env)

    log_dir_env = os.environ.get("MAILVIEW_LOG_DIR")
    if log_dir_env:
        LOG_DIR = Path(log_dir_env)

    BACKEND_FACTORY = os.environ.get("MAILVIEW_BACKEND", BACKEND_FACTORY).strip()
