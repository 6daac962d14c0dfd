"""
Persisted view state.

The active top-level page (login or mail) is the only state that survives a
process restart. It is read once when the session starts and written on every
change, through a small :class:`SettingsStore` interface so any durable
key-value store can back it.
"""
import logging
import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional, Union

from PyQt5.QtCore import QObject, pyqtSignal

from mailview.models import Page
from mailview.storage import db


logger = logging.getLogger(__name__)

PAGE_KEY = "page"


class SettingsStore(ABC):
    """Durable key-value store."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        pass

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        pass

    def close(self) -> None:
        pass


class MemorySettingsStore(SettingsStore):
    """Non-durable store for tests and embedding."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self.data: Dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.data[key] = value


class SqliteSettingsStore(SettingsStore):
    """Store backed by the SQLite settings table."""

    def __init__(self, db_path: Optional[Union[str, Path]] = None):
        self._conn = db.get_connection(db_path)
        db.init_db(self._conn)

    def get(self, key: str, default: Any = None) -> Any:
        try:
            return db.get_setting(self._conn, key, default)
        except sqlite3.Error as e:
            logger.warning(f"Could not read setting {key}: {e}")
            return default

    def set(self, key: str, value: Any) -> None:
        db.save_setting(self._conn, key, value)

    def all(self) -> Dict[str, Any]:
        return db.get_settings(self._conn)

    def close(self) -> None:
        self._conn.close()


class ViewState(QObject):
    """
    The active top-level page, restored at init and saved on change.

    Signals:
        page_changed(Page)
    """

    page_changed = pyqtSignal(object)

    def __init__(self, store: SettingsStore, parent: Optional[QObject] = None):
        super().__init__(parent)
        self._store = store
        raw = store.get(PAGE_KEY)
        try:
            self._page = Page(raw) if raw is not None else Page.LOGIN
        except ValueError:
            logger.warning(f"Ignoring unknown stored page {raw!r}")
            self._page = Page.LOGIN

    @property
    def page(self) -> Page:
        return self._page

    @page.setter
    def page(self, page: Page) -> None:
        if page is self._page:
            return
        self._page = page
        try:
            self._store.set(PAGE_KEY, page.value)
        except (OSError, sqlite3.Error) as e:
            logger.warning(f"Could not persist page {page.value}: {e}")
        self.page_changed.emit(page)
