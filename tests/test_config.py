from pathlib import Path

import pytest

from mailview import config


@pytest.fixture(autouse=True)
def restore_config(monkeypatch):
    # load_env rebinds module globals; monkeypatch restores them afterwards
    for name in ("PAGE_SIZE", "BACKEND_TIMEOUT_SECONDS", "SYNC_INTERVAL_SECONDS",
                 "SETTINGS_DB_PATH", "LOG_DIR", "BACKEND_FACTORY"):
        monkeypatch.setattr(config, name, getattr(config, name))
    monkeypatch.setattr(config, "load_dotenv", lambda: False)
    for name in ("MAILVIEW_PAGE_SIZE", "MAILVIEW_BACKEND_TIMEOUT", "MAILVIEW_SYNC_INTERVAL",
                 "MAILVIEW_SETTINGS_DB", "MAILVIEW_LOG_DIR", "MAILVIEW_BACKEND"):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    config.load_env()

    assert config.PAGE_SIZE == 20
    assert config.BACKEND_TIMEOUT_SECONDS == 30.0
    assert config.SYNC_INTERVAL_SECONDS == 0.0


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("MAILVIEW_PAGE_SIZE", "50")
    monkeypatch.setenv("MAILVIEW_BACKEND_TIMEOUT", "2.5")
    monkeypatch.setenv("MAILVIEW_SYNC_INTERVAL", "60")
    monkeypatch.setenv("MAILVIEW_SETTINGS_DB", str(tmp_path / "s.db"))
    monkeypatch.setenv("MAILVIEW_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("MAILVIEW_BACKEND", " mail_backend:create ")

    config.load_env()

    assert config.PAGE_SIZE == 50
    assert config.BACKEND_TIMEOUT_SECONDS == 2.5
    assert config.SYNC_INTERVAL_SECONDS == 60.0
    assert config.SETTINGS_DB_PATH == Path(tmp_path / "s.db")
    assert config.LOG_DIR == Path(tmp_path / "logs")
    assert config.BACKEND_FACTORY == "mail_backend:create"


@pytest.mark.parametrize("raw", ["twenty", "-5", "0"])
def test_invalid_page_size_keeps_default(monkeypatch, raw):
    monkeypatch.setenv("MAILVIEW_PAGE_SIZE", raw)

    config.load_env()

    assert config.PAGE_SIZE == 20


def test_dotenv_file_is_loaded(monkeypatch):
    loaded = []
    monkeypatch.setattr(config, "load_dotenv", lambda: loaded.append(True))

    config.load_env()

    assert loaded == [True]
