import logging

import pytest

from mailview import app, config
from mailview.utils import logging_cfg
from mailview.utils.errors import MailViewError

from conftest import FakeBackend


created = []


def make_backend(push):
    backend = FakeBackend()
    backend.add_account(1, ["INBOX", "Work"])
    backend.fill(1, "INBOX", [2, 1])
    backend.push = push
    created.append(backend)
    return backend


def not_a_backend(push):
    return object()


@pytest.fixture(autouse=True)
def isolated(monkeypatch, tmp_path):
    for name in ("PAGE_SIZE", "BACKEND_TIMEOUT_SECONDS", "SYNC_INTERVAL_SECONDS",
                 "SETTINGS_DB_PATH", "LOG_DIR", "BACKEND_FACTORY"):
        monkeypatch.setattr(config, name, getattr(config, name))
    monkeypatch.setattr(config, "load_dotenv", lambda: False)
    monkeypatch.setenv("MAILVIEW_SETTINGS_DB", str(tmp_path / "settings.db"))
    monkeypatch.setenv("MAILVIEW_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.delenv("MAILVIEW_BACKEND", raising=False)
    monkeypatch.setattr(config, "SETTINGS_DB_PATH", tmp_path / "settings.db")
    created.clear()

    root = logging.getLogger()
    saved = (root.level, list(root.handlers))
    # Detach the test runner's handlers so setup_logging does not close them
    for handler in saved[1]:
        root.removeHandler(handler)
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(saved[0])
    for handler in saved[1]:
        root.addHandler(handler)


@pytest.mark.parametrize("path", ["no_colon", ":make_backend", "missing_module_xyz:create",
                                  "test_app:missing", "test_app:not_a_backend"])
def test_bad_backend_paths_are_rejected(path, push):
    with pytest.raises(MailViewError):
        app.load_backend(path, push)


@pytest.mark.asyncio
async def test_run_once_starts_and_disposes_a_session():
    session = await app.run("test_app:make_backend", once=True)

    assert [a.id for a in session.accounts] == [1]
    assert [m.uid for m in session.messages] == [2, 1]
    assert not session.started
    assert created[0].push.subscriber_count("UserLoggedOut") == 0


def test_main_loads_environment_and_logs_to_file(monkeypatch, tmp_path):
    monkeypatch.setenv("MAILVIEW_BACKEND", "test_app:make_backend")

    assert app.main(["--once"]) == 0

    log_file = tmp_path / "logs" / logging_cfg.LOG_FILE_NAME
    for handler in logging.getLogger().handlers:
        handler.flush()
    text = log_file.read_text(encoding="utf-8")
    assert "1 account(s), 2 mailbox(es)" in text
    assert "Session disposed" in text
    assert len(created) == 1


def test_main_reports_unusable_backend(tmp_path):
    assert app.main(["--backend", "test_app:not_a_backend", "--once",
                     "--log-dir", str(tmp_path)]) == 1


def test_main_requires_a_backend():
    with pytest.raises(SystemExit) as info:
        app.main(["--once"])
    assert info.value.code == 2
