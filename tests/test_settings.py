from mailview.core.settings import (
    PAGE_KEY,
    MemorySettingsStore,
    SqliteSettingsStore,
    ViewState,
)
from mailview.models import Page
from mailview.storage import db


def test_view_state_defaults_to_login():
    assert ViewState(MemorySettingsStore()).page is Page.LOGIN


def test_view_state_ignores_unknown_stored_page():
    assert ViewState(MemorySettingsStore({PAGE_KEY: "compose"})).page is Page.LOGIN


def test_view_state_writes_on_change_only():
    store = MemorySettingsStore()
    state = ViewState(store)
    emitted = []
    state.page_changed.connect(emitted.append)

    state.page = Page.LOGIN
    assert PAGE_KEY not in store.data

    state.page = Page.MAIL
    assert store.data[PAGE_KEY] == "mail"
    assert emitted == [Page.MAIL]


def test_page_survives_restart_with_sqlite(tmp_path):
    path = tmp_path / "nested" / "settings.db"
    store = SqliteSettingsStore(path)
    ViewState(store).page = Page.MAIL
    store.close()

    reopened = SqliteSettingsStore(path)
    try:
        assert ViewState(reopened).page is Page.MAIL
        assert reopened.all() == {PAGE_KEY: "mail"}
    finally:
        reopened.close()


def test_db_helpers_round_trip_json_and_raw_values():
    conn = db.get_connection(":memory:")
    db.init_db(conn)

    db.save_setting(conn, "sizes", {"page": 20})
    conn.execute("INSERT INTO settings (key, value) VALUES (?, ?)", ("legacy", "not json"))

    assert db.get_setting(conn, "sizes") == {"page": 20}
    assert db.get_setting(conn, "legacy") == "not json"
    assert db.get_setting(conn, "missing", "fallback") == "fallback"
    assert db.get_settings(conn) == {"sizes": {"page": 20}, "legacy": "not json"}
    conn.close()


def test_sqlite_store_uses_configured_path(tmp_path, monkeypatch):
    from mailview import config

    monkeypatch.setattr(config, "SETTINGS_DB_PATH", tmp_path / "default.db")
    store = SqliteSettingsStore()
    store.set("page", "mail")
    store.close()

    assert (tmp_path / "default.db").exists()

