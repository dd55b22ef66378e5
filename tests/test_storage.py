from pathlib import Path

from flowhooks.storage import SQLiteHookStore


def test_sqlite_store_records_history_newest_first(tmp_path: Path) -> None:
    store = SQLiteHookStore(tmp_path / "nested" / "hooks.db")

    store.store_hook_data("session-completion", "session-completed", {"session_id": "s1"})
    store.store_hook_data("session-completion", "session-failed", {"session_id": "s2", "retryable": True})
    store.store_hook_data("other", "session-completed", {"session_id": "s3"})

    history = store.get_hook_history("session-completion")
    assert [item["data"]["session_id"] for item in history] == ["s2", "s1"]
    assert history[0]["event"] == "session-failed"
    assert history[0]["stored_at"]

    failed = store.get_hook_history("session-completion", event="session-failed")
    assert len(failed) == 1
    assert failed[0]["data"]["retryable"] is True

    assert len(store.get_hook_history("session-completion", limit=1)) == 1
