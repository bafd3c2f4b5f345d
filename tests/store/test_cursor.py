from __future__ import annotations

import pytest

from raisync.store import CursorStore, LocalStore


def test_cursor_defaults_to_empty_string(cursor: CursorStore) -> None:
    assert cursor.get() == ""


def test_set_then_get(cursor: CursorStore) -> None:
    cursor.set("2024-05-01T00:00:00.000Z")
    assert cursor.get() == "2024-05-01T00:00:00.000Z"


def test_set_overwrites_previous_value(cursor: CursorStore) -> None:
    cursor.set("c1")
    cursor.set("c2")
    assert cursor.get() == "c2"


def test_set_within_session_rolls_back_with_it(store: LocalStore, cursor: CursorStore) -> None:
    cursor.set("c1")

    with pytest.raises(RuntimeError):
        with store.session() as session:
            cursor.set("c2", session=session)
            assert cursor.get(session=session) == "c2"
            raise RuntimeError("merge failed")

    assert cursor.get() == "c1"


def test_cursors_with_different_keys_are_independent(store: LocalStore) -> None:
    first = CursorStore(store, key="user-1")
    second = CursorStore(store, key="user-2")

    first.set("a")
    assert second.get() == ""


def test_set_rejects_non_string(cursor: CursorStore) -> None:
    with pytest.raises(TypeError):
        cursor.set(None)  # type: ignore[arg-type]
