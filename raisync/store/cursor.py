from __future__ import annotations

from typing import Optional

from .local_store import LocalStore
from .session import StoreSession

CURSOR_KEY = "offline.cursor"


class CursorStore:
    """
    Holds the opaque server-issued token marking the last applied delta pull.

    An empty string means no pull has succeeded yet.
    """

    def __init__(self, store: LocalStore, key: str = CURSOR_KEY) -> None:
        self.store = store
        self.key = key

    def get(self, session: Optional[StoreSession] = None) -> str:
        if session is not None:
            return self._get(session)
        with self.store.session() as own:
            return self._get(own)

    def set(self, value: str, session: Optional[StoreSession] = None) -> None:
        """
        Store a new cursor. Pass an active session to make the write part
        of a larger transaction (e.g. a merge).
        """
        if not isinstance(value, str):
            raise TypeError(f"cursor must be a string, got {type(value).__name__}")
        if session is not None:
            self._set(session, value)
            return
        with self.store.session() as own:
            self._set(own, value)

    def _get(self, session: StoreSession) -> str:
        value = session.execute_scalar(
            "SELECT value FROM sync_state WHERE key = :key", {"key": self.key}
        )
        return value or ""

    def _set(self, session: StoreSession, value: str) -> None:
        session.execute(
            "INSERT INTO sync_state (key, value) VALUES (:key, :value) "
            "ON CONFLICT (key) DO UPDATE SET value = excluded.value",
            {"key": self.key, "value": value},
        )
