from .cursor import CursorStore
from .local_store import LocalStore
from .outbox import Outbox
from .session import StoreSession

__all__ = [
    "LocalStore",
    "StoreSession",
    "Outbox",
    "CursorStore",
]
