from .config import StoreConfig, SyncConfig
from .errors import ProtocolError, RaisyncError, StoreError, TransportError
from .models import Entity, Mutation, MutationOp, SyncBundle
from .store import CursorStore, LocalStore, Outbox
from .sync import HttpTransport, SyncOrchestrator, SyncRunner

__all__ = [
    "StoreConfig",
    "SyncConfig",
    "RaisyncError",
    "StoreError",
    "TransportError",
    "ProtocolError",
    "Entity",
    "Mutation",
    "MutationOp",
    "SyncBundle",
    "LocalStore",
    "Outbox",
    "CursorStore",
    "HttpTransport",
    "SyncOrchestrator",
    "SyncRunner",
]
