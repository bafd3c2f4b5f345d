from __future__ import annotations

from .merge import get_record, list_records, merge_bundle
from .orchestrator import SyncOrchestrator
from .runner import SyncRunner
from .transport import HttpTransport, SyncTransport

__all__ = [
    "SyncOrchestrator",
    "SyncRunner",
    "SyncTransport",
    "HttpTransport",
    "merge_bundle",
    "get_record",
    "list_records",
]
