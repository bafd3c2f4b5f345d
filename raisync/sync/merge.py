from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Optional

from ..errors import ProtocolError
from ..models import SyncBundle
from ..store.session import StoreSession
from .metrics import observe_merge

logger = logging.getLogger(__name__)

# Field holding the record key, per collection. Anything else uses "id".
RECORD_KEY_FIELDS: Mapping[str, str] = {
    "product_classes": "key",
}

_UPSERT_SQL = (
    "INSERT INTO records (collection, record_key, data, updated_at) "
    "VALUES (:collection, :record_key, :data, :updated_at) "
    "ON CONFLICT (collection, record_key) DO UPDATE SET "
    "data = excluded.data, updated_at = excluded.updated_at"
)


def record_key_field(collection: str) -> str:
    return RECORD_KEY_FIELDS.get(collection, "id")


def _record_params(collection: str, row: Mapping[str, Any]) -> dict[str, Any]:
    key_field = record_key_field(collection)
    key = row.get(key_field)
    if key is None or key == "":
        raise ProtocolError(
            f"{collection} record without {key_field!r}; cannot merge it"
        )
    updated_at = row.get("updated_at")
    return {
        "collection": collection,
        "record_key": str(key),
        "data": json.dumps(dict(row), sort_keys=True, default=str),
        "updated_at": None if updated_at is None else str(updated_at),
    }


def merge_bundle(session: StoreSession, bundle: SyncBundle) -> dict[str, int]:
    """
    Upsert every record of a pull response into the local store.

    The server result wins: an incoming record replaces the stored copy
    with the same (collection, key) unconditionally. Replaying the same
    bundle leaves the store unchanged.

    All rows are validated before anything is written, so a bad record
    leaves the session untouched. The caller owns the transaction.

    Args:
        session: Active StoreSession
        bundle: Parsed pull response

    Returns:
        Number of records upserted per collection

    Raises:
        ProtocolError: If a record lacks its key field
    """
    prepared = [
        (collection, [_record_params(collection, row) for row in rows])
        for collection, rows in bundle.collections()
    ]

    counts: dict[str, int] = {}
    for collection, params in prepared:
        session.execute_many(_UPSERT_SQL, params)
        counts[collection] = counts.get(collection, 0) + len(params)

    logger.debug("Merged %s", counts)
    return counts


def observe_merged(counts: Mapping[str, int]) -> None:
    try:
        for collection, count in counts.items():
            if count:
                observe_merge(collection, count)
    except Exception:
        logger.debug("Failed to record merge metrics", exc_info=True)


def get_record(
    session: StoreSession, collection: str, key: str
) -> Optional[dict[str, Any]]:
    """Merged copy of one server record, or None."""
    row = session.fetch_one(
        "SELECT data FROM records WHERE collection = :collection AND record_key = :key",
        {"collection": collection, "key": str(key)},
    )
    if row is None:
        return None
    return json.loads(row["data"])


def list_records(session: StoreSession, collection: str) -> list[dict[str, Any]]:
    """All merged records of a collection, ordered by key."""
    rows = session.fetch_all(
        "SELECT data FROM records WHERE collection = :collection ORDER BY record_key",
        {"collection": collection},
    )
    return [json.loads(row["data"]) for row in rows]
