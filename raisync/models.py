from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional

from .errors import ProtocolError


class Entity(str, Enum):
    PRICE_ALERT = "price_alert"
    SHOP_TICKET = "shop_ticket"
    SHOP_TICKET_STATUS = "shop_ticket_status"


class MutationOp(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


def new_mutation_id() -> str:
    return uuid.uuid4().hex


def utc_timestamp() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and a Z suffix."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class Mutation:
    """
    A single local change waiting for server acknowledgment.

    Immutable once created. ``mutation_id`` is the only identity the server
    sees; re-sending the same mutation must reuse it.
    """
    user_id: str
    entity: Entity
    op: MutationOp
    data: Mapping[str, Any]
    mutation_id: str = field(default_factory=new_mutation_id)
    client_ts: str = field(default_factory=utc_timestamp)

    def __post_init__(self) -> None:
        # Accept plain strings for entity/op; stored values are always enums.
        object.__setattr__(self, "entity", Entity(self.entity))
        object.__setattr__(self, "op", MutationOp(self.op))
        if not self.user_id:
            raise ValueError("user_id is required for a mutation")
        if not self.mutation_id:
            object.__setattr__(self, "mutation_id", new_mutation_id())
        if not self.client_ts:
            object.__setattr__(self, "client_ts", utc_timestamp())

    def to_dict(self) -> dict[str, Any]:
        """Wire representation used in the push request body."""
        return {
            "mutation_id": self.mutation_id,
            "user_id": self.user_id,
            "entity": self.entity.value,
            "op": self.op.value,
            "data": dict(self.data),
            "client_ts": self.client_ts,
        }

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Mutation":
        return cls(
            user_id=raw["user_id"],
            entity=Entity(raw["entity"]),
            op=MutationOp(raw["op"]),
            data=raw.get("data") or {},
            mutation_id=raw.get("mutation_id") or "",
            client_ts=raw.get("client_ts") or "",
        )


@dataclass(frozen=True)
class SyncQuery:
    user_id: str
    since: str = ""
    areas: tuple[str, ...] = ()
    crops: tuple[str, ...] = ()

    def to_params(self) -> dict[str, str]:
        """Query-string parameters; empty filters are left out."""
        params = {"user_id": self.user_id, "since": self.since}
        if self.areas:
            params["areas"] = ",".join(self.areas)
        if self.crops:
            params["crops"] = ",".join(self.crops)
        return params


REF_COLLECTIONS = ("shops", "product_classes")
USER_COLLECTIONS = ("price_alerts", "shop_tickets")


def _collections(raw: Any, section: str) -> dict[str, list[dict[str, Any]]]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ProtocolError(f"sync response field {section!r} must be an object")

    out: dict[str, list[dict[str, Any]]] = {}
    for name, rows in raw.items():
        if rows is None:
            continue
        if not isinstance(rows, list):
            raise ProtocolError(f"sync response collection {section}.{name} must be a list")
        for row in rows:
            if not isinstance(row, Mapping):
                raise ProtocolError(f"sync response collection {section}.{name} contains a non-object row")
        out[name] = [dict(row) for row in rows]
    return out


@dataclass(frozen=True)
class SyncBundle:
    """Parsed response of GET /api/cache/sync."""
    server_time: str
    next_since: str
    refs: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    user: dict[str, list[dict[str, Any]]] = field(default_factory=dict)

    @classmethod
    def from_response(cls, payload: Any) -> "SyncBundle":
        """
        Validate and parse a pull response body.

        Raises:
            ProtocolError: If the payload is not a sync bundle
        """
        if not isinstance(payload, Mapping):
            raise ProtocolError("sync response must be a JSON object")

        next_since = payload.get("next_since")
        if not isinstance(next_since, str) or not next_since:
            raise ProtocolError("sync response is missing next_since")

        server_time = payload.get("server_time") or ""
        if not isinstance(server_time, str):
            raise ProtocolError("sync response server_time must be a string")

        return cls(
            server_time=server_time,
            next_since=next_since,
            refs=_collections(payload.get("refs"), "refs"),
            user=_collections(payload.get("user"), "user"),
        )

    def collections(self) -> list[tuple[str, list[dict[str, Any]]]]:
        """All (collection, rows) pairs, reference data first."""
        return list(self.refs.items()) + list(self.user.items())


@dataclass(frozen=True)
class PushOutcome:
    submitted: int = 0
    applied: int = 0
    requeued: int = 0
    results: tuple[Mapping[str, Any], ...] = ()


@dataclass
class SyncReport:
    """What one sync() invocation did."""
    push: PushOutcome
    push_error: Optional[str]
    bundle: SyncBundle
    merged: dict[str, int]
    cursor: str
