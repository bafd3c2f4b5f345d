from __future__ import annotations

from typing import Any, Mapping, Optional

from .models import Entity, Mutation, MutationOp
from .store.outbox import Outbox

# The only ticket status a client may set; the rest come from the shop counter.
CLIENT_TICKET_STATUS = "canceled"


def enqueue_price_alert_upsert(
    outbox: Outbox,
    user_id: str,
    alert: Mapping[str, Any],
    op: MutationOp | str = MutationOp.UPDATE,
) -> Mutation:
    """
    Queue a create-or-update of a price alert.

    The server inserts the alert when it does not exist yet, so "update"
    works for new alerts too. The payload is sent as given; include
    ``updated_at`` so the server can tell stale edits apart.

    Raises:
        ValueError: If the alert has no id or op is "delete"
    """
    op = MutationOp(op)
    if op is MutationOp.DELETE:
        raise ValueError("use enqueue_price_alert_delete() to delete an alert")
    if not alert.get("id"):
        raise ValueError("price alert payload requires an id")
    return outbox.enqueue(
        Mutation(user_id=user_id, entity=Entity.PRICE_ALERT, op=op, data=dict(alert))
    )


def enqueue_price_alert_delete(outbox: Outbox, user_id: str, alert_id: str) -> Mutation:
    if not alert_id:
        raise ValueError("alert_id is required")
    return outbox.enqueue(
        Mutation(
            user_id=user_id,
            entity=Entity.PRICE_ALERT,
            op=MutationOp.DELETE,
            data={"id": alert_id},
        )
    )


def enqueue_ticket_cancel(
    outbox: Outbox,
    user_id: str,
    ticket_id: str,
    updated_at: Optional[str] = None,
) -> Mutation:
    """
    Queue a cancellation of a shop ticket.

    ``updated_at`` is the client's last-known modification time; the server
    ignores the cancel when its copy is newer or already fulfilled.
    """
    if not ticket_id:
        raise ValueError("ticket_id is required")
    data: dict[str, Any] = {"id": ticket_id, "status": CLIENT_TICKET_STATUS}
    if updated_at:
        data["updated_at"] = updated_at
    return outbox.enqueue(
        Mutation(
            user_id=user_id,
            entity=Entity.SHOP_TICKET_STATUS,
            op=MutationOp.UPDATE,
            data=data,
        )
    )


def enqueue_ticket_create(
    outbox: Outbox, user_id: str, ticket: Mapping[str, Any]
) -> Mutation:
    """
    Queue a shop ticket created while offline.

    Raises:
        ValueError: If id, crop, diagnosis_key or a list of
                    recommended_classes is missing
    """
    missing = [f for f in ("id", "crop", "diagnosis_key") if not ticket.get(f)]
    if missing:
        raise ValueError(f"shop ticket payload is missing {', '.join(missing)}")
    if not isinstance(ticket.get("recommended_classes"), list):
        raise ValueError("shop ticket payload requires a recommended_classes list")
    return outbox.enqueue(
        Mutation(
            user_id=user_id,
            entity=Entity.SHOP_TICKET,
            op=MutationOp.INSERT,
            data=dict(ticket),
        )
    )
