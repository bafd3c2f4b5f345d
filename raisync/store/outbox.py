from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from typing import Any, Optional

from .local_store import LocalStore
from .session import StoreSession
from ..models import Mutation

logger = logging.getLogger(__name__)


def _row_to_mutation(row: dict[str, Any]) -> Mutation:
    return Mutation.from_dict({**row, "data": json.loads(row["data"])})


def _mutation_params(mutation: Mutation, position: int) -> dict[str, Any]:
    return {
        "position": position,
        "mutation_id": mutation.mutation_id,
        "user_id": mutation.user_id,
        "entity": mutation.entity.value,
        "op": mutation.op.value,
        "data": json.dumps(dict(mutation.data), sort_keys=True),
        "client_ts": mutation.client_ts,
    }


_INSERT_SQL = (
    "INSERT INTO outbox (position, mutation_id, user_id, entity, op, data, client_ts) "
    "VALUES (:position, :mutation_id, :user_id, :entity, :op, :data, :client_ts)"
)

_SELECT_COLUMNS = "SELECT id, mutation_id, user_id, entity, op, data, client_ts FROM outbox"

_SELECT_SQL = f"{_SELECT_COLUMNS} ORDER BY position ASC"


class Outbox:
    """
    Durable FIFO of local mutations awaiting server acknowledgment.

    Insertion order is retry order. The only way to jump the queue is
    requeue_front(), used for mutations a push attempt did not get applied.

    Each operation runs in its own store session, so a drain() is atomic:
    the returned entries are gone from the store when it returns.

    Usage:
        outbox = Outbox(store)
        outbox.enqueue(Mutation(user_id="u1", entity="price_alert", op="update", data={...}))
        batch = outbox.drain(25)
        ...
        outbox.requeue_front(failed)
    """

    def __init__(self, store: LocalStore) -> None:
        self.store = store

    def enqueue(self, mutation: Mutation) -> Mutation:
        """
        Append a mutation at the tail.

        ``mutation_id`` and ``client_ts`` are filled in by Mutation itself
        when the caller leaves them empty. Enqueuing a ``mutation_id`` that
        is already queued is a no-op: the queued copy keeps its place.

        Returns:
            The stored mutation

        Raises:
            StoreError: If the local store fails
        """
        with self.store.session() as session:
            queued = session.fetch_one(
                f"{_SELECT_COLUMNS} WHERE mutation_id = :mutation_id",
                {"mutation_id": mutation.mutation_id},
            )
            if queued is not None:
                logger.info(
                    "Mutation %s already queued; not enqueued twice",
                    mutation.mutation_id,
                )
                return _row_to_mutation(queued)
            tail = session.execute_scalar("SELECT MAX(position) FROM outbox")
            position = (tail if tail is not None else 0) + 1
            session.execute(_INSERT_SQL, _mutation_params(mutation, position))

        logger.debug(
            "Enqueued mutation %s (%s/%s) at position %d",
            mutation.mutation_id,
            mutation.entity.value,
            mutation.op.value,
            position,
        )
        return mutation

    def drain(self, n: int) -> list[Mutation]:
        """
        Atomically remove and return up to n oldest entries.

        Args:
            n: Maximum number of entries to remove; must be > 0

        Returns:
            Removed mutations in retry order (may be empty)
        """
        if not isinstance(n, int) or n <= 0:
            raise ValueError("n must be a positive integer (> 0)")

        with self.store.session() as session:
            rows = session.fetch_all(f"{_SELECT_SQL} LIMIT :n", {"n": n})
            if rows:
                session.execute_many(
                    "DELETE FROM outbox WHERE id = :id",
                    [{"id": row["id"]} for row in rows],
                )
        return [_row_to_mutation(row) for row in rows]

    def requeue_front(self, mutations: Iterable[Mutation]) -> int:
        """
        Reinsert mutations at the head, preserving their relative order.

        A mutation whose ``mutation_id`` is already queued is skipped and
        logged; the queued copy keeps its place.

        Returns:
            Number of mutations reinserted
        """
        batch = list(mutations)
        if not batch:
            return 0

        with self.store.session() as session:
            return self._requeue_front(session, batch)

    def _requeue_front(self, session: StoreSession, batch: list[Mutation]) -> int:
        queued = {
            row["mutation_id"]
            for row in session.fetch_all("SELECT mutation_id FROM outbox")
        }
        fresh: list[Mutation] = []
        for mutation in batch:
            if mutation.mutation_id in queued:
                logger.info(
                    "Mutation %s already queued; not requeued twice",
                    mutation.mutation_id,
                )
                continue
            queued.add(mutation.mutation_id)
            fresh.append(mutation)

        if not fresh:
            return 0

        head = session.execute_scalar("SELECT MIN(position) FROM outbox")
        first = (head if head is not None else 1) - len(fresh)
        session.execute_many(
            _INSERT_SQL,
            [_mutation_params(m, first + i) for i, m in enumerate(fresh)],
        )
        return len(fresh)

    def peek(self, n: Optional[int] = None) -> list[Mutation]:
        """
        Queued mutations in retry order, without removing them.
        """
        with self.store.session() as session:
            if n is None:
                rows = session.fetch_all(_SELECT_SQL)
            else:
                rows = session.fetch_all(f"{_SELECT_SQL} LIMIT :n", {"n": n})
        return [_row_to_mutation(row) for row in rows]

    def __len__(self) -> int:
        with self.store.session() as session:
            return int(session.execute_scalar("SELECT COUNT(*) FROM outbox") or 0)
