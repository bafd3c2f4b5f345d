from __future__ import annotations

import random
import threading
import time
from collections import deque

import pytest

from raisync.config import StoreConfig
from raisync.models import Entity, Mutation, MutationOp
from raisync.store import LocalStore, Outbox


def _ids(mutations) -> list[str]:
    return [m.mutation_id for m in mutations]


class TestEnqueue:
    """Tests for enqueue()."""

    def test_enqueue_appends_in_order(self, outbox: Outbox, make_mutation) -> None:
        for label in "ABC":
            outbox.enqueue(make_mutation(label))

        assert _ids(outbox.peek()) == ["m-A", "m-B", "m-C"]
        assert len(outbox) == 3

    def test_enqueue_generates_id_and_timestamp_when_absent(self, outbox: Outbox) -> None:
        stored = outbox.enqueue(
            Mutation(
                user_id="user-1",
                entity="price_alert",
                op="update",
                data={"id": "alert-1"},
                mutation_id="",
                client_ts="",
            )
        )

        assert stored.mutation_id
        assert stored.client_ts.endswith("Z")
        assert outbox.peek() == [stored]

    def test_enqueue_keeps_supplied_id_and_timestamp(self, outbox: Outbox) -> None:
        mutation = Mutation(
            user_id="user-1",
            entity=Entity.PRICE_ALERT,
            op=MutationOp.DELETE,
            data={"id": "alert-1"},
            mutation_id="01HXYZ",
            client_ts="2024-05-01T10:00:00.000Z",
        )
        outbox.enqueue(mutation)

        [stored] = outbox.peek()
        assert stored.mutation_id == "01HXYZ"
        assert stored.client_ts == "2024-05-01T10:00:00.000Z"

    def test_payload_round_trips_through_store(self, outbox: Outbox) -> None:
        data = {
            "id": "ticket-1",
            "crop": "durian",
            "diagnosis_key": "phytophthora",
            "recommended_classes": ["metalaxyl", "fosetyl-al"],
            "dosage_note": "ฉีดพ่นทุก 7 วัน",
            "rai": 2.5,
            "shop_id": None,
        }
        outbox.enqueue(
            Mutation(user_id="user-1", entity=Entity.SHOP_TICKET, op=MutationOp.INSERT, data=data)
        )

        [stored] = outbox.peek()
        assert dict(stored.data) == data
        assert stored.entity is Entity.SHOP_TICKET
        assert stored.op is MutationOp.INSERT

    def test_enqueue_same_id_twice_keeps_one_entry(self, outbox: Outbox, make_mutation) -> None:
        first = outbox.enqueue(make_mutation("A"))
        outbox.enqueue(make_mutation("B"))

        stored = outbox.enqueue(make_mutation("A"))

        assert stored == first
        assert _ids(outbox.peek()) == ["m-A", "m-B"]


class TestDrain:
    """Tests for drain()."""

    def test_drain_returns_oldest_first_and_removes_them(self, outbox: Outbox, make_mutation) -> None:
        for label in "ABCD":
            outbox.enqueue(make_mutation(label))

        assert _ids(outbox.drain(2)) == ["m-A", "m-B"]
        assert _ids(outbox.peek()) == ["m-C", "m-D"]

    def test_drain_returns_at_most_what_is_queued(self, outbox: Outbox, make_mutation) -> None:
        for label in "ABC":
            outbox.enqueue(make_mutation(label))

        assert _ids(outbox.drain(25)) == ["m-A", "m-B", "m-C"]
        assert len(outbox) == 0

    def test_drain_empty_outbox_returns_empty_list(self, outbox: Outbox) -> None:
        assert outbox.drain(25) == []

    @pytest.mark.parametrize("n", [0, -1])
    def test_drain_rejects_non_positive_n(self, outbox: Outbox, n: int) -> None:
        with pytest.raises(ValueError):
            outbox.drain(n)

    def test_two_stores_on_one_file_never_drain_the_same_rows(
        self, db_url: str, outbox: Outbox, make_mutation
    ) -> None:
        for label in "ABCD":
            outbox.enqueue(make_mutation(label))
        other = LocalStore(StoreConfig(db_url=db_url)).open()
        drained_by_other: list[Mutation] = []

        def drain_other() -> None:
            drained_by_other.extend(Outbox(other).drain(25))

        try:
            # Hold a drain half done: rows selected, not yet deleted.
            with outbox.store.session() as session:
                rows = session.fetch_all(
                    "SELECT id, mutation_id FROM outbox ORDER BY position LIMIT 3"
                )
                thread = threading.Thread(target=drain_other)
                thread.start()
                time.sleep(0.2)
                session.execute_many(
                    "DELETE FROM outbox WHERE id = :id", [{"id": row["id"]} for row in rows]
                )
            thread.join(timeout=5.0)
        finally:
            other.close()

        assert [row["mutation_id"] for row in rows] == ["m-A", "m-B", "m-C"]
        assert _ids(drained_by_other) == ["m-D"]
        assert len(outbox) == 0


class TestRequeueFront:
    """Tests for requeue_front()."""

    def test_requeued_entries_go_ahead_of_newer_ones(self, outbox: Outbox, make_mutation) -> None:
        for label in "ABC":
            outbox.enqueue(make_mutation(label))
        batch = outbox.drain(2)
        outbox.enqueue(make_mutation("D"))

        assert outbox.requeue_front(batch) == 2
        assert _ids(outbox.peek()) == ["m-A", "m-B", "m-C", "m-D"]

    def test_failed_entry_alone_returns_to_front(self, outbox: Outbox, make_mutation) -> None:
        for label in "ABC":
            outbox.enqueue(make_mutation(label))
        batch = outbox.drain(25)
        assert _ids(batch) == ["m-A", "m-B", "m-C"]

        # D is enqueued while the push is in flight.
        outbox.enqueue(make_mutation("D"))
        outbox.requeue_front([batch[1]])

        assert _ids(outbox.peek()) == ["m-B", "m-D"]

    def test_later_requeue_lands_in_front_of_earlier_one(self, outbox: Outbox, make_mutation) -> None:
        outbox.requeue_front([make_mutation("X")])
        outbox.requeue_front([make_mutation("Y"), make_mutation("Z")])

        assert _ids(outbox.peek()) == ["m-Y", "m-Z", "m-X"]

    def test_requeue_into_empty_outbox(self, outbox: Outbox, make_mutation) -> None:
        outbox.requeue_front([make_mutation("A"), make_mutation("B")])
        outbox.enqueue(make_mutation("C"))

        assert _ids(outbox.drain(25)) == ["m-A", "m-B", "m-C"]

    def test_requeue_skips_already_queued_mutation(self, outbox: Outbox, make_mutation) -> None:
        outbox.enqueue(make_mutation("A"))
        outbox.enqueue(make_mutation("B"))

        assert outbox.requeue_front([make_mutation("B"), make_mutation("C")]) == 1
        assert _ids(outbox.peek()) == ["m-C", "m-A", "m-B"]

    def test_requeue_nothing_is_noop(self, outbox: Outbox) -> None:
        assert outbox.requeue_front([]) == 0
        assert len(outbox) == 0


def test_fifo_order_holds_for_random_enqueue_drain_sequences(outbox: Outbox, make_mutation) -> None:
    rng = random.Random(20240501)
    model: deque[str] = deque()
    counter = 0

    for _ in range(200):
        if rng.random() < 0.6:
            label = str(counter)
            counter += 1
            outbox.enqueue(make_mutation(label))
            model.append(f"m-{label}")
        else:
            n = rng.randint(1, 5)
            drained = _ids(outbox.drain(n))
            expected = [model.popleft() for _ in range(min(n, len(model)))]
            assert drained == expected

    assert _ids(outbox.peek()) == list(model)


def test_peek_limit_does_not_remove(outbox: Outbox, make_mutation) -> None:
    for label in "ABC":
        outbox.enqueue(make_mutation(label))

    assert _ids(outbox.peek(2)) == ["m-A", "m-B"]
    assert len(outbox) == 3
