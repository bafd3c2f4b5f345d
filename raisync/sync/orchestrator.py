from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Sequence
from typing import Any, Mapping, Optional

from ..config import SyncConfig
from ..errors import ProtocolError, RaisyncError, TransportError
from ..models import Mutation, PushOutcome, SyncBundle, SyncQuery, SyncReport
from ..store.cursor import CursorStore
from ..store.local_store import LocalStore
from ..store.outbox import Outbox
from .merge import merge_bundle, observe_merged
from .metrics import (
    observe_cycle,
    observe_pull,
    observe_push,
    observe_pushed_mutations,
    set_outbox_depth,
)
from .transport import SyncTransport

logger = logging.getLogger(__name__)


def _observe(observe: Callable[..., None], *args: Any) -> None:
    # Metric errors must never mask the real outcome of a cycle.
    try:
        observe(*args)
    except Exception:
        logger.debug("Failed to record %s", getattr(observe, "__name__", observe), exc_info=True)


def _push_results(payload: Any) -> list[Any]:
    if not isinstance(payload, Mapping):
        raise ProtocolError("queue response must be a JSON object")
    results = payload.get("results")
    if not isinstance(results, list):
        raise ProtocolError("queue response is missing results[]")
    return results


class SyncOrchestrator:
    """
    Runs the offline sync protocol against one user's server state.

    One sync() call:
    1) pushes up to ``batch_size`` outbox entries in one request
    2) requeues, at the outbox head, every entry the server did not apply
    3) pulls the deltas since the stored cursor
    4) merges them into the local store (server result wins)
    5) advances the cursor to ``next_since``, in the same transaction as 4

    Failure semantics:
    - A failed push restores the whole batch to the outbox head; inside
      sync() the error is logged and the pull still runs.
    - A failed pull or merge propagates and leaves the cursor untouched,
      so the next cycle retries from the same point.

    Cycles are serialized: a second sync() or push_outbox() waits until the
    running one is finished.

    Usage:
        orchestrator = SyncOrchestrator(store, HttpTransport(url), config)
        report = orchestrator.sync(areas=["1001"], crops=["rice"])
    """

    def __init__(
        self,
        store: LocalStore,
        transport: SyncTransport,
        config: SyncConfig,
        *,
        outbox: Optional[Outbox] = None,
        cursor: Optional[CursorStore] = None,
    ) -> None:
        self.store = store
        self.transport = transport
        self.config = config
        self.outbox = outbox if outbox is not None else Outbox(store)
        self.cursor = cursor if cursor is not None else CursorStore(store)
        self._cycle_lock = threading.Lock()

    def sync(
        self,
        areas: Optional[Iterable[str]] = None,
        crops: Optional[Iterable[str]] = None,
    ) -> SyncReport:
        """
        Run one push-then-pull cycle.

        Args:
            areas: Optional administrative area codes scoping reference data
            crops: Optional crop keys scoping reference data

        Returns:
            SyncReport describing the push outcome, the merge and the new cursor

        Raises:
            TransportError: If the pull request fails
            ProtocolError: If the pull response is malformed
            StoreError: If the local store fails
        """
        with self._cycle_lock:
            try:
                report = self._cycle(areas, crops)
            except Exception:
                _observe(observe_cycle, "error")
                raise
            _observe(observe_cycle, "success")
            return report

    def _cycle(
        self,
        areas: Optional[Iterable[str]],
        crops: Optional[Iterable[str]],
    ) -> SyncReport:
        push_error: Optional[str] = None
        try:
            outcome = self._push()
        except (TransportError, ProtocolError) as exc:
            push_error = str(exc)
            outcome = PushOutcome()
            logger.warning("Push failed; mutations kept for the next cycle: %s", exc)

        bundle = self._pull(areas, crops)
        with self.store.session() as session:
            merged = merge_bundle(session, bundle)
            self.cursor.set(bundle.next_since, session=session)

        observe_merged(merged)
        logger.info(
            "Sync done: pushed=%d requeued=%d merged=%s cursor=%s",
            outcome.applied,
            outcome.requeued,
            merged,
            bundle.next_since,
        )
        return SyncReport(
            push=outcome,
            push_error=push_error,
            bundle=bundle,
            merged=merged,
            cursor=bundle.next_since,
        )

    def push_outbox(self) -> PushOutcome:
        """
        Push one batch outside a full cycle (e.g. when the network is back).

        Raises:
            TransportError: If the request fails; the batch is back at the
                            outbox head when this is raised
            ProtocolError: If the response is malformed; batch restored likewise
            StoreError: If the local store fails
        """
        with self._cycle_lock:
            return self._push()

    def pull(
        self,
        areas: Optional[Iterable[str]] = None,
        crops: Optional[Iterable[str]] = None,
    ) -> SyncBundle:
        """
        Fetch the deltas since the stored cursor without merging them.
        """
        with self._cycle_lock:
            return self._pull(areas, crops)

    def _push(self) -> PushOutcome:
        batch = self.outbox.drain(self.config.batch_size)
        if not batch:
            return PushOutcome()

        start = time.monotonic()
        try:
            results = _push_results(self.transport.push(batch))
        except Exception:
            # Restore before propagating; the batch must never be lost.
            restored = self.outbox.requeue_front(batch)
            _observe(observe_push, "error", time.monotonic() - start)
            _observe(observe_pushed_mutations, "restored", restored)
            self._observe_depth()
            raise
        _observe(observe_push, "success", time.monotonic() - start)

        failed = self._unacknowledged(batch, results)
        requeued = self.outbox.requeue_front(failed) if failed else 0
        applied = len(batch) - len(failed)

        _observe(observe_pushed_mutations, "applied", applied)
        _observe(observe_pushed_mutations, "requeued", requeued)
        self._observe_depth()

        return PushOutcome(
            submitted=len(batch),
            applied=applied,
            requeued=requeued,
            results=tuple(r for r in results if isinstance(r, Mapping)),
        )

    def _unacknowledged(
        self, batch: Sequence[Mutation], results: Sequence[Any]
    ) -> list[Mutation]:
        # Results pair with the batch by position; a missing result is a failure.
        failed: list[Mutation] = []
        for index, mutation in enumerate(batch):
            result = results[index] if index < len(results) else None
            status = result.get("status") if isinstance(result, Mapping) else None
            if status in self.config.acknowledged_statuses:
                continue
            failed.append(mutation)
            logger.warning(
                "Mutation %s (%s/%s) not applied: status=%r message=%r",
                mutation.mutation_id,
                mutation.entity.value,
                mutation.op.value,
                status,
                result.get("message") if isinstance(result, Mapping) else None,
            )
        return failed

    def _pull(
        self,
        areas: Optional[Iterable[str]],
        crops: Optional[Iterable[str]],
    ) -> SyncBundle:
        query = SyncQuery(
            user_id=self.config.user_id,
            since=self.cursor.get(),
            areas=tuple(a for a in (areas or ()) if a),
            crops=tuple(c for c in (crops or ()) if c),
        )
        start = time.monotonic()
        try:
            bundle = SyncBundle.from_response(self.transport.pull(query))
        except Exception:
            _observe(observe_pull, "error", time.monotonic() - start)
            raise
        _observe(observe_pull, "success", time.monotonic() - start)
        return bundle

    def _observe_depth(self) -> None:
        try:
            depth = len(self.outbox)
        except RaisyncError:
            logger.debug("Failed to read outbox depth", exc_info=True)
            return
        _observe(set_outbox_depth, depth)
