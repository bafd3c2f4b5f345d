from __future__ import annotations

from ..metrics.registry import (
    MERGED_RECORDS_TOTAL,
    OUTBOX_DEPTH,
    PULL_LATENCY_SECONDS,
    PUSH_LATENCY_SECONDS,
    PUSH_MUTATIONS_TOTAL,
    SYNC_CYCLES_TOTAL,
)


def observe_push(status: str, latency_s: float) -> None:
    PUSH_LATENCY_SECONDS.labels(status=status).observe(latency_s)


def observe_pushed_mutations(outcome: str, count: int) -> None:
    if count > 0:
        PUSH_MUTATIONS_TOTAL.labels(outcome=outcome).inc(count)


def observe_pull(status: str, latency_s: float) -> None:
    PULL_LATENCY_SECONDS.labels(status=status).observe(latency_s)


def observe_merge(collection: str, count: int) -> None:
    MERGED_RECORDS_TOTAL.labels(collection=collection).inc(count)


def observe_cycle(status: str) -> None:
    SYNC_CYCLES_TOTAL.labels(status=status).inc()


def set_outbox_depth(depth: int) -> None:
    OUTBOX_DEPTH.set(depth)
