from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

SYNC_CYCLES_TOTAL = Counter(
    "raisync_sync_cycles_total",
    "Sync invocations by final status",
    ["status"],
)

PUSH_MUTATIONS_TOTAL = Counter(
    "raisync_push_mutations_total",
    "Pushed mutations by outcome (applied, requeued, restored)",
    ["outcome"],
)

PUSH_LATENCY_SECONDS = Histogram(
    "raisync_push_latency_seconds",
    "Latency of POST /api/cache/queue round trips",
    ["status"],
)

PULL_LATENCY_SECONDS = Histogram(
    "raisync_pull_latency_seconds",
    "Latency of GET /api/cache/sync round trips",
    ["status"],
)

MERGED_RECORDS_TOTAL = Counter(
    "raisync_merged_records_total",
    "Server records upserted into the local store",
    ["collection"],
)

OUTBOX_DEPTH = Gauge(
    "raisync_outbox_depth",
    "Mutations waiting in the outbox after the last sync step",
)
