from __future__ import annotations

from sqlalchemy import BigInteger, Column, Integer, MetaData, String, Table, Text

metadata = MetaData()

# Pending mutations; retry order is ascending ``position``. Requeued entries
# take positions below the current minimum, so positions may go negative.
outbox = Table(
    "outbox",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("position", BigInteger, nullable=False, index=True),
    Column("mutation_id", String(64), nullable=False, unique=True),
    Column("user_id", String(128), nullable=False),
    Column("entity", String(32), nullable=False),
    Column("op", String(16), nullable=False),
    Column("data", Text, nullable=False),
    Column("client_ts", String(40), nullable=False),
)

sync_state = Table(
    "sync_state",
    metadata,
    Column("key", String(64), primary_key=True),
    Column("value", Text, nullable=False),
)

# Server records merged from delta pulls, one row per (collection, key).
records = Table(
    "records",
    metadata,
    Column("collection", String(64), primary_key=True),
    Column("record_key", String(191), primary_key=True),
    Column("data", Text, nullable=False),
    Column("updated_at", String(40), nullable=True),
)
