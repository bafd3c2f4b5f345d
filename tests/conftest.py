from __future__ import annotations

import threading
from collections.abc import Callable, Iterator, Sequence
from typing import Any

import pytest

from raisync.config import StoreConfig, SyncConfig
from raisync.models import Entity, Mutation, MutationOp, SyncQuery
from raisync.store import CursorStore, LocalStore, Outbox
from raisync.sync import SyncOrchestrator

DEFAULT_NEXT_SINCE = "2024-05-01T00:00:00.000Z"


class FakeTransport:
    """
    In-process stand-in for the sync server.

    Queued responses are consumed in order. A queued item may be:
    - an exception instance: raised
    - a callable: called with the request argument, its return value is the body
    - anything else: returned as the body
    With nothing queued, push applies every mutation and pull returns an
    empty bundle.
    """

    def __init__(self) -> None:
        self.pushed: list[list[Mutation]] = []
        self.pulled: list[SyncQuery] = []
        self.push_responses: list[Any] = []
        self.pull_responses: list[Any] = []
        self._lock = threading.Lock()

    def push(self, mutations: Sequence[Mutation]) -> Any:
        with self._lock:
            self.pushed.append(list(mutations))
            response = self.push_responses.pop(0) if self.push_responses else None
        if response is None:
            return {"results": [{"mutation_id": m.mutation_id, "status": "applied"} for m in mutations]}
        return self._resolve(response, mutations)

    def pull(self, query: SyncQuery) -> Any:
        with self._lock:
            self.pulled.append(query)
            response = self.pull_responses.pop(0) if self.pull_responses else None
        if response is None:
            return {
                "server_time": DEFAULT_NEXT_SINCE,
                "next_since": DEFAULT_NEXT_SINCE,
                "refs": {},
                "user": {},
            }
        return self._resolve(response, query)

    @staticmethod
    def _resolve(response: Any, arg: Any) -> Any:
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return response(arg)
        return response

    def pushed_ids(self) -> list[str]:
        return [m.mutation_id for batch in self.pushed for m in batch]

    def close(self) -> None:
        pass

    def __enter__(self) -> "FakeTransport":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        return None


@pytest.fixture
def db_url(tmp_path) -> str:
    """File-backed SQLite URL unique to each test."""
    return f"sqlite:///{tmp_path / 'raisync.db'}"


@pytest.fixture
def store(db_url: str) -> Iterator[LocalStore]:
    local_store = LocalStore(StoreConfig(db_url=db_url)).open()
    yield local_store
    local_store.close()


@pytest.fixture
def outbox(store: LocalStore) -> Outbox:
    return Outbox(store)


@pytest.fixture
def cursor(store: LocalStore) -> CursorStore:
    return CursorStore(store)


@pytest.fixture
def sync_config() -> SyncConfig:
    return SyncConfig(api_url="http://fake-server.test", user_id="user-1")


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def orchestrator(
    store: LocalStore,
    transport: FakeTransport,
    sync_config: SyncConfig,
    outbox: Outbox,
    cursor: CursorStore,
) -> SyncOrchestrator:
    return SyncOrchestrator(store, transport, sync_config, outbox=outbox, cursor=cursor)


@pytest.fixture
def make_mutation() -> Callable[..., Mutation]:
    """
    Factory for price-alert mutations with a readable, deterministic id.

    Usage:
        a = make_mutation("A")   # mutation_id == "m-A"
    """
    def _make(
        label: str,
        entity: Entity = Entity.PRICE_ALERT,
        op: MutationOp = MutationOp.UPDATE,
        user_id: str = "user-1",
    ) -> Mutation:
        return Mutation(
            user_id=user_id,
            entity=entity,
            op=op,
            data={"id": f"alert-{label}", "crop": "rice", "target_min": 8000, "target_max": 9500},
            mutation_id=f"m-{label}",
        )

    return _make


@pytest.fixture
def fake_transport_factory() -> Callable[[], FakeTransport]:
    return FakeTransport
