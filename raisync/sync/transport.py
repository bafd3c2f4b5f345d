from __future__ import annotations

import logging
from typing import Any, Optional, Protocol, Sequence

import requests

from ..errors import ProtocolError, TransportError
from ..models import Mutation, SyncQuery

logger = logging.getLogger(__name__)

SYNC_PATH = "/api/cache/sync"
QUEUE_PATH = "/api/cache/queue"


class SyncTransport(Protocol):
    """
    Protocol for the two server round trips the orchestrator needs.

    Implementations raise TransportError for network failures and non-2xx
    responses, and ProtocolError for bodies that are not JSON.
    """

    def pull(self, query: SyncQuery) -> Any:
        """GET the delta bundle since query.since; returns the decoded JSON body."""
        ...

    def push(self, mutations: Sequence[Mutation]) -> Any:
        """POST a batch of mutations; returns the decoded JSON body."""
        ...


class HttpTransport:
    """
    requests-based SyncTransport talking to the RaiAI API.

    Usage:
        with HttpTransport("https://api.example", timeout_s=30) as transport:
            body = transport.pull(SyncQuery(user_id="u1", since=cursor))
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout_s: Optional[float] = 30.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        """
        Args:
            base_url: API origin, e.g. "https://api.example"
            timeout_s: Per-request timeout in seconds; None waits forever
            session: Optional requests.Session to reuse; a new one is
                     created (and owned) otherwise
        """
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._owns_session = session is None
        self._session = session if session is not None else requests.Session()

    def pull(self, query: SyncQuery) -> Any:
        url = f"{self.base_url}{SYNC_PATH}"
        logger.debug("Pulling deltas for %s since %r", query.user_id, query.since)
        try:
            response = self._session.get(url, params=query.to_params(), timeout=self.timeout_s)
        except requests.RequestException as exc:
            raise TransportError(f"sync request failed: {exc}") from exc
        return self._decode(response, "sync")

    def push(self, mutations: Sequence[Mutation]) -> Any:
        url = f"{self.base_url}{QUEUE_PATH}"
        body = {"mutations": [m.to_dict() for m in mutations]}
        logger.debug("Pushing %d mutations", len(body["mutations"]))
        try:
            response = self._session.post(url, json=body, timeout=self.timeout_s)
        except requests.RequestException as exc:
            raise TransportError(f"queue request failed: {exc}") from exc
        return self._decode(response, "queue")

    def _decode(self, response: requests.Response, label: str) -> Any:
        status = response.status_code
        if not 200 <= status < 300:
            raise TransportError(f"{label} {status}", status_code=status)
        try:
            return response.json()
        except ValueError as exc:
            raise ProtocolError(f"{label} response is not valid JSON") from exc

    def close(self) -> None:
        if self._owns_session:
            self._session.close()

    def __enter__(self) -> "HttpTransport":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False
