from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterable, Sequence
from typing import Optional

from ..errors import RaisyncError
from ..models import SyncReport
from .orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


class SyncRunner:
    """
    Background loop driving a SyncOrchestrator.

    A cycle runs when trigger() is called (app foreground, network back
    online) or when the current delay elapses:
    - after a success, the delay is ``interval_s``
    - after the n-th consecutive failure, the delay is
      ``retry_backoff_s[n - 1]`` (last step repeated)
    - once ``max_failures`` consecutive failures are reached the circuit
      opens and the loop falls back to ``interval_s`` until a cycle succeeds

    Only RaisyncError is treated as a failed cycle; anything else propagates
    out of run().

    Usage:
        runner = SyncRunner(orchestrator, areas=["1001"])
        thread = threading.Thread(target=runner.run, daemon=True)
        thread.start()
        ...
        runner.trigger()
        ...
        runner.stop()
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        *,
        interval_s: float = 3600.0,
        retry_backoff_s: Sequence[float] = (1.0, 3.0, 7.0),
        max_failures: int = 3,
        areas: Optional[Iterable[str]] = None,
        crops: Optional[Iterable[str]] = None,
    ) -> None:
        if interval_s <= 0:
            raise ValueError("interval_s must be > 0")
        if not retry_backoff_s or any(step <= 0 for step in retry_backoff_s):
            raise ValueError("retry_backoff_s must be a non-empty sequence of positive delays")
        if max_failures <= 0:
            raise ValueError("max_failures must be > 0")

        self.orchestrator = orchestrator
        self.interval_s = interval_s
        self.retry_backoff_s = tuple(retry_backoff_s)
        self.max_failures = max_failures
        self.areas = tuple(areas or ())
        self.crops = tuple(crops or ())

        self.failures = 0
        self.last_sync: Optional[float] = None
        self.last_error: Optional[str] = None
        self._wake = threading.Event()
        self._stopping = threading.Event()

    @property
    def circuit_open(self) -> bool:
        return self.failures >= self.max_failures

    def next_delay(self) -> float:
        """Seconds to wait before the next unprompted cycle."""
        if self.failures == 0 or self.circuit_open:
            return self.interval_s
        index = min(self.failures - 1, len(self.retry_backoff_s) - 1)
        return self.retry_backoff_s[index]

    def trigger(self) -> None:
        """Request a cycle as soon as possible."""
        self._wake.set()

    def stop(self) -> None:
        """
        Signal shutdown. A cycle already running is finished, not interrupted.
        """
        self._stopping.set()
        self._wake.set()

    def run_once(self) -> Optional[SyncReport]:
        """
        Run one cycle and update the failure bookkeeping.

        Returns:
            The SyncReport, or None if the cycle failed with a RaisyncError
        """
        try:
            report = self.orchestrator.sync(areas=self.areas, crops=self.crops)
        except RaisyncError as exc:
            self.failures += 1
            self.last_error = str(exc)
            if self.circuit_open:
                logger.error(
                    "Sync failed %d times in a row; retrying at the regular interval: %s",
                    self.failures,
                    exc,
                )
            else:
                logger.warning(
                    "Sync failed (%d/%d), retrying in %.1fs: %s",
                    self.failures,
                    self.max_failures,
                    self.next_delay(),
                    exc,
                )
            return None

        self.failures = 0
        self.last_error = None
        self.last_sync = time.time()
        return report

    def run(self) -> None:
        """
        Loop until stop(). Runs a first cycle immediately.
        """
        self._wake.set()
        while not self._stopping.is_set():
            self._wake.wait(timeout=self.next_delay())
            self._wake.clear()
            if self._stopping.is_set():
                break
            self.run_once()
