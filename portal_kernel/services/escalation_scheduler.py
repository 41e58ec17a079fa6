"""
EscalationScheduler -- in-process polling loop for the escalation sweep.

Contract:
    Runs ``EscalationSweeper.run_sweep`` every ``interval_seconds`` on a
    background thread, independent of request handling.

Invariants enforced:
    - All timestamps come from the injected Clock.
    - Graceful shutdown: ``stop()`` signals the loop and waits for the
      current sweep to finish; it never interrupts a sweep mid-request.
    - A failing sweep is logged and the loop keeps running.
"""

from __future__ import annotations

import threading

from portal_kernel.domain.clock import Clock, SystemClock
from portal_kernel.domain.workflow import SweepReport
from portal_kernel.logging_config import get_logger
from portal_kernel.services.escalation_sweeper import EscalationSweeper

logger = get_logger("services.escalation_scheduler")


class EscalationScheduler:
    """Background thread that periodically sweeps for overdue steps.

    Non-goals:
        - NOT a distributed scheduler (no leader election).  Running it in
          several processes is safe but redundant: the sweep is idempotent
          and guarded by the request version token.
    """

    def __init__(
        self,
        sweeper: EscalationSweeper,
        clock: Clock | None = None,
        interval_seconds: float = 300,
    ):
        self._sweeper = sweeper
        self._clock = clock or SystemClock()
        self._interval = interval_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> SweepReport | None:
        """Run one sweep now (public for testing).  None if it failed."""
        try:
            return self._sweeper.run_sweep(self._clock.now())
        except Exception:
            logger.exception("escalation_tick_failed")
            return None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="escalation-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("scheduler_started", extra={"interval_seconds": self._interval})

    def stop(self, timeout: float = 30.0) -> None:
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.tick()
            self._stop_event.wait(timeout=self._interval)
