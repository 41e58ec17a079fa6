"""
NotificationDispatcher -- post-commit fan-out of workflow events.

Responsibility:
    Hands committed workflow events to every registered NotificationSink,
    on a worker pool by default so callers never wait on delivery.
    ``AuditLogSink`` is the built-in sink: it writes each event to the
    ``portal_kernel.audit`` logger.

Architecture position:
    Kernel > Services -- side channel.  Called by the facade and the
    escalation sweeper only after their transaction has committed.

Invariants enforced:
    - Fire-and-forget: a failing sink is logged and never raised, and
      never affects workflow state.
    - Each event reaches each sink at most once.

Failure modes:
    - None surfaced to callers.  Delivery failures are logged as
      ``notification_delivery_failed`` with the sink and event type.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, wait

from portal_kernel.domain.events import NotificationSink, WorkflowEvent
from portal_kernel.logging_config import get_logger

logger = get_logger("services.notifications")
audit_logger = get_logger("audit")


class AuditLogSink:
    """Writes every workflow event to the audit logger."""

    def notify(self, event: WorkflowEvent) -> None:
        audit_logger.info(
            "workflow_event",
            extra={
                "event_type": event.event_type.value,
                "event_request_id": str(event.request_id),
                "event_step_id": str(event.step_id) if event.step_id else None,
                "recipient_id": str(event.recipient_id) if event.recipient_id else None,
                "occurred_at": event.occurred_at,
                "payload": event.payload,
            },
        )


class NotificationDispatcher:
    """Delivers events to sinks, asynchronously unless told otherwise."""

    def __init__(
        self,
        sinks: Sequence[NotificationSink] = (),
        async_dispatch: bool = True,
        max_workers: int = 4,
    ):
        self._sinks: list[NotificationSink] = list(sinks)
        self._async = async_dispatch
        self._executor: ThreadPoolExecutor | None = None
        if async_dispatch:
            self._executor = ThreadPoolExecutor(
                max_workers=max_workers, thread_name_prefix="portal-notify",
            )
        self._pending: set[Future] = set()
        self._lock = threading.Lock()

    def add_sink(self, sink: NotificationSink) -> None:
        self._sinks.append(sink)

    def dispatch(self, events: Iterable[WorkflowEvent]) -> None:
        for event in events:
            for sink in self._sinks:
                if self._executor is None:
                    self._deliver(sink, event)
                    continue
                future = self._executor.submit(self._deliver, sink, event)
                with self._lock:
                    self._pending.add(future)
                future.add_done_callback(self._forget)

    def flush(self, timeout: float | None = None) -> None:
        """Wait for deliveries already handed to the pool."""
        with self._lock:
            pending = set(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def shutdown(self, wait_for_pending: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait_for_pending)

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def _deliver(self, sink: NotificationSink, event: WorkflowEvent) -> None:
        try:
            sink.notify(event)
        except Exception:
            logger.exception(
                "notification_delivery_failed",
                extra={
                    "sink": type(sink).__name__,
                    "event_type": event.event_type.value,
                    "event_request_id": str(event.request_id),
                },
            )
