"""Fire-and-forget trigger dispatch on a bounded worker pool.

Event producers call ``submit`` and return immediately. Triggers run on a
ThreadPoolExecutor; at most ``queue_size`` may be queued or running at once,
and anything beyond that is dropped with a warning rather than blocking the
producer.

Triggers for the same organization run one at a time, in submission order.
Each organization has a FIFO of pending triggers and only its head is handed
to the pool; when the head finishes, the next one is submitted behind
whatever other organizations have queued. A burst for one organization
therefore occupies at most one worker, and different organizations run in
parallel.
"""

import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from contextvars import Context, copy_context
from dataclasses import dataclass
from typing import Any, Deque, Dict, Mapping, Optional, Union

from dispatch.domain.models import NotificationEvent
from dispatch.logging import get_logger

from .service import NotificationEngine

logger = get_logger(__name__, component="dispatcher")


@dataclass
class _QueuedTrigger:
    """One accepted trigger waiting for, or holding, its organization's turn."""

    org_id: str
    event: Union[NotificationEvent, str]
    payload: Dict[str, Any]
    triggered_by: Optional[str]
    context: Context
    future: Future


class TriggerDispatcher:
    """Runs ``NotificationEngine.trigger_notification`` off the caller's thread."""

    def __init__(self, engine: NotificationEngine, worker_count: int = 4, queue_size: int = 1000):
        """Initialize the dispatcher.

        Args:
            engine: Engine that processes each trigger
            worker_count: Number of worker threads
            queue_size: Maximum triggers queued or running at once
        """
        self.engine = engine
        self.executor = ThreadPoolExecutor(
            max_workers=worker_count, thread_name_prefix="notification-worker"
        )
        self._slots = threading.BoundedSemaphore(queue_size)
        # Only organizations with a trigger in flight have an entry
        self._pending: Dict[str, Deque[_QueuedTrigger]] = {}
        self._pending_guard = threading.Lock()
        self._closed = False

    def submit(
        self,
        org_id: str,
        event: Union[NotificationEvent, str],
        payload: Mapping[str, Any],
        triggered_by: Optional[str] = None,
    ) -> Optional[Future]:
        """Queue a trigger without blocking.

        Returns:
            The Future for the queued trigger, or None if it was dropped
        """
        try:
            if self._closed:
                logger.warning(
                    f"Dispatcher is shut down; dropping trigger for org {org_id}",
                    extra={"event": "notification.dispatch.dropped", "reason": "shutdown"},
                )
                return None

            payload = dict(payload)
            if not self._slots.acquire(blocking=False):
                logger.warning(
                    f"Trigger queue full; dropping trigger for org {org_id}",
                    extra={"event": "notification.dispatch.dropped", "reason": "queue_full"},
                )
                return None

            trigger = _QueuedTrigger(
                org_id=org_id,
                event=event,
                payload=payload,
                triggered_by=triggered_by,
                context=copy_context(),
                future=Future(),
            )

            with self._pending_guard:
                backlog = self._pending.get(org_id)
                if backlog is not None:
                    backlog.append(trigger)
                    return trigger.future
                self._pending[org_id] = deque()

            try:
                self.executor.submit(self._run, trigger)
            except RuntimeError:
                self._drop_backlog(trigger)
                logger.warning(
                    f"Executor rejected trigger for org {org_id}",
                    extra={"event": "notification.dispatch.dropped", "reason": "executor_closed"},
                )
                return None
            return trigger.future
        except Exception as e:
            logger.error(
                f"Failed to submit trigger for org {org_id}: {e}",
                extra={"event": "notification.dispatch.error"},
                exc_info=True,
            )
            return None

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting triggers and optionally wait for queued ones to finish."""
        self._closed = True
        logger.info(
            "Shutting down trigger dispatcher",
            extra={"event": "notification.dispatch.stopping", "wait_for_jobs": wait},
        )
        self.executor.shutdown(wait=wait)

    def _run(self, trigger: _QueuedTrigger) -> None:
        while trigger is not None:
            self._execute(trigger)
            trigger = self._next_for(trigger.org_id)
            if trigger is None:
                return
            try:
                self.executor.submit(self._run, trigger)
                return
            except RuntimeError:
                # Pool is shutting down; drain this organization on the current worker
                continue

    def _execute(self, trigger: _QueuedTrigger) -> None:
        future = trigger.future
        if not future.set_running_or_notify_cancel():
            self._slots.release()
            return

        try:
            trigger.context.run(
                self.engine.trigger_notification,
                trigger.org_id,
                trigger.event,
                trigger.payload,
                trigger.triggered_by,
            )
        except Exception as e:
            self._slots.release()
            future.set_exception(e)
        else:
            self._slots.release()
            future.set_result(None)

    def _next_for(self, org_id: str) -> Optional[_QueuedTrigger]:
        with self._pending_guard:
            backlog = self._pending[org_id]
            if backlog:
                return backlog.popleft()
            del self._pending[org_id]
            return None

    def _drop_backlog(self, trigger: _QueuedTrigger) -> None:
        with self._pending_guard:
            backlog = self._pending.pop(trigger.org_id, None) or deque()
        for dropped in [trigger, *backlog]:
            dropped.future.cancel()
            self._slots.release()
