"""Audit events for authentication outcomes."""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from prometheus_client import Counter

from authcore.core.security import utc_now

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("authcore.audit")

AUTH_EVENTS = Counter(
    "authcore_auth_events_total",
    "Authentication outcomes by action and result",
    ["action", "result"],
)


class AuthAction(str, Enum):
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILURE = "LOGIN_FAILURE"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    REFRESH_TOKEN_SUCCESS = "REFRESH_TOKEN_SUCCESS"
    REFRESH_TOKEN_FAILURE = "REFRESH_TOKEN_FAILURE"
    LOGOUT = "LOGOUT"
    LOGOUT_ALL_DEVICES = "LOGOUT_ALL_DEVICES"


class AuthResult(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    ERROR = "ERROR"


@dataclass(frozen=True)
class AuthEvent:
    action: AuthAction
    result: AuthResult
    principal_id: Optional[int] = None
    identifier: Optional[str] = None
    reason: Optional[str] = None
    ip_address: Optional[str] = None
    occurred_at: datetime = field(default_factory=utc_now)


def log_event(event: AuthEvent) -> None:
    """Default sink: one structured log line and a counter bump per event."""
    level = logging.WARNING if event.action is AuthAction.ACCOUNT_LOCKED else logging.INFO
    audit_logger.log(
        level,
        "AUDIT_LOG | action=%s | result=%s | principal_id=%s | identifier=%s | ip=%s | reason=%s",
        event.action.value,
        event.result.value,
        event.principal_id,
        event.identifier,
        event.ip_address or "UNKNOWN",
        event.reason,
    )
    AUTH_EVENTS.labels(event.action.value, event.result.value).inc()


class AuditService:
    """
    Non-blocking audit channel.

    ``emit`` only enqueues; a daemon thread hands events to the sink. When the
    queue is full the event is dropped with a warning so that authentication
    never waits on audit delivery.
    """

    def __init__(self, sink: Callable[[AuthEvent], None] = log_event, max_queue_size: int = 10000) -> None:
        self._sink = sink
        self._queue: "queue.Queue[AuthEvent]" = queue.Queue(maxsize=max_queue_size)
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._dropped = 0

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="audit-writer", daemon=True)
        self._thread.start()
        logger.info("Audit writer started")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        self.drain()
        logger.info("Audit writer stopped")

    def emit(self, event: AuthEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            self._dropped += 1
            logger.warning("Audit queue full; dropped %s event (total dropped: %s)", event.action.value, self._dropped)

    @property
    def dropped(self) -> int:
        return self._dropped

    def pending(self) -> int:
        return self._queue.qsize()

    def drain(self) -> int:
        """Deliver everything currently queued on the calling thread."""
        delivered = 0
        while True:
            try:
                event = self._queue.get_nowait()
            except queue.Empty:
                return delivered
            self._deliver(event)
            delivered += 1

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                event = self._queue.get(timeout=0.5)
            except queue.Empty:
                continue
            self._deliver(event)

    def _deliver(self, event: AuthEvent) -> None:
        try:
            self._sink(event)
        except Exception:
            logger.exception("Audit sink failed for %s", event.action.value)
