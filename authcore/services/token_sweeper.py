"""Background sweep of expired refresh token rows."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from authcore.services.refresh_ledger import RefreshTokenLedger

logger = logging.getLogger(__name__)


class TokenSweeper:
    """Periodically deletes expired ledger rows. Storage hygiene only."""

    def __init__(
        self,
        ledger: RefreshTokenLedger,
        session_factory: Callable[[], Session],
        interval_seconds: float = 3600.0,
    ) -> None:
        self.ledger = ledger
        self._session_factory = session_factory
        self.interval_seconds = interval_seconds
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._heartbeat: float = 0.0
        self._swept_total: int = 0

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="refresh-token-sweeper", daemon=True)
        self._thread.start()
        logger.info("Refresh token sweeper started")

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
        logger.info("Refresh token sweeper stopped")

    def status(self) -> dict:
        return {
            "running": self.is_running(),
            "last_heartbeat": self._heartbeat,
            "swept_total": self._swept_total,
        }

    def sweep_once(self) -> int:
        db = self._session_factory()
        try:
            swept = self.ledger.sweep_expired(db)
        except SQLAlchemyError as exc:
            logger.error("Refresh token sweep failed: %s", exc)
            return 0
        finally:
            db.close()
        self._swept_total += swept
        return swept

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.sweep_once()
            self._heartbeat = time.time()
            self._stop_event.wait(max(1.0, self.interval_seconds))
