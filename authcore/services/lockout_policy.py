"""Brute-force lockout decisions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from authcore.config import Settings


class LockState(str, Enum):
    ALLOW = "allow"
    LOCKED = "locked"
    WOULD_LOCK = "would_lock"


@dataclass(frozen=True)
class LockDecision:
    state: LockState
    failed_attempts: int
    locked_until: Optional[datetime] = None

    @property
    def blocks(self) -> bool:
        return self.state is LockState.LOCKED


class LockoutPolicy:
    """
    Pure lockout rules; callers persist the resulting counter and lock expiry.

    Windows are fixed from the failure that crossed the threshold. Attempts made
    while locked are rejected before the password is checked, so they never
    extend the lock, and once a lock has lapsed the counter starts over.
    """

    def __init__(self, max_failed_attempts: int = 5, lockout_duration: timedelta = timedelta(minutes=30)) -> None:
        if max_failed_attempts < 1:
            raise ValueError("max_failed_attempts must be at least 1")
        self.max_failed_attempts = max_failed_attempts
        self.lockout_duration = lockout_duration

    @classmethod
    def from_settings(cls, settings: Settings) -> "LockoutPolicy":
        return cls(
            max_failed_attempts=settings.MAX_FAILED_ATTEMPTS,
            lockout_duration=timedelta(minutes=settings.LOCKOUT_DURATION_MINUTES),
        )

    @staticmethod
    def is_locked(locked_until: Optional[datetime], now: datetime) -> bool:
        return locked_until is not None and now < locked_until

    def check(self, failed_attempts: int, locked_until: Optional[datetime], now: datetime) -> LockDecision:
        """Decide whether an attempt may proceed to the password check."""
        if self.is_locked(locked_until, now):
            return LockDecision(LockState.LOCKED, failed_attempts, locked_until)
        return LockDecision(LockState.ALLOW, failed_attempts)

    def register_failure(
        self,
        failed_attempts: int,
        locked_until: Optional[datetime],
        now: datetime,
    ) -> LockDecision:
        """
        Count one failed password check.

        Returns:
            WOULD_LOCK with the new lock expiry when this failure reaches the
            threshold, otherwise ALLOW with the incremented counter.
        """
        if locked_until is not None and not self.is_locked(locked_until, now):
            # previous lock lapsed
            failed_attempts = 0

        attempts = max(0, failed_attempts) + 1
        if attempts >= self.max_failed_attempts:
            return LockDecision(LockState.WOULD_LOCK, attempts, now + self.lockout_duration)
        return LockDecision(LockState.ALLOW, attempts)
