"""Single-fire acknowledgment channel for printed inventory reports.

When a count is saved, the lifecycle service ``expect``s exactly one
acknowledgment for it. The report renderer, running in another execution
context, later delivers the configured token (``"inventory_printed"``).
``consume`` hands the event to exactly one caller; duplicates, unknown
counts and deliveries after the deadline are refused.

Subscriptions live in process memory and expired ones are evicted on the
next ``expect`` or ``consume``. When no subscription is held (another
worker saved the count, or the process restarted) the lifecycle service
falls back to the deadline stored on the count.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Subscription:
    count_id: int
    deadline: datetime
    fired: threading.Event = field(default_factory=threading.Event)

    def expired(self, now: datetime) -> bool:
        return now > self.deadline


class AcknowledgmentChannel:
    """Per-count, fire-once subscriptions with a bounded wait."""

    # consume() outcomes
    ACCEPTED = "accepted"
    NOT_AWAITED = "not_awaited"
    EXPIRED = "expired"
    WRONG_TOKEN = "wrong_token"

    def __init__(self, token: str = "inventory_printed", timeout: timedelta = timedelta(hours=1)):
        self.token = token
        self.timeout = timeout
        self._subscriptions: Dict[int, Subscription] = {}
        self._lock = threading.Lock()

    def deadline_from_now(self) -> datetime:
        return _utcnow() + self.timeout

    def expect(self, count_id: int, deadline: Optional[datetime] = None) -> Subscription:
        """Start waiting for the acknowledgment of ``count_id``."""
        subscription = Subscription(count_id, deadline or self.deadline_from_now())
        with self._lock:
            expired = self._purge_expired_locked(_utcnow())
            self._subscriptions[count_id] = subscription
        self._log_expired(expired)
        logger.debug("Awaiting acknowledgment for count %s until %s", count_id, subscription.deadline)
        return subscription

    def consume(self, count_id: int, token: str, now: Optional[datetime] = None) -> str:
        """Deliver an event for ``count_id``; at most one call gets ACCEPTED."""
        if token != self.token:
            return self.WRONG_TOKEN
        now = now or _utcnow()
        with self._lock:
            subscription = self._subscriptions.pop(count_id, None)
            expired = self._purge_expired_locked(now)
        self._log_expired(expired)
        if subscription is None:
            return self.NOT_AWAITED
        if subscription.expired(now):
            logger.warning(
                "Acknowledgment for count %s arrived after deadline %s", count_id, subscription.deadline
            )
            return self.EXPIRED
        subscription.fired.set()
        return self.ACCEPTED

    def restore(self, subscription: Subscription) -> None:
        """Put back a consumed subscription whose close attempt failed."""
        with self._lock:
            self._subscriptions.setdefault(subscription.count_id, subscription)
        subscription.fired.clear()

    def pending(self, count_id: int) -> Optional[Subscription]:
        with self._lock:
            return self._subscriptions.get(count_id)

    def wait(self, count_id: int, timeout: Optional[float] = None) -> bool:
        """Block until ``count_id`` is acknowledged; False on timeout or if not awaited."""
        subscription = self.pending(count_id)
        if subscription is None:
            return False
        if timeout is None:
            timeout = max((subscription.deadline - _utcnow()).total_seconds(), 0.0)
        return subscription.fired.wait(timeout)

    def cancel(self, count_id: int) -> None:
        with self._lock:
            self._subscriptions.pop(count_id, None)

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        with self._lock:
            expired = self._purge_expired_locked(now or _utcnow())
        self._log_expired(expired)
        return len(expired)

    def __len__(self) -> int:
        return len(self._subscriptions)

    def _purge_expired_locked(self, now: datetime) -> List[int]:
        expired = [cid for cid, sub in self._subscriptions.items() if sub.expired(now)]
        for cid in expired:
            del self._subscriptions[cid]
        return expired

    @staticmethod
    def _log_expired(expired: List[int]) -> None:
        for cid in expired:
            logger.warning("Count %s never acknowledged; manual close required", cid)
