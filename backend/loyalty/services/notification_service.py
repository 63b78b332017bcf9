# Overview: Notification sink implementations and the notification inbox query.

"""
Notification Sink

The ledger never depends on delivery: callers notify only after their unit
has committed, and go through deliver() which logs and swallows any sink
failure.

Sinks:
- StoredNotificationSink: persists a notifications row (fetched later via
  GET /notifications)
- AsyncNotificationSink: wraps another sink, delivers on a thread pool
  inside an application context
- NullNotificationSink: drops everything
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor

from ..extensions import db
from ..models import Notification
from ..models.notifications import VALID_NOTIFICATION_KINDS

# Module logger: the async worker runs outside any request
logger = logging.getLogger(__name__)

MAX_PAGE_LIMIT = 100


class NotificationSink:
    """Push-only delivery interface."""

    def notify(self, user_id: int, kind: str, message: str) -> None:
        raise NotImplementedError

    def notify_many(self, user_ids, kind: str, message: str) -> None:
        # Each recipient at most once, in first-seen order
        for user_id in dict.fromkeys(user_ids):
            self.notify(user_id, kind, message)


class NullNotificationSink(NotificationSink):
    def notify(self, user_id: int, kind: str, message: str) -> None:
        return None


class StoredNotificationSink(NotificationSink):
    """Persist each notification in its own commit."""

    def notify(self, user_id: int, kind: str, message: str) -> None:
        if kind not in VALID_NOTIFICATION_KINDS:
            raise ValueError(f"Unknown notification kind: {kind}")
        db.session.add(Notification(user_id=user_id, kind=kind, message=message))
        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise


class AsyncNotificationSink(NotificationSink):
    """
    Deliver through `inner` on a small worker pool.

    Each job pushes its own app context and removes its scoped session when
    done, the same way the threaded concurrency tests isolate sessions.
    """

    def __init__(self, app, inner: NotificationSink, max_workers: int = 2):
        self._app = app
        self._inner = inner
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")

    def notify(self, user_id: int, kind: str, message: str) -> None:
        self._executor.submit(self._deliver, user_id, kind, message)

    def _deliver(self, user_id: int, kind: str, message: str) -> None:
        with self._app.app_context():
            try:
                self._inner.notify(user_id, kind, message)
            except Exception:
                logger.warning("Dropped notification for user %s", user_id, exc_info=True)
            finally:
                db.session.remove()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def deliver(sink: NotificationSink, user_ids, kind: str, message: str) -> None:
    """
    Fire-and-forget delivery for already-committed work.

    Failures are logged and swallowed; they never reach the caller.
    """
    if isinstance(user_ids, int):
        user_ids = [user_ids]
    try:
        sink.notify_many(user_ids, kind, message)
    except Exception:
        logger.warning("Notification delivery failed for users %s", list(user_ids), exc_info=True)


def list_notifications(
    user_id: int,
    *,
    read: bool | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[int, list[Notification]]:
    """The user's own notifications, newest first."""
    limit = min(limit, MAX_PAGE_LIMIT)
    q = db.session.query(Notification).filter(Notification.user_id == user_id)
    if read is not None:
        q = q.filter(Notification.read.is_(read))

    count = q.count()
    results = (
        q.order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return count, results
