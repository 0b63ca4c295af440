# Overview: Consumer side of the event_queue outbox (claim, complete, fail).

from __future__ import annotations

from ..extensions import db
from ..models import EventQueueEntry
from ..models.audit import (
    EVENT_STATUS_COMPLETED,
    EVENT_STATUS_FAILED,
    EVENT_STATUS_PENDING,
    EVENT_STATUS_PROCESSING,
)
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_in_transaction


def claim_pending_events(limit: int = 100) -> list[EventQueueEntry]:
    """
    Move up to `limit` pending events (oldest first) to processing and
    return them. Two consumers never claim the same row.
    """
    if limit <= 0:
        return []

    def _op():
        rows = (
            lock_for_update(
                db.session.query(EventQueueEntry)
                .filter(EventQueueEntry.status == EVENT_STATUS_PENDING)
                .order_by(EventQueueEntry.created_at.asc(), EventQueueEntry.id.asc())
                .limit(limit)
            )
            .all()
        )
        for row in rows:
            row.status = EVENT_STATUS_PROCESSING
        return rows

    return run_in_transaction(_op)


def mark_events_completed(event_ids: list[int]) -> int:
    if not event_ids:
        return 0

    def _op():
        rows = db.session.query(EventQueueEntry).filter(EventQueueEntry.id.in_(event_ids)).all()
        now = utcnow()
        for row in rows:
            row.status = EVENT_STATUS_COMPLETED
            row.processed_at = now
            row.error_message = None
        return len(rows)

    return run_in_transaction(_op)


def mark_events_failed(event_ids: list[int], error_message: str) -> int:
    if not event_ids:
        return 0

    def _op():
        rows = db.session.query(EventQueueEntry).filter(EventQueueEntry.id.in_(event_ids)).all()
        for row in rows:
            row.status = EVENT_STATUS_FAILED
            row.retry_count = (row.retry_count or 0) + 1
            row.error_message = (error_message or "")[:2000]
        return len(rows)

    return run_in_transaction(_op)
