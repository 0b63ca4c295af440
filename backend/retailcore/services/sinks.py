"""
Audit and event sinks.

Both are notified only after the business transaction has committed, and
both are fire-and-forget: a sink failure is logged and swallowed so it can
never undo or fail a committed sale. Default implementations persist to the
audit_logs and event_queue tables; apps can install their own sinks under
app.extensions["retailcore.audit_sink"] / ["retailcore.event_sink"].
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app

from ..extensions import db
from ..models import AuditLog, EventQueueEntry
from ..models.audit import EVENT_STATUS_PENDING
from .tenant_service import TenantContext


AUDIT_SINK_KEY = "retailcore.audit_sink"
EVENT_SINK_KEY = "retailcore.event_sink"

# Audit actions
ACTION_SALE_COMPLETED = "SALE_COMPLETED"
ACTION_SALE_VOIDED = "SALE_VOIDED"
ACTION_REFUND_ISSUED = "REFUND_ISSUED"
ACTION_SALE_PARKED = "SALE_PARKED"
ACTION_SALE_RECALLED = "SALE_RECALLED"
ACTION_SHIFT_OPENED = "SHIFT_OPENED"
ACTION_SHIFT_CLOSED = "SHIFT_CLOSED"
ACTION_CASH_MOVEMENT = "CASH_MOVEMENT"
ACTION_STOCK_RECEIVED = "STOCK_RECEIVED"
ACTION_STOCK_ADJUSTED = "STOCK_ADJUSTED"
ACTION_STOCK_TRANSFERRED = "STOCK_TRANSFERRED"
ACTION_STOCK_COUNTED = "STOCK_COUNTED"

# Downstream event types
EVENT_SALE_COMPLETED = "sale_completed"
EVENT_SALE_VOIDED = "sale_voided"
EVENT_RECEIPT_REFUNDED = "receipt_refunded"
EVENT_SHIFT_CLOSED = "shift_closed"
EVENT_STOCK_MOVED = "stock_moved"


@dataclass(frozen=True)
class AuditEvent:
    action: str
    entity_type: str
    entity_id: int | None = None
    store_id: int | None = None
    before_data: dict | None = None
    after_data: dict | None = None


@dataclass(frozen=True)
class QueuedEvent:
    event_type: str
    entity_type: str
    entity_id: int | None = None
    payload: dict = field(default_factory=dict)


class AuditSink:
    def log(self, ctx: TenantContext, event: AuditEvent) -> None:
        raise NotImplementedError


class EventSink:
    def queue(self, ctx: TenantContext, event: QueuedEvent) -> None:
        raise NotImplementedError


class DatabaseAuditSink(AuditSink):
    """Writes one audit_logs row per event in its own transaction."""

    def log(self, ctx: TenantContext, event: AuditEvent) -> None:
        db.session.add(
            AuditLog(
                tenant_id=ctx.tenant_id,
                user_id=ctx.user_id,
                store_id=event.store_id if event.store_id is not None else ctx.store_id,
                action=event.action,
                entity_type=event.entity_type,
                entity_id=event.entity_id,
                before_data=event.before_data,
                after_data=event.after_data,
            )
        )
        db.session.commit()


class DatabaseEventSink(EventSink):
    """Appends a pending event_queue row in its own transaction."""

    def queue(self, ctx: TenantContext, event: QueuedEvent) -> None:
        db.session.add(
            EventQueueEntry(
                tenant_id=ctx.tenant_id,
                event_type=event.event_type,
                entity_type=event.entity_type,
                entity_id=event.entity_id,
                payload=event.payload or {},
                status=EVENT_STATUS_PENDING,
                retry_count=0,
            )
        )
        db.session.commit()


def get_audit_sink() -> AuditSink:
    return current_app.extensions.setdefault(AUDIT_SINK_KEY, DatabaseAuditSink())


def get_event_sink() -> EventSink:
    return current_app.extensions.setdefault(EVENT_SINK_KEY, DatabaseEventSink())


def emit(ctx: TenantContext, audit: AuditEvent | None = None, event: QueuedEvent | None = None) -> None:
    """
    Notify sinks of a committed business change.

    Call only after commit. Never raises.
    """
    if audit is not None:
        try:
            get_audit_sink().log(ctx, audit)
        except Exception:
            db.session.rollback()
            current_app.logger.exception(
                "Audit sink failed for %s %s:%s", audit.action, audit.entity_type, audit.entity_id
            )

    if event is not None:
        try:
            get_event_sink().queue(ctx, event)
        except Exception:
            db.session.rollback()
            current_app.logger.exception(
                "Event sink failed for %s %s:%s", event.event_type, event.entity_type, event.entity_id
            )
