# Overview: Atomic allocation of human-readable receipt, shift and stock document numbers.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import ValidationError
from ..extensions import db
from ..models import DocumentSequence
from ..time_utils import business_date


RECEIPT_DOCUMENT = ("RECEIPT", "RCP", 6)
SHIFT_DOCUMENT = ("SHIFT", "SHF", 3)
GRN_DOCUMENT = ("GRN", "GRN", 4)
TRANSFER_DOCUMENT = ("TRANSFER", "TRF", 4)
ADJUSTMENT_DOCUMENT = ("ADJUSTMENT", "ADJ", 4)
COUNT_DOCUMENT = ("COUNT", "CNT", 4)


def next_document_number(
    *,
    tenant_id: int,
    store_id: int,
    document: tuple[str, str, int],
    at: datetime | None = None,
) -> str:
    """
    Allocate the next number for a (tenant, store, type, day) sequence.

    Must be called inside the caller's write transaction: the counter row is
    incremented with a single UPDATE (row lock), so concurrent allocations
    serialize and a rolled-back caller leaves no gap behind.

    Format: PREFIX-YYYYMMDD-NNN..., e.g. RCP-20261018-000001.
    """
    document_type, prefix, pad = document
    if not tenant_id or not store_id:
        raise ValidationError("tenant_id and store_id are required for document numbers")

    day = business_date(at)
    key = dict(tenant_id=tenant_id, store_id=store_id, document_type=document_type, business_date=day)

    stmt = (
        update(DocumentSequence)
        .where(
            DocumentSequence.tenant_id == tenant_id,
            DocumentSequence.store_id == store_id,
            DocumentSequence.document_type == document_type,
            DocumentSequence.business_date == day,
        )
        .values(next_number=DocumentSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        next_num = _current_value(key) - 1
    else:
        try:
            with db.session.begin_nested():
                db.session.add(DocumentSequence(next_number=2, **key))
            next_num = 1
        except IntegrityError:
            # Another writer created today's row first
            result = db.session.execute(stmt)
            if not result.rowcount:
                raise
            next_num = _current_value(key) - 1

    return f"{prefix}-{day}-{next_num:0{pad}d}"


def _current_value(key: dict) -> int:
    return (
        db.session.query(DocumentSequence.next_number)
        .filter_by(**key)
        .scalar()
    )
