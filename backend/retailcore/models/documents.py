from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class DocumentSequence(db.Model):
    """
    Atomic per-(tenant, store, type, day) document counter.

    Receipt and shift numbers are allocated by incrementing this row under
    lock inside the caller's transaction, so a rolled-back sale also gives its
    number back.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        db.UniqueConstraint(
            "tenant_id", "store_id", "document_type", "business_date",
            name="uq_doc_sequences_key",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)
    document_type = db.Column(db.String(32), nullable=False)
    business_date = db.Column(db.String(8), nullable=False)  # YYYYMMDD
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "store_id": self.store_id,
            "document_type": self.document_type,
            "business_date": self.business_date,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
