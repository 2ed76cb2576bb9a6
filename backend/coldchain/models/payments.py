from __future__ import annotations

from ..extensions import db
from coldchain.time_utils import to_utc_z, decimal_str

PAYMENT_STATUS_PENDING = "PENDING"
PAYMENT_STATUS_PAID = "PAID"
PAYMENT_STATUS_FAILED = "FAILED"

PAYMENT_METHOD_MOBILE_MONEY = "MOBILE_MONEY"
PAYMENT_METHOD_MANUAL = "MANUAL"


class Payment(db.Model):
    """
    One attempt to settle an invoice.

    An invoice may have many attempts. gateway_transaction_ref is unique and
    is the key inbound webhooks are matched on. A payment credits its invoice
    once, when it first reaches PAID.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_payments_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)

    amount = db.Column(db.Numeric(14, 2), nullable=False)
    method = db.Column(db.String(32), nullable=False, default=PAYMENT_METHOD_MOBILE_MONEY)
    status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_PENDING, index=True)

    phone_number = db.Column(db.String(32), nullable=True)
    gateway_transaction_ref = db.Column(db.String(64), nullable=True, unique=True)
    failure_reason = db.Column(db.String(255), nullable=True)

    initiated_by = db.Column(db.Integer, nullable=True)
    marked_paid_by = db.Column(db.Integer, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    invoice = db.relationship("Invoice", backref=db.backref("payments", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "amount": decimal_str(self.amount),
            "method": self.method,
            "status": self.status,
            "phone_number": self.phone_number,
            "gateway_transaction_ref": self.gateway_transaction_ref,
            "failure_reason": self.failure_reason,
            "initiated_by": self.initiated_by,
            "marked_paid_by": self.marked_paid_by,
            "created_at": to_utc_z(self.created_at),
            "paid_at": to_utc_z(self.paid_at),
        }
