from __future__ import annotations

from ..extensions import db
from coldchain.time_utils import to_utc_z, decimal_str

INVOICE_STATUS_UNPAID = "UNPAID"
INVOICE_STATUS_PAID = "PAID"
INVOICE_STATUS_VOID = "VOID"


class Invoice(db.Model):
    """
    Invoice issued for exactly one Order or one Rental.

    INVARIANTS:
    - total_amount == subtotal + tax_amount
    - 0 <= paid_amount
    - order_id and rental_id are each unique: one invoice per source, ever.
    - Items are a copy of the source lines taken at issue time.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.CheckConstraint(
            "(order_id IS NULL) <> (rental_id IS NULL)",
            name="ck_invoices_single_source",
        ),
        db.CheckConstraint("paid_amount >= 0", name="ck_invoices_paid_non_negative"),
        db.Index("ix_invoices_site_status_created", "site_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_number = db.Column(db.String(64), nullable=False, unique=True)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, unique=True)
    rental_id = db.Column(db.Integer, db.ForeignKey("rentals.id"), nullable=True, unique=True)

    client_id = db.Column(db.Integer, nullable=False, index=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, index=True)

    subtotal = db.Column(db.Numeric(14, 2), nullable=False)
    tax_amount = db.Column(db.Numeric(14, 2), nullable=False)
    total_amount = db.Column(db.Numeric(14, 2), nullable=False)
    paid_amount = db.Column(db.Numeric(14, 2), nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=INVOICE_STATUS_UNPAID, index=True)
    due_date = db.Column(db.DateTime(timezone=True), nullable=False)

    void_reason = db.Column(db.String(255), nullable=True)
    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    order = db.relationship("Order", backref=db.backref("invoice", uselist=False))
    rental = db.relationship("Rental", backref=db.backref("invoice", uselist=False))
    items = db.relationship(
        "InvoiceItem",
        backref="invoice",
        lazy=True,
        order_by="InvoiceItem.id",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def amount_due(self):
        return self.total_amount - self.paid_amount

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "order_id": self.order_id,
            "rental_id": self.rental_id,
            "client_id": self.client_id,
            "site_id": self.site_id,
            "subtotal": decimal_str(self.subtotal),
            "tax_amount": decimal_str(self.tax_amount),
            "total_amount": decimal_str(self.total_amount),
            "paid_amount": decimal_str(self.paid_amount),
            "status": self.status,
            "due_date": to_utc_z(self.due_date),
            "void_reason": self.void_reason,
            "voided_at": to_utc_z(self.voided_at),
            "items": [item.to_dict() for item in self.items],
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class InvoiceItem(db.Model):
    """Immutable line snapshot; never a live reference to order or rental lines."""
    __tablename__ = "invoice_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)

    description = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Numeric(14, 3), nullable=False)
    unit = db.Column(db.String(16), nullable=False)
    unit_price = db.Column(db.Numeric(14, 2), nullable=False)
    subtotal = db.Column(db.Numeric(14, 2), nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "description": self.description,
            "quantity": decimal_str(self.quantity),
            "unit": self.unit,
            "unit_price": decimal_str(self.unit_price),
            "subtotal": decimal_str(self.subtotal),
        }


class InvoiceSequence(db.Model):
    """
    Invoice counter keyed by number prefix: INV-<SITE_CODE>-<YYYY>-

    WHY: Numbering must not race. The counter row is bumped with a single
    UPDATE ... SET last_value = last_value + 1, so two issuers for the same
    prefix cannot read the same value.

    INVARIANT: One row per prefix, not per site. Site names that normalise
    to the same code ("Kigali Central", "kigali central") share a counter,
    so the numbers they issue can never collide.
    """
    __tablename__ = "invoice_sequences"
    __table_args__ = (
        db.UniqueConstraint("prefix", name="uq_invoice_sequences_prefix"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    prefix = db.Column(db.String(160), nullable=False)
    year = db.Column(db.Integer, nullable=False)
    last_value = db.Column(db.Integer, nullable=False, default=0)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
