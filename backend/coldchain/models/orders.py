from __future__ import annotations

from ..extensions import db
from coldchain.time_utils import to_utc_z, decimal_str

ORDER_STATUS_REQUESTED = "REQUESTED"
ORDER_STATUS_APPROVED = "APPROVED"
ORDER_STATUS_REJECTED = "REJECTED"
ORDER_STATUS_INVOICED = "INVOICED"
ORDER_STATUS_COMPLETED = "COMPLETED"


class Order(db.Model):
    """
    Client order against a site's stock.

    INVARIANT: total_amount == sum(item.subtotal). Items are snapshotted at
    creation (unit price copied from the product) and never edited.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_site_status_created", "site_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, nullable=False, index=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, index=True)

    delivery_address = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    total_amount = db.Column(db.Numeric(14, 2), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_REQUESTED, index=True)

    approved_by = db.Column(db.Integer, nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.String(255), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    site = db.relationship("Site")
    items = db.relationship(
        "OrderItem",
        backref="order",
        lazy=True,
        order_by="OrderItem.id",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, *, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "client_id": self.client_id,
            "site_id": self.site_id,
            "delivery_address": self.delivery_address,
            "notes": self.notes,
            "total_amount": decimal_str(self.total_amount),
            "status": self.status,
            "approved_by": self.approved_by,
            "approved_at": to_utc_z(self.approved_at),
            "rejection_reason": self.rejection_reason,
            "rejected_at": to_utc_z(self.rejected_at),
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity_kg > 0", name="ck_order_items_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity_kg = db.Column(db.Numeric(14, 3), nullable=False)
    unit_price = db.Column(db.Numeric(14, 2), nullable=False)
    subtotal = db.Column(db.Numeric(14, 2), nullable=False)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "quantity_kg": decimal_str(self.quantity_kg),
            "unit_price": decimal_str(self.unit_price),
            "subtotal": decimal_str(self.subtotal),
        }
