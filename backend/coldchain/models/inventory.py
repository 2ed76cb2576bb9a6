from __future__ import annotations

from ..extensions import db
from coldchain.time_utils import to_utc_z, decimal_str

PRODUCT_STATUS_IN_STOCK = "IN_STOCK"
PRODUCT_STATUS_OUT_OF_STOCK = "OUT_OF_STOCK"

MOVEMENT_IN = "IN"
MOVEMENT_OUT = "OUT"


class ColdRoom(db.Model):
    """
    Refrigerated room that physically holds product stock.

    used_capacity_kg is a cached counter owned by the stock ledger: every
    movement applies the same signed delta here as on the product.
    INVARIANT: 0 <= used_capacity_kg <= total_capacity_kg.

    status is owned by the asset tracker (a cold room is also rentable).
    """
    __tablename__ = "cold_rooms"
    __table_args__ = (
        db.CheckConstraint(
            "used_capacity_kg >= 0 AND used_capacity_kg <= total_capacity_kg",
            name="ck_cold_rooms_capacity",
        ),
        db.Index("ix_cold_rooms_site_status", "site_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)

    total_capacity_kg = db.Column(db.Numeric(14, 3), nullable=False)
    used_capacity_kg = db.Column(db.Numeric(14, 3), nullable=False, default=0)

    # AVAILABLE, RENTED, MAINTENANCE
    status = db.Column(db.String(16), nullable=False, default="AVAILABLE", index=True)
    daily_rate = db.Column(db.Numeric(14, 2), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    site = db.relationship("Site", backref=db.backref("cold_rooms", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def identifier(self) -> str:
        return self.name

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "site_id": self.site_id,
            "name": self.name,
            "total_capacity_kg": decimal_str(self.total_capacity_kg),
            "used_capacity_kg": decimal_str(self.used_capacity_kg),
            "status": self.status,
            "daily_rate": decimal_str(self.daily_rate),
        }


class Product(db.Model):
    """
    Perishable product held in a cold room.

    quantity_kg is a cached balance. It is written ONLY by the stock ledger
    (services/stock_ledger_service.py) and always equals the signed sum of
    the product's StockMovement rows.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("quantity_kg >= 0", name="ck_products_quantity_non_negative"),
        db.Index("ix_products_site_status", "site_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, index=True)
    cold_room_id = db.Column(db.Integer, db.ForeignKey("cold_rooms.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    unit = db.Column(db.String(16), nullable=False, default="kg")
    selling_price_per_unit = db.Column(db.Numeric(14, 2), nullable=False)
    quantity_kg = db.Column(db.Numeric(14, 3), nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default=PRODUCT_STATUS_OUT_OF_STOCK)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    site = db.relationship("Site", backref=db.backref("products", lazy=True))
    cold_room = db.relationship("ColdRoom", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} site_id={self.site_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "site_id": self.site_id,
            "cold_room_id": self.cold_room_id,
            "name": self.name,
            "unit": self.unit,
            "selling_price_per_unit": decimal_str(self.selling_price_per_unit),
            "quantity_kg": decimal_str(self.quantity_kg),
            "status": self.status,
            "version_id": self.version_id,
        }


class StockMovement(db.Model):
    """
    Append-only stock ledger entry.

    RULES:
    - quantity_kg is always positive; direction carries the sign.
    - Rows are never updated or deleted. A correction is a new row with
      reversal_of_id pointing at the movement it compensates.
    - reversal_of_id is unique: a movement can be reverted once.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.CheckConstraint("quantity_kg > 0", name="ck_stock_movements_positive"),
        db.CheckConstraint("direction IN ('IN', 'OUT')", name="ck_stock_movements_direction"),
        db.Index("ix_stock_movements_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    cold_room_id = db.Column(db.Integer, db.ForeignKey("cold_rooms.id"), nullable=False, index=True)

    quantity_kg = db.Column(db.Numeric(14, 3), nullable=False)
    direction = db.Column(db.String(8), nullable=False)
    reason = db.Column(db.String(255), nullable=True)
    actor_id = db.Column(db.Integer, nullable=True)

    reversal_of_id = db.Column(
        db.Integer, db.ForeignKey("stock_movements.id"), nullable=True, unique=True
    )

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    product = db.relationship("Product", backref=db.backref("movements", lazy=True))
    cold_room = db.relationship("ColdRoom")
    reversal_of = db.relationship("StockMovement", remote_side=[id])

    @property
    def signed_quantity(self):
        return self.quantity_kg if self.direction == MOVEMENT_IN else -self.quantity_kg

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "cold_room_id": self.cold_room_id,
            "quantity_kg": decimal_str(self.quantity_kg),
            "direction": self.direction,
            "reason": self.reason,
            "actor_id": self.actor_id,
            "reversal_of_id": self.reversal_of_id,
            "created_at": to_utc_z(self.created_at),
        }
