from __future__ import annotations

from ..extensions import db
from coldchain.time_utils import to_utc_z, decimal_str

RENTAL_STATUS_REQUESTED = "REQUESTED"
RENTAL_STATUS_APPROVED = "APPROVED"
RENTAL_STATUS_ACTIVE = "ACTIVE"
RENTAL_STATUS_COMPLETED = "COMPLETED"


class Rental(db.Model):
    """
    Rental of one physical asset for a date range.

    Exactly one of cold_box_id / cold_plate_id / tricycle_id / cold_room_id
    is set, and it matches asset_type.

    Status moves REQUESTED -> APPROVED -> ACTIVE -> COMPLETED through
    conditional updates (WHERE status = <expected>), see
    services/rental_service.py.
    """
    __tablename__ = "rentals"
    __table_args__ = (
        db.CheckConstraint(
            "(CASE WHEN cold_box_id IS NULL THEN 0 ELSE 1 END)"
            " + (CASE WHEN cold_plate_id IS NULL THEN 0 ELSE 1 END)"
            " + (CASE WHEN tricycle_id IS NULL THEN 0 ELSE 1 END)"
            " + (CASE WHEN cold_room_id IS NULL THEN 0 ELSE 1 END) = 1",
            name="ck_rentals_single_asset",
        ),
        db.Index("ix_rentals_site_status", "site_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, nullable=False, index=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, index=True)

    # COLD_BOX, COLD_PLATE, TRICYCLE, COLD_ROOM
    asset_type = db.Column(db.String(16), nullable=False)
    cold_box_id = db.Column(db.Integer, db.ForeignKey("cold_boxes.id"), nullable=True, index=True)
    cold_plate_id = db.Column(db.Integer, db.ForeignKey("cold_plates.id"), nullable=True, index=True)
    tricycle_id = db.Column(db.Integer, db.ForeignKey("tricycles.id"), nullable=True, index=True)
    cold_room_id = db.Column(db.Integer, db.ForeignKey("cold_rooms.id"), nullable=True, index=True)

    rental_start_date = db.Column(db.DateTime(timezone=True), nullable=False)
    rental_end_date = db.Column(db.DateTime(timezone=True), nullable=False)

    estimated_fee = db.Column(db.Numeric(14, 2), nullable=False)
    actual_fee = db.Column(db.Numeric(14, 2), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=RENTAL_STATUS_REQUESTED, index=True)

    approved_by = db.Column(db.Integer, nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    activated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    site = db.relationship("Site")

    @property
    def fee(self):
        return self.actual_fee if self.actual_fee is not None else self.estimated_fee

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "site_id": self.site_id,
            "asset_type": self.asset_type,
            "cold_box_id": self.cold_box_id,
            "cold_plate_id": self.cold_plate_id,
            "tricycle_id": self.tricycle_id,
            "cold_room_id": self.cold_room_id,
            "rental_start_date": to_utc_z(self.rental_start_date),
            "rental_end_date": to_utc_z(self.rental_end_date),
            "estimated_fee": decimal_str(self.estimated_fee),
            "actual_fee": decimal_str(self.actual_fee),
            "status": self.status,
            "approved_by": self.approved_by,
            "approved_at": to_utc_z(self.approved_at),
            "activated_at": to_utc_z(self.activated_at),
            "completed_at": to_utc_z(self.completed_at),
            "created_at": to_utc_z(self.created_at),
        }
