from __future__ import annotations

from sqlalchemy.orm import declared_attr

from ..extensions import db
from coldchain.time_utils import to_utc_z, decimal_str

ASSET_STATUS_AVAILABLE = "AVAILABLE"
ASSET_STATUS_RENTED = "RENTED"
ASSET_STATUS_MAINTENANCE = "MAINTENANCE"


class _RentableAssetColumns:
    """Columns shared by cold boxes, cold plates and tricycles."""

    id = db.Column(db.Integer, primary_key=True)

    @declared_attr
    def site_id(cls):
        return db.Column(db.Integer, db.ForeignKey("sites.id"), nullable=False, index=True)

    # AVAILABLE, RENTED, MAINTENANCE. Written only by services/asset_service.py
    status = db.Column(db.String(16), nullable=False, default=ASSET_STATUS_AVAILABLE, index=True)
    daily_rate = db.Column(db.Numeric(14, 2), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def _base_dict(self) -> dict:
        return {
            "id": self.id,
            "site_id": self.site_id,
            "status": self.status,
            "daily_rate": decimal_str(self.daily_rate),
            "created_at": to_utc_z(self.created_at),
        }


class ColdBox(_RentableAssetColumns, db.Model):
    __tablename__ = "cold_boxes"
    __table_args__ = {"sqlite_autoincrement": True}

    identification_number = db.Column(db.String(64), nullable=False, unique=True)
    size_liters = db.Column(db.Integer, nullable=True)

    @property
    def identifier(self) -> str:
        return self.identification_number

    def to_dict(self) -> dict:
        data = self._base_dict()
        data.update(identification_number=self.identification_number, size_liters=self.size_liters)
        return data


class ColdPlate(_RentableAssetColumns, db.Model):
    __tablename__ = "cold_plates"
    __table_args__ = {"sqlite_autoincrement": True}

    identification_number = db.Column(db.String(64), nullable=False, unique=True)
    cooling_temperature = db.Column(db.Numeric(6, 2), nullable=True)

    @property
    def identifier(self) -> str:
        return self.identification_number

    def to_dict(self) -> dict:
        data = self._base_dict()
        data.update(
            identification_number=self.identification_number,
            cooling_temperature=decimal_str(self.cooling_temperature),
        )
        return data


class Tricycle(_RentableAssetColumns, db.Model):
    __tablename__ = "tricycles"
    __table_args__ = {"sqlite_autoincrement": True}

    plate_number = db.Column(db.String(32), nullable=False, unique=True)
    capacity = db.Column(db.String(64), nullable=True)

    @property
    def identifier(self) -> str:
        return self.plate_number

    def to_dict(self) -> dict:
        data = self._base_dict()
        data.update(plate_number=self.plate_number, capacity=self.capacity)
        return data
