from __future__ import annotations

from ..extensions import db
from coldchain.time_utils import to_utc_z


class Site(db.Model):
    """
    Tenant boundary: a physical cold-storage site.

    MULTI-TENANT: Products, cold rooms, rentable assets, orders, rentals and
    invoices all carry site_id. Service reads are always scoped by it.

    The site row doubles as the lock target for invoice numbering
    (see services/sequence_service.py).
    """
    __tablename__ = "sites"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    location = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Site id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "location": self.location,
            "created_at": to_utc_z(self.created_at),
        }
