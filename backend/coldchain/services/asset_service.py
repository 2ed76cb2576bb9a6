# Overview: Availability tracking for rentable assets (cold boxes, cold plates, tricycles, cold rooms).

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..errors import BadRequestError, NotFoundError
from ..extensions import db
from ..models import ColdBox, ColdPlate, ColdRoom, Rental, Tricycle
from ..models.assets import (
    ASSET_STATUS_AVAILABLE,
    ASSET_STATUS_MAINTENANCE,
    ASSET_STATUS_RENTED,
)
from .concurrency import lock_for_update

logger = logging.getLogger(__name__)

ASSET_TYPE_COLD_BOX = "COLD_BOX"
ASSET_TYPE_COLD_PLATE = "COLD_PLATE"
ASSET_TYPE_TRICYCLE = "TRICYCLE"
ASSET_TYPE_COLD_ROOM = "COLD_ROOM"

ASSET_STATUSES = (ASSET_STATUS_AVAILABLE, ASSET_STATUS_RENTED, ASSET_STATUS_MAINTENANCE)


@dataclass(frozen=True)
class AssetVariant:
    """
    One kind of rentable asset.

    rental_fk is the Rental column that points at this kind of asset; label
    is the human name used on invoice lines.
    """
    asset_type: str
    model: type
    rental_fk: str
    label: str


COLD_BOX = AssetVariant(ASSET_TYPE_COLD_BOX, ColdBox, "cold_box_id", "Cold Box")
COLD_PLATE = AssetVariant(ASSET_TYPE_COLD_PLATE, ColdPlate, "cold_plate_id", "Cold Plate")
TRICYCLE = AssetVariant(ASSET_TYPE_TRICYCLE, Tricycle, "tricycle_id", "Tricycle")
COLD_ROOM = AssetVariant(ASSET_TYPE_COLD_ROOM, ColdRoom, "cold_room_id", "Cold Room")

VARIANTS = (COLD_BOX, COLD_PLATE, TRICYCLE, COLD_ROOM)
_BY_TYPE = {variant.asset_type: variant for variant in VARIANTS}
ASSET_TYPES = tuple(_BY_TYPE)


def variant_for(asset_type: str) -> AssetVariant:
    try:
        return _BY_TYPE[asset_type]
    except KeyError:
        raise BadRequestError(f"Invalid asset type: {asset_type}. Must be one of {list(ASSET_TYPES)}")


def rental_asset_ref(rental: Rental) -> tuple[AssetVariant, int]:
    """Return (variant, asset_id) for the single asset a rental points at."""
    variant = variant_for(rental.asset_type)
    asset_id = getattr(rental, variant.rental_fk)
    if asset_id is None:
        raise BadRequestError(f"Rental {rental.id} has no {variant.label.lower()} reference")
    return variant, asset_id


def _load(variant: AssetVariant, asset_id: int, *, lock: bool = False):
    q = db.session.query(variant.model).filter_by(id=asset_id)
    if lock:
        q = lock_for_update(q)
    return q.first()


def get_asset(variant: AssetVariant, asset_id: int, *, site_id: int | None = None):
    asset = _load(variant, asset_id)
    if asset is None or asset.deleted_at is not None:
        raise NotFoundError(f"{variant.label} {asset_id} not found")
    if site_id is not None and asset.site_id != site_id:
        raise NotFoundError(f"{variant.label} {asset_id} not found")
    return asset


def check_availability(asset_type: str, asset_id: int, site_id: int) -> bool:
    """True iff the asset exists in site_id, is not deleted and is AVAILABLE."""
    variant = variant_for(asset_type)
    asset = _load(variant, asset_id, lock=True)
    if asset is None or asset.deleted_at is not None:
        return False
    if asset.site_id != site_id:
        return False
    return asset.status == ASSET_STATUS_AVAILABLE


def _set_status(asset_type: str, asset_id: int, status: str) -> None:
    # No commit: callers own the transaction so asset and rental move together
    variant = variant_for(asset_type)
    asset = _load(variant, asset_id, lock=True)
    if asset is None:
        raise NotFoundError(f"{variant.label} {asset_id} not found")
    previous = asset.status
    asset.status = status
    db.session.flush()
    logger.debug("%s %s status %s -> %s", variant.label, asset_id, previous, status)


def mark_as_rented(asset_type: str, asset_id: int) -> None:
    _set_status(asset_type, asset_id, ASSET_STATUS_RENTED)


def mark_as_available(asset_type: str, asset_id: int) -> None:
    _set_status(asset_type, asset_id, ASSET_STATUS_AVAILABLE)


def describe_asset(variant: AssetVariant, asset) -> str:
    """Invoice line description, e.g. 'Cold Box Rental - CB-001'."""
    return f"{variant.label} Rental - {asset.identifier}"


def list_available_assets(site_id: int, asset_type: str | None = None) -> dict[str, list]:
    """AVAILABLE, non-deleted assets of a site grouped by asset type."""
    variants = (variant_for(asset_type),) if asset_type else VARIANTS
    result = {}
    for variant in variants:
        model = variant.model
        result[variant.asset_type] = (
            db.session.query(model)
            .filter(
                model.site_id == site_id,
                model.status == ASSET_STATUS_AVAILABLE,
                model.deleted_at.is_(None),
            )
            .order_by(model.id)
            .all()
        )
    return result
