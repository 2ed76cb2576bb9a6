# Overview: Service-layer operations for the stock ledger; encapsulates business logic and database work.

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError

from ..errors import (
    BadRequestError,
    CapacityExceededError,
    ConflictError,
    InsufficientStockError,
    NotFoundError,
)
from ..extensions import db
from ..models import ColdRoom, Product, StockMovement
from ..models.assets import ASSET_STATUS_AVAILABLE
from ..models.inventory import (
    MOVEMENT_IN,
    MOVEMENT_OUT,
    PRODUCT_STATUS_IN_STOCK,
    PRODUCT_STATUS_OUT_OF_STOCK,
)
from ..validation import to_kg
from . import audit_service
from .concurrency import lock_for_update, run_with_retry

logger = logging.getLogger(__name__)

"""
Stock Ledger Invariants (authoritative)

- StockMovement rows are append-only. A revert is a new, opposite movement
  that references the original through reversal_of_id.
- Product.quantity_kg == SUM(+qty for IN, -qty for OUT) over its movements.
- Every movement applies the same signed delta to the owning cold room's
  used_capacity_kg, which must stay within [0, total_capacity_kg].
- This module is the ONLY writer of Product.quantity_kg, Product.status and
  ColdRoom.used_capacity_kg.
- The *_locked helpers never commit. Callers (order approval) compose them
  into their own transaction so a failure on any line aborts every line.
"""

VALID_DIRECTIONS = (MOVEMENT_IN, MOVEMENT_OUT)


def _load_product_locked(product_id: int, site_id: int | None) -> Product:
    product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
    if product is None or product.deleted_at is not None:
        raise NotFoundError(f"Product {product_id} not found")
    if site_id is not None and product.site_id != site_id:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def _record_movement_locked(
    *,
    product_id: int,
    quantity_kg,
    direction: str,
    reason: str | None,
    actor_id: int | None,
    cold_room_id: int | None = None,
    site_id: int | None = None,
    reversal_of_id: int | None = None,
) -> StockMovement:
    """Apply one movement inside the caller's transaction (no commit)."""
    if direction not in VALID_DIRECTIONS:
        raise BadRequestError(f"Invalid direction: {direction}. Must be one of {list(VALID_DIRECTIONS)}")
    quantity = to_kg(quantity_kg)

    product = _load_product_locked(product_id, site_id)

    if cold_room_id is not None and cold_room_id != product.cold_room_id:
        raise BadRequestError(
            f"Product {product_id} is stored in cold room {product.cold_room_id}, not {cold_room_id}"
        )

    room = lock_for_update(db.session.query(ColdRoom).filter_by(id=product.cold_room_id)).first()
    if room is None:
        raise NotFoundError(f"Cold room {product.cold_room_id} not found")

    current = Decimal(product.quantity_kg)
    delta = quantity if direction == MOVEMENT_IN else -quantity
    new_quantity = current + delta

    if direction == MOVEMENT_OUT and new_quantity < 0:
        raise InsufficientStockError(
            f'Insufficient stock for "{product.name}". Available: {current}kg, Requested: {quantity}kg',
            details={"product_id": product.id, "available_kg": str(current), "requested_kg": str(quantity)},
        )

    used = Decimal(room.used_capacity_kg)
    total = Decimal(room.total_capacity_kg)
    if direction == MOVEMENT_IN:
        if room.status != ASSET_STATUS_AVAILABLE:
            raise BadRequestError(f"Cannot add stock: cold room is currently {room.status.lower()}")
        if used + quantity > total:
            raise CapacityExceededError(
                f"Storage capacity exceeded. Available: {total - used}kg, Requested: {quantity}kg",
                details={"cold_room_id": room.id, "available_kg": str(total - used)},
            )

    new_used = used + delta
    if new_used < 0:
        # Room counter and product stock disagree; the movement must not paper over it
        logger.error("Cold room %s used capacity would go negative (%s)", room.id, new_used)
        raise ConflictError(
            f"Cold room {room.id} used capacity is out of sync with its stock",
            details={"cold_room_id": room.id, "used_capacity_kg": str(used), "delta_kg": str(delta)},
        )

    product.quantity_kg = new_quantity
    product.status = PRODUCT_STATUS_OUT_OF_STOCK if new_quantity == 0 else PRODUCT_STATUS_IN_STOCK
    room.used_capacity_kg = new_used

    movement = StockMovement(
        product_id=product.id,
        cold_room_id=room.id,
        quantity_kg=quantity,
        direction=direction,
        reason=reason,
        actor_id=actor_id,
        reversal_of_id=reversal_of_id,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def audit_movement(movement: StockMovement, actor_id: int | None) -> None:
    audit_service.record(
        actor_id=actor_id,
        action=audit_service.ACTION_STOCK_MOVEMENT,
        entity_type="StockMovement",
        entity_id=movement.id,
        details={
            "product_id": movement.product_id,
            "cold_room_id": movement.cold_room_id,
            "direction": movement.direction,
            "quantity_kg": movement.quantity_kg,
            "reason": movement.reason,
            "reversal_of_id": movement.reversal_of_id,
        },
    )


def record_movement(
    *,
    product_id: int,
    quantity_kg,
    direction: str,
    reason: str | None = None,
    actor_id: int | None = None,
    cold_room_id: int | None = None,
    site_id: int | None = None,
) -> StockMovement:
    """
    Record a stock movement and update the cached balances.

    Raises:
        NotFoundError: product or cold room missing (or in another site)
        InsufficientStockError: OUT would leave the product below zero
        CapacityExceededError: IN would overfill the cold room
    """
    def _op():
        movement = _record_movement_locked(
            product_id=product_id,
            quantity_kg=quantity_kg,
            direction=direction,
            reason=reason,
            actor_id=actor_id,
            cold_room_id=cold_room_id,
            site_id=site_id,
        )
        db.session.commit()
        return movement

    movement = run_with_retry(_op)
    logger.info(
        "Stock %s %skg for product %s (movement %s)",
        movement.direction, movement.quantity_kg, movement.product_id, movement.id,
    )
    audit_movement(movement, actor_id)
    return movement


def revert_movement(movement_id: int, actor_id: int | None = None, *, site_id: int | None = None) -> StockMovement:
    """
    Compensate a movement with an opposite one.

    The original row is untouched. Reverting an IN re-validates current
    stock, so it fails if the stock has since been consumed. A movement can
    be reverted once; the unique reversal_of_id closes the race between two
    concurrent reverts.
    """
    def _op():
        original = lock_for_update(db.session.query(StockMovement).filter_by(id=movement_id)).first()
        if original is None:
            raise NotFoundError(f"Movement {movement_id} not found")
        if site_id is not None and original.product.site_id != site_id:
            raise NotFoundError(f"Movement {movement_id} not found")

        already = db.session.query(StockMovement.id).filter_by(reversal_of_id=original.id).first()
        if already is not None:
            raise ConflictError(f"Movement {movement_id} has already been reverted")

        inverse = MOVEMENT_OUT if original.direction == MOVEMENT_IN else MOVEMENT_IN
        try:
            reversal = _record_movement_locked(
                product_id=original.product_id,
                quantity_kg=original.quantity_kg,
                direction=inverse,
                reason=f"REVERSAL of movement ID: {original.id}",
                actor_id=actor_id,
                reversal_of_id=original.id,
            )
        except InsufficientStockError:
            raise InsufficientStockError("Cannot revert: resulting stock would be negative")
        db.session.commit()
        return reversal

    reversal = run_with_retry(_op, retry_on=(IntegrityError,))
    logger.info("Reverted movement %s with movement %s", movement_id, reversal.id)
    audit_movement(reversal, actor_id)
    return reversal


def get_movement(movement_id: int, *, site_id: int | None = None) -> StockMovement:
    movement = db.session.get(StockMovement, movement_id)
    if movement is None or (site_id is not None and movement.product.site_id != site_id):
        raise NotFoundError(f"Movement {movement_id} not found")
    return movement


def list_movements(
    *,
    site_id: int | None = None,
    product_id: int | None = None,
    cold_room_id: int | None = None,
    direction: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    """Newest-first page of movements, optionally scoped to one site."""
    q = db.session.query(StockMovement)
    if site_id is not None:
        q = q.join(Product, Product.id == StockMovement.product_id).filter(Product.site_id == site_id)
    if product_id is not None:
        q = q.filter(StockMovement.product_id == product_id)
    if cold_room_id is not None:
        q = q.filter(StockMovement.cold_room_id == cold_room_id)
    if direction is not None:
        q = q.filter(StockMovement.direction == direction)
    if date_from is not None:
        q = q.filter(StockMovement.created_at >= date_from)
    if date_to is not None:
        q = q.filter(StockMovement.created_at <= date_to)

    page = max(page, 1)
    limit = max(min(limit, 100), 1)
    total = q.count()
    rows = (
        q.order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "data": rows,
        "pagination": {
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": (total + limit - 1) // limit,
        },
    }


def ledger_quantity(product_id: int) -> Decimal:
    """Signed sum of every movement for the product."""
    signed = case(
        (StockMovement.direction == MOVEMENT_IN, StockMovement.quantity_kg),
        else_=-StockMovement.quantity_kg,
    )
    total = (
        db.session.query(func.coalesce(func.sum(signed), 0))
        .filter(StockMovement.product_id == product_id)
        .scalar()
    )
    return Decimal(str(total or 0)).quantize(Decimal("0.001"))


def verify_product_balance(product_id: int) -> dict:
    """Compare the cached quantity with the ledger-derived one."""
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    from_ledger = ledger_quantity(product_id)
    cached = Decimal(product.quantity_kg).quantize(Decimal("0.001"))
    return {
        "product_id": product_id,
        "cached_quantity_kg": cached,
        "ledger_quantity_kg": from_ledger,
        "balanced": cached == from_ledger,
    }
