# Overview: Service-layer operations for rentals; encapsulates the rental state machine.

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import update

from ..errors import (
    BadRequestError,
    ConcurrentModificationError,
    InvalidTransitionError,
    NotFoundError,
)
from ..extensions import db
from ..models import Invoice, Rental
from ..models.invoices import INVOICE_STATUS_PAID
from ..models.rentals import (
    RENTAL_STATUS_ACTIVE,
    RENTAL_STATUS_APPROVED,
    RENTAL_STATUS_COMPLETED,
    RENTAL_STATUS_REQUESTED,
)
from ..time_utils import utcnow
from ..validation import to_datetime, to_decimal, to_int
from . import asset_service, audit_service, invoice_service
from .concurrency import run_with_retry

logger = logging.getLogger(__name__)

RENTAL_STATUSES = (
    RENTAL_STATUS_REQUESTED,
    RENTAL_STATUS_APPROVED,
    RENTAL_STATUS_ACTIVE,
    RENTAL_STATUS_COMPLETED,
)

"""
Rental concurrency

Every transition is a conditional UPDATE ... WHERE id = ? AND status = <expected>.
If it touches no row another request got there first and the caller gets
ConcurrentModificationError; nothing is retried. Asset status changes run
in the same transaction as the transition that causes them.
"""


@dataclass
class RentalApproval:
    rental: Rental
    invoice: Invoice


def _load_rental(rental_id: int, site_id: int | None) -> Rental:
    rental = db.session.get(Rental, rental_id)
    if rental is None or rental.deleted_at is not None:
        raise NotFoundError(f"Rental {rental_id} not found")
    if site_id is not None and rental.site_id != site_id:
        raise NotFoundError(f"Rental {rental_id} not found")
    return rental


def _require_status(rental: Rental, expected: str, action: str) -> None:
    if rental.status != expected:
        raise InvalidTransitionError(
            f"Cannot {action} rental in {rental.status} status",
            details={"rental_id": rental.id, "status": rental.status},
        )


def _transition(rental: Rental, expected: str, **values) -> None:
    """Conditional update gated on the expected status; no commit."""
    stmt = (
        update(Rental)
        .where(Rental.id == rental.id, Rental.status == expected)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        raise ConcurrentModificationError(
            f"Rental {rental.id} has already been processed",
            details={"rental_id": rental.id, "expected_status": expected},
        )
    db.session.refresh(rental)


def _audit(rental: Rental, action: str, actor_id: int | None, **details) -> None:
    audit_service.record(
        actor_id=actor_id,
        action=action,
        entity_type="Rental",
        entity_id=rental.id,
        details={"status": rental.status, **details},
    )


# =============================================================================
# Create
# =============================================================================

def create_rental(
    *,
    client_id: int,
    site_id: int,
    asset_type: str,
    rental_start_date,
    rental_end_date,
    estimated_fee,
    cold_box_id=None,
    cold_plate_id=None,
    tricycle_id=None,
    cold_room_id=None,
    actor_id: int | None = None,
) -> Rental:
    """
    Create a REQUESTED rental.

    Exactly one asset reference may be given and it must be the one that
    matches asset_type. The asset must be AVAILABLE now; it is re-checked at
    approval and activation.
    """
    variant = asset_service.variant_for(asset_type)
    refs = {
        "cold_box_id": cold_box_id,
        "cold_plate_id": cold_plate_id,
        "tricycle_id": tricycle_id,
        "cold_room_id": cold_room_id,
    }
    provided = {key: value for key, value in refs.items() if value is not None}
    if list(provided) != [variant.rental_fk]:
        raise BadRequestError(f"{asset_type} rental requires exactly one asset reference: {variant.rental_fk}")
    asset_id = to_int(provided[variant.rental_fk], variant.rental_fk)

    start = to_datetime(rental_start_date, "rental_start_date")
    end = to_datetime(rental_end_date, "rental_end_date")
    if end <= start:
        raise BadRequestError("rental_end_date must be after rental_start_date")
    fee = to_decimal(estimated_fee, "estimated_fee")

    if not asset_service.check_availability(asset_type, asset_id, site_id):
        raise BadRequestError(f"{variant.label} {asset_id} is not available")

    def _op():
        rental = Rental(
            client_id=client_id,
            site_id=site_id,
            asset_type=asset_type,
            rental_start_date=start,
            rental_end_date=end,
            estimated_fee=fee,
            status=RENTAL_STATUS_REQUESTED,
            **{variant.rental_fk: asset_id},
        )
        db.session.add(rental)
        db.session.commit()
        return rental

    rental = run_with_retry(_op)
    logger.info("Rental %s requested: %s %s", rental.id, asset_type, asset_id)
    _audit(rental, audit_service.ACTION_CREATE, actor_id, asset_type=asset_type, asset_id=asset_id)
    return rental


# =============================================================================
# Transitions
# =============================================================================

def approve_rental(rental_id: int, *, actor_id: int | None = None, site_id: int | None = None) -> RentalApproval:
    """
    REQUESTED -> APPROVED, then issue the rental invoice.

    The invoice is issued after the approval commits. Of two concurrent
    approvals exactly one passes the conditional update.
    """
    def _op():
        rental = _load_rental(rental_id, site_id)
        _require_status(rental, RENTAL_STATUS_REQUESTED, "approve")
        variant, asset_id = asset_service.rental_asset_ref(rental)
        if not asset_service.check_availability(variant.asset_type, asset_id, rental.site_id):
            raise BadRequestError(f"{variant.label} {asset_id} is no longer available")
        _transition(
            rental,
            RENTAL_STATUS_REQUESTED,
            status=RENTAL_STATUS_APPROVED,
            approved_by=actor_id,
            approved_at=utcnow(),
        )
        db.session.commit()
        return rental

    rental = run_with_retry(_op)
    logger.info("Rental %s approved by %s", rental.id, actor_id)
    _audit(rental, audit_service.ACTION_APPROVE, actor_id)

    invoice = invoice_service.generate(
        invoice_service.SOURCE_RENTAL,
        rental.id,
        actor_id=actor_id,
        site_id=rental.site_id,
    )
    return RentalApproval(rental=rental, invoice=invoice)


def activate_rental(rental_id: int, *, actor_id: int | None = None, site_id: int | None = None) -> Rental:
    """APPROVED -> ACTIVE. Requires a PAID invoice and a still AVAILABLE asset."""
    def _op():
        rental = _load_rental(rental_id, site_id)
        _require_status(rental, RENTAL_STATUS_APPROVED, "activate")

        invoice = db.session.query(Invoice).filter_by(rental_id=rental.id).first()
        if invoice is None:
            raise BadRequestError("Rental has no invoice")
        if invoice.status != INVOICE_STATUS_PAID:
            raise BadRequestError(
                f"Invoice {invoice.invoice_number} must be PAID before activation (current: {invoice.status})"
            )

        variant, asset_id = asset_service.rental_asset_ref(rental)
        if not asset_service.check_availability(variant.asset_type, asset_id, rental.site_id):
            raise BadRequestError(f"{variant.label} {asset_id} is not available")

        _transition(rental, RENTAL_STATUS_APPROVED, status=RENTAL_STATUS_ACTIVE, activated_at=utcnow())
        asset_service.mark_as_rented(variant.asset_type, asset_id)
        db.session.commit()
        return rental

    rental = run_with_retry(_op)
    logger.info("Rental %s activated", rental.id)
    _audit(rental, audit_service.ACTION_UPDATE, actor_id)
    return rental


def complete_rental(
    rental_id: int,
    *,
    actor_id: int | None = None,
    site_id: int | None = None,
    actual_fee=None,
) -> Rental:
    """ACTIVE -> COMPLETED and release the asset."""
    fee = to_decimal(actual_fee, "actual_fee") if actual_fee is not None else None

    def _op():
        rental = _load_rental(rental_id, site_id)
        _require_status(rental, RENTAL_STATUS_ACTIVE, "complete")
        values = {"status": RENTAL_STATUS_COMPLETED, "completed_at": utcnow()}
        if fee is not None:
            values["actual_fee"] = fee
        _transition(rental, RENTAL_STATUS_ACTIVE, **values)
        variant, asset_id = asset_service.rental_asset_ref(rental)
        asset_service.mark_as_available(variant.asset_type, asset_id)
        db.session.commit()
        return rental

    rental = run_with_retry(_op)
    logger.info("Rental %s completed", rental.id)
    _audit(rental, audit_service.ACTION_UPDATE, actor_id)
    return rental


# =============================================================================
# Reads
# =============================================================================

def get_rental(rental_id: int, *, site_id: int | None = None) -> Rental:
    return _load_rental(rental_id, site_id)


def list_rentals(
    *,
    site_id: int | None = None,
    client_id: int | None = None,
    status: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
) -> list[Rental]:
    if status is not None and status not in RENTAL_STATUSES:
        raise BadRequestError(f"Invalid status: {status}")
    q = db.session.query(Rental).filter(Rental.deleted_at.is_(None))
    if site_id is not None:
        q = q.filter(Rental.site_id == site_id)
    if client_id is not None:
        q = q.filter(Rental.client_id == client_id)
    if status is not None:
        q = q.filter(Rental.status == status)
    if date_from is not None:
        q = q.filter(Rental.rental_start_date >= date_from)
    if date_to is not None:
        q = q.filter(Rental.rental_end_date <= date_to)
    return q.order_by(Rental.created_at.desc(), Rental.id.desc()).all()
