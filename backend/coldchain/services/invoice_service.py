# Overview: Service-layer operations for invoices; issuing, settlement, voiding and lookups.

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import (
    BadRequestError,
    ConflictError,
    InsufficientDataError,
    InvoiceAlreadyExistsError,
    NotFoundError,
)
from ..extensions import db
from ..models import Invoice, InvoiceItem, Order, Payment, Rental
from ..models.invoices import INVOICE_STATUS_PAID, INVOICE_STATUS_UNPAID, INVOICE_STATUS_VOID
from ..models.orders import ORDER_STATUS_APPROVED
from ..models.payments import PAYMENT_STATUS_PENDING
from ..models.rentals import RENTAL_STATUS_ACTIVE, RENTAL_STATUS_APPROVED
from ..time_utils import billable_days, utcnow
from ..validation import quantize_money, to_decimal
from . import asset_service, audit_service
from .concurrency import lock_for_update, run_with_retry
from .sequence_service import SequenceAllocator

logger = logging.getLogger(__name__)

SOURCE_ORDER = "ORDER"
SOURCE_RENTAL = "RENTAL"
SOURCE_TYPES = (SOURCE_ORDER, SOURCE_RENTAL)

INVOICE_STATUSES = (INVOICE_STATUS_UNPAID, INVOICE_STATUS_PAID, INVOICE_STATUS_VOID)

"""
Invoice invariants

- One invoice per source, ever: invoices.order_id and invoices.rental_id are
  unique. The pre-insert lookup gives a friendly error; the constraint is
  what actually holds under concurrency.
- total_amount == subtotal + tax_amount, with tax = subtotal * TAX_RATE.
- Items are copied from the source at issue time and never touched again.
- Numbers come from SequenceAllocator inside the same transaction as the
  insert, so a failed issue does not burn a number.
"""


def _tax_rate() -> Decimal:
    return Decimal(str(current_app.config.get("INVOICE_TAX_RATE", 0)))


def _allocator() -> SequenceAllocator:
    return SequenceAllocator(width=current_app.config.get("INVOICE_NUMBER_LENGTH", 5))


def _existing_invoice(source_type: str, source_id: int) -> Invoice | None:
    column = Invoice.order_id if source_type == SOURCE_ORDER else Invoice.rental_id
    return db.session.query(Invoice).filter(column == source_id).first()


# =============================================================================
# Source snapshots
# =============================================================================

def _order_lines(order: Order, site_id: int | None) -> list[InvoiceItem]:
    if order is None or order.deleted_at is not None:
        raise NotFoundError("Order not found")
    if site_id is not None and order.site_id != site_id:
        raise NotFoundError("Order not found")
    if order.status != ORDER_STATUS_APPROVED:
        raise InsufficientDataError(f"Order must be APPROVED to invoice (current status: {order.status})")
    if not order.items:
        raise InsufficientDataError("Order has no items to invoice")

    lines = []
    for item in order.items:
        product = item.product
        lines.append(
            InvoiceItem(
                description=product.name if product is not None else f"Product {item.product_id}",
                quantity=item.quantity_kg,
                unit=product.unit if product is not None else "kg",
                unit_price=item.unit_price,
                subtotal=item.subtotal,
            )
        )
    return lines


def _rental_lines(rental: Rental, site_id: int | None) -> list[InvoiceItem]:
    if rental is None or rental.deleted_at is not None:
        raise NotFoundError("Rental not found")
    if site_id is not None and rental.site_id != site_id:
        raise NotFoundError("Rental not found")
    if rental.status not in (RENTAL_STATUS_APPROVED, RENTAL_STATUS_ACTIVE):
        raise InsufficientDataError(
            f"Rental must be APPROVED or ACTIVE to invoice (current status: {rental.status})"
        )
    if rental.rental_end_date <= rental.rental_start_date:
        raise InsufficientDataError("Rental end date must be after start date")

    variant, asset_id = asset_service.rental_asset_ref(rental)
    asset = db.session.get(variant.model, asset_id)
    if asset is None:
        raise InsufficientDataError(f"Rental {rental.id} asset cannot be resolved")

    days = billable_days(rental.rental_start_date, rental.rental_end_date)
    fee = Decimal(rental.fee)
    return [
        InvoiceItem(
            description=asset_service.describe_asset(variant, asset),
            quantity=Decimal(days),
            unit="days",
            unit_price=quantize_money(fee / days),
            subtotal=quantize_money(fee),
        )
    ]


# =============================================================================
# Issue
# =============================================================================

def _generate_locked(
    *,
    source_type: str,
    source_id: int,
    due_date: datetime | None = None,
    site_id: int | None = None,
) -> Invoice:
    """Issue an invoice inside the caller's transaction (no commit)."""
    if source_type not in SOURCE_TYPES:
        raise BadRequestError(f"Invalid source type: {source_type}")

    if _existing_invoice(source_type, source_id) is not None:
        raise InvoiceAlreadyExistsError(source_type, source_id)

    if source_type == SOURCE_ORDER:
        source = db.session.get(Order, source_id)
        lines = _order_lines(source, site_id)
    else:
        source = db.session.get(Rental, source_id)
        lines = _rental_lines(source, site_id)

    subtotal = quantize_money(sum((Decimal(line.subtotal) for line in lines), Decimal("0")))
    tax_amount = quantize_money(subtotal * _tax_rate())
    total_amount = subtotal + tax_amount

    now = utcnow()
    if due_date is None:
        due_date = now + timedelta(days=current_app.config.get("INVOICE_DEFAULT_DUE_DAYS", 30))

    number = _allocator().next_number(source.site_id, now.year)

    invoice = Invoice(
        invoice_number=number,
        order_id=source_id if source_type == SOURCE_ORDER else None,
        rental_id=source_id if source_type == SOURCE_RENTAL else None,
        client_id=source.client_id,
        site_id=source.site_id,
        subtotal=subtotal,
        tax_amount=tax_amount,
        total_amount=total_amount,
        paid_amount=Decimal("0"),
        status=INVOICE_STATUS_UNPAID,
        due_date=due_date,
        items=lines,
    )
    db.session.add(invoice)
    db.session.flush()
    return invoice


def audit_issued(invoice: Invoice, actor_id: int | None) -> None:
    audit_service.record(
        actor_id=actor_id,
        action=audit_service.ACTION_CREATE,
        entity_type="Invoice",
        entity_id=invoice.id,
        details={
            "invoice_number": invoice.invoice_number,
            "order_id": invoice.order_id,
            "rental_id": invoice.rental_id,
            "total_amount": invoice.total_amount,
        },
    )


def generate(
    source_type: str,
    source_id: int,
    *,
    due_date: datetime | None = None,
    actor_id: int | None = None,
    site_id: int | None = None,
) -> Invoice:
    """
    Issue the invoice for an approved order or rental.

    Raises:
        InvoiceAlreadyExistsError: the source already has an invoice
        NotFoundError: source missing, deleted, or in another site
        InsufficientDataError: source not in an invoiceable state
    """
    def _op():
        invoice = _generate_locked(
            source_type=source_type,
            source_id=source_id,
            due_date=due_date,
            site_id=site_id,
        )
        db.session.commit()
        return invoice

    # IntegrityError: lost the race on the source's unique invoice slot or on
    # seeding the sequence. The retry re-runs the existence check.
    invoice = run_with_retry(_op, attempts=5, retry_on=(IntegrityError,))
    logger.info(
        "Issued invoice %s for %s %s (total %s)",
        invoice.invoice_number, source_type, source_id, invoice.total_amount,
    )
    audit_issued(invoice, actor_id)
    return invoice


def generate_order_invoice(order_id: int, **kwargs) -> Invoice:
    return generate(SOURCE_ORDER, order_id, **kwargs)


def generate_rental_invoice(rental_id: int, **kwargs) -> Invoice:
    return generate(SOURCE_RENTAL, rental_id, **kwargs)


# =============================================================================
# Settlement
# =============================================================================

def _load_invoice_locked(invoice_id: int, site_id: int | None = None) -> Invoice:
    invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
    if invoice is None or (site_id is not None and invoice.site_id != site_id):
        raise NotFoundError(f"Invoice {invoice_id} not found")
    return invoice


def _apply_payment_locked(invoice: Invoice, amount: Decimal, *, allow_overpay: bool = False) -> Invoice:
    """
    Credit amount to a locked invoice (no commit).

    Status becomes PAID once paid_amount reaches total_amount.
    """
    if invoice.status == INVOICE_STATUS_VOID:
        raise InsufficientDataError("Cannot apply payment to a VOID invoice")
    if amount <= 0:
        raise BadRequestError("Payment amount must be positive")

    outstanding = Decimal(invoice.total_amount) - Decimal(invoice.paid_amount)
    if amount > outstanding:
        if not allow_overpay:
            raise BadRequestError(
                f"Payment of {amount} exceeds outstanding balance of {outstanding}",
                details={"invoice_id": invoice.id, "amount_due": str(outstanding)},
            )
        logger.warning(
            "Invoice %s overpaid: outstanding %s, credited %s",
            invoice.invoice_number, outstanding, amount,
        )

    new_paid = quantize_money(Decimal(invoice.paid_amount) + amount)
    invoice.paid_amount = new_paid
    invoice.status = INVOICE_STATUS_PAID if new_paid >= Decimal(invoice.total_amount) else INVOICE_STATUS_UNPAID
    db.session.flush()
    return invoice


def audit_payment(invoice: Invoice, amount: Decimal, actor_id: int | None, **extra) -> None:
    details = {
        "invoice_number": invoice.invoice_number,
        "amount": amount,
        "paid_amount": invoice.paid_amount,
        "status": invoice.status,
    }
    details.update(extra)
    audit_service.record(
        actor_id=actor_id,
        action=audit_service.ACTION_PAYMENT_RECEIVED,
        entity_type="Invoice",
        entity_id=invoice.id,
        details=details,
    )


def mark_paid(invoice_id: int, amount, *, actor_id: int | None = None, site_id: int | None = None) -> Invoice:
    """Credit a payment to an invoice. Overpayment is rejected."""
    payment_amount = to_decimal(amount, "amount")

    def _op():
        invoice = _load_invoice_locked(invoice_id, site_id)
        _apply_payment_locked(invoice, payment_amount)
        db.session.commit()
        return invoice

    invoice = run_with_retry(_op)
    logger.info("Invoice %s credited %s (status %s)", invoice.invoice_number, payment_amount, invoice.status)
    audit_payment(invoice, payment_amount, actor_id)
    return invoice


def void_invoice(invoice_id: int, reason: str, *, actor_id: int | None = None, site_id: int | None = None) -> Invoice:
    """
    VOID is terminal. A PAID invoice must be refunded instead.

    An invoice with a PENDING mobile-money payment cannot be voided: the
    customer may already be approving the charge. Settle or fail the
    payment first (sync it, or wait for the webhook).
    """
    reason = (reason or "").strip()
    if not reason:
        raise BadRequestError("A void reason is required")

    def _op():
        invoice = _load_invoice_locked(invoice_id, site_id)
        if invoice.status == INVOICE_STATUS_PAID:
            raise BadRequestError("Cannot void a paid invoice. Issue a refund instead")
        if invoice.status == INVOICE_STATUS_VOID:
            raise BadRequestError("Invoice is already void")
        pending = (
            db.session.query(Payment.id)
            .filter_by(invoice_id=invoice.id, status=PAYMENT_STATUS_PENDING)
            .count()
        )
        if pending:
            raise ConflictError(
                "Cannot void an invoice with a pending payment",
                details={"invoice_id": invoice.id, "pending_payments": pending},
            )
        invoice.status = INVOICE_STATUS_VOID
        invoice.void_reason = reason[:255]
        invoice.voided_at = utcnow()
        db.session.commit()
        return invoice

    invoice = run_with_retry(_op)
    logger.info("Invoice %s voided: %s", invoice.invoice_number, reason)
    audit_service.record(
        actor_id=actor_id,
        action=audit_service.ACTION_UPDATE,
        entity_type="Invoice",
        entity_id=invoice.id,
        details={"status": INVOICE_STATUS_VOID, "reason": reason},
    )
    return invoice


# =============================================================================
# Reads
# =============================================================================

def get_invoice(invoice_id: int, *, site_id: int | None = None, client_id: int | None = None) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFoundError(f"Invoice {invoice_id} not found")
    if site_id is not None and invoice.site_id != site_id:
        raise NotFoundError(f"Invoice {invoice_id} not found")
    if client_id is not None and invoice.client_id != client_id:
        raise NotFoundError(f"Invoice {invoice_id} not found")
    return invoice


def get_invoice_by_number(invoice_number: str, *, site_id: int | None = None) -> Invoice:
    invoice = db.session.query(Invoice).filter_by(invoice_number=invoice_number).first()
    if invoice is None or (site_id is not None and invoice.site_id != site_id):
        raise NotFoundError(f"Invoice {invoice_number} not found")
    return invoice


def list_invoices(
    *,
    status: str | None = None,
    client_id: int | None = None,
    site_id: int | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    page: int = 1,
    limit: int | None = None,
) -> dict:
    if status is not None and status not in INVOICE_STATUSES:
        raise BadRequestError(f"Invalid status: {status}")

    q = db.session.query(Invoice)
    if status is not None:
        q = q.filter(Invoice.status == status)
    if client_id is not None:
        q = q.filter(Invoice.client_id == client_id)
    if site_id is not None:
        q = q.filter(Invoice.site_id == site_id)
    if start_date is not None:
        q = q.filter(Invoice.created_at >= start_date)
    if end_date is not None:
        q = q.filter(Invoice.created_at <= end_date)

    max_limit = current_app.config.get("INVOICE_MAX_PAGE_LIMIT", 100)
    if limit is None:
        limit = current_app.config.get("INVOICE_DEFAULT_PAGE_LIMIT", 20)
    limit = max(min(limit, max_limit), 1)
    page = max(page, 1)

    total = q.count()
    rows = (
        q.order_by(Invoice.created_at.desc(), Invoice.id.desc())
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
