# Overview: Service-layer operations for payments; initiation, webhook reconciliation and manual settlement.

from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import asdict, dataclass
from decimal import Decimal, InvalidOperation

from ..errors import BadRequestError, ConflictError, NotFoundError
from ..extensions import db
from ..models import Invoice, Payment
from ..models.invoices import INVOICE_STATUS_PAID, INVOICE_STATUS_VOID
from ..models.payments import (
    PAYMENT_METHOD_MOBILE_MONEY,
    PAYMENT_STATUS_FAILED,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_PENDING,
)
from ..time_utils import utcnow
from . import audit_service, invoice_service
from .concurrency import lock_for_update, run_with_retry
from .momo_gateway import get_gateway

logger = logging.getLogger(__name__)

PAYMENT_STATUSES = (PAYMENT_STATUS_PENDING, PAYMENT_STATUS_PAID, PAYMENT_STATUS_FAILED)

WEBHOOK_SUCCESS_STATUSES = ("SUCCESSFUL", "PAID")
WEBHOOK_FAILED_STATUS = "FAILED"

"""
Reconciliation invariants

- A payment credits its invoice exactly once: the PENDING -> PAID flip and
  the invoice credit commit together.
- Webhooks are delivered at least once and possibly concurrently. The
  PAID check runs twice: a cheap one before the transaction and the
  authoritative one on the locked row inside it. Payment carries a version
  column, so on backends without row locks the losing writer gets
  StaleDataError, retries, and lands on the idempotent branch.
- Unknown references and repeat deliveries are answers, not errors, so the
  gateway stops retrying. So is a confirmation for an invoice that went
  VOID: the payment is recorded and nothing is credited.
- An invoice has at most one PENDING payment at a time.
"""


@dataclass
class PaymentHandle:
    payment_id: int
    transaction_ref: str
    amount: Decimal
    phone_number: str
    status: str
    message: str = "Payment request sent to your phone. Please approve to complete payment."

    def to_dict(self) -> dict:
        data = asdict(self)
        data["amount"] = str(self.amount)
        return data


@dataclass
class WebhookResult:
    processed: bool
    message: str
    idempotent: bool = False
    payment_id: int | None = None
    invoice_status: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def _as_decimal(value) -> Decimal | None:
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def verify_webhook_signature(raw_body: bytes, signature: str | None, secret: str) -> bool:
    """HMAC-SHA256 of the raw body, hex encoded, compared in constant time."""
    if not signature or not secret:
        return False
    expected = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.strip().lower())


# =============================================================================
# Initiation
# =============================================================================

def initiate_payment(
    invoice_id: int,
    phone_number: str,
    *,
    actor_id: int | None = None,
    site_id: int | None = None,
) -> PaymentHandle:
    """
    Ask the gateway to charge the invoice's outstanding balance.

    The gateway call happens before any row is written, so a gateway
    failure leaves nothing behind and the whole call can be retried.
    """
    invoice = invoice_service.get_invoice(invoice_id, site_id=site_id)
    if invoice.status == INVOICE_STATUS_PAID:
        raise BadRequestError("Invoice is already paid")
    if invoice.status == INVOICE_STATUS_VOID:
        raise BadRequestError("Cannot pay voided invoice")

    amount_due = Decimal(invoice.total_amount) - Decimal(invoice.paid_amount)
    if amount_due <= 0:
        raise BadRequestError("Invoice has no outstanding balance")

    # One open charge per invoice; a second would credit the same balance twice
    open_payment = (
        db.session.query(Payment)
        .filter_by(invoice_id=invoice.id, status=PAYMENT_STATUS_PENDING)
        .first()
    )
    if open_payment is not None:
        raise ConflictError(
            "A payment for this invoice is already pending. Sync it or wait for confirmation",
            details={"payment_id": open_payment.id, "transaction_ref": open_payment.gateway_transaction_ref},
        )

    gateway = get_gateway()
    if not gateway.is_configured():
        raise BadRequestError(
            "Mobile money payment is not configured. Please contact administrator or use manual payment."
        )

    transaction_ref = gateway.request_to_pay(
        amount_due,
        phone_number,
        invoice.invoice_number,
        f"Payment for invoice {invoice.invoice_number}",
        f"Invoice payment - {invoice.invoice_number}",
    )

    def _op():
        payment = Payment(
            invoice_id=invoice.id,
            amount=amount_due,
            method=PAYMENT_METHOD_MOBILE_MONEY,
            status=PAYMENT_STATUS_PENDING,
            phone_number=phone_number,
            gateway_transaction_ref=transaction_ref,
            initiated_by=actor_id,
        )
        db.session.add(payment)
        db.session.commit()
        return payment

    payment = run_with_retry(_op)
    logger.info("Payment %s initiated for invoice %s, ref %s", payment.id, invoice.invoice_number, transaction_ref)
    audit_service.record(
        actor_id=actor_id,
        action=audit_service.ACTION_CREATE,
        entity_type="Payment",
        entity_id=payment.id,
        details={
            "invoice_id": invoice.id,
            "invoice_number": invoice.invoice_number,
            "amount": amount_due,
            "transaction_ref": transaction_ref,
            "method": PAYMENT_METHOD_MOBILE_MONEY,
        },
    )
    return PaymentHandle(
        payment_id=payment.id,
        transaction_ref=transaction_ref,
        amount=payment.amount,
        phone_number=phone_number,
        status=payment.status,
    )


# =============================================================================
# Webhooks
# =============================================================================

def process_webhook(
    transaction_ref: str,
    status: str,
    amount=None,
    reason: str | None = None,
) -> WebhookResult:
    """Apply one gateway callback. Safe to call any number of times."""
    logger.info("Processing webhook for transaction %s (%s)", transaction_ref, status)

    payment = db.session.query(Payment).filter_by(gateway_transaction_ref=transaction_ref).first()
    if payment is None:
        logger.warning("Received webhook for unknown transaction: %s", transaction_ref)
        return WebhookResult(processed=False, message="Transaction not found")

    if payment.status == PAYMENT_STATUS_PAID:
        logger.info("Duplicate webhook for already paid transaction %s", transaction_ref)
        return WebhookResult(
            processed=True,
            idempotent=True,
            message="Payment already processed",
            payment_id=payment.id,
            invoice_status=payment.invoice.status,
        )

    normalized = (status or "").upper()
    if normalized in WEBHOOK_SUCCESS_STATUSES:
        return reconcile_payment(payment.id, transaction_ref, amount)

    if normalized == WEBHOOK_FAILED_STATUS:
        return _mark_failed(payment.id, reason)

    logger.warning("Unhandled webhook status %r for transaction %s", status, transaction_ref)
    return WebhookResult(processed=False, message="Unknown status", payment_id=payment.id)


def _mark_failed(payment_id: int, reason: str | None) -> WebhookResult:
    def _op():
        payment = lock_for_update(db.session.query(Payment).filter_by(id=payment_id)).first()
        if payment.status == PAYMENT_STATUS_PAID:
            # A success got there first; a late failure must not undo it
            return payment, False
        payment.status = PAYMENT_STATUS_FAILED
        payment.failure_reason = (reason or "Payment failed")[:255]
        db.session.commit()
        return payment, True

    payment, changed = run_with_retry(_op)
    if not changed:
        return WebhookResult(
            processed=True,
            idempotent=True,
            message="Payment already processed",
            payment_id=payment.id,
            invoice_status=payment.invoice.status,
        )
    logger.warning("Payment %s failed: %s", payment.id, payment.failure_reason)
    return WebhookResult(processed=True, message="Payment failed", payment_id=payment.id)


def reconcile_payment(payment_id: int, transaction_ref: str, amount=None) -> WebhookResult:
    """
    Flip a payment to PAID and credit its invoice, once.

    The invoice is credited with the amount recorded on the payment. A
    differing webhook amount is logged, not trusted.

    If the invoice went VOID while the charge was pending, the money has
    still moved: the payment is recorded as PAID, the invoice is left
    untouched, and the result says a refund is due. The gateway gets a
    normal answer either way.
    """
    def _op():
        payment = lock_for_update(db.session.query(Payment).filter_by(id=payment_id)).first()
        if payment is None:
            raise NotFoundError(f"Payment {payment_id} not found")
        if payment.status == PAYMENT_STATUS_PAID:
            return payment, None, True

        payment.status = PAYMENT_STATUS_PAID
        payment.paid_at = utcnow()
        payment.failure_reason = None

        invoice = invoice_service._load_invoice_locked(payment.invoice_id)
        if invoice.status != INVOICE_STATUS_VOID:
            invoice_service._apply_payment_locked(invoice, Decimal(payment.amount), allow_overpay=True)
        db.session.commit()
        return payment, invoice, False

    payment, invoice, idempotent = run_with_retry(_op)

    if idempotent:
        logger.info("Payment %s already reconciled", payment.id)
        return WebhookResult(
            processed=True,
            idempotent=True,
            message="Payment already processed",
            payment_id=payment.id,
            invoice_status=payment.invoice.status,
        )

    if invoice.status == INVOICE_STATUS_VOID:
        logger.warning(
            "Payment %s of %s confirmed for VOID invoice %s; refund required",
            payment.id, payment.amount, invoice.invoice_number,
        )
        audit_service.record(
            actor_id=None,
            action=audit_service.ACTION_UPDATE,
            entity_type="Payment",
            entity_id=payment.id,
            details={
                "invoice_number": invoice.invoice_number,
                "amount": payment.amount,
                "transaction_ref": transaction_ref,
                "refund_required": True,
            },
        )
        return WebhookResult(
            processed=True,
            message="Payment recorded against a void invoice; refund required",
            payment_id=payment.id,
            invoice_status=invoice.status,
        )

    if amount is not None and _as_decimal(amount) != Decimal(payment.amount):
        logger.warning(
            "Webhook amount %s differs from recorded amount %s for payment %s",
            amount, payment.amount, payment.id,
        )
    logger.info(
        "Payment %s reconciled. Invoice %s status: %s",
        payment.id, invoice.invoice_number, invoice.status,
    )
    invoice_service.audit_payment(
        invoice, payment.amount, None, payment_id=payment.id, transaction_ref=transaction_ref, source="MOMO_WEBHOOK"
    )
    return WebhookResult(
        processed=True,
        message="Payment reconciled successfully",
        payment_id=payment.id,
        invoice_status=invoice.status,
    )


def sync_payment_status(payment_id: int, *, site_id: int | None = None) -> WebhookResult:
    """Poll the gateway for a PENDING payment whose webhook never arrived."""
    payment = get_payment(payment_id, site_id=site_id)
    if payment.status != PAYMENT_STATUS_PENDING:
        return WebhookResult(
            processed=False,
            idempotent=payment.status == PAYMENT_STATUS_PAID,
            message=f"Payment is {payment.status}",
            payment_id=payment.id,
            invoice_status=payment.invoice.status,
        )
    if not payment.gateway_transaction_ref:
        raise BadRequestError("Payment has no gateway reference to poll")

    data = get_gateway().get_transaction_status(payment.gateway_transaction_ref)
    return process_webhook(
        payment.gateway_transaction_ref,
        data.get("status", ""),
        data.get("amount"),
        data.get("reason"),
    )


# =============================================================================
# Manual settlement
# =============================================================================

def mark_paid_manually(payment_id: int, actor_id: int | None, *, site_id: int | None = None) -> Payment:
    """Operator override; same single-credit rule as the webhook path."""
    def _op():
        payment = lock_for_update(db.session.query(Payment).filter_by(id=payment_id)).first()
        if payment is None or (site_id is not None and payment.invoice.site_id != site_id):
            raise NotFoundError(f"Payment {payment_id} not found")
        if payment.status == PAYMENT_STATUS_PAID:
            raise BadRequestError("Payment is already marked as paid")

        payment.status = PAYMENT_STATUS_PAID
        payment.paid_at = utcnow()
        payment.marked_paid_by = actor_id

        invoice = invoice_service._load_invoice_locked(payment.invoice_id)
        invoice_service._apply_payment_locked(invoice, Decimal(payment.amount))
        db.session.commit()
        return payment, invoice

    payment, invoice = run_with_retry(_op)
    logger.info("Payment %s marked paid manually by %s", payment.id, actor_id)
    invoice_service.audit_payment(invoice, payment.amount, actor_id, payment_id=payment.id, source="MANUAL")
    return payment


# =============================================================================
# Reads
# =============================================================================

def get_payment(payment_id: int, *, site_id: int | None = None) -> Payment:
    payment = db.session.get(Payment, payment_id)
    if payment is None or (site_id is not None and payment.invoice.site_id != site_id):
        raise NotFoundError(f"Payment {payment_id} not found")
    return payment


def list_payments(
    *,
    invoice_id: int | None = None,
    status: str | None = None,
    site_id: int | None = None,
) -> list[Payment]:
    if status is not None and status not in PAYMENT_STATUSES:
        raise BadRequestError(f"Invalid status: {status}")
    q = db.session.query(Payment)
    if site_id is not None:
        q = q.join(Invoice, Invoice.id == Payment.invoice_id).filter(Invoice.site_id == site_id)
    if invoice_id is not None:
        q = q.filter(Payment.invoice_id == invoice_id)
    if status is not None:
        q = q.filter(Payment.status == status)
    return q.order_by(Payment.created_at.desc(), Payment.id.desc()).all()
