# Overview: Service-layer operations for orders; encapsulates the order state machine and its side effects.

from __future__ import annotations

import logging
from collections import OrderedDict
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from ..errors import (
    BadRequestError,
    InsufficientDataError,
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
)
from ..extensions import db
from ..models import Order, OrderItem, Product
from ..models.inventory import MOVEMENT_OUT
from ..models.orders import (
    ORDER_STATUS_APPROVED,
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_INVOICED,
    ORDER_STATUS_REJECTED,
    ORDER_STATUS_REQUESTED,
)
from ..time_utils import utcnow
from ..validation import quantize_money, to_int, to_kg
from . import audit_service, invoice_service, stock_ledger_service
from .concurrency import lock_for_update, run_with_retry

logger = logging.getLogger(__name__)

ORDER_STATUSES = (
    ORDER_STATUS_REQUESTED,
    ORDER_STATUS_APPROVED,
    ORDER_STATUS_REJECTED,
    ORDER_STATUS_INVOICED,
    ORDER_STATUS_COMPLETED,
)

# REJECTED and COMPLETED are terminal
ALLOWED_TRANSITIONS = {
    ORDER_STATUS_REQUESTED: {ORDER_STATUS_APPROVED, ORDER_STATUS_REJECTED},
    ORDER_STATUS_APPROVED: {ORDER_STATUS_INVOICED, ORDER_STATUS_COMPLETED},
    ORDER_STATUS_INVOICED: {ORDER_STATUS_COMPLETED},
    ORDER_STATUS_REJECTED: set(),
    ORDER_STATUS_COMPLETED: set(),
}


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def _ensure_transition(order: Order, target: str) -> None:
    if not can_transition(order.status, target):
        raise InvalidTransitionError(
            f"Cannot change order status from {order.status} to {target}",
            details={"order_id": order.id, "from": order.status, "to": target},
        )


def _load_order(order_id: int, site_id: int | None, *, lock: bool = False) -> Order:
    q = db.session.query(Order).filter_by(id=order_id)
    if lock:
        q = lock_for_update(q)
    order = q.first()
    if order is None or order.deleted_at is not None:
        raise NotFoundError(f"Order {order_id} not found")
    if site_id is not None and order.site_id != site_id:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def _audit(order: Order, action: str, actor_id: int | None, **details) -> None:
    audit_service.record(
        actor_id=actor_id,
        action=action,
        entity_type="Order",
        entity_id=order.id,
        details={"status": order.status, **details},
    )


# =============================================================================
# Create
# =============================================================================

def _parse_items(items) -> list[tuple[int, Decimal]]:
    if not isinstance(items, list) or not items:
        raise BadRequestError("Order must contain at least one item")
    parsed = []
    for idx, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise BadRequestError(f"items[{idx}] must be an object")
        product_id = to_int(raw.get("product_id"), f"items[{idx}].product_id")
        quantity = to_kg(raw.get("quantity_kg"), f"items[{idx}].quantity_kg")
        parsed.append((product_id, quantity))
    return parsed


def create_order(
    *,
    client_id: int,
    site_id: int,
    items,
    delivery_address: str | None = None,
    notes: str | None = None,
    actor_id: int | None = None,
) -> Order:
    """
    Create a REQUESTED order with price snapshots.

    Quantities for a product listed on several lines are summed before the
    stock check. Stock is only checked here; it is taken on approval.
    """
    lines = _parse_items(items)

    requested: OrderedDict[int, Decimal] = OrderedDict()
    for product_id, quantity in lines:
        requested[product_id] = requested.get(product_id, Decimal("0")) + quantity

    products = (
        db.session.query(Product)
        .filter(
            Product.id.in_(list(requested)),
            Product.site_id == site_id,
            Product.deleted_at.is_(None),
        )
        .all()
    )
    by_id = {p.id: p for p in products}

    missing = [pid for pid in requested if pid not in by_id]
    if missing:
        raise BadRequestError(f"Products not found: {missing}", details={"product_ids": missing})

    for product_id, quantity in requested.items():
        product = by_id[product_id]
        if quantity > Decimal(product.quantity_kg):
            raise InsufficientStockError(
                f'Insufficient stock for "{product.name}". Available: {product.quantity_kg}kg, '
                f"Requested: {quantity}kg",
                details={"product_id": product_id},
            )

    order = Order(
        client_id=client_id,
        site_id=site_id,
        delivery_address=delivery_address,
        notes=notes,
        status=ORDER_STATUS_REQUESTED,
    )
    total = Decimal("0")
    for product_id, quantity in lines:
        product = by_id[product_id]
        unit_price = Decimal(product.selling_price_per_unit)
        subtotal = quantize_money(unit_price * quantity)
        total += subtotal
        order.items.append(
            OrderItem(product_id=product_id, quantity_kg=quantity, unit_price=unit_price, subtotal=subtotal)
        )
    order.total_amount = quantize_money(total)

    def _op():
        db.session.add(order)
        db.session.commit()
        return order

    order = run_with_retry(_op)
    logger.info("Order %s created for client %s (total %s)", order.id, client_id, order.total_amount)
    _audit(order, audit_service.ACTION_CREATE, actor_id, total_amount=order.total_amount)
    return order


# =============================================================================
# Transitions
# =============================================================================

def approve_order(order_id: int, approver_id: int | None, *, site_id: int | None = None) -> Order:
    """
    Approve a REQUESTED order.

    One transaction: an OUT movement per item, the APPROVED transition, and
    the invoice. If any line lacks stock nothing is reserved and the order
    stays REQUESTED. The issued invoice is reachable as order.invoice.
    """
    def _op():
        order = _load_order(order_id, site_id, lock=True)
        _ensure_transition(order, ORDER_STATUS_APPROVED)

        movements = []
        for item in order.items:
            movements.append(
                stock_ledger_service._record_movement_locked(
                    product_id=item.product_id,
                    quantity_kg=item.quantity_kg,
                    direction=MOVEMENT_OUT,
                    reason=f"Order #{order.id} approved",
                    actor_id=approver_id,
                    site_id=order.site_id,
                )
            )

        order.status = ORDER_STATUS_APPROVED
        order.approved_by = approver_id
        order.approved_at = utcnow()
        db.session.flush()

        invoice = invoice_service._generate_locked(
            source_type=invoice_service.SOURCE_ORDER,
            source_id=order.id,
            site_id=order.site_id,
        )
        db.session.commit()
        return order, movements, invoice

    order, movements, invoice = run_with_retry(_op, attempts=5, retry_on=(IntegrityError,))
    logger.info("Order %s approved by %s; invoice %s", order.id, approver_id, invoice.invoice_number)

    _audit(order, audit_service.ACTION_APPROVE, approver_id, invoice_id=invoice.id)
    for movement in movements:
        stock_ledger_service.audit_movement(movement, approver_id)
    invoice_service.audit_issued(invoice, approver_id)
    return order


def reject_order(
    order_id: int,
    reason: str | None,
    *,
    actor_id: int | None = None,
    site_id: int | None = None,
) -> Order:
    reason = (reason or "").strip()
    if not reason:
        raise BadRequestError("A rejection reason is required")

    def _op():
        order = _load_order(order_id, site_id, lock=True)
        _ensure_transition(order, ORDER_STATUS_REJECTED)
        order.status = ORDER_STATUS_REJECTED
        order.rejection_reason = reason[:255]
        order.rejected_at = utcnow()
        db.session.commit()
        return order

    order = run_with_retry(_op)
    logger.info("Order %s rejected: %s", order.id, reason)
    _audit(order, audit_service.ACTION_REJECT, actor_id, reason=reason)
    return order


def update_status(
    order_id: int,
    new_status: str,
    *,
    actor_id: int | None = None,
    site_id: int | None = None,
    reason: str | None = None,
) -> Order:
    """
    Move an order along the transition table.

    APPROVED and REJECTED go through approve_order / reject_order so stock
    and invoicing side effects always run.
    """
    if new_status not in ORDER_STATUSES:
        raise BadRequestError(f"Invalid status: {new_status}. Must be one of {list(ORDER_STATUSES)}")

    current = _load_order(order_id, site_id)
    _ensure_transition(current, new_status)

    if new_status == ORDER_STATUS_APPROVED:
        return approve_order(order_id, actor_id, site_id=site_id)
    if new_status == ORDER_STATUS_REJECTED:
        return reject_order(order_id, reason, actor_id=actor_id, site_id=site_id)

    def _op():
        order = _load_order(order_id, site_id, lock=True)
        _ensure_transition(order, new_status)
        if new_status == ORDER_STATUS_INVOICED and order.invoice is None:
            raise InsufficientDataError("Order has no invoice yet")
        previous = order.status
        order.status = new_status
        db.session.commit()
        return order, previous

    order, previous = run_with_retry(_op)
    logger.info("Order %s status %s -> %s", order.id, previous, new_status)
    _audit(order, audit_service.ACTION_UPDATE, actor_id, previous_status=previous)
    return order


# =============================================================================
# Reads / delete
# =============================================================================

def get_order(order_id: int, *, site_id: int | None = None) -> Order:
    return _load_order(order_id, site_id)


def list_orders(
    *,
    site_id: int | None = None,
    client_id: int | None = None,
    status: str | None = None,
) -> list[Order]:
    if status is not None and status not in ORDER_STATUSES:
        raise BadRequestError(f"Invalid status: {status}")
    q = db.session.query(Order).filter(Order.deleted_at.is_(None))
    if site_id is not None:
        q = q.filter(Order.site_id == site_id)
    if client_id is not None:
        q = q.filter(Order.client_id == client_id)
    if status is not None:
        q = q.filter(Order.status == status)
    return q.order_by(Order.created_at.desc(), Order.id.desc()).all()


def delete_order(order_id: int, *, actor_id: int | None = None, site_id: int | None = None) -> None:
    """Soft delete; only REQUESTED orders can be removed."""
    def _op():
        order = _load_order(order_id, site_id, lock=True)
        if order.status != ORDER_STATUS_REQUESTED:
            raise BadRequestError(f"Only REQUESTED orders can be deleted (current status: {order.status})")
        order.deleted_at = utcnow()
        db.session.commit()
        return order

    order = run_with_retry(_op)
    logger.info("Order %s deleted", order.id)
    _audit(order, audit_service.ACTION_DELETE, actor_id)
