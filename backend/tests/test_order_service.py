# Overview: Pytest coverage for the order state machine and its stock/invoice side effects.

"""
Order Lifecycle Tests

Prove that:
1. Approval takes stock and issues the invoice in one transaction
2. Approval of an order whose stock has gone leaves nothing behind
3. Only the documented status transitions are accepted
4. Order totals are the sum of snapshotted line subtotals
"""

from decimal import Decimal

import pytest

from coldchain.errors import (
    BadRequestError,
    InsufficientDataError,
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
)
from coldchain.extensions import db
from coldchain.models import ColdRoom, Invoice, Order, Product, StockMovement
from coldchain.services import audit_service, order_service, stock_ledger_service
from coldchain.services.order_service import ALLOWED_TRANSITIONS, ORDER_STATUSES, can_transition


def _create(site, *lines, client_id=100):
    return order_service.create_order(
        client_id=client_id,
        site_id=site.id,
        items=[{"product_id": p.id, "quantity_kg": q} for p, q in lines],
    )


def _quantity(product_id):
    db.session.expire_all()
    return db.session.get(Product, product_id).quantity_kg


class TestCreateOrder:

    def test_create_snapshots_prices(self, db_session, site_a, fish, milk):
        order = _create(site_a, (fish, 10), (milk, "2.5"))
        assert order.status == "REQUESTED"
        assert order.total_amount == Decimal("37000.00")
        assert [(i.product_id, i.unit_price, i.subtotal) for i in order.items] == [
            (fish.id, Decimal("3500.00"), Decimal("35000.00")),
            (milk.id, Decimal("800.00"), Decimal("2000.00")),
        ]
        assert order.total_amount == sum(i.subtotal for i in order.items)

    def test_price_change_after_create_does_not_touch_order(self, db_session, site_a, fish):
        order = _create(site_a, (fish, 2))
        fish.selling_price_per_unit = Decimal("9999.00")
        db_session.commit()
        invoice = order_service.approve_order(order.id, approver_id=1).invoice
        assert invoice.total_amount == Decimal("7000.00")

    def test_create_does_not_take_stock(self, db_session, site_a, fish):
        _create(site_a, (fish, 10))
        assert _quantity(fish.id) == Decimal("100")

    def test_repeated_product_lines_are_summed_for_stock_check(self, db_session, site_a, milk):
        with pytest.raises(InsufficientStockError):
            _create(site_a, (milk, 30), (milk, 30))
        assert db_session.query(Order).count() == 0

    def test_insufficient_stock(self, db_session, site_a, fish):
        with pytest.raises(InsufficientStockError, match="Tilapia"):
            _create(site_a, (fish, "100.5"))

    def test_unknown_or_foreign_products(self, db_session, site_a, fish, product_b):
        with pytest.raises(BadRequestError, match="Products not found") as exc:
            _create(site_a, (fish, 1), (product_b, 1))
        assert exc.value.details["product_ids"] == [product_b.id]

    @pytest.mark.parametrize("items", [[], None, "fish", [{"product_id": 1}], [{"quantity_kg": 1}]])
    def test_invalid_items(self, db_session, site_a, fish, items):
        with pytest.raises(BadRequestError):
            order_service.create_order(client_id=1, site_id=site_a.id, items=items)

    def test_create_is_audited(self, db_session, site_a, fish):
        order = _create(site_a, (fish, 1))
        [entry] = audit_service.list_entries(entity_type="Order", entity_id=order.id)
        assert entry.action == "CREATE"
        assert entry.details["total_amount"] == "3500.00"


class TestApproveOrder:

    def test_happy_path(self, db_session, site_a, fish, room_a):
        """10kg at 3500.00 -> stock 90kg, invoice 35000.00 UNPAID."""
        order = _create(site_a, (fish, 10))
        order = order_service.approve_order(order.id, approver_id=77)

        assert order.status == "APPROVED"
        assert order.approved_by == 77
        assert order.approved_at is not None
        assert _quantity(fish.id) == Decimal("90")
        assert db.session.get(ColdRoom, room_a.id).used_capacity_kg == Decimal("90")

        out = db_session.query(StockMovement).filter_by(product_id=fish.id, direction="OUT").one()
        assert out.quantity_kg == Decimal("10")
        assert out.reason == f"Order #{order.id} approved"
        assert out.actor_id == 77

        invoice = order.invoice
        assert invoice is not None
        assert invoice.total_amount == Decimal("35000.00")
        assert invoice.status == "UNPAID"
        assert stock_ledger_service.verify_product_balance(fish.id)["balanced"] is True

    def test_stock_gone_before_approval_is_atomic(self, db_session, site_a, fish, milk):
        """Line 1 has stock, line 2 does not: nothing is taken and no invoice exists."""
        order = _create(site_a, (fish, 10), (milk, 40))
        stock_ledger_service.record_movement(product_id=milk.id, quantity_kg=20, direction="OUT")

        with pytest.raises(InsufficientStockError, match="Milk"):
            order_service.approve_order(order.id, approver_id=1)

        assert _quantity(fish.id) == Decimal("100")
        assert _quantity(milk.id) == Decimal("30")
        assert db_session.get(Order, order.id).status == "REQUESTED"
        assert db_session.query(Invoice).count() == 0
        assert db_session.query(StockMovement).filter_by(product_id=fish.id, direction="OUT").count() == 0

    def test_approve_twice_is_rejected(self, db_session, site_a, fish):
        order = _create(site_a, (fish, 1))
        order_service.approve_order(order.id, approver_id=1)
        with pytest.raises(InvalidTransitionError):
            order_service.approve_order(order.id, approver_id=1)
        assert _quantity(fish.id) == Decimal("99")
        assert db_session.query(Invoice).count() == 1

    def test_approve_cross_site_is_not_found(self, db_session, site_a, site_b, fish):
        order = _create(site_a, (fish, 1))
        with pytest.raises(NotFoundError):
            order_service.approve_order(order.id, approver_id=1, site_id=site_b.id)

    def test_approval_is_audited(self, db_session, site_a, fish):
        order = _create(site_a, (fish, 1))
        order_service.approve_order(order.id, approver_id=5)
        actions = [e.action for e in audit_service.list_entries(entity_type="Order", entity_id=order.id)]
        assert actions == ["CREATE", "APPROVE"]


class TestTransitions:

    def test_transition_table(self):
        assert set(ALLOWED_TRANSITIONS) == set(ORDER_STATUSES)
        assert can_transition("REQUESTED", "APPROVED")
        assert can_transition("REQUESTED", "REJECTED")
        assert can_transition("APPROVED", "INVOICED")
        assert can_transition("APPROVED", "COMPLETED")
        assert can_transition("INVOICED", "COMPLETED")
        assert not can_transition("COMPLETED", "APPROVED")
        assert not can_transition("REJECTED", "APPROVED")
        assert not can_transition("REQUESTED", "COMPLETED")
        assert not can_transition("APPROVED", "REQUESTED")

    def test_reject_requires_reason(self, db_session, site_a, fish):
        order = _create(site_a, (fish, 1))
        with pytest.raises(BadRequestError, match="reason"):
            order_service.reject_order(order.id, "")

    def test_reject(self, db_session, site_a, fish):
        order = _create(site_a, (fish, 1))
        order = order_service.reject_order(order.id, "Out of delivery range", actor_id=4)
        assert order.status == "REJECTED"
        assert order.rejection_reason == "Out of delivery range"
        assert order.rejected_at is not None
        with pytest.raises(InvalidTransitionError):
            order_service.approve_order(order.id, approver_id=1)

    def test_update_status_walks_the_table(self, db_session, site_a, fish):
        order = _create(site_a, (fish, 1))
        order = order_service.update_status(order.id, "APPROVED", actor_id=1)
        assert order.invoice is not None
        order = order_service.update_status(order.id, "INVOICED", actor_id=1)
        assert order.status == "INVOICED"
        order = order_service.update_status(order.id, "COMPLETED", actor_id=1)
        assert order.status == "COMPLETED"
        with pytest.raises(InvalidTransitionError):
            order_service.update_status(order.id, "APPROVED", actor_id=1)

    def test_update_status_to_rejected_needs_reason(self, db_session, site_a, fish):
        order = _create(site_a, (fish, 1))
        with pytest.raises(BadRequestError):
            order_service.update_status(order.id, "REJECTED")
        order = order_service.update_status(order.id, "REJECTED", reason="Duplicate")
        assert order.status == "REJECTED"

    def test_invoiced_requires_invoice(self, db_session, site_a, fish):
        order = _create(site_a, (fish, 1))
        order = order_service.approve_order(order.id, approver_id=1)
        db_session.query(Invoice).delete()
        db_session.commit()
        db_session.expire_all()
        with pytest.raises(InsufficientDataError):
            order_service.update_status(order.id, "INVOICED")

    def test_unknown_status(self, db_session, site_a, fish):
        order = _create(site_a, (fish, 1))
        with pytest.raises(BadRequestError, match="Invalid status"):
            order_service.update_status(order.id, "SHIPPED")


class TestReadsAndDelete:

    def test_list_is_site_scoped(self, db_session, site_a, site_b, fish, product_b):
        mine = _create(site_a, (fish, 1), client_id=1)
        _create(site_b, (product_b, 1), client_id=2)
        assert [o.id for o in order_service.list_orders(site_id=site_a.id)] == [mine.id]
        assert len(order_service.list_orders()) == 2
        assert order_service.list_orders(client_id=2)[0].site_id == site_b.id

    def test_get_cross_site_is_not_found(self, db_session, site_a, site_b, fish):
        order = _create(site_a, (fish, 1))
        with pytest.raises(NotFoundError):
            order_service.get_order(order.id, site_id=site_b.id)

    def test_delete_requested_order(self, db_session, site_a, fish):
        order = _create(site_a, (fish, 1))
        order_service.delete_order(order.id, actor_id=1)
        with pytest.raises(NotFoundError):
            order_service.get_order(order.id)
        assert order_service.list_orders() == []

    def test_delete_approved_order_is_rejected(self, db_session, site_a, fish):
        order = _create(site_a, (fish, 1))
        order_service.approve_order(order.id, approver_id=1)
        with pytest.raises(BadRequestError, match="Only REQUESTED"):
            order_service.delete_order(order.id)
