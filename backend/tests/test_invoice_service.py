# Overview: Pytest coverage for invoice issuing, numbering, settlement and voiding.

"""
Invoice Tests

Prove that:
1. Numbers follow INV-<SITE>-<YYYY>-<seq> and never repeat within a site/year
2. Each site code keeps its own sequence; sites sharing a code share it
3. A source gets one invoice, ever
4. Items are snapshots of the source lines
5. Settlement and voiding follow the UNPAID -> PAID / VOID rules
"""

from datetime import datetime
from decimal import Decimal

import pytest

from coldchain.errors import (
    BadRequestError,
    InsufficientDataError,
    InvoiceAlreadyExistsError,
    NotFoundError,
)
from coldchain.models import ColdRoom, Invoice, InvoiceSequence, Product, Site
from coldchain.services import invoice_service, order_service, rental_service, stock_ledger_service
from coldchain.services.sequence_service import SequenceAllocator, invoice_prefix, site_code
from coldchain.time_utils import utcnow


@pytest.fixture
def approved_order(db_session, site_a, fish, milk):
    """APPROVED order: 10kg fish (35000.00) + 5kg milk (4000.00)."""
    order = order_service.create_order(
        client_id=501,
        site_id=site_a.id,
        items=[
            {"product_id": fish.id, "quantity_kg": 10},
            {"product_id": milk.id, "quantity_kg": 5},
        ],
    )
    return order_service.approve_order(order.id, approver_id=9)


class TestSequenceAllocator:

    def test_site_code(self):
        assert site_code("Kigali Central") == "KIGALI_CENTRAL"
        assert site_code("  musanze  ") == "MUSANZE"
        assert invoice_prefix("Kigali Central", 2026) == "INV-KIGALI_CENTRAL-2026-"

    def test_allocate_is_sequential(self, db_session, site_a):
        allocator = SequenceAllocator()
        values = [allocator.allocate(site_a.id, 2026) for _ in range(3)]
        db_session.commit()
        assert values == [1, 2, 3]

    def test_years_are_independent(self, db_session, site_a):
        allocator = SequenceAllocator()
        assert allocator.allocate(site_a.id, 2025) == 1
        assert allocator.allocate(site_a.id, 2026) == 1
        assert allocator.allocate(site_a.id, 2025) == 2

    def test_rollback_returns_the_number(self, db_session, site_a):
        allocator = SequenceAllocator()
        allocator.allocate(site_a.id, 2026)
        db_session.commit()
        allocator.allocate(site_a.id, 2026)
        db_session.rollback()
        assert allocator.allocate(site_a.id, 2026) == 2

    def test_format_pads_to_width(self):
        assert SequenceAllocator().format("Kigali Central", 2026, 42) == "INV-KIGALI_CENTRAL-2026-00042"
        assert SequenceAllocator(width=3).format("Musanze", 2026, 7) == "INV-MUSANZE-2026-007"

    def test_seed_from_existing_invoices(self, db_session, approved_order, site_a):
        """A lost sequence row is rebuilt from the highest number issued."""
        year = utcnow().year
        db_session.query(InvoiceSequence).delete()
        db_session.commit()
        assert SequenceAllocator().allocate(site_a.id, year) == 2

    def test_seed_ignores_lookalike_prefixes(self, db_session, approved_order, site_a):
        """'_' in a site code is literal, not a LIKE wildcard."""
        year = utcnow().year
        lookalike = Site(name="KigaliXCentral")
        db_session.add(lookalike)
        invoice = approved_order.invoice
        invoice.invoice_number = f"INV-KIGALIXCENTRAL-{year}-00007"
        db_session.query(InvoiceSequence).delete()
        db_session.commit()
        assert SequenceAllocator().allocate(site_a.id, year) == 1

    def test_unknown_site(self, db_session):
        with pytest.raises(NotFoundError):
            SequenceAllocator().allocate(999, 2026)

    def test_sites_with_same_code_share_a_counter(self, db_session, site_a):
        """'kigali central' formats like 'Kigali Central'; numbers must still be unique."""
        twin = Site(name="kigali central")
        db_session.add(twin)
        db_session.commit()

        allocator = SequenceAllocator()
        numbers = [
            allocator.next_number(site_a.id, 2026),
            allocator.next_number(twin.id, 2026),
            allocator.next_number(site_a.id, 2026),
        ]
        db_session.commit()
        assert numbers == [
            "INV-KIGALI_CENTRAL-2026-00001",
            "INV-KIGALI_CENTRAL-2026-00002",
            "INV-KIGALI_CENTRAL-2026-00003",
        ]
        assert db_session.query(InvoiceSequence).count() == 1

    def test_same_code_sites_keep_issuing_invoices(self, db_session, site_a, fish):
        twin = Site(name="kigali central")
        db_session.add(twin)
        db_session.commit()
        room = ColdRoom(site_id=twin.id, name="Twin room", total_capacity_kg=Decimal("100"), status="AVAILABLE")
        db_session.add(room)
        db_session.commit()
        twin_fish = Product(
            site_id=twin.id, cold_room_id=room.id, name="Tilapia", selling_price_per_unit=Decimal("3500.00")
        )
        db_session.add(twin_fish)
        db_session.commit()
        stock_ledger_service.record_movement(product_id=twin_fish.id, quantity_kg="10", direction="IN")

        issued = []
        for site_id, product_id in [(site_a.id, fish.id), (twin.id, twin_fish.id), (site_a.id, fish.id)]:
            order = order_service.create_order(
                client_id=1, site_id=site_id, items=[{"product_id": product_id, "quantity_kg": 1}]
            )
            issued.append(order_service.approve_order(order.id, approver_id=1).invoice.invoice_number)

        year = utcnow().year
        assert issued == [f"INV-KIGALI_CENTRAL-{year}-{n:05d}" for n in (1, 2, 3)]


class TestGenerateInvoice:

    def test_order_approval_issues_invoice(self, db_session, approved_order, site_a):
        invoice = approved_order.invoice
        year = utcnow().year
        assert invoice.invoice_number == f"INV-KIGALI_CENTRAL-{year}-00001"
        assert invoice.client_id == 501
        assert invoice.site_id == site_a.id
        assert invoice.subtotal == Decimal("39000.00")
        assert invoice.tax_amount == Decimal("0.00")
        assert invoice.total_amount == Decimal("39000.00")
        assert invoice.paid_amount == Decimal("0")
        assert invoice.status == "UNPAID"

        lines = [(i.description, i.quantity, i.unit, i.unit_price, i.subtotal) for i in invoice.items]
        assert lines == [
            ("Tilapia", Decimal("10.000"), "kg", Decimal("3500.00"), Decimal("35000.00")),
            ("Milk", Decimal("5.000"), "kg", Decimal("800.00"), Decimal("4000.00")),
        ]

    def test_tax_is_applied(self, app, db_session, site_a, fish, monkeypatch):
        monkeypatch.setitem(app.config, "INVOICE_TAX_RATE", Decimal("0.18"))
        order = order_service.create_order(
            client_id=1, site_id=site_a.id, items=[{"product_id": fish.id, "quantity_kg": "1.5"}]
        )
        invoice = order_service.approve_order(order.id, approver_id=1).invoice
        assert invoice.subtotal == Decimal("5250.00")
        assert invoice.tax_amount == Decimal("945.00")
        assert invoice.total_amount == invoice.subtotal + invoice.tax_amount

    def test_second_invoice_for_same_order_is_rejected(self, db_session, approved_order):
        with pytest.raises(InvoiceAlreadyExistsError) as exc:
            invoice_service.generate_order_invoice(approved_order.id)
        assert exc.value.status_code == 409
        assert db_session.query(Invoice).count() == 1

    def test_requested_order_cannot_be_invoiced(self, db_session, site_a, fish):
        order = order_service.create_order(
            client_id=1, site_id=site_a.id, items=[{"product_id": fish.id, "quantity_kg": 1}]
        )
        with pytest.raises(InsufficientDataError, match="APPROVED"):
            invoice_service.generate_order_invoice(order.id)

    def test_cross_site_source_is_not_found(self, db_session, approved_order, site_b):
        db_session.query(Invoice).delete()
        db_session.commit()
        with pytest.raises(NotFoundError):
            invoice_service.generate_order_invoice(approved_order.id, site_id=site_b.id)

    def test_invalid_source_type(self, db_session, site_a):
        with pytest.raises(BadRequestError, match="Invalid source type"):
            invoice_service.generate("SUBSCRIPTION", 1)

    def test_sites_number_independently(self, db_session, approved_order, site_b, product_b):
        order = order_service.create_order(
            client_id=2, site_id=site_b.id, items=[{"product_id": product_b.id, "quantity_kg": 1}]
        )
        invoice = order_service.approve_order(order.id, approver_id=1).invoice
        assert invoice.invoice_number == f"INV-MUSANZE-{utcnow().year}-00001"

    def test_custom_due_date(self, db_session, site_a, cold_box, rental_window):
        start, end = rental_window
        rental = rental_service.create_rental(
            client_id=3, site_id=site_a.id, asset_type="COLD_BOX", cold_box_id=cold_box.id,
            rental_start_date=start, rental_end_date=end, estimated_fee="6000",
        )
        # Approve without the automatic invoice so the manual path can be exercised
        rental.status = "APPROVED"
        db_session.commit()
        due = datetime(2030, 1, 31, 12, 0, 0)
        invoice = invoice_service.generate_rental_invoice(rental.id, due_date=due)
        assert invoice.due_date == due

    def test_rental_invoice_line(self, db_session, site_a, cold_box, rental_window):
        start, end = rental_window
        rental = rental_service.create_rental(
            client_id=3, site_id=site_a.id, asset_type="COLD_BOX", cold_box_id=cold_box.id,
            rental_start_date=start, rental_end_date=end, estimated_fee="6000",
        )
        invoice = rental_service.approve_rental(rental.id, actor_id=1).invoice
        [line] = invoice.items
        assert line.description == "Cold Box Rental - CB-001"
        assert line.quantity == Decimal("3")
        assert line.unit == "days"
        assert line.unit_price == Decimal("2000.00")
        assert line.subtotal == Decimal("6000.00")
        assert invoice.total_amount == Decimal("6000.00")


class TestSettlement:

    def test_partial_then_full_payment(self, db_session, approved_order):
        invoice_id = approved_order.invoice.id
        invoice = invoice_service.mark_paid(invoice_id, "10000")
        assert invoice.status == "UNPAID"
        assert invoice.paid_amount == Decimal("10000.00")
        assert invoice.amount_due == Decimal("29000.00")

        invoice = invoice_service.mark_paid(invoice_id, 29000)
        assert invoice.status == "PAID"
        assert invoice.paid_amount == invoice.total_amount

    def test_overpayment_is_rejected(self, db_session, approved_order):
        with pytest.raises(BadRequestError, match="exceeds outstanding balance"):
            invoice_service.mark_paid(approved_order.invoice.id, "39000.01")

    def test_non_positive_amount_is_rejected(self, db_session, approved_order):
        with pytest.raises(BadRequestError):
            invoice_service.mark_paid(approved_order.invoice.id, 0)

    def test_void_invoice_cannot_be_paid(self, db_session, approved_order):
        invoice_id = approved_order.invoice.id
        invoice_service.void_invoice(invoice_id, "Client cancelled")
        with pytest.raises(InsufficientDataError, match="VOID"):
            invoice_service.mark_paid(invoice_id, 100)

    def test_void_requires_reason(self, db_session, approved_order):
        with pytest.raises(BadRequestError, match="reason"):
            invoice_service.void_invoice(approved_order.invoice.id, "  ")

    def test_paid_invoice_cannot_be_voided(self, db_session, approved_order):
        invoice_id = approved_order.invoice.id
        invoice_service.mark_paid(invoice_id, "39000")
        with pytest.raises(BadRequestError, match="refund"):
            invoice_service.void_invoice(invoice_id, "Mistake")

    def test_void_is_terminal(self, db_session, approved_order):
        invoice_id = approved_order.invoice.id
        invoice = invoice_service.void_invoice(invoice_id, "Duplicate")
        assert invoice.status == "VOID"
        assert invoice.void_reason == "Duplicate"
        assert invoice.voided_at is not None
        with pytest.raises(BadRequestError, match="already void"):
            invoice_service.void_invoice(invoice_id, "Again")


class TestReads:

    def test_get_invoice_scoping(self, db_session, approved_order, site_b):
        invoice_id = approved_order.invoice.id
        assert invoice_service.get_invoice(invoice_id, client_id=501).id == invoice_id
        with pytest.raises(NotFoundError):
            invoice_service.get_invoice(invoice_id, site_id=site_b.id)
        with pytest.raises(NotFoundError):
            invoice_service.get_invoice(invoice_id, client_id=502)

    def test_get_by_number(self, db_session, approved_order):
        number = approved_order.invoice.invoice_number
        assert invoice_service.get_invoice_by_number(number).id == approved_order.invoice.id
        with pytest.raises(NotFoundError):
            invoice_service.get_invoice_by_number("INV-NOPE-2026-00001")

    def test_list_filters_and_pagination(self, db_session, approved_order, site_a):
        result = invoice_service.list_invoices(site_id=site_a.id, status="UNPAID")
        assert result["pagination"] == {"total": 1, "page": 1, "limit": 20, "total_pages": 1}
        assert result["data"][0].id == approved_order.invoice.id
        assert invoice_service.list_invoices(status="PAID")["pagination"]["total"] == 0

    def test_list_rejects_unknown_status(self, db_session):
        with pytest.raises(BadRequestError):
            invoice_service.list_invoices(status="LATE")
