# Overview: Pytest coverage for the JSON API surface: identity headers, status codes and payload shapes.

from decimal import Decimal

from coldchain.extensions import db
from coldchain.models import Product


class TestIdentityHeaders:

    def test_actor_required(self, client, db_session):
        resp = client.get('/api/orders')
        assert resp.status_code == 401
        assert resp.json["error"] == "Actor identity required"

    def test_malformed_header(self, client, db_session):
        resp = client.get('/api/orders', headers={'X-Actor-Id': 'abc'})
        assert resp.status_code == 400


class TestOrderRoutes:

    def test_order_lifecycle_over_http(self, client, headers, site_a, fish):
        resp = client.post('/api/orders', json={
            "client_id": 55,
            "site_id": site_a.id,
            "items": [{"product_id": fish.id, "quantity_kg": "10"}],
        }, headers=headers)
        assert resp.status_code == 201
        order = resp.json["order"]
        assert order["status"] == "REQUESTED"
        assert order["total_amount"] == "35000.00"
        assert order["invoice"] is None

        resp = client.post(f'/api/orders/{order["id"]}/approve', headers=headers)
        assert resp.status_code == 200
        approved = resp.json["order"]
        assert approved["status"] == "APPROVED"
        assert approved["invoice"]["total_amount"] == "35000.00"
        assert approved["invoice"]["status"] == "UNPAID"

        db.session.expire_all()
        assert db.session.get(Product, fish.id).quantity_kg == Decimal("90")

        resp = client.post(f'/api/orders/{order["id"]}/approve', headers=headers)
        assert resp.status_code == 400

    def test_insufficient_stock_is_400(self, client, headers, site_a, fish):
        resp = client.post('/api/orders', json={
            "client_id": 55,
            "site_id": site_a.id,
            "items": [{"product_id": fish.id, "quantity_kg": 500}],
        }, headers=headers)
        assert resp.status_code == 400
        assert "Insufficient stock" in resp.json["error"]

    def test_missing_ids(self, client, headers, db_session):
        resp = client.post('/api/orders', json={"items": []}, headers=headers)
        assert resp.status_code == 400

    def test_site_scope_hides_other_sites(self, client, headers, site_a_headers, site_b, product_b):
        resp = client.post('/api/orders', json={
            "client_id": 1, "site_id": site_b.id, "items": [{"product_id": product_b.id, "quantity_kg": 1}],
        }, headers=headers)
        order_id = resp.json["order"]["id"]

        assert client.get(f'/api/orders/{order_id}', headers=site_a_headers).status_code == 404
        assert client.get('/api/orders', headers=site_a_headers).json["orders"] == []
        assert client.get(f'/api/orders/{order_id}', headers=headers).status_code == 200

    def test_reject_and_status_patch(self, client, headers, site_a, fish):
        order_id = client.post('/api/orders', json={
            "client_id": 1, "site_id": site_a.id, "items": [{"product_id": fish.id, "quantity_kg": 1}],
        }, headers=headers).json["order"]["id"]

        assert client.post(f'/api/orders/{order_id}/reject', json={}, headers=headers).status_code == 400
        resp = client.post(f'/api/orders/{order_id}/reject', json={"reason": "No driver"}, headers=headers)
        assert resp.json["order"]["status"] == "REJECTED"

        resp = client.patch(f'/api/orders/{order_id}/status', json={"status": "COMPLETED"}, headers=headers)
        assert resp.status_code == 400

    def test_delete(self, client, headers, site_a, fish):
        order_id = client.post('/api/orders', json={
            "client_id": 1, "site_id": site_a.id, "items": [{"product_id": fish.id, "quantity_kg": 1}],
        }, headers=headers).json["order"]["id"]
        assert client.delete(f'/api/orders/{order_id}', headers=headers).status_code == 200
        assert client.get(f'/api/orders/{order_id}', headers=headers).status_code == 404


class TestRentalRoutes:

    def test_rental_flow_over_http(self, client, headers, site_a, cold_box):
        resp = client.get(f'/api/rentals/available-assets?site_id={site_a.id}', headers=headers)
        assert [a["identification_number"] for a in resp.json["assets"]["COLD_BOX"]] == ["CB-001"]

        resp = client.post('/api/rentals', json={
            "client_id": 9,
            "site_id": site_a.id,
            "asset_type": "COLD_BOX",
            "cold_box_id": cold_box.id,
            "rental_start_date": "2030-03-01T00:00:00Z",
            "rental_end_date": "2030-03-03T00:00:00Z",
            "estimated_fee": "4000",
        }, headers=headers)
        assert resp.status_code == 201
        rental_id = resp.json["rental"]["id"]

        resp = client.post(f'/api/rentals/{rental_id}/approve', headers=headers)
        assert resp.status_code == 200
        invoice = resp.json["invoice"]
        assert invoice["rental_id"] == rental_id
        assert invoice["items"][0]["quantity"] == "2.000"

        resp = client.post(f'/api/rentals/{rental_id}/activate', headers=headers)
        assert resp.status_code == 400

        resp = client.post(f'/api/invoices/{invoice["id"]}/mark-paid', json={"amount": "4000"}, headers=headers)
        assert resp.json["invoice"]["status"] == "PAID"

        resp = client.post(f'/api/rentals/{rental_id}/activate', headers=headers)
        assert resp.json["rental"]["status"] == "ACTIVE"

        resp = client.get(f'/api/rentals/available-assets?site_id={site_a.id}', headers=headers)
        assert resp.json["assets"]["COLD_BOX"] == []

        resp = client.post(f'/api/rentals/{rental_id}/complete', json={}, headers=headers)
        assert resp.json["rental"]["status"] == "COMPLETED"

        resp = client.get(f'/api/rentals/{rental_id}', headers=headers)
        assert resp.json["rental"]["invoice"]["status"] == "PAID"

    def test_bad_asset_type(self, client, headers, site_a):
        resp = client.post('/api/rentals', json={
            "client_id": 9, "site_id": site_a.id, "asset_type": "FREEZER",
        }, headers=headers)
        assert resp.status_code == 400


class TestInvoiceRoutes:

    def _approved_invoice(self, client, headers, site_a, fish):
        order_id = client.post('/api/orders', json={
            "client_id": 1, "site_id": site_a.id, "items": [{"product_id": fish.id, "quantity_kg": 2}],
        }, headers=headers).json["order"]["id"]
        return client.post(f'/api/orders/{order_id}/approve', headers=headers).json["order"]["invoice"]

    def test_lookup_and_list(self, client, headers, site_a, fish):
        invoice = self._approved_invoice(client, headers, site_a, fish)

        resp = client.get(f'/api/invoices/{invoice["id"]}', headers=headers)
        assert resp.json["invoice"]["invoice_number"] == invoice["invoice_number"]

        resp = client.get(f'/api/invoices/number/{invoice["invoice_number"]}', headers=headers)
        assert resp.json["invoice"]["id"] == invoice["id"]

        resp = client.get('/api/invoices?status=UNPAID&limit=5', headers=headers)
        assert resp.json["pagination"]["total"] == 1
        assert resp.json["pagination"]["limit"] == 5

        assert client.get('/api/invoices?status=BOGUS', headers=headers).status_code == 400

    def test_duplicate_generation_is_409(self, client, headers, site_a, fish):
        invoice = self._approved_invoice(client, headers, site_a, fish)
        resp = client.post('/api/invoices', json={
            "source_type": "ORDER", "source_id": invoice["order_id"],
        }, headers=headers)
        assert resp.status_code == 409

    def test_overpay_and_void(self, client, headers, site_a, fish):
        invoice = self._approved_invoice(client, headers, site_a, fish)
        resp = client.post(f'/api/invoices/{invoice["id"]}/mark-paid', json={"amount": "7000.01"}, headers=headers)
        assert resp.status_code == 400

        resp = client.post(f'/api/invoices/{invoice["id"]}/void', json={"reason": "Wrong client"}, headers=headers)
        assert resp.json["invoice"]["status"] == "VOID"


class TestPaymentRoutes:

    def test_initiate_and_manual_settle(self, client, headers, site_a, fish, gateway):
        order_id = client.post('/api/orders', json={
            "client_id": 1, "site_id": site_a.id, "items": [{"product_id": fish.id, "quantity_kg": 1}],
        }, headers=headers).json["order"]["id"]
        invoice = client.post(f'/api/orders/{order_id}/approve', headers=headers).json["order"]["invoice"]

        resp = client.post('/api/payments/initiate', json={
            "invoice_id": invoice["id"], "phone_number": "0788123456",
        }, headers=headers)
        assert resp.status_code == 201
        payment = resp.json["payment"]
        assert payment["amount"] == "3500.00"
        assert payment["status"] == "PENDING"

        resp = client.post(f'/api/payments/{payment["payment_id"]}/mark-paid', headers=headers)
        assert resp.json["payment"]["status"] == "PAID"

        resp = client.post(f'/api/payments/{payment["payment_id"]}/mark-paid', headers=headers)
        assert resp.status_code == 400

        resp = client.get(f'/api/payments?invoice_id={invoice["id"]}', headers=headers)
        assert len(resp.json["payments"]) == 1

    def test_unknown_payment(self, client, headers, db_session):
        assert client.get('/api/payments/999', headers=headers).status_code == 404


class TestStockRoutes:

    def test_record_list_and_revert(self, client, headers, fish):
        resp = client.post('/api/stock-movements', json={
            "product_id": fish.id, "quantity_kg": "12.5", "direction": "OUT", "reason": "Spoilage",
        }, headers=headers)
        assert resp.status_code == 201
        movement = resp.json["movement"]
        assert movement["quantity_kg"] == "12.500"

        resp = client.get(f'/api/stock-movements?product_id={fish.id}', headers=headers)
        assert resp.json["pagination"]["total"] == 2
        assert resp.json["movements"][0]["id"] == movement["id"]

        resp = client.post(f'/api/stock-movements/{movement["id"]}/revert', headers=headers)
        assert resp.status_code == 201
        assert resp.json["movement"]["reversal_of_id"] == movement["id"]

        resp = client.post(f'/api/stock-movements/{movement["id"]}/revert', headers=headers)
        assert resp.status_code == 409

    def test_capacity_exceeded_is_400(self, client, headers, fish):
        resp = client.post('/api/stock-movements', json={
            "product_id": fish.id, "quantity_kg": 5000, "direction": "IN",
        }, headers=headers)
        assert resp.status_code == 400
        assert "capacity exceeded" in resp.json["error"]
