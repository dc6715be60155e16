"""
HTTP API tests.

Verifies:
- Unauthenticated requests return 401
- Staff cannot perform admin operations (403)
- Customer principals only see their own account (403 otherwise)
- Domain errors map to their status codes and kinds
- CLI commands run against the app
"""

from datetime import date

import pytest

from agroflow.extensions import db
from agroflow.models import Payment, Sale, User
from agroflow.services.gateway_service import HmacPaymentGateway


class CountingGateway(HmacPaymentGateway):
    """Signs like the real gateway and counts verify calls."""

    calls = 0

    def verify(self, order_id, payment_id, signature):
        self.calls += 1
        return super().verify(order_id, payment_id, signature)


# =============================================================================
# UNAUTHENTICATED ACCESS (401)
# =============================================================================


class TestUnauthenticatedAccess:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/customers"),
            ("POST", "/api/customers"),
            ("GET", "/api/customers/1/statement"),
            ("GET", "/api/products"),
            ("POST", "/api/sales"),
            ("GET", "/api/sales/1"),
            ("POST", "/api/payments/"),
            ("POST", "/api/payments/bulk"),
            ("GET", "/api/notifications/overdue"),
            ("GET", "/api/dashboard/summary"),
            ("GET", "/api/analytics/credit"),
            ("GET", "/api/auth/me"),
        ],
    )
    def test_requires_auth(self, client, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_garbage_token(self, client):
        resp = client.get("/api/products", headers={"Authorization": "Bearer not-a-token"})
        assert resp.status_code == 401


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json["status"] == "ok"
    assert resp.json["database"]["status"] == "healthy"


# =============================================================================
# AUTH
# =============================================================================


class TestAuthFlow:

    def test_login_me_logout(self, client, make_user):
        make_user(role="staff", username="clerk", password="Harvest2024")

        resp = client.post("/api/auth/login", json={"username": "clerk", "password": "Harvest2024"})
        assert resp.status_code == 200
        token = resp.json["token"]
        assert resp.json["expires_at"].endswith("Z")
        headers = {"Authorization": f"Bearer {token}"}

        me = client.get("/api/auth/me", headers=headers)
        assert me.status_code == 200
        assert me.json["user"]["role"] == "staff"

        assert client.post("/api/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/auth/me", headers=headers).status_code == 401

    def test_wrong_password(self, client, make_user):
        make_user(username="clerk2", password="Harvest2024")
        resp = client.post("/api/auth/login", json={"username": "clerk2", "password": "Harvest2025"})
        assert resp.status_code == 401

    def test_deactivated_user_loses_session(self, client, make_user):
        from agroflow.services import session_service

        user = make_user()
        _session, token = session_service.create_session(user.id)
        user = db.session.get(User, user.id)
        user.is_active = False
        db.session.commit()

        resp = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401


# =============================================================================
# ROLES AND SCOPE (403)
# =============================================================================


class TestPermissions:

    def test_staff_cannot_create_customer(self, client, staff_headers):
        resp = client.post("/api/customers", json={"name": "X", "code": "X"}, headers=staff_headers)
        assert resp.status_code == 403

    def test_staff_cannot_see_analytics(self, client, staff_headers):
        assert client.get("/api/analytics/customer-segments", headers=staff_headers).status_code == 403

    def test_customer_cannot_list_customers(self, client, login_headers, make_customer):
        customer = make_customer()
        headers = login_headers("customer", customer_id=customer.id)
        assert client.get("/api/customers", headers=headers).status_code == 403

    def test_customer_sees_only_own_account(self, client, login_headers, make_customer):
        own = make_customer()
        other = make_customer()
        headers = login_headers("customer", customer_id=own.id)

        assert client.get(f"/api/customers/{own.id}", headers=headers).status_code == 200
        assert client.get(f"/api/customers/{other.id}", headers=headers).status_code == 403
        assert client.get(f"/api/customers/{other.id}/statement", headers=headers).status_code == 403
        assert client.get(f"/api/notifications/customer/{other.id}", headers=headers).status_code == 403

    def test_customer_cannot_pay_someone_elses_sale(self, client, login_headers, make_customer, make_product, make_sale):
        own = make_customer()
        other = make_customer()
        product = make_product()
        sale = make_sale(other.id, (product.id, 1))
        headers = login_headers("customer", customer_id=own.id)

        resp = client.post("/api/payments/", json={"sale_id": sale.id, "amount": 1, "method": "cash"}, headers=headers)
        assert resp.status_code == 403


# =============================================================================
# CUSTOMERS AND PRODUCTS
# =============================================================================


class TestCatalogue:

    def test_create_customer_with_decimal_limit(self, client, admin_headers):
        resp = client.post(
            "/api/customers",
            json={"name": "Sunil Gowda", "code": "SG-01", "creditLimit": "1500.50"},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        assert resp.json["customer"]["credit_limit_cents"] == 150050
        assert resp.json["customer"]["credit_balance_cents"] == 0

        dup = client.post("/api/customers", json={"name": "Other", "code": "SG-01"}, headers=admin_headers)
        assert dup.status_code == 409
        assert dup.json["kind"] == "ConflictError"

    def test_limit_cannot_drop_below_balance(self, client, admin_headers, make_customer, make_product, make_sale):
        customer = make_customer(credit_limit_cents=10_000)
        product = make_product(price_cents=5_000)
        make_sale(customer.id, (product.id, 1))

        resp = client.put(f"/api/customers/{customer.id}", json={"credit_limit": 40}, headers=admin_headers)
        assert resp.status_code == 400

    def test_product_create_and_quantity_locked(self, client, admin_headers):
        resp = client.post(
            "/api/products",
            json={
                "sku": "DAP-50",
                "name": "DAP 50kg",
                "price": "1350.00",
                "quantity": 40,
                "supplier": {"name": "IFFCO", "contactInfo": "Depot 4"},
            },
            headers=admin_headers,
        )
        assert resp.status_code == 201
        product = resp.json["product"]
        assert product["price_cents"] == 135000
        assert product["quantity"] == 40
        assert product["supplier"]["name"] == "IFFCO"

        resp = client.put(f"/api/products/{product['id']}", json={"quantity": 999}, headers=admin_headers)
        assert resp.status_code == 400

    def test_deactivate_product(self, client, admin_headers, make_product):
        product = make_product()
        resp = client.delete(f"/api/products/{product.id}", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["product"]["is_active"] is False


# =============================================================================
# SALES AND PAYMENTS
# =============================================================================


class TestSalesApi:

    def test_credit_sale_and_payment(self, client, staff_headers, make_customer, make_product):
        customer = make_customer(credit_limit_cents=100_000)
        product = make_product(price_cents=1250, quantity=10)

        resp = client.post(
            "/api/sales",
            json={
                "customerId": customer.id,
                "items": [{"productId": product.id, "quantity": 2}],
                "paymentType": "credit",
                "creditDetails": {"dueDate": "2030-01-31"},
            },
            headers=staff_headers,
        )
        assert resp.status_code == 201
        sale = resp.json["sale"]
        assert sale["total_amount"] == 25.0
        assert sale["credit_details"]["due_date"] == "2030-01-31"

        resp = client.post(
            "/api/payments/",
            json={"sale_id": sale["id"], "amount": 25.00, "method": "cash"},
            headers=staff_headers,
        )
        assert resp.status_code == 201
        assert resp.json["count"] == 1

        resp = client.get(f"/api/sales/{sale['id']}", headers=staff_headers)
        assert resp.json["sale"]["status"] == "completed"

        resp = client.post(
            "/api/payments/",
            json={"sale_id": sale["id"], "amount": 0.01, "method": "cash"},
            headers=staff_headers,
        )
        assert resp.status_code == 409
        assert resp.json["kind"] == "OverpaymentRejected"

    def test_domain_errors_map_to_status(self, client, staff_headers, make_customer, make_product):
        customer = make_customer(credit_limit_cents=1_000)
        product = make_product(price_cents=2_000, quantity=1)

        over_limit = client.post(
            "/api/sales",
            json={"customer_id": customer.id, "items": [{"product_id": product.id, "quantity": 1}], "payment_type": "credit"},
            headers=staff_headers,
        )
        assert over_limit.status_code == 409
        assert over_limit.json["kind"] == "CreditLimitExceeded"

        short = client.post(
            "/api/sales",
            json={"customer_id": customer.id, "items": [{"product_id": product.id, "quantity": 2}], "payment_type": "cash"},
            headers=staff_headers,
        )
        assert short.status_code == 409
        assert short.json["kind"] == "InsufficientStock"

        missing = client.get("/api/sales/999999", headers=staff_headers)
        assert missing.status_code == 404

        bad = client.post("/api/sales", json={"customer_id": customer.id, "items": []}, headers=staff_headers)
        assert bad.status_code == 400

        huge = client.post(
            "/api/sales",
            json={"customer_id": customer.id, "items": [{"product_id": product.id, "quantity": 10**20}],
                  "payment_type": "credit", "credit_details": {"interest_rate_bps": 10**20}},
            headers=staff_headers,
        )
        assert huge.status_code == 400
        assert huge.json["kind"] == "ValidationError"

    def test_cancel_requires_reason(self, client, staff_headers, make_customer, make_product, make_sale):
        customer = make_customer()
        product = make_product()
        sale = make_sale(customer.id, (product.id, 1))

        assert client.post(f"/api/sales/{sale.id}/cancel", json={}, headers=staff_headers).status_code == 400
        resp = client.post(f"/api/sales/{sale.id}/cancel", json={"reason": "duplicate"}, headers=staff_headers)
        assert resp.status_code == 200
        assert resp.json["sale"]["status"] == "cancelled"

    def test_online_checkout_and_verification(self, client, gateway, login_headers, make_customer, make_product, make_sale):
        customer = make_customer()
        product = make_product(price_cents=3_000)
        sale = make_sale(customer.id, (product.id, 1), payment_type="online")
        sale_id = sale.id
        headers = login_headers("customer", customer_id=customer.id)

        qr = client.post(f"/api/sales/{sale_id}/generate-qr", headers=headers)
        assert qr.status_code == 200
        order_id = qr.json["payment_details"]["order_id"]

        bad = client.post(
            f"/api/sales/{sale_id}/verify-payment",
            json={"order_id": order_id, "payment_id": "pay_9", "signature": "f" * 64},
            headers=headers,
        )
        assert bad.status_code == 402
        assert bad.json["kind"] == "PaymentVerificationFailed"

        ok = client.post(
            f"/api/sales/{sale_id}/verify-payment",
            json={
                "razorpay_order_id": order_id,
                "razorpay_payment_id": "pay_9",
                "razorpay_signature": gateway.sign(order_id, "pay_9"),
            },
            headers=headers,
        )
        assert ok.status_code == 200
        assert ok.json["verified"] is True
        assert ok.json["payment"]["amount_cents"] == 3_000
        assert ok.json["sale"]["status"] == "completed"

    def test_gateway_payment_id_cannot_be_applied_twice(self, client, gateway, staff_headers, make_customer, make_product, make_sale):
        customer = make_customer()
        product = make_product(price_cents=1_000)
        sale = make_sale(customer.id, (product.id, 1), payment_type="online")
        sale_id, order_id = sale.id, sale.gateway_order_id
        body = {"order_id": order_id, "payment_id": "pay_77", "signature": gateway.sign(order_id, "pay_77")}

        first = client.post(f"/api/sales/{sale_id}/verify-payment", json={**body, "amount_cents": 400}, headers=staff_headers)
        assert first.status_code == 200

        again = client.post(f"/api/sales/{sale_id}/verify-payment", json={**body, "amount_cents": 600}, headers=staff_headers)
        assert again.status_code == 402
        assert again.json["kind"] == "PaymentVerificationFailed"

        db.session.expire_all()
        assert db.session.get(Sale, sale_id).paid_amount_cents == 400
        assert db.session.query(Payment).filter_by(sale_id=sale_id).count() == 1

    def test_verify_payment_asks_gateway_once(self, app, client, staff_headers, make_customer, make_product, make_sale):
        counting = CountingGateway(key_id="rzp_test_key", key_secret="test-gateway-secret")
        app.extensions["agroflow_gateway"] = counting
        customer = make_customer()
        product = make_product(price_cents=1_500)
        sale = make_sale(customer.id, (product.id, 1), payment_type="online")
        order_id = sale.gateway_order_id

        resp = client.post(
            f"/api/sales/{sale.id}/verify-payment",
            json={"order_id": order_id, "payment_id": "pay_1", "signature": counting.sign(order_id, "pay_1")},
            headers=staff_headers,
        )

        assert resp.status_code == 200
        assert counting.calls == 1

    def test_bulk_payments(self, client, staff_headers, make_customer, make_product, make_sale):
        customer = make_customer()
        product = make_product(price_cents=1_000)
        make_sale(customer.id, (product.id, 2))

        resp = client.post(
            "/api/payments/bulk",
            json={"payments": [
                {"customer_id": customer.id, "amount": 5, "method": "cash"},
                {"customer_id": customer.id, "amount": 50, "method": "cash"},
            ]},
            headers=staff_headers,
        )
        assert resp.status_code == 200
        assert len(resp.json["processed"]) == 1
        assert resp.json["failed"][0]["kind"] == "OverpaymentRejected"

    def test_payment_summary(self, client, staff_headers, make_customer, make_product, make_sale):
        customer = make_customer()
        product = make_product(price_cents=1_000)
        sale = make_sale(customer.id, (product.id, 2))
        client.post("/api/payments/", json={"sale_id": sale.id, "amount": 5, "method": "cash"}, headers=staff_headers)

        resp = client.get(f"/api/payments/sales/{sale.id}/summary", headers=staff_headers)
        assert resp.status_code == 200
        assert resp.json["payment_status"] == "PARTIAL"
        assert resp.json["remaining_cents"] == 1_500


# =============================================================================
# NOTIFICATIONS AND REPORTS
# =============================================================================


class TestReadSide:

    def test_notifications_for_customer(self, client, login_headers, make_customer, make_product, make_sale):
        customer = make_customer()
        product = make_product()
        make_sale(customer.id, (product.id, 1), due_date=date(2024, 6, 1))
        headers = login_headers("customer", customer_id=customer.id)

        resp = client.get(f"/api/notifications/customer/{customer.id}?as_of=2024-06-30", headers=headers)
        assert resp.status_code == 200
        assert [n["type"] for n in resp.json["notifications"]] == ["overdue"]
        assert resp.json["notifications"][0]["days_overdue"] == 29

        bad = client.get(f"/api/notifications/customer/{customer.id}?as_of=someday", headers=headers)
        assert bad.status_code == 400

    def test_dashboard_summary(self, client, staff_headers, make_customer, make_product, make_sale):
        customer = make_customer()
        product = make_product(price_cents=2_000, quantity=3, stock_threshold=2)
        make_sale(customer.id, (product.id, 1), payment_type="cash")

        resp = client.get("/api/dashboard/summary", headers=staff_headers)
        assert resp.status_code == 200
        assert resp.json["today_revenue_cents"] == 2_000
        assert resp.json["today_sales"] == 1
        assert resp.json["low_stock_products"] == 1

    def test_sales_trends_rejects_unknown_period(self, client, staff_headers):
        resp = client.get("/api/dashboard/sales-trends?period=hourly", headers=staff_headers)
        assert resp.status_code == 400

    def test_customer_segments(self, client, admin_headers, make_customer):
        make_customer(credit_limit_cents=0)
        make_customer(credit_limit_cents=10_000)

        resp = client.get("/api/analytics/customer-segments", headers=admin_headers)
        assert resp.status_code == 200
        counts = {s["segment"]: s["count"] for s in resp.json["segments"]}
        assert counts["no_credit"] == 1
        assert counts["low"] == 1


# =============================================================================
# CLI
# =============================================================================


class TestCli:

    def test_create_user(self, app):
        runner = app.test_cli_runner()
        result = runner.invoke(args=[
            "users", "create",
            "--username", "clerk",
            "--password", "Password123",
            "--role", "staff",
        ])
        assert "PASS Created user: clerk" in result.output
        assert db.session.query(User).filter_by(username="clerk").count() == 1

    def test_weak_password_rejected(self, app):
        runner = app.test_cli_runner()
        result = runner.invoke(args=[
            "users", "create",
            "--username", "weak",
            "--password", "short",
            "--role", "staff",
        ])
        assert "FAIL Password validation failed" in result.output

    def test_system_init_is_idempotent(self, app):
        runner = app.test_cli_runner()
        first = runner.invoke(args=["system", "init"])
        second = runner.invoke(args=["system", "init"])
        assert "PASS Created admin user: admin" in first.output
        assert "PASS Using existing admin user: admin" in second.output

    def test_overdue_report(self, app, make_customer, make_product, make_sale):
        customer = make_customer(code="RK-7")
        product = make_product()
        sale = make_sale(customer.id, (product.id, 1), due_date=date(2024, 6, 1))
        document_number = db.session.get(Sale, sale.id).document_number

        runner = app.test_cli_runner()
        result = runner.invoke(args=["notifications", "overdue", "--as-of", "2024-06-30"])
        assert "RK-7" in result.output
        assert document_number in result.output

        empty = runner.invoke(args=["notifications", "overdue", "--as-of", "2024-05-01"])
        assert "No overdue credit sales" in empty.output
