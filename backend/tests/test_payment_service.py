"""
Payment posting tests.

Verifies:
- No overpayment: paid_amount never exceeds total_amount
- Installments release credit and complete the sale when fully paid
- Customer-level payments settle the oldest obligation first
- Online payments require a positive gateway verdict
- Bulk rows succeed or fail independently
"""

from datetime import date

import pytest

from agroflow.errors import (
    OverpaymentRejected,
    PaymentVerificationFailed,
    SaleStateError,
)
from agroflow.extensions import db
from agroflow.models import Customer, Payment, Sale
from agroflow.services import payment_service, sales_service
from agroflow.validation import GatewayVerification, PaymentRequest, ValidationError


def _reload(model, row_id):
    db.session.expire_all()
    return db.session.get(model, row_id)


@pytest.fixture
def credit_sale(make_customer, make_product, make_sale):
    """A pending 50.00 credit sale for a customer with a 1000.00 limit."""
    customer = make_customer(credit_limit_cents=100_000)
    product = make_product(price_cents=2500, quantity=10)
    return make_sale(customer.id, (product.id, 2))


# =============================================================================
# SALE PAYMENTS
# =============================================================================


class TestSalePayments:

    def test_exact_payment_then_any_more_rejected(self, credit_sale):
        sale_id = credit_sale.id
        payment_service.post_payment(PaymentRequest(amount_cents=5000, method="bank_transfer", sale_id=sale_id))

        with pytest.raises(OverpaymentRejected):
            payment_service.post_payment(PaymentRequest(amount_cents=1, method="cash", sale_id=sale_id))

        sale = _reload(Sale, sale_id)
        assert sale.paid_amount_cents == 5000
        assert sale.status == "completed"
        assert db.session.query(Payment).filter_by(sale_id=sale_id).count() == 1

    def test_overpayment_changes_nothing(self, credit_sale):
        with pytest.raises(OverpaymentRejected) as exc_info:
            payment_service.post_payment(PaymentRequest(amount_cents=6000, method="cash", sale_id=credit_sale.id))

        assert exc_info.value.details["remaining_cents"] == 5000
        sale = _reload(Sale, credit_sale.id)
        assert sale.paid_amount_cents == 0
        assert _reload(Customer, sale.customer_id).credit_balance_cents == 5000
        assert db.session.query(Payment).count() == 0

    def test_installments(self, credit_sale):
        sale_id = credit_sale.id
        payment_service.post_payment(PaymentRequest(amount_cents=2000, method="cash", sale_id=sale_id))

        summary = payment_service.payment_summary(sale_id)
        assert summary["payment_status"] == payment_service.PAYMENT_STATUS_PARTIAL
        assert summary["remaining_cents"] == 3000
        assert _reload(Sale, sale_id).status == "pending"

        payment_service.post_payment(PaymentRequest(amount_cents=3000, method="check", sale_id=sale_id))

        summary = payment_service.payment_summary(sale_id)
        assert summary["payment_status"] == payment_service.PAYMENT_STATUS_PAID
        assert [p["amount_cents"] for p in summary["payments"]] == [2000, 3000]
        sale = _reload(Sale, sale_id)
        assert sale.status == "completed"
        assert _reload(Customer, sale.customer_id).credit_balance_cents == 0

    def test_sale_and_customer_must_match(self, credit_sale, make_customer):
        other = make_customer()
        with pytest.raises(ValidationError):
            payment_service.post_payment(PaymentRequest(
                amount_cents=100, method="cash", sale_id=credit_sale.id, customer_id=other.id,
            ))

    def test_cancelled_sale_rejects_payment(self, credit_sale):
        sales_service.cancel_sale(credit_sale.id, reason="returned goods")
        with pytest.raises(SaleStateError):
            payment_service.post_payment(PaymentRequest(amount_cents=100, method="cash", sale_id=credit_sale.id))

    def test_cash_settlement(self, credit_sale):
        payment = payment_service.record_cash_payment(credit_sale.id)
        assert payment.amount_cents == 5000
        assert payment.method == "cash"
        assert _reload(Sale, credit_sale.id).status == "completed"

        with pytest.raises(OverpaymentRejected):
            payment_service.record_cash_payment(credit_sale.id)


# =============================================================================
# CUSTOMER ALLOCATION
# =============================================================================


class TestCustomerAllocation:

    def test_oldest_due_date_first(self, make_customer, make_product, make_sale):
        customer = make_customer(credit_limit_cents=100_000)
        product = make_product(price_cents=1000, quantity=20)
        later = make_sale(customer.id, (product.id, 3), due_date=date(2024, 9, 1))
        earlier = make_sale(customer.id, (product.id, 2), due_date=date(2024, 8, 1))

        payments = payment_service.post_payment(
            PaymentRequest(amount_cents=2500, method="bank_transfer", customer_id=customer.id)
        )

        assert [(p.sale_id, p.amount_cents) for p in payments] == [(earlier.id, 2000), (later.id, 500)]
        assert payments[0].batch_reference.startswith("SPLIT-")
        assert payments[0].batch_reference == payments[1].batch_reference
        assert _reload(Sale, earlier.id).status == "completed"
        assert _reload(Sale, later.id).paid_amount_cents == 500
        assert _reload(Customer, customer.id).credit_balance_cents == 2500

    def test_single_sale_allocation_has_no_batch(self, credit_sale):
        payments = payment_service.post_payment(
            PaymentRequest(amount_cents=1000, method="cash", customer_id=credit_sale.customer_id)
        )
        assert len(payments) == 1
        assert payments[0].batch_reference is None

    def test_more_than_outstanding_rejected(self, credit_sale):
        with pytest.raises(OverpaymentRejected):
            payment_service.post_payment(
                PaymentRequest(amount_cents=5001, method="cash", customer_id=credit_sale.customer_id)
            )
        assert db.session.query(Payment).count() == 0

    def test_online_requires_sale(self, credit_sale):
        with pytest.raises(ValidationError):
            payment_service.post_payment(PaymentRequest(
                amount_cents=100,
                method="online",
                customer_id=credit_sale.customer_id,
                verification=GatewayVerification("order_x", "pay_x", "sig"),
            ))


# =============================================================================
# ONLINE PAYMENTS
# =============================================================================


class TestOnlinePayments:

    @pytest.fixture
    def online_sale(self, gateway, make_customer, make_product, make_sale):
        customer = make_customer()
        product = make_product(price_cents=2500)
        return make_sale(customer.id, (product.id, 1), payment_type="online")

    def test_verified_payment_completes_sale(self, gateway, online_sale):
        order_id = online_sale.gateway_order_id
        verification = GatewayVerification(order_id, "pay_001", gateway.sign(order_id, "pay_001"))

        payments = payment_service.post_payment(PaymentRequest(
            amount_cents=2500, method="online", sale_id=online_sale.id, verification=verification,
        ))

        assert payments[0].verified is True
        assert payments[0].gateway_payment_id == "pay_001"
        assert _reload(Sale, online_sale.id).status == "completed"

    def test_bad_signature_rejected(self, gateway, online_sale):
        verification = GatewayVerification(online_sale.gateway_order_id, "pay_001", "0" * 64)

        with pytest.raises(PaymentVerificationFailed):
            payment_service.post_payment(PaymentRequest(
                amount_cents=2500, method="online", sale_id=online_sale.id, verification=verification,
            ))

        assert _reload(Sale, online_sale.id).paid_amount_cents == 0
        assert db.session.query(Payment).count() == 0

    def test_missing_verification_rejected(self, online_sale):
        with pytest.raises(PaymentVerificationFailed):
            payment_service.post_payment(PaymentRequest(amount_cents=2500, method="online", sale_id=online_sale.id))

    def test_signature_for_another_order_rejected(self, gateway, online_sale):
        verification = GatewayVerification("order_other", "pay_001", gateway.sign("order_other", "pay_001"))

        with pytest.raises(PaymentVerificationFailed):
            payment_service.post_payment(PaymentRequest(
                amount_cents=2500, method="online", sale_id=online_sale.id, verification=verification,
            ))
        assert _reload(Sale, online_sale.id).status == "pending"

    def test_same_gateway_payment_rejected_second_time(self, gateway, online_sale):
        order_id = online_sale.gateway_order_id
        verification = GatewayVerification(order_id, "pay_002", gateway.sign(order_id, "pay_002"))
        payment_service.post_payment(PaymentRequest(
            amount_cents=1000, method="online", sale_id=online_sale.id, verification=verification,
        ))

        with pytest.raises(PaymentVerificationFailed, match="already applied"):
            payment_service.post_payment(PaymentRequest(
                amount_cents=1500, method="online", sale_id=online_sale.id, verification=verification,
            ))

        assert _reload(Sale, online_sale.id).paid_amount_cents == 1000
        assert db.session.query(Payment).count() == 1

    def test_prior_verdict_skips_gateway(self, online_sale):
        order_id = online_sale.gateway_order_id
        payments = payment_service.post_payment(
            PaymentRequest(
                amount_cents=2500,
                method="online",
                sale_id=online_sale.id,
                verification=GatewayVerification(order_id, "pay_003", "checked-upstream"),
            ),
            gateway_verified=True,
        )
        assert payments[0].verified is True

    def test_checkout_builds_upi_request(self, gateway, online_sale):
        checkout = payment_service.prepare_online_checkout(online_sale.id)

        assert checkout["qr_data"].startswith("upi://pay?")
        assert "am=25.00" in checkout["qr_data"]
        assert checkout["payment_details"]["order_id"] == online_sale.gateway_order_id

    def test_checkout_only_for_online_sales(self, gateway, credit_sale):
        with pytest.raises(SaleStateError):
            payment_service.prepare_online_checkout(credit_sale.id)


# =============================================================================
# BULK
# =============================================================================


def test_bulk_rows_are_independent(credit_sale):
    customer_id = credit_sale.customer_id
    rows = [
        {"customer_id": customer_id, "amount": 10, "method": "cash", "reference": "R-1"},
        {"customer_id": customer_id, "amount": 500, "method": "cash"},
        {"sale_id": credit_sale.id, "amount": 5, "method": "online",
         "verification": {"order_id": "o", "payment_id": "p", "signature": "s"}},
        {"customer_id": customer_id, "amount": 5, "method": "barter"},
        {"customer_id": customer_id, "amount": 15, "method": "check", "date": "2024-05-02"},
    ]

    result = payment_service.post_bulk_payments(rows)

    assert [row["index"] for row in result["processed"]] == [0, 4]
    assert [(row["index"], row["kind"]) for row in result["failed"]] == [
        (1, "OverpaymentRejected"),
        (2, "ValidationError"),
        (3, "ValidationError"),
    ]
    assert result["batch_reference"].startswith("BULK-")
    stored = db.session.query(Payment).order_by(Payment.id).all()
    assert [p.amount_cents for p in stored] == [1000, 1500]
    assert {p.batch_reference for p in stored} == {result["batch_reference"]}
    assert _reload(Sale, credit_sale.id).paid_amount_cents == 2500


def test_bulk_requires_list():
    with pytest.raises(ValidationError):
        payment_service.post_bulk_payments({"customer_id": 1})
