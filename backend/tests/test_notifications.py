"""
Notification / aging deriver tests.

All dates are evaluated against a fixed as_of so results do not depend on
the day the suite runs.
"""

from datetime import date

import pytest

from agroflow.errors import CustomerNotFound
from agroflow.services import notification_service, payment_service
from agroflow.validation import PaymentRequest


AS_OF = date(2024, 6, 30)


@pytest.fixture
def ledger(make_customer, make_product, make_sale):
    """Customer with four 100.00 credit sales at different due dates."""
    customer = make_customer(credit_limit_cents=100_000)
    product = make_product(price_cents=10_000, quantity=20)
    sales = {
        "twenty_overdue": make_sale(customer.id, (product.id, 1), due_date=date(2024, 6, 10)),
        "upcoming": make_sale(customer.id, (product.id, 1), due_date=date(2024, 7, 3)),
        "five_overdue": make_sale(customer.id, (product.id, 1), due_date=date(2024, 6, 25)),
        "far_future": make_sale(customer.id, (product.id, 1), due_date=date(2024, 8, 30)),
    }
    return customer, {name: sale.id for name, sale in sales.items()}


class TestDeriveNotifications:

    def test_ordering_and_fields(self, ledger):
        customer, sale_ids = ledger

        notifications = notification_service.derive_notifications(customer.id, as_of=AS_OF)

        assert [(n["type"], n["sale_id"]) for n in notifications] == [
            ("overdue", sale_ids["twenty_overdue"]),
            ("overdue", sale_ids["five_overdue"]),
            ("upcoming", sale_ids["upcoming"]),
        ]
        first = notifications[0]
        assert first["days_overdue"] == 20
        assert first["due_date"] == "2024-06-10"
        assert first["amount_cents"] == 10_000
        assert first["amount"] == 100.0
        assert notifications[2]["days_until_due"] == 3

    def test_idempotent(self, ledger):
        customer, _ = ledger
        first = notification_service.derive_notifications(customer.id, as_of=AS_OF)
        second = notification_service.derive_notifications(customer.id, as_of=AS_OF)
        assert first == second

    def test_uses_remaining_amount_and_drops_paid_sales(self, ledger):
        customer, sale_ids = ledger
        payment_service.post_payment(
            PaymentRequest(amount_cents=10_000, method="cash", sale_id=sale_ids["twenty_overdue"])
        )
        payment_service.post_payment(
            PaymentRequest(amount_cents=4_000, method="cash", sale_id=sale_ids["five_overdue"])
        )

        notifications = notification_service.derive_notifications(customer.id, as_of=AS_OF)

        overdue = [n for n in notifications if n["type"] == "overdue"]
        assert [(n["sale_id"], n["amount_cents"]) for n in overdue] == [(sale_ids["five_overdue"], 6_000)]

    def test_due_today_is_upcoming(self, make_customer, make_product, make_sale):
        customer = make_customer()
        product = make_product()
        make_sale(customer.id, (product.id, 1), due_date=AS_OF)

        notifications = notification_service.derive_notifications(customer.id, as_of=AS_OF)
        assert [(n["type"], n["days_until_due"]) for n in notifications] == [("upcoming", 0)]

    def test_upcoming_window_is_configurable(self, ledger):
        customer, sale_ids = ledger
        notifications = notification_service.derive_notifications(customer.id, as_of=AS_OF, upcoming_days=90)
        upcoming = [n["sale_id"] for n in notifications if n["type"] == "upcoming"]
        assert upcoming == [sale_ids["upcoming"], sale_ids["far_future"]]

    def test_credit_warning_at_threshold(self, make_customer, make_product, make_sale):
        customer = make_customer(credit_limit_cents=10_000)
        product = make_product(price_cents=9_500)
        make_sale(customer.id, (product.id, 1), due_date=date(2024, 12, 31))

        notifications = notification_service.derive_notifications(customer.id, as_of=AS_OF)

        assert [n["type"] for n in notifications] == ["credit_warning"]
        assert notifications[0]["utilization"] == 0.95
        assert notifications[0]["current_balance_cents"] == 9_500

    def test_no_warning_below_threshold(self, ledger):
        customer, _ = ledger
        types = {n["type"] for n in notification_service.derive_notifications(customer.id, as_of=AS_OF)}
        assert "credit_warning" not in types

    def test_zero_limit_with_balance_warns(self, app, make_customer, make_product, make_sale, monkeypatch):
        monkeypatch.setitem(app.config, "CREDIT_LIMIT_POLICY", "warn")
        customer = make_customer(credit_limit_cents=0)
        product = make_product(price_cents=500)
        make_sale(customer.id, (product.id, 1), due_date=date(2024, 12, 31))

        notifications = notification_service.derive_notifications(customer.id, as_of=AS_OF)
        assert notifications[-1]["type"] == "credit_warning"
        assert notifications[-1]["utilization"] == 1.0

    def test_no_signals_for_clean_account(self, make_customer):
        customer = make_customer()
        assert notification_service.derive_notifications(customer.id, as_of=AS_OF) == []

    def test_unknown_customer(self):
        with pytest.raises(CustomerNotFound):
            notification_service.derive_notifications(424_242, as_of=AS_OF)


def test_aging_buckets(ledger, make_product, make_sale):
    customer, _ = ledger
    product = make_product(price_cents=5_000)
    make_sale(customer.id, (product.id, 1), due_date=date(2024, 3, 1))

    aging = notification_service.customer_aging(customer.id, as_of=AS_OF)

    assert aging["buckets_cents"] == {
        "current": 20_000,
        "1_30": 20_000,
        "31_60": 0,
        "61_90": 0,
        "over_90": 5_000,
    }
    assert aging["total_outstanding_cents"] == 45_000
    assert aging["as_of"] == "2024-06-30"


def test_overdue_report(ledger, make_customer):
    customer, _ = ledger
    make_customer()

    report = notification_service.overdue_report(AS_OF)

    assert len(report) == 1
    assert report[0]["customer_id"] == customer.id
    assert report[0]["total_overdue_cents"] == 20_000
    assert [n["days_overdue"] for n in report[0]["notifications"]] == [20, 5]
