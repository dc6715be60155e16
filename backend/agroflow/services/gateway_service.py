# Overview: Payment gateway adapter; order creation, signature verification and UPI requests.

"""
Payment Gateway Adapter

The gateway is an external collaborator. Payment posting only ever sees a
boolean verdict from verify(); everything about how the gateway confirms
a payment stays behind this interface.

HmacPaymentGateway implements the Razorpay-style checkout contract:
- create_order() returns an opaque order id the client pays against
- the client receives (payment_id, signature) from the gateway checkout
- signature == HMAC_SHA256(key_secret, "<order_id>|<payment_id>")

Confirmation polling is a bounded retry loop owned by the caller
(verify_with_retry), not an open-ended client-side interval.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import time
from dataclasses import dataclass
from urllib.parse import urlencode

from flask import current_app

from agroflow.money import from_cents
from agroflow.validation import GatewayVerification


@dataclass(frozen=True)
class GatewayOrder:
    order_id: str
    amount_cents: int
    currency: str
    receipt: str | None = None

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "receipt": self.receipt,
        }


class PaymentGateway:
    """Interface consumed by sale and payment posting."""

    def create_order(self, amount_cents: int, currency: str, receipt: str | None = None) -> GatewayOrder:
        raise NotImplementedError

    def verify(self, order_id: str, payment_id: str, signature: str) -> bool:
        raise NotImplementedError


class HmacPaymentGateway(PaymentGateway):
    def __init__(self, key_id: str, key_secret: str):
        if not key_secret:
            raise ValueError("Payment gateway key secret is required")
        self.key_id = key_id
        self._key_secret = key_secret.encode("utf-8")

    def create_order(self, amount_cents: int, currency: str, receipt: str | None = None) -> GatewayOrder:
        if amount_cents <= 0:
            raise ValueError("Order amount must be positive")
        return GatewayOrder(
            order_id=f"order_{secrets.token_hex(8)}",
            amount_cents=amount_cents,
            currency=currency,
            receipt=receipt,
        )

    def sign(self, order_id: str, payment_id: str) -> str:
        message = f"{order_id}|{payment_id}".encode("utf-8")
        return hmac.new(self._key_secret, message, hashlib.sha256).hexdigest()

    def verify(self, order_id: str, payment_id: str, signature: str) -> bool:
        if not (order_id and payment_id and signature):
            return False
        expected = self.sign(order_id, payment_id)
        # Constant-time comparison; never short-circuit on the first differing byte
        return hmac.compare_digest(expected, signature)


def get_gateway() -> PaymentGateway:
    """Gateway configured for the current app (overridable via app.extensions)."""
    gateway = current_app.extensions.get("agroflow_gateway")
    if gateway is None:
        gateway = HmacPaymentGateway(
            key_id=current_app.config["PAYMENT_GATEWAY_KEY_ID"],
            key_secret=current_app.config["PAYMENT_GATEWAY_KEY_SECRET"],
        )
        current_app.extensions["agroflow_gateway"] = gateway
    return gateway


def verify_with_retry(
    gateway: PaymentGateway,
    verification: GatewayVerification,
    *,
    attempts: int | None = None,
    backoff_base: float | None = None,
    sleep=time.sleep,
) -> bool:
    """
    Ask the gateway for a verdict up to `attempts` times with exponential
    backoff. Transport errors (ConnectionError/TimeoutError from a remote
    gateway) count as a failed attempt; the last one is re-raised.

    Returns True on the first positive verdict, False once attempts are
    exhausted.
    """
    if attempts is None:
        attempts = current_app.config.get("GATEWAY_VERIFY_ATTEMPTS", 5)
    if backoff_base is None:
        backoff_base = current_app.config.get("GATEWAY_VERIFY_BACKOFF", 0.5)
    attempts = max(1, attempts)

    for attempt in range(attempts):
        try:
            if gateway.verify(verification.order_id, verification.payment_id, verification.signature):
                return True
        except (ConnectionError, TimeoutError):
            if attempt >= attempts - 1:
                raise
        if attempt < attempts - 1:
            sleep(backoff_base * (2 ** attempt))
    return False


def upi_payment_request(*, sale, order_id: str) -> dict:
    """
    Build the UPI deep link encoded into the checkout QR code.

    Format: upi://pay?pa=<vpa>&pn=<name>&am=<amount>&cu=<currency>&tn=<note>&tr=<ref>
    """
    config = current_app.config
    reference = sale.document_number or f"S-{sale.id}"
    amount = from_cents(sale.remaining_cents)
    params = {
        "pa": config["UPI_PAYEE_VPA"],
        "pn": config["UPI_PAYEE_NAME"],
        "am": f"{amount:.2f}",
        "cu": config["CURRENCY"],
        "tn": f"Payment for {reference}",
        "tr": order_id,
    }
    upi_string = "upi://pay?" + urlencode(params)
    return {
        "qr_data": upi_string,
        "upi_string": upi_string,
        "payment_details": {
            "upi_id": config["UPI_PAYEE_VPA"],
            "payee_name": config["UPI_PAYEE_NAME"],
            "amount": float(amount),
            "currency": config["CURRENCY"],
            "reference": reference,
            "order_id": order_id,
        },
    }
