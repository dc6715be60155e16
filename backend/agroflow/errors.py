# Overview: Domain error hierarchy shared by services and mapped to HTTP by routes.

from __future__ import annotations


class AgroFlowError(Exception):
    """
    Base class for errors surfaced to the caller as an operation result.

    Each error is scoped to the single requested operation; none is fatal to
    the process and none is retried automatically.
    """
    status_code = 400
    kind = "AgroFlowError"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.message, "kind": self.kind}
        if self.details:
            payload["details"] = self.details
        return payload


class CustomerNotFound(AgroFlowError):
    status_code = 404
    kind = "CustomerNotFound"


class ProductNotFound(AgroFlowError):
    status_code = 404
    kind = "ProductNotFound"


class SaleNotFound(AgroFlowError):
    status_code = 404
    kind = "SaleNotFound"


class PaymentNotFound(AgroFlowError):
    status_code = 404
    kind = "PaymentNotFound"


class InsufficientStock(AgroFlowError):
    status_code = 409
    kind = "InsufficientStock"


class CreditLimitExceeded(AgroFlowError):
    status_code = 409
    kind = "CreditLimitExceeded"


class OverpaymentRejected(AgroFlowError):
    status_code = 409
    kind = "OverpaymentRejected"


class SaleStateError(AgroFlowError):
    """Operation not allowed in the sale's current status."""
    status_code = 409
    kind = "SaleStateError"


class PaymentVerificationFailed(AgroFlowError):
    status_code = 402
    kind = "PaymentVerificationFailed"
