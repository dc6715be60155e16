from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import Boolean, Date, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from agroflow.errors import AgroFlowError
from agroflow.money import MAX_AMOUNT_CENTS, MoneyError, to_cents
from agroflow.models.sales import PAYMENT_METHODS, PAYMENT_TYPE_CREDIT, PAYMENT_TYPES
from agroflow.time_utils import parse_iso_date, parse_iso_datetime

# SQLite and Postgres BIGINT both stop at int64
INT64_MAX = 2**63 - 1
MAX_LINE_QUANTITY = 1_000_000
# 100% per annum
MAX_INTEREST_RATE_BPS = 10_000


class ValidationError(AgroFlowError, ValueError):
    """400-level input problem."""
    status_code = 400
    kind = "ValidationError"


class ConflictError(AgroFlowError, ValueError):
    """409-level business rule conflict (e.g., duplicate SKU)."""
    status_code = 409
    kind = "ConflictError"


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    - aliases: alternative client keys (camelCase from the web client)
    - money_fields: decimal client keys converted to *_cents columns
    """
    writable_fields: set[str]
    required_on_create: set[str] = field(default_factory=set)
    aliases: dict[str, str] = field(default_factory=dict)
    money_fields: dict[str, str] = field(default_factory=dict)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_int(key: str, value: Any) -> int:
    number = _parse_int(key, value)
    if abs(number) > INT64_MAX:
        raise ValidationError(f"{key} is out of range")
    return number


def _parse_int(key: str, value: Any) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    # Whole floats are what JSON clients send for "3"
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return _coerce_int(col.key, value)

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    if isinstance(coltype, Date):
        return _coerce_date(col.key, value)

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # Default: leave as-is
    return value


def _coerce_date(key: str, value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            parsed = parse_iso_date(value)
        except ValueError:
            raise ValidationError(f"{key} must be an ISO-8601 date")
        if parsed is None:
            raise ValidationError(f"{key} must be an ISO-8601 date")
        return parsed
    raise ValidationError(f"{key} must be a date")


def _coerce_money(key: str, value: Any) -> int:
    try:
        return to_cents(value)
    except MoneyError as exc:
        raise ValidationError(f"{key}: {exc}")


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict keyed by column name.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    # Resolve aliases first, then money keys, so "creditLimit" -> "credit_limit" -> "credit_limit_cents"
    normalized: dict = {}
    for k, raw in payload.items():
        k = policy.aliases.get(k, k)
        if k in policy.money_fields:
            column_key = policy.money_fields[k]
            normalized[column_key] = None if raw is None else _coerce_money(k, raw)
        else:
            normalized[k] = raw

    if not partial:
        missing = sorted(f for f in policy.required_on_create if f not in normalized)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in normalized.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in normalized.items():
        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    if "price_cents" in patch and patch["price_cents"] is not None:
        if patch["price_cents"] < 0:
            raise ValidationError("price must be >= 0")
        if patch["price_cents"] > MAX_AMOUNT_CENTS:
            raise ValidationError("price cannot exceed 9,999,999.99")
    for key in ("quantity", "stock_threshold"):
        if key in patch and patch[key] is not None and patch[key] < 0:
            raise ValidationError(f"{key} must be >= 0")


def enforce_rules_customer(patch: dict) -> None:
    if "credit_limit_cents" in patch and patch["credit_limit_cents"] is not None:
        if patch["credit_limit_cents"] < 0:
            raise ValidationError("credit_limit must be >= 0")


def flatten_supplier(payload: dict) -> dict:
    """The web client nests supplier metadata; columns are flat."""
    if not isinstance(payload, dict) or not isinstance(payload.get("supplier"), dict):
        return payload
    flat = {k: v for k, v in payload.items() if k != "supplier"}
    supplier = payload["supplier"]
    for src, dst in (
        ("name", "supplier_name"),
        ("contactInfo", "supplier_contact"),
        ("contact_info", "supplier_contact"),
        ("email", "supplier_email"),
        ("phone", "supplier_phone"),
    ):
        if src in supplier:
            flat[dst] = supplier[src]
    return flat


# =============================================================================
# POSTING REQUEST STRUCTS
# =============================================================================

def _first(payload: dict, *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in payload:
            return payload[key]
    return default


def _optional_text(value: Any, key: str, max_length: int) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if len(text) > max_length:
        raise ValidationError(f"{key} exceeds max length {max_length}")
    return text


def _positive_int(value: Any, key: str, maximum: int = INT64_MAX) -> int:
    if value is None:
        raise ValidationError(f"{key} is required")
    number = _coerce_int(key, value)
    if number <= 0:
        raise ValidationError(f"{key} must be > 0")
    if number > maximum:
        raise ValidationError(f"{key} must be <= {maximum}")
    return number


def _optional_id(value: Any, key: str) -> int | None:
    if value is None or value == "":
        return None
    return _positive_int(value, key)


@dataclass(frozen=True)
class SaleItemRequest:
    product_id: int
    quantity: int

    @classmethod
    def from_json(cls, payload: Any, index: int) -> "SaleItemRequest":
        if not isinstance(payload, dict):
            raise ValidationError(f"items[{index}] must be an object")
        return cls(
            product_id=_positive_int(_first(payload, "product_id", "productId", "product"), f"items[{index}].product_id"),
            quantity=_positive_int(
                payload.get("quantity"), f"items[{index}].quantity", maximum=MAX_LINE_QUANTITY,
            ),
        )


@dataclass(frozen=True)
class CreditDetails:
    due_date: date | None = None
    interest_rate_bps: int = 0

    @classmethod
    def from_json(cls, payload: Any) -> "CreditDetails":
        if payload is None:
            return cls()
        if not isinstance(payload, dict):
            raise ValidationError("credit_details must be an object")

        raw_due = _first(payload, "due_date", "dueDate")
        due_date = None
        if raw_due not in (None, ""):
            due_date = _coerce_date("credit_details.due_date", raw_due)

        if "interest_rate_bps" in payload:
            bps = _coerce_int("credit_details.interest_rate_bps", payload["interest_rate_bps"])
        else:
            # The web client sends a percentage, e.g. 2.5 -> 250 bps
            raw_rate = _first(payload, "interest_rate", "interestRate", default=0)
            try:
                rate = Decimal(str(raw_rate or 0))
            except InvalidOperation:
                raise ValidationError("credit_details.interest_rate must be a number")
            if not rate.is_finite():
                raise ValidationError("credit_details.interest_rate must be a number")
            bps = int((rate * 100).to_integral_value())
        if bps < 0:
            raise ValidationError("credit_details.interest_rate must be >= 0")
        if bps > MAX_INTEREST_RATE_BPS:
            raise ValidationError(
                f"credit_details.interest_rate must be <= {MAX_INTEREST_RATE_BPS // 100}%"
            )
        return cls(due_date=due_date, interest_rate_bps=bps)


@dataclass(frozen=True)
class SaleRequest:
    customer_id: int
    items: tuple[SaleItemRequest, ...]
    payment_type: str
    credit_details: CreditDetails | None = None

    @classmethod
    def from_json(cls, payload: Any) -> "SaleRequest":
        if not isinstance(payload, dict):
            raise ValidationError("Invalid JSON payload")

        customer_id = _positive_int(_first(payload, "customer_id", "customerId", "customer"), "customer_id")

        raw_items = payload.get("items")
        if not isinstance(raw_items, list) or not raw_items:
            raise ValidationError("items must be a non-empty list")
        items = tuple(SaleItemRequest.from_json(item, i) for i, item in enumerate(raw_items))

        payment_type = str(_first(payload, "payment_type", "paymentType", default="cash") or "").strip().lower()
        if payment_type not in PAYMENT_TYPES:
            raise ValidationError(f"payment_type must be one of {', '.join(PAYMENT_TYPES)}")

        credit_details = None
        if payment_type == PAYMENT_TYPE_CREDIT:
            credit_details = CreditDetails.from_json(_first(payload, "credit_details", "creditDetails"))

        return cls(
            customer_id=customer_id,
            items=items,
            payment_type=payment_type,
            credit_details=credit_details,
        )


@dataclass(frozen=True)
class GatewayVerification:
    order_id: str
    payment_id: str
    signature: str

    @classmethod
    def from_json(cls, payload: Any) -> "GatewayVerification":
        if not isinstance(payload, dict):
            raise ValidationError("verification must be an object")
        order_id = _optional_text(_first(payload, "order_id", "orderId", "razorpay_order_id"), "order_id", 64)
        payment_id = _optional_text(_first(payload, "payment_id", "paymentId", "razorpay_payment_id"), "payment_id", 64)
        signature = _optional_text(_first(payload, "signature", "razorpay_signature"), "signature", 256)
        if not (order_id and payment_id and signature):
            raise ValidationError("verification requires order_id, payment_id and signature")
        return cls(order_id=order_id, payment_id=payment_id, signature=signature)


@dataclass(frozen=True)
class PaymentRequest:
    amount_cents: int
    method: str
    sale_id: int | None = None
    customer_id: int | None = None
    paid_at: datetime | None = None
    reference: str | None = None
    notes: str | None = None
    verification: GatewayVerification | None = None

    @classmethod
    def from_json(cls, payload: Any) -> "PaymentRequest":
        if not isinstance(payload, dict):
            raise ValidationError("Invalid JSON payload")

        sale_id = _optional_id(_first(payload, "sale_id", "saleId"), "sale_id")
        customer_id = _optional_id(_first(payload, "customer_id", "customerId"), "customer_id")
        if sale_id is None and customer_id is None:
            raise ValidationError("sale_id or customer_id is required")

        if "amount_cents" in payload:
            amount_cents = _positive_int(payload["amount_cents"], "amount_cents", maximum=MAX_AMOUNT_CENTS)
        else:
            amount_cents = _coerce_money("amount", payload.get("amount"))
            if amount_cents <= 0:
                raise ValidationError("amount must be > 0")

        method = str(payload.get("method") or "").strip().lower()
        if method not in PAYMENT_METHODS:
            raise ValidationError(f"method must be one of {', '.join(PAYMENT_METHODS)}")

        raw_date = _first(payload, "paid_at", "date")
        paid_at = None
        if raw_date not in (None, ""):
            try:
                paid_at = parse_iso_datetime(str(raw_date))
            except ValueError:
                raise ValidationError("date must be an ISO-8601 date or datetime")

        verification = None
        raw_verification = _first(payload, "verification", "gateway")
        if raw_verification is not None:
            verification = GatewayVerification.from_json(raw_verification)

        return cls(
            amount_cents=amount_cents,
            method=method,
            sale_id=sale_id,
            customer_id=customer_id,
            paid_at=paid_at,
            reference=_optional_text(payload.get("reference"), "reference", 128),
            notes=_optional_text(payload.get("notes"), "notes", 2000),
            verification=verification,
        )
