from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .errors import ValidationError
from .services.pricing_service import ManualOverride


# Maximum single amount: 9,999,999.99 (999,999,999 cents)
MAX_CENTS = 999_999_999

PAYMENT_CASH = "cash"
PAYMENT_CARD = "card"
PAYMENT_QRIS = "qris"
PAYMENT_TRANSFER = "transfer"
PAYMENT_METHODS = {PAYMENT_CASH, PAYMENT_CARD, PAYMENT_QRIS, PAYMENT_TRANSFER}


@dataclass(frozen=True)
class CartItem:
    product_id: int
    quantity: int


@dataclass(frozen=True)
class Payment:
    """
    Tender for a checkout.

    cash: cash_received_cents must cover the total; change is computed.
    card/qris/transfer: reference (approval code, transfer id) is required.
    """
    method: str
    cash_received_cents: int = 0
    reference: str | None = None

    @property
    def is_cash(self) -> bool:
        return self.method == PAYMENT_CASH


def coerce_int(value: Any, name: str) -> int:
    """
    Strict integer parsing for JSON/query input.

    Accepts ints and plain digit strings. Rejects bools, floats, decimals
    and scientific notation instead of silently truncating.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{name} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{name} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{name} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{name} must be an integer, not a decimal")
    raise ValidationError(f"{name} must be an integer")


def coerce_cents(value: Any, name: str, *, minimum: int = 0) -> int:
    cents = coerce_int(value, name)
    if cents < minimum:
        raise ValidationError(f"{name} must be >= {minimum}")
    if cents > MAX_CENTS:
        raise ValidationError(f"{name} cannot exceed {MAX_CENTS}")
    return cents


def optional_str(value: Any, name: str, *, max_length: int = 255) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{name} must be a string")
    value = value.strip()
    if len(value) > max_length:
        raise ValidationError(f"{name} exceeds max length {max_length}")
    return value or None


def require_str(value: Any, name: str, *, max_length: int = 255) -> str:
    value = optional_str(value, name, max_length=max_length)
    if not value:
        raise ValidationError(f"{name} is required")
    return value


def parse_cart(raw: Any) -> list[CartItem]:
    """
    Cart lines in first-seen order with duplicate product ids merged.

    Raises ValidationError for an empty cart or a non-positive quantity.
    """
    if not isinstance(raw, (list, tuple)) or not raw:
        raise ValidationError("Cart must contain at least one item")

    merged: dict[int, int] = {}
    for index, item in enumerate(raw):
        if isinstance(item, CartItem):
            product_id, quantity = item.product_id, item.quantity
        elif isinstance(item, dict):
            product_id = coerce_int(item.get("product_id"), f"items[{index}].product_id")
            quantity = coerce_int(item.get("quantity"), f"items[{index}].quantity")
        else:
            raise ValidationError(f"items[{index}] must be an object")
        if quantity <= 0:
            raise ValidationError(
                "quantity must be a positive integer",
                details={"product_id": product_id, "quantity": quantity},
            )
        merged[product_id] = merged.get(product_id, 0) + quantity

    return [CartItem(product_id=pid, quantity=qty) for pid, qty in merged.items()]


def parse_payment(raw: Any) -> Payment:
    if isinstance(raw, Payment):
        return raw
    if not isinstance(raw, dict):
        raise ValidationError("payment is required")
    method = (raw.get("method") or "").strip().lower() if isinstance(raw.get("method"), str) else ""
    if method not in PAYMENT_METHODS:
        raise ValidationError(
            f"payment.method must be one of: {', '.join(sorted(PAYMENT_METHODS))}",
            details={"method": raw.get("method")},
        )
    received = raw.get("cash_received_cents")
    return Payment(
        method=method,
        cash_received_cents=coerce_cents(received, "payment.cash_received_cents") if received is not None else 0,
        reference=optional_str(raw.get("reference"), "payment.reference", max_length=128),
    )


def parse_override(raw: Any) -> ManualOverride | None:
    if raw is None:
        return None
    if isinstance(raw, ManualOverride):
        return raw
    if not isinstance(raw, dict):
        raise ValidationError("pricing_override must be an object")
    return ManualOverride(
        discount_cents=coerce_cents(raw.get("discount_cents", 0), "pricing_override.discount_cents"),
        tax_cents=coerce_cents(raw.get("tax_cents", 0), "pricing_override.tax_cents"),
        reason=require_str(raw.get("reason"), "pricing_override.reason"),
    )
