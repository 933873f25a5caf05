# Overview: Pricing engine; subtotal, discount, tax and line attribution for a cart.

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Sequence

from ..errors import InvalidPricing
from ..models.transactions import PRICING_AUTO, PRICING_MANUAL
"""
Pricing rules (all amounts integer cents):

- subtotal     = sum(quantity * unit_price)
- discount     = min(cashier discount + best applicable rule, subtotal)
- taxable      = subtotal - discount
- tax          = round_half_up(taxable * rate / 100)   <- rounded ONCE, on the total
- grand_total  = taxable + tax

Only the single largest applicable rule is taken; a rule worth more than the
cart is capped at the subtotal. A cashier discount is caller input: it must
fit within the subtotal on its own, marks the result MANUAL and is listed in
applied_rules as a CASHIER entry.

A manual override replaces discount and tax verbatim (rules are skipped) and
marks the result MANUAL with the override reason as its note.

Discount and grand total are then attributed to lines by largest remainder so
line shares always sum exactly to the header totals. Refunds consume the
per-line grand-total shares (line_due).
"""


RULE_PERCENT = "PERCENT"
RULE_FLAT = "FLAT"
RULE_CASHIER = "CASHIER"

_HUNDRED = Decimal("100")


@dataclass(frozen=True)
class PricedLine:
    product_id: int
    quantity: int
    unit_price_cents: int

    @property
    def gross_cents(self) -> int:
        return self.quantity * self.unit_price_cents


@dataclass(frozen=True)
class ManualOverride:
    discount_cents: int
    tax_cents: int
    reason: str


@dataclass(frozen=True)
class PricingResult:
    subtotal_cents: int
    discount_cents: int
    taxable_cents: int
    tax_cents: int
    grand_total_cents: int
    tax_rate_percent: Decimal
    manual_discount_cents: int = 0
    pricing_mode: str = PRICING_AUTO
    pricing_note: str | None = None
    applied_rules: list[dict] = field(default_factory=list)
    line_discounts: list[int] = field(default_factory=list)
    line_totals: list[int] = field(default_factory=list)
    line_dues: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "taxable_cents": self.taxable_cents,
            "tax_cents": self.tax_cents,
            "grand_total_cents": self.grand_total_cents,
            "tax_rate_percent": str(self.tax_rate_percent),
            "manual_discount_cents": self.manual_discount_cents,
            "pricing_mode": self.pricing_mode,
            "pricing_note": self.pricing_note,
            "applied_rules": list(self.applied_rules),
        }


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_rate(value) -> Decimal:
    """Percent as Decimal in [0, 100]; floats go through str() to keep their printed digits."""
    if isinstance(value, bool):
        raise InvalidPricing("tax rate must be a number")
    try:
        rate = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise InvalidPricing(f"Invalid tax rate '{value}'")
    if not rate.is_finite() or rate < 0 or rate > _HUNDRED:
        raise InvalidPricing("tax rate must be between 0 and 100", details={"tax_rate_percent": str(value)})
    return rate


def _require_int(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidPricing(f"{name} must be an integer number of cents")
    return value


def _check_discount(discount: int, subtotal: int) -> None:
    if discount < 0 or discount > subtotal:
        raise InvalidPricing(
            "discount must be between 0 and the subtotal",
            details={"discount_cents": discount, "subtotal_cents": subtotal},
        )


def allocate_proportionally(total: int, weights: Sequence[int]) -> list[int]:
    """
    Split total over weights by largest remainder.

    Shares sum exactly to total. Equal remainders go to the earliest index.
    All-zero weights split as if every weight were 1.
    """
    if not weights:
        return []
    if sum(weights) <= 0:
        weights = [1] * len(weights)
    weight_sum = sum(weights)

    shares = [total * w // weight_sum for w in weights]
    remainders = [total * w % weight_sum for w in weights]
    leftover = total - sum(shares)
    order = sorted(range(len(weights)), key=lambda i: (-remainders[i], i))
    for i in order[:leftover]:
        shares[i] += 1
    return shares


def rule_discount_cents(rule, subtotal_cents: int) -> int:
    """Discount a single rule grants on this subtotal (0 when it does not apply)."""
    if subtotal_cents < (getattr(rule, "min_subtotal_cents", 0) or 0):
        return 0
    kind = (getattr(rule, "kind", "") or "").upper()
    if kind == RULE_PERCENT:
        percent = parse_rate(getattr(rule, "percent", 0) or 0)
        return round_half_up(Decimal(subtotal_cents) * percent / _HUNDRED)
    if kind == RULE_FLAT:
        flat = getattr(rule, "flat_cents", 0) or 0
        if flat < 0:
            raise InvalidPricing("flat discount must be >= 0")
        return flat
    raise InvalidPricing(f"Unknown discount rule kind '{kind}'")


def best_rule(rules: Iterable, subtotal_cents: int) -> tuple[object | None, int]:
    """
    The applicable rule granting the largest discount, and that discount.

    Equal discounts keep the earliest rule. (None, 0) when nothing applies.
    """
    best, best_amount = None, 0
    for rule in rules:
        amount = rule_discount_cents(rule, subtotal_cents)
        if amount > best_amount:
            best, best_amount = rule, amount
    return best, best_amount


def compute_pricing(
    lines: Sequence[PricedLine],
    *,
    tax_rate_percent=0,
    discount_rules: Iterable = (),
    manual_discount_cents: int = 0,
    override: ManualOverride | None = None,
) -> PricingResult:
    """
    Price a cart. Pure: reads nothing, writes nothing.

    Raises InvalidPricing for non-positive quantities, negative prices, a
    cashier or override discount outside [0, subtotal], a negative override
    tax or a rate outside [0, 100]. Rule discounts are capped, never rejected.
    """
    if not lines:
        raise InvalidPricing("Cart has no lines")
    for line in lines:
        _require_int(line.quantity, "quantity")
        _require_int(line.unit_price_cents, "unit_price_cents")
        if line.quantity <= 0:
            raise InvalidPricing("quantity must be > 0", details={"product_id": line.product_id})
        if line.unit_price_cents < 0:
            raise InvalidPricing("unit price must be >= 0", details={"product_id": line.product_id})

    rate = parse_rate(tax_rate_percent)
    gross = [line.gross_cents for line in lines]
    subtotal = sum(gross)

    applied: list[dict] = []
    manual = _require_int(manual_discount_cents, "manual discount")
    if override is not None:
        if manual:
            raise InvalidPricing("A cashier discount cannot be combined with a pricing override")
        discount = _require_int(override.discount_cents, "override discount")
        tax_override = _require_int(override.tax_cents, "override tax")
        if tax_override < 0:
            raise InvalidPricing("override tax must be >= 0")
        reason = (override.reason or "").strip()
        if not reason:
            raise InvalidPricing("manual override requires a reason")
        _check_discount(discount, subtotal)
        mode, note = PRICING_MANUAL, reason
    else:
        _check_discount(manual, subtotal)
        discount = manual
        mode, note = PRICING_AUTO, None
        if manual:
            mode = PRICING_MANUAL
            applied.append({"id": None, "name": "Cashier discount", "kind": RULE_CASHIER, "amount_cents": manual})

        rule, amount = best_rule(discount_rules, subtotal)
        # Rules never push the discount past the subtotal
        amount = min(amount, subtotal - discount)
        if rule is not None and amount > 0:
            discount += amount
            applied.append({
                "id": getattr(rule, "id", None),
                "name": getattr(rule, "name", None),
                "kind": (getattr(rule, "kind", "") or "").upper(),
                "amount_cents": amount,
            })
        tax_override = None

    taxable = subtotal - discount
    if tax_override is not None:
        tax = tax_override
    else:
        tax = round_half_up(Decimal(taxable) * rate / _HUNDRED)
    grand_total = taxable + tax

    line_discounts = allocate_proportionally(discount, gross)
    line_totals = [g - d for g, d in zip(gross, line_discounts)]
    line_dues = allocate_proportionally(grand_total, line_totals)

    return PricingResult(
        subtotal_cents=subtotal,
        discount_cents=discount,
        taxable_cents=taxable,
        tax_cents=tax,
        grand_total_cents=grand_total,
        tax_rate_percent=rate,
        manual_discount_cents=manual,
        pricing_mode=mode,
        pricing_note=note,
        applied_rules=applied,
        line_discounts=line_discounts,
        line_totals=line_totals,
        line_dues=line_dues,
    )
