# Overview: Store discount rules; creation, listing and activation.

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from ..actor import Actor, require_elevated
from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import DiscountRule
from ..validation import coerce_cents, require_str
from .audit_service import append_audit_event
from .pricing_service import RULE_FLAT, RULE_PERCENT


RULE_KINDS = {RULE_PERCENT, RULE_FLAT}


def _parse_percent(value) -> Decimal:
    if isinstance(value, (bool, float)) or value is None:
        raise ValidationError("percent must be a number given as an integer or string")
    try:
        percent = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError("percent must be a number", details={"percent": value})
    if not percent.is_finite() or percent <= 0 or percent > 100:
        raise ValidationError("percent must be greater than 0 and at most 100", details={"percent": str(value)})
    return percent


def list_discount_rules(store_id: int, active_only: bool = False) -> list[DiscountRule]:
    q = db.session.query(DiscountRule).filter_by(store_id=store_id)
    if active_only:
        q = q.filter_by(is_active=True)
    return q.order_by(DiscountRule.id.asc()).all()


def create_discount_rule(actor: Actor, data: dict) -> DiscountRule:
    """
    Create an active rule for the actor's store.

    data: {"name", "kind": PERCENT|FLAT, "percent" or "flat_cents", "min_subtotal_cents"}
    Only the single best applicable rule is applied at checkout.
    """
    require_elevated(actor, "Discount rules")

    name = require_str(data.get("name"), "name", max_length=128)
    kind = (data.get("kind") or "").strip().upper() if isinstance(data.get("kind"), str) else ""
    if kind not in RULE_KINDS:
        raise ValidationError(f"kind must be one of: {', '.join(sorted(RULE_KINDS))}", details={"kind": data.get("kind")})

    percent = flat_cents = None
    if kind == RULE_PERCENT:
        percent = _parse_percent(data.get("percent"))
    else:
        flat_cents = coerce_cents(data.get("flat_cents"), "flat_cents", minimum=1)

    rule = DiscountRule(
        store_id=actor.store_id,
        name=name,
        kind=kind,
        percent=percent,
        flat_cents=flat_cents,
        min_subtotal_cents=coerce_cents(data.get("min_subtotal_cents", 0), "min_subtotal_cents"),
        is_active=True,
    )
    db.session.add(rule)
    db.session.flush()
    append_audit_event(
        store_id=rule.store_id,
        action="discount_rule.created",
        entity_type="discount_rule",
        entity_id=rule.id,
        actor=actor,
        detail={"name": rule.name, "kind": rule.kind},
    )
    db.session.commit()
    return rule


def set_discount_rule_active(rule_id: int, is_active: bool, actor: Actor) -> DiscountRule:
    require_elevated(actor, "Discount rules")
    if not isinstance(is_active, bool):
        raise ValidationError("is_active must be true or false")

    rule = db.session.get(DiscountRule, rule_id)
    if rule is None or rule.store_id != actor.store_id:
        raise NotFound("Discount rule not found", details={"rule_id": rule_id})

    rule.is_active = is_active
    append_audit_event(
        store_id=rule.store_id,
        action="discount_rule.activated" if is_active else "discount_rule.deactivated",
        entity_type="discount_rule",
        entity_id=rule.id,
        actor=actor,
        detail={"is_active": is_active},
    )
    db.session.commit()
    return rule
