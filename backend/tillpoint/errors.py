"""
Domain errors for the transaction core.

Every service raises one of these; the Flask app renders them as
{"error": {"code", "kind", "message", "details"}} with the matching status.

KINDS:
- validation:     caller's input was malformed; nothing was written
- state_conflict: a business rule rejected the operation; nothing was written
- not_found:      unknown transaction/shift/product/purchase order
- unavailable:    backing store unreachable or contended; safe to retry
- forbidden:      the actor's role does not allow the action

`recordable` marks failures the idempotency guard stores against a key so a
retried checkout sees the same outcome. Failures caused by a precondition the
client can fix (no open shift, missing role) or by infrastructure are not
recorded.
"""

from __future__ import annotations


class PosError(Exception):
    """Base class for all transaction-core errors."""

    code = "pos_error"
    kind = "internal"
    status_code = 500
    recordable = False

    def __init__(self, message: str | None = None, details: dict | None = None):
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "kind": self.kind,
            "message": self.message,
            "details": self.details,
        }


# -----------------------------------------------------------------------------
# Kinds
# -----------------------------------------------------------------------------

class ValidationError(PosError):
    """Malformed input."""
    code = "validation_error"
    kind = "validation"
    status_code = 400
    recordable = True


class StateConflict(PosError):
    """Business rule violation."""
    code = "state_conflict"
    kind = "state_conflict"
    status_code = 409
    recordable = True


class NotFound(PosError):
    """Resource not found."""
    code = "not_found"
    kind = "not_found"
    status_code = 404
    recordable = True


class Unavailable(PosError):
    """Backing store unavailable; retry later."""
    code = "unavailable"
    kind = "unavailable"
    status_code = 503


class Forbidden(PosError):
    """Actor is not allowed to perform this action."""
    code = "forbidden"
    kind = "forbidden"
    status_code = 403


# -----------------------------------------------------------------------------
# Concrete errors
# -----------------------------------------------------------------------------

class InvalidPricing(ValidationError):
    """Pricing inputs are invalid."""
    code = "invalid_pricing"


class OutOfStock(StateConflict):
    """Insufficient stock for one or more cart lines."""
    code = "out_of_stock"


class ShiftAlreadyOpen(StateConflict):
    """A shift is already open for this cashier and store."""
    code = "shift_already_open"


class ShiftClosed(StateConflict):
    """Shift is closed."""
    code = "shift_closed"


class ShiftNotOpen(StateConflict):
    """No open shift for this cashier and store."""
    code = "shift_not_open"
    recordable = False


class AlreadyVoided(StateConflict):
    """Transaction already voided."""
    code = "already_voided"


class VoidWindowExpired(StateConflict):
    """Void window has expired for this transaction."""
    code = "void_window_expired"


class RefundExceedsTotal(StateConflict):
    """Refund would exceed the transaction total."""
    code = "refund_exceeds_total"


class InvalidTransition(StateConflict):
    """Operation is not allowed in the current state."""
    code = "invalid_transition"


ERRORS_BY_CODE: dict[str, type[PosError]] = {
    cls.code: cls
    for cls in (
        PosError, ValidationError, StateConflict, NotFound, Unavailable, Forbidden,
        InvalidPricing, OutOfStock, ShiftAlreadyOpen, ShiftClosed, ShiftNotOpen,
        AlreadyVoided, VoidWindowExpired, RefundExceedsTotal, InvalidTransition,
    )
}


def error_from_record(code: str | None, message: str | None, details: dict | None) -> PosError:
    """Rebuild a stored failure so a replay raises the same error class."""
    cls = ERRORS_BY_CODE.get(code or "", PosError)
    return cls(message, details)


def internal_error_body() -> dict:
    return {"error": {
        "code": "internal_error",
        "kind": "internal",
        "message": "Internal server error",
        "details": {},
    }}
