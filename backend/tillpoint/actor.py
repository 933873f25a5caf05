"""
Authenticated actor handed in by the transport/auth layer.

The core trusts the tuple; it only checks role-appropriate authorization for
sensitive actions. A manager override (PIN entered at the terminal) is
validated upstream and arrives as a flag.
"""

from __future__ import annotations

from dataclasses import dataclass

from .errors import Forbidden, ValidationError


ROLE_CASHIER = "cashier"
ROLE_MANAGER = "manager"
ROLE_ADMIN = "admin"

VALID_ROLES = {ROLE_CASHIER, ROLE_MANAGER, ROLE_ADMIN}
ELEVATED_ROLES = {ROLE_MANAGER, ROLE_ADMIN}


@dataclass(frozen=True)
class Actor:
    actor_id: int
    role: str
    store_id: int
    manager_override: bool = False

    def __post_init__(self):
        if self.role not in VALID_ROLES:
            raise ValidationError(f"Unknown role '{self.role}'")

    @property
    def is_elevated(self) -> bool:
        return self.role in ELEVATED_ROLES or self.manager_override


def require_elevated(actor: Actor, action: str) -> None:
    """Void, refund, receiving, stock counts, discount rules and manual pricing need a manager/admin or an override."""
    if not actor.is_elevated:
        raise Forbidden(
            f"{action} requires a manager or admin role, or a manager override",
            details={"role": actor.role, "action": action},
        )
