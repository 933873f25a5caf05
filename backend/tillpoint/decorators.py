# Overview: Request decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .actor import Actor, VALID_ROLES


_TRUE_VALUES = {"1", "true", "yes", "on"}


def _header_int(name: str) -> int | None:
    raw = (request.headers.get(name) or "").strip()
    if not raw.isdigit():
        return None
    return int(raw)


def require_actor(f):
    """
    Require an authenticated actor forwarded by the gateway.

    Sets g.actor (Actor) from:
    - X-Actor-Id: authenticated user id
    - X-Actor-Role: cashier | manager | admin
    - X-Store-Id: store the session is bound to
    - X-Manager-Override: "true" when a manager PIN was accepted upstream

    Returns 401 when any identity header is missing or malformed.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        actor_id = _header_int("X-Actor-Id")
        store_id = _header_int("X-Store-Id")
        role = (request.headers.get("X-Actor-Role") or "").strip().lower()

        if actor_id is None or store_id is None or role not in VALID_ROLES:
            return jsonify({"error": {
                "code": "unauthenticated",
                "kind": "unauthenticated",
                "message": "Authentication required",
                "details": {},
            }}), 401

        override = (request.headers.get("X-Manager-Override") or "").strip().lower() in _TRUE_VALUES
        g.actor = Actor(actor_id=actor_id, role=role, store_id=store_id, manager_override=override)
        return f(*args, **kwargs)

    return decorated_function
