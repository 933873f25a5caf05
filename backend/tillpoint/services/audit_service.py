# Overview: Append-only audit trail for monetary and shift actions.

from __future__ import annotations

from datetime import datetime
from typing import Optional

from ..actor import Actor
from ..extensions import db
from ..models import AuditEvent
"""
Audit invariants:

- Append-only: events are never updated or deleted.
- Written inside the same DB transaction as the change they record (flush only;
  the calling unit commits).
- occurred_at defaults to the database clock.
"""


def append_audit_event(
    *,
    store_id: int,
    action: str,
    entity_type: str,
    entity_id: int,
    actor: Actor | None = None,
    detail: dict | None = None,
    occurred_at: Optional[datetime] = None,
) -> AuditEvent:
    ev = AuditEvent(
        store_id=store_id,
        actor_id=actor.actor_id if actor else None,
        actor_role=actor.role if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        detail=detail or {},
        occurred_at=occurred_at,
    )
    db.session.add(ev)
    db.session.flush()
    return ev


def list_audit_events(
    store_id: int,
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    action: str | None = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int | None = None,
    newest_first: bool = False,
) -> list[AuditEvent]:
    """Events of one store; start is inclusive, end exclusive."""
    query = db.session.query(AuditEvent).filter(AuditEvent.store_id == store_id)
    if entity_type:
        query = query.filter(AuditEvent.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(AuditEvent.entity_id == entity_id)
    if action:
        query = query.filter(AuditEvent.action == action)
    if start is not None:
        query = query.filter(AuditEvent.occurred_at >= start)
    if end is not None:
        query = query.filter(AuditEvent.occurred_at < end)

    order = AuditEvent.id.desc() if newest_first else AuditEvent.id.asc()
    query = query.order_by(order)
    if limit is not None:
        query = query.limit(limit)
    return query.all()
