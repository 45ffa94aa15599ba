# Overview: Service-layer operations for the network audit trail.

from __future__ import annotations

from ..extensions import db
from ..models import NetworkEvent
"""
Audit trail invariants

- Append-only: events are added, never updated or deleted.
- Events are written inside the same DB transaction as the change they
  record; the caller commits.
- No business logic here; services decide what to record.
"""

# Event types
REQUEST_CREATED = "REQUEST_CREATED"
REQUEST_APPROVED = "REQUEST_APPROVED"
REQUEST_REJECTED = "REQUEST_REJECTED"
AUTHORIZATION_ACTIVATED = "AUTHORIZATION_ACTIVATED"
AUTHORIZATION_SUSPENDED = "AUTHORIZATION_SUSPENDED"
AUTHORIZATION_REACTIVATED = "AUTHORIZATION_REACTIVATED"
AUTHORIZATION_REVOKED = "AUTHORIZATION_REVOKED"
AUTHORIZATION_TERMS_UPDATED = "AUTHORIZATION_TERMS_UPDATED"
ORDER_CREATED = "ORDER_CREATED"
ORDER_STATUS_CHANGED = "ORDER_STATUS_CHANGED"
SETTLEMENT_SELECTED = "SETTLEMENT_SELECTED"
COMMISSION_ADVANCED = "COMMISSION_ADVANCED"
REMAINING_PAYMENT_SETTLED = "REMAINING_PAYMENT_SETTLED"


def record_event(
    *,
    event_type: str,
    entity_type: str,
    entity_id: int,
    actor_id: str | None = None,
    authorization_id: int | None = None,
    request_id: int | None = None,
    order_id: int | None = None,
    note: str | None = None,
    payload: dict | None = None,
) -> NetworkEvent:
    ev = NetworkEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=actor_id,
        authorization_id=authorization_id,
        request_id=request_id,
        order_id=order_id,
        note=note,
        payload=payload,
    )
    db.session.add(ev)
    return ev


def list_authorization_events(authorization_id: int) -> list[NetworkEvent]:
    return (
        db.session.query(NetworkEvent)
        .filter_by(authorization_id=authorization_id)
        .order_by(NetworkEvent.id.asc())
        .all()
    )


def list_order_events(order_id: int) -> list[NetworkEvent]:
    return (
        db.session.query(NetworkEvent)
        .filter_by(order_id=order_id)
        .order_by(NetworkEvent.id.asc())
        .all()
    )
