from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from authnet.time_utils import to_utc_z


class NetworkEvent(db.Model):
    """
    Append-only audit log for authorization and settlement transitions.

    Rows are written in the same transaction as the change they record and
    are never updated or deleted through the ORM.
    """
    __tablename__ = "network_events"
    __table_args__ = (
        db.Index("ix_network_events_entity", "entity_type", "entity_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    event_type = db.Column(db.String(48), nullable=False, index=True)
    entity_type = db.Column(db.String(32), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    actor_id = db.Column(db.String(64), nullable=True)

    authorization_id = db.Column(db.Integer, nullable=True, index=True)
    request_id = db.Column(db.Integer, nullable=True, index=True)
    order_id = db.Column(db.Integer, nullable=True, index=True)

    note = db.Column(db.String(500), nullable=True)
    payload = db.Column(db.JSON, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_id": self.actor_id,
            "authorization_id": self.authorization_id,
            "request_id": self.request_id,
            "order_id": self.order_id,
            "note": self.note,
            "payload": self.payload,
            "occurred_at": to_utc_z(self.occurred_at),
        }


@event.listens_for(NetworkEvent, "before_update")
@event.listens_for(NetworkEvent, "before_delete")
def _reject_event_mutation(mapper, connection, target):
    raise RuntimeError(f"network_events row {target.id} is append-only")
