# Overview: Service-layer operations for authorization lifecycle and post-activation term updates.

"""
Authorization lifecycle (grantor actions only):

    active --suspend--> suspended --reactivate--> active
    active --revoke---> revoked   (terminal)

After activation only price settings, validUntil, notes and status change.
Scope membership, identity, rates and tier placement stay frozen; the
model's before_update guard backs this up at the ORM level.
"""

from __future__ import annotations

from ..errors import AccessDeniedError, InvalidTransitionError, NotActiveError, NotFoundError, ValidationError
from ..extensions import db
from ..models import AuthorizationNode
from ..models.authorization import (
    NODE_STATUS_ACTIVE,
    NODE_STATUS_REVOKED,
    NODE_STATUS_SUSPENDED,
)
from ..time_utils import to_utc_z, utcnow
from ..validation import optional_text, parse_datetime
from . import audit_service
from .concurrency import lock_for_update, run_with_retry
from .scope_terms import parse_price_settings

# Keys accepted by update_terms; everything else is frozen
MUTABLE_TERM_KEYS = ("priceSettings", "validUntil", "notes")


def _load_for_grantor(node_id: int, actor_id: str) -> AuthorizationNode:
    node = lock_for_update(db.session.query(AuthorizationNode).filter_by(id=node_id)).first()
    if not node:
        raise NotFoundError(f"Authorization {node_id} not found", entity_id=node_id)
    if node.grantor_id != actor_id:
        raise AccessDeniedError("Only the grantor can change this authorization", entity_id=node_id)
    return node


def _set_status(node: AuthorizationNode, status: str, actor_id: str, event_type: str, note: str | None) -> None:
    previous = node.status
    node.status = status
    node.status_changed_at = utcnow()
    audit_service.record_event(
        event_type=event_type,
        entity_type="authorization",
        entity_id=node.id,
        actor_id=actor_id,
        authorization_id=node.id,
        note=note,
        payload={"from": previous, "to": status},
    )


def suspend_authorization(node_id: int, actor_id: str, *, reason: str | None = None) -> AuthorizationNode:
    def _op():
        node = _load_for_grantor(node_id, actor_id)
        if node.status != NODE_STATUS_ACTIVE:
            raise NotActiveError(
                f"Authorization {node_id} is {node.status}, only active grants can be suspended",
                field="status",
                entity_id=node_id,
            )
        _set_status(node, NODE_STATUS_SUSPENDED, actor_id, audit_service.AUTHORIZATION_SUSPENDED, reason)
        db.session.commit()
        return node

    return run_with_retry(_op)


def reactivate_authorization(node_id: int, actor_id: str, *, reason: str | None = None) -> AuthorizationNode:
    def _op():
        node = _load_for_grantor(node_id, actor_id)
        if node.status != NODE_STATUS_SUSPENDED:
            raise InvalidTransitionError(
                f"Authorization {node_id} is {node.status}, only suspended grants can be reactivated",
                field="status",
                entity_id=node_id,
            )
        _set_status(node, NODE_STATUS_ACTIVE, actor_id, audit_service.AUTHORIZATION_REACTIVATED, reason)
        db.session.commit()
        return node

    return run_with_retry(_op)


def revoke_authorization(node_id: int, actor_id: str, *, reason: str | None = None) -> AuthorizationNode:
    """
    Revoke an active authorization. Revoked is terminal; the row stays for audit.

    Raises:
        NotActiveError: the authorization is not currently active
    """
    def _op():
        node = _load_for_grantor(node_id, actor_id)
        if node.status != NODE_STATUS_ACTIVE:
            raise NotActiveError(
                f"Authorization {node_id} is {node.status}, only active grants can be revoked",
                field="status",
                entity_id=node_id,
            )
        _set_status(node, NODE_STATUS_REVOKED, actor_id, audit_service.AUTHORIZATION_REVOKED, reason)
        db.session.commit()
        return node

    return run_with_retry(_op)


def update_terms(node_id: int, actor_id: str, changes: dict) -> AuthorizationNode:
    """
    Merge post-activation term changes into a node.

    priceSettings keys overwrite only what they name; a null category or
    product entry clears that discount. validUntil may be cleared with null
    (perpetual) or moved to any future instant after validFrom.

    Raises:
        ValidationError: frozen key supplied, or a malformed value
        InvalidTransitionError: node is revoked
    """
    if not isinstance(changes, dict) or not changes:
        raise ValidationError("No changes supplied", field="priceSettings")
    frozen = sorted(key for key in changes if key not in MUTABLE_TERM_KEYS)
    if frozen:
        raise ValidationError(
            f"Fields cannot change after activation: {', '.join(frozen)}",
            field=frozen[0],
        )

    def _op():
        node = _load_for_grantor(node_id, actor_id)
        if node.status == NODE_STATUS_REVOKED:
            raise InvalidTransitionError(
                f"Authorization {node_id} is revoked",
                field="status",
                entity_id=node_id,
            )

        applied = {}

        if "priceSettings" in changes:
            category_rows = {row.category_id: row for row in node.scope_categories}
            product_rows = {row.product_id: row for row in node.scope_products}
            settings = parse_price_settings(
                changes["priceSettings"],
                list(category_rows),
                list(product_rows),
                allow_clear=True,
            )
            if settings.global_discount_units is not None:
                node.global_discount_units = settings.global_discount_units
            for category_id, units in settings.category_discounts.items():
                category_rows[category_id].discount_units = units
            for product_id, terms in settings.product_prices.items():
                product_rows[product_id].fixed_price_cents = terms.fixed_price_cents
                product_rows[product_id].discount_units = terms.discount_units
            applied["price_settings"] = node.price_settings_dict()

        if "validUntil" in changes:
            ends = parse_datetime(changes["validUntil"], "validUntil")
            if ends is not None:
                starts = node.valid_from
                if ends <= utcnow() or (starts is not None and ends <= starts):
                    raise ValidationError("validUntil must be in the future and after validFrom", field="validUntil")
            node.valid_until = ends
            applied["valid_until"] = to_utc_z(ends)

        if "notes" in changes:
            node.notes = optional_text(changes, "notes")
            applied["notes"] = node.notes

        # Touch the node so version_id advances with child-row edits
        node.updated_at = utcnow()

        audit_service.record_event(
            event_type=audit_service.AUTHORIZATION_TERMS_UPDATED,
            entity_type="authorization",
            entity_id=node.id,
            actor_id=actor_id,
            authorization_id=node.id,
            payload=applied,
        )
        db.session.commit()
        return node

    return run_with_retry(_op)
