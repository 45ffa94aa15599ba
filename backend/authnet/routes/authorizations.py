# Overview: Flask API routes for authorizations; depth-1 graph views, lifecycle actions and price lookups.

# backend/authnet/routes/authorizations.py
"""
Authorization API Routes

VISIBILITY: an actor sees only the grants it issued and the grants it
received. Every route below checks that before returning a node; there is
no endpoint that walks more than one hop.

- /granted, /received, /hierarchy, /tier-companies   actor-scoped lists
- /<id>, /<id>/events                                grantor or grantee
- /<id>/children                                     node's grantee only
- /<id>/parent                                       node's grantor only
- /<id>/terms, /suspend, /reactivate, /revoke        grantor only
- /<id>/products, /<id>/prices/<product_id>          grantee (or grantor preview)
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor
from ..errors import AccessDeniedError, NetworkError, internal_error_body
from ..services import audit_service, authorization_service, graph_service, pricing_service


authorizations_bp = Blueprint("authorizations", __name__, url_prefix="/api/authorizations")


def _visible_node(node_id: int):
    node = graph_service.get_node(node_id)
    if not graph_service.is_visible_to(node, g.actor_id):
        raise AccessDeniedError("Authorization is not visible to this actor", entity_id=node_id)
    return node


# =============================================================================
# ACTOR-SCOPED LISTS
# =============================================================================

@authorizations_bp.get("/granted")
@require_actor
def list_granted_route():
    """Grants the actor issued. Optional ?status= filter."""
    try:
        nodes = graph_service.list_granted(g.actor_id, status=request.args.get("status"))
        return jsonify({"authorizations": [n.to_dict() for n in nodes]}), 200
    except NetworkError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list granted authorizations")
        return jsonify(internal_error_body()), 500


@authorizations_bp.get("/received")
@require_actor
def list_received_route():
    """Grants the actor received. Optional ?status= filter."""
    try:
        nodes = graph_service.list_received(g.actor_id, status=request.args.get("status"))
        return jsonify({"authorizations": [n.to_dict() for n in nodes]}), 200
    except NetworkError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list received authorizations")
        return jsonify(internal_error_body()), 500


@authorizations_bp.get("/hierarchy")
@require_actor
def hierarchy_route():
    try:
        return jsonify(graph_service.tier_view_for(g.actor_id)), 200
    except NetworkError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to build tier hierarchy")
        return jsonify(internal_error_body()), 500


@authorizations_bp.get("/tier-companies")
@require_actor
def tier_companies_route():
    """Tier company rollup over the grants the actor issued."""
    try:
        return jsonify({"tier_companies": pricing_service.tier_company_rollups(g.actor_id)}), 200
    except NetworkError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to build tier company rollup")
        return jsonify(internal_error_body()), 500


# =============================================================================
# SINGLE NODE, ONE HOP
# =============================================================================

@authorizations_bp.get("/<int:node_id>")
@require_actor
def get_authorization_route(node_id: int):
    try:
        node = _visible_node(node_id)
        return jsonify({"authorization": node.to_dict()}), 200
    except NetworkError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load authorization")
        return jsonify(internal_error_body()), 500


@authorizations_bp.get("/<int:node_id>/children")
@require_actor
def children_route(node_id: int):
    """Grants issued under this node. Only its grantee (the issuer) may look."""
    try:
        node = graph_service.get_node(node_id)
        if node.grantee_id != g.actor_id:
            raise AccessDeniedError("Only the grantee can list grants issued under it", entity_id=node_id)
        children = graph_service.children_of(node_id, status=request.args.get("status"))
        return jsonify({"authorizations": [c.to_dict() for c in children]}), 200
    except NetworkError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list child authorizations")
        return jsonify(internal_error_body()), 500


@authorizations_bp.get("/<int:node_id>/parent")
@require_actor
def parent_route(node_id: int):
    """The grant this node hangs under. Only its grantor (the parent's grantee) may look."""
    try:
        node = graph_service.get_node(node_id)
        if node.grantor_id != g.actor_id:
            raise AccessDeniedError("Only the grantor can view the parent grant", entity_id=node_id)
        parent = graph_service.parent_of(node_id)
        return jsonify({"authorization": parent.to_dict() if parent else None}), 200
    except NetworkError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load parent authorization")
        return jsonify(internal_error_body()), 500


@authorizations_bp.get("/<int:node_id>/events")
@require_actor
def events_route(node_id: int):
    try:
        _visible_node(node_id)
        events = audit_service.list_authorization_events(node_id)
        return jsonify({"events": [e.to_dict() for e in events]}), 200
    except NetworkError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list authorization events")
        return jsonify(internal_error_body()), 500


# =============================================================================
# GRANTOR ACTIONS
# =============================================================================

@authorizations_bp.put("/<int:node_id>/terms")
@require_actor
def update_terms_route(node_id: int):
    """
    Update post-activation terms.

    Request body (any subset):
    {
        "priceSettings": {"globalDiscount": 0.9, "categoryDiscounts": {...}, "productPrices": {...}},
        "validUntil": "2027-01-01T00:00:00Z",
        "notes": "..."
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        node = authorization_service.update_terms(node_id, g.actor_id, data)
        return jsonify({"authorization": node.to_dict()}), 200
    except NetworkError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update authorization terms")
        return jsonify(internal_error_body()), 500


_LIFECYCLE_ACTIONS = {
    "suspend": authorization_service.suspend_authorization,
    "reactivate": authorization_service.reactivate_authorization,
    "revoke": authorization_service.revoke_authorization,
}


@authorizations_bp.post("/<int:node_id>/<any(suspend, reactivate, revoke):action>")
@require_actor
def lifecycle_route(node_id: int, action: str):
    """
    Request body:
    {
        "reason": "..."   (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        node = _LIFECYCLE_ACTIONS[action](node_id, g.actor_id, reason=data.get("reason"))
        return jsonify({"authorization": node.to_dict()}), 200
    except NetworkError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to %s authorization", action)
        return jsonify(internal_error_body()), 500


# =============================================================================
# PRICING
# =============================================================================

@authorizations_bp.get("/<int:node_id>/products")
@require_actor
def authorized_products_route(node_id: int):
    try:
        _visible_node(node_id)
        return jsonify({"products": pricing_service.authorized_products(node_id)}), 200
    except NetworkError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list authorized products")
        return jsonify(internal_error_body()), 500


@authorizations_bp.get("/<int:node_id>/prices/<int:product_id>")
@require_actor
def resolve_price_route(node_id: int, product_id: int):
    try:
        _visible_node(node_id)
        resolved = pricing_service.resolve_price(node_id, product_id)
        return jsonify({"price": resolved.to_dict()}), 200
    except NetworkError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to resolve price")
        return jsonify(internal_error_body()), 500
