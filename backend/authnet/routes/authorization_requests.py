# Overview: Flask API routes for authorization requests; intake, listing and the approve/reject workflow.

# backend/authnet/routes/authorization_requests.py
"""
Authorization Request API Routes

DESIGN:
- A grantee (or an operator acting for it) opens a request naming the grantor
- The grantor lists its pending requests and approves or rejects each one
- Approval writes the authorization node; rejection leaves the graph alone

SECURITY:
- Acting party comes from the X-Actor-Id header
- Only the request's grantor may approve or reject
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor
from ..errors import NetworkError, internal_error_body
from ..services import approval_service


requests_bp = Blueprint("authorization_requests", __name__, url_prefix="/api/authorization-requests")


# =============================================================================
# INTAKE
# =============================================================================

@requests_bp.post("")
@require_actor
def create_request_route():
    """
    Open a pending authorization request.

    Request body:
    {
        "grantorId": "mfr-001",
        "granteeId": "designer-42",      (optional, defaults to the actor)
        "granteeType": "designer",
        "granteeName": "Studio 42",      (optional)
        "scope": "category",             (optional, default "all")
        "categories": ["sofas"],         (optional)
        "products": [12, 13],            (optional)
        "notes": "..."                   (optional)
    }

    Returns:
        201: Request created (status: pending)
        400: Invalid input
        409: A pending request for this pair already exists
    """
    try:
        data = request.get_json(silent=True) or {}

        req = approval_service.request_authorization(
            grantor_id=data.get("grantorId"),
            grantee_id=data.get("granteeId") or g.actor_id,
            grantee_type=data.get("granteeType"),
            grantee_name=data.get("granteeName"),
            requested_scope=data.get("scope"),
            requested_categories=data.get("categories"),
            requested_products=data.get("products"),
            notes=data.get("notes"),
            created_by=g.actor_id,
        )
        return jsonify({"request": req.to_dict()}), 201

    except NetworkError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create authorization request")
        return jsonify(internal_error_body()), 500


# =============================================================================
# LISTING
# =============================================================================

@requests_bp.get("/pending")
@require_actor
def list_pending_route():
    """Requests waiting on the acting grantor."""
    try:
        pending = approval_service.list_pending_requests(g.actor_id)
        return jsonify({"requests": [r.to_dict() for r in pending]}), 200
    except NetworkError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list pending requests")
        return jsonify(internal_error_body()), 500


@requests_bp.get("/mine")
@require_actor
def list_mine_route():
    """Requests the acting party opened as grantee. Optional ?status= filter."""
    try:
        mine = approval_service.list_my_requests(g.actor_id, status=request.args.get("status"))
        return jsonify({"requests": [r.to_dict() for r in mine]}), 200
    except NetworkError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list own requests")
        return jsonify(internal_error_body()), 500


@requests_bp.get("/<int:request_id>")
@require_actor
def get_request_route(request_id: int):
    try:
        req = approval_service.get_request(request_id, g.actor_id)
        return jsonify({"request": req.to_dict()}), 200
    except NetworkError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load authorization request")
        return jsonify(internal_error_body()), 500


# =============================================================================
# APPROVAL WORKFLOW
# =============================================================================

@requests_bp.post("/<int:request_id>/approve")
@require_actor
def approve_request_route(request_id: int):
    """
    Approve a pending request (grantor action).

    Request body:
    {
        "discountRate": 60,                    minimum discount rate, percent
        "commissionRate": 40,                  percent
        "tierType": "new_company" | "existing_tier",
        "tierCompanyName": "North Region",     required for new_company
        "parentAuthorizationId": 7,            required for existing_tier
        "allowSubAuthorization": true,
        "scope", "categories", "products",     optional overrides
        "priceSettings": {...},                optional
        "validFrom", "validUntil", "notes"     optional
    }

    Returns:
        201: Authorization created (status: active)
        400: Invalid input
        403: Actor is not the grantor
        409: Request already processed, or graph integrity violation
    """
    try:
        data = request.get_json(silent=True) or {}

        node = approval_service.approve_request(
            request_id,
            g.actor_id,
            discount_rate=data.get("discountRate"),
            commission_rate=data.get("commissionRate"),
            tier_type=data.get("tierType"),
            tier_company_name=data.get("tierCompanyName"),
            parent_authorization_id=data.get("parentAuthorizationId"),
            allow_sub_authorization=data.get("allowSubAuthorization", False),
            scope=data.get("scope"),
            categories=data.get("categories"),
            products=data.get("products"),
            price_settings=data.get("priceSettings"),
            valid_from=data.get("validFrom"),
            valid_until=data.get("validUntil"),
            notes=data.get("notes"),
        )
        return jsonify({"authorization": node.to_dict()}), 201

    except NetworkError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to approve authorization request")
        return jsonify(internal_error_body()), 500


@requests_bp.post("/<int:request_id>/reject")
@require_actor
def reject_request_route(request_id: int):
    """
    Reject a pending request (grantor action).

    Request body:
    {
        "reason": "Outside our distribution region"   (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        req = approval_service.reject_request(request_id, g.actor_id, reason=data.get("reason"))
        return jsonify({"request": req.to_dict()}), 200

    except NetworkError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to reject authorization request")
        return jsonify(internal_error_body()), 500
