# Overview: Flask API routes for orders and settlement; parses input and returns JSON responses.

# backend/authnet/routes/orders.py
"""
Order & Settlement API Routes

- POST /api/orders                          grantee places an order through an authorization
- POST /api/orders/<id>/status              forward-only status moves (labels or codes 1-6)
- POST /api/orders/<id>/settlement          choose supplier_transfer or commission_mode, once
- POST /api/orders/<id>/remaining-payment   settle the second installment of a split
- POST /api/orders/<id>/commission          step pending -> applied -> approved -> paid

Every order is visible to its grantor and grantee only.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_actor
from ..errors import NetworkError, internal_error_body
from ..services import audit_service, settlement_service


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _order_body(order) -> dict:
    return {
        "order": order.to_dict(),
        "settlement": settlement_service.snapshot_of(order).to_dict(),
    }


@orders_bp.post("")
@require_actor
def create_order_route():
    """
    Place an order.

    Request body:
    {
        "authorizationId": 7,
        "lines": [{"productId": 12, "quantity": 2}],
        "needInvoice": true,                 (optional)
        "invoiceMarkupPercent": 6,           (optional, or)
        "invoiceMarkupAmount": 1500          (optional, cents)
    }

    Returns:
        201: Order created (status: pending_payment)
        400: Invalid input
        403: Actor is not the authorization's grantee
        409: Authorization not active
        422: Product out of scope or unpriceable
    """
    try:
        data = request.get_json(silent=True) or {}
        order = settlement_service.create_order(
            data.get("authorizationId"),
            g.actor_id,
            data.get("lines"),
            need_invoice=data.get("needInvoice", False),
            invoice_markup_percent=data.get("invoiceMarkupPercent"),
            invoice_markup_amount=data.get("invoiceMarkupAmount"),
        )
        return jsonify(_order_body(order)), 201

    except NetworkError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify(internal_error_body()), 500


@orders_bp.get("/<int:order_id>")
@require_actor
def get_order_route(order_id: int):
    try:
        order = settlement_service.get_order(order_id, g.actor_id)
        return jsonify(_order_body(order)), 200
    except NetworkError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load order")
        return jsonify(internal_error_body()), 500


@orders_bp.post("/<int:order_id>/status")
@require_actor
def update_status_route(order_id: int):
    """
    Request body:
    {
        "status": "paid"    (or legacy code 2)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        order = settlement_service.update_order_status(order_id, g.actor_id, data.get("status"))
        return jsonify(_order_body(order)), 200
    except NetworkError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify(internal_error_body()), 500


@orders_bp.post("/<int:order_id>/settlement")
@require_actor
def select_settlement_route(order_id: int):
    """
    Choose the settlement mode. Write-once.

    Request body:
    {
        "mode": "commission_mode",
        "paymentRatioEnabled": true,     (optional)
        "paymentRatio": 50,              (optional, percent)
        "minDiscountRate": 60,           (optional, grantor only)
        "commissionRate": 40             (optional, grantor only)
    }

    Returns:
        200: Settlement snapshot
        409: Mode already chosen
    """
    try:
        data = request.get_json(silent=True) or {}
        params = {key: value for key, value in data.items() if key != "mode"}
        snapshot = settlement_service.select_settlement_mode(order_id, g.actor_id, data.get("mode"), params)
        return jsonify({"settlement": snapshot.to_dict()}), 200
    except NetworkError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to select settlement mode")
        return jsonify(internal_error_body()), 500


@orders_bp.post("/<int:order_id>/remaining-payment")
@require_actor
def settle_remaining_route(order_id: int):
    try:
        snapshot = settlement_service.settle_remaining_payment(order_id, g.actor_id)
        return jsonify({"settlement": snapshot.to_dict()}), 200
    except NetworkError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to settle remaining payment")
        return jsonify(internal_error_body()), 500


@orders_bp.post("/<int:order_id>/commission")
@require_actor
def advance_commission_route(order_id: int):
    """
    Request body:
    {
        "status": "applied",
        "remark": "...",              (optional)
        "invoiceRef": "INV-2041",     (optional)
        "paymentProofRef": "..."      (optional)
    }

    Returns:
        200: Settlement snapshot (unchanged when the status was already reached)
        409: Skip or reverse step
        422: Applied before completion / remaining payment
    """
    try:
        data = request.get_json(silent=True) or {}
        snapshot = settlement_service.advance_commission(
            order_id,
            g.actor_id,
            data.get("status"),
            remark=data.get("remark"),
            invoice_ref=data.get("invoiceRef"),
            payment_proof_ref=data.get("paymentProofRef"),
        )
        return jsonify({"settlement": snapshot.to_dict()}), 200
    except NetworkError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to advance commission")
        return jsonify(internal_error_body()), 500


@orders_bp.get("/<int:order_id>/events")
@require_actor
def order_events_route(order_id: int):
    try:
        settlement_service.get_order(order_id, g.actor_id)
        events = audit_service.list_order_events(order_id)
        return jsonify({"events": [e.to_dict() for e in events]}), 200
    except NetworkError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list order events")
        return jsonify(internal_error_body()), 500
