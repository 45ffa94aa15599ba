# Overview: Service-layer operations for the approval workflow; turns grant requests into graph nodes.

"""
Approval Workflow

LIFECYCLE:
1. request_authorization   -> AuthorizationRequest (pending)
2. approve_request         -> request approved + AuthorizationNode (active)
   reject_request          -> request rejected, graph untouched

TIER PLACEMENT on approval:
- new_company:   level 0, no parent, fresh tier_company_id, name required
- existing_tier: parent must be effective, allow sub-authorization and be
                 the grant the approver received; level = parent + 1,
                 tier company inherited, name derived when omitted

ATOMICITY: validation, the request status CAS and the node insert share one
transaction. Any failure rolls everything back, so a request is never
consumed without its node (and vice versa).

CONCURRENCY:
- The request row is locked and then flipped pending -> approved with a
  conditional UPDATE; the loser of a race gets AlreadyProcessedError.
- existing_tier approvals lock the tier company's level-0 node and the
  parent before the cycle check, serialising sibling approvals.
"""

from __future__ import annotations

import uuid

from ..errors import (
    AccessDeniedError,
    AlreadyProcessedError,
    ConflictError,
    NotFoundError,
    SubAuthorizationForbiddenError,
    ValidationError,
)
from ..extensions import db
from ..models import AuthorizationNode, AuthorizationRequest
from ..models.authorization import (
    GRANTEE_TYPES,
    NODE_STATUS_ACTIVE,
    REQUEST_STATUS_APPROVED,
    REQUEST_STATUS_PENDING,
    REQUEST_STATUS_REJECTED,
    SCOPE_ALL,
    SCOPES,
    TIER_EXISTING,
    TIER_NEW_COMPANY,
    TIER_TYPES,
)
from ..time_utils import utcnow
from ..validation import (
    optional_text,
    parse_bool,
    parse_choice,
    parse_datetime,
    parse_id_list,
    parse_int,
    parse_percent_bps,
)
from . import audit_service, graph_service
from .concurrency import compare_and_set, lock_for_update, run_with_retry
from .scope_terms import parse_product_ids, parse_scope_terms


# =============================================================================
# REQUEST INTAKE
# =============================================================================

def request_authorization(
    grantor_id: str,
    grantee_id: str,
    grantee_type: str,
    *,
    grantee_name: str | None = None,
    requested_scope: str | None = None,
    requested_categories=None,
    requested_products=None,
    notes: str | None = None,
    created_by: str | None = None,
) -> AuthorizationRequest:
    """
    Open a pending grant request from grantee_id to grantor_id.

    Raises:
        ValidationError: missing ids, self-grant, bad type/scope
        ConflictError: a pending request for the same pair already exists
    """
    payload = {
        "grantorId": grantor_id,
        "granteeId": grantee_id,
        "granteeName": grantee_name,
        "notes": notes,
    }
    grantor = optional_text(payload, "grantorId", max_length=64)
    grantee = optional_text(payload, "granteeId", max_length=64)
    if not grantor:
        raise ValidationError("grantorId is required", field="grantorId")
    if not grantee:
        raise ValidationError("granteeId is required", field="granteeId")
    if grantor == grantee:
        raise ValidationError("An actor cannot request authorization from itself", field="granteeId")

    kind = parse_choice(grantee_type, "granteeType", GRANTEE_TYPES)
    scope = parse_choice(requested_scope or SCOPE_ALL, "scope", SCOPES)
    categories = parse_id_list(requested_categories, "categories")
    products = parse_product_ids(requested_products)

    def _op():
        existing = (
            db.session.query(AuthorizationRequest)
            .filter_by(grantor_id=grantor, grantee_id=grantee, status=REQUEST_STATUS_PENDING)
            .first()
        )
        if existing:
            raise ConflictError(
                "A pending request for this grantor already exists",
                field="grantorId",
                entity_id=existing.id,
            )

        req = AuthorizationRequest(
            grantor_id=grantor,
            grantee_id=grantee,
            grantee_type=kind,
            grantee_name=optional_text(payload, "granteeName", max_length=255),
            requested_scope=scope,
            requested_categories=categories,
            requested_products=products,
            notes=optional_text(payload, "notes"),
            status=REQUEST_STATUS_PENDING,
            created_by=created_by or grantee,
        )
        db.session.add(req)
        db.session.flush()

        audit_service.record_event(
            event_type=audit_service.REQUEST_CREATED,
            entity_type="authorization_request",
            entity_id=req.id,
            actor_id=created_by or grantee,
            request_id=req.id,
            payload={"grantor_id": grantor, "grantee_id": grantee, "scope": scope},
        )
        db.session.commit()
        return req

    return run_with_retry(_op)


# =============================================================================
# READS
# =============================================================================

def get_request(request_id: int, actor_id: str | None = None) -> AuthorizationRequest:
    req = db.session.get(AuthorizationRequest, request_id)
    if not req:
        raise NotFoundError(f"Request {request_id} not found", entity_id=request_id)
    if actor_id is not None and actor_id not in (req.grantor_id, req.grantee_id, req.created_by):
        raise AccessDeniedError("Request is not visible to this actor", entity_id=request_id)
    return req


def list_pending_requests(grantor_id: str) -> list[AuthorizationRequest]:
    """Requests waiting on this grantor's decision, oldest first."""
    return (
        db.session.query(AuthorizationRequest)
        .filter_by(grantor_id=grantor_id, status=REQUEST_STATUS_PENDING)
        .order_by(AuthorizationRequest.created_at.asc(), AuthorizationRequest.id.asc())
        .all()
    )


def list_my_requests(grantee_id: str, *, status: str | None = None) -> list[AuthorizationRequest]:
    query = db.session.query(AuthorizationRequest).filter_by(grantee_id=grantee_id)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(AuthorizationRequest.created_at.desc(), AuthorizationRequest.id.desc()).all()


# =============================================================================
# APPROVE / REJECT
# =============================================================================

def _load_pending(request_id: int, approver_id: str) -> AuthorizationRequest:
    req = lock_for_update(db.session.query(AuthorizationRequest).filter_by(id=request_id)).first()
    if not req:
        raise NotFoundError(f"Request {request_id} not found", entity_id=request_id)
    if req.status != REQUEST_STATUS_PENDING:
        raise AlreadyProcessedError(
            f"Request {request_id} is already {req.status}",
            field="status",
            entity_id=request_id,
        )
    if req.grantor_id != approver_id:
        raise AccessDeniedError("Only the grantor can decide this request", entity_id=request_id)
    return req


def _consume(req: AuthorizationRequest, new_status: str, values: dict) -> None:
    swapped = compare_and_set(
        AuthorizationRequest,
        req.id,
        field="status",
        expected=REQUEST_STATUS_PENDING,
        values=dict(values, status=new_status),
    )
    if not swapped:
        raise AlreadyProcessedError(
            f"Request {req.id} was processed concurrently",
            field="status",
            entity_id=req.id,
        )


def _place_under_parent(req: AuthorizationRequest, parent_authorization_id, discount_bps: int) -> AuthorizationNode:
    """Lock and validate the parent for an existing_tier approval."""
    if parent_authorization_id is None:
        raise ValidationError(
            "parentAuthorizationId is required for existing_tier",
            field="parentAuthorizationId",
        )
    parent_id = parse_int(parent_authorization_id, "parentAuthorizationId", minimum=1)

    parent = lock_for_update(db.session.query(AuthorizationNode).filter_by(id=parent_id)).first()
    if not parent:
        raise NotFoundError(
            f"Authorization {parent_id} not found",
            field="parentAuthorizationId",
            entity_id=parent_id,
        )
    graph_service.tier_root_of(parent, lock=True)

    if parent.grantee_id != req.grantor_id:
        raise SubAuthorizationForbiddenError(
            "Parent authorization was not granted to this grantor",
            field="parentAuthorizationId",
            entity_id=parent.id,
        )
    if not parent.is_effective():
        raise SubAuthorizationForbiddenError(
            f"Parent authorization {parent.id} is not active",
            field="parentAuthorizationId",
            entity_id=parent.id,
        )

    graph_service.detect_cycle(parent.id, grantee_id=req.grantee_id)

    if discount_bps < parent.min_discount_rate_bps:
        raise ValidationError(
            "discountRate cannot be below the parent's minimum discount rate",
            field="discountRate",
            entity_id=parent.id,
        )
    return parent


def approve_request(
    request_id: int,
    approver_id: str,
    *,
    discount_rate,
    commission_rate,
    tier_type: str,
    tier_company_name: str | None = None,
    parent_authorization_id=None,
    allow_sub_authorization=False,
    scope: str | None = None,
    categories=None,
    products=None,
    price_settings: dict | None = None,
    valid_from=None,
    valid_until=None,
    notes: str | None = None,
) -> AuthorizationNode:
    """
    Approve a pending request and write the active node.

    Scope, categories and products default to what the grantee requested;
    the grantor may override any of them.

    Returns:
        The new AuthorizationNode (status active)

    Raises:
        NotFoundError, AccessDeniedError, ValidationError
        AlreadyProcessedError: request not pending (or lost the CAS race)
        SubAuthorizationForbiddenError: parent refuses sub-authorization,
            is inactive, or was not granted to the approver
        GraphCycleError: grantee already upstream of the parent
    """
    def _op():
        req = _load_pending(request_id, approver_id)

        discount_bps = parse_percent_bps(discount_rate, "discountRate")
        commission_bps = parse_percent_bps(commission_rate, "commissionRate")
        tier = parse_choice(tier_type, "tierType", TIER_TYPES)
        allow_sub = parse_bool(allow_sub_authorization, "allowSubAuthorization")

        now = utcnow()
        starts = parse_datetime(valid_from, "validFrom") or now
        ends = parse_datetime(valid_until, "validUntil")
        if ends is not None and (ends <= starts or ends <= now):
            raise ValidationError("validUntil must be in the future and after validFrom", field="validUntil")

        extra = {"tierCompanyName": tier_company_name, "notes": notes}
        display_name = req.grantee_name or req.grantee_id

        if tier == TIER_NEW_COMPANY:
            company_name = optional_text(extra, "tierCompanyName", max_length=255)
            if not company_name:
                raise ValidationError("tierCompanyName is required for new_company", field="tierCompanyName")
            parent = None
            company_id = str(uuid.uuid4())
            level = 0
            catalog_owner = req.grantor_id
        else:
            parent = _place_under_parent(req, parent_authorization_id, discount_bps)
            company_name = (
                optional_text(extra, "tierCompanyName", max_length=255)
                or f"{parent.tier_company_name} - {display_name}"[:255]
            )
            company_id = parent.tier_company_id
            level = parent.tier_level + 1
            catalog_owner = graph_service.tier_root_of(parent).grantor_id

        terms = parse_scope_terms(
            scope if scope is not None else req.requested_scope,
            categories if categories is not None else req.requested_categories,
            products if products is not None else req.requested_products,
            price_settings,
            catalog_owner_id=catalog_owner,
        )

        _consume(req, REQUEST_STATUS_APPROVED, {"processed_by": approver_id, "processed_at": now})

        node = AuthorizationNode(
            request_id=req.id,
            grantor_id=req.grantor_id,
            grantee_type=req.grantee_type,
            grantee_id=req.grantee_id,
            grantee_name=req.grantee_name,
            min_discount_rate_bps=discount_bps,
            commission_rate_bps=commission_bps,
            status=NODE_STATUS_ACTIVE,
            status_changed_at=now,
            valid_from=starts,
            valid_until=ends,
            allow_sub_authorization=allow_sub,
            tier_company_id=company_id,
            tier_company_name=company_name,
            tier_level=level,
            parent_authorization_id=parent.id if parent else None,
            notes=optional_text(extra, "notes") or req.notes,
            created_by=approver_id,
        )
        terms.apply_to(node)
        db.session.add(node)
        db.session.flush()

        audit_service.record_event(
            event_type=audit_service.REQUEST_APPROVED,
            entity_type="authorization_request",
            entity_id=req.id,
            actor_id=approver_id,
            request_id=req.id,
            authorization_id=node.id,
            payload={"tier_type": tier, "tier_company_id": company_id, "tier_level": level},
        )
        audit_service.record_event(
            event_type=audit_service.AUTHORIZATION_ACTIVATED,
            entity_type="authorization",
            entity_id=node.id,
            actor_id=approver_id,
            authorization_id=node.id,
            request_id=req.id,
            payload={
                "scope": terms.scope,
                "min_discount_rate_bps": discount_bps,
                "commission_rate_bps": commission_bps,
                "parent_authorization_id": node.parent_authorization_id,
            },
        )
        db.session.commit()
        return node

    return run_with_retry(_op)


def reject_request(request_id: int, approver_id: str, *, reason: str | None = None) -> AuthorizationRequest:
    """Mark a pending request rejected. The graph is not touched."""
    def _op():
        req = _load_pending(request_id, approver_id)
        rejection_reason = optional_text({"reason": reason}, "reason", max_length=255)

        _consume(
            req,
            REQUEST_STATUS_REJECTED,
            {"processed_by": approver_id, "processed_at": utcnow(), "rejection_reason": rejection_reason},
        )
        audit_service.record_event(
            event_type=audit_service.REQUEST_REJECTED,
            entity_type="authorization_request",
            entity_id=req.id,
            actor_id=approver_id,
            request_id=req.id,
            note=rejection_reason,
        )
        db.session.commit()
        return db.session.get(AuthorizationRequest, req.id)

    return run_with_retry(_op)
