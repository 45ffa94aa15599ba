# Overview: Service-layer operations for orders and settlement; mode selection, price breakdown and commission lifecycle.

"""
Settlement Engine

Each order carries exactly one settlement. Flow:

    create_order            lines priced through the authorization
    update_order_status     pending_payment -> paid -> processing -> shipped -> completed
    select_settlement_mode  unset -> supplier_transfer | commission_mode   (write-once)
    settle_remaining_payment  unpaid -> paid                               (ratio split only)
    advance_commission      pending -> applied -> approved -> paid         (commission_mode only)

PRICE BREAKDOWN (integer cents, rates in hundredths of a percent):
    principal          = original price + invoice markup
    min_discount_price = principal x minDiscountRate
    supplier_transfer: supplier_price    = min_discount_price x (1 - commissionRate)
    commission_mode:   commission_amount = min_discount_price x commissionRate
                       first_payment     = min_discount_price x paymentRatio
                       remaining_payment = min_discount_price - first_payment
Every product rounds half-up to the cent.

CONCURRENCY:
- settlement_mode, commission_status and remaining_payment_status are
  written with conditional UPDATEs; a lost race surfaces as a conflict.
- Repeating the step an order is already at is a no-op success, so callers
  can retry operator actions safely. Moving backwards or skipping is
  InvalidTransitionError.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import Decimal, ROUND_HALF_UP

from ..errors import (
    AccessDeniedError,
    InvalidTransitionError,
    NotActiveError,
    NotFoundError,
    PrematureCommissionError,
    SettlementAlreadySetError,
    ValidationError,
)
from ..extensions import db
from ..models import Order, OrderLine
from ..models.orders import (
    COMMISSION_APPLIED,
    COMMISSION_APPROVED,
    COMMISSION_PAID,
    COMMISSION_PENDING,
    COMMISSION_SEQUENCE,
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_PAID,
    ORDER_STATUS_PENDING_PAYMENT,
    ORDER_STATUS_PROCESSING,
    ORDER_STATUS_SHIPPED,
    ORDER_STATUSES,
    REMAINING_PAID,
    REMAINING_UNPAID,
    SETTLEMENT_COMMISSION_MODE,
    SETTLEMENT_MODES,
    SETTLEMENT_SUPPLIER_TRANSFER,
    SETTLEMENT_UNSET,
)
from ..time_utils import to_utc_z, utcnow
from ..validation import (
    PERCENT_MAX_BPS,
    optional_text,
    parse_bool,
    parse_choice,
    parse_int,
    parse_percent_bps,
    percent_from_bps,
)
from . import audit_service, graph_service, pricing_service
from .concurrency import compare_and_set, lock_for_update, run_with_retry


# =============================================================================
# ORDER STATUS
# =============================================================================

# Legacy numeric codes, in order
ORDER_STATUS_CODES = {index + 1: status for index, status in enumerate(ORDER_STATUSES)}

ORDER_TRANSITIONS = {
    ORDER_STATUS_PENDING_PAYMENT: (ORDER_STATUS_PAID, ORDER_STATUS_CANCELLED),
    ORDER_STATUS_PAID: (ORDER_STATUS_PROCESSING, ORDER_STATUS_SHIPPED, ORDER_STATUS_COMPLETED, ORDER_STATUS_CANCELLED),
    ORDER_STATUS_PROCESSING: (ORDER_STATUS_SHIPPED, ORDER_STATUS_COMPLETED),
    ORDER_STATUS_SHIPPED: (ORDER_STATUS_COMPLETED,),
    ORDER_STATUS_COMPLETED: (),
    ORDER_STATUS_CANCELLED: (),
}


def normalize_order_status(value) -> str:
    """
    Map an incoming status (enum label or legacy code 1-6) to the enum.

    Unknown values are rejected, never guessed.
    """
    if isinstance(value, bool):
        raise ValidationError("status must be a known order status", field="status")
    if isinstance(value, int):
        if value in ORDER_STATUS_CODES:
            return ORDER_STATUS_CODES[value]
        raise ValidationError(f"Unknown order status code {value}", field="status")
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return normalize_order_status(int(text))
        if text in ORDER_STATUSES:
            return text
    raise ValidationError(
        f"status must be one of: {', '.join(ORDER_STATUSES)} (or codes 1-{len(ORDER_STATUSES)})",
        field="status",
    )


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in ORDER_TRANSITIONS.get(from_status, ())


# =============================================================================
# PRICE BREAKDOWN
# =============================================================================

def percent_of(amount_cents: int, rate_bps: int) -> int:
    """amount x rate%, rate in hundredths of a percent, rounded half-up."""
    value = Decimal(amount_cents) * Decimal(rate_bps) / Decimal(PERCENT_MAX_BPS)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class SettlementBreakdown:
    mode: str
    principal_cents: int
    min_discount_rate_bps: int
    commission_rate_bps: int
    min_discount_price_cents: int
    supplier_price_cents: int | None = None
    commission_amount_cents: int | None = None
    payment_ratio_enabled: bool = False
    payment_ratio_bps: int | None = None
    first_payment_amount_cents: int | None = None
    remaining_payment_amount_cents: int | None = None


def compute_breakdown(
    *,
    mode: str,
    original_price_cents: int,
    min_discount_rate_bps: int,
    commission_rate_bps: int,
    invoice_markup_cents: int = 0,
    payment_ratio_bps: int | None = None,
) -> SettlementBreakdown:
    """
    Pure settlement arithmetic. Markup joins the principal before any rate
    is applied.
    """
    principal = original_price_cents + invoice_markup_cents
    min_discount_price = percent_of(principal, min_discount_rate_bps)

    if mode == SETTLEMENT_SUPPLIER_TRANSFER:
        return SettlementBreakdown(
            mode=mode,
            principal_cents=principal,
            min_discount_rate_bps=min_discount_rate_bps,
            commission_rate_bps=commission_rate_bps,
            min_discount_price_cents=min_discount_price,
            supplier_price_cents=percent_of(min_discount_price, PERCENT_MAX_BPS - commission_rate_bps),
        )

    if mode != SETTLEMENT_COMMISSION_MODE:
        raise ValidationError(f"Unknown settlement mode {mode!r}", field="mode")

    commission = percent_of(min_discount_price, commission_rate_bps)
    if payment_ratio_bps is None:
        return SettlementBreakdown(
            mode=mode,
            principal_cents=principal,
            min_discount_rate_bps=min_discount_rate_bps,
            commission_rate_bps=commission_rate_bps,
            min_discount_price_cents=min_discount_price,
            commission_amount_cents=commission,
            first_payment_amount_cents=min_discount_price,
            remaining_payment_amount_cents=0,
        )

    first = percent_of(min_discount_price, payment_ratio_bps)
    return SettlementBreakdown(
        mode=mode,
        principal_cents=principal,
        min_discount_rate_bps=min_discount_rate_bps,
        commission_rate_bps=commission_rate_bps,
        min_discount_price_cents=min_discount_price,
        commission_amount_cents=commission,
        payment_ratio_enabled=True,
        payment_ratio_bps=payment_ratio_bps,
        first_payment_amount_cents=first,
        remaining_payment_amount_cents=min_discount_price - first,
    )


@dataclass(frozen=True)
class SettlementSnapshot:
    """Read-only view of an order's settlement state."""
    order_id: int
    order_status: str
    settlement_mode: str
    original_price_cents: int
    invoice_markup_amount_cents: int
    principal_cents: int
    min_discount_rate: float | None
    commission_rate: float | None
    min_discount_price_cents: int | None
    supplier_price_cents: int | None
    commission_amount_cents: int | None
    commission_status: str | None
    payment_ratio_enabled: bool
    payment_ratio: float | None
    first_payment_amount_cents: int | None
    remaining_payment_amount_cents: int | None
    remaining_payment_status: str | None
    settlement_selected_at: str | None
    commission_applied_at: str | None
    commission_approved_at: str | None
    commission_paid_at: str | None
    remaining_payment_paid_at: str | None
    commission_remark: str | None
    commission_invoice_ref: str | None
    commission_payment_proof_ref: str | None

    def to_dict(self) -> dict:
        return asdict(self)


def snapshot_of(order: Order) -> SettlementSnapshot:
    return SettlementSnapshot(
        order_id=order.id,
        order_status=order.status,
        settlement_mode=order.settlement_mode,
        original_price_cents=order.original_price_cents,
        invoice_markup_amount_cents=order.invoice_markup_amount_cents,
        principal_cents=order.original_price_cents + order.invoice_markup_amount_cents,
        min_discount_rate=percent_from_bps(order.min_discount_rate_bps),
        commission_rate=percent_from_bps(order.commission_rate_bps),
        min_discount_price_cents=order.min_discount_price_cents,
        supplier_price_cents=order.supplier_price_cents,
        commission_amount_cents=order.commission_amount_cents,
        commission_status=order.commission_status,
        payment_ratio_enabled=order.payment_ratio_enabled,
        payment_ratio=percent_from_bps(order.payment_ratio_bps),
        first_payment_amount_cents=order.first_payment_amount_cents,
        remaining_payment_amount_cents=order.remaining_payment_amount_cents,
        remaining_payment_status=order.remaining_payment_status,
        settlement_selected_at=to_utc_z(order.settlement_selected_at),
        commission_applied_at=to_utc_z(order.commission_applied_at),
        commission_approved_at=to_utc_z(order.commission_approved_at),
        commission_paid_at=to_utc_z(order.commission_paid_at),
        remaining_payment_paid_at=to_utc_z(order.remaining_payment_paid_at),
        commission_remark=order.commission_remark,
        commission_invoice_ref=order.commission_invoice_ref,
        commission_payment_proof_ref=order.commission_payment_proof_ref,
    )


# =============================================================================
# ORDERS
# =============================================================================

def _parse_lines(lines) -> list[tuple[int, int]]:
    if not isinstance(lines, list) or not lines:
        raise ValidationError("lines must be a non-empty list", field="lines")
    parsed = []
    for index, line in enumerate(lines):
        if not isinstance(line, dict):
            raise ValidationError("Each line must be an object", field=f"lines[{index}]")
        product_id = parse_int(line.get("productId"), f"lines[{index}].productId", minimum=1)
        quantity = parse_int(line.get("quantity", 1), f"lines[{index}].quantity", minimum=1)
        parsed.append((product_id, quantity))
    return parsed


def _invoice_markup(need_invoice: bool, original_cents: int, markup_percent, markup_amount) -> tuple[int, int]:
    """Returns (markup_percent_bps, markup_amount_cents)."""
    if not need_invoice:
        if markup_percent is not None or markup_amount is not None:
            raise ValidationError("Invoice markup requires needInvoice", field="needInvoice")
        return 0, 0
    if markup_percent is not None and markup_amount is not None:
        raise ValidationError(
            "Give invoiceMarkupPercent or invoiceMarkupAmount, not both",
            field="invoiceMarkupAmount",
        )
    if markup_percent is not None:
        bps = parse_percent_bps(markup_percent, "invoiceMarkupPercent")
        return bps, percent_of(original_cents, bps)
    if markup_amount is not None:
        return 0, parse_int(markup_amount, "invoiceMarkupAmount", minimum=0)
    return 0, 0


def create_order(
    authorization_id: int,
    grantee_id: str,
    lines,
    *,
    need_invoice=False,
    invoice_markup_percent=None,
    invoice_markup_amount=None,
) -> Order:
    """
    Place an order through an authorization the grantee holds.

    Each line is priced by the Pricing Resolver; total_amount is the sum of
    resolved prices and original_price the sum of catalog prices.

    Raises:
        ValidationError: malformed lines or markup
        AccessDeniedError: actor is not the authorization's grantee
        NotActiveError, OutOfScopeError, InvalidPriceError: from pricing
    """
    node_id = parse_int(authorization_id, "authorizationId", minimum=1)
    parsed_lines = _parse_lines(lines)
    wants_invoice = parse_bool(need_invoice, "needInvoice")

    def _op():
        node = graph_service.get_node(node_id)
        if node.grantee_id != grantee_id:
            raise AccessDeniedError("Only the grantee can order through this authorization", entity_id=node.id)

        order_lines = []
        for product_id, quantity in parsed_lines:
            resolved = pricing_service.resolve_price(node.id, product_id)
            order_lines.append(OrderLine(
                product_id=product_id,
                quantity=quantity,
                base_price_cents=resolved.base_price_cents,
                unit_price_cents=resolved.price_cents,
                line_total_cents=resolved.price_cents * quantity,
                pricing_basis=resolved.basis,
            ))

        original = sum(line.base_price_cents * line.quantity for line in order_lines)
        total = sum(line.line_total_cents for line in order_lines)
        markup_bps, markup_cents = _invoice_markup(
            wants_invoice, original, invoice_markup_percent, invoice_markup_amount
        )

        order = Order(
            authorization_id=node.id,
            grantor_id=node.grantor_id,
            grantee_id=grantee_id,
            status=ORDER_STATUS_PENDING_PAYMENT,
            total_amount_cents=total,
            original_price_cents=original,
            need_invoice=wants_invoice,
            invoice_markup_percent_bps=markup_bps,
            invoice_markup_amount_cents=markup_cents,
            settlement_mode=SETTLEMENT_UNSET,
        )
        order.lines = order_lines
        db.session.add(order)
        db.session.flush()

        audit_service.record_event(
            event_type=audit_service.ORDER_CREATED,
            entity_type="order",
            entity_id=order.id,
            actor_id=grantee_id,
            authorization_id=node.id,
            order_id=order.id,
            payload={"total_amount_cents": total, "original_price_cents": original, "lines": len(order_lines)},
        )
        db.session.commit()
        return order

    return run_with_retry(_op)


def get_order(order_id: int, actor_id: str | None = None) -> Order:
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFoundError(f"Order {order_id} not found", entity_id=order_id)
    if actor_id is not None and actor_id not in (order.grantor_id, order.grantee_id):
        raise AccessDeniedError("Order is not visible to this actor", entity_id=order_id)
    return order


def _load_locked(order_id: int, actor_id: str) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if not order:
        raise NotFoundError(f"Order {order_id} not found", entity_id=order_id)
    if actor_id not in (order.grantor_id, order.grantee_id):
        raise AccessDeniedError("Order is not visible to this actor", entity_id=order_id)
    return order


def update_order_status(order_id: int, actor_id: str, status) -> Order:
    """
    Move an order forward through its status table.

    Setting the current status again is a no-op. Cancelling is refused once
    a commission has been applied for.
    """
    target = normalize_order_status(status)

    def _op():
        order = _load_locked(order_id, actor_id)
        if order.status == target:
            return order
        if not can_transition(order.status, target):
            raise InvalidTransitionError(
                f"Order cannot move from {order.status} to {target}",
                field="status",
                entity_id=order_id,
            )
        if target == ORDER_STATUS_CANCELLED and order.commission_status not in (None, COMMISSION_PENDING):
            raise InvalidTransitionError(
                "Order with an active commission claim cannot be cancelled",
                field="status",
                entity_id=order_id,
            )

        previous = order.status
        order.status = target
        if target == ORDER_STATUS_COMPLETED:
            order.completed_at = utcnow()
        elif target == ORDER_STATUS_CANCELLED:
            order.cancelled_at = utcnow()

        audit_service.record_event(
            event_type=audit_service.ORDER_STATUS_CHANGED,
            entity_type="order",
            entity_id=order.id,
            actor_id=actor_id,
            authorization_id=order.authorization_id,
            order_id=order.id,
            payload={"from": previous, "to": target},
        )
        db.session.commit()
        return order

    return run_with_retry(_op)


# =============================================================================
# SETTLEMENT
# =============================================================================

def get_settlement(order_id: int, actor_id: str | None = None) -> SettlementSnapshot:
    return snapshot_of(get_order(order_id, actor_id))


def _rate_override(params: dict, key: str, default_bps: int, actor_id: str, order: Order) -> int:
    if params.get(key) is None:
        return default_bps
    if actor_id != order.grantor_id:
        raise AccessDeniedError(f"Only the grantor can override {key}", field=key, entity_id=order.id)
    return parse_percent_bps(params[key], key)


def select_settlement_mode(order_id: int, actor_id: str, mode: str, params: dict | None = None) -> SettlementSnapshot:
    """
    Choose the order's payout strategy. Write-once.

    params (all optional):
        paymentRatioEnabled, paymentRatio   commission_mode split, ratio in (0, 100)
        minDiscountRate, commissionRate     grantor-only overrides of the
                                            authorization's rates

    Raises:
        SettlementAlreadySetError: mode already chosen (or lost the CAS race)
        InvalidTransitionError: order cancelled
        NotActiveError: the authorization is no longer active
    """
    chosen = parse_choice(mode, "mode", SETTLEMENT_MODES)
    params = params or {}
    if not isinstance(params, dict):
        raise ValidationError("params must be an object", field="params")

    ratio_enabled = parse_bool(params.get("paymentRatioEnabled", False), "paymentRatioEnabled")
    ratio_bps = None
    if ratio_enabled:
        if chosen != SETTLEMENT_COMMISSION_MODE:
            raise ValidationError("Payment ratio only applies to commission_mode", field="paymentRatioEnabled")
        if params.get("paymentRatio") is None:
            raise ValidationError("paymentRatio is required when the ratio is enabled", field="paymentRatio")
        ratio_bps = parse_percent_bps(params["paymentRatio"], "paymentRatio", allow_zero=False)
        if ratio_bps >= PERCENT_MAX_BPS:
            raise ValidationError("paymentRatio must be below 100", field="paymentRatio")

    def _op():
        order = _load_locked(order_id, actor_id)
        if order.settlement_mode != SETTLEMENT_UNSET:
            raise SettlementAlreadySetError(
                f"Order {order_id} already settles by {order.settlement_mode}",
                field="mode",
                entity_id=order_id,
            )
        if order.status == ORDER_STATUS_CANCELLED:
            raise InvalidTransitionError("Cancelled orders cannot be settled", field="status", entity_id=order_id)

        node = graph_service.get_node(order.authorization_id)
        if not node.is_effective():
            raise NotActiveError(
                f"Authorization {node.id} is not active",
                field="authorizationId",
                entity_id=node.id,
            )

        breakdown = compute_breakdown(
            mode=chosen,
            original_price_cents=order.original_price_cents,
            invoice_markup_cents=order.invoice_markup_amount_cents,
            min_discount_rate_bps=_rate_override(params, "minDiscountRate", node.min_discount_rate_bps, actor_id, order),
            commission_rate_bps=_rate_override(params, "commissionRate", node.commission_rate_bps, actor_id, order),
            payment_ratio_bps=ratio_bps,
        )

        values = {
            "settlement_mode": chosen,
            "settlement_selected_at": utcnow(),
            "settlement_selected_by": actor_id,
            "min_discount_rate_bps": breakdown.min_discount_rate_bps,
            "commission_rate_bps": breakdown.commission_rate_bps,
            "min_discount_price_cents": breakdown.min_discount_price_cents,
            "supplier_price_cents": breakdown.supplier_price_cents,
            "commission_amount_cents": breakdown.commission_amount_cents,
            "commission_status": COMMISSION_PENDING if chosen == SETTLEMENT_COMMISSION_MODE else None,
            "payment_ratio_enabled": breakdown.payment_ratio_enabled,
            "payment_ratio_bps": breakdown.payment_ratio_bps,
            "first_payment_amount_cents": breakdown.first_payment_amount_cents,
            "remaining_payment_amount_cents": breakdown.remaining_payment_amount_cents,
            "remaining_payment_status": REMAINING_UNPAID if breakdown.payment_ratio_enabled else None,
        }
        if not compare_and_set(Order, order.id, field="settlement_mode", expected=SETTLEMENT_UNSET, values=values):
            raise SettlementAlreadySetError(
                f"Order {order_id} settlement was chosen concurrently",
                field="mode",
                entity_id=order_id,
            )

        audit_service.record_event(
            event_type=audit_service.SETTLEMENT_SELECTED,
            entity_type="order",
            entity_id=order.id,
            actor_id=actor_id,
            authorization_id=order.authorization_id,
            order_id=order.id,
            payload=asdict(breakdown),
        )
        db.session.commit()
        return snapshot_of(db.session.get(Order, order_id))

    return run_with_retry(_op)


# Timestamp column stamped by each commission step
_COMMISSION_STEP_TIMESTAMP = {
    COMMISSION_APPLIED: "commission_applied_at",
    COMMISSION_APPROVED: "commission_approved_at",
    COMMISSION_PAID: "commission_paid_at",
}


def _commission_actor_allowed(order: Order, next_status: str, actor_id: str) -> bool:
    if next_status == COMMISSION_APPLIED:
        return actor_id == order.grantee_id
    return actor_id == order.grantor_id


def advance_commission(
    order_id: int,
    actor_id: str,
    next_status: str,
    *,
    remark: str | None = None,
    invoice_ref: str | None = None,
    payment_proof_ref: str | None = None,
) -> SettlementSnapshot:
    """
    Step the commission lifecycle pending -> applied -> approved -> paid.

    The grantee applies; the grantor approves and pays. Re-sending the
    current status returns the unchanged snapshot.

    Raises:
        InvalidTransitionError: not commission_mode, skip or reverse step
        PrematureCommissionError: applying before the order is completed or
            before the remaining payment (when split) is paid
        AccessDeniedError: wrong party for this step
    """
    target = parse_choice(next_status, "status", COMMISSION_SEQUENCE)
    evidence = {"remark": remark, "invoiceRef": invoice_ref, "paymentProofRef": payment_proof_ref}
    remark_text = optional_text(evidence, "remark", max_length=500)
    invoice_text = optional_text(evidence, "invoiceRef", max_length=255)
    proof_text = optional_text(evidence, "paymentProofRef", max_length=255)

    def _op():
        order = _load_locked(order_id, actor_id)
        if order.settlement_mode != SETTLEMENT_COMMISSION_MODE:
            raise InvalidTransitionError(
                f"Order {order_id} does not settle by commission",
                field="mode",
                entity_id=order_id,
            )

        current = order.commission_status
        if current == target:
            return snapshot_of(order)

        if COMMISSION_SEQUENCE.index(target) != COMMISSION_SEQUENCE.index(current) + 1:
            raise InvalidTransitionError(
                f"Commission cannot move from {current} to {target}",
                field="status",
                entity_id=order_id,
            )
        if not _commission_actor_allowed(order, target, actor_id):
            raise AccessDeniedError(f"This party cannot mark the commission {target}", entity_id=order_id)

        if target == COMMISSION_APPLIED:
            if order.payment_ratio_enabled and order.remaining_payment_status != REMAINING_PAID:
                raise PrematureCommissionError(
                    "Commission cannot be applied before the remaining payment is paid",
                    field="remainingPaymentStatus",
                    entity_id=order_id,
                )
            if order.status != ORDER_STATUS_COMPLETED:
                raise PrematureCommissionError(
                    "Commission cannot be applied before the order is completed",
                    field="status",
                    entity_id=order_id,
                )

        values = {"commission_status": target, _COMMISSION_STEP_TIMESTAMP[target]: utcnow()}
        if remark_text is not None:
            values["commission_remark"] = remark_text
        if invoice_text is not None:
            values["commission_invoice_ref"] = invoice_text
        if proof_text is not None:
            values["commission_payment_proof_ref"] = proof_text

        if not compare_and_set(Order, order.id, field="commission_status", expected=current, values=values):
            raise InvalidTransitionError(
                f"Commission on order {order_id} changed concurrently",
                field="status",
                entity_id=order_id,
            )

        audit_service.record_event(
            event_type=audit_service.COMMISSION_ADVANCED,
            entity_type="order",
            entity_id=order.id,
            actor_id=actor_id,
            authorization_id=order.authorization_id,
            order_id=order.id,
            note=remark_text,
            payload={"from": current, "to": target, "amount_cents": order.commission_amount_cents},
        )
        db.session.commit()
        return snapshot_of(db.session.get(Order, order_id))

    return run_with_retry(_op)


def settle_remaining_payment(order_id: int, actor_id: str) -> SettlementSnapshot:
    """Mark the second installment of a split commission_mode order paid. Idempotent."""
    def _op():
        order = _load_locked(order_id, actor_id)
        if order.settlement_mode != SETTLEMENT_COMMISSION_MODE or not order.payment_ratio_enabled:
            raise InvalidTransitionError(
                f"Order {order_id} has no remaining payment",
                field="remainingPaymentStatus",
                entity_id=order_id,
            )
        if order.remaining_payment_status == REMAINING_PAID:
            return snapshot_of(order)
        if order.status == ORDER_STATUS_CANCELLED:
            raise InvalidTransitionError("Order is cancelled", field="status", entity_id=order_id)

        values = {"remaining_payment_status": REMAINING_PAID, "remaining_payment_paid_at": utcnow()}
        if not compare_and_set(
            Order, order.id, field="remaining_payment_status", expected=REMAINING_UNPAID, values=values
        ):
            raise InvalidTransitionError(
                f"Remaining payment on order {order_id} changed concurrently",
                field="remainingPaymentStatus",
                entity_id=order_id,
            )

        audit_service.record_event(
            event_type=audit_service.REMAINING_PAYMENT_SETTLED,
            entity_type="order",
            entity_id=order.id,
            actor_id=actor_id,
            authorization_id=order.authorization_id,
            order_id=order.id,
            payload={"amount_cents": order.remaining_payment_amount_cents},
        )
        db.session.commit()
        return snapshot_of(db.session.get(Order, order_id))

    return run_with_retry(_op)
