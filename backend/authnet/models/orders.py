from __future__ import annotations

from ..extensions import db
from authnet.time_utils import to_utc_z
from authnet.validation import percent_from_bps


# =============================================================================
# ORDER STATUS (single normalized enum; legacy numeric codes map in order)
# =============================================================================

ORDER_STATUS_PENDING_PAYMENT = "pending_payment"
ORDER_STATUS_PAID = "paid"
ORDER_STATUS_PROCESSING = "processing"
ORDER_STATUS_SHIPPED = "shipped"
ORDER_STATUS_COMPLETED = "completed"
ORDER_STATUS_CANCELLED = "cancelled"

ORDER_STATUSES = (
    ORDER_STATUS_PENDING_PAYMENT,
    ORDER_STATUS_PAID,
    ORDER_STATUS_PROCESSING,
    ORDER_STATUS_SHIPPED,
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_CANCELLED,
)

# =============================================================================
# SETTLEMENT
# =============================================================================

SETTLEMENT_UNSET = "unset"
SETTLEMENT_SUPPLIER_TRANSFER = "supplier_transfer"
SETTLEMENT_COMMISSION_MODE = "commission_mode"
SETTLEMENT_MODES = (SETTLEMENT_SUPPLIER_TRANSFER, SETTLEMENT_COMMISSION_MODE)

COMMISSION_PENDING = "pending"
COMMISSION_APPLIED = "applied"
COMMISSION_APPROVED = "approved"
COMMISSION_PAID = "paid"
COMMISSION_SEQUENCE = (COMMISSION_PENDING, COMMISSION_APPLIED, COMMISSION_APPROVED, COMMISSION_PAID)

REMAINING_UNPAID = "unpaid"
REMAINING_PAID = "paid"


class Order(db.Model):
    """
    Order placed by a grantee against one authorization.

    Settlement fields are embedded here (one settlement per order).
    settlement_mode starts as `unset` and is written exactly once; the
    commission and remaining-payment statuses only move forward. All
    amounts are integer cents; rates are hundredths of a percent.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_grantee_created", "grantee_id", "created_at"),
        db.Index("ix_orders_grantor_status", "grantor_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    authorization_id = db.Column(db.Integer, db.ForeignKey("authorization_nodes.id"), nullable=False, index=True)
    grantor_id = db.Column(db.String(64), nullable=False)
    grantee_id = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=ORDER_STATUS_PENDING_PAYMENT)

    # Pre-settlement amounts
    total_amount_cents = db.Column(db.Integer, nullable=False)  # resolved (authorized) price
    original_price_cents = db.Column(db.Integer, nullable=False)  # catalog price

    # Invoicing surcharge (added to the principal before settlement math)
    need_invoice = db.Column(db.Boolean, nullable=False, default=False)
    invoice_markup_percent_bps = db.Column(db.Integer, nullable=False, default=0)
    invoice_markup_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    # Settlement choice and breakdown
    settlement_mode = db.Column(db.String(24), nullable=False, default=SETTLEMENT_UNSET)
    settlement_selected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    settlement_selected_by = db.Column(db.String(64), nullable=True)
    min_discount_rate_bps = db.Column(db.Integer, nullable=True)
    commission_rate_bps = db.Column(db.Integer, nullable=True)
    min_discount_price_cents = db.Column(db.Integer, nullable=True)
    supplier_price_cents = db.Column(db.Integer, nullable=True)
    commission_amount_cents = db.Column(db.Integer, nullable=True)

    # Commission lifecycle (commission_mode only)
    commission_status = db.Column(db.String(16), nullable=True)
    commission_applied_at = db.Column(db.DateTime(timezone=True), nullable=True)
    commission_approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    commission_paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    commission_invoice_ref = db.Column(db.String(255), nullable=True)
    commission_payment_proof_ref = db.Column(db.String(255), nullable=True)
    commission_remark = db.Column(db.String(500), nullable=True)

    # Split payment (commission_mode with payment ratio)
    payment_ratio_enabled = db.Column(db.Boolean, nullable=False, default=False)
    payment_ratio_bps = db.Column(db.Integer, nullable=True)
    first_payment_amount_cents = db.Column(db.Integer, nullable=True)
    remaining_payment_amount_cents = db.Column(db.Integer, nullable=True)
    remaining_payment_status = db.Column(db.String(16), nullable=True)
    remaining_payment_paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    authorization = db.relationship("AuthorizationNode", backref=db.backref("orders", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} status={self.status} settlement={self.settlement_mode}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "authorization_id": self.authorization_id,
            "grantor_id": self.grantor_id,
            "grantee_id": self.grantee_id,
            "status": self.status,
            "total_amount_cents": self.total_amount_cents,
            "original_price_cents": self.original_price_cents,
            "need_invoice": self.need_invoice,
            "invoice_markup_percent": percent_from_bps(self.invoice_markup_percent_bps),
            "invoice_markup_amount_cents": self.invoice_markup_amount_cents,
            "settlement_mode": self.settlement_mode,
            "completed_at": to_utc_z(self.completed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "lines": [line.to_dict() for line in self.lines],
        }


class OrderLine(db.Model):
    """Line item priced through the authorization at order time."""
    __tablename__ = "order_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("catalog_products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    base_price_cents = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)
    pricing_basis = db.Column(db.String(32), nullable=False)

    order = db.relationship("Order", backref=db.backref("lines", lazy=True, order_by="OrderLine.id"))
    product = db.relationship("CatalogProduct")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "base_price_cents": self.base_price_cents,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "pricing_basis": self.pricing_basis,
        }
