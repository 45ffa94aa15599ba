from __future__ import annotations

from sqlalchemy import event, inspect

from ..extensions import db
from authnet.errors import GraphIntegrityError
from authnet.time_utils import to_utc_z, utcnow, within_window
from authnet.validation import percent_from_bps, ratio_from_units, RATIO_SCALE


# =============================================================================
# ENUMERATIONS (stored as lowercase strings)
# =============================================================================

GRANTEE_MANUFACTURER = "manufacturer"
GRANTEE_DESIGNER = "designer"
GRANTEE_TYPES = (GRANTEE_MANUFACTURER, GRANTEE_DESIGNER)

SCOPE_ALL = "all"
SCOPE_CATEGORY = "category"
SCOPE_SPECIFIC = "specific"
SCOPE_MIXED = "mixed"
SCOPES = (SCOPE_ALL, SCOPE_CATEGORY, SCOPE_SPECIFIC, SCOPE_MIXED)

NODE_STATUS_PENDING = "pending"
NODE_STATUS_ACTIVE = "active"
NODE_STATUS_SUSPENDED = "suspended"
NODE_STATUS_REVOKED = "revoked"
NODE_STATUSES = (NODE_STATUS_PENDING, NODE_STATUS_ACTIVE, NODE_STATUS_SUSPENDED, NODE_STATUS_REVOKED)

REQUEST_STATUS_PENDING = "pending"
REQUEST_STATUS_APPROVED = "approved"
REQUEST_STATUS_REJECTED = "rejected"

TIER_NEW_COMPANY = "new_company"
TIER_EXISTING = "existing_tier"
TIER_TYPES = (TIER_NEW_COMPANY, TIER_EXISTING)


class AuthorizationRequest(db.Model):
    """
    A grantee's request to be authorized by a grantor.

    Lives in `pending` until the grantor approves (which writes an
    AuthorizationNode) or rejects it. Approved/rejected requests are never
    re-processed; the status column is the compare-and-swap target.
    """
    __tablename__ = "authorization_requests"
    __table_args__ = (
        db.Index("ix_authorization_requests_grantor_status", "grantor_id", "status"),
        db.Index("ix_authorization_requests_grantee_status", "grantee_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    grantor_id = db.Column(db.String(64), nullable=False)
    grantee_id = db.Column(db.String(64), nullable=False)
    grantee_type = db.Column(db.String(16), nullable=False)
    grantee_name = db.Column(db.String(255), nullable=True)

    # Requested terms; the grantor may override all of them on approval
    requested_scope = db.Column(db.String(16), nullable=False, default=SCOPE_ALL)
    requested_categories = db.Column(db.JSON, nullable=True)
    requested_products = db.Column(db.JSON, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=REQUEST_STATUS_PENDING, index=True)
    created_by = db.Column(db.String(64), nullable=True)
    processed_by = db.Column(db.String(64), nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "grantor_id": self.grantor_id,
            "grantee_id": self.grantee_id,
            "grantee_type": self.grantee_type,
            "grantee_name": self.grantee_name,
            "requested_scope": self.requested_scope,
            "requested_categories": list(self.requested_categories or []),
            "requested_products": list(self.requested_products or []),
            "notes": self.notes,
            "status": self.status,
            "created_by": self.created_by,
            "processed_by": self.processed_by,
            "processed_at": to_utc_z(self.processed_at),
            "rejection_reason": self.rejection_reason,
            "authorization_id": self.node.id if self.node else None,
            "created_at": to_utc_z(self.created_at),
        }


class AuthorizationNode(db.Model):
    """
    One grant edge in the distribution graph.

    grantor_id issued the grant to grantee_id. Nodes that share a
    tier_company_id form one tree rooted at tier_level 0; the parent of a
    node is the grant its grantor received.

    Identity, scope type, rates and tier placement are frozen once the row
    exists (see _guard_immutable_columns). Only price settings, validity
    end, notes and status change after activation.
    """
    __tablename__ = "authorization_nodes"
    __table_args__ = (
        db.Index("ix_authorization_nodes_tier_company_level", "tier_company_id", "tier_level"),
        db.Index("ix_authorization_nodes_grantor_status", "grantor_id", "status"),
        db.Index("ix_authorization_nodes_grantee_status", "grantee_id", "status"),
        db.CheckConstraint("tier_level >= 0", name="ck_authorization_nodes_tier_level"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(db.Integer, db.ForeignKey("authorization_requests.id"), nullable=True, unique=True)

    grantor_id = db.Column(db.String(64), nullable=False)
    grantee_type = db.Column(db.String(16), nullable=False)
    grantee_id = db.Column(db.String(64), nullable=False)
    grantee_name = db.Column(db.String(255), nullable=True)

    scope = db.Column(db.String(16), nullable=False, default=SCOPE_ALL)

    # Catalog browsing price: ratio of base price, parts per 10,000
    global_discount_units = db.Column(db.Integer, nullable=False, default=RATIO_SCALE)

    # Settlement terms: hundredths of a percent
    min_discount_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    commission_rate_bps = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default=NODE_STATUS_PENDING)
    status_changed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    valid_from = db.Column(db.DateTime(timezone=True), nullable=True)
    valid_until = db.Column(db.DateTime(timezone=True), nullable=True)

    allow_sub_authorization = db.Column(db.Boolean, nullable=False, default=False)

    tier_company_id = db.Column(db.String(36), nullable=True)
    tier_company_name = db.Column(db.String(255), nullable=True)
    tier_level = db.Column(db.Integer, nullable=False, default=0)
    parent_authorization_id = db.Column(
        db.Integer, db.ForeignKey("authorization_nodes.id"), nullable=True, index=True
    )

    notes = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.String(64), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    request = db.relationship("AuthorizationRequest", backref=db.backref("node", uselist=False))
    parent = db.relationship("AuthorizationNode", remote_side=[id], foreign_keys=[parent_authorization_id])
    scope_categories = db.relationship(
        "AuthorizationScopeCategory",
        backref="authorization",
        cascade="all, delete-orphan",
        order_by="AuthorizationScopeCategory.category_id",
        lazy="selectin",
    )
    scope_products = db.relationship(
        "AuthorizationScopeProduct",
        backref="authorization",
        cascade="all, delete-orphan",
        order_by="AuthorizationScopeProduct.product_id",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<AuthorizationNode id={self.id} {self.grantor_id!r}->{self.grantee_id!r} "
            f"status={self.status} level={self.tier_level}>"
        )

    def is_effective(self, at=None) -> bool:
        """Active and inside its validity window."""
        return self.status == NODE_STATUS_ACTIVE and within_window(self.valid_from, self.valid_until, at)

    @property
    def is_expired(self) -> bool:
        return self.valid_until is not None and utcnow() >= self.valid_until

    def price_settings_dict(self) -> dict:
        return {
            "global_discount": ratio_from_units(self.global_discount_units),
            "category_discounts": {
                row.category_id: ratio_from_units(row.discount_units)
                for row in self.scope_categories
                if row.discount_units is not None
            },
            "product_prices": {
                str(row.product_id): {
                    "fixed_price_cents": row.fixed_price_cents,
                    "discount": ratio_from_units(row.discount_units),
                }
                for row in self.scope_products
                if row.fixed_price_cents is not None or row.discount_units is not None
            },
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "request_id": self.request_id,
            "grantor_id": self.grantor_id,
            "grantee_type": self.grantee_type,
            "grantee_id": self.grantee_id,
            "grantee_name": self.grantee_name,
            "scope": self.scope,
            "categories": [row.category_id for row in self.scope_categories],
            "products": [row.product_id for row in self.scope_products],
            "price_settings": self.price_settings_dict(),
            "min_discount_rate": percent_from_bps(self.min_discount_rate_bps),
            "commission_rate": percent_from_bps(self.commission_rate_bps),
            "status": self.status,
            "is_expired": self.is_expired,
            "status_changed_at": to_utc_z(self.status_changed_at),
            "valid_from": to_utc_z(self.valid_from),
            "valid_until": to_utc_z(self.valid_until),
            "allow_sub_authorization": self.allow_sub_authorization,
            "tier_company_id": self.tier_company_id,
            "tier_company_name": self.tier_company_name,
            "tier_level": self.tier_level,
            "parent_authorization_id": self.parent_authorization_id,
            "notes": self.notes,
            "created_by": self.created_by,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class AuthorizationScopeCategory(db.Model):
    """Category covered by a category/mixed grant, with its optional discount ratio."""
    __tablename__ = "authorization_scope_categories"
    __table_args__ = (
        db.UniqueConstraint("authorization_id", "category_id", name="uq_authorization_scope_categories"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    authorization_id = db.Column(db.Integer, db.ForeignKey("authorization_nodes.id"), nullable=False, index=True)
    category_id = db.Column(db.String(64), nullable=False)
    discount_units = db.Column(db.Integer, nullable=True)


class AuthorizationScopeProduct(db.Model):
    """Product covered by a specific/mixed grant, with an optional fixed price or discount."""
    __tablename__ = "authorization_scope_products"
    __table_args__ = (
        db.UniqueConstraint("authorization_id", "product_id", name="uq_authorization_scope_products"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    authorization_id = db.Column(db.Integer, db.ForeignKey("authorization_nodes.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("catalog_products.id"), nullable=False)
    fixed_price_cents = db.Column(db.Integer, nullable=True)
    discount_units = db.Column(db.Integer, nullable=True)


# Fields frozen once the node row exists
IMMUTABLE_NODE_COLUMNS = (
    "request_id",
    "grantor_id",
    "grantee_type",
    "grantee_id",
    "scope",
    "min_discount_rate_bps",
    "commission_rate_bps",
    "allow_sub_authorization",
    "tier_company_id",
    "tier_company_name",
    "tier_level",
    "parent_authorization_id",
    "valid_from",
)


@event.listens_for(AuthorizationNode, "before_update")
def _guard_immutable_columns(mapper, connection, target):
    state = inspect(target)
    for name in IMMUTABLE_NODE_COLUMNS:
        history = state.attrs[name].history
        if history.added and history.deleted:
            raise GraphIntegrityError(
                f"{name} cannot change after the authorization is created",
                field=name,
                entity_id=target.id,
            )
    status_history = state.attrs["status"].history
    if status_history.added and NODE_STATUS_REVOKED in (status_history.deleted or ()):
        raise GraphIntegrityError(
            "Revoked authorizations cannot change status",
            field="status",
            entity_id=target.id,
        )
