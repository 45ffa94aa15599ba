from __future__ import annotations

from ..extensions import db
from authnet.time_utils import to_utc_z


class CatalogProduct(db.Model):
    """
    Read-only view of a manufacturer's catalog item.

    Catalog CRUD lives outside this service; rows are seeded by the catalog
    owner (or the `flask catalog add-product` command) and only read here
    for scope checks and price resolution.
    """
    __tablename__ = "catalog_products"
    __table_args__ = (
        db.UniqueConstraint("manufacturer_id", "sku", name="uq_catalog_products_manufacturer_sku"),
        db.Index("ix_catalog_products_manufacturer_category", "manufacturer_id", "category_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    manufacturer_id = db.Column(db.String(64), nullable=False, index=True)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    category_id = db.Column(db.String(64), nullable=True)

    # Authoritative storage in cents
    base_price_cents = db.Column(db.Integer, nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<CatalogProduct id={self.id} sku={self.sku!r} manufacturer={self.manufacturer_id!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "manufacturer_id": self.manufacturer_id,
            "sku": self.sku,
            "name": self.name,
            "category_id": self.category_id,
            "base_price_cents": self.base_price_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
