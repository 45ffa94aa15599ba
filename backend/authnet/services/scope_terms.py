# Overview: Parsing of authorization scope and price-setting payloads into stored terms.

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..errors import ValidationError
from ..extensions import db
from ..models import AuthorizationNode, AuthorizationScopeCategory, AuthorizationScopeProduct, CatalogProduct
from ..models.authorization import SCOPE_ALL, SCOPE_CATEGORY, SCOPE_MIXED, SCOPE_SPECIFIC, SCOPES
from ..validation import (
    RATIO_SCALE,
    parse_choice,
    parse_id_list,
    parse_int,
    parse_price_cents,
    parse_ratio_units,
)
from .pricing_service import ProductTerms


@dataclass
class PriceSettings:
    global_discount_units: int | None = None
    category_discounts: dict[str, int | None] = field(default_factory=dict)
    product_prices: dict[int, ProductTerms] = field(default_factory=dict)


@dataclass
class ScopeTerms:
    scope: str
    global_discount_units: int
    categories: dict[str, int | None]
    products: dict[int, ProductTerms]

    def apply_to(self, node: AuthorizationNode) -> None:
        """Write scope membership and discounts onto a node that is not yet flushed."""
        node.scope = self.scope
        node.global_discount_units = self.global_discount_units
        node.scope_categories = [
            AuthorizationScopeCategory(category_id=category_id, discount_units=units)
            for category_id, units in self.categories.items()
        ]
        node.scope_products = [
            AuthorizationScopeProduct(
                product_id=product_id,
                fixed_price_cents=terms.fixed_price_cents,
                discount_units=terms.discount_units,
            )
            for product_id, terms in self.products.items()
        ]


def parse_product_ids(value: Any, field_name: str = "products") -> list[int]:
    return [parse_int(item, field_name, minimum=1) for item in parse_id_list(value, field_name)]


def parse_price_settings(
    raw: Any,
    categories: list[str],
    products: list[int],
    *,
    allow_clear: bool = False,
) -> PriceSettings:
    """
    Parse a priceSettings payload:

        {"globalDiscount": 0.85,
         "categoryDiscounts": {"<category>": 0.8},
         "productPrices": {"<productId>": {"fixedPriceCents": 900, "discount": 0.7}}}

    Keys of categoryDiscounts/productPrices must already be in scope.
    With allow_clear, a null value removes an existing discount entry.
    """
    settings = PriceSettings()
    if raw is None:
        return settings
    if not isinstance(raw, dict):
        raise ValidationError("priceSettings must be an object", field="priceSettings")

    if raw.get("globalDiscount") is not None:
        settings.global_discount_units = parse_ratio_units(raw["globalDiscount"], "priceSettings.globalDiscount")

    category_raw = raw.get("categoryDiscounts") or {}
    if not isinstance(category_raw, dict):
        raise ValidationError("categoryDiscounts must be an object", field="priceSettings.categoryDiscounts")
    for category_id, ratio in category_raw.items():
        key = str(category_id).strip()
        if key not in categories:
            raise ValidationError(
                f"Category {key!r} is not in the authorization scope",
                field="priceSettings.categoryDiscounts",
            )
        if ratio is None and allow_clear:
            settings.category_discounts[key] = None
            continue
        settings.category_discounts[key] = parse_ratio_units(ratio, f"priceSettings.categoryDiscounts.{key}")

    product_raw = raw.get("productPrices") or {}
    if not isinstance(product_raw, dict):
        raise ValidationError("productPrices must be an object", field="priceSettings.productPrices")
    for product_key, entry in product_raw.items():
        product_id = parse_int(product_key, "priceSettings.productPrices", minimum=1)
        if product_id not in products:
            raise ValidationError(
                f"Product {product_id} is not in the authorization scope",
                field="priceSettings.productPrices",
                entity_id=product_id,
            )
        if entry is None and allow_clear:
            settings.product_prices[product_id] = ProductTerms()
            continue
        if not isinstance(entry, dict):
            raise ValidationError("productPrices entries must be objects", field="priceSettings.productPrices")
        prefix = f"priceSettings.productPrices.{product_id}"
        fixed = entry.get("fixedPriceCents")
        discount = entry.get("discount")
        if fixed is None and discount is None:
            raise ValidationError(f"{prefix} needs fixedPriceCents or discount", field=prefix)
        settings.product_prices[product_id] = ProductTerms(
            fixed_price_cents=parse_price_cents(fixed, f"{prefix}.fixedPriceCents") if fixed is not None else None,
            discount_units=parse_ratio_units(discount, f"{prefix}.discount") if discount is not None else None,
        )

    return settings


def _require_catalog_products(product_ids: list[int], owner_id: str) -> None:
    if not product_ids:
        return
    found = {
        row.id
        for row in db.session.query(CatalogProduct.id)
        .filter(CatalogProduct.id.in_(product_ids), CatalogProduct.manufacturer_id == owner_id)
        .all()
    }
    for product_id in product_ids:
        if product_id not in found:
            raise ValidationError(
                f"Product {product_id} is not in the catalog of {owner_id}",
                field="products",
                entity_id=product_id,
            )


def parse_scope_terms(
    scope: Any,
    categories: Any,
    products: Any,
    price_settings: Any,
    *,
    catalog_owner_id: str,
) -> ScopeTerms:
    """
    Build stored terms for a new authorization.

    Lists that the scope does not use are dropped: categories only count for
    category/mixed, products only for specific/mixed.
    """
    scope = parse_choice(scope or SCOPE_ALL, "scope", SCOPES)
    category_ids = parse_id_list(categories, "categories")
    product_ids = parse_product_ids(products)

    if scope not in (SCOPE_CATEGORY, SCOPE_MIXED):
        category_ids = []
    if scope not in (SCOPE_SPECIFIC, SCOPE_MIXED):
        product_ids = []

    if scope == SCOPE_CATEGORY and not category_ids:
        raise ValidationError("categories are required for category scope", field="categories")
    if scope == SCOPE_SPECIFIC and not product_ids:
        raise ValidationError("products are required for specific scope", field="products")
    if scope == SCOPE_MIXED and not (category_ids or product_ids):
        raise ValidationError("mixed scope needs categories or products", field="categories")

    _require_catalog_products(product_ids, catalog_owner_id)

    settings = parse_price_settings(price_settings, category_ids, product_ids)
    return ScopeTerms(
        scope=scope,
        global_discount_units=settings.global_discount_units or RATIO_SCALE,
        categories={cid: settings.category_discounts.get(cid) for cid in category_ids},
        products={pid: settings.product_prices.get(pid, ProductTerms()) for pid in product_ids},
    )
