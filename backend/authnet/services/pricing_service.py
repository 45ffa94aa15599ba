# Overview: Service-layer operations for price resolution; scope rules, authorized catalog and tier rollups.

"""
Pricing Resolver

Resolves the catalog price a grantee sees through one authorization.

SCOPE RULES are tagged variants built from the node (AllScope,
CategoryScope, SpecificScope, MixedScope) and matched exhaustively, first
match wins, no blending:

1. specific/mixed: product listed with a fixed price -> fixed price
                   product listed with a discount    -> base x discount
2. category/mixed: product category listed with a discount -> base x discount
3. all, mixed with no match, or a listed item without its own
   discount                                           -> base x globalDiscount
4. anything else                                      -> OutOfScopeError

NUMERIC RULES:
- Ratios are parts per 10,000 (8500 == 0.85 == "85% of base").
- Prices round half-up to the cent.
- A resolved price <= 0 raises InvalidPriceError; never clamped.

Read path only: nothing here writes.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Mapping, Union

from ..errors import InvalidPriceError, NotActiveError, NotFoundError, OutOfScopeError
from ..extensions import db
from ..models import AuthorizationNode, CatalogProduct
from ..models.authorization import SCOPE_ALL, SCOPE_CATEGORY, SCOPE_MIXED, SCOPE_SPECIFIC
from ..validation import RATIO_SCALE, ratio_from_units
from . import graph_service

BASIS_FIXED_PRICE = "fixed_price"
BASIS_PRODUCT_DISCOUNT = "product_discount"
BASIS_CATEGORY_DISCOUNT = "category_discount"
BASIS_GLOBAL_DISCOUNT = "global_discount"


# =============================================================================
# SCOPE VARIANTS
# =============================================================================

@dataclass(frozen=True)
class ProductTerms:
    fixed_price_cents: int | None = None
    discount_units: int | None = None


@dataclass(frozen=True)
class AllScope:
    global_discount_units: int


@dataclass(frozen=True)
class CategoryScope:
    global_discount_units: int
    categories: Mapping[str, int | None]


@dataclass(frozen=True)
class SpecificScope:
    global_discount_units: int
    products: Mapping[int, ProductTerms]


@dataclass(frozen=True)
class MixedScope:
    global_discount_units: int
    categories: Mapping[str, int | None]
    products: Mapping[int, ProductTerms]


ScopeRule = Union[AllScope, CategoryScope, SpecificScope, MixedScope]


@dataclass(frozen=True)
class ResolvedPrice:
    product_id: int
    base_price_cents: int
    price_cents: int
    discount_units: int | None
    basis: str

    @property
    def discount_applied(self) -> float | None:
        return ratio_from_units(self.discount_units)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "base_price_cents": self.base_price_cents,
            "price_cents": self.price_cents,
            "discount_applied": self.discount_applied,
            "basis": self.basis,
        }


def scope_rule_for(node: AuthorizationNode) -> ScopeRule:
    categories = {row.category_id: row.discount_units for row in node.scope_categories}
    products = {
        row.product_id: ProductTerms(row.fixed_price_cents, row.discount_units)
        for row in node.scope_products
    }
    global_units = node.global_discount_units

    if node.scope == SCOPE_ALL:
        return AllScope(global_units)
    if node.scope == SCOPE_CATEGORY:
        return CategoryScope(global_units, categories)
    if node.scope == SCOPE_SPECIFIC:
        return SpecificScope(global_units, products)
    if node.scope == SCOPE_MIXED:
        return MixedScope(global_units, categories, products)
    raise OutOfScopeError(f"Unknown scope {node.scope!r}", field="scope", entity_id=node.id)


# =============================================================================
# PURE RESOLUTION
# =============================================================================

def apply_ratio(base_price_cents: int, units: int) -> int:
    """base x units / 10,000, rounded half-up to the cent."""
    amount = Decimal(base_price_cents) * Decimal(units) / Decimal(RATIO_SCALE)
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _effective_units(price_cents: int, base_price_cents: int) -> int | None:
    """Ratio a fixed price represents against the catalog price, in units."""
    if base_price_cents <= 0:
        return None
    ratio = Decimal(price_cents) * Decimal(RATIO_SCALE) / Decimal(base_price_cents)
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _priced(product: CatalogProduct, price_cents: int, units: int | None, basis: str) -> ResolvedPrice:
    if price_cents <= 0:
        raise InvalidPriceError(
            f"Resolved price for product {product.id} is not positive",
            field="price",
            entity_id=product.id,
        )
    return ResolvedPrice(
        product_id=product.id,
        base_price_cents=product.base_price_cents,
        price_cents=price_cents,
        discount_units=units,
        basis=basis,
    )


def _by_global(rule: ScopeRule, product: CatalogProduct) -> ResolvedPrice:
    units = rule.global_discount_units
    return _priced(product, apply_ratio(product.base_price_cents, units), units, BASIS_GLOBAL_DISCOUNT)


def _by_product(terms: ProductTerms, product: CatalogProduct) -> ResolvedPrice | None:
    if terms.fixed_price_cents is not None:
        units = _effective_units(terms.fixed_price_cents, product.base_price_cents)
        return _priced(product, terms.fixed_price_cents, units, BASIS_FIXED_PRICE)
    if terms.discount_units is not None:
        units = terms.discount_units
        return _priced(product, apply_ratio(product.base_price_cents, units), units, BASIS_PRODUCT_DISCOUNT)
    return None


def _by_category(units: int | None, product: CatalogProduct) -> ResolvedPrice | None:
    if units is None:
        return None
    return _priced(product, apply_ratio(product.base_price_cents, units), units, BASIS_CATEGORY_DISCOUNT)


def _out_of_scope(product: CatalogProduct) -> OutOfScopeError:
    return OutOfScopeError(
        f"Product {product.id} is outside the authorized scope",
        field="productId",
        entity_id=product.id,
    )


def resolve_for_rule(rule: ScopeRule, product: CatalogProduct) -> ResolvedPrice:
    if isinstance(rule, AllScope):
        return _by_global(rule, product)

    if isinstance(rule, SpecificScope):
        if product.id not in rule.products:
            raise _out_of_scope(product)
        return _by_product(rule.products[product.id], product) or _by_global(rule, product)

    if isinstance(rule, CategoryScope):
        if product.category_id is None or product.category_id not in rule.categories:
            raise _out_of_scope(product)
        return _by_category(rule.categories[product.category_id], product) or _by_global(rule, product)

    if isinstance(rule, MixedScope):
        if product.id in rule.products:
            resolved = _by_product(rule.products[product.id], product)
            if resolved:
                return resolved
        if product.category_id is not None and product.category_id in rule.categories:
            resolved = _by_category(rule.categories[product.category_id], product)
            if resolved:
                return resolved
        return _by_global(rule, product)

    raise TypeError(f"Unhandled scope rule {type(rule).__name__}")


# =============================================================================
# SERVICE API
# =============================================================================

def catalog_owner_id(node: AuthorizationNode) -> str:
    """Manufacturer whose catalog the tier company resells: the level-0 grantor."""
    return graph_service.tier_root_of(node).grantor_id


def _require_effective(node: AuthorizationNode) -> None:
    if not node.is_effective():
        raise NotActiveError(
            f"Authorization {node.id} is not active",
            field="status",
            entity_id=node.id,
        )


def _catalog_product(product_id: int, owner_id: str) -> CatalogProduct:
    product = db.session.get(CatalogProduct, product_id)
    if not product:
        raise NotFoundError(f"Product {product_id} not found", field="productId", entity_id=product_id)
    if product.manufacturer_id != owner_id or not product.is_active:
        raise _out_of_scope(product)
    return product


def resolve_price(node_id: int, product_id: int) -> ResolvedPrice:
    """
    Price of one catalog product through one authorization.

    Raises:
        NotFoundError: node or product missing
        NotActiveError: node not active or outside its validity window
        OutOfScopeError: product not covered by the node's scope, not in the
            tier company's catalog, or inactive
        InvalidPriceError: resolved price <= 0
    """
    node = graph_service.get_node(node_id)
    _require_effective(node)
    product = _catalog_product(product_id, catalog_owner_id(node))
    return resolve_for_rule(scope_rule_for(node), product)


def authorized_products(node_id: int) -> list[dict]:
    """Every active catalog product the node covers, with its resolved price."""
    node = graph_service.get_node(node_id)
    _require_effective(node)
    rule = scope_rule_for(node)

    products = (
        db.session.query(CatalogProduct)
        .filter_by(manufacturer_id=catalog_owner_id(node), is_active=True)
        .order_by(CatalogProduct.id.asc())
        .all()
    )

    listed = []
    for product in products:
        try:
            resolved = resolve_for_rule(rule, product)
        except (OutOfScopeError, InvalidPriceError):
            continue
        row = product.to_dict()
        row.update(resolved.to_dict())
        listed.append(row)
    return listed


def tier_company_rollups(grantor_id: str) -> list[dict]:
    """Per-tier-company aggregates over the authorizations a grantor issued."""
    return graph_service.group_by_tier_company(graph_service.list_granted(grantor_id))
