from .catalog import CatalogProduct
from .authorization import (
    AuthorizationRequest,
    AuthorizationNode,
    AuthorizationScopeCategory,
    AuthorizationScopeProduct,
)
from .orders import Order, OrderLine
from .audit import NetworkEvent

__all__ = [
    'CatalogProduct',
    'AuthorizationRequest', 'AuthorizationNode',
    'AuthorizationScopeCategory', 'AuthorizationScopeProduct',
    'Order', 'OrderLine',
    'NetworkEvent',
]
