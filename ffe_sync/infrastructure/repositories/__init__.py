from .activity_repository import ActivityRepository
from .base import BaseRepository, TenantScopeRequiredError
from .client_quote_repository import ClientQuoteLineRepository, ClientQuoteRepository, PaymentRepository
from .item_repository import ComponentRepository, ItemRepository
from .order_repository import OrderItemRepository, OrderRepository
from .quote_repository import QuoteLineItemRepository

__all__ = [
    "ActivityRepository",
    "BaseRepository",
    "ClientQuoteLineRepository",
    "ClientQuoteRepository",
    "ComponentRepository",
    "ItemRepository",
    "OrderItemRepository",
    "OrderRepository",
    "PaymentRepository",
    "QuoteLineItemRepository",
    "TenantScopeRequiredError",
]
