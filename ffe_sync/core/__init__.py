from ffe_sync.core.event_bus import (
    DomainEvent,
    EventBus,
    ItemStatusAdvanced,
    OrderCreated,
    OrderStatusChanged,
    PaymentReceived,
    QuoteAccepted,
    QuoteIngested,
    get_event_bus,
    reset_event_bus_for_tests,
)

__all__ = [
    "DomainEvent",
    "EventBus",
    "QuoteIngested",
    "QuoteAccepted",
    "ItemStatusAdvanced",
    "PaymentReceived",
    "OrderCreated",
    "OrderStatusChanged",
    "get_event_bus",
    "reset_event_bus_for_tests",
]
