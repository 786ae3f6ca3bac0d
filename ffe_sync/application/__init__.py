from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from ffe_sync.application.client_quotes import ClientQuoteService
from ffe_sync.application.items import ItemService
from ffe_sync.application.order_orchestrator import OrderOrchestrator
from ffe_sync.application.payment_allocator import PaymentAllocator
from ffe_sync.application.quote_acceptance import QuoteAcceptanceService
from ffe_sync.application.quote_registry import QuoteRegistry
from ffe_sync.application.status_sync import StatusSyncEngine
from ffe_sync.core.event_bus import EventBus, get_event_bus


@dataclass(frozen=True)
class ProcurementServices:
    items: ItemService
    status_sync: StatusSyncEngine
    quote_registry: QuoteRegistry
    quote_acceptance: QuoteAcceptanceService
    client_quotes: ClientQuoteService
    payments: PaymentAllocator
    orders: OrderOrchestrator


def build_services(
    tenant_id: str,
    config: Mapping[str, Any] | None = None,
    *,
    event_bus: EventBus | None = None,
) -> ProcurementServices:
    settings = dict(config or {})
    bus = event_bus or get_event_bus()
    default_currency = str(settings.get("DEFAULT_CURRENCY") or "USD")
    status_sync = StatusSyncEngine(tenant_id, event_bus=bus)
    return ProcurementServices(
        items=ItemService(tenant_id, default_currency=default_currency),
        status_sync=status_sync,
        quote_registry=QuoteRegistry(
            tenant_id,
            default_currency=default_currency,
            event_bus=bus,
            status_sync=status_sync,
        ),
        quote_acceptance=QuoteAcceptanceService(tenant_id, event_bus=bus, status_sync=status_sync),
        client_quotes=ClientQuoteService(
            tenant_id,
            default_markup_percent=settings.get("DEFAULT_MARKUP_PERCENT", "0"),
            number_prefix=str(settings.get("CLIENT_QUOTE_NUMBER_PREFIX") or "CQ"),
            event_bus=bus,
            status_sync=status_sync,
        ),
        payments=PaymentAllocator(
            tenant_id,
            overpay_tolerance=settings.get("PAYMENT_OVERPAY_TOLERANCE", "0.01"),
            event_bus=bus,
            status_sync=status_sync,
        ),
        orders=OrderOrchestrator(
            tenant_id,
            requires_full_payment=bool(settings.get("ORDER_REQUIRES_FULL_PAYMENT", False)),
            number_prefix=str(settings.get("ORDER_NUMBER_PREFIX") or "PO"),
            event_bus=bus,
            status_sync=status_sync,
        ),
    )


__all__ = ["ProcurementServices", "build_services"]
