from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from threading import RLock
from typing import Callable, Dict, List, Tuple, Type

from ffe_sync.observability import observe_domain_event_emitted


EventHandler = Callable[["DomainEvent"], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, kw_only=True)
class DomainEvent:
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    occurred_at: datetime = field(default_factory=_utc_now)
    tenant_id: str = ""

    def __post_init__(self) -> None:
        normalized_event_id = str(self.event_id or "").strip() or uuid.uuid4().hex
        normalized_occurred_at = self.occurred_at if isinstance(self.occurred_at, datetime) else _utc_now()
        if normalized_occurred_at.tzinfo is None:
            normalized_occurred_at = normalized_occurred_at.replace(tzinfo=timezone.utc)
        normalized_occurred_at = normalized_occurred_at.astimezone(timezone.utc)
        normalized_tenant = str(self.tenant_id or "").strip() or "unknown"

        object.__setattr__(self, "event_id", normalized_event_id)
        object.__setattr__(self, "occurred_at", normalized_occurred_at)
        object.__setattr__(self, "tenant_id", normalized_tenant)

    def to_payload(self) -> Dict[str, object]:
        payload: Dict[str, object] = {"event_type": type(self).__name__}
        for key, value in asdict(self).items():
            if isinstance(value, datetime):
                payload[key] = value.isoformat().replace("+00:00", "Z")
            else:
                payload[key] = value
        return payload


@dataclass(frozen=True, kw_only=True)
class QuoteIngested(DomainEvent):
    item_id: int
    quote_line_item_id: int
    supplier_id: str
    version: int = 1
    component_id: int | None = None
    review_required: bool = False


@dataclass(frozen=True, kw_only=True)
class QuoteAccepted(DomainEvent):
    item_id: int
    quote_line_item_id: int
    supplier_id: str
    unit_price: str
    component_id: int | None = None
    previous_quote_line_item_id: int | None = None
    actor_id: str | None = None


@dataclass(frozen=True, kw_only=True)
class ItemStatusAdvanced(DomainEvent):
    item_id: int
    trigger: str
    old_status: str
    new_status: str
    actor_id: str | None = None


@dataclass(frozen=True, kw_only=True)
class PaymentReceived(DomainEvent):
    payment_id: int
    client_quote_id: int
    item_id: int
    amount: str
    paid_amount: str
    payment_status: str


@dataclass(frozen=True, kw_only=True)
class OrderCreated(DomainEvent):
    order_id: int
    order_number: str
    supplier_id: str
    client_quote_id: int | None = None
    item_ids: Tuple[int, ...] = ()
    actor_id: str | None = None


@dataclass(frozen=True, kw_only=True)
class OrderStatusChanged(DomainEvent):
    order_id: int
    old_status: str
    new_status: str
    actor_id: str | None = None


class EventBus:
    def __init__(self) -> None:
        self._lock = RLock()
        self._handlers: Dict[Type[DomainEvent], List[EventHandler]] = {}
        self._logger = logging.getLogger("ffe_sync")

    def subscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        with self._lock:
            handlers = self._handlers.setdefault(event_type, [])
            handlers.append(handler)

    def unsubscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        with self._lock:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

    def publish(self, event: DomainEvent) -> None:
        observe_domain_event_emitted(type(event).__name__)
        with self._lock:
            handlers = list(self._handlers.get(type(event), []))
        for handler in handlers:
            try:
                handler(event)
            except Exception:  # noqa: BLE001
                self._logger.exception("event_handler_failed", extra={"event_type": type(event).__name__})

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()


_DEFAULT_EVENT_BUS = EventBus()


def get_event_bus() -> EventBus:
    return _DEFAULT_EVENT_BUS


def reset_event_bus_for_tests() -> None:
    _DEFAULT_EVENT_BUS.clear()
