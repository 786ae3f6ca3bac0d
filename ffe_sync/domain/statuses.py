from __future__ import annotations

import enum
from types import MappingProxyType
from typing import Mapping


class ProcurementStatus(str, enum.Enum):
    NOT_REQUESTED = "NOT_REQUESTED"
    RFQ_SENT = "RFQ_SENT"
    QUOTE_RECEIVED = "QUOTE_RECEIVED"
    QUOTE_APPROVED = "QUOTE_APPROVED"
    BUDGET_SENT = "BUDGET_SENT"
    BUDGET_APPROVED = "BUDGET_APPROVED"
    INVOICED = "INVOICED"
    PARTIALLY_PAID = "PARTIALLY_PAID"
    FULLY_PAID = "FULLY_PAID"
    ORDERED = "ORDERED"
    SHIPPED = "SHIPPED"
    RECEIVED = "RECEIVED"
    INSTALLED = "INSTALLED"
    CLOSED = "CLOSED"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    @classmethod
    def parse(cls, value) -> "ProcurementStatus":
        if isinstance(value, cls):
            return value
        return cls(str(value or "").strip().upper())


# Declaration order is the procurement order.
_STATUS_RANK: Mapping[ProcurementStatus, int] = MappingProxyType(
    {status: index for index, status in enumerate(ProcurementStatus)}
)


class StatusTrigger(str, enum.Enum):
    RFQ_SENT = "rfq_sent"
    QUOTE_RECEIVED = "quote_received"
    QUOTE_ACCEPTED = "quote_accepted"
    CLIENT_QUOTE_SENT = "client_quote_sent"
    CLIENT_APPROVED = "client_approved"
    INVOICE_SENT = "invoice_sent"
    PAYMENT_RECEIVED = "payment_received"
    PAYMENT_COMPLETED = "payment_completed"
    ORDER_CREATED = "order_created"
    ORDER_SHIPPED = "order_shipped"
    ORDER_RECEIVED = "order_received"
    INSTALLED = "installed"
    COMPLETED = "completed"

    @classmethod
    def parse(cls, value) -> "StatusTrigger":
        if isinstance(value, cls):
            return value
        return cls(str(value or "").strip().lower())


STATUS_TRIGGERS: Mapping[StatusTrigger, ProcurementStatus] = MappingProxyType(
    {
        StatusTrigger.RFQ_SENT: ProcurementStatus.RFQ_SENT,
        StatusTrigger.QUOTE_RECEIVED: ProcurementStatus.QUOTE_RECEIVED,
        StatusTrigger.QUOTE_ACCEPTED: ProcurementStatus.QUOTE_APPROVED,
        StatusTrigger.CLIENT_QUOTE_SENT: ProcurementStatus.BUDGET_SENT,
        StatusTrigger.CLIENT_APPROVED: ProcurementStatus.BUDGET_APPROVED,
        StatusTrigger.INVOICE_SENT: ProcurementStatus.INVOICED,
        StatusTrigger.PAYMENT_RECEIVED: ProcurementStatus.PARTIALLY_PAID,
        StatusTrigger.PAYMENT_COMPLETED: ProcurementStatus.FULLY_PAID,
        StatusTrigger.ORDER_CREATED: ProcurementStatus.ORDERED,
        StatusTrigger.ORDER_SHIPPED: ProcurementStatus.SHIPPED,
        StatusTrigger.ORDER_RECEIVED: ProcurementStatus.RECEIVED,
        StatusTrigger.INSTALLED: ProcurementStatus.INSTALLED,
        StatusTrigger.COMPLETED: ProcurementStatus.CLOSED,
    }
)


def validate_trigger_table(table: Mapping[StatusTrigger, ProcurementStatus]) -> None:
    missing = [trigger.value for trigger in StatusTrigger if trigger not in table]
    if missing:
        raise RuntimeError(f"status triggers without target status: {', '.join(missing)}")
    for trigger, status in table.items():
        if not isinstance(trigger, StatusTrigger) or not isinstance(status, ProcurementStatus):
            raise RuntimeError(f"invalid status trigger mapping: {trigger!r} -> {status!r}")
    if ProcurementStatus.NOT_REQUESTED in set(table.values()):
        raise RuntimeError("no trigger may target the initial status")


validate_trigger_table(STATUS_TRIGGERS)


def target_status(trigger: StatusTrigger) -> ProcurementStatus:
    return STATUS_TRIGGERS[trigger]


def is_ahead(candidate: ProcurementStatus, current: ProcurementStatus) -> bool:
    return candidate.rank > current.rank


class PaymentStatus(str, enum.Enum):
    NOT_INVOICED = "NOT_INVOICED"
    INVOICED = "INVOICED"
    DEPOSIT_PAID = "DEPOSIT_PAID"
    FULLY_PAID = "FULLY_PAID"


class ClientQuoteStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    APPROVED = "APPROVED"
    INVOICED = "INVOICED"


CLIENT_QUOTE_STATUS_ORDER = (
    ClientQuoteStatus.DRAFT,
    ClientQuoteStatus.SENT,
    ClientQuoteStatus.APPROVED,
    ClientQuoteStatus.INVOICED,
)


class OrderStatus(str, enum.Enum):
    ORDERED = "ORDERED"
    CONFIRMED = "CONFIRMED"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    INSTALLED = "INSTALLED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @classmethod
    def parse(cls, value) -> "OrderStatus":
        if isinstance(value, cls):
            return value
        return cls(str(value or "").strip().upper())


ORDER_STATUS_ORDER = (
    OrderStatus.ORDERED,
    OrderStatus.CONFIRMED,
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
    OrderStatus.INSTALLED,
    OrderStatus.COMPLETED,
)

# Order statuses past which cancellation is no longer possible.
ORDER_STATUSES_FULFILLED = frozenset({OrderStatus.DELIVERED, OrderStatus.INSTALLED, OrderStatus.COMPLETED})

ORDER_STATUS_TRIGGERS: Mapping[OrderStatus, StatusTrigger] = MappingProxyType(
    {
        OrderStatus.ORDERED: StatusTrigger.ORDER_CREATED,
        OrderStatus.CONFIRMED: StatusTrigger.ORDER_CREATED,
        OrderStatus.SHIPPED: StatusTrigger.ORDER_SHIPPED,
        OrderStatus.DELIVERED: StatusTrigger.ORDER_RECEIVED,
        OrderStatus.INSTALLED: StatusTrigger.INSTALLED,
        OrderStatus.COMPLETED: StatusTrigger.COMPLETED,
    }
)


def order_status_rank(status: OrderStatus) -> int:
    if status == OrderStatus.CANCELLED:
        return -1
    return ORDER_STATUS_ORDER.index(status)
