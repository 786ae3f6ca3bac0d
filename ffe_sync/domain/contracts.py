from __future__ import annotations

import enum
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Tuple


def jsonable(value: Any) -> Any:
    """Decimal amounts travel as exact strings; enums as their value."""
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, dict):
        return {key: jsonable(inner) for key, inner in value.items()}
    if isinstance(value, (list, tuple)):
        return [jsonable(inner) for inner in value]
    return value


@dataclass(frozen=True)
class QuoteTarget:
    item_id: int
    component_id: int | None = None

    @property
    def target_type(self) -> str:
        return "item" if self.component_id is None else "component"

    @property
    def target_id(self) -> int:
        return self.item_id if self.component_id is None else self.component_id


@dataclass(frozen=True)
class QuoteInput:
    supplier_id: str
    unit_price: Any
    quantity: Any = 1
    currency: str | None = None
    supplier_name: str | None = None
    total_price: Any = None
    lead_time_days: Any = None
    document_ref: str | None = None


@dataclass(frozen=True)
class AdvanceResult:
    item: Dict[str, Any]
    changed: bool
    trigger: str
    old_status: str
    new_status: str

    def to_payload(self) -> Dict[str, Any]:
        return {
            "item": jsonable(self.item),
            "changed": self.changed,
            "trigger": self.trigger,
            "old_status": self.old_status,
            "new_status": self.new_status,
        }


@dataclass(frozen=True)
class IngestResult:
    quote: Dict[str, Any]
    superseded_quote_id: int | None = None
    review_required: bool = False
    status_change: AdvanceResult | None = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "quote": jsonable(self.quote),
            "superseded_quote_id": self.superseded_quote_id,
            "review_required": self.review_required,
            "status_change": self.status_change.to_payload() if self.status_change else None,
        }


@dataclass(frozen=True)
class QuoteComparisonEntry:
    quote: Dict[str, Any]
    delta_vs_lowest: Decimal
    delta_vs_lowest_percent: Decimal
    is_lowest: bool
    delta_vs_accepted: Decimal | None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "quote": jsonable(self.quote),
            "delta_vs_lowest": jsonable(self.delta_vs_lowest),
            "delta_vs_lowest_percent": jsonable(self.delta_vs_lowest_percent),
            "is_lowest": self.is_lowest,
            "delta_vs_accepted": jsonable(self.delta_vs_accepted),
        }


@dataclass(frozen=True)
class AcceptResult:
    quote: Dict[str, Any]
    item: Dict[str, Any]
    component: Dict[str, Any] | None = None
    previous_quote_id: int | None = None
    changed: bool = True
    status_change: AdvanceResult | None = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "quote": jsonable(self.quote),
            "item": jsonable(self.item),
            "component": jsonable(self.component),
            "previous_quote_id": self.previous_quote_id,
            "changed": self.changed,
            "status_change": self.status_change.to_payload() if self.status_change else None,
        }


@dataclass(frozen=True)
class AllocationLine:
    item_id: int
    amount: Decimal
    paid_amount: Decimal | None = None
    client_price: Decimal | None = None
    payment_status: str | None = None
    previous_payment_status: str | None = None

    def to_payload(self) -> Dict[str, Any]:
        return jsonable(
            {
                "item_id": self.item_id,
                "amount": self.amount,
                "paid_amount": self.paid_amount,
                "client_price": self.client_price,
                "payment_status": self.payment_status,
                "previous_payment_status": self.previous_payment_status,
            }
        )


@dataclass(frozen=True)
class AllocationResult:
    payment_id: int
    client_quote_id: int
    amount: Decimal
    currency: str
    lines: Tuple[AllocationLine, ...]
    already_allocated: bool = False

    @property
    def total_allocated(self) -> Decimal:
        return sum((line.amount for line in self.lines), Decimal("0"))

    def to_payload(self) -> Dict[str, Any]:
        return {
            "payment_id": self.payment_id,
            "client_quote_id": self.client_quote_id,
            "amount": jsonable(self.amount),
            "currency": self.currency,
            "total_allocated": jsonable(self.total_allocated),
            "already_allocated": self.already_allocated,
            "lines": [line.to_payload() for line in self.lines],
        }


@dataclass(frozen=True)
class SkippedItem:
    item_id: int
    reason: str

    def to_payload(self) -> Dict[str, Any]:
        return {"item_id": self.item_id, "reason": self.reason}


@dataclass(frozen=True)
class OrderLinePlan:
    item_id: int
    name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    quote_line_item_id: int | None
    client_quote_line_item_id: int | None = None
    component_id: int | None = None

    def to_payload(self) -> Dict[str, Any]:
        return jsonable(
            {
                "item_id": self.item_id,
                "component_id": self.component_id,
                "name": self.name,
                "quantity": self.quantity,
                "unit_price": self.unit_price,
                "total_price": self.total_price,
                "quote_line_item_id": self.quote_line_item_id,
            }
        )


@dataclass(frozen=True)
class SupplierOrderPlan:
    supplier_id: str
    supplier_name: str | None
    currency: str
    lines: Tuple[OrderLinePlan, ...]

    @property
    def subtotal(self) -> Decimal:
        return sum((line.total_price for line in self.lines), Decimal("0"))

    @property
    def item_ids(self) -> Tuple[int, ...]:
        return tuple(dict.fromkeys(line.item_id for line in self.lines))

    @property
    def own_item_ids(self) -> Tuple[int, ...]:
        """Items ordered on their own line, not only through a component."""
        return tuple(dict.fromkeys(line.item_id for line in self.lines if line.component_id is None))

    def to_payload(self) -> Dict[str, Any]:
        return {
            "supplier_id": self.supplier_id,
            "supplier_name": self.supplier_name,
            "currency": self.currency,
            "subtotal": jsonable(self.subtotal),
            "item_ids": list(self.item_ids),
            "lines": [line.to_payload() for line in self.lines],
        }


@dataclass(frozen=True)
class OrderPlan:
    client_quote_id: int
    suppliers: Tuple[SupplierOrderPlan, ...]
    skipped: Tuple[SkippedItem, ...] = ()

    def to_payload(self) -> Dict[str, Any]:
        return {
            "client_quote_id": self.client_quote_id,
            "suppliers": [plan.to_payload() for plan in self.suppliers],
            "skipped": [entry.to_payload() for entry in self.skipped],
        }


@dataclass(frozen=True)
class OrderCreationResult:
    orders: List[Dict[str, Any]] = field(default_factory=list)
    skipped: Tuple[SkippedItem, ...] = ()

    def to_payload(self) -> Dict[str, Any]:
        return {
            "orders": jsonable(self.orders),
            "skipped": [entry.to_payload() for entry in self.skipped],
        }


@dataclass(frozen=True)
class OrderStatusResult:
    order: Dict[str, Any]
    changed: bool
    status_changes: Tuple[AdvanceResult, ...] = ()

    def to_payload(self) -> Dict[str, Any]:
        return {
            "order": jsonable(self.order),
            "changed": self.changed,
            "status_changes": [change.to_payload() for change in self.status_changes],
        }
