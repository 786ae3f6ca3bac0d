from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Sequence, Tuple

from ffe_sync.application.status_sync import StatusSyncEngine
from ffe_sync.core.event_bus import EventBus, PaymentReceived, get_event_bus
from ffe_sync.domain.contracts import AllocationLine, AllocationResult, jsonable
from ffe_sync.domain.money import ZERO, minor_unit_exponent, normalize_currency, parse_amount, quantize, to_decimal
from ffe_sync.domain.statuses import PaymentStatus, StatusTrigger
from ffe_sync.domain.validation import optional_text
from ffe_sync.errors import ConcurrencyConflict, OverpaymentError, ValidationError, not_found
from ffe_sync.infrastructure.repositories.activity_repository import ActivityRepository
from ffe_sync.infrastructure.repositories.base import utc_now_iso
from ffe_sync.infrastructure.repositories.client_quote_repository import (
    ClientQuoteLineRepository,
    ClientQuoteRepository,
    PaymentRepository,
)
from ffe_sync.infrastructure.repositories.item_repository import ItemRepository
from ffe_sync.observability import observe_concurrency_conflict, observe_payment_allocated


logger = logging.getLogger("ffe_sync.payment_allocator")

_PAID_STATUSES = frozenset({PaymentStatus.DEPOSIT_PAID.value, PaymentStatus.FULLY_PAID.value})


def split_proportionally(
    amount: Decimal,
    weights: Sequence[Tuple[int, Decimal]],
    currency: str,
) -> Dict[int, Decimal]:
    """Splits `amount` by weight so the parts add up to it exactly.

    Each share is rounded half-up to the currency's minor unit. The rounding
    residue is then spread one minor unit at a time over the shares, largest
    first with ties going to the lowest key, and no share drops below zero.
    """
    total = sum((weight for _, weight in weights), ZERO)
    if total <= ZERO:
        raise ValidationError(code="client_quote_empty", message_key="client_quote_empty")
    shares = {key: quantize(weight * amount / total, currency) for key, weight in weights}
    unit = minor_unit_exponent(currency)
    residue = amount - sum(shares.values(), ZERO)
    ranked = sorted(shares, key=lambda key: (-shares[key], key))
    step = unit if residue > ZERO else -unit
    while abs(residue) >= unit:
        for key in ranked:
            if abs(residue) < unit:
                break
            if shares[key] + step < ZERO:
                continue
            shares[key] += step
            residue -= step
    return shares


def payment_status_for(paid: Decimal, client_price: Decimal, current: str) -> str:
    if client_price > ZERO and paid >= client_price:
        return PaymentStatus.FULLY_PAID.value
    if paid > ZERO:
        return PaymentStatus.DEPOSIT_PAID.value
    return current


class PaymentAllocator:
    def __init__(
        self,
        tenant_id: str,
        *,
        overpay_tolerance: Any = "0.01",
        event_bus: EventBus | None = None,
        status_sync: StatusSyncEngine | None = None,
    ) -> None:
        self.tenant_id = tenant_id
        self.overpay_tolerance = to_decimal(overpay_tolerance)
        self.event_bus = event_bus or get_event_bus()
        self.status_sync = status_sync or StatusSyncEngine(tenant_id, event_bus=self.event_bus)
        self.items = ItemRepository(tenant_id=tenant_id)
        self.client_quotes = ClientQuoteRepository(tenant_id=tenant_id)
        self.lines = ClientQuoteLineRepository(tenant_id=tenant_id)
        self.payments = PaymentRepository(tenant_id=tenant_id)
        self.activity = ActivityRepository(tenant_id=tenant_id)

    def record_payment(
        self,
        db,
        client_quote_id: int,
        amount,
        *,
        paid_at: str | None = None,
        currency: str | None = None,
        external_ref: str | None = None,
    ) -> Dict[str, Any]:
        reference = optional_text(external_ref)
        with db.transaction():
            client_quote = self.client_quotes.get(db, client_quote_id)
            if client_quote is None:
                raise not_found("client_quote", client_quote_id)
            resolved_currency = normalize_currency(currency, client_quote["currency"])
            if resolved_currency != client_quote["currency"]:
                raise ValidationError(
                    code="currency_invalid",
                    message_key="currency_invalid",
                    details=f"payment currency {resolved_currency} differs from {client_quote['currency']}",
                    payload={"field": "currency"},
                )
            parsed = parse_amount(amount, resolved_currency)
            if reference:
                existing = self.payments.find_by_external_ref(db, reference)
                if existing is not None:
                    return existing
            payment = self.payments.insert(
                db,
                client_quote_id=client_quote_id,
                amount=parsed,
                currency=resolved_currency,
                paid_at=optional_text(paid_at) or utc_now_iso(),
                external_ref=reference,
            )

        logger.info(
            "payment_recorded",
            extra={
                "tenant_id": self.tenant_id,
                "payment_id": payment["id"],
                "client_quote_id": client_quote_id,
                "amount": jsonable(parsed),
            },
        )
        return payment

    def allocate(self, db, payment_id: int, *, actor_id: str | None = None) -> AllocationResult:
        with db.transaction():
            payment = self.payments.get(db, payment_id, for_update=True)
            if payment is None:
                raise not_found("payment", payment_id)
            if payment["status"] == "ALLOCATED":
                return self._stored_result(db, payment)

            currency = payment["currency"]
            amount = payment["amount"]
            lines = self.lines.list_for_quote(db, int(payment["client_quote_id"]), currency=currency)
            if not lines:
                raise ValidationError(
                    code="client_quote_empty",
                    message_key="client_quote_empty",
                    payload={"client_quote_id": payment["client_quote_id"]},
                )
            shares = split_proportionally(
                amount,
                [(int(line["item_id"]), line["client_price"]) for line in lines],
                currency,
            )
            items = {
                int(item["id"]): item
                for item in self.items.list_by_ids(db, shares.keys(), for_update=True)
            }

            results: List[AllocationLine] = []
            advances: List[Tuple[int, StatusTrigger, AllocationLine]] = []
            for line in lines:
                item_id = int(line["item_id"])
                item = items[item_id]
                share = shares[item_id]
                client_price = item["client_price"] if item["client_price"] is not None else line["client_price"]
                paid = item["paid_amount"] + share
                if paid > client_price + self.overpay_tolerance:
                    raise OverpaymentError(
                        details=f"item {item_id} would be paid {paid} against {client_price}",
                        payload={
                            "item_id": item_id,
                            "paid_amount": jsonable(paid),
                            "client_price": jsonable(client_price),
                        },
                    )
                previous_status = item["payment_status"]
                new_status = payment_status_for(paid, client_price, previous_status)
                try:
                    self.items.update(
                        db,
                        item,
                        paid_amount=paid,
                        payment_status=new_status,
                        client_price=client_price,
                    )
                except ConcurrencyConflict:
                    observe_concurrency_conflict("allocate")
                    raise
                allocation = AllocationLine(
                    item_id=item_id,
                    amount=share,
                    paid_amount=paid,
                    client_price=client_price,
                    payment_status=new_status,
                    previous_payment_status=previous_status,
                )
                results.append(allocation)

                if new_status == PaymentStatus.FULLY_PAID.value and previous_status != new_status:
                    advances.append((item_id, StatusTrigger.PAYMENT_COMPLETED, allocation))
                elif new_status == PaymentStatus.DEPOSIT_PAID.value and previous_status not in _PAID_STATUSES:
                    advances.append((item_id, StatusTrigger.PAYMENT_RECEIVED, allocation))

            self.payments.insert_allocations(db, payment_id, [(line.item_id, line.amount) for line in results])
            self.payments.mark_allocated(db, payment_id)
            for line in results:
                self.activity.append(
                    db,
                    item_id=line.item_id,
                    entry_type="payment_allocated",
                    actor_id=actor_id,
                    details={
                        "payment_id": payment_id,
                        "amount": jsonable(line.amount),
                        "paid_amount": jsonable(line.paid_amount),
                        "payment_status": line.payment_status,
                    },
                )
            for item_id, trigger, allocation in advances:
                self.status_sync.advance(db, item_id, trigger, actor_id=actor_id, details={"payment_id": payment_id})
                self._publish_payment_received(db, payment, allocation)
            db.after_commit(observe_payment_allocated)

        logger.info(
            "payment_allocated",
            extra={
                "tenant_id": self.tenant_id,
                "payment_id": payment_id,
                "client_quote_id": payment["client_quote_id"],
                "amount": jsonable(amount),
                "lines": len(results),
            },
        )
        return AllocationResult(
            payment_id=int(payment["id"]),
            client_quote_id=int(payment["client_quote_id"]),
            amount=amount,
            currency=currency,
            lines=tuple(results),
        )

    def _publish_payment_received(self, db, payment: dict, allocation: AllocationLine) -> None:
        event = PaymentReceived(
            tenant_id=self.tenant_id,
            payment_id=int(payment["id"]),
            client_quote_id=int(payment["client_quote_id"]),
            item_id=allocation.item_id,
            amount=str(jsonable(allocation.amount)),
            paid_amount=str(jsonable(allocation.paid_amount)),
            payment_status=str(allocation.payment_status),
        )
        db.after_commit(lambda: self.event_bus.publish(event))

    def _stored_result(self, db, payment: dict) -> AllocationResult:
        stored = self.payments.list_allocations(db, int(payment["id"]), currency=payment["currency"])
        items = {int(item["id"]): item for item in self.items.list_by_ids(db, [row["item_id"] for row in stored])}
        lines = []
        for row in stored:
            item = items.get(int(row["item_id"])) or {}
            lines.append(
                AllocationLine(
                    item_id=int(row["item_id"]),
                    amount=row["amount"],
                    paid_amount=item.get("paid_amount"),
                    client_price=item.get("client_price"),
                    payment_status=item.get("payment_status"),
                )
            )
        return AllocationResult(
            payment_id=int(payment["id"]),
            client_quote_id=int(payment["client_quote_id"]),
            amount=payment["amount"],
            currency=payment["currency"],
            lines=tuple(lines),
            already_allocated=True,
        )
