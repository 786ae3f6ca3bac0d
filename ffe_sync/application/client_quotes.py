from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable

from ffe_sync.application.quote_acceptance import parse_markup
from ffe_sync.application.status_sync import StatusSyncEngine
from ffe_sync.core.event_bus import EventBus, get_event_bus
from ffe_sync.domain.contracts import jsonable
from ffe_sync.domain.money import quantize, to_decimal
from ffe_sync.domain.statuses import (
    CLIENT_QUOTE_STATUS_ORDER,
    ClientQuoteStatus,
    PaymentStatus,
    StatusTrigger,
)
from ffe_sync.domain.validation import optional_text
from ffe_sync.errors import ConcurrencyConflict, ValidationError, not_found
from ffe_sync.infrastructure.repositories.activity_repository import ActivityRepository
from ffe_sync.infrastructure.repositories.client_quote_repository import (
    ClientQuoteLineRepository,
    ClientQuoteRepository,
    next_sequence_number,
)
from ffe_sync.infrastructure.repositories.item_repository import ItemRepository
from ffe_sync.observability import observe_concurrency_conflict


logger = logging.getLogger("ffe_sync.client_quotes")

_HUNDRED = Decimal("100")

_TRANSITIONS = {
    ClientQuoteStatus.SENT: ("sent_at", StatusTrigger.CLIENT_QUOTE_SENT),
    ClientQuoteStatus.APPROVED: ("approved_at", StatusTrigger.CLIENT_APPROVED),
    ClientQuoteStatus.INVOICED: ("invoiced_at", StatusTrigger.INVOICE_SENT),
}


def client_unit_price(trade_price: Decimal, markup_percent: Decimal, currency: str) -> Decimal:
    return quantize(trade_price * (1 + markup_percent / _HUNDRED), currency)


class ClientQuoteService:
    """Client-facing budget derived from accepted supplier prices; becomes the invoice."""

    def __init__(
        self,
        tenant_id: str,
        *,
        default_markup_percent: Any = "0",
        number_prefix: str = "CQ",
        event_bus: EventBus | None = None,
        status_sync: StatusSyncEngine | None = None,
    ) -> None:
        self.tenant_id = tenant_id
        self.default_markup_percent = to_decimal(default_markup_percent)
        self.number_prefix = number_prefix
        self.event_bus = event_bus or get_event_bus()
        self.status_sync = status_sync or StatusSyncEngine(tenant_id, event_bus=self.event_bus)
        self.items = ItemRepository(tenant_id=tenant_id)
        self.client_quotes = ClientQuoteRepository(tenant_id=tenant_id)
        self.lines = ClientQuoteLineRepository(tenant_id=tenant_id)
        self.activity = ActivityRepository(tenant_id=tenant_id)

    def create_client_quote(
        self,
        db,
        item_ids: Iterable[int],
        *,
        project_id: str | None = None,
        actor_id: str | None = None,
        markup_percent=None,
    ) -> Dict[str, Any]:
        ids = list(dict.fromkeys(int(item_id) for item_id in (item_ids or [])))
        if not ids:
            raise ValidationError(code="items_required", message_key="items_required", payload={"field": "item_ids"})
        explicit_markup = parse_markup(markup_percent)

        with db.transaction():
            items = self.items.list_by_ids(db, ids, for_update=True)
            found = {int(item["id"]) for item in items}
            missing = [item_id for item_id in ids if item_id not in found]
            if missing:
                raise not_found("item", missing[0])

            currency = items[0]["currency"]
            priced = []
            for item in items:
                if item["accepted_quote_id"] is None or item["trade_price"] is None:
                    raise ValidationError(
                        code="accepted_quote_required",
                        message_key="accepted_quote_required",
                        details=f"item {item['id']} has no accepted quote",
                        payload={"item_id": item["id"]},
                    )
                if item["currency"] != currency:
                    raise ValidationError(
                        code="currency_invalid",
                        message_key="currency_invalid",
                        details="client quote items must share one currency",
                        payload={"item_id": item["id"]},
                    )
                markup = explicit_markup
                if markup is None:
                    markup = item["markup_percent"] if item["markup_percent"] is not None else self.default_markup_percent
                unit = client_unit_price(item["trade_price"], markup, currency)
                priced.append((item, markup, unit, quantize(unit * int(item["quantity"]), currency)))

            total = quantize(sum((entry[3] for entry in priced), Decimal("0")), currency)
            number = next_sequence_number(
                db,
                table="client_quotes",
                column="quote_number",
                tenant_id=self.tenant_id,
                prefix=self.number_prefix,
                year=datetime.now(timezone.utc).year,
            )
            client_quote = self.client_quotes.create(
                db,
                quote_number=number,
                currency=currency,
                total_amount=total,
                project_id=optional_text(project_id),
                created_by=actor_id,
            )
            for item, markup, unit, price in priced:
                self.lines.insert(
                    db,
                    client_quote_id=int(client_quote["id"]),
                    item_id=int(item["id"]),
                    quote_line_item_id=int(item["accepted_quote_id"]),
                    quantity=int(item["quantity"]),
                    trade_unit_price=item["trade_price"],
                    markup_percent=markup,
                    client_unit_price=unit,
                    client_price=price,
                )
                self.activity.append(
                    db,
                    item_id=int(item["id"]),
                    entry_type="client_quote_created",
                    actor_id=actor_id,
                    details={
                        "client_quote_id": client_quote["id"],
                        "quote_number": number,
                        "client_price": jsonable(price),
                    },
                )

        logger.info(
            "client_quote_created",
            extra={
                "tenant_id": self.tenant_id,
                "client_quote_id": client_quote["id"],
                "quote_number": number,
                "items": len(priced),
            },
        )
        return self.get_client_quote(db, int(client_quote["id"]))

    def get_client_quote(self, db, client_quote_id: int) -> Dict[str, Any]:
        client_quote = self.client_quotes.get(db, client_quote_id)
        if client_quote is None:
            raise not_found("client_quote", client_quote_id)
        client_quote["lines"] = self.lines.list_for_quote(db, client_quote_id, currency=client_quote["currency"])
        return client_quote

    def send_client_quote(self, db, client_quote_id: int, *, actor_id: str | None = None) -> Dict[str, Any]:
        return self._transition(db, client_quote_id, ClientQuoteStatus.SENT, actor_id=actor_id)

    def approve_client_quote(self, db, client_quote_id: int, *, actor_id: str | None = None) -> Dict[str, Any]:
        return self._transition(db, client_quote_id, ClientQuoteStatus.APPROVED, actor_id=actor_id)

    def issue_invoice(self, db, client_quote_id: int, *, actor_id: str | None = None) -> Dict[str, Any]:
        return self._transition(db, client_quote_id, ClientQuoteStatus.INVOICED, actor_id=actor_id)

    def _transition(
        self,
        db,
        client_quote_id: int,
        target: ClientQuoteStatus,
        *,
        actor_id: str | None,
    ) -> Dict[str, Any]:
        timestamp_column, trigger = _TRANSITIONS[target]
        with db.transaction():
            client_quote = self.get_client_quote(db, client_quote_id)
            current = ClientQuoteStatus(client_quote["status"])
            if CLIENT_QUOTE_STATUS_ORDER.index(target) <= CLIENT_QUOTE_STATUS_ORDER.index(current):
                client_quote["changed"] = False
                return client_quote

            item_ids = [int(line["item_id"]) for line in client_quote["lines"]]
            if target == ClientQuoteStatus.INVOICED:
                self._invoice_items(db, client_quote["lines"])
            client_quote[timestamp_column] = self.client_quotes.set_status(
                db, client_quote_id, target.value, timestamp_column=timestamp_column
            )
            client_quote["status"] = target.value
            self.status_sync.advance_many(
                db,
                item_ids,
                trigger,
                actor_id=actor_id,
                details={"client_quote_id": client_quote_id, "quote_number": client_quote["quote_number"]},
            )

        logger.info(
            "client_quote_status_changed",
            extra={
                "tenant_id": self.tenant_id,
                "client_quote_id": client_quote_id,
                "old_status": current.value,
                "new_status": target.value,
            },
        )
        client_quote["changed"] = True
        return client_quote

    def _invoice_items(self, db, lines) -> None:
        items = {int(item["id"]): item for item in self.items.list_by_ids(db, [line["item_id"] for line in lines], for_update=True)}
        for line in lines:
            item = items[int(line["item_id"])]
            fields: Dict[str, Any] = {"client_price": line["client_price"]}
            if item["payment_status"] == PaymentStatus.NOT_INVOICED.value:
                fields["payment_status"] = PaymentStatus.INVOICED.value
            try:
                self.items.update(db, item, **fields)
            except ConcurrencyConflict:
                observe_concurrency_conflict("issue_invoice")
                raise
