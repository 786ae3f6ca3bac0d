from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterator, List

from ffe_sync.application.status_sync import StatusSyncEngine
from ffe_sync.core.event_bus import EventBus, QuoteIngested, get_event_bus
from ffe_sync.domain.contracts import IngestResult, QuoteComparisonEntry, QuoteInput, QuoteTarget, jsonable
from ffe_sync.domain.money import ZERO, normalize_currency, parse_amount, quantize
from ffe_sync.domain.statuses import StatusTrigger
from ffe_sync.domain.validation import optional_text, parse_optional_non_negative_int, parse_quantity, require_text
from ffe_sync.errors import ConcurrencyConflict, SystemError, not_found
from ffe_sync.infrastructure.repositories.activity_repository import ActivityRepository
from ffe_sync.infrastructure.repositories.item_repository import ComponentRepository, ItemRepository
from ffe_sync.infrastructure.repositories.quote_repository import QuoteLineItemRepository
from ffe_sync.observability import observe_concurrency_conflict


logger = logging.getLogger("ffe_sync.quote_registry")

_PERCENT = Decimal("0.01")


def load_target(db, items: ItemRepository, components: ComponentRepository, target: QuoteTarget, *, for_update=False):
    item = items.get(db, target.item_id, for_update=for_update)
    if item is None:
        raise not_found("item", target.item_id)
    component = None
    if target.component_id is not None:
        component = components.get(db, target.component_id, for_update=for_update, currency=item["currency"])
        if component is None or int(component["item_id"]) != int(item["id"]):
            raise not_found("component", target.component_id)
    return item, component


class QuoteComparison:
    """Latest quote per supplier for one target, ranked against the lowest price.

    Nothing is cached: each iteration reads the current quotes again, so the
    same object can be iterated repeatedly and always reflects the store.
    """

    def __init__(self, registry: "QuoteRegistry", db, target: QuoteTarget) -> None:
        self._registry = registry
        self._db = db
        self.target = target

    def __iter__(self) -> Iterator[QuoteComparisonEntry]:
        return self._registry._compare(self._db, self.target)

    def to_payload(self) -> dict:
        return {
            "item_id": self.target.item_id,
            "component_id": self.target.component_id,
            "quotes": [entry.to_payload() for entry in self],
        }


class QuoteRegistry:
    def __init__(
        self,
        tenant_id: str,
        *,
        default_currency: str = "USD",
        event_bus: EventBus | None = None,
        status_sync: StatusSyncEngine | None = None,
    ) -> None:
        self.tenant_id = tenant_id
        self.default_currency = default_currency
        self.event_bus = event_bus or get_event_bus()
        self.status_sync = status_sync or StatusSyncEngine(tenant_id, event_bus=self.event_bus)
        self.items = ItemRepository(tenant_id=tenant_id)
        self.components = ComponentRepository(tenant_id=tenant_id)
        self.quotes = QuoteLineItemRepository(tenant_id=tenant_id)
        self.activity = ActivityRepository(tenant_id=tenant_id)

    def ingest(
        self,
        db,
        target: QuoteTarget,
        quote_input: QuoteInput,
        *,
        actor_id: str | None = None,
    ) -> IngestResult:
        supplier_id = require_text(quote_input.supplier_id, field="supplier_id", code="supplier_required")
        quantity = parse_quantity(quote_input.quantity)
        lead_time_days = parse_optional_non_negative_int(quote_input.lead_time_days, field="lead_time_days")

        with db.transaction():
            item, component = load_target(db, self.items, self.components, target, for_update=True)
            currency = normalize_currency(quote_input.currency, item["currency"] or self.default_currency)
            unit_price = parse_amount(quote_input.unit_price, currency, field="unit_price", allow_zero=True)
            if quote_input.total_price is None or str(quote_input.total_price).strip() == "":
                total_price = quantize(unit_price * quantity, currency)
            else:
                total_price = parse_amount(quote_input.total_price, currency, field="total_price", allow_zero=True)

            previous = self.quotes.find_latest(
                db,
                target_type=target.target_type,
                target_id=target.target_id,
                supplier_id=supplier_id,
            )
            version = 1
            previous_id = None
            review_required = False
            if previous is not None:
                self.quotes.mark_superseded(db, int(previous["id"]))
                version = int(previous["version"]) + 1
                previous_id = int(previous["id"])
                review_required = bool(previous["is_accepted"])

            quote = self.quotes.insert(
                db,
                target_type=target.target_type,
                target_id=target.target_id,
                item_id=int(item["id"]),
                component_id=target.component_id,
                supplier_id=supplier_id,
                supplier_name=optional_text(quote_input.supplier_name),
                unit_price=unit_price,
                quantity=quantity,
                total_price=total_price,
                currency=currency,
                lead_time_days=lead_time_days,
                document_ref=optional_text(quote_input.document_ref),
                version=version,
                previous_version_id=previous_id,
            )

            if review_required:
                self._flag_for_review(db, item, component)

            self.activity.append(
                db,
                item_id=int(item["id"]),
                component_id=target.component_id,
                entry_type="quote_ingested",
                actor_id=actor_id,
                details={
                    "quote_line_item_id": quote["id"],
                    "supplier_id": supplier_id,
                    "version": version,
                    "previous_version_id": previous_id,
                    "unit_price": jsonable(unit_price),
                    "review_required": review_required,
                },
            )

            status_change = None
            if target.component_id is None:
                status_change = self.status_sync.advance(
                    db,
                    int(item["id"]),
                    StatusTrigger.QUOTE_RECEIVED,
                    actor_id=actor_id,
                    details={"quote_line_item_id": quote["id"]},
                )

            event = QuoteIngested(
                tenant_id=self.tenant_id,
                item_id=int(item["id"]),
                component_id=target.component_id,
                quote_line_item_id=int(quote["id"]),
                supplier_id=supplier_id,
                version=version,
                review_required=review_required,
            )
            db.after_commit(lambda: self.event_bus.publish(event))

        logger.info(
            "quote_ingested",
            extra={
                "tenant_id": self.tenant_id,
                "item_id": item["id"],
                "component_id": target.component_id,
                "quote_line_item_id": quote["id"],
                "supplier_id": supplier_id,
                "version": version,
                "review_required": review_required,
            },
        )
        return IngestResult(
            quote=quote,
            superseded_quote_id=previous_id,
            review_required=review_required,
            status_change=status_change,
        )

    def _flag_for_review(self, db, item: dict, component: dict | None) -> None:
        try:
            if component is not None:
                self.components.update(db, component, review_required=True)
            else:
                self.items.update(db, item, review_required=True)
        except ConcurrencyConflict:
            observe_concurrency_conflict("ingest")
            raise
        self.activity.append(
            db,
            item_id=int(item["id"]),
            component_id=component["id"] if component is not None else None,
            entry_type="quote_review_required",
            details={"accepted_quote_id": (component or item).get("accepted_quote_id")},
        )

    def get_comparison(self, db, item_id: int, *, component_id: int | None = None) -> QuoteComparison:
        target = QuoteTarget(item_id=item_id, component_id=component_id)
        load_target(db, self.items, self.components, target)
        return QuoteComparison(self, db, target)

    def _compare(self, db, target: QuoteTarget) -> Iterator[QuoteComparisonEntry]:
        quotes = self.quotes.list_latest(db, target_type=target.target_type, target_id=target.target_id)
        if not quotes:
            return
        accepted = self.quotes.find_accepted(db, target_type=target.target_type, target_id=target.target_id)
        lowest = min(quote["unit_price"] for quote in quotes)
        for quote in quotes:
            delta = quote["unit_price"] - lowest
            percent = ZERO
            if lowest > ZERO:
                percent = (delta / lowest * 100).quantize(_PERCENT, rounding=ROUND_HALF_UP)
            delta_vs_accepted = None
            if accepted is not None:
                delta_vs_accepted = quote["unit_price"] - accepted["unit_price"]
            yield QuoteComparisonEntry(
                quote=quote,
                delta_vs_lowest=delta,
                delta_vs_lowest_percent=percent,
                is_lowest=quote["unit_price"] == lowest,
                delta_vs_accepted=delta_vs_accepted,
            )

    def get_version_chain(self, db, quote_id: int) -> List[dict]:
        """Newest first, back to version 1."""
        quote = self.quotes.get_by_id(db, quote_id)
        if quote is None:
            raise not_found("quote", quote_id)
        chain = [quote]
        seen = {int(quote["id"])}
        while quote["previous_version_id"] is not None:
            previous_id = int(quote["previous_version_id"])
            if previous_id in seen:
                raise SystemError(
                    code="quote_chain_cycle",
                    details=f"quote version chain loops at {previous_id}",
                    payload={"quote_line_item_id": quote_id},
                )
            quote = self.quotes.get_by_id(db, previous_id)
            if quote is None:
                raise SystemError(
                    code="quote_chain_broken",
                    details=f"quote version chain references missing quote {previous_id}",
                    payload={"quote_line_item_id": quote_id},
                )
            seen.add(previous_id)
            chain.append(quote)
        return chain
