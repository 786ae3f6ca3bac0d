from __future__ import annotations

import logging
from decimal import Decimal

from ffe_sync.application.quote_registry import load_target
from ffe_sync.application.status_sync import StatusSyncEngine
from ffe_sync.core.event_bus import EventBus, QuoteAccepted, get_event_bus
from ffe_sync.domain.contracts import AcceptResult, QuoteTarget, jsonable
from ffe_sync.domain.money import ZERO, to_decimal
from ffe_sync.domain.statuses import StatusTrigger
from ffe_sync.errors import ConcurrencyConflict, InvalidTransition, ValidationError, not_found
from ffe_sync.infrastructure.repositories.activity_repository import ActivityRepository
from ffe_sync.infrastructure.repositories.base import utc_now_iso
from ffe_sync.infrastructure.repositories.item_repository import ComponentRepository, ItemRepository
from ffe_sync.infrastructure.repositories.quote_repository import QuoteLineItemRepository
from ffe_sync.observability import observe_concurrency_conflict


logger = logging.getLogger("ffe_sync.quote_acceptance")


def parse_markup(value) -> Decimal | None:
    if value is None or str(value).strip() == "":
        return None
    markup = to_decimal(value)
    if not markup.is_finite() or markup < ZERO:
        raise ValidationError(
            code="validation_error",
            details="markup_percent must be a non-negative number",
            payload={"field": "markup_percent"},
        )
    return markup


class QuoteAcceptanceService:
    def __init__(
        self,
        tenant_id: str,
        *,
        event_bus: EventBus | None = None,
        status_sync: StatusSyncEngine | None = None,
    ) -> None:
        self.tenant_id = tenant_id
        self.event_bus = event_bus or get_event_bus()
        self.status_sync = status_sync or StatusSyncEngine(tenant_id, event_bus=self.event_bus)
        self.items = ItemRepository(tenant_id=tenant_id)
        self.components = ComponentRepository(tenant_id=tenant_id)
        self.quotes = QuoteLineItemRepository(tenant_id=tenant_id)
        self.activity = ActivityRepository(tenant_id=tenant_id)

    def accept(
        self,
        db,
        item_id: int,
        quote_line_item_id: int,
        actor_id: str | None = None,
        *,
        component_id: int | None = None,
        markup_percent=None,
    ) -> AcceptResult:
        target = QuoteTarget(item_id=item_id, component_id=component_id)
        markup = parse_markup(markup_percent)

        with db.transaction():
            item, component = load_target(db, self.items, self.components, target, for_update=True)
            quote = self.quotes.get_by_id(db, quote_line_item_id)
            if quote is None:
                raise not_found("quote", quote_line_item_id)
            if quote["target_type"] != target.target_type or int(quote["target_id"]) != target.target_id:
                raise InvalidTransition(
                    code="quote_target_mismatch",
                    message_key="quote_target_mismatch",
                    details=f"quote {quote_line_item_id} belongs to another {target.target_type}",
                    payload={"quote_line_item_id": quote_line_item_id},
                )

            if not quote["is_latest_version"]:
                raise InvalidTransition(
                    code="quote_not_latest",
                    message_key="quote_not_latest",
                    details=f"quote {quote_line_item_id} was superseded",
                    payload={"quote_line_item_id": quote_line_item_id},
                )

            now = utc_now_iso()
            if quote["is_accepted"]:
                # Redelivered accept: only the timestamp moves.
                self.quotes.touch_accepted_at(db, int(quote["id"]), now)
                quote["accepted_at"] = now
                logger.info(
                    "quote_accept_repeated",
                    extra={"tenant_id": self.tenant_id, "item_id": item_id, "quote_line_item_id": quote["id"]},
                )
                return AcceptResult(quote=quote, item=item, component=component, changed=False)

            previous = self.quotes.find_accepted(db, target_type=target.target_type, target_id=target.target_id)
            previous_id = int(previous["id"]) if previous is not None else None
            # The accepted index allows one flag per target, so clear before setting.
            self.quotes.clear_accepted(
                db,
                target_type=target.target_type,
                target_id=target.target_id,
                except_id=int(quote["id"]),
            )
            self.quotes.mark_accepted(
                db,
                int(quote["id"]),
                accepted_at=now,
                accepted_by_id=actor_id,
                markup_percent=markup,
            )
            quote.update(is_accepted=True, accepted_at=now, accepted_by_id=actor_id, markup_percent=markup)

            fields = {
                "accepted_quote_id": int(quote["id"]),
                "trade_price": quote["unit_price"],
                "supplier_id": quote["supplier_id"],
                "review_required": False,
            }
            try:
                if component is not None:
                    component = self.components.update(db, component, **fields)
                else:
                    if markup is not None:
                        fields["markup_percent"] = markup
                    item = self.items.update(db, item, **fields)
            except ConcurrencyConflict:
                observe_concurrency_conflict("accept")
                raise

            self.activity.append(
                db,
                item_id=int(item["id"]),
                component_id=component_id,
                entry_type="quote_accepted",
                actor_id=actor_id,
                details={
                    "quote_line_item_id": quote["id"],
                    "previous_quote_line_item_id": previous_id,
                    "supplier_id": quote["supplier_id"],
                    "unit_price": jsonable(quote["unit_price"]),
                    "markup_percent": jsonable(markup),
                },
            )

            status_change = None
            if component is None:
                status_change = self.status_sync.advance(
                    db,
                    int(item["id"]),
                    StatusTrigger.QUOTE_ACCEPTED,
                    actor_id=actor_id,
                    details={"quote_line_item_id": quote["id"]},
                )
                item = status_change.item

            event = QuoteAccepted(
                tenant_id=self.tenant_id,
                item_id=int(item["id"]),
                component_id=component_id,
                quote_line_item_id=int(quote["id"]),
                supplier_id=str(quote["supplier_id"]),
                unit_price=str(jsonable(quote["unit_price"])),
                previous_quote_line_item_id=previous_id,
                actor_id=actor_id,
            )
            db.after_commit(lambda: self.event_bus.publish(event))

        logger.info(
            "quote_accepted",
            extra={
                "tenant_id": self.tenant_id,
                "item_id": item_id,
                "component_id": component_id,
                "quote_line_item_id": quote["id"],
                "previous_quote_line_item_id": previous_id,
            },
        )
        return AcceptResult(
            quote=quote,
            item=item,
            component=component,
            previous_quote_id=previous_id,
            changed=True,
            status_change=status_change,
        )
