from __future__ import annotations

import logging
from typing import Any, Dict

from ffe_sync.domain.money import normalize_currency
from ffe_sync.domain.validation import optional_text, parse_quantity, require_text
from ffe_sync.errors import not_found
from ffe_sync.infrastructure.repositories.activity_repository import ActivityRepository
from ffe_sync.infrastructure.repositories.client_quote_repository import ClientQuoteRepository
from ffe_sync.infrastructure.repositories.item_repository import ComponentRepository, ItemRepository
from ffe_sync.infrastructure.repositories.order_repository import OrderRepository
from ffe_sync.infrastructure.repositories.quote_repository import QuoteLineItemRepository
from ffe_sync.messages import status_label


logger = logging.getLogger("ffe_sync.items")

SUMMARY_ACTIVITY_LIMIT = 20


class ItemService:
    def __init__(self, tenant_id: str, *, default_currency: str = "USD") -> None:
        self.tenant_id = tenant_id
        self.default_currency = default_currency
        self.items = ItemRepository(tenant_id=tenant_id)
        self.components = ComponentRepository(tenant_id=tenant_id)
        self.quotes = QuoteLineItemRepository(tenant_id=tenant_id)
        self.client_quotes = ClientQuoteRepository(tenant_id=tenant_id)
        self.orders = OrderRepository(tenant_id=tenant_id)
        self.activity = ActivityRepository(tenant_id=tenant_id)

    def register_item(
        self,
        db,
        *,
        name,
        quantity: Any = 1,
        currency: str | None = None,
        project_id: str | None = None,
        room_id: str | None = None,
        actor_id: str | None = None,
    ) -> dict:
        item_name = require_text(name, field="name")
        parsed_quantity = parse_quantity(quantity)
        resolved_currency = normalize_currency(currency, self.default_currency)
        with db.transaction():
            item = self.items.create(
                db,
                name=item_name,
                quantity=parsed_quantity,
                currency=resolved_currency,
                project_id=optional_text(project_id),
                room_id=optional_text(room_id),
            )
            self.activity.append(
                db,
                item_id=int(item["id"]),
                entry_type="item_registered",
                actor_id=actor_id,
                new_status=item["status"],
            )
        logger.info("item_registered", extra={"tenant_id": self.tenant_id, "item_id": item["id"]})
        return item

    def register_component(self, db, item_id: int, *, name, quantity: Any = 1, actor_id: str | None = None) -> dict:
        component_name = require_text(name, field="name")
        parsed_quantity = parse_quantity(quantity)
        with db.transaction():
            item = self.items.get(db, item_id, for_update=True)
            if item is None:
                raise not_found("item", item_id)
            component = self.components.create(db, item_id=item_id, name=component_name, quantity=parsed_quantity)
            self.activity.append(
                db,
                item_id=item_id,
                component_id=int(component["id"]),
                entry_type="component_registered",
                actor_id=actor_id,
            )
        logger.info(
            "component_registered",
            extra={"tenant_id": self.tenant_id, "item_id": item_id, "component_id": component["id"]},
        )
        return component

    def get_item(self, db, item_id: int) -> dict:
        item = self.items.get(db, item_id)
        if item is None:
            raise not_found("item", item_id)
        return item

    def list_activity(self, db, item_id: int, *, limit: int = 120) -> list[dict]:
        self.get_item(db, item_id)
        return self.activity.list_for_item(db, item_id, limit=max(1, min(int(limit), 500)))

    def get_item_summary(self, db, item_id: int) -> Dict[str, Any]:
        """Read-only snapshot of every procurement stage; advisory, never used for decisions."""
        item = self.get_item(db, item_id)
        accepted = None
        if item["accepted_quote_id"] is not None:
            accepted = self.quotes.get_by_id(db, int(item["accepted_quote_id"]))
        latest = self.quotes.list_latest(db, target_type="item", target_id=item_id)
        alternatives = [quote for quote in latest if accepted is None or quote["id"] != accepted["id"]]

        if accepted is not None and item["review_required"]:
            quote_stage = "pending_review"
        elif accepted is not None:
            quote_stage = "accepted"
        elif latest:
            quote_stage = "pending_review"
        else:
            quote_stage = "no_quotes"

        components = self.components.list_for_item(db, item_id, currency=item["currency"])
        return {
            "item": dict(item, status_label=status_label(item["status"])),
            "components": components,
            "quote": {
                "stage": quote_stage,
                "quote_count": self.quotes.count_for_item(db, item_id),
                "accepted": accepted,
                "alternatives": alternatives,
                "review_required": bool(item["review_required"]),
            },
            "budget": self.client_quotes.latest_for_item(db, item_id),
            "invoice": {
                "payment_status": item["payment_status"],
                "payment_status_label": status_label(item["payment_status"]),
                "client_price": item["client_price"],
                "paid_amount": item["paid_amount"],
            },
            "order": self.orders.latest_for_item(db, item_id),
            "activity": self.activity.list_for_item(db, item_id, limit=SUMMARY_ACTIVITY_LIMIT),
        }
