from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Tuple

from ffe_sync.application.status_sync import StatusSyncEngine
from ffe_sync.core.event_bus import EventBus, OrderCreated, OrderStatusChanged, get_event_bus
from ffe_sync.domain.contracts import (
    OrderCreationResult,
    OrderLinePlan,
    OrderPlan,
    OrderStatusResult,
    SkippedItem,
    SupplierOrderPlan,
    jsonable,
)
from ffe_sync.domain.money import quantize
from ffe_sync.domain.statuses import (
    ORDER_STATUS_TRIGGERS,
    ORDER_STATUSES_FULFILLED,
    OrderStatus,
    PaymentStatus,
    StatusTrigger,
    order_status_rank,
)
from ffe_sync.errors import InvalidTransition, ValidationError, not_found
from ffe_sync.infrastructure.repositories.activity_repository import ActivityRepository
from ffe_sync.infrastructure.repositories.client_quote_repository import (
    ClientQuoteLineRepository,
    ClientQuoteRepository,
    next_sequence_number,
)
from ffe_sync.infrastructure.repositories.item_repository import ComponentRepository, ItemRepository
from ffe_sync.infrastructure.repositories.order_repository import OrderItemRepository, OrderRepository
from ffe_sync.infrastructure.repositories.quote_repository import QuoteLineItemRepository
from ffe_sync.observability import observe_orders_created


logger = logging.getLogger("ffe_sync.order_orchestrator")

SKIP_NOT_IN_CLIENT_QUOTE = "not_in_client_quote"
SKIP_NO_ACCEPTED_QUOTE = "no_accepted_quote"
SKIP_NO_SUPPLIER = "no_supplier"
SKIP_NOT_PAID = "not_paid"
SKIP_NOT_FULLY_PAID = "not_fully_paid"
SKIP_ALREADY_ORDERED = "already_ordered"


class OrderOrchestrator:
    def __init__(
        self,
        tenant_id: str,
        *,
        requires_full_payment: bool = False,
        number_prefix: str = "PO",
        event_bus: EventBus | None = None,
        status_sync: StatusSyncEngine | None = None,
    ) -> None:
        self.tenant_id = tenant_id
        self.requires_full_payment = requires_full_payment
        self.number_prefix = number_prefix
        self.event_bus = event_bus or get_event_bus()
        self.status_sync = status_sync or StatusSyncEngine(tenant_id, event_bus=self.event_bus)
        self.items = ItemRepository(tenant_id=tenant_id)
        self.components = ComponentRepository(tenant_id=tenant_id)
        self.quotes = QuoteLineItemRepository(tenant_id=tenant_id)
        self.client_quotes = ClientQuoteRepository(tenant_id=tenant_id)
        self.client_quote_lines = ClientQuoteLineRepository(tenant_id=tenant_id)
        self.orders = OrderRepository(tenant_id=tenant_id)
        self.order_items = OrderItemRepository(tenant_id=tenant_id)
        self.activity = ActivityRepository(tenant_id=tenant_id)

    def preview_orders(self, db, client_quote_id: int, *, item_ids: Iterable[int] | None = None) -> OrderPlan:
        return self._plan(db, client_quote_id, item_ids)

    def create_orders(
        self,
        db,
        client_quote_id: int,
        actor_id: str | None = None,
        *,
        item_ids: Iterable[int] | None = None,
    ) -> OrderCreationResult:
        created: List[dict] = []
        with db.transaction():
            plan = self._plan(db, client_quote_id, item_ids, for_update=True)
            if not plan.suppliers:
                raise ValidationError(
                    code="nothing_to_order",
                    message_key="nothing_to_order",
                    payload={"skipped": [entry.to_payload() for entry in plan.skipped]},
                )
            year = datetime.now(timezone.utc).year
            for supplier_plan in plan.suppliers:
                created.append(self._create_order(db, client_quote_id, supplier_plan, year=year, actor_id=actor_id))
            db.after_commit(lambda: observe_orders_created(len(created)))

        logger.info(
            "orders_created",
            extra={
                "tenant_id": self.tenant_id,
                "client_quote_id": client_quote_id,
                "orders": [order["order_number"] for order in created],
                "skipped": len(plan.skipped),
            },
        )
        return OrderCreationResult(orders=created, skipped=plan.skipped)

    def _create_order(self, db, client_quote_id: int, supplier_plan: SupplierOrderPlan, *, year: int, actor_id):
        number = next_sequence_number(
            db,
            table="orders",
            column="order_number",
            tenant_id=self.tenant_id,
            prefix=self.number_prefix,
            year=year,
        )
        order = self.orders.create(
            db,
            order_number=number,
            client_quote_id=client_quote_id,
            supplier_id=supplier_plan.supplier_id,
            supplier_name=supplier_plan.supplier_name,
            currency=supplier_plan.currency,
            subtotal=quantize(supplier_plan.subtotal, supplier_plan.currency),
            created_by=actor_id,
        )
        for line in supplier_plan.lines:
            self.order_items.insert(
                db,
                order_id=int(order["id"]),
                item_id=line.item_id,
                component_id=line.component_id,
                name=line.name,
                quantity=line.quantity,
                unit_price=line.unit_price,
                total_price=line.total_price,
                quote_line_item_id=line.quote_line_item_id,
                client_quote_line_item_id=line.client_quote_line_item_id,
            )
        for item_id in supplier_plan.item_ids:
            self.activity.append(
                db,
                item_id=item_id,
                entry_type="order_created",
                actor_id=actor_id,
                details={"order_id": order["id"], "order_number": number, "supplier_id": supplier_plan.supplier_id},
            )
        self.status_sync.advance_many(
            db,
            supplier_plan.own_item_ids,
            StatusTrigger.ORDER_CREATED,
            actor_id=actor_id,
            details={"order_id": order["id"], "order_number": number},
        )
        event = OrderCreated(
            tenant_id=self.tenant_id,
            order_id=int(order["id"]),
            order_number=number,
            supplier_id=supplier_plan.supplier_id,
            client_quote_id=client_quote_id,
            item_ids=supplier_plan.item_ids,
            actor_id=actor_id,
        )
        db.after_commit(lambda: self.event_bus.publish(event))
        order["items"] = self.order_items.list_for_order(db, int(order["id"]), currency=order["currency"])
        return order

    def _plan(self, db, client_quote_id: int, item_ids: Iterable[int] | None, *, for_update: bool = False) -> OrderPlan:
        client_quote = self.client_quotes.get(db, client_quote_id)
        if client_quote is None:
            raise not_found("client_quote", client_quote_id)
        currency = client_quote["currency"]
        lines = self.client_quote_lines.list_for_quote(db, client_quote_id, currency=currency)

        skipped: List[SkippedItem] = []
        if item_ids is not None:
            wanted = list(dict.fromkeys(int(item_id) for item_id in item_ids))
            in_quote = {int(line["item_id"]) for line in lines}
            skipped.extend(SkippedItem(item_id, SKIP_NOT_IN_CLIENT_QUOTE) for item_id in wanted if item_id not in in_quote)
            lines = [line for line in lines if int(line["item_id"]) in set(wanted)]

        items = {
            int(item["id"]): item
            for item in self.items.list_by_ids(db, [line["item_id"] for line in lines], for_update=for_update)
        }
        live_lines = self.orders.live_order_lines(db, items.keys())

        grouped: Dict[str, List[OrderLinePlan]] = {}
        supplier_names: Dict[str, str | None] = {}
        for line in lines:
            item = items[int(line["item_id"])]
            reason = self._skip_reason(item)
            if reason:
                skipped.append(SkippedItem(int(item["id"]), reason))
                continue
            pending = [
                entry
                for entry in self._order_lines(db, item, line)
                if (entry[2].item_id, entry[2].component_id) not in live_lines
            ]
            if not pending:
                skipped.append(SkippedItem(int(item["id"]), SKIP_ALREADY_ORDERED))
                continue
            for supplier_id, supplier_name, order_line in pending:
                grouped.setdefault(supplier_id, []).append(order_line)
                if supplier_names.get(supplier_id) is None:
                    supplier_names[supplier_id] = supplier_name

        suppliers = tuple(
            SupplierOrderPlan(
                supplier_id=supplier_id,
                supplier_name=supplier_names.get(supplier_id),
                currency=currency,
                lines=tuple(grouped[supplier_id]),
            )
            for supplier_id in sorted(grouped)
        )
        return OrderPlan(client_quote_id=client_quote_id, suppliers=suppliers, skipped=tuple(skipped))

    def _skip_reason(self, item: dict) -> str | None:
        if item["accepted_quote_id"] is None:
            return SKIP_NO_ACCEPTED_QUOTE
        if not item["supplier_id"]:
            return SKIP_NO_SUPPLIER
        if item["payment_status"] == PaymentStatus.FULLY_PAID.value:
            return None
        if item["payment_status"] == PaymentStatus.DEPOSIT_PAID.value:
            return SKIP_NOT_FULLY_PAID if self.requires_full_payment else None
        return SKIP_NOT_PAID

    def _order_lines(self, db, item: dict, client_line: dict) -> List[Tuple[str, str | None, OrderLinePlan]]:
        currency = item["currency"]
        quote = self.quotes.get_by_id(db, int(item["accepted_quote_id"]))
        quantity = int(item["quantity"])
        planned = [
            (
                str(item["supplier_id"]),
                quote["supplier_name"] if quote else None,
                OrderLinePlan(
                    item_id=int(item["id"]),
                    name=item["name"],
                    quantity=quantity,
                    unit_price=item["trade_price"],
                    total_price=quantize(item["trade_price"] * quantity, currency),
                    quote_line_item_id=int(item["accepted_quote_id"]),
                    client_quote_line_item_id=int(client_line["id"]),
                ),
            )
        ]
        for component in self.components.list_for_item(db, int(item["id"]), currency=currency):
            if component["accepted_quote_id"] is None or not component["supplier_id"]:
                continue
            component_quote = self.quotes.get_by_id(db, int(component["accepted_quote_id"]))
            component_quantity = int(component["quantity"])
            planned.append(
                (
                    str(component["supplier_id"]),
                    component_quote["supplier_name"] if component_quote else None,
                    OrderLinePlan(
                        item_id=int(item["id"]),
                        component_id=int(component["id"]),
                        name=component["name"],
                        quantity=component_quantity,
                        unit_price=component["trade_price"],
                        total_price=quantize(component["trade_price"] * component_quantity, currency),
                        quote_line_item_id=int(component["accepted_quote_id"]),
                    ),
                )
            )
        return planned

    def _items_reaching(self, db, order_lines: List[dict], target: OrderStatus) -> List[int]:
        """Items on their own line move with the order. An item present only through
        components moves once every live order holding any of its lines has reached target."""
        item_ids = list(dict.fromkeys(int(line["item_id"]) for line in order_lines))
        own = {int(line["item_id"]) for line in order_lines if not line["is_component"]}
        through_components = [item_id for item_id in item_ids if item_id not in own]
        statuses = self.orders.live_order_statuses(db, through_components)
        ready = {
            item_id
            for item_id in through_components
            if all(
                order_status_rank(OrderStatus(status)) >= order_status_rank(target)
                for status in statuses.get(item_id, {}).values()
            )
        }
        return [item_id for item_id in item_ids if item_id in own or item_id in ready]

    def get_order(self, db, order_id: int) -> dict:
        order = self.orders.get(db, order_id)
        if order is None:
            raise not_found("order", order_id)
        order["items"] = self.order_items.list_for_order(db, order_id, currency=order["currency"])
        return order

    def update_order_status(self, db, order_id: int, new_status, actor_id: str | None = None) -> OrderStatusResult:
        try:
            target = OrderStatus.parse(new_status)
        except ValueError as exc:
            raise ValidationError(
                code="order_status_invalid",
                message_key="order_status_invalid",
                details=f"unknown order status: {new_status!r}",
                payload={"status": str(new_status)},
            ) from exc

        with db.transaction():
            order = self.orders.get(db, order_id, for_update=True)
            if order is None:
                raise not_found("order", order_id)
            current = OrderStatus(order["status"])

            if current == OrderStatus.CANCELLED:
                if target == OrderStatus.CANCELLED:
                    return OrderStatusResult(order=self.get_order(db, order_id), changed=False)
                raise InvalidTransition(
                    code="order_status_invalid",
                    message_key="order_status_invalid",
                    details=f"order {order_id} is cancelled",
                    payload={"order_id": order_id, "status": current.value},
                )
            if target == OrderStatus.CANCELLED:
                if current in ORDER_STATUSES_FULFILLED:
                    raise InvalidTransition(
                        code="order_status_invalid",
                        message_key="order_status_invalid",
                        details=f"order {order_id} was already {current.value.lower()}",
                        payload={"order_id": order_id, "status": current.value},
                    )
            elif order_status_rank(target) <= order_status_rank(current):
                return OrderStatusResult(order=self.get_order(db, order_id), changed=False)

            self.orders.set_status(db, order_id, target.value)
            order = self.get_order(db, order_id)
            item_ids = list(dict.fromkeys(int(line["item_id"]) for line in order["items"]))
            changes: Tuple = ()
            if target != OrderStatus.CANCELLED:
                changes = tuple(
                    self.status_sync.advance_many(
                        db,
                        self._items_reaching(db, order["items"], target),
                        ORDER_STATUS_TRIGGERS[target],
                        actor_id=actor_id,
                        details={"order_id": order_id, "order_status": target.value},
                    )
                )
            for item_id in item_ids:
                self.activity.append(
                    db,
                    item_id=item_id,
                    entry_type="order_status_changed",
                    actor_id=actor_id,
                    details={
                        "order_id": order_id,
                        "order_number": order["order_number"],
                        "old_status": current.value,
                        "new_status": target.value,
                    },
                )
            event = OrderStatusChanged(
                tenant_id=self.tenant_id,
                order_id=order_id,
                old_status=current.value,
                new_status=target.value,
                actor_id=actor_id,
            )
            db.after_commit(lambda: self.event_bus.publish(event))

        logger.info(
            "order_status_changed",
            extra={
                "tenant_id": self.tenant_id,
                "order_id": order_id,
                "old_status": current.value,
                "new_status": target.value,
                "items_advanced": sum(1 for change in changes if change.changed),
                "subtotal": jsonable(order["subtotal"]),
            },
        )
        return OrderStatusResult(order=order, changed=True, status_changes=changes)
