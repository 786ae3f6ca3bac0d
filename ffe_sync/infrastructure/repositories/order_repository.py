from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from ffe_sync.domain.money import to_db_amount
from ffe_sync.infrastructure.repositories.base import BaseRepository, utc_now_iso


_STATUS_TIMESTAMP_COLUMNS = {
    "ORDERED": "ordered_at",
    "CONFIRMED": "confirmed_at",
    "SHIPPED": "shipped_at",
    "DELIVERED": "delivered_at",
    "INSTALLED": "installed_at",
    "COMPLETED": "completed_at",
    "CANCELLED": "cancelled_at",
}


class OrderRepository(BaseRepository):
    money_fields = ("subtotal",)

    def get(self, db, order_id: int, *, for_update: bool = False) -> dict | None:
        row = db.execute(
            f"""
            SELECT *
            FROM orders
            WHERE id = ? AND tenant_id = ?
            {db.for_update() if for_update else ""}
            """,
            (order_id, self.tenant_id),
        ).fetchone()
        return self.hydrate(row)

    def create(
        self,
        db,
        *,
        order_number: str,
        client_quote_id: int | None,
        supplier_id: str,
        supplier_name: str | None,
        currency: str,
        subtotal: Decimal,
        created_by: str | None,
    ) -> dict:
        now = utc_now_iso()
        cursor = db.execute(
            """
            INSERT INTO orders (
                tenant_id, client_quote_id, order_number, supplier_id, supplier_name, status,
                currency, subtotal, created_by, ordered_at, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, 'ORDERED', ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                self.tenant_id,
                client_quote_id,
                order_number,
                supplier_id,
                supplier_name,
                currency,
                to_db_amount(subtotal),
                created_by,
                now,
                now,
                now,
            ),
        )
        return self.get(db, self.inserted_id(cursor))

    def set_status(self, db, order_id: int, status: str) -> str:
        now = utc_now_iso()
        column = _STATUS_TIMESTAMP_COLUMNS[status]
        db.execute(
            f"""
            UPDATE orders
            SET status = ?, {column} = COALESCE({column}, ?), updated_at = ?
            WHERE id = ? AND tenant_id = ?
            """,
            (status, now, now, order_id, self.tenant_id),
        )
        return now

    def list_for_client_quote(self, db, client_quote_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT *
            FROM orders
            WHERE client_quote_id = ? AND tenant_id = ?
            ORDER BY id
            """,
            (client_quote_id, self.tenant_id),
        ).fetchall()
        return self.hydrate_all(rows)

    def latest_for_item(self, db, item_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT o.id, o.order_number, o.status, o.supplier_id, o.supplier_name, o.currency, o.subtotal,
                   o.ordered_at, o.shipped_at, o.delivered_at, o.installed_at, o.completed_at
            FROM order_items oi
            JOIN orders o ON o.id = oi.order_id AND o.tenant_id = oi.tenant_id
            WHERE oi.item_id = ? AND oi.tenant_id = ?
            ORDER BY o.id DESC
            LIMIT 1
            """,
            (item_id, self.tenant_id),
        ).fetchone()
        return self.hydrate(row)

    def _live_lines(self, db, item_ids: Iterable[int]) -> list:
        ids = list(dict.fromkeys(int(item_id) for item_id in item_ids))
        if not ids:
            return []
        return db.execute(
            f"""
            SELECT oi.item_id, oi.component_id, oi.is_component, o.id AS order_id, o.status
            FROM order_items oi
            JOIN orders o ON o.id = oi.order_id AND o.tenant_id = oi.tenant_id
            WHERE oi.tenant_id = ? AND o.status <> 'CANCELLED'
              AND oi.item_id IN ({self.placeholders(ids)})
            """,
            (self.tenant_id, *ids),
        ).fetchall()

    def live_order_lines(self, db, item_ids: Iterable[int]) -> set[tuple[int, int | None]]:
        """(item_id, component_id) pairs on a live (non-cancelled) order; component_id is None for the item itself."""
        return {
            (int(row["item_id"]), int(row["component_id"]) if row["is_component"] else None)
            for row in self._live_lines(db, item_ids)
        }

    def live_order_statuses(self, db, item_ids: Iterable[int]) -> dict[int, dict[int, str]]:
        """Per item, the status of every live order holding one of its lines, keyed by order id."""
        statuses: dict[int, dict[int, str]] = {}
        for row in self._live_lines(db, item_ids):
            statuses.setdefault(int(row["item_id"]), {})[int(row["order_id"])] = str(row["status"])
        return statuses


class OrderItemRepository(BaseRepository):
    money_fields = ("unit_price", "total_price")
    flag_fields = ("is_component",)

    def insert(
        self,
        db,
        *,
        order_id: int,
        item_id: int,
        name: str,
        quantity: int,
        unit_price: Decimal,
        total_price: Decimal,
        quote_line_item_id: int | None,
        client_quote_line_item_id: int | None = None,
        component_id: int | None = None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO order_items (
                tenant_id, order_id, item_id, component_id, quote_line_item_id, client_quote_line_item_id,
                is_component, name, quantity, unit_price, total_price, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                self.tenant_id,
                order_id,
                item_id,
                component_id,
                quote_line_item_id,
                client_quote_line_item_id,
                1 if component_id is not None else 0,
                name,
                quantity,
                to_db_amount(unit_price),
                to_db_amount(total_price),
                utc_now_iso(),
            ),
        )
        return self.inserted_id(cursor)

    def list_for_order(self, db, order_id: int, *, currency: str) -> list[dict]:
        rows = db.execute(
            """
            SELECT *
            FROM order_items
            WHERE order_id = ? AND tenant_id = ?
            ORDER BY id
            """,
            (order_id, self.tenant_id),
        ).fetchall()
        return self.hydrate_all(rows, currency=currency)
