from __future__ import annotations

import enum
from decimal import Decimal
from typing import Any, Dict, Iterable

from ffe_sync.domain.money import to_db_amount
from ffe_sync.errors import ConcurrencyConflict
from ffe_sync.infrastructure.repositories.base import BaseRepository, utc_now_iso


def _db_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return to_db_amount(value)
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, enum.Enum):
        return value.value
    return value


class _VersionedRepository(BaseRepository):
    table = ""

    def _compare_and_set(self, db, row: dict, fields: Dict[str, Any]) -> dict:
        """Optimistic update keyed on row_version; a concurrent writer makes it fail."""
        now = utc_now_iso()
        assignments = ", ".join(f"{column} = ?" for column in fields)
        cursor = db.execute(
            f"""
            UPDATE {self.table}
            SET {assignments}, row_version = row_version + 1, updated_at = ?
            WHERE id = ? AND tenant_id = ? AND row_version = ?
            """,
            (*[_db_value(value) for value in fields.values()], now, row["id"], self.tenant_id, row["row_version"]),
        )
        if cursor.rowcount != 1:
            raise ConcurrencyConflict(
                details=f"{self.table} {row['id']} changed concurrently",
                payload={"entity": self.table, "entity_id": row["id"]},
            )
        updated = dict(row)
        updated.update(fields)
        updated["row_version"] = int(row["row_version"]) + 1
        updated["updated_at"] = now
        return updated


class ItemRepository(_VersionedRepository):
    table = "items"
    money_fields = ("trade_price", "client_price", "paid_amount")
    decimal_fields = ("markup_percent",)
    flag_fields = ("review_required",)

    def create(
        self,
        db,
        *,
        name: str,
        quantity: int,
        currency: str,
        project_id: str | None = None,
        room_id: str | None = None,
    ) -> dict:
        now = utc_now_iso()
        cursor = db.execute(
            """
            INSERT INTO items (tenant_id, project_id, room_id, name, quantity, currency, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (self.tenant_id, project_id, room_id, name, quantity, currency, now, now),
        )
        return self.get(db, self.inserted_id(cursor))

    def get(self, db, item_id: int, *, for_update: bool = False) -> dict | None:
        row = db.execute(
            f"""
            SELECT *
            FROM items
            WHERE id = ? AND tenant_id = ?
            {db.for_update() if for_update else ""}
            """,
            (item_id, self.tenant_id),
        ).fetchone()
        return self.hydrate(row)

    def list_by_ids(self, db, item_ids: Iterable[int], *, for_update: bool = False) -> list[dict]:
        ids = list(dict.fromkeys(int(item_id) for item_id in item_ids))
        if not ids:
            return []
        rows = db.execute(
            f"""
            SELECT *
            FROM items
            WHERE tenant_id = ? AND id IN ({self.placeholders(ids)})
            ORDER BY id
            {db.for_update() if for_update else ""}
            """,
            (self.tenant_id, *ids),
        ).fetchall()
        return self.hydrate_all(rows)

    def update(self, db, item: dict, **fields: Any) -> dict:
        return self._compare_and_set(db, item, fields)


class ComponentRepository(_VersionedRepository):
    table = "components"
    money_fields = ("trade_price",)
    flag_fields = ("review_required",)

    def create(self, db, *, item_id: int, name: str, quantity: int) -> dict:
        now = utc_now_iso()
        cursor = db.execute(
            """
            INSERT INTO components (tenant_id, item_id, name, quantity, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (self.tenant_id, item_id, name, quantity, now, now),
        )
        return self.get(db, self.inserted_id(cursor))

    def get(self, db, component_id: int, *, for_update: bool = False, currency: str | None = None) -> dict | None:
        row = db.execute(
            f"""
            SELECT *
            FROM components
            WHERE id = ? AND tenant_id = ?
            {db.for_update() if for_update else ""}
            """,
            (component_id, self.tenant_id),
        ).fetchone()
        return self.hydrate(row, currency=currency)

    def list_for_item(self, db, item_id: int, *, currency: str | None = None) -> list[dict]:
        rows = db.execute(
            """
            SELECT *
            FROM components
            WHERE item_id = ? AND tenant_id = ?
            ORDER BY id
            """,
            (item_id, self.tenant_id),
        ).fetchall()
        return self.hydrate_all(rows, currency=currency)

    def update(self, db, component: dict, **fields: Any) -> dict:
        return self._compare_and_set(db, component, fields)
