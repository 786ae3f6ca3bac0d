from __future__ import annotations

from decimal import Decimal

from ffe_sync.domain.money import to_db_amount
from ffe_sync.infrastructure.repositories.base import BaseRepository, utc_now_iso


class QuoteLineItemRepository(BaseRepository):
    """Append-only store: terms of a persisted quote are never updated, only its flags."""

    money_fields = ("unit_price", "total_price")
    decimal_fields = ("markup_percent",)
    flag_fields = ("is_latest_version", "is_accepted")

    def get_by_id(self, db, quote_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT *
            FROM quote_line_items
            WHERE id = ? AND tenant_id = ?
            LIMIT 1
            """,
            (quote_id, self.tenant_id),
        ).fetchone()
        return self.hydrate(row)

    def find_latest(self, db, *, target_type: str, target_id: int, supplier_id: str) -> dict | None:
        row = db.execute(
            """
            SELECT *
            FROM quote_line_items
            WHERE tenant_id = ? AND target_type = ? AND target_id = ? AND supplier_id = ?
              AND is_latest_version = 1
            LIMIT 1
            """,
            (self.tenant_id, target_type, target_id, supplier_id),
        ).fetchone()
        return self.hydrate(row)

    def find_accepted(self, db, *, target_type: str, target_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT *
            FROM quote_line_items
            WHERE tenant_id = ? AND target_type = ? AND target_id = ? AND is_accepted = 1
            LIMIT 1
            """,
            (self.tenant_id, target_type, target_id),
        ).fetchone()
        return self.hydrate(row)

    def list_latest(self, db, *, target_type: str, target_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT *
            FROM quote_line_items
            WHERE tenant_id = ? AND target_type = ? AND target_id = ? AND is_latest_version = 1
            ORDER BY id
            """,
            (self.tenant_id, target_type, target_id),
        ).fetchall()
        return self.hydrate_all(rows)

    def count_for_item(self, db, item_id: int) -> int:
        row = db.execute(
            """
            SELECT COUNT(*) AS total
            FROM quote_line_items
            WHERE tenant_id = ? AND item_id = ? AND target_type = 'item'
            """,
            (self.tenant_id, item_id),
        ).fetchone()
        return int(row["total"] if row else 0)

    def insert(
        self,
        db,
        *,
        target_type: str,
        target_id: int,
        item_id: int,
        component_id: int | None,
        supplier_id: str,
        supplier_name: str | None,
        unit_price: Decimal,
        quantity: int,
        total_price: Decimal,
        currency: str,
        lead_time_days: int | None,
        document_ref: str | None,
        version: int,
        previous_version_id: int | None,
    ) -> dict:
        cursor = db.execute(
            """
            INSERT INTO quote_line_items (
                tenant_id, target_type, target_id, item_id, component_id, supplier_id, supplier_name,
                unit_price, quantity, total_price, currency, lead_time_days, document_ref,
                version, is_latest_version, previous_version_id, is_accepted, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1, ?, 0, ?)
            RETURNING id
            """,
            (
                self.tenant_id,
                target_type,
                target_id,
                item_id,
                component_id,
                supplier_id,
                supplier_name,
                to_db_amount(unit_price),
                quantity,
                to_db_amount(total_price),
                currency,
                lead_time_days,
                document_ref,
                version,
                previous_version_id,
                utc_now_iso(),
            ),
        )
        return self.get_by_id(db, self.inserted_id(cursor))

    def mark_superseded(self, db, quote_id: int) -> None:
        db.execute(
            """
            UPDATE quote_line_items
            SET is_latest_version = 0
            WHERE id = ? AND tenant_id = ?
            """,
            (quote_id, self.tenant_id),
        )

    def clear_accepted(self, db, *, target_type: str, target_id: int, except_id: int) -> int:
        cursor = db.execute(
            """
            UPDATE quote_line_items
            SET is_accepted = 0
            WHERE tenant_id = ? AND target_type = ? AND target_id = ? AND is_accepted = 1 AND id <> ?
            """,
            (self.tenant_id, target_type, target_id, except_id),
        )
        return int(cursor.rowcount or 0)

    def mark_accepted(
        self,
        db,
        quote_id: int,
        *,
        accepted_at: str,
        accepted_by_id: str | None,
        markup_percent: Decimal | None,
    ) -> None:
        db.execute(
            """
            UPDATE quote_line_items
            SET is_accepted = 1, accepted_at = ?, accepted_by_id = ?, markup_percent = ?
            WHERE id = ? AND tenant_id = ?
            """,
            (accepted_at, accepted_by_id, to_db_amount(markup_percent), quote_id, self.tenant_id),
        )

    def touch_accepted_at(self, db, quote_id: int, accepted_at: str) -> None:
        db.execute(
            """
            UPDATE quote_line_items
            SET accepted_at = ?
            WHERE id = ? AND tenant_id = ? AND is_accepted = 1
            """,
            (accepted_at, quote_id, self.tenant_id),
        )
