from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from ffe_sync.domain.money import to_db_amount
from ffe_sync.infrastructure.repositories.base import BaseRepository, utc_now_iso


def next_sequence_number(db, *, table: str, column: str, tenant_id: str, prefix: str, year: int) -> str:
    """Next `<prefix>-<year>-<nnnn>` number; callers hold the write lock."""
    stem = f"{prefix}-{year}-"
    row = db.execute(
        f"""
        SELECT {column} AS number
        FROM {table}
        WHERE tenant_id = ? AND {column} LIKE ?
        ORDER BY id DESC
        LIMIT 1
        """,
        (tenant_id, f"{stem}%"),
    ).fetchone()
    sequence = 1
    if row and row["number"]:
        suffix = str(row["number"])[len(stem):]
        if suffix.isdigit():
            sequence = int(suffix) + 1
    return f"{stem}{sequence:04d}"


class ClientQuoteRepository(BaseRepository):
    money_fields = ("total_amount", "client_price")
    decimal_fields = ("markup_percent",)

    def get(self, db, client_quote_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT *
            FROM client_quotes
            WHERE id = ? AND tenant_id = ?
            """,
            (client_quote_id, self.tenant_id),
        ).fetchone()
        return self.hydrate(row)

    def create(
        self,
        db,
        *,
        quote_number: str,
        currency: str,
        total_amount: Decimal,
        project_id: str | None,
        created_by: str | None,
    ) -> dict:
        now = utc_now_iso()
        cursor = db.execute(
            """
            INSERT INTO client_quotes (
                tenant_id, project_id, quote_number, status, currency, total_amount, created_by, created_at, updated_at
            )
            VALUES (?, ?, ?, 'DRAFT', ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (self.tenant_id, project_id, quote_number, currency, to_db_amount(total_amount), created_by, now, now),
        )
        return self.get(db, self.inserted_id(cursor))

    def set_status(self, db, client_quote_id: int, status: str, *, timestamp_column: str) -> str:
        now = utc_now_iso()
        db.execute(
            f"""
            UPDATE client_quotes
            SET status = ?, {timestamp_column} = ?, updated_at = ?
            WHERE id = ? AND tenant_id = ?
            """,
            (status, now, now, client_quote_id, self.tenant_id),
        )
        return now

    def latest_for_item(self, db, item_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT cq.id, cq.quote_number, cq.status, cq.currency, cq.total_amount,
                   cq.sent_at, cq.approved_at, cq.invoiced_at, cq.created_at,
                   cqli.client_price, cqli.markup_percent
            FROM client_quote_line_items cqli
            JOIN client_quotes cq ON cq.id = cqli.client_quote_id AND cq.tenant_id = cqli.tenant_id
            WHERE cqli.item_id = ? AND cqli.tenant_id = ?
            ORDER BY cq.id DESC
            LIMIT 1
            """,
            (item_id, self.tenant_id),
        ).fetchone()
        return self.hydrate(row)


class ClientQuoteLineRepository(BaseRepository):
    money_fields = ("trade_unit_price", "client_unit_price", "client_price")
    decimal_fields = ("markup_percent",)

    def insert(
        self,
        db,
        *,
        client_quote_id: int,
        item_id: int,
        quote_line_item_id: int,
        quantity: int,
        trade_unit_price: Decimal,
        markup_percent: Decimal,
        client_unit_price: Decimal,
        client_price: Decimal,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO client_quote_line_items (
                tenant_id, client_quote_id, item_id, quote_line_item_id, quantity,
                trade_unit_price, markup_percent, client_unit_price, client_price, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                self.tenant_id,
                client_quote_id,
                item_id,
                quote_line_item_id,
                quantity,
                to_db_amount(trade_unit_price),
                to_db_amount(markup_percent),
                to_db_amount(client_unit_price),
                to_db_amount(client_price),
                utc_now_iso(),
            ),
        )
        return self.inserted_id(cursor)

    def list_for_quote(self, db, client_quote_id: int, *, currency: str) -> list[dict]:
        rows = db.execute(
            """
            SELECT *
            FROM client_quote_line_items
            WHERE client_quote_id = ? AND tenant_id = ?
            ORDER BY item_id
            """,
            (client_quote_id, self.tenant_id),
        ).fetchall()
        return self.hydrate_all(rows, currency=currency)


class PaymentRepository(BaseRepository):
    money_fields = ("amount",)

    def get(self, db, payment_id: int, *, for_update: bool = False) -> dict | None:
        row = db.execute(
            f"""
            SELECT *
            FROM payments
            WHERE id = ? AND tenant_id = ?
            {db.for_update() if for_update else ""}
            """,
            (payment_id, self.tenant_id),
        ).fetchone()
        return self.hydrate(row)

    def find_by_external_ref(self, db, external_ref: str) -> dict | None:
        row = db.execute(
            """
            SELECT *
            FROM payments
            WHERE external_ref = ? AND tenant_id = ?
            """,
            (external_ref, self.tenant_id),
        ).fetchone()
        return self.hydrate(row)

    def insert(
        self,
        db,
        *,
        client_quote_id: int,
        amount: Decimal,
        currency: str,
        paid_at: str,
        external_ref: str | None,
    ) -> dict:
        cursor = db.execute(
            """
            INSERT INTO payments (tenant_id, client_quote_id, amount, currency, paid_at, external_ref, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?, 'RECORDED', ?)
            RETURNING id
            """,
            (self.tenant_id, client_quote_id, to_db_amount(amount), currency, paid_at, external_ref, utc_now_iso()),
        )
        return self.get(db, self.inserted_id(cursor))

    def mark_allocated(self, db, payment_id: int) -> str:
        now = utc_now_iso()
        db.execute(
            """
            UPDATE payments
            SET status = 'ALLOCATED', allocated_at = ?
            WHERE id = ? AND tenant_id = ?
            """,
            (now, payment_id, self.tenant_id),
        )
        return now

    def insert_allocations(self, db, payment_id: int, allocations: Iterable[tuple[int, Decimal]]) -> None:
        now = utc_now_iso()
        for item_id, amount in allocations:
            db.execute(
                """
                INSERT INTO payment_allocations (tenant_id, payment_id, item_id, amount, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (self.tenant_id, payment_id, item_id, to_db_amount(amount), now),
            )

    def list_allocations(self, db, payment_id: int, *, currency: str) -> list[dict]:
        rows = db.execute(
            """
            SELECT item_id, amount
            FROM payment_allocations
            WHERE payment_id = ? AND tenant_id = ?
            ORDER BY item_id
            """,
            (payment_id, self.tenant_id),
        ).fetchall()
        return self.hydrate_all(rows, currency=currency)
