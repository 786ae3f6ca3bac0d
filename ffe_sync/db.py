import contextlib
import logging
import sqlite3
from typing import Callable, Iterable, List

try:
    import psycopg2
    import psycopg2.extras
except ImportError:  # pragma: no cover - optional dependency for postgres
    psycopg2 = None

from flask import current_app, g


logger = logging.getLogger("ffe_sync.db")


class Database:
    def __init__(self, backend: str, connection):
        self.backend = backend
        self._conn = connection
        self._tx_depth = 0
        self._after_commit: List[Callable[[], None]] = []

    @property
    def is_postgres(self) -> bool:
        return self.backend == "postgres"

    @property
    def in_transaction(self) -> bool:
        return self._tx_depth > 0

    def execute(self, sql: str, params: Iterable | None = None):
        if self.backend == "postgres":
            cursor = self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            if params:
                sql = _convert_qmark_to_pg(sql)
                cursor.execute(sql, list(params))
            else:
                cursor.execute(sql)
            return cursor
        return self._conn.execute(sql, params or ())

    def for_update(self) -> str:
        """Row lock suffix; SQLite relies on the BEGIN IMMEDIATE database lock instead."""
        return " FOR UPDATE" if self.backend == "postgres" else ""

    @contextlib.contextmanager
    def transaction(self):
        """Runs the block atomically. Nested calls join the outermost transaction."""
        if self._tx_depth:
            self._tx_depth += 1
            try:
                yield self
            finally:
                self._tx_depth -= 1
            return

        self._begin()
        self._tx_depth = 1
        try:
            yield self
        except BaseException:
            self._tx_depth = 0
            self._after_commit.clear()
            self._rollback()
            raise
        self._tx_depth = 0
        callbacks = list(self._after_commit)
        self._after_commit.clear()
        try:
            self._execute_raw("COMMIT")
        except BaseException:
            self._rollback()
            raise
        for callback in callbacks:
            callback()

    def after_commit(self, callback: Callable[[], None]) -> None:
        if not self._tx_depth:
            callback()
            return
        self._after_commit.append(callback)

    def _begin(self) -> None:
        if self.backend == "postgres":
            self._execute_raw("BEGIN")
            return
        # Takes the write lock up front so concurrent writers serialize instead of deadlocking on upgrade.
        self._execute_raw("BEGIN IMMEDIATE")

    def _rollback(self) -> None:
        try:
            self._execute_raw("ROLLBACK")
        except Exception:  # noqa: BLE001
            logger.exception("transaction_rollback_failed")

    def _execute_raw(self, sql: str) -> None:
        if self.backend == "postgres":
            with self._conn.cursor() as cursor:
                cursor.execute(sql)
            return
        self._conn.execute(sql)

    def executescript(self, sql: str):
        if self.backend != "postgres":
            return self._conn.executescript(sql)
        for statement in sql.split(";"):
            if statement.strip():
                self.execute(statement)

    def commit(self):
        self._conn.commit()

    def close(self):
        self._conn.close()


def _convert_qmark_to_pg(sql: str) -> str:
    return sql.replace("?", "%s")


def open_database(db_path: str, timeout: float = 30.0) -> Database:
    if db_path.lower().startswith("postgres"):
        if psycopg2 is None:
            raise RuntimeError("psycopg2 is not installed.")
        conn = psycopg2.connect(db_path)
        conn.autocommit = True
        return Database("postgres", conn)

    # Autocommit mode: transactions are opened explicitly by Database.transaction().
    conn = sqlite3.connect(db_path, timeout=timeout, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return Database("sqlite", conn)


def get_db():
    if "db" not in g:
        db_path = current_app.config["DB_PATH"]
        timeout = float(current_app.config.get("DB_LOCK_TIMEOUT_SECONDS", 30))
        g.db = open_database(db_path, timeout=timeout)
    return g.db


def close_db(_error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db():
    init_schema(get_db())


def init_schema(db: Database) -> None:
    for statement in _schema_statements(db.backend):
        db.execute(statement)


def _schema_statements(backend: str) -> List[str]:
    if backend == "postgres":
        types = {"pk": "BIGSERIAL PRIMARY KEY", "money": "NUMERIC(18, 4)", "ts": "TEXT"}
    else:
        types = {"pk": "INTEGER PRIMARY KEY AUTOINCREMENT", "money": "TEXT", "ts": "TEXT"}
    return [statement.format(**types) for statement in _SCHEMA]


_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS items (
        id {pk},
        tenant_id TEXT NOT NULL,
        project_id TEXT,
        room_id TEXT,
        name TEXT NOT NULL,
        quantity INTEGER NOT NULL DEFAULT 1 CHECK (quantity > 0),
        currency TEXT NOT NULL DEFAULT 'USD',
        status TEXT NOT NULL DEFAULT 'NOT_REQUESTED',
        payment_status TEXT NOT NULL DEFAULT 'NOT_INVOICED' CHECK (
            payment_status IN ('NOT_INVOICED','INVOICED','DEPOSIT_PAID','FULLY_PAID')
        ),
        accepted_quote_id INTEGER,
        trade_price {money},
        supplier_id TEXT,
        markup_percent {money},
        client_price {money},
        paid_amount {money} NOT NULL DEFAULT '0',
        review_required INTEGER NOT NULL DEFAULT 0,
        row_version INTEGER NOT NULL DEFAULT 1,
        created_at {ts} NOT NULL,
        updated_at {ts} NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS components (
        id {pk},
        tenant_id TEXT NOT NULL,
        item_id INTEGER NOT NULL REFERENCES items (id),
        name TEXT NOT NULL,
        quantity INTEGER NOT NULL DEFAULT 1 CHECK (quantity > 0),
        accepted_quote_id INTEGER,
        trade_price {money},
        supplier_id TEXT,
        review_required INTEGER NOT NULL DEFAULT 0,
        row_version INTEGER NOT NULL DEFAULT 1,
        created_at {ts} NOT NULL,
        updated_at {ts} NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS quote_line_items (
        id {pk},
        tenant_id TEXT NOT NULL,
        target_type TEXT NOT NULL CHECK (target_type IN ('item','component')),
        target_id INTEGER NOT NULL,
        item_id INTEGER NOT NULL REFERENCES items (id),
        component_id INTEGER REFERENCES components (id),
        supplier_id TEXT NOT NULL,
        supplier_name TEXT,
        unit_price {money} NOT NULL,
        quantity INTEGER NOT NULL DEFAULT 1,
        total_price {money} NOT NULL,
        currency TEXT NOT NULL,
        lead_time_days INTEGER,
        document_ref TEXT,
        version INTEGER NOT NULL DEFAULT 1,
        is_latest_version INTEGER NOT NULL DEFAULT 1,
        previous_version_id INTEGER REFERENCES quote_line_items (id),
        is_accepted INTEGER NOT NULL DEFAULT 0,
        accepted_at {ts},
        accepted_by_id TEXT,
        markup_percent {money},
        created_at {ts} NOT NULL
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_quote_line_items_accepted
    ON quote_line_items (tenant_id, target_type, target_id)
    WHERE is_accepted = 1
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_quote_line_items_latest
    ON quote_line_items (tenant_id, target_type, target_id, supplier_id)
    WHERE is_latest_version = 1
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS uq_quote_line_items_previous
    ON quote_line_items (previous_version_id)
    WHERE previous_version_id IS NOT NULL
    """,
    """
    CREATE TABLE IF NOT EXISTS client_quotes (
        id {pk},
        tenant_id TEXT NOT NULL,
        project_id TEXT,
        quote_number TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'DRAFT' CHECK (
            status IN ('DRAFT','SENT','APPROVED','INVOICED')
        ),
        currency TEXT NOT NULL,
        total_amount {money} NOT NULL,
        created_by TEXT,
        sent_at {ts},
        approved_at {ts},
        invoiced_at {ts},
        created_at {ts} NOT NULL,
        updated_at {ts} NOT NULL,
        UNIQUE (tenant_id, quote_number)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS client_quote_line_items (
        id {pk},
        tenant_id TEXT NOT NULL,
        client_quote_id INTEGER NOT NULL REFERENCES client_quotes (id),
        item_id INTEGER NOT NULL REFERENCES items (id),
        quote_line_item_id INTEGER NOT NULL REFERENCES quote_line_items (id),
        quantity INTEGER NOT NULL,
        trade_unit_price {money} NOT NULL,
        markup_percent {money} NOT NULL,
        client_unit_price {money} NOT NULL,
        client_price {money} NOT NULL,
        created_at {ts} NOT NULL,
        UNIQUE (client_quote_id, item_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS payments (
        id {pk},
        tenant_id TEXT NOT NULL,
        client_quote_id INTEGER NOT NULL REFERENCES client_quotes (id),
        amount {money} NOT NULL,
        currency TEXT NOT NULL,
        paid_at {ts} NOT NULL,
        external_ref TEXT,
        status TEXT NOT NULL DEFAULT 'RECORDED' CHECK (status IN ('RECORDED','ALLOCATED')),
        allocated_at {ts},
        created_at {ts} NOT NULL,
        UNIQUE (tenant_id, external_ref)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS payment_allocations (
        id {pk},
        tenant_id TEXT NOT NULL,
        payment_id INTEGER NOT NULL REFERENCES payments (id),
        item_id INTEGER NOT NULL REFERENCES items (id),
        amount {money} NOT NULL,
        created_at {ts} NOT NULL,
        UNIQUE (payment_id, item_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS orders (
        id {pk},
        tenant_id TEXT NOT NULL,
        client_quote_id INTEGER REFERENCES client_quotes (id),
        order_number TEXT NOT NULL,
        supplier_id TEXT NOT NULL,
        supplier_name TEXT,
        status TEXT NOT NULL DEFAULT 'ORDERED' CHECK (
            status IN ('ORDERED','CONFIRMED','SHIPPED','DELIVERED','INSTALLED','COMPLETED','CANCELLED')
        ),
        currency TEXT NOT NULL,
        subtotal {money} NOT NULL,
        created_by TEXT,
        ordered_at {ts},
        confirmed_at {ts},
        shipped_at {ts},
        delivered_at {ts},
        installed_at {ts},
        completed_at {ts},
        cancelled_at {ts},
        created_at {ts} NOT NULL,
        updated_at {ts} NOT NULL,
        UNIQUE (tenant_id, order_number)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS order_items (
        id {pk},
        tenant_id TEXT NOT NULL,
        order_id INTEGER NOT NULL REFERENCES orders (id),
        item_id INTEGER NOT NULL REFERENCES items (id),
        component_id INTEGER REFERENCES components (id),
        quote_line_item_id INTEGER REFERENCES quote_line_items (id),
        client_quote_line_item_id INTEGER REFERENCES client_quote_line_items (id),
        is_component INTEGER NOT NULL DEFAULT 0,
        name TEXT NOT NULL,
        quantity INTEGER NOT NULL,
        unit_price {money} NOT NULL,
        total_price {money} NOT NULL,
        created_at {ts} NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS activity_entries (
        id {pk},
        tenant_id TEXT NOT NULL,
        item_id INTEGER NOT NULL REFERENCES items (id),
        component_id INTEGER,
        entry_type TEXT NOT NULL,
        trigger_event TEXT,
        actor_id TEXT,
        actor_type TEXT NOT NULL DEFAULT 'system',
        old_status TEXT,
        new_status TEXT,
        details TEXT,
        created_at {ts} NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS ix_quote_line_items_item ON quote_line_items (tenant_id, item_id)",
    "CREATE INDEX IF NOT EXISTS ix_order_items_item ON order_items (tenant_id, item_id)",
    "CREATE INDEX IF NOT EXISTS ix_activity_entries_item ON activity_entries (tenant_id, item_id, id)",
]
