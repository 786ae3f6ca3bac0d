from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Iterable

from ffe_sync.domain.money import quantize, to_decimal


class TenantScopeRequiredError(ValueError):
    """Raised when a repository is instantiated without tenant/workspace scope."""


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


class BaseRepository:
    money_fields: tuple[str, ...] = ()
    flag_fields: tuple[str, ...] = ()
    decimal_fields: tuple[str, ...] = ()

    def __init__(self, *, tenant_id: str | None = None, workspace_id: str | None = None) -> None:
        scope = str(tenant_id or workspace_id or "").strip()
        if not scope:
            raise TenantScopeRequiredError("tenant_id or workspace_id is required for repository access")
        self.tenant_id = scope

    def hydrate(self, row: Any, *, currency: str | None = None) -> dict | None:
        if row is None:
            return None
        data = dict(row)
        resolved_currency = str(data.get("currency") or currency or "USD")
        for field in self.money_fields:
            if field in data and data[field] is not None:
                data[field] = quantize(to_decimal(data[field]), resolved_currency)
        for field in self.decimal_fields:
            if field in data and data[field] is not None:
                data[field] = to_decimal(data[field])
        for field in self.flag_fields:
            if field in data:
                data[field] = bool(data[field])
        return data

    def hydrate_all(self, rows: Iterable[Any], *, currency: str | None = None) -> list[dict]:
        return [self.hydrate(row, currency=currency) for row in rows]

    @staticmethod
    def inserted_id(cursor) -> int:
        row = cursor.fetchone()
        return int(row["id"] if isinstance(row, dict) else row[0])

    @staticmethod
    def placeholders(values: Iterable[Any]) -> str:
        return ",".join("?" for _ in values)

    @staticmethod
    def dump_details(details: dict | None) -> str | None:
        if not details:
            return None
        return json.dumps(details, default=str, sort_keys=True)
