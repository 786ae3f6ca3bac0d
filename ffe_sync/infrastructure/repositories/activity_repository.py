from __future__ import annotations

import json

from ffe_sync.infrastructure.repositories.base import BaseRepository, utc_now_iso


class ActivityRepository(BaseRepository):
    """Append-only audit trail: entries are inserted and listed, never updated."""

    def append(
        self,
        db,
        *,
        item_id: int,
        entry_type: str,
        trigger: str | None = None,
        actor_id: str | None = None,
        old_status: str | None = None,
        new_status: str | None = None,
        component_id: int | None = None,
        details: dict | None = None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO activity_entries (
                tenant_id, item_id, component_id, entry_type, trigger_event, actor_id, actor_type,
                old_status, new_status, details, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                self.tenant_id,
                item_id,
                component_id,
                entry_type,
                trigger,
                actor_id,
                "user" if actor_id else "system",
                old_status,
                new_status,
                self.dump_details(details),
                utc_now_iso(),
            ),
        )
        return self.inserted_id(cursor)

    def list_for_item(self, db, item_id: int, *, limit: int = 120) -> list[dict]:
        rows = db.execute(
            """
            SELECT id, item_id, component_id, entry_type, trigger_event, actor_id, actor_type,
                   old_status, new_status, details, created_at
            FROM activity_entries
            WHERE item_id = ? AND tenant_id = ?
            ORDER BY id DESC
            LIMIT ?
            """,
            (item_id, self.tenant_id, int(limit)),
        ).fetchall()
        entries = []
        for row in rows:
            entry = dict(row)
            raw_details = entry.pop("details", None)
            entry["trigger"] = entry.pop("trigger_event", None)
            entry["details"] = json.loads(raw_details) if raw_details else {}
            entries.append(entry)
        return entries
