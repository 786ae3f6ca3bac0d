from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List

from ffe_sync.core.event_bus import EventBus, ItemStatusAdvanced, get_event_bus
from ffe_sync.domain.contracts import AdvanceResult
from ffe_sync.domain.statuses import ProcurementStatus, StatusTrigger, is_ahead, target_status
from ffe_sync.errors import ConcurrencyConflict, ValidationError, not_found
from ffe_sync.infrastructure.repositories.activity_repository import ActivityRepository
from ffe_sync.infrastructure.repositories.item_repository import ItemRepository
from ffe_sync.observability import observe_concurrency_conflict, observe_status_advance


logger = logging.getLogger("ffe_sync.status_sync")


def parse_trigger(value) -> StatusTrigger:
    try:
        return StatusTrigger.parse(value)
    except ValueError as exc:
        raise ValidationError(
            code="trigger_invalid",
            message_key="trigger_invalid",
            details=f"unknown status trigger: {value!r}",
            payload={"trigger": str(value)},
        ) from exc


class StatusSyncEngine:
    """Sole writer of item procurement status.

    Status only moves forward along the procurement order. A trigger whose
    target ranks at or below the current status is accepted and ignored,
    which makes late or redelivered events harmless.
    """

    def __init__(self, tenant_id: str, *, event_bus: EventBus | None = None) -> None:
        self.tenant_id = tenant_id
        self.items = ItemRepository(tenant_id=tenant_id)
        self.activity = ActivityRepository(tenant_id=tenant_id)
        self.event_bus = event_bus or get_event_bus()

    def advance(
        self,
        db,
        item_id: int,
        trigger,
        *,
        actor_id: str | None = None,
        details: Dict[str, Any] | None = None,
    ) -> AdvanceResult:
        resolved = parse_trigger(trigger)
        with db.transaction():
            item = self.items.get(db, item_id, for_update=True)
            if item is None:
                raise not_found("item", item_id)
            return self._apply(db, item, resolved, actor_id=actor_id, details=details)

    def advance_many(
        self,
        db,
        item_ids: Iterable[int],
        trigger,
        *,
        actor_id: str | None = None,
        details: Dict[str, Any] | None = None,
    ) -> List[AdvanceResult]:
        resolved = parse_trigger(trigger)
        ids = list(dict.fromkeys(int(item_id) for item_id in item_ids))
        with db.transaction():
            items = self.items.list_by_ids(db, ids, for_update=True)
            found = {int(item["id"]) for item in items}
            missing = [item_id for item_id in ids if item_id not in found]
            if missing:
                raise not_found("item", missing[0])
            return [self._apply(db, item, resolved, actor_id=actor_id, details=details) for item in items]

    def _apply(
        self,
        db,
        item: dict,
        trigger: StatusTrigger,
        *,
        actor_id: str | None,
        details: Dict[str, Any] | None,
    ) -> AdvanceResult:
        current = ProcurementStatus.parse(item["status"])
        target = target_status(trigger)
        if not is_ahead(target, current):
            observe_status_advance(trigger.value, False)
            logger.debug(
                "item_status_advance_ignored",
                extra={"item_id": item["id"], "trigger": trigger.value, "current_status": current.value},
            )
            return AdvanceResult(
                item=item,
                changed=False,
                trigger=trigger.value,
                old_status=current.value,
                new_status=current.value,
            )

        try:
            updated = self.items.update(db, item, status=target.value)
        except ConcurrencyConflict:
            observe_concurrency_conflict("advance")
            raise
        self.activity.append(
            db,
            item_id=int(item["id"]),
            entry_type="status_changed",
            trigger=trigger.value,
            actor_id=actor_id,
            old_status=current.value,
            new_status=target.value,
            details=details,
        )
        event = ItemStatusAdvanced(
            tenant_id=self.tenant_id,
            item_id=int(item["id"]),
            trigger=trigger.value,
            old_status=current.value,
            new_status=target.value,
            actor_id=actor_id,
        )
        db.after_commit(lambda: self.event_bus.publish(event))
        observe_status_advance(trigger.value, True)
        logger.info(
            "item_status_advanced",
            extra={
                "tenant_id": self.tenant_id,
                "item_id": item["id"],
                "trigger": trigger.value,
                "old_status": current.value,
                "new_status": target.value,
            },
        )
        return AdvanceResult(
            item=updated,
            changed=True,
            trigger=trigger.value,
            old_status=current.value,
            new_status=target.value,
        )
