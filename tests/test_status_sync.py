import itertools
import unittest

from ffe_sync.core.event_bus import ItemStatusAdvanced
from ffe_sync.domain.statuses import ProcurementStatus, StatusTrigger
from ffe_sync.errors import ConcurrencyConflict, NotFoundError, ValidationError
from ffe_sync.infrastructure.repositories import ItemRepository
from ffe_sync.observability import metrics_snapshot
from tests.helpers.procurement import TEST_TENANT_ID, ProcurementTestCase


class StatusSyncEngineTest(ProcurementTestCase):
    sandbox_prefix = "status_sync"

    def test_advance_moves_forward_and_records_activity(self) -> None:
        item = self.make_item()

        result = self.services.status_sync.advance(self.db, item["id"], "rfq_sent", actor_id="buyer-1")

        self.assertTrue(result.changed)
        self.assertEqual(result.old_status, "NOT_REQUESTED")
        self.assertEqual(result.new_status, "RFQ_SENT")
        self.assertEqual(self.item(item["id"])["status"], "RFQ_SENT")

        entry = self.services.items.list_activity(self.db, item["id"])[0]
        self.assertEqual(entry["entry_type"], "status_changed")
        self.assertEqual(entry["trigger"], "rfq_sent")
        self.assertEqual(entry["old_status"], "NOT_REQUESTED")
        self.assertEqual(entry["new_status"], "RFQ_SENT")
        self.assertEqual(entry["actor_id"], "buyer-1")
        self.assertEqual(entry["actor_type"], "user")

        events = self.events_of(ItemStatusAdvanced)
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].item_id, item["id"])
        self.assertEqual(events[0].new_status, "RFQ_SENT")
        self.assertEqual(events[0].tenant_id, TEST_TENANT_ID)

    def test_late_trigger_is_accepted_and_ignored(self) -> None:
        item = self.make_item()
        self.services.status_sync.advance(self.db, item["id"], StatusTrigger.ORDER_CREATED)

        result = self.services.status_sync.advance(self.db, item["id"], StatusTrigger.QUOTE_RECEIVED)

        self.assertFalse(result.changed)
        self.assertEqual(result.new_status, "ORDERED")
        self.assertEqual(self.item(item["id"])["status"], "ORDERED")
        status_entries = [
            entry
            for entry in self.services.items.list_activity(self.db, item["id"])
            if entry["entry_type"] == "status_changed"
        ]
        self.assertEqual(len(status_entries), 1)
        self.assertEqual(len(self.events_of(ItemStatusAdvanced)), 1)

    def test_redelivered_trigger_is_a_noop(self) -> None:
        item = self.make_item()
        first = self.services.status_sync.advance(self.db, item["id"], "invoice_sent")
        second = self.services.status_sync.advance(self.db, item["id"], "invoice_sent")

        self.assertTrue(first.changed)
        self.assertFalse(second.changed)
        self.assertEqual(len(self.events_of(ItemStatusAdvanced)), 1)
        self.assertEqual(metrics_snapshot()["status_advances"]["noop_total"], 1)

    def test_unknown_trigger_is_rejected(self) -> None:
        item = self.make_item()
        with self.assertRaises(ValidationError) as ctx:
            self.services.status_sync.advance(self.db, item["id"], "teleported")

        self.assertEqual(ctx.exception.code, "trigger_invalid")
        self.assertEqual(self.item(item["id"])["status"], "NOT_REQUESTED")

    def test_unknown_item_is_not_found(self) -> None:
        with self.assertRaises(NotFoundError) as ctx:
            self.services.status_sync.advance(self.db, 9999, "rfq_sent")
        self.assertEqual(ctx.exception.code, "item_not_found")

    def test_items_are_scoped_to_their_tenant(self) -> None:
        item = self.make_item()
        other_tenant = self.build_services("tenant-other")

        with self.assertRaises(NotFoundError):
            other_tenant.status_sync.advance(self.db, item["id"], "rfq_sent")
        self.assertEqual(self.item(item["id"])["status"], "NOT_REQUESTED")

    def test_any_trigger_order_ends_at_the_highest_target(self) -> None:
        triggers = (
            StatusTrigger.QUOTE_RECEIVED,
            StatusTrigger.CLIENT_APPROVED,
            StatusTrigger.PAYMENT_RECEIVED,
            StatusTrigger.ORDER_SHIPPED,
        )
        for permutation in itertools.permutations(triggers):
            with self.subTest(order=[trigger.value for trigger in permutation]):
                item = self.make_item()
                ranks = []
                for trigger in permutation:
                    self.services.status_sync.advance(self.db, item["id"], trigger)
                    ranks.append(ProcurementStatus.parse(self.item(item["id"])["status"]).rank)
                self.assertEqual(ranks, sorted(ranks))
                self.assertEqual(self.item(item["id"])["status"], "SHIPPED")

    def test_advance_many_updates_each_item(self) -> None:
        first = self.make_item("Sofa")
        second = self.make_item("Lamp")
        self.services.status_sync.advance(self.db, second["id"], "order_created")

        results = self.services.status_sync.advance_many(
            self.db,
            [first["id"], second["id"], first["id"]],
            "client_quote_sent",
        )

        self.assertEqual([result.changed for result in results], [True, False])
        self.assertEqual(self.item(first["id"])["status"], "BUDGET_SENT")
        self.assertEqual(self.item(second["id"])["status"], "ORDERED")

    def test_advance_many_rejects_missing_items_without_writing(self) -> None:
        item = self.make_item()
        with self.assertRaises(NotFoundError):
            self.services.status_sync.advance_many(self.db, [item["id"], 9999], "rfq_sent")

        self.assertEqual(self.item(item["id"])["status"], "NOT_REQUESTED")
        self.assertEqual(self.events, [])

    def test_events_wait_for_the_outer_commit(self) -> None:
        item = self.make_item()
        with self.db.transaction():
            self.services.status_sync.advance(self.db, item["id"], "rfq_sent")
            self.assertEqual(self.events, [])

        self.assertEqual(len(self.events_of(ItemStatusAdvanced)), 1)

    def test_rollback_discards_status_and_events(self) -> None:
        item = self.make_item()
        with self.assertRaises(RuntimeError):
            with self.db.transaction():
                self.services.status_sync.advance(self.db, item["id"], "rfq_sent")
                raise RuntimeError("abort")

        self.assertEqual(self.item(item["id"])["status"], "NOT_REQUESTED")
        self.assertEqual(self.events, [])
        entry_types = [entry["entry_type"] for entry in self.services.items.list_activity(self.db, item["id"])]
        self.assertNotIn("status_changed", entry_types)

    def test_stale_row_version_raises_conflict(self) -> None:
        item = self.make_item()
        repository = ItemRepository(tenant_id=TEST_TENANT_ID)
        stale = repository.get(self.db, item["id"])
        self.services.status_sync.advance(self.db, item["id"], "rfq_sent")

        with self.assertRaises(ConcurrencyConflict) as ctx:
            repository.update(self.db, stale, status="ORDERED")

        self.assertTrue(ctx.exception.retryable)
        self.assertEqual(self.item(item["id"])["status"], "RFQ_SENT")


if __name__ == "__main__":
    unittest.main()
