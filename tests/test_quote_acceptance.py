import threading
import unittest
from decimal import Decimal

from ffe_sync.application import build_services
from ffe_sync.core.event_bus import QuoteAccepted
from ffe_sync.db import open_database
from ffe_sync.errors import InvalidTransition, NotFoundError, ValidationError
from ffe_sync.infrastructure.repositories import ComponentRepository, QuoteLineItemRepository
from tests.helpers.procurement import TEST_TENANT_ID, ProcurementTestCase


class QuoteAcceptanceTest(ProcurementTestCase):
    sandbox_prefix = "quote_acceptance"

    def setUp(self) -> None:
        super().setUp()
        self.quotes = QuoteLineItemRepository(tenant_id=TEST_TENANT_ID)

    def _accepted_count(self, target_type: str, target_id: int) -> int:
        return self.count_rows(
            "SELECT COUNT(*) FROM quote_line_items WHERE target_type = ? AND target_id = ? AND is_accepted = 1",
            (target_type, target_id),
        )

    def test_accept_copies_terms_to_item(self) -> None:
        item = self.make_item("Armchair")
        quote = self.add_quote(item["id"], "sup-a", "150.00", supplier_name="Acme Seating").quote

        result = self.services.quote_acceptance.accept(
            self.db,
            item["id"],
            quote["id"],
            "designer-1",
            markup_percent="20",
        )

        self.assertTrue(result.changed)
        self.assertIsNone(result.previous_quote_id)
        self.assertEqual(result.status_change.new_status, "QUOTE_APPROVED")
        stored_item = self.item(item["id"])
        self.assertEqual(stored_item["accepted_quote_id"], quote["id"])
        self.assertEqual(stored_item["trade_price"], Decimal("150.00"))
        self.assertEqual(stored_item["supplier_id"], "sup-a")
        self.assertEqual(stored_item["markup_percent"], Decimal("20"))
        self.assertEqual(stored_item["status"], "QUOTE_APPROVED")

        stored_quote = self.quotes.get_by_id(self.db, quote["id"])
        self.assertTrue(stored_quote["is_accepted"])
        self.assertEqual(stored_quote["accepted_by_id"], "designer-1")
        self.assertIsNotNone(stored_quote["accepted_at"])

        events = self.events_of(QuoteAccepted)
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].unit_price, "150.00")
        entry = next(
            entry
            for entry in self.services.items.list_activity(self.db, item["id"])
            if entry["entry_type"] == "quote_accepted"
        )
        self.assertEqual(entry["details"]["quote_line_item_id"], quote["id"])

    def test_switching_acceptance_keeps_one_accepted_quote(self) -> None:
        item = self.make_item()
        first = self.add_quote(item["id"], "sup-a", "150.00").quote
        second = self.add_quote(item["id"], "sup-b", "165.00").quote

        self.services.quote_acceptance.accept(self.db, item["id"], first["id"])
        result = self.services.quote_acceptance.accept(self.db, item["id"], second["id"])

        self.assertEqual(result.previous_quote_id, first["id"])
        self.assertEqual(self._accepted_count("item", item["id"]), 1)
        self.assertFalse(self.quotes.get_by_id(self.db, first["id"])["is_accepted"])
        stored_item = self.item(item["id"])
        self.assertEqual(stored_item["accepted_quote_id"], second["id"])
        self.assertEqual(stored_item["trade_price"], Decimal("165.00"))
        self.assertEqual(stored_item["supplier_id"], "sup-b")

    def test_superseded_quote_cannot_be_accepted(self) -> None:
        item = self.make_item()
        old = self.add_quote(item["id"], "sup-a", "150.00").quote
        self.add_quote(item["id"], "sup-a", "145.00")

        with self.assertRaises(InvalidTransition) as ctx:
            self.services.quote_acceptance.accept(self.db, item["id"], old["id"])

        self.assertEqual(ctx.exception.code, "quote_not_latest")
        self.assertEqual(ctx.exception.http_status, 409)
        self.assertIsNone(self.item(item["id"])["accepted_quote_id"])
        self.assertEqual(self._accepted_count("item", item["id"]), 0)

    def test_superseded_accepted_quote_cannot_be_reaccepted(self) -> None:
        item = self.make_item("Dining Chair")
        old = self.add_quote(item["id"], "sup-a", "150.00").quote
        self.services.quote_acceptance.accept(self.db, item["id"], old["id"])
        newer = self.add_quote(item["id"], "sup-a", "140.00").quote
        events_before = len(self.events)

        with self.assertRaises(InvalidTransition) as ctx:
            self.services.quote_acceptance.accept(self.db, item["id"], old["id"])

        self.assertEqual(ctx.exception.code, "quote_not_latest")
        self.assertEqual(len(self.events), events_before)
        stored_item = self.item(item["id"])
        self.assertEqual(stored_item["accepted_quote_id"], old["id"])
        self.assertTrue(stored_item["review_required"])

        result = self.services.quote_acceptance.accept(self.db, item["id"], newer["id"])
        self.assertTrue(result.changed)
        self.assertFalse(self.item(item["id"])["review_required"])
        self.assertEqual(self.item(item["id"])["trade_price"], Decimal("140.00"))

    def test_repeated_accept_only_refreshes_timestamp(self) -> None:
        item = self.make_item()
        quote = self.add_quote(item["id"], "sup-a", "150.00").quote
        self.services.quote_acceptance.accept(self.db, item["id"], quote["id"], "designer-1")
        accepted_item = self.item(item["id"])
        events_before = len(self.events)

        result = self.services.quote_acceptance.accept(self.db, item["id"], quote["id"], "designer-2")

        self.assertFalse(result.changed)
        self.assertEqual(len(self.events), events_before)
        self.assertEqual(self.item(item["id"])["row_version"], accepted_item["row_version"])
        stored_quote = self.quotes.get_by_id(self.db, quote["id"])
        self.assertEqual(stored_quote["accepted_at"], result.quote["accepted_at"])
        self.assertEqual(stored_quote["accepted_by_id"], "designer-1")
        accepted_entries = [
            entry
            for entry in self.services.items.list_activity(self.db, item["id"])
            if entry["entry_type"] == "quote_accepted"
        ]
        self.assertEqual(len(accepted_entries), 1)

    def test_quote_of_another_item_is_rejected(self) -> None:
        chair = self.make_item("Chair")
        table = self.make_item("Table")
        table_quote = self.add_quote(table["id"], "sup-a", "800.00").quote

        with self.assertRaises(InvalidTransition) as ctx:
            self.services.quote_acceptance.accept(self.db, chair["id"], table_quote["id"])
        self.assertEqual(ctx.exception.code, "quote_target_mismatch")

    def test_unknown_quote_is_not_found(self) -> None:
        item = self.make_item()
        with self.assertRaises(NotFoundError) as ctx:
            self.services.quote_acceptance.accept(self.db, item["id"], 9999)
        self.assertEqual(ctx.exception.code, "quote_not_found")

    def test_negative_markup_is_rejected(self) -> None:
        item = self.make_item()
        quote = self.add_quote(item["id"], "sup-a", "150.00").quote
        with self.assertRaises(ValidationError):
            self.services.quote_acceptance.accept(self.db, item["id"], quote["id"], markup_percent="-5")
        self.assertFalse(self.quotes.get_by_id(self.db, quote["id"])["is_accepted"])

    def test_component_acceptance_is_independent_of_item(self) -> None:
        item = self.make_item("Sectional Sofa")
        component = self.services.items.register_component(self.db, item["id"], name="Fabric", quantity=12)
        fabric = self.add_quote(item["id"], "sup-x", "40.00", component_id=component["id"]).quote
        frame = self.add_quote(item["id"], "sup-a", "900.00").quote

        result = self.services.quote_acceptance.accept(
            self.db,
            item["id"],
            fabric["id"],
            component_id=component["id"],
        )

        self.assertIsNone(result.status_change)
        stored_component = ComponentRepository(tenant_id=TEST_TENANT_ID).get(self.db, component["id"])
        self.assertEqual(stored_component["accepted_quote_id"], fabric["id"])
        self.assertEqual(stored_component["trade_price"], Decimal("40.00"))
        self.assertEqual(stored_component["supplier_id"], "sup-x")
        self.assertIsNone(self.item(item["id"])["accepted_quote_id"])
        self.assertEqual(self.item(item["id"])["status"], "QUOTE_RECEIVED")

        self.services.quote_acceptance.accept(self.db, item["id"], frame["id"])
        self.assertEqual(self._accepted_count("component", component["id"]), 1)
        self.assertEqual(self._accepted_count("item", item["id"]), 1)
        self.assertEqual(self.item(item["id"])["status"], "QUOTE_APPROVED")

    def test_item_quote_cannot_be_accepted_for_component(self) -> None:
        item = self.make_item()
        component = self.services.items.register_component(self.db, item["id"], name="Cushion")
        item_quote = self.add_quote(item["id"], "sup-a", "150.00").quote

        with self.assertRaises(InvalidTransition) as ctx:
            self.services.quote_acceptance.accept(
                self.db,
                item["id"],
                item_quote["id"],
                component_id=component["id"],
            )
        self.assertEqual(ctx.exception.code, "quote_target_mismatch")

    def test_concurrent_accepts_leave_one_accepted_quote(self) -> None:
        item = self.make_item()
        quote_ids = [
            self.add_quote(item["id"], "sup-a", "150.00").quote["id"],
            self.add_quote(item["id"], "sup-b", "145.00").quote["id"],
        ]
        barrier = threading.Barrier(len(quote_ids))
        errors = []

        def accept_in_own_connection(quote_id: int) -> None:
            db = open_database(self._temp_db.db_path)
            try:
                services = build_services(TEST_TENANT_ID, {}, event_bus=self.bus)
                barrier.wait(timeout=10)
                services.quote_acceptance.accept(db, item["id"], quote_id, f"buyer-{quote_id}")
            except Exception as exc:  # noqa: BLE001
                errors.append(exc)
            finally:
                db.close()

        threads = [threading.Thread(target=accept_in_own_connection, args=(quote_id,)) for quote_id in quote_ids]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        self.assertEqual(errors, [])
        self.assertEqual(self._accepted_count("item", item["id"]), 1)
        accepted = self.quotes.find_accepted(self.db, target_type="item", target_id=item["id"])
        stored_item = self.item(item["id"])
        self.assertEqual(stored_item["accepted_quote_id"], accepted["id"])
        self.assertEqual(stored_item["trade_price"], accepted["unit_price"])


if __name__ == "__main__":
    unittest.main()
