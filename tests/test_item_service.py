import unittest
from decimal import Decimal

from ffe_sync.errors import NotFoundError, ValidationError
from tests.helpers.procurement import ProcurementTestCase


class ItemServiceTest(ProcurementTestCase):
    sandbox_prefix = "item_service"

    def test_register_item_starts_not_requested(self) -> None:
        item = self.services.items.register_item(
            self.db,
            name="  Pendant Light ",
            quantity="3",
            currency="eur",
            project_id="proj-7",
            room_id="lobby",
            actor_id="designer-1",
        )

        self.assertEqual(item["name"], "Pendant Light")
        self.assertEqual(item["quantity"], 3)
        self.assertEqual(item["currency"], "EUR")
        self.assertEqual(item["status"], "NOT_REQUESTED")
        self.assertEqual(item["payment_status"], "NOT_INVOICED")
        self.assertEqual(item["paid_amount"], Decimal("0"))
        self.assertFalse(item["review_required"])
        [entry] = self.services.items.list_activity(self.db, item["id"])
        self.assertEqual(entry["entry_type"], "item_registered")
        self.assertEqual(entry["actor_type"], "user")

    def test_register_item_validation(self) -> None:
        cases = [
            ({"name": "", "quantity": 1}, "validation_error"),
            ({"name": "Chair", "quantity": 0}, "quantity_invalid"),
            ({"name": "Chair", "quantity": "two"}, "quantity_invalid"),
            ({"name": "Chair", "quantity": 1, "currency": "dollars"}, "currency_invalid"),
        ]
        for fields, code in cases:
            with self.subTest(code=code, fields=fields):
                with self.assertRaises(ValidationError) as ctx:
                    self.services.items.register_item(self.db, **fields)
                self.assertEqual(ctx.exception.code, code)
        self.assertEqual(self.count_rows("SELECT COUNT(*) FROM items"), 0)

    def test_register_component_requires_known_item(self) -> None:
        with self.assertRaises(NotFoundError):
            self.services.items.register_component(self.db, 9999, name="Cushion")

        item = self.make_item()
        component = self.services.items.register_component(self.db, item["id"], name="Cushion", quantity=2)
        self.assertEqual(component["item_id"], item["id"])
        self.assertEqual(component["quantity"], 2)
        self.assertIsNone(component["accepted_quote_id"])

    def test_activity_is_newest_first_and_limited(self) -> None:
        item = self.make_item()
        for trigger in ("rfq_sent", "quote_received", "quote_accepted"):
            self.services.status_sync.advance(self.db, item["id"], trigger)

        entries = self.services.items.list_activity(self.db, item["id"])
        self.assertEqual(
            [entry["new_status"] for entry in entries],
            ["QUOTE_APPROVED", "QUOTE_RECEIVED", "RFQ_SENT", "NOT_REQUESTED"],
        )
        self.assertEqual(entries[0]["actor_type"], "system")
        self.assertEqual(len(self.services.items.list_activity(self.db, item["id"], limit=2)), 2)
        self.assertEqual(len(self.services.items.list_activity(self.db, item["id"], limit=0)), 1)

    def test_summary_follows_item_through_stages(self) -> None:
        item = self.make_item("Dining Chair")
        summary = self.services.items.get_item_summary(self.db, item["id"])
        self.assertEqual(summary["quote"]["stage"], "no_quotes")
        self.assertEqual(summary["item"]["status_label"], "Not requested")
        self.assertIsNone(summary["budget"])
        self.assertIsNone(summary["order"])

        first = self.add_quote(item["id"], "sup-a", "150.00").quote
        self.add_quote(item["id"], "sup-b", "165.00")
        self.assertEqual(self.services.items.get_item_summary(self.db, item["id"])["quote"]["stage"], "pending_review")

        self.services.quote_acceptance.accept(self.db, item["id"], first["id"])
        summary = self.services.items.get_item_summary(self.db, item["id"])
        self.assertEqual(summary["quote"]["stage"], "accepted")
        self.assertEqual(summary["quote"]["accepted"]["id"], first["id"])
        self.assertEqual([quote["supplier_id"] for quote in summary["quote"]["alternatives"]], ["sup-b"])
        self.assertEqual(summary["quote"]["quote_count"], 2)

        self.add_quote(item["id"], "sup-a", "140.00")
        summary = self.services.items.get_item_summary(self.db, item["id"])
        self.assertEqual(summary["quote"]["stage"], "pending_review")
        self.assertTrue(summary["quote"]["review_required"])

        client_quote = self.services.client_quotes.create_client_quote(self.db, [item["id"]], markup_percent="10")
        self.services.client_quotes.issue_invoice(self.db, client_quote["id"])
        self.pay(client_quote["id"], "165.00")
        self.services.orders.create_orders(self.db, client_quote["id"])

        summary = self.services.items.get_item_summary(self.db, item["id"])
        self.assertEqual(summary["budget"]["quote_number"], client_quote["quote_number"])
        self.assertEqual(summary["budget"]["client_price"], Decimal("165.00"))
        self.assertEqual(summary["invoice"]["payment_status"], "FULLY_PAID")
        self.assertEqual(summary["invoice"]["paid_amount"], Decimal("165.00"))
        self.assertEqual(summary["order"]["supplier_id"], "sup-a")
        self.assertEqual(summary["item"]["status"], "ORDERED")
        self.assertLessEqual(len(summary["activity"]), 20)

    def test_unknown_item_summary(self) -> None:
        with self.assertRaises(NotFoundError) as ctx:
            self.services.items.get_item_summary(self.db, 9999)
        self.assertEqual(ctx.exception.code, "item_not_found")


if __name__ == "__main__":
    unittest.main()
