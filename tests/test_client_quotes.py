import re
import unittest
from decimal import Decimal

from ffe_sync.application.client_quotes import client_unit_price
from ffe_sync.errors import NotFoundError, ValidationError
from tests.helpers.procurement import ProcurementTestCase


class ClientUnitPriceTest(unittest.TestCase):
    def test_markup_is_applied_and_rounded_half_up(self) -> None:
        self.assertEqual(client_unit_price(Decimal("100.00"), Decimal("15"), "USD"), Decimal("115.00"))
        self.assertEqual(client_unit_price(Decimal("10.05"), Decimal("10"), "USD"), Decimal("11.06"))
        self.assertEqual(client_unit_price(Decimal("999"), Decimal("12.5"), "JPY"), Decimal("1124"))


class ClientQuoteServiceTest(ProcurementTestCase):
    sandbox_prefix = "client_quotes"

    def test_lines_use_item_markup_by_default(self) -> None:
        sofa = self.accepted_item("Sofa", "sup-a", "1000.00", quantity=2, markup_percent="15")

        client_quote = self.services.client_quotes.create_client_quote(self.db, [sofa["id"]], actor_id="designer-1")

        self.assertRegex(client_quote["quote_number"], r"^CQ-\d{4}-0001$")
        self.assertEqual(client_quote["status"], "DRAFT")
        self.assertEqual(client_quote["total_amount"], Decimal("2300.00"))
        [line] = client_quote["lines"]
        self.assertEqual(line["item_id"], sofa["id"])
        self.assertEqual(line["quote_line_item_id"], sofa["accepted_quote_id"])
        self.assertEqual(line["trade_unit_price"], Decimal("1000.00"))
        self.assertEqual(line["markup_percent"], Decimal("15"))
        self.assertEqual(line["client_unit_price"], Decimal("1150.00"))
        self.assertEqual(line["client_price"], Decimal("2300.00"))

    def test_explicit_markup_overrides_item_markup(self) -> None:
        sofa = self.accepted_item("Sofa", "sup-a", "1000.00", markup_percent="15")
        client_quote = self.services.client_quotes.create_client_quote(self.db, [sofa["id"]], markup_percent="30")
        self.assertEqual(client_quote["lines"][0]["client_price"], Decimal("1300.00"))

    def test_configured_default_markup_applies_last(self) -> None:
        self.services = self.build_services(DEFAULT_MARKUP_PERCENT="10")
        lamp = self.accepted_item("Lamp", "sup-a", "200.00")
        client_quote = self.services.client_quotes.create_client_quote(self.db, [lamp["id"]])
        self.assertEqual(client_quote["lines"][0]["markup_percent"], Decimal("10"))
        self.assertEqual(client_quote["total_amount"], Decimal("220.00"))

    def test_numbers_increment_per_tenant(self) -> None:
        first_item = self.accepted_item("Sofa", "sup-a", "1000.00")
        second_item = self.accepted_item("Lamp", "sup-b", "200.00")

        first = self.services.client_quotes.create_client_quote(self.db, [first_item["id"]])
        second = self.services.client_quotes.create_client_quote(self.db, [second_item["id"]])

        first_sequence = int(re.search(r"(\d{4})$", first["quote_number"]).group(1))
        second_sequence = int(re.search(r"(\d{4})$", second["quote_number"]).group(1))
        self.assertEqual(second_sequence, first_sequence + 1)

    def test_items_need_an_accepted_quote(self) -> None:
        accepted = self.accepted_item("Sofa", "sup-a", "1000.00")
        pending = self.make_item("Rug")
        self.add_quote(pending["id"], "sup-b", "400.00")

        with self.assertRaises(ValidationError) as ctx:
            self.services.client_quotes.create_client_quote(self.db, [accepted["id"], pending["id"]])

        self.assertEqual(ctx.exception.code, "accepted_quote_required")
        self.assertEqual(ctx.exception.payload["item_id"], pending["id"])
        self.assertEqual(self.count_rows("SELECT COUNT(*) FROM client_quotes"), 0)

    def test_empty_and_unknown_item_lists_are_rejected(self) -> None:
        with self.assertRaises(ValidationError) as empty:
            self.services.client_quotes.create_client_quote(self.db, [])
        self.assertEqual(empty.exception.code, "items_required")

        with self.assertRaises(NotFoundError):
            self.services.client_quotes.create_client_quote(self.db, [9999])

    def test_mixed_currencies_are_rejected(self) -> None:
        dollars = self.accepted_item("Sofa", "sup-a", "1000.00")
        yen = self.make_item("Tatami", currency="JPY")
        quote = self.add_quote(yen["id"], "sup-jp", "15000").quote
        self.services.quote_acceptance.accept(self.db, yen["id"], quote["id"])

        with self.assertRaises(ValidationError) as ctx:
            self.services.client_quotes.create_client_quote(self.db, [dollars["id"], yen["id"]])
        self.assertEqual(ctx.exception.code, "currency_invalid")

    def test_lifecycle_advances_item_status(self) -> None:
        sofa = self.accepted_item("Sofa", "sup-a", "1000.00", markup_percent="20")
        client_quote = self.services.client_quotes.create_client_quote(self.db, [sofa["id"]])
        self.assertEqual(self.item(sofa["id"])["status"], "QUOTE_APPROVED")

        sent = self.services.client_quotes.send_client_quote(self.db, client_quote["id"], actor_id="designer-1")
        self.assertTrue(sent["changed"])
        self.assertEqual(sent["status"], "SENT")
        self.assertIsNotNone(sent["sent_at"])
        self.assertEqual(self.item(sofa["id"])["status"], "BUDGET_SENT")

        resent = self.services.client_quotes.send_client_quote(self.db, client_quote["id"])
        self.assertFalse(resent["changed"])

        self.services.client_quotes.approve_client_quote(self.db, client_quote["id"])
        self.assertEqual(self.item(sofa["id"])["status"], "BUDGET_APPROVED")

        invoiced = self.services.client_quotes.issue_invoice(self.db, client_quote["id"])
        self.assertEqual(invoiced["status"], "INVOICED")
        stored_item = self.item(sofa["id"])
        self.assertEqual(stored_item["status"], "INVOICED")
        self.assertEqual(stored_item["payment_status"], "INVOICED")
        self.assertEqual(stored_item["client_price"], Decimal("1200.00"))

        late_approval = self.services.client_quotes.approve_client_quote(self.db, client_quote["id"])
        self.assertFalse(late_approval["changed"])
        self.assertEqual(self.services.client_quotes.get_client_quote(self.db, client_quote["id"])["status"], "INVOICED")

    def test_unknown_client_quote_is_not_found(self) -> None:
        with self.assertRaises(NotFoundError) as ctx:
            self.services.client_quotes.send_client_quote(self.db, 9999)
        self.assertEqual(ctx.exception.code, "client_quote_not_found")


if __name__ == "__main__":
    unittest.main()
