import json
import logging
import unittest

from ffe_sync import create_app
from ffe_sync.config import Config
from ffe_sync.db import close_db
from ffe_sync.observability import (
    JsonLogFormatter,
    bind_request_id,
    observe_status_advance,
    prometheus_metrics_text,
    reset_metrics_for_tests,
    set_log_request_id,
)
from tests.helpers.temp_db import TempDbSandbox


def _record(message: str = "status_advanced", **extra) -> logging.LogRecord:
    record = logging.LogRecord("ffe_sync.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class PrometheusEndpointTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_metrics_for_tests()
        self._temp_db = TempDbSandbox(prefix="observability")
        self.app = create_app(self._temp_db.make_config(Config, TESTING=True))
        self.client = self.app.test_client()
        self.headers = {"X-Tenant-Id": "tenant-metrics"}

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()
        reset_metrics_for_tests()

    def test_metrics_endpoint_exposes_counters(self) -> None:
        created = self.client.post("/api/procurement/items", json={"name": "Sofa"}, headers=self.headers)
        item_id = created.get_json()["id"]
        self.client.post(f"/api/procurement/items/{item_id}/status", json={"trigger": "rfq_sent"}, headers=self.headers)
        self.client.post(f"/api/procurement/items/{item_id}/status", json={"trigger": "rfq_sent"}, headers=self.headers)

        response = self.client.get("/metrics")

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.content_type.startswith("text/plain"))
        body = response.get_data(as_text=True)
        self.assertIn("# TYPE http_request_total counter", body)
        self.assertIn(
            'http_request_total{method="POST",route="/api/procurement/items",status="201"} 1',
            body,
        )
        self.assertIn("http_request_duration_ms_bucket", body)
        self.assertIn('item_status_advance_total{outcome="changed",trigger="rfq_sent"} 1', body)
        self.assertIn('item_status_advance_total{outcome="noop",trigger="rfq_sent"} 1', body)
        self.assertIn('domain_event_emitted_total{event_type="ItemStatusAdvanced"} 1', body)
        self.assertIn('items_by_status{status="RFQ_SENT"} 1', body)

    def test_health_reports_item_counts(self) -> None:
        self.client.post("/api/procurement/items", json={"name": "Lamp"}, headers=self.headers)

        response = self.client.get("/health")

        self.assertEqual(response.status_code, 200)
        payload = response.get_json()
        self.assertEqual(payload["status"], "ok")
        self.assertEqual(payload["db"], "sqlite")
        self.assertEqual(payload["items_by_status"], {"NOT_REQUESTED": 1})
        self.assertIn("status_advances", payload["metrics"])
        self.assertTrue(response.headers.get("X-Request-Id"))
        self.assertIn("X-Response-Time-Ms", response.headers)


class PrometheusTextTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_metrics_for_tests()

    def tearDown(self) -> None:
        reset_metrics_for_tests()

    def test_status_gauge_only_when_counts_are_known(self) -> None:
        observe_status_advance("quote_received", True)

        without_counts = prometheus_metrics_text()
        with_counts = prometheus_metrics_text(status_counts={"ORDERED": 2})

        self.assertNotIn("items_by_status", without_counts)
        self.assertIn('items_by_status{status="ORDERED"} 2', with_counts)
        self.assertIn("payment_allocated_total 0", without_counts)
        self.assertIn("orders_created_total 0", without_counts)
        self.assertTrue(without_counts.endswith("\n"))


class JsonLogFormatterTest(unittest.TestCase):
    def tearDown(self) -> None:
        set_log_request_id(None)

    def test_background_record_uses_bound_request_id(self) -> None:
        formatter = JsonLogFormatter()

        with bind_request_id("job-42"):
            inside = json.loads(formatter.format(_record(item_id=7)))
        set_log_request_id(None)
        outside = json.loads(formatter.format(_record()))

        self.assertEqual(inside["request_id"], "job-42")
        self.assertEqual(inside["item_id"], 7)
        self.assertEqual(inside["level"], "info")
        self.assertEqual(inside["logger"], "ffe_sync.test")
        self.assertEqual(inside["message"], "status_advanced")
        self.assertEqual(outside["request_id"], "n/a")

    def test_explicit_request_id_wins_outside_requests(self) -> None:
        formatter = JsonLogFormatter()
        set_log_request_id("ambient")

        payload = json.loads(formatter.format(_record(request_id="explicit")))

        self.assertEqual(payload["request_id"], "explicit")


if __name__ == "__main__":
    unittest.main()
