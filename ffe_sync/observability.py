from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import threading
import time
import uuid
from datetime import datetime, timezone
from typing import Dict

from flask import g, has_request_context, request


_HTTP_DURATION_BUCKETS_MS = (5.0, 10.0, 25.0, 50.0, 100.0, 250.0, 500.0, 1000.0, 2500.0, 5000.0, 10000.0)

_LOG_REQUEST_ID_CTX: contextvars.ContextVar[str] = contextvars.ContextVar("log_request_id", default="")


def _normalize_request_id(value: str | None) -> str:
    return str(value or "").strip() or "n/a"


def set_log_request_id(request_id: str | None) -> None:
    _LOG_REQUEST_ID_CTX.set(_normalize_request_id(request_id))


@contextlib.contextmanager
def bind_request_id(request_id: str | None):
    token = _LOG_REQUEST_ID_CTX.set(_normalize_request_id(request_id))
    try:
        yield _LOG_REQUEST_ID_CTX.get()
    finally:
        _LOG_REQUEST_ID_CTX.reset(token)


def _background_request_id(default: str | None = None) -> str:
    request_id = str(_LOG_REQUEST_ID_CTX.get() or "").strip()
    if request_id:
        return request_id
    return default or "n/a"


class JsonLogFormatter(logging.Formatter):
    _base_keys = {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
    }

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, object] = {
            "ts": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if has_request_context():
            payload["request_id"] = current_request_id(default="n/a")
            payload["path"] = request.path
            payload["method"] = request.method
            if request.url_rule is not None:
                payload["route"] = request.url_rule.rule
        else:
            record_request_id = str(getattr(record, "request_id", "") or "").strip()
            payload["request_id"] = record_request_id or _background_request_id(default="n/a")

        for key, value in record.__dict__.items():
            if key in self._base_keys or key.startswith("_"):
                continue
            if key in payload:
                continue
            if callable(value):
                continue
            payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, separators=(",", ":"), default=str)


def configure_json_logging(app) -> None:
    if not bool(app.config.get("LOG_JSON", True)):
        return
    level_name = str(app.config.get("LOG_LEVEL", "INFO")).strip().upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)
    app.logger.handlers = []
    app.logger.propagate = True


def ensure_request_id() -> str:
    request_id = str(getattr(g, "request_id", "") or "").strip()
    if request_id:
        set_log_request_id(request_id)
        return request_id
    incoming = str(request.headers.get("X-Request-Id") or "").strip()
    request_id = incoming or str(uuid.uuid4())
    g.request_id = request_id
    set_log_request_id(request_id)
    return request_id


def current_request_id(default: str | None = None) -> str:
    if has_request_context():
        request_id = str(getattr(g, "request_id", "") or "").strip()
        if request_id:
            return request_id
    return _background_request_id(default=default)


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._http_request_total: Dict[tuple[str, str, str], int] = {}
        self._http_request_duration_ms: Dict[tuple[str, str], dict] = {}

        self._domain_event_emitted_total: Dict[str, int] = {}
        self._status_advance_total: Dict[tuple[str, str], int] = {}
        self._concurrency_conflict_total: Dict[str, int] = {}
        self._payment_allocated_total = 0
        self._orders_created_total = 0

    @staticmethod
    def _bucket_label(limit: float) -> str:
        return f"{limit:g}"

    @classmethod
    def _new_histogram_state(cls, limits: tuple[float, ...]) -> dict:
        return {
            "count": 0,
            "sum": 0.0,
            "buckets": {cls._bucket_label(limit): 0 for limit in limits} | {"+Inf": 0},
        }

    @classmethod
    def _observe_histogram(cls, state: dict, value: float, limits: tuple[float, ...]) -> None:
        duration = max(0.0, float(value))
        state["count"] += 1
        state["sum"] += duration
        for limit in limits:
            if duration <= limit:
                key = cls._bucket_label(limit)
                state["buckets"][key] = int(state["buckets"].get(key, 0)) + 1
        state["buckets"]["+Inf"] = int(state["count"])

    def observe_http(self, method: str, route: str, status_code: int, duration_ms: float) -> None:
        method_key = str(method or "GET").strip().upper() or "GET"
        route_key = str(route or "unknown").strip() or "unknown"
        status_key = str(int(status_code))

        with self._lock:
            self._http_request_total[(method_key, route_key, status_key)] = (
                int(self._http_request_total.get((method_key, route_key, status_key), 0)) + 1
            )
            histogram = self._http_request_duration_ms.setdefault(
                (method_key, route_key),
                self._new_histogram_state(_HTTP_DURATION_BUCKETS_MS),
            )
            self._observe_histogram(histogram, duration_ms, _HTTP_DURATION_BUCKETS_MS)

    def observe_domain_event_emitted(self, event_type: str) -> None:
        key = str(event_type or "unknown").strip() or "unknown"
        with self._lock:
            self._domain_event_emitted_total[key] = int(self._domain_event_emitted_total.get(key, 0)) + 1

    def observe_status_advance(self, trigger: str, changed: bool) -> None:
        key = (str(trigger or "unknown"), "changed" if changed else "noop")
        with self._lock:
            self._status_advance_total[key] = int(self._status_advance_total.get(key, 0)) + 1

    def observe_concurrency_conflict(self, operation: str) -> None:
        key = str(operation or "unknown").strip() or "unknown"
        with self._lock:
            self._concurrency_conflict_total[key] = int(self._concurrency_conflict_total.get(key, 0)) + 1

    def observe_payment_allocated(self, count: int = 1) -> None:
        with self._lock:
            self._payment_allocated_total += max(0, int(count or 0))

    def observe_orders_created(self, count: int = 1) -> None:
        with self._lock:
            self._orders_created_total += max(0, int(count or 0))

    def snapshot(self) -> dict:
        with self._lock:
            requests_total = sum(self._http_request_total.values())
            errors_total = sum(
                value for (_, _, status), value in self._http_request_total.items() if int(status) >= 400
            )
            advances_changed = sum(v for (_, outcome), v in self._status_advance_total.items() if outcome == "changed")
            advances_noop = sum(v for (_, outcome), v in self._status_advance_total.items() if outcome == "noop")
            return {
                "requests_total": int(requests_total),
                "errors_total": int(errors_total),
                "domain_events": {
                    "emitted_total": int(sum(self._domain_event_emitted_total.values())),
                    "by_type": dict(sorted(self._domain_event_emitted_total.items())),
                },
                "status_advances": {
                    "changed_total": int(advances_changed),
                    "noop_total": int(advances_noop),
                },
                "concurrency_conflicts": {
                    "total": int(sum(self._concurrency_conflict_total.values())),
                    "by_operation": dict(sorted(self._concurrency_conflict_total.items())),
                },
                "payments_allocated_total": int(self._payment_allocated_total),
                "orders_created_total": int(self._orders_created_total),
            }

    def prometheus_snapshot(self) -> dict:
        with self._lock:
            http_totals = [
                {
                    "method": method,
                    "route": route,
                    "status": status,
                    "value": int(value),
                }
                for (method, route, status), value in sorted(self._http_request_total.items())
            ]
            http_histograms = []
            for (method, route), histogram in sorted(self._http_request_duration_ms.items()):
                http_histograms.append(
                    {
                        "method": method,
                        "route": route,
                        "count": int(histogram["count"]),
                        "sum": float(histogram["sum"]),
                        "buckets": {label: int(count) for label, count in histogram["buckets"].items()},
                    }
                )
            return {
                "http_request_total": http_totals,
                "http_request_duration_ms": http_histograms,
                "domain_event_emitted_total": dict(sorted(self._domain_event_emitted_total.items())),
                "status_advance_total": dict(sorted(self._status_advance_total.items())),
                "concurrency_conflict_total": dict(sorted(self._concurrency_conflict_total.items())),
                "payment_allocated_total": int(self._payment_allocated_total),
                "orders_created_total": int(self._orders_created_total),
            }

    def reset(self) -> None:
        with self._lock:
            self._http_request_total.clear()
            self._http_request_duration_ms.clear()
            self._domain_event_emitted_total.clear()
            self._status_advance_total.clear()
            self._concurrency_conflict_total.clear()
            self._payment_allocated_total = 0
            self._orders_created_total = 0


_METRICS = MetricsRegistry()


def mark_request_start() -> None:
    g._request_started_at = time.perf_counter()


def observe_response(response):
    started = float(getattr(g, "_request_started_at", 0.0) or 0.0)
    elapsed_ms = 0.0
    if started > 0.0:
        elapsed_ms = (time.perf_counter() - started) * 1000.0
    route = request.url_rule.rule if request.url_rule is not None else request.path
    _METRICS.observe_http(request.method, route, int(response.status_code), elapsed_ms)
    response.headers["X-Response-Time-Ms"] = f"{elapsed_ms:.2f}"
    return response


def metrics_snapshot() -> dict:
    return _METRICS.snapshot()


def observe_domain_event_emitted(event_type: str) -> None:
    _METRICS.observe_domain_event_emitted(event_type)


def observe_status_advance(trigger: str, changed: bool) -> None:
    _METRICS.observe_status_advance(trigger, changed)


def observe_concurrency_conflict(operation: str) -> None:
    _METRICS.observe_concurrency_conflict(operation)


def observe_payment_allocated(count: int = 1) -> None:
    _METRICS.observe_payment_allocated(count)


def observe_orders_created(count: int = 1) -> None:
    _METRICS.observe_orders_created(count)


def _prom_label(value: object) -> str:
    return str(value).replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _prom_line(name: str, value: int | float, labels: dict[str, object] | None = None) -> str:
    if labels:
        labels_blob = ",".join(f'{key}="{_prom_label(val)}"' for key, val in sorted(labels.items()))
        return f"{name}{{{labels_blob}}} {value}"
    return f"{name} {value}"


def prometheus_metrics_text(*, status_counts: dict | None = None) -> str:
    snapshot = _METRICS.prometheus_snapshot()
    lines: list[str] = []

    lines.append("# HELP http_request_total Total HTTP requests by method, route and status.")
    lines.append("# TYPE http_request_total counter")
    for sample in snapshot["http_request_total"]:
        lines.append(
            _prom_line(
                "http_request_total",
                int(sample["value"]),
                labels={
                    "method": sample["method"],
                    "route": sample["route"],
                    "status": sample["status"],
                },
            )
        )

    lines.append("# HELP http_request_duration_ms HTTP request duration in milliseconds.")
    lines.append("# TYPE http_request_duration_ms histogram")
    for hist in snapshot["http_request_duration_ms"]:
        base_labels = {"method": hist["method"], "route": hist["route"]}
        for le_label, bucket_value in hist["buckets"].items():
            lines.append(
                _prom_line(
                    "http_request_duration_ms_bucket",
                    int(bucket_value),
                    labels=base_labels | {"le": le_label},
                )
            )
        lines.append(_prom_line("http_request_duration_ms_sum", float(hist["sum"]), labels=base_labels))
        lines.append(_prom_line("http_request_duration_ms_count", int(hist["count"]), labels=base_labels))

    lines.append("# HELP domain_event_emitted_total Domain events published by type.")
    lines.append("# TYPE domain_event_emitted_total counter")
    for event_type, value in snapshot["domain_event_emitted_total"].items():
        lines.append(_prom_line("domain_event_emitted_total", int(value), labels={"event_type": event_type}))

    lines.append("# HELP item_status_advance_total Status advance attempts by trigger and outcome.")
    lines.append("# TYPE item_status_advance_total counter")
    for (trigger, outcome), value in snapshot["status_advance_total"].items():
        lines.append(
            _prom_line("item_status_advance_total", int(value), labels={"trigger": trigger, "outcome": outcome})
        )

    lines.append("# HELP concurrency_conflict_total Optimistic lock conflicts by operation.")
    lines.append("# TYPE concurrency_conflict_total counter")
    for operation, value in snapshot["concurrency_conflict_total"].items():
        lines.append(_prom_line("concurrency_conflict_total", int(value), labels={"operation": operation}))

    lines.append("# HELP payment_allocated_total Payments allocated across client quote lines.")
    lines.append("# TYPE payment_allocated_total counter")
    lines.append(_prom_line("payment_allocated_total", int(snapshot["payment_allocated_total"])))

    lines.append("# HELP orders_created_total Supplier orders created.")
    lines.append("# TYPE orders_created_total counter")
    lines.append(_prom_line("orders_created_total", int(snapshot["orders_created_total"])))

    if status_counts is not None:
        lines.append("# HELP items_by_status Items per procurement status.")
        lines.append("# TYPE items_by_status gauge")
        for status, value in sorted(status_counts.items()):
            lines.append(_prom_line("items_by_status", int(value), labels={"status": status}))

    return "\n".join(lines) + "\n"


def reset_metrics_for_tests() -> None:
    _METRICS.reset()
    set_log_request_id(None)


def items_by_status(db) -> dict:
    rows = db.execute(
        """
        SELECT status, COUNT(*) AS total
        FROM items
        GROUP BY status
        """
    ).fetchall()
    return {str(row["status"]): int(row["total"]) for row in rows}
