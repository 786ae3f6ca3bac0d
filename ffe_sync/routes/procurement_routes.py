from __future__ import annotations

from typing import Any, Dict, List

from flask import Blueprint, current_app, jsonify, request

from ffe_sync.application import ProcurementServices, build_services
from ffe_sync.db import get_db
from ffe_sync.domain.contracts import QuoteInput, QuoteTarget, jsonable
from ffe_sync.errors import ValidationError
from ffe_sync.messages import success_message
from ffe_sync.tenant import current_actor_id, scoped_tenant_id


procurement_bp = Blueprint("procurement", __name__, url_prefix="/api/procurement")


def _services() -> ProcurementServices:
    return build_services(scoped_tenant_id(), current_app.config)


def _json_payload() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError(details="request body must be a JSON object")
    return payload


def _parse_int(value, default: int, *, min_value: int, max_value: int) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return max(min_value, min(parsed, max_value))


def _optional_id(value, *, field: str) -> int | None:
    if value is None or str(value).strip() == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(details=f"{field} must be an integer", payload={"field": field}) from exc


def _id_list(value, *, field: str) -> List[int] | None:
    if value is None:
        return None
    if not isinstance(value, list):
        raise ValidationError(details=f"{field} must be a list", payload={"field": field})
    return [_optional_id(entry, field=field) for entry in value if entry is not None]


@procurement_bp.route("/items", methods=["POST"])
def register_item_api():
    payload = _json_payload()
    item = _services().items.register_item(
        get_db(),
        name=payload.get("name"),
        quantity=payload.get("quantity", 1),
        currency=payload.get("currency"),
        project_id=payload.get("project_id"),
        room_id=payload.get("room_id"),
        actor_id=current_actor_id(),
    )
    return jsonify(jsonable(item)), 201


@procurement_bp.route("/items/<int:item_id>", methods=["GET"])
def item_summary_api(item_id: int):
    return jsonify(jsonable(_services().items.get_item_summary(get_db(), item_id)))


@procurement_bp.route("/items/<int:item_id>/activity", methods=["GET"])
def item_activity_api(item_id: int):
    limit = _parse_int(request.args.get("limit"), default=120, min_value=1, max_value=500)
    entries = _services().items.list_activity(get_db(), item_id, limit=limit)
    return jsonify({"items": jsonable(entries)})


@procurement_bp.route("/items/<int:item_id>/components", methods=["POST"])
def register_component_api(item_id: int):
    payload = _json_payload()
    component = _services().items.register_component(
        get_db(),
        item_id,
        name=payload.get("name"),
        quantity=payload.get("quantity", 1),
        actor_id=current_actor_id(),
    )
    return jsonify(jsonable(component)), 201


@procurement_bp.route("/items/<int:item_id>/status", methods=["POST"])
def advance_item_api(item_id: int):
    payload = _json_payload()
    result = _services().status_sync.advance(get_db(), item_id, payload.get("trigger"), actor_id=current_actor_id())
    return jsonify(result.to_payload())


@procurement_bp.route("/items/status", methods=["POST"])
def advance_items_api():
    payload = _json_payload()
    item_ids = _id_list(payload.get("item_ids"), field="item_ids") or []
    if not item_ids:
        raise ValidationError(code="items_required", message_key="items_required", payload={"field": "item_ids"})
    results = _services().status_sync.advance_many(
        get_db(),
        item_ids,
        payload.get("trigger"),
        actor_id=current_actor_id(),
    )
    return jsonify({"items": [result.to_payload() for result in results]})


@procurement_bp.route("/items/<int:item_id>/quotes", methods=["POST"])
def ingest_quote_api(item_id: int):
    payload = _json_payload()
    target = QuoteTarget(item_id=item_id, component_id=_optional_id(payload.get("component_id"), field="component_id"))
    result = _services().quote_registry.ingest(
        get_db(),
        target,
        QuoteInput(
            supplier_id=payload.get("supplier_id"),
            supplier_name=payload.get("supplier_name"),
            unit_price=payload.get("unit_price"),
            quantity=payload.get("quantity", 1),
            currency=payload.get("currency"),
            total_price=payload.get("total_price"),
            lead_time_days=payload.get("lead_time_days"),
            document_ref=payload.get("document_ref"),
        ),
        actor_id=current_actor_id(),
    )
    body = result.to_payload()
    body["message"] = success_message("quote_review_required" if result.review_required else "quote_ingested")
    return jsonify(body), 201


@procurement_bp.route("/items/<int:item_id>/quotes/comparison", methods=["GET"])
def quote_comparison_api(item_id: int):
    component_id = _optional_id(request.args.get("component_id"), field="component_id")
    comparison = _services().quote_registry.get_comparison(get_db(), item_id, component_id=component_id)
    return jsonify(comparison.to_payload())


@procurement_bp.route("/items/<int:item_id>/quotes/<int:quote_id>/accept", methods=["POST"])
def accept_quote_api(item_id: int, quote_id: int):
    payload = _json_payload()
    result = _services().quote_acceptance.accept(
        get_db(),
        item_id,
        quote_id,
        current_actor_id(),
        component_id=_optional_id(payload.get("component_id"), field="component_id"),
        markup_percent=payload.get("markup_percent"),
    )
    body = result.to_payload()
    body["message"] = success_message("quote_accepted")
    return jsonify(body)


@procurement_bp.route("/quotes/<int:quote_id>/versions", methods=["GET"])
def quote_versions_api(quote_id: int):
    chain = _services().quote_registry.get_version_chain(get_db(), quote_id)
    return jsonify({"items": jsonable(chain)})


@procurement_bp.route("/client-quotes", methods=["POST"])
def create_client_quote_api():
    payload = _json_payload()
    client_quote = _services().client_quotes.create_client_quote(
        get_db(),
        _id_list(payload.get("item_ids"), field="item_ids") or [],
        project_id=payload.get("project_id"),
        actor_id=current_actor_id(),
        markup_percent=payload.get("markup_percent"),
    )
    return jsonify(jsonable(client_quote)), 201


@procurement_bp.route("/client-quotes/<int:client_quote_id>", methods=["GET"])
def client_quote_api(client_quote_id: int):
    return jsonify(jsonable(_services().client_quotes.get_client_quote(get_db(), client_quote_id)))


@procurement_bp.route("/client-quotes/<int:client_quote_id>/send", methods=["POST"])
def send_client_quote_api(client_quote_id: int):
    client_quote = _services().client_quotes.send_client_quote(get_db(), client_quote_id, actor_id=current_actor_id())
    return jsonify(jsonable(client_quote))


@procurement_bp.route("/client-quotes/<int:client_quote_id>/approve", methods=["POST"])
def approve_client_quote_api(client_quote_id: int):
    client_quote = _services().client_quotes.approve_client_quote(get_db(), client_quote_id, actor_id=current_actor_id())
    return jsonify(jsonable(client_quote))


@procurement_bp.route("/client-quotes/<int:client_quote_id>/invoice", methods=["POST"])
def issue_invoice_api(client_quote_id: int):
    client_quote = _services().client_quotes.issue_invoice(get_db(), client_quote_id, actor_id=current_actor_id())
    return jsonify(jsonable(client_quote))


@procurement_bp.route("/client-quotes/<int:client_quote_id>/payments", methods=["POST"])
def record_payment_api(client_quote_id: int):
    payload = _json_payload()
    payment = _services().payments.record_payment(
        get_db(),
        client_quote_id,
        payload.get("amount"),
        paid_at=payload.get("paid_at"),
        currency=payload.get("currency"),
        external_ref=payload.get("external_ref"),
    )
    return jsonify(jsonable(payment)), 201


@procurement_bp.route("/payments/<int:payment_id>/allocate", methods=["POST"])
def allocate_payment_api(payment_id: int):
    result = _services().payments.allocate(get_db(), payment_id, actor_id=current_actor_id())
    body = result.to_payload()
    body["message"] = success_message("payment_allocated")
    return jsonify(body)


@procurement_bp.route("/client-quotes/<int:client_quote_id>/orders/preview", methods=["GET"])
def preview_orders_api(client_quote_id: int):
    plan = _services().orders.preview_orders(get_db(), client_quote_id)
    return jsonify(plan.to_payload())


@procurement_bp.route("/client-quotes/<int:client_quote_id>/orders", methods=["POST"])
def create_orders_api(client_quote_id: int):
    payload = _json_payload()
    result = _services().orders.create_orders(
        get_db(),
        client_quote_id,
        current_actor_id(),
        item_ids=_id_list(payload.get("item_ids"), field="item_ids"),
    )
    body = result.to_payload()
    body["message"] = success_message("orders_created")
    return jsonify(body), 201


@procurement_bp.route("/orders/<int:order_id>", methods=["GET"])
def order_api(order_id: int):
    return jsonify(jsonable(_services().orders.get_order(get_db(), order_id)))


@procurement_bp.route("/orders/<int:order_id>/status", methods=["POST"])
def order_status_api(order_id: int):
    payload = _json_payload()
    result = _services().orders.update_order_status(
        get_db(),
        order_id,
        payload.get("status"),
        current_actor_id(),
    )
    return jsonify(result.to_payload())
