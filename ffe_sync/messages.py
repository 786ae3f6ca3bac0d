from __future__ import annotations

from typing import Dict


STATUS_LABELS: Dict[str, str] = {
    "NOT_REQUESTED": "Not requested",
    "RFQ_SENT": "RFQ sent",
    "QUOTE_RECEIVED": "Quote received",
    "QUOTE_APPROVED": "Quote approved",
    "BUDGET_SENT": "Budget sent",
    "BUDGET_APPROVED": "Budget approved",
    "INVOICED": "Invoiced",
    "PARTIALLY_PAID": "Partially paid",
    "FULLY_PAID": "Fully paid",
    "ORDERED": "Ordered",
    "SHIPPED": "Shipped",
    "RECEIVED": "Received",
    "INSTALLED": "Installed",
    "CLOSED": "Closed",
}


PAYMENT_STATUS_LABELS: Dict[str, str] = {
    "NOT_INVOICED": "Not invoiced",
    "INVOICED": "Invoiced",
    "DEPOSIT_PAID": "Deposit paid",
    "FULLY_PAID": "Fully paid",
}


MESSAGES: Dict[str, Dict[str, str]] = {
    "error": {
        "unexpected_error": "The operation could not be completed.",
        "validation_error": "The request contains invalid data.",
        "not_found": "The requested record was not found.",
        "item_not_found": "Item not found.",
        "component_not_found": "Component not found.",
        "quote_not_found": "Quote not found.",
        "client_quote_not_found": "Client quote not found.",
        "payment_not_found": "Payment not found.",
        "order_not_found": "Order not found.",
        "invalid_transition": "This action is not allowed in the current state.",
        "quote_not_latest": "Only the latest version of a supplier quote can be accepted.",
        "quote_target_mismatch": "The quote does not belong to this item.",
        "order_status_invalid": "The order cannot move to the requested status.",
        "overpayment": "The payment exceeds the amount due for at least one item.",
        "concurrency_conflict": "The record was changed by another operation.",
        "trigger_invalid": "Unknown status trigger.",
        "items_required": "Provide at least one valid item.",
        "amount_invalid": "Amount is invalid.",
        "currency_invalid": "Currency is invalid.",
        "quantity_invalid": "Quantity must be a positive integer.",
        "supplier_required": "Supplier is required.",
        "accepted_quote_required": "Every item needs an accepted quote first.",
        "client_quote_empty": "The client quote has no priced lines.",
        "nothing_to_order": "No eligible items to order.",
    },
    "suggestion": {
        "concurrency_conflict": "Reload the record and retry the operation.",
        "overpayment": "Reconcile the payment against the invoice before allocating it.",
    },
    "success": {
        "quote_ingested": "Quote recorded.",
        "quote_accepted": "Quote accepted.",
        "quote_review_required": "A newer quote replaced the accepted one. Review and accept it explicitly.",
        "payment_allocated": "Payment allocated.",
        "orders_created": "Orders created.",
    },
}


def get_message(category: str, key: str, default: str | None = None) -> str:
    message = MESSAGES.get(category, {}).get(key)
    if message:
        return message
    if default is not None:
        return default
    return key


def error_message(key: str, default: str | None = None) -> str:
    return get_message("error", key, default)


def success_message(key: str, default: str | None = None) -> str:
    return get_message("success", key, default)


def suggestion_message(key: str) -> str | None:
    return MESSAGES.get("suggestion", {}).get(key)


def status_label(status: str | None) -> str:
    key = str(status or "").strip()
    return STATUS_LABELS.get(key) or PAYMENT_STATUS_LABELS.get(key) or key
