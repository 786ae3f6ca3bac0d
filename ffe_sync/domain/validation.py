from __future__ import annotations

from ffe_sync.errors import ValidationError


def parse_quantity(value, *, field: str = "quantity") -> int:
    if isinstance(value, bool):
        value = None
    try:
        quantity = int(str(value).strip())
    except (TypeError, ValueError):
        quantity = 0
    if quantity <= 0:
        raise ValidationError(
            code="quantity_invalid",
            message_key="quantity_invalid",
            details=f"{field} must be a positive integer",
            payload={"field": field},
        )
    return quantity


def parse_optional_non_negative_int(value, *, field: str) -> int | None:
    if value is None or str(value).strip() == "":
        return None
    try:
        parsed = int(str(value).strip())
    except ValueError:
        parsed = -1
    if parsed < 0 or isinstance(value, bool):
        raise ValidationError(
            code="validation_error",
            details=f"{field} must be a non-negative integer",
            payload={"field": field},
        )
    return parsed


def require_text(value, *, field: str, code: str = "validation_error") -> str:
    text = str(value or "").strip()
    if not text:
        raise ValidationError(
            code=code,
            message_key=code,
            details=f"{field} is required",
            payload={"field": field},
        )
    return text


def optional_text(value) -> str | None:
    text = str(value or "").strip()
    return text or None
