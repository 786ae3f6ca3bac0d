from __future__ import annotations

from typing import Any, Dict

from ffe_sync.messages import error_message, suggestion_message


class AppError(Exception):
    default_code = "system_error"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True
    retryable = False

    def __init__(
        self,
        code: str | None = None,
        message_key: str | None = None,
        http_status: int | None = None,
        critical: bool | None = None,
        details: str | None = None,
        payload: Dict[str, Any] | None = None,
    ) -> None:
        self.code = (code or self.default_code).strip()
        self.message_key = (message_key or self.default_message_key).strip()
        self.http_status = int(http_status or self.default_http_status)
        self.critical = bool(self.default_critical if critical is None else critical)
        self.details = (details or "").strip() or None
        self.payload = dict(payload or {})
        super().__init__(self.details or self.code)

    def user_message(self) -> str:
        fallback = error_message("unexpected_error", "The operation could not be completed.")
        return error_message(self.message_key, fallback)

    def suggestion(self) -> str | None:
        return suggestion_message(self.default_code)

    def to_response_payload(self, request_id: str) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "error": self.code,
            "message": self.user_message(),
            "request_id": request_id,
            "retryable": self.retryable,
        }
        suggestion = self.suggestion()
        if suggestion:
            payload["suggestion"] = suggestion
        if self.payload:
            payload.update(self.payload)
        return payload


class ValidationError(AppError):
    default_code = "validation_error"
    default_message_key = "validation_error"
    default_http_status = 400
    default_critical = False


class NotFoundError(AppError):
    default_code = "not_found"
    default_message_key = "not_found"
    default_http_status = 404
    default_critical = False


class InvalidTransition(AppError):
    default_code = "invalid_transition"
    default_message_key = "invalid_transition"
    default_http_status = 409
    default_critical = False


class OverpaymentError(AppError):
    default_code = "overpayment"
    default_message_key = "overpayment"
    default_http_status = 422
    default_critical = False


class ConcurrencyConflict(AppError):
    default_code = "concurrency_conflict"
    default_message_key = "concurrency_conflict"
    default_http_status = 409
    default_critical = False
    retryable = True


class SystemError(AppError):
    default_code = "system_error"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True


def not_found(entity: str, entity_id: Any) -> NotFoundError:
    return NotFoundError(
        code=f"{entity}_not_found",
        message_key=f"{entity}_not_found",
        details=f"{entity} {entity_id} not found",
        payload={"entity": entity, "entity_id": entity_id},
    )
