from typing import Any, Dict, Optional


class ShopError(Exception):
    """Base for errors that are turned into a JSON response at the request boundary."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra: Dict[str, Any] = extra

    def to_body(self) -> Dict[str, Any]:
        body = {"detail": self.message, "code": self.code}
        body.update(self.extra)
        return body


class InvalidRequest(ShopError):
    status_code = 422
    code = "validation_error"

    def __init__(self, message: str, fields: Optional[Dict[str, str]] = None):
        super().__init__(message, fields=fields or {})


class Unauthorized(ShopError):
    status_code = 401
    code = "unauthorized"


class Forbidden(ShopError):
    status_code = 403
    code = "forbidden"


class NotFound(ShopError):
    status_code = 404
    code = "not_found"


class Conflict(ShopError):
    status_code = 409
    code = "conflict"


class InvalidStatusTransition(Conflict):
    code = "invalid_status_transition"

    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot move order from '{current}' to '{requested}'",
                         current=current, requested=requested)


class PaymentNotConfirmed(ShopError):
    status_code = 402
    code = "payment_not_confirmed"


class PaymentProcessorError(ShopError):
    """The processor answered with an error; nothing was charged for this attempt."""

    status_code = 502
    code = "payment_failed"


class PaymentIndeterminate(ShopError):
    """The processor did not answer in time; the charge may or may not exist."""

    status_code = 504
    code = "payment_indeterminate"


class OrderPersistenceError(ShopError):
    """Payment was captured but the order could not be stored."""

    status_code = 500
    code = "order_persistence_failed"

    def __init__(self, message: str, payment_id: str, reconciliation_id: Optional[str] = None):
        super().__init__(message, payment_id=payment_id, reconciliation_id=reconciliation_id)
        self.payment_id = payment_id
        self.reconciliation_id = reconciliation_id


class StoreUnavailable(ShopError):
    status_code = 503
    code = "store_unavailable"


def fields_from(exc) -> Dict[str, str]:
    """Flatten a pydantic ``ValidationError`` into ``{"field.path": "message"}``."""
    return {".".join(str(p) for p in e["loc"]): e["msg"] for e in exc.errors()}
