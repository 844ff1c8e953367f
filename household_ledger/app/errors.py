"""
errors.py — AppError hierarchy and error code registry.

Every error returned by the ledger API must use a code defined here.
Do not raise strings or generic exceptions from service or route code.

Rules:
  - Error codes are a versioned contract. They do not change once published.
  - Error messages are human-readable prose. They may be improved at any time.
  - Never conflate 401 (unauthenticated) with 403 (unauthorized).
  - Only TransientPersistenceError is retryable. Everything else is final.
"""

from __future__ import annotations


class AppError(Exception):

    kind: str = "error"
    retryable: bool = False

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # which request field caused the error

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


# ── Error kinds ────────────────────────────────────────────────────────────
# Each subclass pins the HTTP status for its kind so call sites only name the
# code and the message.

class ValidationFailed(AppError):
    kind = "validation"

    def __init__(self, code: str, message: str, field: str | None = None) -> None:
        super().__init__(code, message, 400, field=field)


class NotFoundError(AppError):
    kind = "not_found"

    def __init__(self, code: str, message: str, field: str | None = None) -> None:
        super().__init__(code, message, 404, field=field)


class ForbiddenError(AppError):
    kind = "forbidden"

    def __init__(self, code: str, message: str, field: str | None = None) -> None:
        super().__init__(code, message, 403, field=field)


class ConflictError(AppError):
    kind = "conflict"

    def __init__(self, code: str, message: str, field: str | None = None) -> None:
        super().__init__(code, message, 409, field=field)


class BusinessRuleError(AppError):
    kind = "business_rule"

    def __init__(self, code: str, message: str, field: str | None = None) -> None:
        super().__init__(code, message, 422, field=field)


class TransientPersistenceError(AppError):
    """A storage conflict or outage that may succeed if the whole operation is re-run."""

    kind = "transient"
    retryable = True

    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.SERVICE_UNAVAILABLE, message, 503)


# ── Error Code Registry ────────────────────────────────────────────────────
#
# Organised by category. HTTP status is indicated in the comment.
# These are the string values sent in the API response.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"
    INVALID_AMOUNT             = "INVALID_AMOUNT"
    INVALID_AMOUNT_PRECISION   = "INVALID_AMOUNT_PRECISION"
    INVALID_OBLIGATION         = "INVALID_OBLIGATION"
    DUPLICATE_OBLIGATION_USER  = "DUPLICATE_OBLIGATION_USER"
    OBLIGATIONS_EXCEED_AMOUNT  = "OBLIGATIONS_EXCEED_AMOUNT"
    INVALID_QUANTITY           = "INVALID_QUANTITY"
    INVALID_FILTER             = "INVALID_FILTER"
    TOO_MANY_ATTACHMENTS       = "TOO_MANY_ATTACHMENTS"

    # ── Conflict Errors (409) ──────────────────────────────────────────────
    ALREADY_SETTLED            = "ALREADY_SETTLED"
    ALREADY_MEMBER             = "ALREADY_MEMBER"
    DUPLICATE_RECORD           = "DUPLICATE_RECORD"

    # ── Not Found Errors (404) ─────────────────────────────────────────────
    USER_NOT_FOUND             = "USER_NOT_FOUND"
    HOUSEHOLD_NOT_FOUND        = "HOUSEHOLD_NOT_FOUND"
    EXPENSE_NOT_FOUND          = "EXPENSE_NOT_FOUND"
    OBLIGATION_NOT_FOUND       = "OBLIGATION_NOT_FOUND"
    NO_DATA_FOR_PERIOD         = "NO_DATA_FOR_PERIOD"

    # ── Business Rule Violations (422) ────────────────────────────────────
    PAYER_NOT_MEMBER           = "PAYER_NOT_MEMBER"
    OBLIGATION_USER_NOT_MEMBER = "OBLIGATION_USER_NOT_MEMBER"
    PRIMARY_HOLDER_NOT_MEMBER  = "PRIMARY_HOLDER_NOT_MEMBER"
    NO_PAYER_CONFIGURED        = "NO_PAYER_CONFIGURED"

    # ── Auth Errors ────────────────────────────────────────────────────────
    # 401 = we do not know who you are (unauthenticated)
    # 403 = we know who you are, but you are not allowed
    TOKEN_MISSING              = "TOKEN_MISSING"          # 401
    TOKEN_INVALID              = "TOKEN_INVALID"          # 401
    TOKEN_EXPIRED              = "TOKEN_EXPIRED"          # 401
    NOT_A_MEMBER               = "NOT_A_MEMBER"           # 403
    FORBIDDEN                  = "FORBIDDEN"              # 403

    # ── HTTP-level Errors (werkzeug) ───────────────────────────────────────
    NOT_FOUND                  = "NOT_FOUND"              # 404, unknown route
    METHOD_NOT_ALLOWED         = "METHOD_NOT_ALLOWED"     # 405
    PAYLOAD_TOO_LARGE          = "PAYLOAD_TOO_LARGE"      # 413

    # ── System Errors (5xx) ────────────────────────────────────────────────
    ATTACHMENT_UPLOAD_FAILED   = "ATTACHMENT_UPLOAD_FAILED"  # 502
    SERVICE_UNAVAILABLE        = "SERVICE_UNAVAILABLE"    # 503, after retries
    INTERNAL_ERROR             = "INTERNAL_ERROR"         # 500
