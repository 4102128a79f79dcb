"""Typed errors raised by the CRM engine.

Each class carries a machine-readable ``code`` and the HTTP status the API
layer answers with. Callers catch by type, never by message.

    CRMError
    +-- ValidationError      (400)
    +-- InvalidDateRange     (400)
    +-- NotFound             (404)
    +-- InvalidTransition    (409)
    +-- ExceedsBalance       (409)
    +-- AlreadySettled       (409)
    +-- ConcurrentUpdate     (409)
"""


class CRMError(Exception):
    code = "CRM_ERROR"
    http_status = 500

    def __init__(self, message=None):
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self):
        return {"ok": False, "code": self.code, "error": self.message}


class ValidationError(CRMError):
    code = "VALIDATION_ERROR"
    http_status = 400


class InvalidDateRange(CRMError):
    code = "INVALID_DATE_RANGE"
    http_status = 400

    def __init__(self, start, end, message=None):
        self.start = start
        self.end = end
        super().__init__(message or f"Date range is invalid: {start} must be before {end}")


class NotFound(CRMError):
    code = "NOT_FOUND"
    http_status = 404

    def __init__(self, entity, record_id):
        self.entity = entity
        self.record_id = record_id
        super().__init__(f"{entity} not found: {record_id}")


class InvalidTransition(CRMError):
    code = "INVALID_TRANSITION"
    http_status = 409

    def __init__(self, entity, field, current, target, message=None):
        self.entity = entity
        self.field = field
        self.current = current
        self.target = target
        super().__init__(message or f"{entity}.{field} cannot move from {current!r} to {target!r}")


class ExceedsBalance(CRMError):
    code = "EXCEEDS_BALANCE"
    http_status = 409

    def __init__(self, amount, balance):
        self.amount = amount
        self.balance = balance
        super().__init__(f"Amount cannot exceed balance ({balance}); got {amount}")


class AlreadySettled(CRMError):
    code = "ALREADY_SETTLED"
    http_status = 409


class ConcurrentUpdate(CRMError):
    code = "CONCURRENT_UPDATE"
    http_status = 409
