# casedesk/errors.py
"""Error taxonomy shared by the ranking and negotiation services.

Every error carries an HTTP status and a JSON-ready payload; the errors
blueprint renders them without knowing the concrete class.
"""


class CaseDeskError(Exception):
    status_code = 400
    code = "error"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        payload.update({k: v for k, v in self.details.items() if v is not None})
        return payload


class NotFound(CaseDeskError):
    """Case, quote or counter-proposal missing, or outside the caller's organization."""
    status_code = 404
    code = "not_found"

    def __init__(self, entity: str, entity_id=None):
        super().__init__(f"{entity.capitalize()} not found", entity=entity, id=entity_id)


class ValidationError(CaseDeskError):
    status_code = 400
    code = "validation_error"


class InvalidTransition(CaseDeskError):
    status_code = 409
    code = "invalid_transition"

    def __init__(self, entity: str, entity_id, current: str, attempted: str, message: str | None = None):
        super().__init__(
            message or f"Cannot {attempted} {entity} {entity_id} while it is {current}",
            entity=entity,
            id=entity_id,
            current_state=current,
            attempted=attempted,
        )
        self.current = current
        self.attempted = attempted


class Conflict(CaseDeskError):
    """Lost a race against a concurrent writer; refresh and retry."""
    status_code = 409
    code = "conflict"

    def __init__(self, message: str, current: str | None = None, **details):
        super().__init__(message, current_state=current, **details)
        self.current = current
