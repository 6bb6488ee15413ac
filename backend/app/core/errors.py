"""
Domain error taxonomy for the join request engine.

Every error carries a stable machine-readable ``code``, a human-readable
``message`` and the HTTP status the API maps it to. Services raise these;
the exception handler registered in ``app.main`` renders them as
``{"ok": false, "error": message, "code": code}``.

Domain errors are terminal for the call that raised them and are never
retried. Only transient storage failures on reads are retried, inside
the repository.
"""

from typing import Optional

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.core.logging import get_logger

logger = get_logger(__name__)


class JoinRequestError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "internal_error"
    message: str = "Unexpected error"

    def __init__(self, message: Optional[str] = None, *, code: Optional[str] = None):
        if message is not None:
            self.message = message
        if code is not None:
            self.code = code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"ok": False, "error": self.message, "code": self.code}


class ValidationFailed(JoinRequestError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_error"
    message = "Invalid request data"


class NotFound(JoinRequestError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    message = "Resource not found"


class EventNotFound(NotFound):
    code = "event_not_found"

    def __init__(self, event_id):
        super().__init__(f"Event {event_id} not found")


class RequestNotFound(NotFound):
    code = "request_not_found"

    def __init__(self, request_id):
        super().__init__(f"Join request {request_id} not found")


class Forbidden(JoinRequestError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "not_authorized"
    message = "Not authorized to perform this action"


class Conflict(JoinRequestError):
    status_code = status.HTTP_409_CONFLICT
    code = "conflict"
    message = "Request conflicts with the current state"


class DuplicateActiveRequest(Conflict):
    code = "already_requested"
    message = "Already have a pending request for this event"


class AlreadyParticipant(Conflict):
    code = "already_participant"
    message = "Already attending this event"


class EventNotOpen(Conflict):
    code = "event_not_published"

    def __init__(self, event_id, event_status: str):
        super().__init__(f"Event {event_id} is {event_status} and not accepting requests")


class InsufficientCapacity(Conflict):
    code = "capacity_unavailable"

    def __init__(self, requested: int, available: int):
        self.requested = requested
        self.available = available
        super().__init__(f"Insufficient capacity: requested {requested}, available {available}")


class InvalidTransition(Conflict):
    code = "invalid_status_transition"

    def __init__(self, current: str, target: str, expected: Optional[str] = None):
        self.current = current
        self.target = target
        if expected is not None and expected != current:
            text = f"Invalid status transition: expected {expected}, got {current}"
        else:
            text = f"Invalid status transition: {current} -> {target}"
        super().__init__(text)


class HoldExpired(Conflict):
    code = "hold_expired"
    message = "Request hold has expired"


class NotPending(Conflict):
    code = "not_pending"
    message = "Request is not pending"


class NotWaitlisted(Conflict):
    code = "not_waitlisted"
    message = "Request is not on the waitlist"


class Internal(JoinRequestError):
    code = "internal_error"
    message = "Storage failure, please retry"


async def join_request_error_handler(request: Request, exc: JoinRequestError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request_error", code=exc.code, error=exc.message)
    else:
        logger.info("request_rejected", code=exc.code, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    body = ValidationFailed().to_dict()
    body["details"] = [
        {"loc": list(err.get("loc", [])), "msg": err.get("msg")} for err in exc.errors()
    ]
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body)
