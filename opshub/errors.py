"""
Domain errors raised by the service layer.

Services raise these synchronously and never retry; the HTTP layer maps them
to status codes in ``register_exception_handlers``.
"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import structlog


class OpsHubError(Exception):
    status_code = 400
    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(OpsHubError):
    status_code = 404
    kind = "not_found"


class ValidationError(OpsHubError):
    status_code = 400
    kind = "validation"


class InvalidStateError(OpsHubError):
    status_code = 409
    kind = "invalid_state"


class AlreadyLinkedError(InvalidStateError):
    kind = "already_linked"


class AlreadyReviewedError(InvalidStateError):
    kind = "already_reviewed"


class PermissionDeniedError(OpsHubError):
    status_code = 403
    kind = "permission_denied"


def require_reason(reason) -> str:
    """Return the stripped reason or raise when it is missing or blank."""
    text = (reason or "").strip()
    if not text:
        raise ValidationError("A reason is required")
    return text


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(OpsHubError)
    async def _ops_error(request: Request, exc: OpsHubError):
        structlog.get_logger(__name__).info(
            "request_rejected",
            path=request.url.path,
            error=exc.kind,
            detail=exc.message,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "error": exc.kind},
        )
