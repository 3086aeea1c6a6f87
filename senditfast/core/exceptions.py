import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger("senditfast")


class TransferServiceError(Exception):
    """Base for every error a service raises; handlers map it to a status code."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error = "Internal error"

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.error)
        self.detail = detail or self.error


class ValidationError(TransferServiceError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "Invalid request"


class PlanLimitError(ValidationError):
    error = "Plan limit exceeded"


class AuthorizationError(TransferServiceError):
    status_code = status.HTTP_403_FORBIDDEN
    error = "Forbidden"


class NotFoundError(TransferServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    error = "Not found"


class StorageTransientError(TransferServiceError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error = "Storage is temporarily unavailable"


class IntegrityError(TransferServiceError):
    status_code = status.HTTP_409_CONFLICT
    error = "Upload parts do not reconcile"


class PartRelayError(TransferServiceError):
    """A part upload the relay forwarded was refused or never reached storage.

    ``kind`` tells the client what to do next: ``expired`` (ask for a fresh
    part URL and retry), ``transient`` (retry the same URL) or ``fatal``
    (start the upload over).
    """

    error = "Part upload failed"

    def __init__(self, detail: str, status_code: int, kind: str):
        super().__init__(detail)
        self.status_code = status_code
        self.kind = kind


class MailDeliveryError(TransferServiceError):
    error = "Email provider rejected the message"


async def service_exception_handler(request: Request, exc: TransferServiceError) -> JSONResponse:
    if isinstance(exc, AuthorizationError):
        logger.warning("authorization_denied method=%s path=%s detail=%s client=%s",
                       request.method, request.url.path, exc.detail,
                       request.client.host if request.client else "?")
    content = {"error": exc.error, "detail": exc.detail}
    if isinstance(exc, PartRelayError):
        content["kind"] = exc.kind
        content["upstreamStatus"] = exc.status_code
    return JSONResponse(status_code=exc.status_code, content=content)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TransferServiceError, service_exception_handler)
