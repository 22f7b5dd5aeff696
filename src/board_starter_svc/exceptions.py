import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse


class ServiceError(Exception):
    """
    Base class for collaborator failures that cannot be recovered inside a request.
    """


class CredentialStoreError(ServiceError):
    """The user database could not be read or written."""


class NotificationError(ServiceError):
    """An outgoing message could not be delivered."""


class AccountLinkError(Exception):
    """
    An external login named an email that belongs to an account created another way.
    """


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    logging.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc,
                  exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Service temporarily unavailable"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, service_error_handler)
