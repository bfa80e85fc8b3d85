"""Error taxonomy shared by the engines and the API layer.

Engines raise these; ``register_exception_handlers`` turns them into the same
``{"detail": ...}`` body that FastAPI uses for ``HTTPException``.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class DomainError(Exception):
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class Unauthenticated(DomainError):
    status_code = 401


class Forbidden(DomainError):
    status_code = 403


class NotFound(DomainError):
    status_code = 404


class Conflict(DomainError):
    status_code = 409


class ValidationFailed(DomainError):
    status_code = 400


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    logger.info(
        "%s %s rejected: %s (%s)",
        request.method,
        request.url.path,
        exc.detail,
        exc.status_code,
    )
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, Unauthenticated) else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, domain_error_handler)
