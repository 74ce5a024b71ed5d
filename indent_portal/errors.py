from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)

INSUFFICIENT_PERMISSIONS = 'Insufficient permissions'


class PortalError(Exception):
    """Base for errors that map onto a JSON error response."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = 'Internal server error'

    def __init__(self, message: str | None = None, *, details: list[str] | None = None) -> None:
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_payload(self) -> dict:
        payload: dict = {'error': self.message}
        if self.details:
            payload['details'] = list(self.details)
        return payload


class AuthenticationError(PortalError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = 'Access token required'


class AuthorizationError(PortalError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = INSUFFICIENT_PERMISSIONS


class SiteIsolationError(AuthorizationError):
    # Same shape as AuthorizationError so callers cannot discover other sites' records.
    default_message = INSUFFICIENT_PERMISSIONS


class NotFoundError(PortalError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = 'Not found'


class ValidationError(PortalError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = 'Validation error'


class StateConflictError(PortalError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = 'Invalid state for this operation'


class StorageError(PortalError):
    default_message = 'Internal server error'


def format_validation_errors(errors, *, prefix: str | None = None) -> list[str]:
    details = []
    for err in errors:
        parts = [str(part) for part in err.get('loc', ()) if part not in {'body', 'query', 'path', 'form'}]
        if prefix:
            parts.insert(0, prefix)
        loc = '.'.join(parts)
        message = err.get('msg', 'Invalid value')
        details.append(f'{loc}: {message}' if loc else message)
    return details


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(PortalError)
    async def portal_error_handler(request: Request, exc: PortalError):
        if isinstance(exc, StorageError):
            logger.error('Storage failure on %s %s: %s', request.method, request.url.path, exc.__cause__ or exc)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={'error': 'Validation error', 'details': format_validation_errors(exc.errors())},
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={'error': str(exc.detail)}, headers=exc.headers)

    @app.exception_handler(SQLAlchemyError)
    async def storage_error_handler(request: Request, exc: SQLAlchemyError):
        logger.exception('Database error on %s %s', request.method, request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content=StorageError().to_payload())

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception('Unhandled error on %s %s', request.method, request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content={'error': 'Internal server error'})
