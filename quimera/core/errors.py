# quimera/core/errors.py
# ── Errores de servicio con código estilo "callable" (unauthenticated, not-found, ...)
from __future__ import annotations

from fastapi import Request, status
from fastapi.responses import JSONResponse


class ServiceError(Exception):
    code: str = "internal"
    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class Unauthenticated(ServiceError):
    code = "unauthenticated"
    http_status = status.HTTP_401_UNAUTHORIZED


class NotFound(ServiceError):
    code = "not-found"
    http_status = status.HTTP_404_NOT_FOUND


class PermissionDenied(ServiceError):
    code = "permission-denied"
    http_status = status.HTTP_403_FORBIDDEN


class InvalidArgument(ServiceError):
    code = "invalid-argument"
    http_status = status.HTTP_400_BAD_REQUEST


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.http_status,
        content={"detail": exc.message, "code": exc.code},
    )
