"""Map loyalty domain errors onto HTTP responses."""

from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from loguru import logger

from rewards_api.services.loyalty.errors import (
    InsufficientBalanceError,
    LoyaltyConflictError,
    LoyaltyError,
    LoyaltyInvalidArgumentError,
    LoyaltyNotFoundError,
    LoyaltyStorageUnavailableError,
)


_STATUS_BY_ERROR: tuple[tuple[type[LoyaltyError], int], ...] = (
    (LoyaltyNotFoundError, status.HTTP_404_NOT_FOUND),
    (LoyaltyConflictError, status.HTTP_409_CONFLICT),
    (InsufficientBalanceError, 422),
    (LoyaltyInvalidArgumentError, 422),
    (LoyaltyStorageUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def status_for(exc: LoyaltyError) -> int:
    for error_cls, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def register_error_handlers(app: FastAPI) -> None:
    """Register the loyalty domain error handler on the FastAPI app."""

    @app.exception_handler(LoyaltyError)
    async def loyalty_error_handler(request: Request, exc: LoyaltyError) -> JSONResponse:
        status_code = status_for(exc)
        log = logger.error if status_code >= 500 else logger.info
        log(
            "Loyalty request rejected",
            path=request.url.path,
            code=exc.code,
            status_code=status_code,
            reason=str(exc),
        )
        return JSONResponse(status_code=status_code, content={"detail": str(exc), "code": exc.code})
