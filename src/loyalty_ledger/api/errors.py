"""Translate loyalty ledger errors into HTTP responses."""

from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from loyalty_ledger.services.loyalty.errors import (
    AccountNotFoundError,
    InsufficientBalanceError,
    InvalidInputError,
    LoyaltyLedgerError,
    TransientStoreError,
    WouldOverdrawError,
)

# Checked in order; subclasses must precede their bases.
_STATUS_BY_ERROR: tuple[tuple[type[LoyaltyLedgerError], int], ...] = (
    (InvalidInputError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (InsufficientBalanceError, status.HTTP_409_CONFLICT),
    (WouldOverdrawError, status.HTTP_409_CONFLICT),
    (AccountNotFoundError, status.HTTP_404_NOT_FOUND),
    (TransientStoreError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def status_for(error: LoyaltyLedgerError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status_code
    return status.HTTP_400_BAD_REQUEST


async def loyalty_error_handler(request: Request, exc: LoyaltyLedgerError) -> JSONResponse:
    headers = {"Retry-After": "1"} if isinstance(exc, TransientStoreError) else None
    return JSONResponse(
        status_code=status_for(exc),
        content={"error": exc.kind, "detail": exc.message},
        headers=headers,
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LoyaltyLedgerError, loyalty_error_handler)  # type: ignore[arg-type]


__all__ = ["loyalty_error_handler", "register_error_handlers", "status_for"]
