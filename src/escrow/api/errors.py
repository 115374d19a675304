"""Translate ledger errors into HTTP responses.

Body shape for every ledger failure: ``{"error": <kind>, "detail": <message>}``.
"""

from __future__ import annotations

import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from src.escrow.core.errors import (
    AuthorizationError,
    DealNotFoundError,
    DuplicateTokenContractError,
    EscrowError,
    InsufficientFundsError,
    InvalidAmountError,
    NotPausedError,
    PausedError,
    ReentrancyError,
    StatusError,
    TokenAlreadyRegisteredError,
    TransferError,
    UnknownTokenError,
)

logger = structlog.get_logger(__name__)

STATUS_CODES: dict[type[EscrowError], int] = {
    StatusError: status.HTTP_409_CONFLICT,
    DuplicateTokenContractError: status.HTTP_409_CONFLICT,
    TokenAlreadyRegisteredError: status.HTTP_409_CONFLICT,
    ReentrancyError: status.HTTP_409_CONFLICT,
    AuthorizationError: status.HTTP_403_FORBIDDEN,
    PausedError: status.HTTP_423_LOCKED,
    NotPausedError: status.HTTP_423_LOCKED,
    InsufficientFundsError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    TransferError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    InvalidAmountError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    UnknownTokenError: status.HTTP_404_NOT_FOUND,
    DealNotFoundError: status.HTTP_404_NOT_FOUND,
}


def status_code_for(exc: EscrowError) -> int:
    for error_type in type(exc).__mro__:
        code = STATUS_CODES.get(error_type)
        if code is not None:
            return code
    return status.HTTP_400_BAD_REQUEST


async def escrow_error_handler(request: Request, exc: EscrowError) -> JSONResponse:
    code = status_code_for(exc)
    logger.info("request.rejected", path=request.url.path, error=exc.kind, status_code=code)
    return JSONResponse(status_code=code, content={"error": exc.kind, "detail": str(exc)})


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(EscrowError, escrow_error_handler)
