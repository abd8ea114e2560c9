"""Domain errors and their HTTP mapping.

Services raise the ``DomainError`` subclasses below with a message meant for
the end user. Anything else that escapes a service body is logged and turned
into ``InternalError`` by :func:`service_errors`, so infrastructure details
never reach the client.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Iterator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


class DomainError(Exception):
    """Base exception for the domain layer"""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict[str, Any]:
        return {"detail": self.message}


class NotFoundError(DomainError):
    """Referenced invoice/transaction/payment method is missing or inactive for the user"""

    status_code = 404


class InvalidOperationError(DomainError):
    """Operation breaks a structural rule regardless of amounts"""

    status_code = 400


class InsufficientLimitError(DomainError):
    """Amount exceeds the invoice's available credit limit"""

    status_code = 400

    def __init__(self, available: Decimal, requested: Decimal, message: str | None = None) -> None:
        self.available = Decimal(available)
        self.requested = Decimal(requested)
        super().__init__(
            message
            or f"Insufficient limit. Available: {format_money(self.available)}, requested: {format_money(self.requested)}"
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "detail": self.message,
            "available_limit": str(self.available),
            "requested_amount": str(self.requested),
        }


class ConflictError(DomainError):
    """Duplicate name or a state that blocks the request"""

    status_code = 409


class InternalError(DomainError):
    """Persistence or infrastructure failure, surfaced with a generic message"""

    status_code = 500


def format_money(value: Decimal | float | int) -> str:
    return f"{Decimal(value):.2f}"


@contextmanager
def service_errors(message: str, db: Session | None = None) -> Iterator[None]:
    """Let domain errors through untouched and mask everything else.

    The session, when given, is rolled back before ``InternalError`` is raised
    so the caller can keep using it.
    """
    try:
        yield
    except DomainError:
        raise
    except Exception as exc:
        logger.exception("%s: %s", message, exc)
        if db is not None:
            db.rollback()
        raise InternalError(message) from exc


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(DomainError)
    async def _domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())
