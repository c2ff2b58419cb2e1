"""
Типизированные ошибки ядра розыгрышей.

Каждая ошибка несет стабильный машинный код (kind), сообщение для пользователя,
HTTP-статус по умолчанию и безопасные детали. Классификация ошибок хранилища
выполняется по атрибутам драйвера (SQLSTATE), а не по тексту сообщения.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

# Коды нарушения уникальности: PostgreSQL SQLSTATE и расширенные коды SQLite
UNIQUE_VIOLATION_CODES = {"23505", "SQLITE_CONSTRAINT_UNIQUE", "SQLITE_CONSTRAINT_PRIMARYKEY"}


class RaffleError(Exception):
    """Базовая ошибка ядра розыгрышей."""

    kind = "raffle_error"
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_payload(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message, **self.details}

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


class ValidationError(RaffleError):
    """Некорректные входные данные. Проверяется до любых изменений в хранилище."""

    kind = "validation_error"
    http_status = status.HTTP_400_BAD_REQUEST


class NotFoundError(RaffleError):
    kind = "not_found"
    http_status = status.HTTP_404_NOT_FOUND


class BusinessRuleError(RaffleError):
    """Запрос корректен, но нарушает правила розыгрыша."""

    kind = "business_rule"
    http_status = status.HTTP_409_CONFLICT


class CapacityExceededError(BusinessRuleError):
    kind = "capacity_exceeded"

    def __init__(self, remaining: int, requested: int):
        remaining = max(remaining, 0)
        if remaining == 0:
            message = "Sold out: no tickets left"
        elif remaining == 1:
            message = "Only 1 ticket left"
        else:
            message = f"Only {remaining} tickets left"
        super().__init__(message, {"remaining": remaining, "requested": requested})
        self.remaining = remaining
        self.requested = requested


class RaffleNotLiveError(BusinessRuleError):
    kind = "not_live"

    def __init__(self, raffle_status: str):
        super().__init__(f"Raffle is not live (status: {raffle_status})", {"status": raffle_status})
        self.status = raffle_status


class InvalidTransitionError(BusinessRuleError):
    kind = "invalid_transition"

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot change raffle status from {current} to {target}",
                         {"status": current, "target": target})


class RaffleClosedForEntriesError(BusinessRuleError):
    kind = "entries_closed"

    def __init__(self, ends_at: datetime):
        super().__init__("Raffle has ended and no longer accepts entries", {"endsAt": ends_at.isoformat()})


class RaffleNotEndedError(BusinessRuleError):
    kind = "not_ended"
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, ends_at: datetime):
        super().__init__("Raffle has not ended yet", {"endsAt": ends_at.isoformat()})
        self.ends_at = ends_at


class AlreadyDrawnError(BusinessRuleError):
    """Победитель уже выбран. Информационная ошибка: несет данные существующего победителя."""

    kind = "already_drawn"

    def __init__(self, winner_user_id=None, wallet_address: Optional[str] = None,
                 drawn_at: Optional[datetime] = None):
        super().__init__(
            "Winner already drawn",
            {
                "winnerUserId": str(winner_user_id) if winner_user_id else None,
                "walletAddress": wallet_address,
                "drawnAt": drawn_at.isoformat() if drawn_at else None,
            },
        )
        self.winner_user_id = winner_user_id
        self.wallet_address = wallet_address
        self.drawn_at = drawn_at


class PaymentNotVerifiedError(BusinessRuleError):
    kind = "payment_not_verified"
    http_status = status.HTTP_402_PAYMENT_REQUIRED


class StorageError(RaffleError):
    """Ошибка хранилища. Возможно временная, пробрасывается с исходным кодом."""

    kind = "storage_error"
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message, {"code": code} if code else None)
        self.code = code

    @staticmethod
    def driver_code(exc: Exception) -> Optional[str]:
        """Извлекает код ошибки драйвера (asyncpg sqlstate, psycopg pgcode, sqlite errorname)."""
        orig = getattr(exc, "orig", None) or exc
        # Адаптер asyncpg хранит исходное исключение драйвера в __cause__
        for candidate in (orig, getattr(orig, "__cause__", None)):
            if candidate is None:
                continue
            for attr in ("sqlstate", "pgcode", "sqlite_errorname"):
                code = getattr(candidate, attr, None)
                if code:
                    return str(code)
        return None

    @classmethod
    def from_exception(cls, exc: Exception) -> "StorageError":
        code = cls.driver_code(exc)
        if code in UNIQUE_VIOLATION_CODES:
            return DuplicateRowError(str(getattr(exc, "orig", exc)), code)
        return StorageError(str(getattr(exc, "orig", exc)), code)


class DuplicateRowError(StorageError):
    kind = "duplicate_row"
    http_status = status.HTTP_409_CONFLICT


class StorageTimeoutError(StorageError):
    kind = "storage_timeout"
    http_status = status.HTTP_504_GATEWAY_TIMEOUT


async def raffle_error_handler(request: Request, exc: RaffleError) -> JSONResponse:
    if isinstance(exc, StorageError):
        logging.error(f"Ошибка хранилища при обработке {request.url.path}: {exc}")
    else:
        logging.info(f"Запрос {request.url.path} отклонен: {exc}")
    return JSONResponse(status_code=exc.http_status, content={"error": exc.to_payload()})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Ошибки разбора тела и параметров запроса в том же формате, что и ValidationError"""
    fields = [".".join(str(part) for part in err.get("loc", ()) if part != "body") for err in exc.errors()]
    first = exc.errors()[0].get("msg", "Invalid request") if exc.errors() else "Invalid request"
    error = ValidationError(f"Invalid request: {first}", {"fields": fields})
    return JSONResponse(status_code=error.http_status, content={"error": error.to_payload()})


def setup_exception_handlers(app: FastAPI) -> None:
    """Подключает обработчики типизированных ошибок к приложению FastAPI."""
    app.add_exception_handler(RaffleError, raffle_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)


