"""
Обертка вызовов хранилища: ограничение по времени и типизация ошибок.
"""

import asyncio
import logging
from functools import wraps

from sqlalchemy.exc import SQLAlchemyError

from chainraffle.config import settings
from chainraffle.utils.errors import RaffleError, StorageError, StorageTimeoutError


def storage_call(func):
    """
    Декоратор для методов репозиториев.

    Ограничивает время выполнения STORAGE_TIMEOUT, при ошибке откатывает сессию
    и превращает исключения SQLAlchemy и сетевые ошибки драйвера (OSError)
    в StorageError / DuplicateRowError / StorageTimeoutError.
    Доменные ошибки RaffleError пробрасываются без изменений.
    """
    @wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            return await asyncio.wait_for(func(self, *args, **kwargs), timeout=settings.STORAGE_TIMEOUT)
        except RaffleError:
            raise
        except asyncio.TimeoutError as e:
            logging.error(f"Превышено время ожидания хранилища в {func.__qualname__} ({settings.STORAGE_TIMEOUT} с)")
            await safe_rollback(self.session)
            raise StorageTimeoutError(f"Storage call timed out after {settings.STORAGE_TIMEOUT}s") from e
        except SQLAlchemyError as e:
            error = StorageError.from_exception(e)
            logging.warning(f"Ошибка хранилища в {func.__qualname__}: {error}")
            await safe_rollback(self.session)
            raise error from e
        except OSError as e:
            # asyncpg не оборачивает отказ соединения в исключение SQLAlchemy
            logging.warning(f"Хранилище недоступно в {func.__qualname__}: {e!r}")
            await safe_rollback(self.session)
            raise StorageError(f"Storage unavailable: {e}") from e
    return wrapper


async def safe_rollback(session) -> None:
    try:
        await session.rollback()
    except Exception as e:
        logging.error(f"Не удалось откатить транзакцию: {e}")
