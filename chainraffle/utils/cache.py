"""
Кэш публичных данных витрины в памяти процесса.
Список активных розыгрышей, карточки розыгрышей и список победителей
запрашиваются часто, а меняются только при новых записях и выборе победителя.
"""

import time
import logging
import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from chainraffle.config import settings

T = TypeVar('T')

CLEANUP_INTERVAL = 30


class Cache:
    """
    Кэш с временем жизни записей. TTL выбирается по префиксу ключа (до первого двоеточия)
    из settings.CACHE_TTL, иначе используется значение по умолчанию.
    """

    def __init__(self, default_ttl: int = 60, ttl_settings: Optional[Dict[str, int]] = None):
        self.default_ttl = default_ttl
        self.ttl_settings = ttl_settings if ttl_settings is not None else settings.CACHE_TTL
        self.data: Dict[str, Any] = {}
        self.expiry: Dict[str, float] = {}
        self.stats = {"hits": 0, "misses": 0, "sets": 0, "deletes": 0}
        # Блокировки вычисляемых ключей и число ожидающих их корутин
        self.locks: Dict[str, asyncio.Lock] = {}
        self.lock_users: Dict[str, int] = {}

    def ttl_for(self, key: str) -> int:
        prefix = key.split(":", 1)[0]
        return self.ttl_settings.get(prefix, self.default_ttl)

    async def get(self, key: str) -> Optional[Any]:
        """
        Значение из кэша или None, если ключа нет или срок его жизни истек
        """
        expires = self.expiry.get(key)
        if expires is not None and time.monotonic() < expires:
            self.stats["hits"] += 1
            return self.data[key]
        if expires is not None:
            await self.delete(key)
        self.stats["misses"] += 1
        return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        ttl = self.ttl_for(key) if ttl is None else ttl
        if ttl <= 0:
            return
        self.data[key] = value
        self.expiry[key] = time.monotonic() + ttl
        self.stats["sets"] += 1

    async def delete(self, key: str) -> bool:
        if key not in self.data:
            return False
        del self.data[key]
        self.expiry.pop(key, None)
        self.stats["deletes"] += 1
        return True

    async def delete_by_prefix(self, prefix: str) -> int:
        """
        Удаляет все записи, ключи которых начинаются с prefix.

        Returns:
            int: Количество удаленных записей
        """
        keys = [key for key in self.data if key.startswith(prefix)]
        for key in keys:
            await self.delete(key)
        return len(keys)

    async def clear(self) -> None:
        self.data.clear()
        self.expiry.clear()

    async def cleanup(self) -> int:
        """Удаляет просроченные записи, возвращает их количество"""
        now = time.monotonic()
        expired = [key for key, expires in self.expiry.items() if now >= expires]
        for key in expired:
            await self.delete(key)
        return len(expired)

    async def get_or_compute(self, key: str, compute_func: Callable[[], Awaitable[T]],
                             ttl: Optional[int] = None) -> T:
        """
        Возвращает значение из кэша или вычисляет и кэширует его.
        Ошибки вычисления пробрасываются вызывающему коду и не кэшируются.

        Args:
            key (str): Ключ для кэша
            compute_func (Callable[[], Awaitable[T]]): Асинхронная функция для вычисления значения
            ttl (Optional[int]): Время жизни в секундах

        Returns:
            T: Значение из кэша или результат вычисления
        """
        value = await self.get(key)
        if value is not None:
            return value

        # Блокировка по ключу, чтобы значение вычислялось один раз
        lock = self.locks.setdefault(key, asyncio.Lock())
        self.lock_users[key] = self.lock_users.get(key, 0) + 1
        try:
            async with lock:
                value = await self.get(key)
                if value is not None:
                    return value
                value = await compute_func()
                await self.set(key, value, ttl)
                return value
        finally:
            self.lock_users[key] -= 1
            if self.lock_users[key] == 0:
                # Последний пользователь блокировки удаляет ее вместе со счетчиком
                del self.lock_users[key]
                del self.locks[key]

    def get_stats(self) -> Dict[str, Any]:
        total = self.stats["hits"] + self.stats["misses"]
        return {
            **self.stats,
            "total_requests": total,
            "hit_rate": (self.stats["hits"] / total * 100) if total else 0,
            "items_count": len(self.data),
        }


# Глобальный экземпляр кэша
cache = Cache(default_ttl=60)


async def invalidate_raffle(raffle_id) -> None:
    """Сбрасывает кэш после новой записи участия"""
    await cache.delete(f"raffle:{raffle_id}")
    await cache.delete("live_raffles")


async def invalidate_draw(raffle_id) -> None:
    """Сбрасывает кэш после выбора победителя или завершения розыгрыша"""
    await invalidate_raffle(raffle_id)
    await cache.delete_by_prefix("ended")
    await cache.delete_by_prefix("winners")


async def start_cache_cleanup_task():
    """
    Фоновая задача периодической очистки просроченных записей кэша.
    """
    logging.info("Запущена задача очистки кэша")
    try:
        while True:
            removed = await cache.cleanup()
            if removed > 0:
                logging.debug(f"Очищено {removed} устаревших записей из кэша")
            await asyncio.sleep(CLEANUP_INTERVAL)
    except asyncio.CancelledError:
        logging.info("Задача очистки кэша отменена, завершаем работу")
    finally:
        logging.info("Задача очистки кэша завершена")
