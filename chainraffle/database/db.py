from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy import text
import logging

from chainraffle.config import settings


# Создаем базовый класс для моделей
Base = declarative_base()


def build_async_url(database_url: str) -> str:
    """Приводит строку подключения PostgreSQL к асинхронному драйверу asyncpg"""
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
    if database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql:", "postgresql+asyncpg:", 1)
    return database_url


def engine_options(database_url: str) -> dict:
    """
    Параметры движка в зависимости от драйвера.
    Для SQLite (локальный запуск и тесты) пул соединений не настраивается.
    """
    if database_url.startswith("sqlite"):
        return {"echo": settings.DEBUG, "future": True}

    return {
        "echo": settings.DEBUG,
        "future": True,
        "pool_size": 20,  # Размер пула соединений
        "max_overflow": 40,  # Максимальное количество дополнительных соединений
        "pool_timeout": settings.STORAGE_TIMEOUT,  # Тайм-аут ожидания соединения из пула
        "pool_pre_ping": True,  # Проверка соединения перед использованием
        # Важно для PgBouncer Supabase (pool_mode transaction): отключаем prepared statements
        "connect_args": {
            "statement_cache_size": 0,
            "command_timeout": settings.STORAGE_TIMEOUT,
        },
    }


async_database_url = build_async_url(settings.DATABASE_URL)

engine = create_async_engine(async_database_url, **engine_options(async_database_url))

# Создаем фабрику сессий
async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,  # Отключаем автоматический flush для более предсказуемого поведения
)


async def init_db():
    """
    Инициализирует базу данных и создает необходимые таблицы.
    В продакшене схема создается миграциями Alembic, create_all лишь страхует локальный запуск.
    """
    # Импорт моделей регистрирует таблицы в метаданных
    from chainraffle.database import models  # noqa: F401

    try:
        logging.info("Инициализация базы данных")

        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
            await create_indexes(conn)

        logging.info("База данных инициализирована успешно")
        return async_session
    except Exception as e:
        logging.error(f"Ошибка при инициализации базы данных: {e}")
        raise


async def create_indexes(conn):
    """
    Создает индексы для выборок ядра розыгрышей
    """
    try:
        # Поиск завершившихся розыгрышей без победителя
        await conn.execute(text(
            "CREATE INDEX IF NOT EXISTS idx_raffles_status_ends_at ON raffles(status, ends_at)"
        ))
        # Список победителей
        await conn.execute(text(
            "CREATE INDEX IF NOT EXISTS idx_raffles_winner_drawn_at ON raffles(winner_drawn_at DESC)"
        ))
        # Записи участия: подсчет проданных билетов и история пользователя
        await conn.execute(text(
            "CREATE INDEX IF NOT EXISTS idx_raffle_entries_raffle_created ON raffle_entries(raffle_id, created_at)"
        ))
        await conn.execute(text(
            "CREATE INDEX IF NOT EXISTS idx_raffle_entries_user_id ON raffle_entries(user_id)"
        ))

        logging.info("Индексы базы данных созданы успешно")
    except Exception as e:
        logging.warning(f"Ошибка при создании индексов: {e}")


async def get_session() -> AsyncSession:
    """
    Получение сессии базы данных.

    Yields:
        AsyncSession: Сессия для работы с базой данных
    """
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()


async def close_db():
    """Закрывает пул соединений при остановке приложения"""
    await engine.dispose()
    logging.info("Соединения с базой данных закрыты")
