"""
Окружение Alembic для асинхронного движка (asyncpg).
Строка подключения берется из DATABASE_URL, метаданные из моделей chainraffle.
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import async_engine_from_config

from chainraffle.config import settings
from chainraffle.database.db import Base, build_async_url
from chainraffle.database import models  # noqa: F401  регистрирует таблицы

config = context.config
if config.config_file_name:
    fileConfig(config.config_file_name)

db_url = build_async_url(settings.DATABASE_URL)
config.set_main_option("sqlalchemy.url", db_url)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Выводит SQL миграций без подключения к базе"""
    context.configure(
        url=db_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section) or {},
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
        # PgBouncer Supabase не поддерживает prepared statements
        connect_args={"statement_cache_size": 0} if db_url.startswith("postgresql+asyncpg") else {},
    )

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
