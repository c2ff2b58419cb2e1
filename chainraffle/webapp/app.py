from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
import logging
import uvicorn
import asyncio

from chainraffle.config import settings
from chainraffle.utils.errors import setup_exception_handlers
from chainraffle.webapp.routers import raffles_router, users_router
from chainraffle.webapp.middlewares import RateLimiterMiddleware

API_VERSION = "1.0.0"


def setup_webapp() -> FastAPI:
    """
    Настройка FastAPI приложения.

    Returns:
        FastAPI: Настроенное FastAPI приложение
    """
    app = FastAPI(
        title="Chain Raffle API",
        description="API витрины розыгрышей с оплатой в блокчейне",
        version=API_VERSION,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
    )

    # 1. Ограничение частоты запросов
    app.add_middleware(
        RateLimiterMiddleware,
        default_window_size=settings.RATE_LIMIT_DEFAULT["window_size"],
        default_max_requests=settings.RATE_LIMIT_DEFAULT["max_requests"],
        path_limits=settings.RATE_LIMIT_PATHS,
        suffix_limits={"/enter": settings.RATE_LIMIT_ENTER},
    )

    # 2. Сжатие ответов для экономии трафика
    app.add_middleware(GZipMiddleware, minimum_size=1000)

    # 3. CORS для запросов с витрины (добавлен последним, чтобы обрабатывать и ответы 429)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials="*" not in settings.CORS_ORIGINS,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
        expose_headers=["X-RateLimit-Limit", "X-RateLimit-Remaining", "Retry-After"],
    )

    setup_exception_handlers(app)

    app.include_router(raffles_router)
    app.include_router(users_router)

    @app.get("/")
    async def root():
        return {"message": "Chain Raffle API is running", "version": API_VERSION}

    logging.info("Веб-приложение настроено")

    return app


async def start_webapp(app: FastAPI, shutdown_event=None) -> None:
    """
    Запуск веб-сервера с приложением FastAPI.

    Args:
        app (FastAPI): Экземпляр FastAPI приложения
        shutdown_event (asyncio.Event, optional): Событие для сигнализации остановки сервера
    """
    config = uvicorn.Config(
        app=app,
        host=settings.WEBAPP_HOST,
        port=settings.WEBAPP_PORT,
        log_level="info" if settings.DEBUG else "warning",
        access_log=settings.DEBUG,
        proxy_headers=True,  # Доверяем заголовкам прокси
        forwarded_allow_ips="*",
    )
    server = uvicorn.Server(config)

    if not shutdown_event:
        logging.info(f"Веб-сервер запускается на {settings.WEBAPP_HOST}:{settings.WEBAPP_PORT}")
        await server.serve()
        return

    server_task = asyncio.create_task(server.serve())
    logging.info(f"Веб-сервер запущен на {settings.WEBAPP_HOST}:{settings.WEBAPP_PORT}")
    shutdown_task = asyncio.create_task(shutdown_event.wait(), name="webapp_shutdown_task")

    done, _ = await asyncio.wait([server_task, shutdown_task], return_when=asyncio.FIRST_COMPLETED)

    if server_task in done:
        shutdown_task.cancel()
        if server_task.exception():
            logging.error(f"Веб-сервер завершился с ошибкой: {server_task.exception()}")
    else:
        logging.info("Получен сигнал завершения работы, останавливаем веб-сервер")
        # uvicorn завершает обработку текущих запросов и выходит из serve()
        server.should_exit = True
        await server_task

    logging.info("Веб-сервер завершил работу")
