import asyncio
import logging
import sys
import argparse
import signal
import functools
from chainraffle.config import settings
from chainraffle.webapp.app import setup_webapp, start_webapp
from chainraffle.database.db import close_db, init_db
from chainraffle.utils.cache import start_cache_cleanup_task
from chainraffle.utils.winner_sweep_task import run_winner_sweep, schedule_winner_sweep

# Глобальные переменные для хранения задач
background_tasks = []
shutdown_event = asyncio.Event()


def handle_shutdown_signal(sig):
    """Обработчик сигналов для корректного завершения работы приложения."""
    logging.info(f"Получен сигнал завершения: {sig}")
    shutdown_event.set()


def _log_task_failure(task: asyncio.Task) -> None:
    if not task.cancelled() and task.exception():
        logging.error(f"Задача {task.get_name()} завершилась с ошибкой: {task.exception()}")


def start_background_task(coro, name: str) -> asyncio.Task:
    task = asyncio.create_task(coro, name=name)
    task.add_done_callback(_log_task_failure)
    background_tasks.append(task)
    logging.info(f"Запущена фоновая задача {name}")
    return task


async def main():
    """Точка входа в приложение."""
    parser = argparse.ArgumentParser(description="Запуск Chain Raffle API")
    parser.add_argument("--init-db", action="store_true", help="Создать таблицы и индексы и завершить работу")
    parser.add_argument("--sweep-once", action="store_true",
                        help="Один раз выбрать победителей завершившихся розыгрышей и завершить работу")
    args = parser.parse_args()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, functools.partial(handle_shutdown_signal, sig))
        except NotImplementedError:
            # Windows не поддерживает add_signal_handler
            logging.info(f"Обработчик сигнала {sig} не зарегистрирован - не поддерживается платформой")

    if args.init_db:
        await init_db()
        await close_db()
        return

    if args.sweep_once:
        report = await run_winner_sweep()
        logging.info(
            f"Выбрано победителей: {report.drawn_count}, без участников: {len(report.empty)}, "
            f"ошибок: {len(report.failed)}"
        )
        for failure in report.failed:
            logging.warning(f"Розыгрыш {failure['raffle_id']}: {failure['kind']} - {failure['message']}")
        await close_db()
        return

    logging.info("Запуск Chain Raffle API")
    app = setup_webapp()
    logging.info(f"Витрина: {settings.WEBAPP_PUBLIC_URL}")

    start_background_task(start_cache_cleanup_task(), "cache_cleanup_task")
    start_background_task(schedule_winner_sweep(), "winner_sweep_task")

    try:
        await start_webapp(app, shutdown_event=shutdown_event)
    finally:
        await shutdown()


async def shutdown():
    """Корректное завершение работы приложения."""
    logging.info("Завершение работы приложения...")

    for task in background_tasks:
        if not task.done():
            task.cancel()
            try:
                await asyncio.wait_for(task, timeout=5.0)
            except asyncio.TimeoutError:
                logging.warning(f"Тайм-аут при отмене задачи {task.get_name()}")
            except asyncio.CancelledError:
                pass

    logging.info("Все фоновые задачи завершены")
    await close_db()
    shutdown_event.set()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logging.info("Принудительное завершение работы")
    except Exception as e:
        logging.error(f"Необработанное исключение: {e}")
        sys.exit(1)
