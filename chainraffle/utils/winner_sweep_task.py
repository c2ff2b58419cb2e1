import asyncio
import logging

from chainraffle.config import settings
from chainraffle.database.db import async_session
from chainraffle.services.winner_selector import SweepReport, WinnerSelector
from chainraffle.utils.cache import invalidate_draw
from chainraffle.utils.errors import RaffleError


async def run_winner_sweep() -> SweepReport:
    """
    Один проход выбора победителей по всем завершившимся розыгрышам.
    """
    async with async_session() as session:
        report = await WinnerSelector(session).sweep_ended_raffles()

    for item in report.results + report.empty:
        await invalidate_draw(item["raffle_id"])
    return report


async def schedule_winner_sweep(interval: int = None):
    """
    Периодически выбирает победителей завершившихся розыгрышей.
    При интервале 0 задача не запускается.
    """
    interval = settings.WINNER_SWEEP_INTERVAL if interval is None else interval
    if interval <= 0:
        logging.info("Фоновый выбор победителей отключен (WINNER_SWEEP_INTERVAL=0)")
        return

    logging.info(f"Запущен фоновый выбор победителей, интервал {interval} с")
    try:
        while True:
            try:
                report = await run_winner_sweep()
                if report.drawn_count or report.empty or report.failed:
                    logging.info(
                        f"Обход розыгрышей: победителей {report.drawn_count}, "
                        f"без участников {len(report.empty)}, ошибок {len(report.failed)}"
                    )
            except RaffleError as e:
                # Хранилище недоступно, повторим на следующем проходе
                logging.error(f"Ошибка при обходе розыгрышей: {e}")
            except Exception as e:
                logging.exception(f"Непредвиденная ошибка при обходе розыгрышей: {e!r}")

            await asyncio.sleep(interval)
    except asyncio.CancelledError:
        logging.info("Задача выбора победителей отменена")
