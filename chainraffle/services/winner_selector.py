import logging
import random
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from chainraffle.config import settings
from chainraffle.database.models import Raffle
from chainraffle.database.guard import safe_rollback
from chainraffle.database.repositories import EntryRepository, RaffleRepository, UserRepository
from chainraffle.utils.errors import (
    AlreadyDrawnError,
    NotFoundError,
    RaffleError,
    RaffleNotEndedError,
    RaffleNotLiveError,
    StorageError,
)
from chainraffle.utils.helpers import as_utc, format_log_message, utcnow
from chainraffle.utils.selection import WEIGHTINGS, pick_winning_entry


@dataclass
class DrawResult:
    raffle_id: uuid.UUID
    title: str
    winner_user_id: Optional[uuid.UUID]
    wallet_address: Optional[str]
    drawn_at: Optional[datetime]
    entry_count: int


@dataclass
class SweepReport:
    drawn_count: int = 0
    results: List[dict] = field(default_factory=list)
    empty: List[dict] = field(default_factory=list)
    failed: List[dict] = field(default_factory=list)


class WinnerSelector:
    """
    Выбор победителя завершившегося розыгрыша.

    Победитель фиксируется одним условным UPDATE (status = live и победитель не выбран),
    поэтому при параллельных вызовах розыгрыш завершается ровно один раз,
    а проигравшие вызовы получают AlreadyDrawnError с уже выбранным победителем.
    """

    def __init__(self, session: AsyncSession, rng: Optional[random.Random] = None,
                 weighting: Optional[str] = None, clock: Optional[Callable[[], datetime]] = None):
        self.session = session
        self.rng = rng or secrets.SystemRandom()
        self.weighting = weighting or settings.DRAW_WEIGHTING
        if self.weighting not in WEIGHTINGS:
            raise ValueError(f"Неизвестный способ взвешивания: {self.weighting}")
        self.clock = clock or utcnow
        self.raffles = RaffleRepository(session)
        self.entries = EntryRepository(session)
        self.users = UserRepository(session)

    async def draw_winner(self, raffle_id: uuid.UUID) -> DrawResult:
        """
        Выбирает победителя розыгрыша.

        Args:
            raffle_id (uuid.UUID): ID розыгрыша

        Returns:
            DrawResult: Победитель или пустой результат, если участников не было
        """
        # Блокировка строки: запись участия и выбор победителя одного розыгрыша не пересекаются
        raffle = await self.raffles.get_for_update(raffle_id)
        if raffle is None:
            raise NotFoundError("Raffle not found", {"raffleId": str(raffle_id)})
        if raffle.is_drawn():
            raise await self._already_drawn(raffle)
        if raffle.status != "live":
            raise RaffleNotLiveError(raffle.status)

        now = self.clock()
        if not raffle.has_ended(now):
            raise RaffleNotEndedError(as_utc(raffle.ends_at))

        entries = await self.entries.list_for_draw(raffle_id)
        if not entries:
            completed = await self.raffles.complete_without_winner(raffle_id)
            if not completed:
                raise await self._already_drawn(await self.raffles.get_by_id(raffle_id))
            logging.info(format_log_message("Розыгрыш завершен без участников", {"raffle": raffle_id}))
            return DrawResult(raffle_id=raffle.id, title=raffle.title, winner_user_id=None,
                              wallet_address=None, drawn_at=None, entry_count=0)

        winning_entry = pick_winning_entry(entries, self.rng, self.weighting)
        committed = await self.raffles.complete_with_winner(raffle_id, winning_entry.user_id, now)
        if not committed:
            # Победителя успел зафиксировать параллельный вызов
            logging.info(format_log_message("Победитель уже выбран параллельным вызовом", {"raffle": raffle_id}))
            raise await self._already_drawn(await self.raffles.get_by_id(raffle_id))

        winner = await self.users.get_by_id(winning_entry.user_id)
        wallet = winner.wallet_address if winner else None
        logging.info(format_log_message("Выбран победитель", {
            "raffle": raffle_id, "user": winning_entry.user_id, "entries": len(entries),
            "weighting": self.weighting,
        }))
        return DrawResult(raffle_id=raffle.id, title=raffle.title, winner_user_id=winning_entry.user_id,
                          wallet_address=wallet, drawn_at=now, entry_count=len(entries))

    async def sweep_ended_raffles(self) -> SweepReport:
        """
        Выбирает победителей всех завершившихся розыгрышей.
        Ошибка одного розыгрыша не прерывает обработку остальных.
        """
        report = SweepReport()
        due = await self.raffles.list_due_for_draw(self.clock())
        if not due:
            return report

        logging.info(f"Найдено {len(due)} завершившихся розыгрышей без победителя")
        # Откат после ошибки сбрасывает загруженные объекты, поэтому берем значения заранее
        pending = [(raffle.id, raffle.title) for raffle in due]
        for raffle_id, title in pending:
            try:
                result = await self.draw_winner(raffle_id)
            except RaffleError as e:
                logging.warning(format_log_message("Не удалось выбрать победителя",
                                                   {"raffle": raffle_id, "error": e}))
                await safe_rollback(self.session)
                report.failed.append({"raffle_id": raffle_id, "kind": e.kind, "message": e.message})
                continue
            except Exception as e:
                logging.exception(format_log_message("Сбой при выборе победителя",
                                                     {"raffle": raffle_id, "error": repr(e)}))
                await safe_rollback(self.session)
                report.failed.append({"raffle_id": raffle_id, "kind": StorageError.kind, "message": str(e)})
                continue

            if result.winner_user_id is None:
                report.empty.append({"raffle_id": raffle_id, "title": title})
            else:
                report.drawn_count += 1
                report.results.append({
                    "raffle_id": raffle_id,
                    "title": title,
                    "winner_wallet": result.wallet_address,
                })

        logging.info(format_log_message("Обход розыгрышей завершен", {
            "drawn": report.drawn_count, "empty": len(report.empty), "failed": len(report.failed),
        }))
        return report

    async def _already_drawn(self, raffle: Optional[Raffle]) -> AlreadyDrawnError:
        if raffle is None or raffle.winner_user_id is None:
            return AlreadyDrawnError(drawn_at=as_utc(raffle.winner_drawn_at) if raffle else None)
        winner = await self.users.get_by_id(raffle.winner_user_id)
        return AlreadyDrawnError(
            winner_user_id=raffle.winner_user_id,
            wallet_address=winner.wallet_address if winner else None,
            drawn_at=as_utc(raffle.winner_drawn_at),
        )
