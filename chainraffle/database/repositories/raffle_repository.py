import uuid
import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from chainraffle.database.guard import storage_call
from chainraffle.database.models import Raffle, User
from chainraffle.utils.errors import InvalidTransitionError, NotFoundError, ValidationError

# Переходы, которые выполняет администратор. Переход в completed делает только розыгрыш победителя.
ADMIN_TRANSITIONS = {
    "draft": {"live"},
    "live": {"closed"},
}


class RaffleRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    @storage_call
    async def create(self, title: str, max_tickets: int, receiving_address: str, ends_at: datetime,
                     ticket_price: Decimal = Decimal("0"), prize_amount: Decimal = Decimal("0"),
                     prize_symbol: str = "ETH", description: str | None = None,
                     image_url: str | None = None, status: str = "draft",
                     starts_at: datetime | None = None) -> Raffle:
        if status not in ("draft", "live"):
            raise ValidationError("New raffle must be created as draft or live")
        if max_tickets <= 0:
            raise ValidationError("max_tickets must be positive")

        raffle = Raffle(
            title=title,
            description=description,
            image_url=image_url,
            prize_amount=prize_amount,
            prize_symbol=prize_symbol,
            ticket_price=ticket_price,
            max_tickets=max_tickets,
            status=status,
            receiving_address=receiving_address,
            starts_at=starts_at,
            ends_at=ends_at,
        )
        self.session.add(raffle)
        await self.session.commit()
        await self.session.refresh(raffle)
        logging.info(f"Создан розыгрыш {raffle.id} ({title}) со статусом {status}")
        return raffle

    @storage_call
    async def set_status(self, raffle_id: uuid.UUID, status: str) -> Raffle:
        """Административная смена статуса: публикация (draft -> live) или закрытие (live -> closed)"""
        raffle = await self._get(raffle_id)
        if raffle is None:
            raise NotFoundError("Raffle not found")
        if status not in ADMIN_TRANSITIONS.get(raffle.status, set()):
            raise InvalidTransitionError(raffle.status, status)

        stmt = (
            update(Raffle)
            .where(Raffle.id == raffle_id, Raffle.status == raffle.status)
            .values(status=status)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)
        await self.session.commit()
        return await self._get(raffle_id)

    @storage_call
    async def get_by_id(self, raffle_id: uuid.UUID) -> Optional[Raffle]:
        return await self._get(raffle_id)

    @storage_call
    async def get_for_update(self, raffle_id: uuid.UUID) -> Optional[Raffle]:
        """
        Получает розыгрыш с блокировкой строки до конца транзакции.
        Все записи участия одного розыгрыша проходят через эту точку последовательно.
        """
        result = await self.session.execute(
            select(Raffle)
            .where(Raffle.id == raffle_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @storage_call
    async def list_live(self) -> List[Raffle]:
        result = await self.session.execute(
            select(Raffle).where(Raffle.status == "live").order_by(Raffle.ends_at.asc())
        )
        return list(result.scalars().all())

    @storage_call
    async def list_ended(self, now: datetime) -> List[Raffle]:
        """Розыгрыши с истекшим таймером, кроме черновиков"""
        result = await self.session.execute(
            select(Raffle)
            .where(Raffle.ends_at < now, Raffle.status != "draft")
            .order_by(Raffle.ends_at.desc())
        )
        return list(result.scalars().all())

    @storage_call
    async def list_winners(self, limit: int = 100) -> List[Tuple[Raffle, str]]:
        result = await self.session.execute(
            select(Raffle, User.wallet_address)
            .join(User, User.id == Raffle.winner_user_id)
            .where(Raffle.status == "completed")
            .order_by(Raffle.winner_drawn_at.desc())
            .limit(limit)
        )
        return [(raffle, wallet) for raffle, wallet in result.all()]

    @storage_call
    async def list_due_for_draw(self, now: datetime) -> List[Raffle]:
        """Активные розыгрыши без победителя, у которых истекло время"""
        result = await self.session.execute(
            select(Raffle)
            .where(
                Raffle.status == "live",
                Raffle.winner_user_id.is_(None),
                Raffle.ends_at <= now,
            )
            .order_by(Raffle.ends_at.asc())
        )
        return list(result.scalars().all())

    @storage_call
    async def complete_with_winner(self, raffle_id: uuid.UUID, winner_user_id: uuid.UUID,
                                   drawn_at: datetime) -> bool:
        """
        Атомарно фиксирует победителя и переводит розыгрыш в completed.
        Обновление выполняется только если победитель еще не выбран,
        поэтому из параллельных вызовов запись проходит ровно у одного.

        Returns:
            bool: True, если победитель зафиксирован этим вызовом
        """
        stmt = (
            update(Raffle)
            .where(
                Raffle.id == raffle_id,
                Raffle.status == "live",
                Raffle.winner_user_id.is_(None),
            )
            .values(winner_user_id=winner_user_id, winner_drawn_at=drawn_at, status="completed")
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount == 1

    @storage_call
    async def complete_without_winner(self, raffle_id: uuid.UUID) -> bool:
        """Завершает розыгрыш без участников. Победитель остается пустым."""
        stmt = (
            update(Raffle)
            .where(
                Raffle.id == raffle_id,
                Raffle.status == "live",
                Raffle.winner_user_id.is_(None),
            )
            .values(status="completed")
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount == 1

    async def _get(self, raffle_id: uuid.UUID) -> Optional[Raffle]:
        result = await self.session.execute(
            select(Raffle).where(Raffle.id == raffle_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()
