import uuid
from typing import List, Optional, Tuple

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from chainraffle.database.guard import storage_call
from chainraffle.database.models import Raffle, RaffleEntry, User


class EntryRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    @storage_call
    async def get_for_user(self, raffle_id: uuid.UUID, user_id: uuid.UUID) -> Optional[RaffleEntry]:
        result = await self.session.execute(
            select(RaffleEntry).where(
                RaffleEntry.raffle_id == raffle_id,
                RaffleEntry.user_id == user_id,
            ).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @storage_call
    async def tickets_sold(self, raffle_id: uuid.UUID) -> int:
        """Сумма купленных билетов по всем записям розыгрыша"""
        result = await self.session.execute(
            select(func.coalesce(func.sum(RaffleEntry.quantity), 0)).where(RaffleEntry.raffle_id == raffle_id)
        )
        return int(result.scalar() or 0)

    @storage_call
    async def count_entries(self, raffle_id: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(RaffleEntry).where(RaffleEntry.raffle_id == raffle_id)
        )
        return result.scalar() or 0

    @storage_call
    async def insert(self, raffle_id: uuid.UUID, user_id: uuid.UUID, tx_hash: str, quantity: int = 1,
                     email: Optional[str] = None) -> RaffleEntry:
        """
        Создает запись участия и фиксирует транзакцию.
        Повторная запись того же кошелька отклоняется уникальным индексом (DuplicateRowError).
        """
        entry = RaffleEntry(
            raffle_id=raffle_id,
            user_id=user_id,
            tx_hash=tx_hash,
            quantity=quantity,
            email=email,
        )
        self.session.add(entry)
        await self.session.commit()
        await self.session.refresh(entry)
        return entry

    @storage_call
    async def update_tx_hash(self, raffle_id: uuid.UUID, user_id: uuid.UUID, tx_hash: str) -> Optional[RaffleEntry]:
        stmt = (
            update(RaffleEntry)
            .where(RaffleEntry.raffle_id == raffle_id, RaffleEntry.user_id == user_id)
            .values(tx_hash=tx_hash)
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)
        await self.session.commit()
        result = await self.session.execute(
            select(RaffleEntry).where(
                RaffleEntry.raffle_id == raffle_id,
                RaffleEntry.user_id == user_id,
            ).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    @storage_call
    async def list_for_draw(self, raffle_id: uuid.UUID) -> List[RaffleEntry]:
        """Все записи розыгрыша в детерминированном порядке для выбора победителя"""
        result = await self.session.execute(
            select(RaffleEntry)
            .where(RaffleEntry.raffle_id == raffle_id)
            .order_by(RaffleEntry.created_at.asc(), RaffleEntry.id.asc())
        )
        return list(result.scalars().all())

    @storage_call
    async def list_recent(self, raffle_id: uuid.UUID, limit: int = 50) -> List[Tuple[RaffleEntry, str]]:
        """Последние записи розыгрыша вместе с адресами кошельков"""
        result = await self.session.execute(
            select(RaffleEntry, User.wallet_address)
            .join(User, User.id == RaffleEntry.user_id)
            .where(RaffleEntry.raffle_id == raffle_id)
            .order_by(RaffleEntry.created_at.desc(), RaffleEntry.id.desc())
            .limit(limit)
        )
        return [(entry, wallet) for entry, wallet in result.all()]

    @storage_call
    async def list_by_user(self, user_id: uuid.UUID) -> List[Tuple[RaffleEntry, Raffle]]:
        """История участия пользователя вместе с розыгрышами"""
        result = await self.session.execute(
            select(RaffleEntry, Raffle)
            .join(Raffle, Raffle.id == RaffleEntry.raffle_id)
            .where(RaffleEntry.user_id == user_id)
            .order_by(RaffleEntry.created_at.desc())
        )
        return [(entry, raffle) for entry, raffle in result.all()]
