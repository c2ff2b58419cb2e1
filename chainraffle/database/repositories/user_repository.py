import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from chainraffle.database.guard import storage_call
from chainraffle.database.models import User


class UserRepository:
    """
    Репозиторий участников. Пользователь создается лениво при первом обращении по адресу кошелька.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    @storage_call
    async def get_by_id(self, user_id: uuid.UUID) -> Optional[User]:
        result = await self.session.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    @storage_call
    async def get_by_wallet(self, wallet_address: str) -> Optional[User]:
        result = await self.session.execute(select(User).where(User.wallet_address == wallet_address))
        return result.scalar_one_or_none()

    @storage_call
    async def get_or_create(self, wallet_address: str) -> User:
        """
        Получает пользователя по адресу кошелька или создает нового.
        Идемпотентно: при гонке двух запросов уникальный индекс отклоняет вторую вставку,
        после чего возвращается уже созданная запись.

        Args:
            wallet_address (str): Адрес кошелька

        Returns:
            User: Объект пользователя
        """
        result = await self.session.execute(select(User).where(User.wallet_address == wallet_address))
        user = result.scalar_one_or_none()
        if user:
            return user

        user = User(wallet_address=wallet_address)
        self.session.add(user)
        try:
            await self.session.commit()
        except IntegrityError:
            # Кошелек успел зарегистрировать параллельный запрос
            await self.session.rollback()
            logging.info(f"Пользователь с кошельком {wallet_address} создан параллельным запросом")
            result = await self.session.execute(select(User).where(User.wallet_address == wallet_address))
            return result.scalar_one()

        await self.session.refresh(user)
        logging.info(f"Создан пользователь {user.id} для кошелька {wallet_address}")
        return user
