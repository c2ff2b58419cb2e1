"""
Учет записей участия.

Одна запись на кошелек в розыгрыше, с количеством билетов в записи.
Проверка лимита и вставка выполняются под блокировкой строки розыгрыша,
поэтому параллельные покупки разными кошельками не могут превысить max_tickets.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from chainraffle.config import settings
from chainraffle.database.models import Raffle, RaffleEntry
from chainraffle.database.repositories import EntryRepository, RaffleRepository, UserRepository
from chainraffle.services.payments import NoopPaymentVerifier, PaymentVerifier
from chainraffle.utils.errors import (
    CapacityExceededError,
    DuplicateRowError,
    NotFoundError,
    RaffleClosedForEntriesError,
    RaffleError,
    RaffleNotLiveError,
    ValidationError,
)
from chainraffle.utils.helpers import as_utc, format_log_message, is_valid_email, utcnow


@dataclass
class EntryResult:
    entry: RaffleEntry
    duplicate: bool
    tickets_remaining: int


def validate_entry_request(wallet_address: str, tx_hash: str, quantity, email: Optional[str]) -> None:
    """Проверка входных данных до любых обращений к хранилищу"""
    if not wallet_address or not str(wallet_address).strip():
        raise ValidationError("walletAddress is required")
    if not tx_hash or not str(tx_hash).strip():
        raise ValidationError("txHash is required")
    # bool - подкласс int, но количеством билетов не является
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError("quantity must be an integer")
    if quantity < settings.MIN_TICKETS_PER_ENTRY or quantity > settings.MAX_TICKETS_PER_ENTRY:
        raise ValidationError(
            f"quantity must be between {settings.MIN_TICKETS_PER_ENTRY} and {settings.MAX_TICKETS_PER_ENTRY}",
            {"min": settings.MIN_TICKETS_PER_ENTRY, "max": settings.MAX_TICKETS_PER_ENTRY},
        )
    if email is not None and not is_valid_email(email):
        raise ValidationError("email is not valid")


class EntryLedger:
    def __init__(self, session: AsyncSession, verifier: Optional[PaymentVerifier] = None):
        self.session = session
        self.verifier = verifier or NoopPaymentVerifier()
        self.users = UserRepository(session)
        self.raffles = RaffleRepository(session)
        self.entries = EntryRepository(session)

    async def record_entry(self, raffle_id: uuid.UUID, wallet_address: str, tx_hash: str,
                           quantity: int = 1, email: Optional[str] = None) -> EntryResult:
        """
        Записывает покупку билетов после оплаты в блокчейне.

        Args:
            raffle_id (uuid.UUID): ID розыгрыша
            wallet_address (str): Адрес кошелька участника
            tx_hash (str): Хэш транзакции оплаты
            quantity (int): Количество билетов
            email (Optional[str]): Контактный email

        Returns:
            EntryResult: Запись и флаг duplicate (повторная оплата тем же кошельком)
        """
        validate_entry_request(wallet_address, tx_hash, quantity, email)
        wallet_address = wallet_address.strip()
        tx_hash = tx_hash.strip()
        email = email.strip() if email else None

        raffle = await self.raffles.get_by_id(raffle_id)
        if raffle is None:
            raise NotFoundError("Raffle not found", {"raffleId": str(raffle_id)})
        self._check_accepts_entries(raffle)

        # Проверка оплаты выполняется до блокировки, чтобы не держать строку во время сетевого запроса
        await self.verifier.verify(raffle, tx_hash, quantity, wallet_address)

        user_id = (await self.users.get_or_create(wallet_address)).id

        try:
            return await self._record_locked(raffle_id, user_id, tx_hash, quantity, email)
        except DuplicateRowError:
            # Параллельный запрос того же кошелька успел вставить запись
            logging.info(format_log_message("Конфликт уникальности записи, обновляем хэш",
                                            {"raffle": raffle_id, "user": user_id}))
            return await self._record_duplicate(raffle_id, user_id, tx_hash)

    async def _record_locked(self, raffle_id: uuid.UUID, user_id: uuid.UUID, tx_hash: str,
                             quantity: int, email: Optional[str]) -> EntryResult:
        raffle = await self.raffles.get_for_update(raffle_id)
        try:
            if raffle is None:
                raise NotFoundError("Raffle not found", {"raffleId": str(raffle_id)})
            self._check_accepts_entries(raffle)

            existing = await self.entries.get_for_user(raffle_id, user_id)
            if existing is not None:
                await self.session.rollback()
                return await self._record_duplicate(raffle_id, user_id, tx_hash)

            sold = await self.entries.tickets_sold(raffle_id)
            if sold + quantity > raffle.max_tickets:
                logging.info(format_log_message("Превышен лимит билетов",
                                                {"raffle": raffle_id, "sold": sold, "requested": quantity}))
                raise CapacityExceededError(remaining=raffle.max_tickets - sold, requested=quantity)
        except RaffleError:
            # Снимаем блокировку строки розыгрыша
            await self.session.rollback()
            raise

        entry = await self.entries.insert(raffle_id, user_id, tx_hash, quantity, email)
        remaining = raffle.max_tickets - sold - quantity
        logging.info(format_log_message("Записано участие", {
            "raffle": raffle_id, "user": user_id, "quantity": quantity, "remaining": remaining,
        }))
        return EntryResult(entry=entry, duplicate=False, tickets_remaining=remaining)

    async def _record_duplicate(self, raffle_id: uuid.UUID, user_id: uuid.UUID, tx_hash: str) -> EntryResult:
        entry = await self.entries.update_tx_hash(raffle_id, user_id, tx_hash)
        if entry is None:
            raise NotFoundError("Entry not found", {"raffleId": str(raffle_id)})
        remaining = await self.tickets_remaining(raffle_id)
        logging.info(format_log_message("Повторная оплата кошельком, обновлен хэш транзакции",
                                        {"raffle": raffle_id, "user": user_id}))
        return EntryResult(entry=entry, duplicate=True, tickets_remaining=remaining)

    async def check_entry(self, raffle_id: uuid.UUID, user_id: uuid.UUID) -> Optional[RaffleEntry]:
        """Существующая запись пользователя в розыгрыше или None"""
        return await self.entries.get_for_user(raffle_id, user_id)

    async def tickets_remaining(self, raffle_id: uuid.UUID) -> int:
        raffle = await self.raffles.get_by_id(raffle_id)
        if raffle is None:
            raise NotFoundError("Raffle not found", {"raffleId": str(raffle_id)})
        sold = await self.entries.tickets_sold(raffle_id)
        return max(raffle.max_tickets - sold, 0)

    @staticmethod
    def _check_accepts_entries(raffle: Raffle) -> None:
        if raffle.status != "live":
            raise RaffleNotLiveError(raffle.status)
        if raffle.has_ended(utcnow()):
            raise RaffleClosedForEntriesError(as_utc(raffle.ends_at))
