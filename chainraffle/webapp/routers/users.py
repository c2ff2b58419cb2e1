import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from chainraffle.database.db import get_session
from chainraffle.database.repositories import EntryRepository, UserRepository
from chainraffle.utils.errors import ValidationError
from chainraffle.utils.helpers import as_utc
from chainraffle.webapp.routers.raffles import ApiModel, EntryOut, entry_out


class GetOrCreateRequest(ApiModel):
    wallet_address: str


class UserOut(ApiModel):
    user_id: uuid.UUID
    wallet_address: str


class RaffleSummaryOut(ApiModel):
    id: uuid.UUID
    title: str
    status: str
    ends_at: datetime
    prize_amount: Decimal
    prize_symbol: str
    winner_drawn_at: Optional[datetime] = None


class UserEntryOut(EntryOut):
    raffle: RaffleSummaryOut
    is_winner: bool


router = APIRouter(prefix="/api/users", tags=["users"])


@router.post("/get-or-create", response_model=UserOut)
async def get_or_create_user(data: GetOrCreateRequest, session: AsyncSession = Depends(get_session)):
    """Регистрирует кошелек при подключении или возвращает существующего пользователя"""
    wallet_address = data.wallet_address.strip()
    if not wallet_address:
        raise ValidationError("walletAddress is required")
    user = await UserRepository(session).get_or_create(wallet_address)
    return UserOut(user_id=user.id, wallet_address=user.wallet_address)


@router.get("/{wallet_address}/entries", response_model=List[UserEntryOut])
async def list_user_entries(wallet_address: str, session: AsyncSession = Depends(get_session)):
    """История участия кошелька, новые записи первыми. Для неизвестного кошелька список пуст."""
    user = await UserRepository(session).get_by_wallet(wallet_address.strip())
    if user is None:
        return []

    rows = await EntryRepository(session).list_by_user(user.id)
    return [
        UserEntryOut(
            **entry_out(entry).model_dump(),
            raffle=RaffleSummaryOut(
                id=raffle.id,
                title=raffle.title,
                status=raffle.status,
                ends_at=as_utc(raffle.ends_at),
                prize_amount=raffle.prize_amount,
                prize_symbol=raffle.prize_symbol,
                winner_drawn_at=as_utc(raffle.winner_drawn_at),
            ),
            is_winner=raffle.winner_user_id == user.id,
        )
        for entry, raffle in rows
    ]
