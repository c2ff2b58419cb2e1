import uuid
import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, StrictInt
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from chainraffle.config import settings
from chainraffle.database.db import get_session
from chainraffle.database.models import Raffle, RaffleEntry
from chainraffle.database.repositories import EntryRepository, RaffleRepository
from chainraffle.services.ledger import EntryLedger
from chainraffle.services.payments import PaymentVerifier, get_payment_verifier
from chainraffle.services.winner_selector import WinnerSelector
from chainraffle.utils.cache import cache, invalidate_draw, invalidate_raffle
from chainraffle.utils.errors import NotFoundError
from chainraffle.utils.helpers import as_utc, utcnow


class ApiModel(BaseModel):
    """Базовая модель API: поля в camelCase на стороне клиента"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class RaffleOut(ApiModel):
    """Публичное представление розыгрыша (без адреса для оплаты)"""
    id: uuid.UUID
    title: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    prize_amount: Decimal
    prize_symbol: str
    ticket_price: Decimal
    max_tickets: int
    status: str
    starts_at: Optional[datetime] = None
    ends_at: datetime
    winner_user_id: Optional[uuid.UUID] = None
    winner_drawn_at: Optional[datetime] = None


class RaffleDetailOut(RaffleOut):
    tickets_sold: int
    tickets_remaining: int
    entry_count: int


class PaymentInfoOut(ApiModel):
    raffle_id: uuid.UUID
    receiving_address: str
    ticket_price: Decimal
    prize_symbol: str
    tickets_remaining: int
    min_quantity: int
    max_quantity: int


class WinnerOut(RaffleOut):
    wallet_address: str


class EntryOut(ApiModel):
    id: uuid.UUID
    raffle_id: uuid.UUID
    user_id: uuid.UUID
    tx_hash: str
    quantity: int
    created_at: Optional[datetime] = None


class RecentEntryOut(EntryOut):
    wallet_address: str


class CheckEntryResponse(ApiModel):
    entry: Optional[EntryOut] = None


class EnterRequest(ApiModel):
    wallet_address: str
    tx_hash: str
    quantity: StrictInt = 1
    email: Optional[str] = None


class EnterResponse(ApiModel):
    entry: EntryOut
    duplicate: bool
    tickets_remaining: int


class DrawWinnerResponse(ApiModel):
    raffle_id: uuid.UUID
    winner_user_id: Optional[uuid.UUID] = None
    wallet_address: Optional[str] = None
    drawn_at: Optional[datetime] = None
    entry_count: int


class SweepResultOut(ApiModel):
    raffle_id: uuid.UUID
    title: str
    winner_wallet: Optional[str] = None


class SweepEmptyOut(ApiModel):
    raffle_id: uuid.UUID
    title: str


class SweepFailureOut(ApiModel):
    raffle_id: uuid.UUID
    kind: str
    message: str


class CheckWinnersResponse(ApiModel):
    drawn_count: int
    results: List[SweepResultOut]
    empty: List[SweepEmptyOut]
    failed: List[SweepFailureOut]


def raffle_out(raffle: Raffle) -> RaffleOut:
    out = RaffleOut.model_validate(raffle)
    return _with_utc(out)


def entry_out(entry: RaffleEntry) -> EntryOut:
    out = EntryOut.model_validate(entry)
    out.created_at = as_utc(out.created_at)
    return out


def _with_utc(out: RaffleOut) -> RaffleOut:
    # SQLite отдает даты без часового пояса
    out.starts_at = as_utc(out.starts_at)
    out.ends_at = as_utc(out.ends_at)
    out.winner_drawn_at = as_utc(out.winner_drawn_at)
    return out


def get_winner_selector(session: AsyncSession = Depends(get_session)) -> WinnerSelector:
    return WinnerSelector(session)


router = APIRouter(prefix="/api/raffles", tags=["raffles"])


@router.get("", response_model=List[RaffleOut])
async def list_live(session: AsyncSession = Depends(get_session)):
    """Активные розыгрыши, ближайшие к завершению первыми"""
    async def compute():
        raffles = await RaffleRepository(session).list_live()
        return [raffle_out(r) for r in raffles]

    return await cache.get_or_compute("live_raffles", compute)


@router.get("/ended", response_model=List[RaffleOut])
async def list_ended(session: AsyncSession = Depends(get_session)):
    async def compute():
        raffles = await RaffleRepository(session).list_ended(utcnow())
        return [raffle_out(r) for r in raffles]

    return await cache.get_or_compute("ended", compute)


@router.get("/winners", response_model=List[WinnerOut])
async def list_winners(limit: int = Query(100, ge=1, le=500), session: AsyncSession = Depends(get_session)):
    async def compute():
        rows = await RaffleRepository(session).list_winners(limit)
        return [
            WinnerOut(**raffle_out(raffle).model_dump(), wallet_address=wallet)
            for raffle, wallet in rows
        ]

    return await cache.get_or_compute(f"winners:{limit}", compute)


@router.post("/check-winners", response_model=CheckWinnersResponse)
async def check_winners(selector: WinnerSelector = Depends(get_winner_selector)):
    """
    Выбирает победителей всех завершившихся розыгрышей.
    Вызывается внешним планировщиком; ошибки отдельных розыгрышей возвращаются в failed.
    """
    report = await selector.sweep_ended_raffles()
    for item in report.results + report.empty:
        await invalidate_draw(item["raffle_id"])

    return CheckWinnersResponse(
        drawn_count=report.drawn_count,
        results=[SweepResultOut(**item) for item in report.results],
        empty=[SweepEmptyOut(**item) for item in report.empty],
        failed=[SweepFailureOut(**item) for item in report.failed],
    )


@router.get("/{raffle_id}", response_model=RaffleDetailOut)
async def get_raffle(raffle_id: uuid.UUID, session: AsyncSession = Depends(get_session)):
    async def compute():
        raffle = await RaffleRepository(session).get_by_id(raffle_id)
        if raffle is None:
            raise NotFoundError("Raffle not found", {"raffleId": str(raffle_id)})
        entries = EntryRepository(session)
        sold = await entries.tickets_sold(raffle_id)
        return RaffleDetailOut(
            **raffle_out(raffle).model_dump(),
            tickets_sold=sold,
            tickets_remaining=max(raffle.max_tickets - sold, 0),
            entry_count=await entries.count_entries(raffle_id),
        )

    return await cache.get_or_compute(f"raffle:{raffle_id}", compute)


@router.get("/{raffle_id}/payment", response_model=PaymentInfoOut)
async def get_payment_info(raffle_id: uuid.UUID, session: AsyncSession = Depends(get_session)):
    """Данные для формирования транзакции оплаты, включая адрес получателя"""
    raffle = await RaffleRepository(session).get_by_id(raffle_id)
    if raffle is None:
        raise NotFoundError("Raffle not found", {"raffleId": str(raffle_id)})
    sold = await EntryRepository(session).tickets_sold(raffle_id)
    return PaymentInfoOut(
        raffle_id=raffle.id,
        receiving_address=raffle.receiving_address,
        ticket_price=raffle.ticket_price,
        prize_symbol=raffle.prize_symbol,
        tickets_remaining=max(raffle.max_tickets - sold, 0),
        min_quantity=settings.MIN_TICKETS_PER_ENTRY,
        max_quantity=settings.MAX_TICKETS_PER_ENTRY,
    )


@router.get("/{raffle_id}/entries", response_model=List[RecentEntryOut])
async def list_recent_entries(raffle_id: uuid.UUID, session: AsyncSession = Depends(get_session)):
    """Последние 50 записей участия"""
    if await RaffleRepository(session).get_by_id(raffle_id) is None:
        raise NotFoundError("Raffle not found", {"raffleId": str(raffle_id)})
    rows = await EntryRepository(session).list_recent(raffle_id, limit=50)
    return [
        RecentEntryOut(**entry_out(entry).model_dump(), wallet_address=wallet)
        for entry, wallet in rows
    ]


@router.get("/{raffle_id}/check-entry", response_model=CheckEntryResponse)
async def check_entry(raffle_id: uuid.UUID, user_id: uuid.UUID = Query(..., alias="userId"),
                      session: AsyncSession = Depends(get_session)):
    entry = await EntryLedger(session).check_entry(raffle_id, user_id)
    return CheckEntryResponse(entry=entry_out(entry) if entry else None)


@router.post("/{raffle_id}/enter", response_model=EnterResponse)
async def enter_raffle(raffle_id: uuid.UUID, data: EnterRequest,
                       session: AsyncSession = Depends(get_session),
                       verifier: PaymentVerifier = Depends(get_payment_verifier)):
    """Записывает участие после оплаты в блокчейне"""
    ledger = EntryLedger(session, verifier)
    result = await ledger.record_entry(
        raffle_id,
        data.wallet_address,
        data.tx_hash,
        quantity=data.quantity,
        email=data.email,
    )
    await invalidate_raffle(raffle_id)
    return EnterResponse(
        entry=entry_out(result.entry),
        duplicate=result.duplicate,
        tickets_remaining=result.tickets_remaining,
    )


@router.post("/{raffle_id}/draw-winner", response_model=DrawWinnerResponse)
async def draw_winner(raffle_id: uuid.UUID, selector: WinnerSelector = Depends(get_winner_selector)):
    result = await selector.draw_winner(raffle_id)
    await invalidate_draw(raffle_id)
    if result.winner_user_id is None:
        logging.info(f"Розыгрыш {raffle_id} завершен без победителя")
    return DrawWinnerResponse(
        raffle_id=result.raffle_id,
        winner_user_id=result.winner_user_id,
        wallet_address=result.wallet_address,
        drawn_at=as_utc(result.drawn_at),
        entry_count=result.entry_count,
    )
