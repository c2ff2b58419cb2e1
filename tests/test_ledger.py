from datetime import timedelta

import pytest

from chainraffle.config import settings
from chainraffle.database.repositories import EntryRepository, RaffleRepository
from chainraffle.services.ledger import EntryLedger
from chainraffle.services.payments import PaymentVerifier
from chainraffle.utils.errors import (
    CapacityExceededError,
    NotFoundError,
    PaymentNotVerifiedError,
    RaffleClosedForEntriesError,
    RaffleNotLiveError,
    ValidationError,
)
from chainraffle.utils.helpers import utcnow


async def test_happy_path_tracks_remaining_tickets(session, make_raffle):
    raffle = await make_raffle(max_tickets=10)
    ledger = EntryLedger(session)

    first = await ledger.record_entry(raffle.id, "0xA", "0xhash1", 1)
    assert first.duplicate is False
    assert first.tickets_remaining == 9

    second = await ledger.record_entry(raffle.id, "0xB", "0xhash2", 5)
    assert second.duplicate is False
    assert second.tickets_remaining == 4
    assert await ledger.tickets_remaining(raffle.id) == 4
    assert await EntryRepository(session).count_entries(raffle.id) == 2


async def test_capacity_rejection_states_remaining(session, make_raffle):
    raffle = await make_raffle(max_tickets=10)
    raffle_id = raffle.id
    ledger = EntryLedger(session)
    await ledger.record_entry(raffle.id, "0xA", "0xhash1", 1)
    await ledger.record_entry(raffle.id, "0xB", "0xhash2", 5)

    with pytest.raises(CapacityExceededError) as exc_info:
        await ledger.record_entry(raffle.id, "0xC", "0xhash3", 5)

    assert exc_info.value.remaining == 4
    assert "4 tickets left" in exc_info.value.message
    assert exc_info.value.to_payload()["kind"] == "capacity_exceeded"
    # Ничего не записано
    assert await EntryRepository(session).tickets_sold(raffle_id) == 6


async def test_exact_fill_then_sold_out(session, make_raffle):
    raffle = await make_raffle(max_tickets=3)
    ledger = EntryLedger(session)

    result = await ledger.record_entry(raffle.id, "0xA", "0xhash1", 3)
    assert result.tickets_remaining == 0

    with pytest.raises(CapacityExceededError) as exc_info:
        await ledger.record_entry(raffle.id, "0xB", "0xhash2", 1)
    assert exc_info.value.remaining == 0
    assert exc_info.value.message == "Sold out: no tickets left"


async def test_sold_never_exceeds_cap(session, make_raffle):
    raffle = await make_raffle(max_tickets=25)
    ledger = EntryLedger(session)
    raffle_id = raffle.id

    for i, quantity in enumerate([4, 7, 3, 9, 6, 2, 5, 1, 8]):
        try:
            await ledger.record_entry(raffle_id, f"0xwallet{i}", f"0xhash{i}", quantity)
        except CapacityExceededError:
            pass
        assert await EntryRepository(session).tickets_sold(raffle_id) <= 25

    assert await EntryRepository(session).tickets_sold(raffle_id) == 25


async def test_duplicate_entry_updates_tx_hash_only(session, make_raffle):
    raffle = await make_raffle(max_tickets=10)
    ledger = EntryLedger(session)

    first = await ledger.record_entry(raffle.id, "0xA", "0xhash1", 2)
    again = await ledger.record_entry(raffle.id, "0xA", "0xhash2", 5)

    assert again.duplicate is True
    assert again.entry.id == first.entry.id
    assert again.entry.tx_hash == "0xhash2"
    assert again.entry.quantity == 2
    assert again.tickets_remaining == 8
    assert await EntryRepository(session).count_entries(raffle.id) == 1


async def test_duplicate_entry_allowed_when_sold_out(session, make_raffle):
    raffle = await make_raffle(max_tickets=2)
    ledger = EntryLedger(session)
    await ledger.record_entry(raffle.id, "0xA", "0xhash1", 2)

    again = await ledger.record_entry(raffle.id, "0xA", "0xhash1", 1)
    assert again.duplicate is True


@pytest.mark.parametrize("quantity", [0, -1, 101, 2.5, True, "3"])
async def test_quantity_out_of_range_rejected(session, make_raffle, quantity):
    raffle = await make_raffle()
    with pytest.raises(ValidationError):
        await EntryLedger(session).record_entry(raffle.id, "0xA", "0xhash1", quantity)
    assert await EntryRepository(session).count_entries(raffle.id) == 0


@pytest.mark.parametrize("wallet, tx_hash", [("", "0xhash"), ("   ", "0xhash"), ("0xA", ""), ("0xA", "  ")])
async def test_empty_wallet_or_hash_rejected(session, make_raffle, wallet, tx_hash):
    raffle = await make_raffle()
    with pytest.raises(ValidationError):
        await EntryLedger(session).record_entry(raffle.id, wallet, tx_hash)


async def test_invalid_email_rejected(session, make_raffle):
    raffle = await make_raffle()
    with pytest.raises(ValidationError):
        await EntryLedger(session).record_entry(raffle.id, "0xA", "0xhash", email="not-an-email")

    result = await EntryLedger(session).record_entry(raffle.id, "0xA", "0xhash", email="a@example.com")
    assert result.entry.email == "a@example.com"


async def test_unknown_raffle_not_found(session):
    import uuid

    with pytest.raises(NotFoundError):
        await EntryLedger(session).record_entry(uuid.uuid4(), "0xA", "0xhash")


@pytest.mark.parametrize("status", ["draft", "closed"])
async def test_entry_requires_live_raffle(session, make_raffle, status):
    raffle = await make_raffle(status="draft")
    if status == "closed":
        repo = RaffleRepository(session)
        await repo.set_status(raffle.id, "live")
        await repo.set_status(raffle.id, "closed")

    with pytest.raises(RaffleNotLiveError):
        await EntryLedger(session).record_entry(raffle.id, "0xA", "0xhash")


async def test_entry_rejected_after_end_time(session, make_raffle):
    raffle = await make_raffle(ends_at=utcnow() - timedelta(minutes=1))
    with pytest.raises(RaffleClosedForEntriesError):
        await EntryLedger(session).record_entry(raffle.id, "0xA", "0xhash")


async def test_check_entry(session, make_raffle):
    raffle = await make_raffle()
    ledger = EntryLedger(session)
    result = await ledger.record_entry(raffle.id, "0xA", "0xhash1", 2)

    found = await ledger.check_entry(raffle.id, result.entry.user_id)
    assert found is not None
    assert found.quantity == 2

    other = await make_raffle(title="Other")
    assert await ledger.check_entry(other.id, result.entry.user_id) is None


async def test_quantity_bounds_follow_settings(session, make_raffle, monkeypatch):
    monkeypatch.setattr(settings, "MAX_TICKETS_PER_ENTRY", 3)
    raffle = await make_raffle()
    with pytest.raises(ValidationError) as exc_info:
        await EntryLedger(session).record_entry(raffle.id, "0xA", "0xhash", 4)
    assert exc_info.value.details == {"min": 1, "max": 3}


class RejectingVerifier(PaymentVerifier):
    def __init__(self):
        self.calls = []

    async def verify(self, raffle, tx_hash, quantity, wallet_address):
        self.calls.append((raffle.id, tx_hash, quantity, wallet_address))
        raise PaymentNotVerifiedError("Transaction failed on chain")


async def test_unverified_payment_writes_nothing(session, make_raffle):
    raffle = await make_raffle()
    verifier = RejectingVerifier()

    with pytest.raises(PaymentNotVerifiedError):
        await EntryLedger(session, verifier).record_entry(raffle.id, " 0xA ", "0xhash", 2)

    assert verifier.calls == [(raffle.id, "0xhash", 2, "0xA")]
    assert await EntryRepository(session).count_entries(raffle.id) == 0
