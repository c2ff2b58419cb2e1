import random
import uuid
from datetime import timedelta

import pytest

from chainraffle.services.winner_selector import WinnerSelector
from chainraffle.utils.helpers import utcnow
from chainraffle.webapp.routers.raffles import get_winner_selector


async def enter(client, raffle_id, wallet, tx_hash, quantity=1, **extra):
    return await client.post(
        f"/api/raffles/{raffle_id}/enter",
        json={"walletAddress": wallet, "txHash": tx_hash, "quantity": quantity, **extra},
    )


@pytest.fixture
def draw_later(app, session_factory):
    """Выбор победителя с часами после окончания розыгрышей и фиксированным зерном"""
    sessions = []

    async def override():
        async with session_factory() as session:
            sessions.append(session)
            yield WinnerSelector(session, rng=random.Random(8), clock=lambda: utcnow() + timedelta(hours=2))

    app.dependency_overrides[get_winner_selector] = override
    return sessions


async def test_get_or_create_user_is_idempotent(client):
    first = await client.post("/api/users/get-or-create", json={"walletAddress": "0xA"})
    second = await client.post("/api/users/get-or-create", json={"walletAddress": " 0xA "})

    assert first.status_code == 200
    assert first.json()["userId"] == second.json()["userId"]
    assert first.json()["walletAddress"] == "0xA"


async def test_get_or_create_requires_wallet(client):
    response = await client.post("/api/users/get-or-create", json={"walletAddress": "  "})
    assert response.status_code == 400
    assert response.json()["error"]["kind"] == "validation_error"


async def test_enter_flow_and_capacity_error(client, make_raffle):
    raffle = await make_raffle(max_tickets=10)

    first = await enter(client, raffle.id, "0xA", "0xhash1", 1)
    assert first.status_code == 200
    body = first.json()
    assert body["duplicate"] is False
    assert body["ticketsRemaining"] == 9
    assert body["entry"]["txHash"] == "0xhash1"

    assert (await enter(client, raffle.id, "0xB", "0xhash2", 5)).json()["ticketsRemaining"] == 4

    rejected = await enter(client, raffle.id, "0xC", "0xhash3", 5)
    assert rejected.status_code == 409
    error = rejected.json()["error"]
    assert error["kind"] == "capacity_exceeded"
    assert error["message"] == "Only 4 tickets left"
    assert error["remaining"] == 4

    detail = (await client.get(f"/api/raffles/{raffle.id}")).json()
    assert detail["ticketsSold"] == 6
    assert detail["ticketsRemaining"] == 4
    assert detail["entryCount"] == 2
    assert "receivingAddress" not in detail


async def test_duplicate_entry_over_http(client, make_raffle):
    raffle = await make_raffle()
    await enter(client, raffle.id, "0xA", "0xhash1", 2)

    again = await enter(client, raffle.id, "0xA", "0xhash2", 2)
    assert again.status_code == 200
    assert again.json()["duplicate"] is True
    assert again.json()["entry"]["quantity"] == 2


@pytest.mark.parametrize("payload", [
    {"walletAddress": "0xA", "txHash": "0xhash", "quantity": 0},
    {"walletAddress": "0xA", "txHash": "0xhash", "quantity": 101},
    {"walletAddress": "0xA", "txHash": "0xhash", "quantity": "many"},
    {"walletAddress": "0xA", "txHash": "0xhash", "quantity": "3"},
    {"walletAddress": "0xA", "txHash": "0xhash", "quantity": 2.0},
    {"walletAddress": "0xA", "txHash": "0xhash", "quantity": True},
    {"walletAddress": "0xA", "quantity": 1},
])
async def test_enter_validation_errors(client, make_raffle, payload):
    raffle = await make_raffle()
    response = await client.post(f"/api/raffles/{raffle.id}/enter", json=payload)
    assert response.status_code == 400
    assert response.json()["error"]["kind"] == "validation_error"


async def test_enter_unknown_raffle(client):
    response = await enter(client, uuid.uuid4(), "0xA", "0xhash")
    assert response.status_code == 404
    assert response.json()["error"]["kind"] == "not_found"


async def test_enter_ended_raffle(client, make_raffle):
    raffle = await make_raffle(ends_at=utcnow() - timedelta(minutes=1))
    response = await enter(client, raffle.id, "0xA", "0xhash")
    assert response.status_code == 409
    assert response.json()["error"]["kind"] == "entries_closed"


async def test_check_entry(client, make_raffle):
    raffle = await make_raffle()
    user_id = (await client.post("/api/users/get-or-create", json={"walletAddress": "0xA"})).json()["userId"]

    before = await client.get(f"/api/raffles/{raffle.id}/check-entry", params={"userId": user_id})
    assert before.json() == {"entry": None}

    await enter(client, raffle.id, "0xA", "0xhash1", 3)
    after = await client.get(f"/api/raffles/{raffle.id}/check-entry", params={"userId": user_id})
    assert after.json()["entry"]["quantity"] == 3
    assert after.json()["entry"]["userId"] == user_id


async def test_payment_info_includes_receiving_address(client, make_raffle):
    raffle = await make_raffle(receiving_address="0xreceiver", max_tickets=5)
    response = await client.get(f"/api/raffles/{raffle.id}/payment")
    assert response.status_code == 200
    body = response.json()
    assert body["receivingAddress"] == "0xreceiver"
    assert body["ticketsRemaining"] == 5
    assert body["maxQuantity"] == 100


async def test_live_list_hides_receiving_address(client, make_raffle):
    await make_raffle(title="Live one")
    await make_raffle(title="Draft one", status="draft")

    raffles = (await client.get("/api/raffles")).json()
    assert [r["title"] for r in raffles] == ["Live one"]
    assert "receivingAddress" not in raffles[0]


async def test_recent_entries_include_wallets(client, make_raffle):
    raffle = await make_raffle()
    await enter(client, raffle.id, "0xA", "0xhash1")
    await enter(client, raffle.id, "0xB", "0xhash2")

    entries = (await client.get(f"/api/raffles/{raffle.id}/entries")).json()
    assert sorted(e["walletAddress"] for e in entries) == ["0xA", "0xB"]


async def test_draw_not_ended(client, make_raffle):
    raffle = await make_raffle(ends_at=utcnow() + timedelta(hours=1))
    response = await client.post(f"/api/raffles/{raffle.id}/draw-winner")
    assert response.status_code == 400
    assert response.json()["error"]["kind"] == "not_ended"


async def test_draw_winner_then_already_drawn(client, make_raffle, draw_later):
    raffle = await make_raffle()
    await enter(client, raffle.id, "0xA", "0xhash1")
    await enter(client, raffle.id, "0xB", "0xhash2")

    drawn = await client.post(f"/api/raffles/{raffle.id}/draw-winner")
    assert drawn.status_code == 200
    winner = drawn.json()
    assert winner["walletAddress"] in ("0xA", "0xB")
    assert winner["drawnAt"] is not None
    assert winner["entryCount"] == 2

    again = await client.post(f"/api/raffles/{raffle.id}/draw-winner")
    assert again.status_code == 409
    error = again.json()["error"]
    assert error["kind"] == "already_drawn"
    assert error["walletAddress"] == winner["walletAddress"]
    assert error["winnerUserId"] == winner["winnerUserId"]

    user_entries = (await client.get(f"/api/users/{winner['walletAddress']}/entries")).json()
    assert user_entries[0]["isWinner"] is True
    assert user_entries[0]["raffle"]["status"] == "completed"


async def test_check_winners_sweep(client, make_raffle, draw_later):
    raffle = await make_raffle(title="Weekly")
    await make_raffle(title="Nobody came")
    await enter(client, raffle.id, "0xA", "0xhash1")

    response = await client.post("/api/raffles/check-winners")
    assert response.status_code == 200
    body = response.json()
    assert body["drawnCount"] == 1
    assert body["results"] == [{"raffleId": str(raffle.id), "title": "Weekly", "winnerWallet": "0xA"}]
    assert [item["title"] for item in body["empty"]] == ["Nobody came"]
    assert body["failed"] == []

    winners = (await client.get("/api/raffles/winners")).json()
    assert [w["walletAddress"] for w in winners] == ["0xA"]


async def test_unknown_wallet_has_no_entries(client):
    response = await client.get("/api/users/0xNobody/entries")
    assert response.status_code == 200
    assert response.json() == []


async def test_invalid_raffle_id(client):
    response = await client.get("/api/raffles/not-a-uuid")
    assert response.status_code == 400
    assert response.json()["error"]["kind"] == "validation_error"
