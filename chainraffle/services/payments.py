"""
Проверка оплаты билетов в блокчейне.

По умолчанию оплата не проверяется: запись участия фиксирует лишь заявленный хэш транзакции.
Режим evm_rpc сверяет транзакцию через JSON-RPC узла EVM-сети: транзакция успешна,
отправлена с кошелька участника на адрес розыгрыша и сумма покрывает стоимость билетов.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from chainraffle.config import settings
from chainraffle.database.models import Raffle
from chainraffle.utils.errors import PaymentNotVerifiedError
from chainraffle.utils.helpers import format_log_message


class PaymentVerifier:
    """Базовый интерфейс проверки оплаты"""

    async def verify(self, raffle: Raffle, tx_hash: str, quantity: int, wallet_address: str) -> None:
        """Бросает PaymentNotVerifiedError, если оплата не подтверждена"""
        raise NotImplementedError


class NoopPaymentVerifier(PaymentVerifier):
    async def verify(self, raffle: Raffle, tx_hash: str, quantity: int, wallet_address: str) -> None:
        return None


def to_base_units(amount: Decimal, decimals: int) -> int:
    """Переводит сумму в минимальные единицы сети (wei для 18 знаков)"""
    return int(Decimal(amount) * (Decimal(10) ** decimals))


class EvmRpcPaymentVerifier(PaymentVerifier):
    def __init__(self, rpc_url: str, decimals: int = 18, timeout_seconds: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.rpc_url = rpc_url
        self.decimals = decimals
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    async def _rpc(self, client: httpx.AsyncClient, method: str, params: list) -> Any:
        response = await client.post(
            self.rpc_url,
            json={"jsonrpc": "2.0", "id": 1, "method": method, "params": params},
        )
        response.raise_for_status()
        payload: Dict[str, Any] = response.json()
        if payload.get("error"):
            raise PaymentNotVerifiedError(f"RPC error: {payload['error'].get('message', 'unknown')}")
        return payload.get("result")

    async def verify(self, raffle: Raffle, tx_hash: str, quantity: int, wallet_address: str) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
                tx = await self._rpc(client, "eth_getTransactionByHash", [tx_hash])
                receipt = await self._rpc(client, "eth_getTransactionReceipt", [tx_hash])
        except httpx.HTTPError as e:
            logging.warning(format_log_message("RPC узел недоступен при проверке оплаты", {"tx": tx_hash, "error": e}))
            raise PaymentNotVerifiedError("Payment could not be verified: RPC unavailable") from e

        if not tx or not receipt:
            raise PaymentNotVerifiedError("Transaction not found or not yet mined")
        if receipt.get("status") != "0x1":
            raise PaymentNotVerifiedError("Transaction failed on chain")
        if (tx.get("to") or "").lower() != raffle.receiving_address.lower():
            raise PaymentNotVerifiedError("Transaction was not sent to the raffle address")
        if (tx.get("from") or "").lower() != wallet_address.lower():
            raise PaymentNotVerifiedError("Transaction was not sent from the entering wallet")

        paid = int(tx.get("value") or "0x0", 16)
        expected = to_base_units(Decimal(raffle.ticket_price) * quantity, self.decimals)
        if paid < expected:
            raise PaymentNotVerifiedError(
                "Transaction value is below the ticket price",
                {"paid": str(paid), "expected": str(expected)},
            )

        logging.info(format_log_message("Оплата подтверждена", {"raffle": raffle.id, "tx": tx_hash, "value": paid}))


def get_payment_verifier() -> PaymentVerifier:
    """Создает проверку оплаты согласно PAYMENT_VERIFICATION"""
    if settings.PAYMENT_VERIFICATION == "evm_rpc":
        return EvmRpcPaymentVerifier(
            settings.CHAIN_RPC_URL,
            decimals=settings.NATIVE_TOKEN_DECIMALS,
            timeout_seconds=settings.RPC_TIMEOUT,
        )
    return NoopPaymentVerifier()
