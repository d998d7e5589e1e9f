"""Проверка платежа за разблокировку трека.

Алгоритм verify(signature):
  1) getTransaction (jsonParsed) через RPC; свежая транзакция может ещё не
     появиться у ноды - RetryPolicy делает до 4 попыток с паузой 2 с;
  2) meta.err != null -> "transaction failed on-chain";
  3) ATA казначейства выводится из (treasury, mint) локально;
  4) первая инструкция transfer/transferChecked на этот ATA с суммой
     >= min_amount засчитывает платёж;
  5) иначе "no valid transfer found".

На Ledger не влияет - погашение подписи делает UnlockProtocol.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import anyio
import httpx

from .config import Settings
from .errors import RpcError
from .solana import TOKEN_PROGRAM_ID, associated_token_address

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSFER_TYPES = ("transfer", "transferChecked")


@dataclass(frozen=True)
class Verification:
    valid: bool
    reason: Optional[str] = None


class RetryPolicy:
    """Ограниченное число попыток с фиксированной паузой между ними."""

    def __init__(self, max_attempts: int = 4, delay: float = 2.0,
                 sleep: Optional[Callable[[float], Awaitable[Any]]] = None) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.delay = delay
        self._sleep = sleep or anyio.sleep

    async def call(self, fetch: Callable[[], Awaitable[Optional[T]]]) -> Optional[T]:
        for attempt in range(1, self.max_attempts + 1):
            result = await fetch()
            if result is not None:
                return result
            if attempt < self.max_attempts:
                logger.debug("attempt %d/%d empty, retrying in %.1fs", attempt, self.max_attempts, self.delay)
                await self._sleep(self.delay)
        return None


class SolanaRpc:
    def __init__(self, url: str, client: Optional[httpx.AsyncClient] = None,
                 commitment: Optional[str] = None, timeout: float = 10.0) -> None:
        self.url = url
        self.commitment = commitment
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_parsed_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        opts: Dict[str, Any] = {"encoding": "jsonParsed", "maxSupportedTransactionVersion": 0}
        if self.commitment:
            opts["commitment"] = self.commitment
        body = {"jsonrpc": "2.0", "id": 1, "method": "getTransaction", "params": [signature, opts]}
        try:
            r = await self._client.post(self.url, json=body)
            r.raise_for_status()
            data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            raise RpcError(f"getTransaction failed: {e}") from e
        if data.get("error"):
            raise RpcError(f"getTransaction error: {data['error']}")
        return data.get("result")


def _transfer_amount(parsed: Dict[str, Any]) -> int:
    info = parsed.get("info") or {}
    if parsed.get("type") == "transferChecked":
        raw = (info.get("tokenAmount") or {}).get("amount")
    else:
        raw = info.get("amount")
    try:
        return int(raw) if raw is not None else 0
    except (TypeError, ValueError):
        return 0


class PaymentVerifier:
    def __init__(self, rpc: SolanaRpc, treasury_wallet: Optional[str], mint: str,
                 min_amount: int, retry: Optional[RetryPolicy] = None,
                 token_program: str = TOKEN_PROGRAM_ID) -> None:
        self.rpc = rpc
        self.min_amount = min_amount
        self.retry = retry or RetryPolicy()
        self.treasury_wallet = treasury_wallet
        # невалидный адрес казначейства - ошибка конфигурации, падаем сразу
        self.treasury_token_account = (
            associated_token_address(treasury_wallet, mint, token_program) if treasury_wallet else None
        )

    @classmethod
    def from_settings(cls, settings: Settings, client: Optional[httpx.AsyncClient] = None) -> "PaymentVerifier":
        rpc = SolanaRpc(settings.rpc_url, client=client, commitment=settings.commitment)
        retry = RetryPolicy(settings.rpc_max_attempts, settings.rpc_retry_delay)
        return cls(rpc, settings.treasury_wallet, settings.token_mint, settings.min_amount, retry)

    async def verify(self, signature: str) -> Verification:
        if not self.treasury_token_account:
            return Verification(False, "treasury wallet not configured")

        tx = await self.retry.call(lambda: self.rpc.get_parsed_transaction(signature))
        if tx is None:
            logger.info("payment %s: transaction not visible after %d attempts", signature, self.retry.max_attempts)
            return Verification(False, "transaction not found yet")
        if (tx.get("meta") or {}).get("err") is not None:
            return Verification(False, "transaction failed on-chain")

        message = (tx.get("transaction") or {}).get("message") or {}
        for ix in message.get("instructions") or []:
            parsed = ix.get("parsed")
            if not isinstance(parsed, dict) or parsed.get("type") not in TRANSFER_TYPES:
                continue
            info = parsed.get("info") or {}
            if info.get("destination") != self.treasury_token_account:
                continue
            if _transfer_amount(parsed) >= self.min_amount:
                return Verification(True)

        logger.info("payment %s: no qualifying transfer to %s", signature, self.treasury_token_account)
        return Verification(False, "no valid transfer found")
