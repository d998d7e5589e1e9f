"""Погашение платёжной подписи за конкретный трек.

  unverified --(verifier: invalid)------------------> rejected
  unverified --(подпись уже у другого трека)----------> conflict
  unverified --(verifier: valid, подпись свободна
                или уже у этого же трека)-------------> redeemed

Доступ к скачиванию доказывается подписью, а не сессией: has_access.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import anyio.to_thread

from .ledger import Ledger
from .payments import PaymentVerifier

logger = logging.getLogger(__name__)


class UnlockStatus(str, Enum):
    REDEEMED = "redeemed"
    REJECTED = "rejected"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class UnlockResult:
    status: UnlockStatus
    track_id: str
    reason: Optional[str] = None

    @property
    def granted(self) -> bool:
        return self.status is UnlockStatus.REDEEMED


ALREADY_USED = "payment already used for another track"


class UnlockProtocol:
    def __init__(self, ledger: Ledger, verifier: PaymentVerifier) -> None:
        self.ledger = ledger
        self.verifier = verifier

    def has_access(self, signature: str, track_id: str) -> bool:
        return self.ledger.redeemed_track(signature) == track_id

    async def redeem(self, signature: str, track_id: str) -> UnlockResult:
        # Ledger ходит в хранилище синхронно: держим его вне event loop
        run = anyio.to_thread.run_sync
        if await run(self.ledger.get_track, track_id) is None:
            return UnlockResult(UnlockStatus.NOT_FOUND, track_id, "track not found")

        # дешёвая проверка до похода в RPC
        if await run(self.ledger.is_signature_redeemed_for_other_track, signature, track_id):
            return UnlockResult(UnlockStatus.CONFLICT, track_id, ALREADY_USED)

        verification = await self.verifier.verify(signature)
        if not verification.valid:
            return UnlockResult(UnlockStatus.REJECTED, track_id, verification.reason or "invalid payment")

        # пока ждали RPC, подпись мог занять параллельный запрос
        if not await run(self.ledger.mark_redeemed, signature, track_id):
            return UnlockResult(UnlockStatus.CONFLICT, track_id, ALREADY_USED)

        logger.info("signature %s redeemed for track %s", signature, track_id)
        return UnlockResult(UnlockStatus.REDEEMED, track_id)
