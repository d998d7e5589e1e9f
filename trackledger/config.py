from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

USDC_MINT_MAINNET = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"
DEFAULT_STORE_KEY = "trackledger:store"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _env(name: str) -> Optional[str]:
    value = os.getenv(name, "").strip()
    return value or None


@dataclass
class Settings:
    data_dir: Path = Path(".")
    redis_url: Optional[str] = None
    redis_token: Optional[str] = None
    redis_key: str = DEFAULT_STORE_KEY

    rpc_url: str = DEFAULT_RPC_URL
    commitment: Optional[str] = None
    treasury_wallet: Optional[str] = None
    token_mint: str = USDC_MINT_MAINNET
    min_amount: int = 500_000            # 0.50 USDC в минимальных единицах (6 знаков)
    rpc_max_attempts: int = 4
    rpc_retry_delay: float = 2.0

    max_tracks: int = 50
    log_level: str = "INFO"

    @property
    def audio_dir(self) -> Path:
        return self.data_dir / ".trackledger-audio"

    @property
    def backend_name(self) -> str:
        # remote важнее файла, если заданы оба
        return "redis" if self.redis_url else "file"

    @classmethod
    def from_env(cls) -> "Settings":
        data_dir = _env("TRACKLEDGER_DATA_DIR")
        return cls(
            data_dir=Path(data_dir).resolve() if data_dir else Path.cwd(),
            redis_url=_env("TRACKLEDGER_REDIS_URL"),
            redis_token=_env("TRACKLEDGER_REDIS_TOKEN"),
            redis_key=_env("TRACKLEDGER_REDIS_KEY") or DEFAULT_STORE_KEY,
            rpc_url=_env("SOLANA_RPC_URL") or DEFAULT_RPC_URL,
            commitment=_env("SOLANA_COMMITMENT"),
            treasury_wallet=_env("TREASURY_WALLET"),
            token_mint=_env("PAYMENT_TOKEN_MINT") or USDC_MINT_MAINNET,
            min_amount=max(1, int(os.getenv("PAYMENT_MIN_AMOUNT", "500000"))),
            rpc_max_attempts=max(1, int(os.getenv("RPC_MAX_ATTEMPTS", "4"))),
            rpc_retry_delay=max(0.0, float(os.getenv("RPC_RETRY_DELAY", "2.0"))),
            max_tracks=max(1, int(os.getenv("MAX_TRACKS", "50"))),
            log_level=(_env("LOG_LEVEL") or "INFO").upper(),
        )

    def public(self) -> dict:
        """Настройки без секретов (для /config)."""
        return {
            "BACKEND": self.backend_name,
            "RPC_URL": self.rpc_url,
            "COMMITMENT": self.commitment,
            "TREASURY_WALLET": self.treasury_wallet,
            "TOKEN_MINT": self.token_mint,
            "MIN_AMOUNT": self.min_amount,
            "RPC_MAX_ATTEMPTS": self.rpc_max_attempts,
            "RPC_RETRY_DELAY": self.rpc_retry_delay,
            "MAX_TRACKS": self.max_tracks,
        }


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger("trackledger")
    root.setLevel(level)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
