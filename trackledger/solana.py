"""Минимум примитивов Solana для проверки платежа без RPC.

- base58 (алфавит Bitcoin) - так кодируются pubkey и подписи;
- проверка «лежит ли 32-байтная точка на кривой Ed25519» (декомпрессия);
- find_program_address (PDA) и адрес associated token account.

ATA кошелька-казначейства = PDA(seeds=[owner, token_program, mint],
program=ASSOCIATED_TOKEN_PROGRAM_ID). Это чистая функция: сеть не нужна.
"""
from __future__ import annotations

import hashlib
from typing import Iterable, Tuple

B58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_B58_INDEX = {c: i for i, c in enumerate(B58_ALPHABET)}

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
ASSOCIATED_TOKEN_PROGRAM_ID = "ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL"

PDA_MARKER = b"ProgramDerivedAddress"
MAX_SEED_LEN = 32

# --- параметры кривой edwards25519 ---
_P = 2 ** 255 - 19
_D = (-121665 * pow(121666, _P - 2, _P)) % _P


def b58encode(data: bytes) -> str:
    n = int.from_bytes(data, "big")
    out = []
    while n:
        n, rem = divmod(n, 58)
        out.append(B58_ALPHABET[rem])
    # каждый ведущий нулевой байт -> '1'
    pad = len(data) - len(data.lstrip(b"\0"))
    return "1" * pad + "".join(reversed(out))


def b58decode(s: str) -> bytes:
    n = 0
    for ch in s:
        try:
            n = n * 58 + _B58_INDEX[ch]
        except KeyError:
            raise ValueError(f"invalid base58 character {ch!r}") from None
    body = n.to_bytes((n.bit_length() + 7) // 8, "big") if n else b""
    pad = len(s) - len(s.lstrip("1"))
    return b"\0" * pad + body


def pubkey_bytes(key: str) -> bytes:
    raw = b58decode(key)
    if len(raw) != 32:
        raise ValueError(f"public key must be 32 bytes, got {len(raw)}")
    return raw


def is_on_curve(point: bytes) -> bool:
    """Декомпрессия сжатой точки Ed25519: есть ли x для данного y."""
    if len(point) != 32:
        return False
    y = int.from_bytes(point, "little") & ((1 << 255) - 1)
    y %= _P
    yy = y * y % _P
    u = (yy - 1) % _P
    v = (_D * yy + 1) % _P
    xx = u * pow(v, _P - 2, _P) % _P
    # критерий Эйлера: xx - квадрат (или ноль)
    return xx == 0 or pow(xx, (_P - 1) // 2, _P) == 1


def create_program_address(seeds: Iterable[bytes], program_id: str) -> bytes:
    h = hashlib.sha256()
    for seed in seeds:
        if len(seed) > MAX_SEED_LEN:
            raise ValueError("seed too long")
        h.update(seed)
    h.update(pubkey_bytes(program_id))
    h.update(PDA_MARKER)
    digest = h.digest()
    if is_on_curve(digest):
        raise ValueError("address is on curve")
    return digest


def find_program_address(seeds: Iterable[bytes], program_id: str) -> Tuple[str, int]:
    seeds = list(seeds)
    if any(len(seed) > MAX_SEED_LEN for seed in seeds):
        raise ValueError("seed too long")
    for bump in range(255, -1, -1):
        try:
            addr = create_program_address(seeds + [bytes([bump])], program_id)
        except ValueError:
            continue
        return b58encode(addr), bump
    raise ValueError("unable to find a viable program address bump")


def associated_token_address(owner: str, mint: str, token_program: str = TOKEN_PROGRAM_ID) -> str:
    addr, _bump = find_program_address(
        [pubkey_bytes(owner), pubkey_bytes(token_program), pubkey_bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    return addr
