# tests/test_solana.py
import hashlib

import pytest
from nacl.signing import SigningKey

from trackledger.config import USDC_MINT_MAINNET
from trackledger.solana import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    TOKEN_PROGRAM_ID,
    associated_token_address,
    b58decode,
    b58encode,
    create_program_address,
    find_program_address,
    is_on_curve,
    pubkey_bytes,
)


def test_base58_known_vectors():
    assert b58encode(b"hello world") == "StV1DL6CwTryKyV"
    assert b58decode("StV1DL6CwTryKyV") == b"hello world"
    # System Program = 32 нулевых байта
    assert b58decode("11111111111111111111111111111111") == bytes(32)
    assert b58encode(bytes(32)) == "1" * 32
    assert b58encode(b"") == "" and b58decode("") == b""


def test_base58_program_ids_are_32_bytes():
    for key in (TOKEN_PROGRAM_ID, ASSOCIATED_TOKEN_PROGRAM_ID, USDC_MINT_MAINNET):
        raw = pubkey_bytes(key)
        assert len(raw) == 32
        assert b58encode(raw) == key


def test_base58_rejects_bad_input():
    with pytest.raises(ValueError):
        b58decode("0OIl")                     # символов 0 O I l нет в алфавите
    with pytest.raises(ValueError):
        pubkey_bytes("StV1DL6CwTryKyV")       # 11 байт - не pubkey


def test_real_ed25519_keys_are_on_curve():
    for _ in range(16):
        assert is_on_curve(SigningKey.generate().verify_key.encode())
    assert not is_on_curve(b"\x01" * 31)


def test_find_program_address_returns_off_curve_hash():
    seeds = [b"trackledger", bytes(range(32))]
    addr, bump = find_program_address(seeds, TOKEN_PROGRAM_ID)
    raw = b58decode(addr)
    assert not is_on_curve(raw)
    assert raw == create_program_address(seeds + [bytes([bump])], TOKEN_PROGRAM_ID)
    expected = hashlib.sha256(b"".join(seeds) + bytes([bump]) + pubkey_bytes(TOKEN_PROGRAM_ID)
                              + b"ProgramDerivedAddress").digest()
    assert raw == expected
    # бамп - первый (сверху вниз) с точкой вне кривой
    for higher in range(bump + 1, 256):
        with pytest.raises(ValueError):
            create_program_address(seeds + [bytes([higher])], TOKEN_PROGRAM_ID)


def test_seed_too_long():
    with pytest.raises(ValueError):
        find_program_address([bytes(33)], TOKEN_PROGRAM_ID)


def test_associated_token_address_is_deterministic_per_owner_and_mint():
    owner = b58encode(SigningKey.generate().verify_key.encode())
    other = b58encode(SigningKey.generate().verify_key.encode())
    ata = associated_token_address(owner, USDC_MINT_MAINNET)
    assert ata == associated_token_address(owner, USDC_MINT_MAINNET)
    assert ata != associated_token_address(other, USDC_MINT_MAINNET)
    assert ata != associated_token_address(owner, TOKEN_PROGRAM_ID)
    assert len(pubkey_bytes(ata)) == 32
    assert not is_on_curve(pubkey_bytes(ata))


# векторы посчитаны отдельно (sha256 + unpackneg из tweetnacl), не этим модулем
KNOWN_WALLET = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"
KNOWN_WALLET_USDC_ATA = "FGETo8T8wMcN2wCjav8VK6eh3dLk63evNDPxzLSJra8B"


def test_find_program_address_known_vectors():
    assert find_program_address([b"trackledger"], TOKEN_PROGRAM_ID) == \
        ("EGL5BX7bVLDECr556ZrXQ4wd9GaWMoRNB8mhnQBsLwDy", 255)
    assert find_program_address([], ASSOCIATED_TOKEN_PROGRAM_ID) == \
        ("DzQr5rR32D2de4ugfqgNmKboRoBK5eid5K7WpRCxeRBY", 254)


def test_associated_token_address_known_vector():
    assert associated_token_address(KNOWN_WALLET, USDC_MINT_MAINNET) == KNOWN_WALLET_USDC_ATA
    addr, bump = find_program_address(
        [pubkey_bytes(KNOWN_WALLET), pubkey_bytes(TOKEN_PROGRAM_ID), pubkey_bytes(USDC_MINT_MAINNET)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    assert (addr, bump) == (KNOWN_WALLET_USDC_ATA, 254)
