"""Исключения инфраструктурного уровня.

Ожидаемые исходы (трек не найден, платёж не прошёл, подпись уже занята)
возвращаются как значения; здесь только то, что должно «ронять» запрос.
"""
from __future__ import annotations


class PersistenceError(Exception):
    """Снимок не удалось прочитать или записать: мутация не подтверждена."""


class StaleSnapshotError(PersistenceError):
    """Попытка записать пустой набор треков поверх непустого файла.

    Наружу не выходит: Ledger подхватывает снимок с диска и повторяет мутацию.
    """

    def __init__(self, on_disk) -> None:
        super().__init__("refusing to overwrite non-empty store with empty tracks")
        self.on_disk = on_disk


class RpcError(Exception):
    """Solana RPC ответил ошибкой или недоступен."""
