"""Хранилище снимка: локальный JSON-файл или один ключ в Redis.

В одном деплое активна ровно одна стратегия (см. backend_from_settings).
"""
from __future__ import annotations

import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import orjson
import redis

from .config import DEFAULT_STORE_KEY, Settings
from .errors import PersistenceError, StaleSnapshotError
from .models import Snapshot

logger = logging.getLogger(__name__)

STORE_FILE_NAME = ".trackledger-store.json"


def _decode(raw, source: str) -> Snapshot:
    try:
        return Snapshot.from_dict(orjson.loads(raw))
    except (orjson.JSONDecodeError, ValueError, TypeError, KeyError) as e:
        raise PersistenceError(f"corrupt snapshot in {source}: {e}") from e


class PersistenceBackend(ABC):
    # перечитать снимок перед каждой мутацией (другие процессы пишут в то же хранилище)
    reload_before_write = False
    # перечитывать снимок на входе в каждый запрос (stateless-инстансы)
    reload_per_request = False

    @abstractmethod
    def load(self) -> Optional[Snapshot]:
        """None - ничего ещё не сохранено."""

    @abstractmethod
    def save(self, snapshot: Snapshot) -> None:
        ...


class FileBackend(PersistenceBackend):
    reload_before_write = True

    def __init__(self, data_dir) -> None:
        self.path = Path(data_dir) / STORE_FILE_NAME

    def load(self) -> Optional[Snapshot]:
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistenceError(f"cannot read {self.path}: {e}") from e
        return _decode(raw, str(self.path))

    def save(self, snapshot: Snapshot) -> None:
        if not snapshot.tracks:
            self._guard_empty_overwrite()
        payload = orjson.dumps(snapshot.to_dict())
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".store-", suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as f:
                    f.write(payload)
                os.replace(tmp, self.path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise PersistenceError(f"cannot write {self.path}: {e}") from e

    def _guard_empty_overwrite(self) -> None:
        """Пустой кэш не затирает непустой файл (свежий процесс / hot reload)."""
        try:
            on_disk = self.load()
        except PersistenceError as e:
            # битый файл защищать нечего - перезапишем
            logger.warning("empty-save guard: existing store unreadable, overwriting: %s", e)
            return
        if on_disk is not None and on_disk.tracks:
            logger.warning("empty-save guard: %s holds %d tracks, reloading instead of overwrite",
                           self.path, len(on_disk.tracks))
            raise StaleSnapshotError(on_disk)


class RedisBackend(PersistenceBackend):
    # другие инстансы пишут в тот же ключ, пока мы ждём RPC
    reload_before_write = True
    reload_per_request = True

    def __init__(self, url: Optional[str] = None, token: Optional[str] = None,
                 key: str = DEFAULT_STORE_KEY, client=None) -> None:
        if client is None:
            if not url:
                raise ValueError("redis url is required when no client is given")
            client = redis.Redis.from_url(url, password=token, socket_connect_timeout=5)
        self.client = client
        self.key = key

    def load(self) -> Optional[Snapshot]:
        try:
            raw = self.client.get(self.key)
        except redis.RedisError as e:
            raise PersistenceError(f"redis load failed: {e}") from e
        if raw is None:
            return None
        return _decode(raw, f"redis key {self.key!r}")

    def save(self, snapshot: Snapshot) -> None:
        try:
            self.client.set(self.key, orjson.dumps(snapshot.to_dict()))
        except redis.RedisError as e:
            raise PersistenceError(f"redis save failed: {e}") from e


def backend_from_settings(settings: Settings) -> PersistenceBackend:
    if settings.redis_url:
        logger.info("store backend: redis key %r", settings.redis_key)
        return RedisBackend(settings.redis_url, settings.redis_token, settings.redis_key)
    logger.info("store backend: file in %s", settings.data_dir)
    return FileBackend(settings.data_dir)
