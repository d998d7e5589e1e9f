"""Ledger: единственный источник правды о треках, артистах, назначениях,
счётчиках и погашенных платёжных подписях.

Кэш в памяти + явный backend. Каждая мутация сохраняется до возврата;
если сохранить не удалось, кэш помечается устаревшим (следующий вызов
перечитает backend) и PersistenceError уходит вызывающему.

Инвариант подписи: signature -> track_id пишется один раз и навсегда.
Повторное погашение той же парой идемпотентно, попытка на другой трек
отклоняется (mark_redeemed возвращает False).
"""
from __future__ import annotations

import copy
import logging
import threading
import uuid
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional, Set, TypeVar

from .errors import PersistenceError, StaleSnapshotError
from .models import ARTIST_EDITABLE, Artist, AudioLocation, Snapshot, Track, slugify
from .storage import PersistenceBackend

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Ledger:
    def __init__(self, backend: PersistenceBackend, id_factory: Optional[Callable[[], str]] = None) -> None:
        self._backend = backend
        self._new_id = id_factory or (lambda: str(uuid.uuid4()))
        self._state = Snapshot()
        self._stale = True   # ленивая загрузка при первом обращении
        self._lock = threading.RLock()

    @property
    def backend(self) -> PersistenceBackend:
        return self._backend

    # ---------- синхронизация с backend ----------
    def refresh(self) -> None:
        with self._lock:
            self._load()

    @contextmanager
    def request_scope(self) -> Iterator["Ledger"]:
        """Граница запроса: для stateless-backend перечитываем снимок на входе.

        Выходить с сохранением не нужно - каждая мутация уже записана.
        """
        if self._backend.reload_per_request:
            self.refresh()
        yield self

    def _load(self) -> None:
        snap = self._backend.load()
        if snap is not None:
            self._state = snap
        self._stale = False

    def _read(self) -> Snapshot:
        if self._stale:
            self._load()
        return self._state

    def _mutate(self, change: Callable[[Snapshot], T]) -> T:
        with self._lock:
            if self._stale or self._backend.reload_before_write:
                self._load()
            result = change(self._state)
            try:
                try:
                    self._backend.save(self._state)
                except StaleSnapshotError as e:
                    # на диске есть треки, а у нас пусто: берём диск и применяем изменение поверх
                    self._state = e.on_disk
                    result = change(self._state)
                    self._backend.save(self._state)
            except PersistenceError:
                self._stale = True
                logger.exception("persist failed; cache marked stale")
                raise
            return result

    def snapshot(self) -> Snapshot:
        with self._lock:
            return self._read().copy()

    # ---------- треки ----------
    def track_count(self) -> int:
        with self._lock:
            return len(self._read().tracks)

    def register_track(self, location: AudioLocation, name: str, lyrics: Optional[str] = None) -> str:
        track_id = self._new_id()

        def change(s: Snapshot) -> None:
            s.tracks[track_id] = Track(name=name, audio=location, lyrics=lyrics)

        with self._lock:
            self._mutate(change)
            # read-back: конкурентная запись пустого кэша могла затереть трек
            persisted = self._backend.load()
            if persisted is None or track_id not in persisted.tracks:
                self._stale = True
                raise PersistenceError(f"track {track_id} not found in store after save")
        logger.info("registered track %s (%s)", track_id, location.kind)
        return track_id

    def get_track(self, track_id: str) -> Optional[Track]:
        with self._lock:
            track = self._read().tracks.get(track_id)
            return copy.copy(track) if track is not None else None

    def set_lyrics(self, track_id: str, text: str) -> bool:
        def change(s: Snapshot) -> bool:
            track = s.tracks.get(track_id)
            if track is None:
                return False
            track.lyrics = text
            return True
        return self._mutate(change)

    # ---------- артисты ----------
    def get_artists(self, wallet: str) -> List[Artist]:
        with self._lock:
            return [copy.copy(a) for a in self._read().artists.get(wallet, [])]

    def get_artist(self, artist_id: str) -> Optional[Artist]:
        with self._lock:
            for artist in self._read().iter_artists():
                if artist.id == artist_id:
                    return copy.copy(artist)
        return None

    def create_artist(self, wallet: str, name: str, image_url: Optional[str] = None) -> Artist:
        artist_id = self._new_id()

        def change(s: Snapshot) -> Artist:
            artist = Artist(id=artist_id, wallet=wallet, name=name, image_url=image_url)
            s.artists.setdefault(wallet, []).append(artist)
            return artist
        return copy.copy(self._mutate(change))

    def update_artist(self, wallet: str, artist_id: str, **updates) -> Optional[Artist]:
        """Меняет только переданные поля; slug нормализуется."""
        unknown = set(updates) - set(ARTIST_EDITABLE)
        if unknown:
            raise TypeError(f"unknown artist fields: {sorted(unknown)}")
        if "slug" in updates and updates["slug"] is not None:
            updates["slug"] = slugify(updates["slug"]) or None

        def change(s: Snapshot) -> Optional[Artist]:
            for artist in s.artists.get(wallet, []):
                if artist.id == artist_id:
                    for attr, value in updates.items():
                        setattr(artist, attr, value)
                    return copy.copy(artist)
            return None
        return self._mutate(change)

    def delete_artist(self, wallet: str, artist_id: str) -> bool:
        def change(s: Snapshot) -> bool:
            artists = s.artists.get(wallet, [])
            rest = [a for a in artists if a.id != artist_id]
            if len(rest) == len(artists):
                return False
            if rest:
                s.artists[wallet] = rest
            else:
                s.artists.pop(wallet, None)
            assigned = s.assignments.get(wallet)
            if assigned is not None:
                for tid in [t for t, aid in assigned.items() if aid == artist_id]:
                    del assigned[tid]
                if not assigned:
                    del s.assignments[wallet]
            return True
        return self._mutate(change)

    def artists_with_slug(self, slug: str) -> List[Artist]:
        norm = slugify(slug)
        if not norm:
            return []
        with self._lock:
            return [copy.copy(a) for a in self._read().iter_artists() if a.slug == norm]

    def get_artist_by_slug(self, slug: str) -> Optional[Artist]:
        # slug не уникален глобально: первый найденный выигрывает
        found = self.artists_with_slug(slug)
        return found[0] if found else None

    # ---------- назначения ----------
    def set_assignment(self, wallet: str, track_id: str, artist_id: Optional[str]) -> None:
        def change(s: Snapshot) -> None:
            if artist_id:
                s.assignments.setdefault(wallet, {})[track_id] = artist_id
            else:
                assigned = s.assignments.get(wallet)
                if assigned is not None:
                    assigned.pop(track_id, None)
        self._mutate(change)

    def get_assignment(self, wallet: str, track_id: str) -> Optional[str]:
        with self._lock:
            return self._read().assignments.get(wallet, {}).get(track_id)

    def get_tracks_by_artist(self, wallet: str, artist_id: str) -> List[str]:
        with self._lock:
            assigned = self._read().assignments.get(wallet, {})
            return [tid for tid, aid in assigned.items() if aid == artist_id]

    # ---------- счётчики ----------
    def like_artist(self, artist_id: str) -> int:
        def change(s: Snapshot) -> int:
            s.artist_likes[artist_id] = s.artist_likes.get(artist_id, 0) + 1
            return s.artist_likes[artist_id]
        return self._mutate(change)

    def get_artist_likes(self, artist_id: str) -> int:
        with self._lock:
            return self._read().artist_likes.get(artist_id, 0)

    def increment_play(self, track_id: str) -> int:
        def change(s: Snapshot) -> int:
            s.track_plays[track_id] = s.track_plays.get(track_id, 0) + 1
            return s.track_plays[track_id]
        return self._mutate(change)

    def get_track_plays(self, track_id: str) -> int:
        with self._lock:
            return self._read().track_plays.get(track_id, 0)

    # ---------- погашенные подписи ----------
    def redeemed_track(self, signature: str) -> Optional[str]:
        with self._lock:
            return self._read().used_signatures.get(signature)

    def is_signature_redeemed_for_other_track(self, signature: str, track_id: str) -> bool:
        used_for = self.redeemed_track(signature)
        return used_for is not None and used_for != track_id

    def mark_redeemed(self, signature: str, track_id: str) -> bool:
        """False - подпись уже погашена для другого трека, ничего не меняем."""
        def change(s: Snapshot) -> bool:
            used_for = s.used_signatures.get(signature)
            if used_for is not None and used_for != track_id:
                return False
            s.used_signatures[signature] = track_id
            return True
        ok = self._mutate(change)
        if not ok:
            logger.warning("signature %s already redeemed for another track, refused %s", signature, track_id)
        return ok

    def unlocked_track_ids(self) -> Set[str]:
        with self._lock:
            return set(self._read().used_signatures.values())

    def is_track_unlocked(self, track_id: str) -> bool:
        return track_id in self.unlocked_track_ids()
