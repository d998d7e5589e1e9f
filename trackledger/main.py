"""
trackledger - леджер сгенерированных треков и артистов с разблокировкой за on-chain платёж (Python + FastAPI).

Что здесь есть:

Ledger: треки, профили артистов, назначения трек → артист (в рамках кошелька), лайки/прослушивания
и реестр погашенных платёжных подписей. Весь стейт - один снимок (JSON) в файле или в Redis.
Разблокировка: клиент платит токеном (по умолчанию USDC) на ATA казначейства и присылает подпись транзакции;
мы проверяем её через RPC и навсегда привязываем подпись к одному треку (anti-replay).
Тренды: только разблокированные треки, по числу прослушиваний.

Install & run:
  pip install -e ".[test]"
  # file store (по умолчанию в текущей директории)
  TRACKLEDGER_DATA_DIR=./data TREASURY_WALLET=<base58> uvicorn trackledger.main:app --reload
  # remote store
  TRACKLEDGER_REDIS_URL=redis://localhost:6379/0 uvicorn trackledger.main:app
Test:
  pytest

API:
  GET    /health | /config | /trending
  POST   /tracks {"audio_url"|"audio_path"|"blob_url": "...", "name": "...", "lyrics": "..."}
  GET    /tracks/validate?ids=a,b
  GET    /tracks/{id} | PATCH /tracks/{id} {"lyrics": "..."}
  POST   /tracks/{id}/listen | GET /tracks/{id}/plays
  POST   /payments/verify {"signature": "<base58>"}
  POST   /tracks/{id}/unlock {"signature": "<base58>"}
  GET    /tracks/{id}/download?signature=<base58>
  GET    /artists?wallet=W | POST /artists {"wallet","name","image_url"}
  PATCH  /artists/{id}?wallet=W | DELETE /artists/{id}?wallet=W
  GET    /artists/by-slug/{slug} | GET /artists/{id}/tracks | GET|POST /artists/{id}/like
  POST   /assignments {"wallet","track_id","artist_id"|null}

Notes:
- Кошелёк - просто строка: подпись владельца проверяется снаружи, здесь только равенство строк.
- Подпись, погашенная для трека A, никогда не откроет трек B (403). Повтор для A - ок.
- Ошибки хранилища -> 503, ошибки RPC -> 502: запрос можно повторить целиком.
"""

from __future__ import annotations
from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import ORJSONResponse
from typing import Any, Dict, Iterator, Optional
import logging

import anyio.to_thread
import httpx

from .config import Settings, configure_logging
from .errors import PersistenceError, RpcError
from .ledger import Ledger
from .models import AudioLocation
from .payments import PaymentVerifier
from .storage import PersistenceBackend, backend_from_settings
from .trending import compute_trending
from .unlock import UnlockProtocol, UnlockStatus

logger = logging.getLogger(__name__)

# ключ тела запроса -> вид AudioLocation
AUDIO_FIELDS = (("audio_url", "url"), ("audio_path", "path"), ("blob_url", "blob"))

UNLOCK_HTTP_STATUS = {
    UnlockStatus.REJECTED: 400,
    UnlockStatus.CONFLICT: 403,
    UnlockStatus.NOT_FOUND: 404,
}


def _text(req: Dict[str, Any], key: str) -> str:
    value = req.get(key)
    return value.strip() if isinstance(value, str) else ""


def _optional_text(req: Dict[str, Any], key: str) -> Optional[str]:
    return _text(req, key) or None


def build_app(settings: Optional[Settings] = None, *,
              backend: Optional[PersistenceBackend] = None,
              verifier: Optional[PaymentVerifier] = None) -> FastAPI:
    state: Dict[str, Any] = {}

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = settings or Settings.from_env()
        configure_logging(cfg.log_level)
        state["settings"] = cfg
        state["ledger"] = Ledger(backend or backend_from_settings(cfg))

        http: Optional[httpx.AsyncClient] = None
        if verifier is None:
            http = httpx.AsyncClient(timeout=10.0)
            state["verifier"] = PaymentVerifier.from_settings(cfg, client=http)
        else:
            state["verifier"] = verifier
        state["unlock"] = UnlockProtocol(state["ledger"], state["verifier"])

        yield
        if http is not None:
            await http.aclose()

    app = FastAPI(
        title="trackledger",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    @app.exception_handler(PersistenceError)
    async def on_persistence_error(request: Request, exc: PersistenceError):
        return ORJSONResponse({"ok": False, "detail": f"store unavailable: {exc}"}, status_code=503)

    @app.exception_handler(RpcError)
    async def on_rpc_error(request: Request, exc: RpcError):
        logger.error("rpc failure: %s", exc)
        return ORJSONResponse({"ok": False, "detail": "payment verification unavailable"}, status_code=502)

    def scoped_ledger() -> Iterator[Ledger]:
        with state["ledger"].request_scope() as ledger:
            yield ledger

    def _track_or_404(ledger: Ledger, track_id: str):
        track = ledger.get_track(track_id)
        if track is None:
            raise HTTPException(status_code=404, detail="track not found")
        return track

    def _artist_or_404(ledger: Ledger, artist_id: str):
        artist = ledger.get_artist(artist_id)
        if artist is None:
            raise HTTPException(status_code=404, detail="artist not found")
        return artist

    def _owned_artist_or_404(ledger: Ledger, wallet: str, artist_id: str):
        wallet = wallet.strip()
        if not wallet:
            raise HTTPException(status_code=400, detail="missing wallet")
        for artist in ledger.get_artists(wallet):
            if artist.id == artist_id:
                return wallet, artist
        raise HTTPException(status_code=404, detail="artist not found")

    def _track_list(ledger: Ledger, wallet: str, artist_id: str) -> list:
        out = []
        for tid in ledger.get_tracks_by_artist(wallet, artist_id):
            track = ledger.get_track(tid)
            if track is not None:
                out.append({"id": tid, "name": track.name})
        return out

    @app.get("/health", response_model=dict)
    async def health() -> dict:
        return {"ok": True}

    @app.get("/config", response_model=dict)
    async def get_config() -> dict:
        return state["settings"].public()

    # ---------- треки ----------
    @app.post("/tracks", response_model=dict)
    def post_track(req: Dict[str, Any], ledger: Ledger = Depends(scoped_ledger)) -> dict:
        """Зарегистрировать результат генерации. Лимит треков проверяется здесь, не в Ledger."""
        max_tracks = state["settings"].max_tracks
        if ledger.track_count() >= max_tracks:
            raise HTTPException(status_code=403, detail=f"storage limit reached (max {max_tracks} tracks)")

        locations = [AudioLocation(kind, _text(req, key)) for key, kind in AUDIO_FIELDS if _text(req, key)]
        if len(locations) != 1:
            raise HTTPException(status_code=400, detail="exactly one of audio_url, audio_path, blob_url required")

        track_id = ledger.register_track(
            locations[0],
            _text(req, "name") or "Untitled",
            lyrics=_optional_text(req, "lyrics"),
        )
        return {"ok": True, "track_id": track_id}

    @app.get("/tracks/validate", response_model=dict)
    def validate_tracks(ids: str = "", ledger: Ledger = Depends(scoped_ledger)) -> dict:
        """Какие из id ещё можно проиграть (локальный файл должен существовать)."""
        audio_dir = state["settings"].audio_dir
        valid = []
        for tid in (s.strip() for s in ids.split(",")):
            track = ledger.get_track(tid) if tid else None
            if track is None:
                continue
            if track.audio.kind != "path" or (audio_dir / track.audio.value).is_file():
                valid.append(tid)
        return {"ok": True, "valid_ids": valid}

    @app.get("/tracks/{track_id}", response_model=dict)
    def get_track(track_id: str, ledger: Ledger = Depends(scoped_ledger)) -> dict:
        track = _track_or_404(ledger, track_id)
        # аудио не отдаём: только после оплаты через /download
        return {
            "ok": True,
            "id": track_id,
            "name": track.name,
            "lyrics": track.lyrics,
            "plays": ledger.get_track_plays(track_id),
            "unlocked": ledger.is_track_unlocked(track_id),
        }

    @app.patch("/tracks/{track_id}", response_model=dict)
    def patch_track(track_id: str, req: Dict[str, Any], ledger: Ledger = Depends(scoped_ledger)) -> dict:
        lyrics = req.get("lyrics")
        if not ledger.set_lyrics(track_id, lyrics if isinstance(lyrics, str) else ""):
            raise HTTPException(status_code=404, detail="track not found")
        return {"ok": True, "lyrics": ledger.get_track(track_id).lyrics}

    @app.post("/tracks/{track_id}/listen", response_model=dict)
    def post_listen(track_id: str, ledger: Ledger = Depends(scoped_ledger)) -> dict:
        _track_or_404(ledger, track_id)
        return {"ok": True, "plays": ledger.increment_play(track_id)}

    @app.get("/tracks/{track_id}/plays", response_model=dict)
    def get_plays(track_id: str, ledger: Ledger = Depends(scoped_ledger)) -> dict:
        _track_or_404(ledger, track_id)
        return {"ok": True, "plays": ledger.get_track_plays(track_id)}

    # ---------- оплата и разблокировка ----------
    @app.post("/payments/verify", response_model=dict)
    async def post_verify(req: Dict[str, Any]) -> dict:
        """Только проверка платежа, подпись не погашается."""
        signature = _text(req, "signature")
        if not signature:
            raise HTTPException(status_code=400, detail="missing or invalid signature")
        verification = await state["verifier"].verify(signature)
        if not verification.valid:
            raise HTTPException(status_code=400, detail=verification.reason or "invalid payment")
        return {"ok": True, "track_id": req.get("track_id")}

    @app.post("/tracks/{track_id}/unlock", response_model=dict)
    async def post_unlock(track_id: str, req: Dict[str, Any], ledger: Ledger = Depends(scoped_ledger)) -> dict:
        signature = _text(req, "signature")
        if not signature:
            raise HTTPException(status_code=400, detail="missing signature")
        result = await state["unlock"].redeem(signature, track_id)
        if not result.granted:
            raise HTTPException(status_code=UNLOCK_HTTP_STATUS[result.status], detail=result.reason)
        return {"ok": True, "track_id": track_id, "status": result.status.value}

    @app.get("/tracks/{track_id}/download", response_model=dict)
    async def get_download(track_id: str, signature: str = "", ledger: Ledger = Depends(scoped_ledger)) -> dict:
        """Доступ доказывается подписью: уже погашенная для этого трека - сразу, иначе полный протокол."""
        signature = signature.strip()
        if not signature:
            raise HTTPException(status_code=400, detail="missing signature")
        track = await anyio.to_thread.run_sync(_track_or_404, ledger, track_id)
        unlock: UnlockProtocol = state["unlock"]
        if not await anyio.to_thread.run_sync(unlock.has_access, signature, track_id):
            result = await unlock.redeem(signature, track_id)
            if not result.granted:
                raise HTTPException(status_code=UNLOCK_HTTP_STATUS[result.status], detail=result.reason)
        return {
            "ok": True,
            "track_id": track_id,
            "filename": "_".join(track.name.split()) + ".mp3",
            "audio": track.audio.to_dict(),
        }

    # ---------- артисты ----------
    @app.get("/artists", response_model=dict)
    def get_artists(wallet: str = "", ledger: Ledger = Depends(scoped_ledger)) -> dict:
        wallet = wallet.strip()
        if not wallet:
            raise HTTPException(status_code=400, detail="missing wallet")
        return {"ok": True, "artists": [a.to_dict() for a in ledger.get_artists(wallet)]}

    @app.post("/artists", response_model=dict)
    def post_artist(req: Dict[str, Any], ledger: Ledger = Depends(scoped_ledger)) -> dict:
        wallet, name = _text(req, "wallet"), _text(req, "name")
        if not wallet or not name:
            raise HTTPException(status_code=400, detail="missing wallet or name")
        artist = ledger.create_artist(wallet, name, _optional_text(req, "image_url"))
        return {"ok": True, "artist": artist.to_dict()}

    @app.patch("/artists/{artist_id}", response_model=dict)
    def patch_artist(artist_id: str, req: Dict[str, Any], wallet: str = "",
                     ledger: Ledger = Depends(scoped_ledger)) -> dict:
        wallet, _artist = _owned_artist_or_404(ledger, wallet, artist_id)
        updates: Dict[str, Any] = {}
        if "name" in req:
            updates["name"] = str(req["name"] or "").strip()
            if not updates["name"]:
                raise HTTPException(status_code=400, detail="name must not be empty")
        for key in ("image_url", "slug", "bio", "youtube_url", "website_url"):
            if key in req:
                value = req[key]
                updates[key] = (str(value).strip() or None) if value else None

        slug = updates.get("slug")
        if slug and any(a.id != artist_id for a in ledger.artists_with_slug(slug)):
            raise HTTPException(status_code=409, detail="slug already taken")

        artist = ledger.update_artist(wallet, artist_id, **updates)
        if artist is None:
            raise HTTPException(status_code=404, detail="artist not found")
        return {"ok": True, "artist": artist.to_dict()}

    @app.delete("/artists/{artist_id}", response_model=dict)
    def delete_artist(artist_id: str, wallet: str = "", ledger: Ledger = Depends(scoped_ledger)) -> dict:
        wallet, _artist = _owned_artist_or_404(ledger, wallet, artist_id)
        ledger.delete_artist(wallet, artist_id)
        return {"ok": True}

    @app.get("/artists/by-slug/{slug}", response_model=dict)
    def get_artist_profile(slug: str, ledger: Ledger = Depends(scoped_ledger)) -> dict:
        artist = ledger.get_artist_by_slug(slug)
        if artist is None:
            raise HTTPException(status_code=404, detail="artist not found")
        return {
            "ok": True,
            "artist": artist.to_dict(),
            "tracks": _track_list(ledger, artist.wallet, artist.id),
            "likes": ledger.get_artist_likes(artist.id),
        }

    @app.get("/artists/{artist_id}/tracks", response_model=dict)
    def get_artist_tracks(artist_id: str, ledger: Ledger = Depends(scoped_ledger)) -> dict:
        artist = _artist_or_404(ledger, artist_id)
        return {"ok": True, "artist": artist.to_dict(), "tracks": _track_list(ledger, artist.wallet, artist_id)}

    @app.get("/artists/{artist_id}/like", response_model=dict)
    def get_likes(artist_id: str, ledger: Ledger = Depends(scoped_ledger)) -> dict:
        _artist_or_404(ledger, artist_id)
        return {"ok": True, "likes": ledger.get_artist_likes(artist_id)}

    @app.post("/artists/{artist_id}/like", response_model=dict)
    def post_like(artist_id: str, ledger: Ledger = Depends(scoped_ledger)) -> dict:
        _artist_or_404(ledger, artist_id)
        return {"ok": True, "likes": ledger.like_artist(artist_id)}

    # ---------- назначения ----------
    @app.post("/assignments", response_model=dict)
    def post_assignment(req: Dict[str, Any], ledger: Ledger = Depends(scoped_ledger)) -> dict:
        wallet, track_id = _text(req, "wallet"), _text(req, "track_id")
        if not wallet or not track_id:
            raise HTTPException(status_code=400, detail="missing wallet or track_id")
        artist_id = _optional_text(req, "artist_id")
        # артист должен принадлежать тому же кошельку
        if artist_id is not None and not any(a.id == artist_id for a in ledger.get_artists(wallet)):
            raise HTTPException(status_code=400, detail="artist not found")
        ledger.set_assignment(wallet, track_id, artist_id)
        return {"ok": True}

    @app.get("/trending", response_model=dict)
    def get_trending(ledger: Ledger = Depends(scoped_ledger)) -> dict:
        return {"ok": True, "trending": [e.to_dict() for e in compute_trending(ledger.snapshot())]}

    return app

# для uvicorn trackledger.main:app
app = build_app()
