"""Сущности леджера и формат снимка.

Снимок (Snapshot) - весь стейт одним документом:

    {
      "tracks":         {trackId: {"name", "audioUrl"?, "audioPath"?, "blobUrl"?, "lyrics"?}},
      "usedSignatures": {signature: trackId},
      "artists":        {wallet: [Artist, ...]},
      "assignments":    {wallet: {trackId: artistId}},
      "artistLikes":    {artistId: count},
      "trackPlays":     {trackId: count}
    }

Необязательные поля со значением None в документ не пишутся; пустая строка
остаётся пустой строкой.
"""
from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

_NON_SLUG = re.compile(r"[^a-z0-9]+")


def slugify(s: str) -> str:
    return _NON_SLUG.sub("-", s.lower()).strip("-")


# kind -> ключ в JSON
AUDIO_KINDS = {"url": "audioUrl", "path": "audioPath", "blob": "blobUrl"}


@dataclass(frozen=True)
class AudioLocation:
    kind: str   # "url" | "path" | "blob"
    value: str

    def __post_init__(self) -> None:
        if self.kind not in AUDIO_KINDS:
            raise ValueError(f"unknown audio location kind: {self.kind!r}")
        if not self.value:
            raise ValueError("audio location must not be empty")

    @classmethod
    def url(cls, value: str) -> "AudioLocation":
        return cls("url", value)

    @classmethod
    def path(cls, value: str) -> "AudioLocation":
        return cls("path", value)

    @classmethod
    def blob(cls, value: str) -> "AudioLocation":
        return cls("blob", value)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "value": self.value}


@dataclass
class Track:
    name: str
    audio: AudioLocation
    lyrics: Optional[str] = None

    def to_dict(self) -> dict:
        out: Dict[str, Any] = {"name": self.name, AUDIO_KINDS[self.audio.kind]: self.audio.value}
        if self.lyrics is not None:
            out["lyrics"] = self.lyrics
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Track":
        found = [(kind, data[key]) for kind, key in AUDIO_KINDS.items() if data.get(key)]
        if len(found) != 1:
            raise ValueError(f"track must have exactly one audio location, got {len(found)}")
        kind, value = found[0]
        return cls(name=str(data.get("name", "")), audio=AudioLocation(kind, value),
                   lyrics=data.get("lyrics"))


# атрибут -> ключ в JSON
_ARTIST_OPTIONAL = {
    "image_url": "imageUrl",
    "slug": "slug",
    "bio": "bio",
    "youtube_url": "youtubeUrl",
    "website_url": "websiteUrl",
}
ARTIST_EDITABLE = ("name",) + tuple(_ARTIST_OPTIONAL)


@dataclass
class Artist:
    id: str
    wallet: str
    name: str
    image_url: Optional[str] = None
    slug: Optional[str] = None
    bio: Optional[str] = None
    youtube_url: Optional[str] = None
    website_url: Optional[str] = None

    def to_dict(self) -> dict:
        out: Dict[str, Any] = {"id": self.id, "wallet": self.wallet, "name": self.name}
        for attr, key in _ARTIST_OPTIONAL.items():
            value = getattr(self, attr)
            if value is not None:
                out[key] = value
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Artist":
        kwargs = {attr: data.get(key) for attr, key in _ARTIST_OPTIONAL.items()}
        return cls(id=str(data["id"]), wallet=str(data["wallet"]), name=str(data.get("name", "")), **kwargs)


@dataclass
class Snapshot:
    tracks: Dict[str, Track] = field(default_factory=dict)
    used_signatures: Dict[str, str] = field(default_factory=dict)
    artists: Dict[str, List[Artist]] = field(default_factory=dict)
    assignments: Dict[str, Dict[str, str]] = field(default_factory=dict)
    artist_likes: Dict[str, int] = field(default_factory=dict)
    track_plays: Dict[str, int] = field(default_factory=dict)

    def copy(self) -> "Snapshot":
        return copy.deepcopy(self)

    def iter_artists(self):
        for artists in self.artists.values():
            yield from artists

    def to_dict(self) -> dict:
        return {
            "tracks": {tid: t.to_dict() for tid, t in self.tracks.items()},
            "usedSignatures": dict(self.used_signatures),
            "artists": {w: [a.to_dict() for a in lst] for w, lst in self.artists.items()},
            "assignments": {w: dict(m) for w, m in self.assignments.items()},
            "artistLikes": dict(self.artist_likes),
            "trackPlays": dict(self.track_plays),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Snapshot":
        if not isinstance(data, dict):
            raise ValueError("snapshot must be a JSON object")
        return cls(
            tracks={tid: Track.from_dict(t) for tid, t in (data.get("tracks") or {}).items()},
            used_signatures={str(s): str(t) for s, t in (data.get("usedSignatures") or {}).items()},
            artists={w: [Artist.from_dict(a) for a in lst] for w, lst in (data.get("artists") or {}).items()},
            assignments={w: {str(t): str(a) for t, a in m.items()}
                         for w, m in (data.get("assignments") or {}).items()},
            artist_likes={k: int(v) for k, v in (data.get("artistLikes") or {}).items()},
            track_plays={k: int(v) for k, v in (data.get("trackPlays") or {}).items()},
        )
