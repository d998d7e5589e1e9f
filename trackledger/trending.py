"""Тренды: только артисты и треки, разблокированные хотя бы одним платежом."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from .models import Artist, Snapshot


@dataclass
class TrendingTrack:
    id: str
    name: str
    plays: int

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "plays": self.plays}


@dataclass
class TrendingArtist:
    artist: Artist
    tracks: List[TrendingTrack] = field(default_factory=list)

    @property
    def total_plays(self) -> int:
        return sum(t.plays for t in self.tracks)

    def to_dict(self) -> dict:
        return {
            "artist": self.artist.to_dict(),
            "tracks": [t.to_dict() for t in self.tracks],
            "total_plays": self.total_plays,
        }


def compute_trending(snapshot: Snapshot) -> List[TrendingArtist]:
    unlocked = set(snapshot.used_signatures.values())
    out: List[TrendingArtist] = []
    for wallet, artists in snapshot.artists.items():
        assigned = snapshot.assignments.get(wallet, {})
        for artist in artists:
            tracks = [
                TrendingTrack(tid, snapshot.tracks[tid].name, snapshot.track_plays.get(tid, 0))
                for tid, aid in assigned.items()
                if aid == artist.id and tid in unlocked and tid in snapshot.tracks
            ]
            if not tracks:
                continue
            # равные play count - по id, чтобы порядок был детерминированным
            tracks.sort(key=lambda t: (-t.plays, t.id))
            out.append(TrendingArtist(artist, tracks))
    out.sort(key=lambda e: (-e.total_plays, e.artist.id))
    return out
