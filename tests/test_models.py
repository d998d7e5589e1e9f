# tests/test_models.py
import pytest

from trackledger.models import Artist, AudioLocation, Snapshot, Track, slugify


@pytest.mark.parametrize("raw, want", [
    ("Nova", "nova"),
    ("  Nova Star!! ", "nova-star"),
    ("DJ --- Kool__Herc", "dj-kool-herc"),
    ("---", ""),
    ("already-a-slug", "already-a-slug"),
    ("Élan 2", "lan-2"),
])
def test_slugify(raw, want):
    assert slugify(raw) == want


@pytest.mark.parametrize("raw", ["Nova Star", "-a--b-", "ÜBER/cool?", "", "x" * 100, "A1 b2 C3"])
def test_slugify_idempotent(raw):
    once = slugify(raw)
    assert slugify(once) == once


def test_track_needs_exactly_one_audio_location():
    with pytest.raises(ValueError):
        Track.from_dict({"name": "x"})
    with pytest.raises(ValueError):
        Track.from_dict({"name": "x", "audioUrl": "https://a", "blobUrl": "https://b"})
    with pytest.raises(ValueError):
        AudioLocation("ftp", "x")
    with pytest.raises(ValueError):
        AudioLocation.url("")


def test_snapshot_document_shape_and_optional_fields():
    """Отсутствующее поле не пишется, пустая строка сохраняется как есть."""
    snap = Snapshot()
    snap.tracks["t1"] = Track("Пісня ✨", AudioLocation.blob("https://blob/t1.mp3"), lyrics="")
    snap.tracks["t2"] = Track("Song B", AudioLocation.path("t2.mp3"))
    snap.artists["W1"] = [Artist(id="a1", wallet="W1", name="Nova", bio="")]
    snap.assignments["W1"] = {"t1": "a1"}
    snap.used_signatures["sig1"] = "t1"
    snap.artist_likes["a1"] = 3
    snap.track_plays["t1"] = 7

    doc = snap.to_dict()
    assert set(doc) == {"tracks", "usedSignatures", "artists", "assignments", "artistLikes", "trackPlays"}
    assert doc["tracks"]["t1"] == {"name": "Пісня ✨", "blobUrl": "https://blob/t1.mp3", "lyrics": ""}
    assert doc["tracks"]["t2"] == {"name": "Song B", "audioPath": "t2.mp3"}
    assert doc["artists"]["W1"] == [{"id": "a1", "wallet": "W1", "name": "Nova", "bio": ""}]

    back = Snapshot.from_dict(doc)
    assert back == snap
    assert back.tracks["t2"].lyrics is None
    assert back.artists["W1"][0].slug is None


def test_snapshot_missing_sections_load_empty():
    snap = Snapshot.from_dict({"tracks": {"t1": {"name": "A", "audioUrl": "https://a"}}})
    assert snap.tracks["t1"].audio == AudioLocation.url("https://a")
    assert snap.used_signatures == {} and snap.artists == {} and snap.track_plays == {}
