"""Shared fixtures: every test runs against throwaway config/data/home directories."""

import threading
from pathlib import Path

import pytest

from mpv_music.config import DirectoryRoot, LibraryConfig
from mpv_music.metadata import MetadataExtractor, MetadataSource, PartialMetadata


@pytest.fixture(autouse=True)
def isolated_dirs(tmp_path, monkeypatch):
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("MPV_MUSIC_CONFIG_DIR", str(tmp_path / "config"))
    monkeypatch.setenv("MPV_MUSIC_DATA_DIR", str(tmp_path / "data"))
    return tmp_path


class FakeSource(MetadataSource):
    """Returns canned tags by file name and counts every read."""

    name = "fake"

    def __init__(self, tags=None, fail_on=None):
        self.tags = tags or {}
        self.fail_on = fail_on
        self.reads: list[str] = []
        self._lock = threading.Lock()

    def read(self, path: Path):
        with self._lock:
            self.reads.append(path.name)
        if self.fail_on is not None and path.name == self.fail_on:
            raise KeyboardInterrupt
        found = self.tags.get(path.name)
        return PartialMetadata(**found) if found else None


def make_file(path: Path, content: bytes = b"audio") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


def make_config(*roots: Path, **overrides) -> LibraryConfig:
    return LibraryConfig(roots=tuple(DirectoryRoot(path=r) for r in roots), **overrides)


def make_extractor(config: LibraryConfig, source: FakeSource) -> MetadataExtractor:
    return MetadataExtractor(config, sources=[source])


@pytest.fixture
def library(tmp_path):
    """A small tagged library on disk plus the fake source describing it."""
    root = tmp_path / "music"
    make_file(root / "Ado" / "usseewa.flac", b"a" * 10)
    make_file(root / "Ado" / "odo.mp3", b"b" * 20)
    make_file(root / "Daft Punk" / "one more time.mp3", b"c" * 30)
    make_file(root / "notes.txt", b"not music")
    make_file(root / "mixes" / "road trip.m3u", b"#EXTM3U\n")
    source = FakeSource({
        "usseewa.flac": {"title": "Usseewa", "artist": "Ado", "genre": "J-Pop; Rock"},
        "odo.mp3": {"title": "Odo", "artist": "Ado", "album": "Kyougen"},
        "one more time.mp3": {"title": "One More Time", "artist": "Daft Punk",
                              "album": "Discovery", "genre": "House"},
        "notes.txt": {"title": "Should never be read"},
    })
    return root, source
