"""
Metadata Extraction

Turns one media file into a ``TrackRecord``. Never raises for unreadable
media: every failure degrades to filename-derived defaults.

Fallback chain:
1. Playlists (by extension) get a synthetic record, no parsing.
2. ``FFprobeSource``: ffprobe container/stream tags under a hard timeout,
   normalising the historical tag aliases (``title``/``TIT2``/``NAME``...).
3. ``MutagenSource``: simpler tag reader, consulted only when both title
   and artist are still empty, and only for those two fields.
4. Defaults: filename stem for the title, ``UNKNOWN`` elsewhere.

ffprobe is part of FFmpeg and must be on PATH; without it step 2 is
skipped with a single warning.
"""

from __future__ import annotations

import json
import os
import subprocess
import threading
from pathlib import Path
from typing import Any, Optional, Sequence, Tuple

from loguru import logger
from mutagen import File as MutagenFile
from mutagen import MutagenError
from pydantic import BaseModel, ConfigDict

from .config import LibraryConfig
from .models import (
    PLAYLIST_ALBUM,
    PLAYLIST_ARTIST,
    PLAYLIST_GENRE,
    UNKNOWN,
    MediaKind,
    TrackRecord,
)

METADATA_FIELDS: Tuple[str, ...] = ("title", "artist", "album", "genre")

# Tag keys seen in the wild for each field, highest priority first.
TAG_ALIASES: dict[str, Tuple[str, ...]] = {
    "title": ("title", "TIT2", "NAME", "TITLE", "Track name"),
    "artist": ("artist", "TPE1", "TPE2", "album_artist", "ARTIST", "Performer"),
    "album": ("album", "TALB", "ALBUM"),
    "genre": ("genre", "TCON", "GENRE"),
}


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        value = value[0] if value else ""
    text = str(value).replace("\r", "").replace("\n", " ").strip()
    if len(text) >= 2 and text[0] == text[-1] == '"':
        text = text[1:-1].strip()
    return text or None


def extension_of(path: Path) -> str:
    return path.suffix.lstrip(".").lower()


# ---------------------------------------------------------------------------
# Partial metadata
# ---------------------------------------------------------------------------

class PartialMetadata(BaseModel):
    """Whatever one source managed to read; ``None`` means not found."""

    model_config = ConfigDict(frozen=True)

    title: Optional[str] = None
    artist: Optional[str] = None
    album: Optional[str] = None
    genre: Optional[str] = None

    def is_empty(self) -> bool:
        return not any(getattr(self, f) for f in METADATA_FIELDS)

    def fill_from(
        self, other: Optional["PartialMetadata"], fields: Sequence[str] = METADATA_FIELDS
    ) -> "PartialMetadata":
        """First non-empty value wins: only fill fields that are still empty."""
        if other is None:
            return self
        updates = {
            f: getattr(other, f)
            for f in fields
            if not getattr(self, f) and getattr(other, f)
        }
        return self.model_copy(update=updates) if updates else self


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------

class MetadataSource:
    """One link of the fallback chain."""

    name = "source"
    fields: Tuple[str, ...] = METADATA_FIELDS

    def wanted(self, current: PartialMetadata) -> bool:
        """Whether this source should run given what earlier sources found."""
        return any(not getattr(current, f) for f in self.fields)

    def read(self, path: Path) -> Optional[PartialMetadata]:
        raise NotImplementedError


class FFprobeSource(MetadataSource):
    """Container and stream tags from ffprobe, bounded by a wall-clock timeout."""

    name = "ffprobe"
    _missing_warned = False
    _lock = threading.Lock()

    def __init__(self, timeout: float = 2.0, binary: str = "ffprobe") -> None:
        self.timeout = timeout
        self.binary = binary
        self.available = True

    def _command(self, path: Path) -> list[str]:
        return [
            self.binary, "-v", "quiet", "-hide_banner",
            "-analyzeduration", "10000000", "-probesize", "10000000",
            "-show_format", "-show_streams", "-of", "json",
            str(path),
        ]

    def probe(self, path: Path) -> Optional[dict]:
        """Run ffprobe and return its parsed JSON, or None."""
        if not self.available:
            return None
        try:
            result = subprocess.run(
                self._command(path),
                capture_output=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"ffprobe timed out after {self.timeout}s: {path}")
            return None
        except FileNotFoundError:
            self.available = False
            with FFprobeSource._lock:
                if not FFprobeSource._missing_warned:
                    FFprobeSource._missing_warned = True
                    logger.warning(
                        f"'{self.binary}' not found, tag probing disabled, "
                        "falling back to the simple tag reader"
                    )
            return None
        except OSError as exc:
            logger.warning(f"ffprobe could not run on {path}: {exc}")
            return None

        if not result.stdout:
            logger.debug(f"ffprobe returned no output for: {path}")
            return None
        try:
            data = json.loads(result.stdout.decode("utf-8", errors="replace"))
        except json.JSONDecodeError:
            logger.debug(f"ffprobe returned malformed JSON for: {path}")
            return None
        return data if isinstance(data, dict) else None

    @staticmethod
    def tags_from_probe(data: dict) -> PartialMetadata:
        """Pick each field from format tags, then the first stream's tags."""
        format_tags = (data.get("format") or {}).get("tags") or {}
        streams = data.get("streams") or []
        stream_tags = (streams[0].get("tags") or {}) if streams and isinstance(streams[0], dict) else {}

        found: dict[str, str] = {}
        for field, aliases in TAG_ALIASES.items():
            for alias in aliases:
                value = _clean(format_tags.get(alias)) or _clean(stream_tags.get(alias))
                if value:
                    found[field] = value
                    break
        return PartialMetadata(**found)

    def read(self, path: Path) -> Optional[PartialMetadata]:
        data = self.probe(path)
        if data is None:
            return None
        return self.tags_from_probe(data)


class MutagenSource(MetadataSource):
    """Narrow fallback for files ffprobe could not name: title and artist only."""

    name = "mutagen"
    fields = ("title", "artist")

    _KEYS: dict[str, Tuple[str, ...]] = {
        "title": ("title", "TIT2", "\xa9nam", "Title"),
        "artist": ("artist", "TPE1", "\xa9ART", "Author", "performer"),
    }

    def wanted(self, current: PartialMetadata) -> bool:
        return not current.title and not current.artist

    def read(self, path: Path) -> Optional[PartialMetadata]:
        try:
            audio = MutagenFile(str(path), easy=True)
        except (MutagenError, OSError, ValueError) as exc:
            logger.debug(f"mutagen could not read {path}: {exc}")
            return None
        if audio is None or getattr(audio, "tags", None) is None:
            return None

        tags = audio.tags
        found: dict[str, str] = {}
        for field, keys in self._KEYS.items():
            for key in keys:
                try:
                    value = _clean(tags.get(key))
                except (KeyError, ValueError):
                    value = None
                if value:
                    found[field] = value
                    break
        if not found:
            return None
        logger.debug(f"mutagen fallback found {sorted(found)} for {path}")
        return PartialMetadata(**found)


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------

class MetadataExtractor:
    """
    Compose the source chain into a complete record.

    Usage:
        extractor = MetadataExtractor(config)
        record = extractor.extract(Path("/music/song.flac"))
    """

    def __init__(
        self,
        config: LibraryConfig,
        sources: Optional[Sequence[MetadataSource]] = None,
    ) -> None:
        self.config = config
        if sources is None:
            sources = (FFprobeSource(timeout=config.probe_timeout), MutagenSource())
        self.sources: Tuple[MetadataSource, ...] = tuple(sources)

    def classify(self, path: Path) -> MediaKind:
        ext = extension_of(path)
        if ext in self.config.audio_exts:
            return MediaKind.AUDIO
        if ext in self.config.playlist_exts:
            return MediaKind.PLAYLIST
        if ext in self.config.video_exts:
            return MediaKind.VIDEO
        return MediaKind.UNKNOWN

    def read_tags(self, path: Path) -> PartialMetadata:
        """Run the source chain; a failing source never aborts the chain."""
        current = PartialMetadata()
        for source in self.sources:
            if not source.wanted(current):
                continue
            try:
                partial = source.read(path)
            except Exception as exc:  # noqa: BLE001
                logger.warning(f"{source.name} failed on {path}: {exc}")
                continue
            current = current.fill_from(partial, source.fields)
        return current

    def extract(
        self,
        path: Path,
        modified_time: Optional[int] = None,
        size_bytes: Optional[int] = None,
    ) -> TrackRecord:
        """Build the record for ``path``. Freshness signals are stat'ed when not given."""
        path = Path(path)
        if modified_time is None or size_bytes is None:
            try:
                st = os.stat(path)
                modified_time, size_bytes = int(st.st_mtime), st.st_size
            except OSError as exc:
                logger.warning(f"Could not stat {path}: {exc}")
                modified_time, size_bytes = 0, 0

        kind = self.classify(path)
        stem = path.stem

        if kind is MediaKind.PLAYLIST:
            return TrackRecord(
                path=str(path),
                title=stem,
                artist=PLAYLIST_ARTIST,
                album=PLAYLIST_ALBUM,
                genre=PLAYLIST_GENRE,
                modified_time=modified_time,
                size_bytes=size_bytes,
                media_kind=kind,
            )

        tags = self.read_tags(path)
        if not tags.title:
            logger.debug(f"No title tag, using filename: {stem}")

        return TrackRecord(
            path=str(path),
            title=tags.title or stem,
            artist=tags.artist or UNKNOWN,
            album=tags.album or UNKNOWN,
            genre=tags.genre or UNKNOWN,
            modified_time=modified_time,
            size_bytes=size_bytes,
            media_kind=kind,
        )
