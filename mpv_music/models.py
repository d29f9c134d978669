"""
Data Models for the mpv-music library index

Track records as persisted in the JSONL index, the media-kind tag, the
multi-value tag codec, and the per-invocation filter query.

Wire format (one JSON object per line, keys as written by every previous
version of the indexer):

    {"path": "/music/a.flac", "title": "...", "artist": "...", "album": "...",
     "genre": "...", "mtime": 1700000000, "size": 12345, "media_type": "audio"}
"""

from __future__ import annotations

import re
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Iterable, Iterator, Optional, Tuple

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PlainSerializer,
    field_validator,
)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

UNKNOWN = "UNKNOWN"
PLAYLIST_ARTIST = "Playlist"
PLAYLIST_ALBUM = "Playlists"
PLAYLIST_GENRE = "Playlist"

# Filterable fields, in fallback priority order.
FIELD_PRIORITY: Tuple[str, ...] = ("artist", "genre", "album", "title")

_DELIMITERS = re.compile(r"[;,]")


# ---------------------------------------------------------------------------
# Multi-value codec
# ---------------------------------------------------------------------------

class MultiValue:
    """
    A tag value that may hold several entries joined by ``;`` or ``,``
    (``"Rock; Alternative Rock"``, ``"Ado, Gentle"``).

    The raw text is kept verbatim so a record survives a read/write cycle
    byte-for-byte; ``items`` is the parsed, trimmed, ordered list.
    Compares equal to its raw string.
    """

    __slots__ = ("raw", "items")

    def __init__(self, raw: str = "") -> None:
        self.raw: str = raw
        self.items: Tuple[str, ...] = tuple(
            part.strip() for part in _DELIMITERS.split(raw) if part.strip()
        )

    @classmethod
    def of(cls, values: Iterable[str]) -> "MultiValue":
        """Join several values into one tag string."""
        return cls("; ".join(v.strip() for v in values if v and v.strip()))

    @classmethod
    def single(cls, raw: str) -> "MultiValue":
        """Wrap text that must never be split (titles)."""
        value = cls()
        value.raw = raw
        value.items = (raw.strip(),) if raw.strip() else ()
        return value

    def match_keys(self) -> set[str]:
        """Casefolded elements plus the whole trimmed value."""
        keys = {item.casefold() for item in self.items}
        whole = self.raw.strip()
        if whole:
            keys.add(whole.casefold())
        return keys

    def matches(self, value: str) -> bool:
        """Case-insensitive whole-element match against one query value."""
        needle = value.strip().casefold()
        return bool(needle) and needle in self.match_keys()

    def contains(self, value: str) -> bool:
        """Case-insensitive substring match against the raw text."""
        needle = value.strip().casefold()
        return bool(needle) and needle in self.raw.casefold()

    def __iter__(self) -> Iterator[str]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def __bool__(self) -> bool:
        return bool(self.raw.strip())

    def __eq__(self, other: object) -> bool:
        if isinstance(other, MultiValue):
            return self.raw == other.raw
        if isinstance(other, str):
            return self.raw == other
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.raw)

    def __str__(self) -> str:
        return self.raw

    def __repr__(self) -> str:
        return f"MultiValue({self.raw!r})"


def _to_multi_value(value: Any) -> Any:
    if isinstance(value, MultiValue):
        return value
    if isinstance(value, str):
        return MultiValue(value)
    if isinstance(value, (list, tuple)):
        return MultiValue.of(str(v) for v in value)
    return value


TagValue = Annotated[
    MultiValue,
    BeforeValidator(_to_multi_value),
    PlainSerializer(lambda v: v.raw, return_type=str),
]


# ---------------------------------------------------------------------------
# Track records
# ---------------------------------------------------------------------------

class MediaKind(str, Enum):
    AUDIO = "audio"
    VIDEO = "video"
    PLAYLIST = "playlist"
    UNKNOWN = "unknown"


class TrackRecord(BaseModel):
    """One indexed media file."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        arbitrary_types_allowed=True,
    )

    path: str = Field(..., min_length=1, description="Absolute file path (unique key)")
    title: str = Field(..., description="Track title, filename stem when untagged")
    artist: TagValue = Field(..., description="Artist(s), 'UNKNOWN' when untagged")
    album: TagValue = Field(..., description="Album, 'UNKNOWN' when untagged")
    genre: TagValue = Field(..., description="Genre(s), 'UNKNOWN' when untagged")
    modified_time: int = Field(..., ge=0, alias="mtime", description="mtime, epoch seconds")
    size_bytes: int = Field(..., ge=0, alias="size", description="File size in bytes")
    media_kind: MediaKind = Field(..., alias="media_type", description="audio/video/playlist")

    @field_validator("modified_time", "size_bytes", mode="before")
    @classmethod
    def _numeric_strings(cls, v: Any) -> Any:
        # Looser producers write these as strings ("1700000000").
        if isinstance(v, bool):
            raise ValueError("boolean is not a valid integer field")
        if isinstance(v, str):
            text = v.strip()
            if any(c in text for c in ".eE"):
                try:
                    return int(float(text))
                except OverflowError as exc:
                    raise ValueError(f"not a finite number: {text!r}") from exc
            return int(text)
        return v

    @field_validator("media_kind", mode="before")
    @classmethod
    def _media_kind_case(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @property
    def file_name(self) -> str:
        return Path(self.path).name

    def values_for(self, field: str) -> MultiValue:
        """Return the filterable value of ``field`` as a MultiValue.

        Titles are matched as a single whole value: commas in a title are
        punctuation, not separators.
        """
        if field == "title":
            return MultiValue.single(self.title)
        if field not in FIELD_PRIORITY:
            raise KeyError(f"Unknown filter field: {field}")
        return getattr(self, field)

    def is_fresh(self, modified_time: int, size_bytes: int) -> bool:
        """True when the recorded freshness signals still match the file."""
        return self.modified_time == modified_time and self.size_bytes == size_bytes

    def to_json_line(self) -> str:
        return self.model_dump_json(by_alias=True)

    def display_label(self) -> str:
        if self.artist and self.artist != UNKNOWN:
            return f"{self.artist} - {self.title}"
        return self.title


# ---------------------------------------------------------------------------
# Filter query
# ---------------------------------------------------------------------------

def split_query_values(raw: Optional[str]) -> Tuple[str, ...]:
    """Split a comma-separated CLI value (``"ado, gentle"``) into trimmed terms."""
    if not raw:
        return ()
    return tuple(part.strip() for part in raw.split(",") if part.strip())


class FilterQuery(BaseModel):
    """Field -> value-list constraints for one invocation.

    Values within a field are alternatives (OR); fields combine with AND.
    """

    model_config = ConfigDict(frozen=True)

    genre: Tuple[str, ...] = ()
    artist: Tuple[str, ...] = ()
    album: Tuple[str, ...] = ()
    title: Tuple[str, ...] = ()

    @field_validator("genre", "artist", "album", "title", mode="before")
    @classmethod
    def _clean(cls, v: Any) -> Any:
        if v is None:
            return ()
        if isinstance(v, str):
            return split_query_values(v)
        return tuple(str(item).strip() for item in v if str(item).strip())

    @classmethod
    def from_cli(
        cls,
        genre: Optional[str] = None,
        artist: Optional[str] = None,
        album: Optional[str] = None,
        title: Optional[str] = None,
    ) -> "FilterQuery":
        return cls(genre=genre, artist=artist, album=album, title=title)

    def active_fields(self) -> list[str]:
        """Fields carrying at least one value, in fallback priority order."""
        return [f for f in FIELD_PRIORITY if getattr(self, f)]

    def values(self, field: str) -> Tuple[str, ...]:
        return getattr(self, field)

    def with_field(self, field: str, values: Iterable[str]) -> "FilterQuery":
        """Return a copy with one field's values replaced."""
        data = self.model_dump()
        data[field] = tuple(values)
        return FilterQuery.model_validate(data)

    def is_empty(self) -> bool:
        return not self.active_fields()

    def describe(self) -> str:
        return ", ".join(
            f"{f}={'|'.join(self.values(f))}" for f in self.active_fields()
        ) or "(no filters)"
