"""
Index Store: the JSONL track index on disk.

One complete JSON object per line, one line per track, UTF-8:

    {"path": "...", "title": "...", "artist": "...", "album": "...",
     "genre": "...", "mtime": 1700000000, "size": 4096, "media_type": "audio"}

Writers always go through ``write_all()``: records are written to a
``.tmp`` sibling and moved over the live file with ``Path.replace()``, so a
reader never sees a half-written index, even after a crash or Ctrl+C.

``validate()`` parses every line, so damage in the middle of the file is
caught as well as a torn last line.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Iterable, Iterator, NamedTuple, Optional

from loguru import logger
from pydantic import ValidationError

from .config import data_dir
from .models import TrackRecord

INDEX_FILENAME = "music_index.jsonl"


def default_index_path() -> Path:
    return data_dir() / INDEX_FILENAME


class IndexCorruptionError(ValueError):
    """A line of the index could not be parsed as a track record."""

    def __init__(self, path: Path, line_number: int, reason: str) -> None:
        self.path = path
        self.line_number = line_number
        self.reason = reason
        super().__init__(f"{path}: line {line_number}: {reason}")


class SalvageResult(NamedTuple):
    records: list[TrackRecord]
    bad_lines: list[int]
    duplicate_paths: int


def parse_line(line: bytes | str) -> TrackRecord:
    """Parse one JSONL line; raises ``ValueError`` for anything malformed."""
    if isinstance(line, bytes):
        try:
            line = line.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ValueError(f"invalid UTF-8 at byte {exc.start}") from exc
    try:
        data = json.loads(line)
    except json.JSONDecodeError as exc:
        raise ValueError(f"invalid JSON ({exc.msg})") from exc
    if not isinstance(data, dict):
        raise ValueError("line is not a JSON object")
    try:
        return TrackRecord.model_validate(data)
    except ValidationError as exc:
        fields = ", ".join(str(err["loc"][0]) for err in exc.errors() if err.get("loc"))
        raise ValueError(f"invalid track record ({fields or 'schema'})") from exc


class IndexStore:
    """
    Reads and atomically rewrites the track index file.

    Usage:
        store = IndexStore()                      # $MPV_MUSIC_DATA_DIR/music_index.jsonl
        if store.validate():
            tracks = store.read_all()
        store.write_all(tracks)
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path: Path = Path(path) if path is not None else default_index_path()

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.exists()

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def _lines(self) -> Iterator[tuple[int, bytes]]:
        # Raw bytes: each line is decoded strictly by parse_line.
        with self._path.open("rb") as fh:
            for number, line in enumerate(fh, start=1):
                line = line.strip()
                if line:
                    yield number, line

    def iter_records(self) -> Iterator[TrackRecord]:
        """Stream records, raising ``IndexCorruptionError`` at the first bad line."""
        if not self.exists():
            return
        for number, line in self._lines():
            try:
                yield parse_line(line)
            except ValueError as exc:
                raise IndexCorruptionError(self._path, number, str(exc)) from exc

    def read_all(self) -> list[TrackRecord]:
        """All records in file order. Missing file reads as empty."""
        records = list(self.iter_records())
        logger.debug(f"IndexStore: loaded {len(records)} records from {self._path}")
        return records

    def read_map(self) -> dict[str, TrackRecord]:
        """Records keyed by path."""
        return {record.path: record for record in self.iter_records()}

    # ------------------------------------------------------------------
    # Validate / salvage
    # ------------------------------------------------------------------

    def validate(self) -> bool:
        """
        True only if the file exists and every line is a complete record
        with a unique path. An empty file is a valid, empty index.
        """
        if not self.exists():
            return False
        seen: set[str] = set()
        try:
            for number, line in self._lines():
                try:
                    record = parse_line(line)
                except ValueError as exc:
                    logger.warning(f"Corruption detected on line {number}: {exc}")
                    return False
                if record.path in seen:
                    logger.warning(f"Duplicate path on line {number}: {record.path}")
                    return False
                seen.add(record.path)
        except OSError as exc:
            logger.warning(f"Could not read index {self._path}: {exc}")
            return False
        return True

    def salvage(self) -> SalvageResult:
        """Keep every line that parses into a complete record (first wins per path)."""
        records: list[TrackRecord] = []
        bad_lines: list[int] = []
        duplicates = 0
        seen: set[str] = set()
        if not self.exists():
            return SalvageResult(records, bad_lines, duplicates)

        for number, line in self._lines():
            try:
                record = parse_line(line)
            except ValueError as exc:
                logger.debug(f"Dropping line {number}: {exc}")
                bad_lines.append(number)
                continue
            if record.path in seen:
                duplicates += 1
                continue
            seen.add(record.path)
            records.append(record)

        return SalvageResult(records, bad_lines, duplicates)

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def write_all(self, records: Iterable[TrackRecord]) -> int:
        """
        Atomically replace the index with ``records``.

        Writes to a ``.tmp`` sibling first, fsyncs, then uses
        ``Path.replace()``. A crash or Ctrl+C mid-write leaves the old index.
        The temp file is removed if anything fails before the rename.

        Returns:
            Number of records written.
        """
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(".tmp")
        count = 0
        try:
            with tmp.open("w", encoding="utf-8") as fh:
                for record in records:
                    fh.write(record.to_json_line() + "\n")
                    count += 1
                fh.flush()
                os.fsync(fh.fileno())
            tmp.replace(self._path)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
        logger.info(f"Index saved: {count} entries → {self._path}")
        return count

    def remove(self) -> None:
        self._path.unlink(missing_ok=True)

    def __repr__(self) -> str:
        return f"IndexStore(path={self._path})"
