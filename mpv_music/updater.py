"""
Incremental Updater: keeps the index in step with the filesystem.

``update()`` diffs the live file set against the stored index by path and
``(mtime, size)``:

    absent from the index        → new        (extract)
    present, mtime/size equal    → unchanged  (reuse the stored record as-is)
    present, mtime/size differ   → modified   (re-extract, same path)
    in the index, not on disk    → removed    (dropped by omission)

Extraction is the expensive step (one ffprobe per file); a stat call is
cheap, so an already-current index is rewritten without a single probe.

``rebuild()`` is the same pass with an empty prior map. Both write the
result through ``IndexStore.write_all()`` only after every file has been
processed: an interrupted scan leaves the live index untouched.

Usage:
    indexer = LibraryIndexer(config, IndexStore())
    stats = indexer.update()
    print(stats.summary())
"""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional, Sequence, Tuple

from loguru import logger
from pydantic import BaseModel

from .config import DirectoryRoot, LibraryConfig
from .index_store import IndexStore
from .metadata import MetadataExtractor
from .models import TrackRecord
from .scanner import ProgressCallback, map_files, scan


class Change(str, Enum):
    NEW = "new"
    MODIFIED = "modified"
    UNCHANGED = "unchanged"


class UpdateStats(BaseModel):
    """Counts reported after a rebuild or update."""

    new: int = 0
    modified: int = 0
    unchanged: int = 0
    removed: int = 0
    total: int = 0
    rebuilt: bool = False

    @property
    def extracted(self) -> int:
        return self.new + self.modified

    def summary(self) -> str:
        if self.rebuilt:
            return f"{self.total} tracks indexed (full rebuild)"
        return (
            f"{self.total} tracks: {self.new} new, {self.modified} modified, "
            f"{self.unchanged} unchanged, {self.removed} removed"
        )


FileOutcome = Tuple[TrackRecord, Change]


class LibraryIndexer:
    """Builds and refreshes the persisted index for one configuration."""

    def __init__(
        self,
        config: LibraryConfig,
        store: Optional[IndexStore] = None,
        extractor: Optional[MetadataExtractor] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> None:
        self.config = config
        self.store = store if store is not None else IndexStore()
        self.extractor = extractor or MetadataExtractor(config)
        self.progress = progress

    @property
    def parallel(self) -> bool:
        return not self.config.serial_mode

    # ------------------------------------------------------------------
    # Per-file unit of work
    # ------------------------------------------------------------------

    def _process(
        self, path: Path, previous: Mapping[str, TrackRecord]
    ) -> Optional[FileOutcome]:
        try:
            st = os.stat(path)
        except OSError as exc:
            logger.warning(f"File vanished during scan, skipping: {path} ({exc})")
            return None
        modified_time, size_bytes = int(st.st_mtime), st.st_size

        prior = previous.get(str(path))
        if prior is not None and prior.is_fresh(modified_time, size_bytes):
            logger.debug(f"Unchanged: {path}")
            return prior, Change.UNCHANGED

        record = self.extractor.extract(path, modified_time, size_bytes)
        if prior is None:
            logger.debug(f"New: {path}")
            return record, Change.NEW
        logger.debug(f"Modified: {path}")
        return record, Change.MODIFIED

    def _index_files(
        self, files: Sequence[Path], previous: Mapping[str, TrackRecord]
    ) -> Tuple[list[TrackRecord], UpdateStats]:
        outcomes = map_files(
            lambda path: self._process(path, previous),
            files,
            parallel=self.parallel,
            workers=self.config.workers,
            progress=self.progress,
        )

        records: list[TrackRecord] = []
        counts = {change: 0 for change in Change}
        for outcome in outcomes:
            if outcome is None:
                continue
            record, change = outcome
            records.append(record)
            counts[change] += 1

        live = {record.path for record in records}
        stats = UpdateStats(
            new=counts[Change.NEW],
            modified=counts[Change.MODIFIED],
            unchanged=counts[Change.UNCHANGED],
            removed=sum(1 for path in previous if path not in live),
            total=len(records),
        )
        return records, stats

    def _scan(self, config: Optional[LibraryConfig] = None) -> list[Path]:
        config = config or self.config
        mode = "parallel" if self.parallel else "serial"
        logger.info(f"Scanning {len(config.roots)} director(ies) ({mode} mode)")
        return scan(
            config.root_paths(),
            config.ext_filter(),
            parallel=self.parallel,
            workers=config.workers,
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def rebuild(self) -> UpdateStats:
        """Scan everything from scratch and replace the index."""
        logger.info("Building library index from scratch")
        files = self._scan()
        if not files:
            logger.warning("No media files found, writing an empty index")
        records, stats = self._index_files(files, {})
        self.store.write_all(records)
        stats = stats.model_copy(update={"rebuilt": True})
        logger.info(f"Rebuild complete: {stats.summary()}")
        return stats

    def update(self) -> UpdateStats:
        """
        Bring the index up to date, re-extracting only new or changed files.

        Assumes the stored index is structurally valid (run the healer
        first); with no stored index this is a full rebuild.
        """
        if not self.store.exists():
            logger.info("No existing index, running full rebuild")
            return self.rebuild()

        previous = self.store.read_map()
        logger.debug(f"Loaded {len(previous)} previously indexed tracks")

        files = self._scan()
        if not files:
            logger.warning("No media files found, writing an empty index")
            self.store.write_all([])
            return UpdateStats(removed=len(previous))

        records, stats = self._index_files(files, previous)
        self.store.write_all(records)
        logger.info(f"Index updated: {stats.summary()}")
        return stats

    def session_index(self, directory: Path) -> list[TrackRecord]:
        """Scan one ad-hoc directory into memory; the stored index is not touched."""
        directory = Path(directory).expanduser()
        session_config = self.config.with_roots([DirectoryRoot(path=directory)])
        files = self._scan(session_config)
        if not files:
            logger.warning(f"No matching media files in {directory}")
            return []
        records, _ = self._index_files(files, {})
        logger.info(f"Session index: {len(records)} tracks from {directory}")
        return records


# ---------------------------------------------------------------------------
# Functional entry points
# ---------------------------------------------------------------------------

def rebuild(
    config: LibraryConfig,
    store: IndexStore,
    extractor: Optional[MetadataExtractor] = None,
    progress: Optional[ProgressCallback] = None,
) -> UpdateStats:
    return LibraryIndexer(config, store, extractor, progress).rebuild()


def update(
    config: LibraryConfig,
    store: IndexStore,
    extractor: Optional[MetadataExtractor] = None,
    progress: Optional[ProgressCallback] = None,
) -> UpdateStats:
    return LibraryIndexer(config, store, extractor, progress).update()


def build_session_index(
    directory: Path,
    config: LibraryConfig,
    extractor: Optional[MetadataExtractor] = None,
    progress: Optional[ProgressCallback] = None,
) -> list[TrackRecord]:
    """Index ``directory`` in memory without a persisted store."""
    indexer = LibraryIndexer(config, extractor=extractor, progress=progress)
    return indexer.session_index(directory)
