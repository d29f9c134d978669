"""
Integrity Validator / Self-Healer

Run before anything reads the index. A damaged index is never refused:

1. ``validate()`` parses every line. Healthy → nothing to do.
2. Otherwise salvage the lines that still parse into complete records.
3. Survivors → write them back, then run an incremental update so the
   repaired index also catches up with the filesystem.
4. Nothing survived → discard the file and rebuild from scratch.

A missing index is built for the first time.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from loguru import logger
from pydantic import BaseModel

from .updater import LibraryIndexer, UpdateStats


class HealOutcome(str, Enum):
    HEALTHY = "healthy"
    CREATED = "created"
    REPAIRED = "repaired"
    REBUILT = "rebuilt"


class HealReport(BaseModel):
    outcome: HealOutcome
    salvaged: int = 0
    dropped_lines: int = 0
    duplicates: int = 0
    stats: Optional[UpdateStats] = None

    @property
    def changed(self) -> bool:
        return self.outcome is not HealOutcome.HEALTHY


def ensure_index_integrity(indexer: LibraryIndexer) -> HealReport:
    """Make the indexer's store readable, repairing or rebuilding as needed."""
    store = indexer.store

    if not store.exists():
        logger.info(f"No index at {store.path}, building it")
        return HealReport(outcome=HealOutcome.CREATED, stats=indexer.rebuild())

    if store.validate():
        logger.debug(f"Index integrity OK: {store.path}")
        return HealReport(outcome=HealOutcome.HEALTHY)

    logger.warning("Index corruption detected, attempting repair")
    salvage = store.salvage()

    if not salvage.records:
        logger.warning("Index unsalvageable, forcing full rebuild")
        store.remove()
        return HealReport(
            outcome=HealOutcome.REBUILT,
            dropped_lines=len(salvage.bad_lines),
            duplicates=salvage.duplicate_paths,
            stats=indexer.rebuild(),
        )

    store.write_all(salvage.records)
    logger.warning(
        f"Recovered {len(salvage.records)} records, dropped "
        f"{len(salvage.bad_lines)} malformed line(s); refreshing against disk"
    )
    return HealReport(
        outcome=HealOutcome.REPAIRED,
        salvaged=len(salvage.records),
        dropped_lines=len(salvage.bad_lines),
        duplicates=salvage.duplicate_paths,
        stats=indexer.update(),
    )


def heal(indexer: LibraryIndexer) -> HealReport:
    return ensure_index_integrity(indexer)
