"""
Filter Resolution Engine

Turns a ``FilterQuery`` typed at the command line into a concrete list of
tracks. Read-only over the index.

Exact stage
    Every active field must match (AND); within a field any query value
    may match (OR). A value matches when it equals one element of the
    track's delimited field, or the whole field, ignoring case and
    surrounding whitespace. ``"rock"`` does not match ``"Alternative Rock"``.

Fallback stage (only when the exact stage is empty)
    The single highest-priority active field (artist > genre > album >
    title) is re-run as a case-insensitive substring match, the other
    fields are ignored. The distinct values found among those tracks are
    the candidates:

        0 candidates  → no match
        1 candidate   → substituted into the query, exact stage re-run
        2+ candidates → handed to ``prompt_disambiguation``; the chosen
                        subset is substituted and the exact stage re-run

Query values are literal text, never patterns.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, Iterable, Optional, Sequence, Tuple

from loguru import logger
from pydantic import BaseModel, ConfigDict

from .models import FilterQuery, MediaKind, TrackRecord

PromptCallback = Callable[[Sequence[str]], Sequence[str]]


class ResolutionStatus(str, Enum):
    EXACT = "exact"
    AUTO_RESOLVED = "auto_resolved"
    DISAMBIGUATED = "disambiguated"
    AMBIGUOUS = "ambiguous"
    CANCELLED = "cancelled"
    NO_MATCH = "no_match"


class Resolution(BaseModel):
    """Outcome of resolving one query; never raised, always returned."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    status: ResolutionStatus
    tracks: Tuple[TrackRecord, ...] = ()
    field: Optional[str] = None
    candidates: Tuple[str, ...] = ()
    chosen: Tuple[str, ...] = ()

    @property
    def matched(self) -> bool:
        return bool(self.tracks)

    def paths(self) -> list[str]:
        return [track.path for track in self.tracks]


# ---------------------------------------------------------------------------
# Matching primitives
# ---------------------------------------------------------------------------

def matches_query(record: TrackRecord, query: FilterQuery) -> bool:
    for field in query.active_fields():
        value = record.values_for(field)
        if not any(value.matches(wanted) for wanted in query.values(field)):
            return False
    return True


def exact_match(records: Iterable[TrackRecord], query: FilterQuery) -> list[TrackRecord]:
    """Conjunctive whole-element match over every active field."""
    return [record for record in records if matches_query(record, query)]


def substring_match(
    records: Iterable[TrackRecord], field: str, values: Sequence[str]
) -> list[TrackRecord]:
    """Tracks whose ``field`` contains any of ``values`` (case-insensitive)."""
    return [
        record for record in records
        if any(record.values_for(field).contains(v) for v in values)
    ]


def distinct_values(
    records: Iterable[TrackRecord], field: str, values: Sequence[str]
) -> list[str]:
    """
    Distinct field values behind a substring hit, case-insensitively
    de-duplicated (first spelling kept) and sorted.

    For a delimited field only the elements containing a query value are
    candidates; when the hit spans a delimiter the whole value is used.
    """
    needles = [v.strip().casefold() for v in values if v.strip()]
    seen: dict[str, str] = {}
    for record in records:
        value = record.values_for(field)
        hits = [item for item in value if any(n in item.casefold() for n in needles)]
        if not hits:
            hits = [value.raw.strip()]
        for hit in hits:
            seen.setdefault(hit.casefold(), hit)
    return sorted(seen.values(), key=str.casefold)


def find_playlists(records: Iterable[TrackRecord], name: str) -> list[TrackRecord]:
    """Playlist entries whose title contains ``name`` (case-insensitive)."""
    needle = name.strip().casefold()
    return [
        record for record in records
        if record.media_kind is MediaKind.PLAYLIST and needle in record.title.casefold()
    ]


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

class FilterResolver:
    """
    Usage:
        resolver = FilterResolver(prompt_disambiguation=pick_from_list)
        result = resolver.resolve(tracks, FilterQuery(artist="daft"))
        if result.matched:
            play(result.paths())
    """

    def __init__(self, prompt_disambiguation: Optional[PromptCallback] = None) -> None:
        self.prompt_disambiguation = prompt_disambiguation

    def resolve(
        self,
        records: Sequence[TrackRecord],
        query: FilterQuery,
        exact_only: bool = False,
    ) -> Resolution:
        records = list(records)
        if query.is_empty():
            return Resolution(status=ResolutionStatus.EXACT, tracks=tuple(records))

        tracks = exact_match(records, query)
        if tracks:
            logger.debug(f"Exact match: {len(tracks)} tracks for {query.describe()}")
            return Resolution(status=ResolutionStatus.EXACT, tracks=tuple(tracks))

        if exact_only:
            logger.info(f"No exact matches for {query.describe()}")
            return Resolution(status=ResolutionStatus.NO_MATCH)

        field = query.active_fields()[0]
        typed = query.values(field)
        candidates = distinct_values(substring_match(records, field, typed), field, typed)
        logger.debug(f"Fallback on {field}: {len(candidates)} candidate(s)")

        if not candidates:
            logger.info(f"No matches for {query.describe()}")
            return Resolution(status=ResolutionStatus.NO_MATCH, field=field)

        if len(candidates) == 1:
            logger.info(f"No exact {field} match, using '{candidates[0]}'")
            return self._rerun(
                records, query, field, candidates, candidates, ResolutionStatus.AUTO_RESOLVED
            )

        if self.prompt_disambiguation is None:
            return Resolution(
                status=ResolutionStatus.AMBIGUOUS, field=field, candidates=tuple(candidates)
            )

        chosen = [c.strip() for c in self.prompt_disambiguation(candidates) if c and c.strip()]
        if not chosen:
            logger.info("No selection made")
            return Resolution(
                status=ResolutionStatus.CANCELLED, field=field, candidates=tuple(candidates)
            )
        return self._rerun(
            records, query, field, candidates, chosen, ResolutionStatus.DISAMBIGUATED
        )

    @staticmethod
    def _rerun(
        records: Sequence[TrackRecord],
        query: FilterQuery,
        field: str,
        candidates: Sequence[str],
        chosen: Sequence[str],
        status: ResolutionStatus,
    ) -> Resolution:
        tracks = exact_match(records, query.with_field(field, chosen))
        return Resolution(
            status=status if tracks else ResolutionStatus.NO_MATCH,
            tracks=tuple(tracks),
            field=field,
            candidates=tuple(candidates),
            chosen=tuple(chosen),
        )


def resolve(
    records: Sequence[TrackRecord],
    query: FilterQuery,
    exact_only: bool = False,
    prompt_disambiguation: Optional[PromptCallback] = None,
) -> Resolution:
    return FilterResolver(prompt_disambiguation).resolve(records, query, exact_only)
