"""
mpv-music-index: index a local music library and play filtered selections in mpv.

Usage:
    mpv-music-index                           # heal/build the index, pick from everything
    mpv-music-index -a ado -p                 # play every track by Ado
    mpv-music-index -g "rock, metal"          # rock OR metal, then pick tracks
    mpv-music-index -a daft -b discovery      # artist AND album
    mpv-music-index -l "road trip"            # play a saved playlist
    mpv-music-index --add-dir ~/Downloads/music
    mpv-music-index -r                        # refresh the index (incremental)
    mpv-music-index --reindex --parallel      # full rebuild on all cores
    mpv-music-index ~/Music/new-album -p      # play a directory without indexing it
"""

from __future__ import annotations

import argparse
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Optional, Sequence

from loguru import logger

from . import __version__
from .config import (
    LOG_FILENAME,
    ConfigError,
    LibraryConfig,
    add_root,
    data_dir,
    load_config,
    remove_root,
    save_config,
)
from .filters import ResolutionStatus, find_playlists, resolve
from .healer import ensure_index_integrity
from .index_store import IndexStore
from .models import FilterQuery, TrackRecord
from .updater import LibraryIndexer

PLAYLIST_FILENAME = "last-selection.m3u"

# ── terminal helpers ──────────────────────────────────────────────────────────

CYAN   = "\033[0;36m"
YELLOW = "\033[1;33m"
BOLD   = "\033[1m"
DIM    = "\033[2m"
NC     = "\033[0m"


class TerminalProgress:
    """One-line progress bar on stderr, redrawn in place."""

    def __init__(self, stream=None) -> None:
        self.stream = stream or sys.stderr
        self.drawn = False

    def __call__(self, done: int, total: int, label: str) -> None:
        width = shutil.get_terminal_size((80, 20)).columns
        pct = done / total if total else 0
        bar_width = max(10, min(30, width - 50))
        filled = int(bar_width * pct)
        bar = "█" * filled + "░" * (bar_width - filled)

        max_label = max(0, width - bar_width - 24)
        if len(label) > max_label:
            label = label[:max(0, max_label - 1)] + "…"

        self.stream.write(
            f"\033[2K\r{CYAN}[{bar}]{NC} {BOLD}{done}/{total}{NC} "
            f"({pct*100:.0f}%) {DIM}{label}{NC}"
        )
        self.stream.flush()
        self.drawn = True

    def clear(self) -> None:
        if self.drawn:
            self.stream.write("\033[2K\r")
            self.stream.flush()
            self.drawn = False


def _interactive() -> bool:
    return sys.stdin.isatty() and sys.stderr.isatty()


def _parse_selection(answer: str, count: int) -> list[int]:
    """``"1,3 5-7"`` → zero-based indices; ``"a"`` selects all."""
    answer = answer.strip().lower()
    if answer in ("a", "all", "*"):
        return list(range(count))
    picked: list[int] = []
    for token in answer.replace(",", " ").split():
        if "-" in token:
            start, _, end = token.partition("-")
            if not (start.isdigit() and end.isdigit()):
                continue
            numbers = range(int(start), int(end) + 1)
        elif token.isdigit():
            numbers = range(int(token), int(token) + 1)
        else:
            continue
        for n in numbers:
            if 1 <= n <= count and n - 1 not in picked:
                picked.append(n - 1)
    return picked


def choose(labels: Sequence[str], heading: str) -> list[int]:
    """Numbered stdin picker. Returns the chosen indices (empty = cancelled)."""
    out = sys.stderr
    out.write(f"\n{BOLD}{heading}{NC}\n")
    for i, label in enumerate(labels, start=1):
        out.write(f"  {CYAN}{i:>3}{NC}  {label}\n")
    out.write(f"{DIM}Numbers or ranges (1,3 5-7), 'a' for all, Enter to cancel:{NC} ")
    out.flush()
    try:
        answer = input()
    except EOFError:
        return []
    return _parse_selection(answer, len(labels))


def prompt_disambiguation(candidates: Sequence[str]) -> list[str]:
    picked = choose(candidates, f"{len(candidates)} possible matches:")
    return [candidates[i] for i in picked]


def launch_player(paths: Sequence[str], player: str = "mpv") -> int:
    """Write the selection as an m3u playlist and hand it to mpv."""
    playable = [p for p in paths if "\n" not in p and "\r" not in p]
    if len(playable) < len(paths):
        logger.warning(
            f"Skipping {len(paths) - len(playable)} file(s) with line breaks in the name"
        )
    if not playable:
        logger.error("Nothing left to play")
        return 1
    paths = playable
    playlist = data_dir() / PLAYLIST_FILENAME
    playlist.parent.mkdir(parents=True, exist_ok=True)
    playlist.write_text("\n".join(paths) + "\n", encoding="utf-8")
    logger.info(f"Launching {player} with {len(paths)} tracks")
    try:
        result = subprocess.run([player, f"--playlist={playlist}"], check=False)
    except FileNotFoundError:
        logger.error(f"'{player}' not found, install it or add it to PATH")
        return 1
    return result.returncode


# ── logging ───────────────────────────────────────────────────────────────────

def configure_logging(verbose: int = 0, debug: bool = False) -> None:
    logger.remove()
    if debug or verbose >= 2:
        level = "DEBUG"
    elif verbose == 1:
        level = "INFO"
    else:
        level = "WARNING"
    logger.add(sys.stderr, level=level, format="<level>{level: <8}</level> {message}")


def configure_file_logging(config: LibraryConfig) -> Optional[int]:
    """Add a size-rotated debug log under the data directory, if enabled."""
    if not config.enable_file_logging or config.log_max_size_kb <= 0:
        return None
    path = data_dir() / LOG_FILENAME
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.warning(f"File logging disabled, cannot create {path.parent}: {exc}")
        return None
    return logger.add(
        path,
        level="DEBUG",
        rotation=config.log_max_size_kb * 1024,
        retention=1,
        encoding="utf-8",
    )


# ── argument parsing ──────────────────────────────────────────────────────────

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mpv-music-index",
        description="Index a local music library and play filtered selections in mpv.",
    )
    parser.add_argument("target", nargs="?", type=Path,
                        help="Play this directory directly (scanned in memory, not indexed)")

    index = parser.add_argument_group("index")
    index.add_argument("--reindex", action="store_true",
                       help="Rebuild the index from scratch")
    index.add_argument("-r", "--refresh-index", action="store_true",
                       help="Update the index, re-reading only new or changed files")
    index.add_argument("--add-dir", nargs="+", metavar="PATH", default=[],
                       help="Add library directories (then update the index)")
    index.add_argument("--remove-dir", nargs="+", metavar="PATH", default=[],
                       help="Remove library directories (then update the index)")

    mode = index.add_mutually_exclusive_group()
    mode.add_argument("--serial", action="store_true",
                      help="Scan one file at a time (best for spinning disks)")
    mode.add_argument("--parallel", action="store_true",
                      help="Scan on all cores (best for SSDs)")
    index.add_argument("--video-ok", action="store_true",
                       help="Include video files")
    index.add_argument("-e", "--ext", metavar="EXT1,EXT2",
                       help="Only these extensions for this run")

    filters = parser.add_argument_group("filters (comma-separated values are alternatives)")
    filters.add_argument("-g", "--genre", help="Genre(s)")
    filters.add_argument("-a", "--artist", help="Artist(s)")
    filters.add_argument("-b", "--album", help="Album(s)")
    filters.add_argument("-t", "--title", help="Title(s)")
    filters.add_argument("-l", "--playlist", metavar="NAME",
                         help="Play the playlist whose name contains NAME")
    filters.add_argument("--exact-only", action="store_true",
                         help="Never fall back to partial matches")
    filters.add_argument("-p", "--play-all", action="store_true",
                         help="Play every match without asking")

    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="More output (-v info, -vv debug)")
    parser.add_argument("-d", "--debug", action="store_true",
                        help="Debug logging")
    return parser


def _runtime_config(base: LibraryConfig, args: argparse.Namespace) -> LibraryConfig:
    serial_mode = True if args.serial else False if args.parallel else None
    return base.with_overrides(
        serial_mode=serial_mode,
        video_ok=True if args.video_ok else None,
        custom_exts=args.ext,
    )


def _wants_playback(args: argparse.Namespace) -> bool:
    managing = args.add_dir or args.remove_dir or args.reindex or args.refresh_index
    filtering = any((args.genre, args.artist, args.album, args.title, args.playlist))
    return bool(args.target or filtering or not managing)


# ── main ──────────────────────────────────────────────────────────────────────

def _select_tracks(
    records: list[TrackRecord], args: argparse.Namespace, interactive: bool
) -> Optional[list[TrackRecord]]:
    if args.playlist:
        playlists = find_playlists(records, args.playlist)
        if not playlists:
            logger.error(f"No playlist matching '{args.playlist}'")
            return None
        return playlists

    query = FilterQuery.from_cli(args.genre, args.artist, args.album, args.title)
    resolution = resolve(
        records,
        query,
        exact_only=args.exact_only,
        prompt_disambiguation=prompt_disambiguation if interactive else None,
    )

    if resolution.status is ResolutionStatus.AMBIGUOUS:
        logger.error(
            f"'{', '.join(query.values(resolution.field))}' is ambiguous for "
            f"{resolution.field}: {', '.join(resolution.candidates)}"
        )
        return None
    if resolution.status is ResolutionStatus.CANCELLED:
        logger.warning("No selection made")
        return None
    if not resolution.matched:
        logger.error(f"No matches for {query.describe()}")
        return None
    return list(resolution.tracks)


def _narrow(tracks: list[TrackRecord], args: argparse.Namespace, interactive: bool) -> list[TrackRecord]:
    if args.play_all or len(tracks) <= 1 or not interactive:
        return tracks
    picked = choose([t.display_label() for t in tracks], f"{len(tracks)} tracks:")
    return [tracks[i] for i in picked]


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose, args.debug)

    try:
        base = load_config()
    except ConfigError as exc:
        logger.error(str(exc))
        return 1
    configure_file_logging(base)
    logger.debug(f"mpv-music {__version__}, args: {vars(args)}")

    interactive = _interactive()
    progress = TerminalProgress() if sys.stderr.isatty() else None
    store = IndexStore()

    try:
        # ── directory management ─────────────────────────────────────────────
        changed = False
        for path in args.add_dir:
            base, added = add_root(base, path)
            changed = changed or added
        for path in args.remove_dir:
            base, removed = remove_root(base, path)
            changed = changed or removed
        if changed:
            save_config(base)

        indexer = LibraryIndexer(_runtime_config(base, args), store, progress=progress)

        # ── ad-hoc directory ─────────────────────────────────────────────────
        if args.target:
            records = indexer.session_index(args.target)
            if progress:
                progress.clear()
            if not records:
                logger.error(f"Nothing to play in {args.target}")
                return 1
        else:
            # ── index maintenance ────────────────────────────────────────────
            if args.reindex:
                stats = indexer.rebuild()
                indexed = True
            else:
                report = ensure_index_integrity(indexer)
                stats = report.stats
                indexed = report.changed
                if (changed or args.refresh_index) and not report.changed:
                    stats = indexer.update()
                    indexed = True
            if progress:
                progress.clear()

            if indexed:
                base = base.refresh_root_mtimes()
                save_config(base)
                if stats is not None:
                    print(f"{BOLD}Index:{NC} {stats.summary()}", file=sys.stderr)
            elif base.drifted_roots():
                logger.warning(
                    "Library directories changed since the last index run, "
                    "use -r to refresh"
                )

            if not _wants_playback(args):
                return 0
            records = store.read_all()
            if not records:
                logger.error("The index is empty, add a directory with --add-dir")
                return 1

        tracks = _select_tracks(records, args, interactive)
        if not tracks:
            return 1
        tracks = _narrow(tracks, args, interactive)
        if not tracks:
            logger.warning("No selection made")
            return 1
        return launch_player([t.path for t in tracks])

    except KeyboardInterrupt:
        if progress:
            progress.clear()
        logger.warning("Interrupted, index left unchanged")
        return 130


if __name__ == "__main__":
    sys.exit(main())
