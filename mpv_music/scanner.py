"""
Library Scanner

Walks the configured roots and yields regular files whose extension
(case-insensitive) is in the active filter set. ``map_files`` runs one
unit of work per file, either on a bounded thread pool or strictly in
order on the calling thread (serial mode, for spinning disks).

Results are always returned in traversal order: workers never share
per-file state, and only the calling thread writes the results list.
"""

from __future__ import annotations

import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, Collection, Iterable, Iterator, Optional, Sequence, TypeVar

from loguru import logger

from .metadata import extension_of

T = TypeVar("T")
R = TypeVar("R")

ProgressCallback = Callable[[int, int, str], None]


def default_workers() -> int:
    return max(1, os.cpu_count() or 2)


def _usable_root(root: Path) -> bool:
    if not root.exists():
        logger.warning(f"Configured music directory does not exist, skipping: {root}")
        return False
    if not root.is_dir():
        logger.warning(f"Configured music path is not a directory, skipping: {root}")
        return False
    return True


def _utf8_name(path: Path) -> bool:
    """The index is UTF-8 JSON; undecodable file names cannot be stored."""
    try:
        str(path).encode("utf-8")
    except UnicodeEncodeError:
        logger.warning(f"Skipping file with a non-UTF-8 name: {os.fsencode(path)!r}")
        return False
    return True


def walk_root(root: Path, ext_filter: Collection[str]) -> list[Path]:
    """All matching regular files under ``root``, in sorted traversal order."""
    root = Path(root)
    if not _usable_root(root):
        return []

    found: list[Path] = []

    def _on_error(exc: OSError) -> None:
        logger.warning(f"Cannot read directory {exc.filename}: {exc.strerror}")

    for dirpath, dirnames, filenames in os.walk(root, onerror=_on_error):
        dirnames.sort()
        for name in sorted(filenames):
            candidate = Path(dirpath) / name
            if extension_of(candidate) not in ext_filter:
                continue
            if not candidate.is_file():
                continue
            if not _utf8_name(candidate):
                continue
            found.append(candidate)

    logger.debug(f"Walked {root}: {len(found)} matching files")
    return found


def iter_media_files(roots: Iterable[Path], ext_filter: Collection[str]) -> Iterator[Path]:
    """Lazily yield matching files root by root."""
    for root in roots:
        yield from walk_root(Path(root), ext_filter)


def scan(
    roots: Sequence[Path],
    ext_filter: Collection[str],
    parallel: bool = False,
    workers: Optional[int] = None,
) -> list[Path]:
    """
    Collect every matching file under ``roots``.

    The full list is materialised up front so callers know the total
    before extraction starts. With ``parallel`` each root is walked on its
    own worker; output order is still root order, then sorted path order.
    A path reachable from two overlapping roots is returned once.
    """
    ext_filter = {e.lower() for e in ext_filter}
    roots = [Path(r) for r in roots]
    if not roots:
        logger.warning("Scan aborted: no music directories configured.")
        return []

    if parallel and len(roots) > 1:
        per_root = map_files(
            lambda root: walk_root(root, ext_filter),
            roots,
            parallel=True,
            workers=min(len(roots), workers or default_workers()),
        )
    else:
        per_root = [walk_root(root, ext_filter) for root in roots]

    seen: set[str] = set()
    files: list[Path] = []
    for batch in per_root:
        for path in batch:
            key = str(path)
            if key not in seen:
                seen.add(key)
                files.append(path)

    logger.info(f"Scan found {len(files)} media files in {len(roots)} director(ies)")
    return files


def map_files(
    func: Callable[[T], R],
    items: Sequence[T],
    parallel: bool = False,
    workers: Optional[int] = None,
    progress: Optional[ProgressCallback] = None,
    label: Callable[[T], str] = lambda item: Path(str(item)).name,
) -> list[R]:
    """
    Apply ``func`` to every item and return results in input order.

    Parallel mode uses a bounded thread pool; serial mode runs on the
    calling thread. On interruption pending work is cancelled and the
    exception propagates, so callers never commit partial output.
    """
    total = len(items)
    results: list[Optional[R]] = [None] * total
    if total == 0:
        return []

    if not parallel:
        for done, item in enumerate(items, start=1):
            results[done - 1] = func(item)
            if progress:
                progress(done, total, label(item))
        return results  # type: ignore[return-value]

    pool_size = max(1, min(workers or default_workers(), total))
    executor = ThreadPoolExecutor(max_workers=pool_size, thread_name_prefix="scan")
    try:
        futures = {executor.submit(func, item): i for i, item in enumerate(items)}
        for done, future in enumerate(as_completed(futures), start=1):
            i = futures[future]
            results[i] = future.result()
            if progress:
                progress(done, total, label(items[i]))
    except BaseException:
        executor.shutdown(wait=False, cancel_futures=True)
        raise
    executor.shutdown(wait=True)
    return results  # type: ignore[return-value]
