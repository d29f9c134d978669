"""
Library Configuration

Immutable configuration value for the indexer: scan roots (each with its
last-seen modification time), extension sets, and scan mode flags.

Every change produces a new ``LibraryConfig``; nothing here mutates shared
state. Settings persist as ``settings.json`` in the config directory.

Environment:
    MPV_MUSIC_CONFIG_DIR   directory holding settings.json
                           (default: ~/.config/mpv-music)
    MPV_MUSIC_DATA_DIR     directory holding the index and log file
                           (default: same as the config directory)
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, FrozenSet, Iterable, Optional, Tuple

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_serializer, field_validator

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_AUDIO_EXTS: FrozenSet[str] = frozenset(
    "mp3 flac wav m4a aac ogg opus wma alac aiff amr".split()
)
DEFAULT_VIDEO_EXTS: FrozenSet[str] = frozenset(
    "mp4 mkv webm avi mov flv wmv mpeg mpg 3gp ts vob m4v".split()
)
DEFAULT_PLAYLIST_EXTS: FrozenSet[str] = frozenset("m3u m3u8 pls".split())

DEFAULT_PROBE_TIMEOUT = 2.0
SETTINGS_FILENAME = "settings.json"
LOG_FILENAME = "mpv-music.log"


class ConfigError(RuntimeError):
    """The settings file exists but cannot be parsed."""


def config_dir() -> Path:
    env_path = os.environ.get("MPV_MUSIC_CONFIG_DIR")
    if env_path:
        return Path(env_path).expanduser()
    return Path.home() / ".config" / "mpv-music"


def data_dir() -> Path:
    env_path = os.environ.get("MPV_MUSIC_DATA_DIR")
    if env_path:
        return Path(env_path).expanduser()
    return config_dir()


def parse_extensions(value: Any) -> FrozenSet[str]:
    """Normalise ``"mp3, .FLAC ogg"`` or ``["mp3", "flac"]`` to ``{"mp3", "flac", "ogg"}``."""
    if value is None:
        return frozenset()
    if isinstance(value, str):
        parts: Iterable[str] = value.replace(",", " ").split()
    else:
        parts = (str(v) for v in value)
    return frozenset(p.strip().lstrip(".").lower() for p in parts if p.strip().lstrip("."))


def path_mtime(path: Path) -> Optional[int]:
    try:
        return int(path.stat().st_mtime)
    except OSError:
        return None


def _default_roots() -> Tuple["DirectoryRoot", ...]:
    return (DirectoryRoot(path=Path.home() / "Music"),)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class DirectoryRoot(BaseModel):
    """A configured scan root with the modification time seen at the last index run."""

    model_config = ConfigDict(frozen=True)

    path: Path
    mtime: Optional[int] = None

    def current_mtime(self) -> Optional[int]:
        return path_mtime(self.path)

    def has_drifted(self) -> bool:
        current = self.current_mtime()
        return current is not None and current != self.mtime


class LibraryConfig(BaseModel):
    """Everything the scanner, extractor and updater need to know."""

    model_config = ConfigDict(frozen=True)

    roots: Tuple[DirectoryRoot, ...] = Field(default_factory=_default_roots)
    audio_exts: FrozenSet[str] = DEFAULT_AUDIO_EXTS
    video_exts: FrozenSet[str] = DEFAULT_VIDEO_EXTS
    playlist_exts: FrozenSet[str] = DEFAULT_PLAYLIST_EXTS
    video_ok: bool = False
    serial_mode: bool = True
    custom_exts: Optional[FrozenSet[str]] = Field(None, exclude=True)
    probe_timeout: float = Field(DEFAULT_PROBE_TIMEOUT, gt=0)
    workers: Optional[int] = Field(None, ge=1)
    enable_file_logging: bool = True
    log_max_size_kb: int = Field(1024, ge=0)

    @field_validator("audio_exts", "video_exts", "playlist_exts", mode="before")
    @classmethod
    def _normalise_exts(cls, v: Any) -> FrozenSet[str]:
        return parse_extensions(v)

    @field_validator("custom_exts", mode="before")
    @classmethod
    def _normalise_custom(cls, v: Any) -> Optional[FrozenSet[str]]:
        if v is None:
            return None
        exts = parse_extensions(v)
        return exts or None

    @field_serializer("audio_exts", "video_exts", "playlist_exts")
    def _sorted_exts(self, exts: FrozenSet[str]) -> list[str]:
        return sorted(exts)

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    def ext_filter(self) -> FrozenSet[str]:
        """Active extension set: override, else audio + playlist (+ video)."""
        if self.custom_exts:
            return self.custom_exts
        exts = self.audio_exts | self.playlist_exts
        if self.video_ok:
            exts = exts | self.video_exts
        return exts

    def root_paths(self) -> list[Path]:
        return [root.path for root in self.roots]

    def drifted_roots(self) -> list[DirectoryRoot]:
        """Roots whose directory mtime changed since it was last recorded."""
        return [root for root in self.roots if root.has_drifted()]

    # ------------------------------------------------------------------
    # Derivations (each returns a new config)
    # ------------------------------------------------------------------

    def with_overrides(self, **changes: Any) -> "LibraryConfig":
        """Apply per-invocation flags; ``None`` values are ignored."""
        changes = {k: v for k, v in changes.items() if v is not None}
        if not changes:
            return self
        data = self.model_dump()
        data["custom_exts"] = self.custom_exts
        data.update(changes)
        return LibraryConfig.model_validate(data)

    def with_roots(self, roots: Iterable[DirectoryRoot]) -> "LibraryConfig":
        data = self.model_dump()
        data["custom_exts"] = self.custom_exts
        data["roots"] = tuple(roots)
        return LibraryConfig.model_validate(data)

    def with_root_added(self, path: str | Path) -> Tuple["LibraryConfig", bool]:
        """Validate and append a scan root. Returns ``(config, changed)``."""
        candidate = Path(path).expanduser()
        if not candidate.exists():
            logger.warning(f"Path does not exist: {candidate}")
            return self, False
        if not candidate.is_dir():
            logger.warning(f"Path is not a directory: {candidate}")
            return self, False
        try:
            with os.scandir(candidate) as entries:
                next(entries, None)
        except OSError as exc:
            logger.warning(f"Cannot access {candidate}: {exc}")
            return self, False

        resolved = candidate.resolve()
        if resolved in self.root_paths():
            logger.info(f"Directory already configured: {resolved}")
            return self, False

        logger.info(f"Added library directory: {resolved}")
        return self.with_roots((*self.roots, DirectoryRoot(path=resolved))), True

    def with_root_removed(self, path: str | Path) -> Tuple["LibraryConfig", bool]:
        candidate = Path(path).expanduser()
        try:
            resolved = candidate.resolve()
        except OSError:
            resolved = candidate
        kept = [r for r in self.roots if r.path not in (resolved, candidate)]
        if len(kept) == len(self.roots):
            logger.info(f"Directory not found in config: {candidate}")
            return self, False
        logger.info(f"Removed library directory: {resolved}")
        return self.with_roots(kept), True

    def refresh_root_mtimes(self) -> "LibraryConfig":
        """Record each root's current directory mtime (after an index run)."""
        return self.with_roots(
            DirectoryRoot(path=r.path, mtime=r.current_mtime()) for r in self.roots
        )


def add_root(config: LibraryConfig, path: str | Path) -> Tuple[LibraryConfig, bool]:
    return config.with_root_added(path)


def remove_root(config: LibraryConfig, path: str | Path) -> Tuple[LibraryConfig, bool]:
    return config.with_root_removed(path)


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def settings_path() -> Path:
    return config_dir() / SETTINGS_FILENAME


def load_config(path: Optional[Path] = None) -> LibraryConfig:
    """Load settings, creating a default settings file on first run."""
    path = path or settings_path()
    if not path.exists():
        logger.info(f"Config not found, creating default at: {path}")
        config = LibraryConfig()
        save_config(config, path)
        return config

    logger.debug(f"Loading configuration from: {path}")
    try:
        return LibraryConfig.model_validate_json(path.read_text(encoding="utf-8"))
    except ValidationError as exc:
        raise ConfigError(f"Failed to parse {path}: {exc}") from exc


def save_config(config: LibraryConfig, path: Optional[Path] = None) -> None:
    """Atomically write ``config`` (temp file, then rename)."""
    path = path or settings_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    tmp.write_text(config.model_dump_json(indent=2), encoding="utf-8")
    tmp.replace(path)
    logger.debug(f"Configuration saved to {path}")
