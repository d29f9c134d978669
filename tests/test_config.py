"""Tests for the immutable library configuration and its persistence."""

import os
from pathlib import Path

import pytest

from mpv_music.config import (
    ConfigError,
    DirectoryRoot,
    LibraryConfig,
    config_dir,
    data_dir,
    load_config,
    parse_extensions,
    save_config,
    settings_path,
)


def make_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


class TestExtensions:
    def test_parse_extensions(self):
        assert parse_extensions("mp3, .FLAC  ogg") == {"mp3", "flac", "ogg"}
        assert parse_extensions([".M4A", "opus"]) == {"m4a", "opus"}
        assert parse_extensions(None) == frozenset()

    def test_default_filter_is_audio_and_playlists(self):
        exts = LibraryConfig().ext_filter()
        assert {"mp3", "flac", "m3u", "pls"} <= exts
        assert "mp4" not in exts

    def test_video_ok_adds_video(self):
        assert "mkv" in LibraryConfig(video_ok=True).ext_filter()

    def test_custom_override_replaces_everything(self):
        config = LibraryConfig(video_ok=True, custom_exts="FLAC, .mp3")
        assert config.ext_filter() == {"flac", "mp3"}

    def test_blank_override_is_ignored(self):
        assert LibraryConfig(custom_exts=" , ").custom_exts is None


class TestDerivations:
    def test_with_overrides_returns_new_value(self):
        base = LibraryConfig()
        changed = base.with_overrides(serial_mode=False, video_ok=None, custom_exts="opus")
        assert changed.serial_mode is False
        assert changed.custom_exts == {"opus"}
        assert base.serial_mode is True
        assert base.custom_exts is None

    def test_with_overrides_without_changes(self):
        base = LibraryConfig()
        assert base.with_overrides(serial_mode=None) is base

    def test_overrides_keep_custom_exts(self):
        config = LibraryConfig(custom_exts="flac").with_overrides(video_ok=True)
        assert config.ext_filter() == {"flac"}

    def test_config_is_frozen(self):
        with pytest.raises(Exception):
            LibraryConfig().video_ok = True

    def test_add_root(self, tmp_path):
        music = make_dir(tmp_path / "music")
        config, changed = LibraryConfig(roots=()).with_root_added(music)
        assert changed
        assert config.root_paths() == [music.resolve()]

    def test_add_root_deduplicates(self, tmp_path):
        music = make_dir(tmp_path / "music")
        config, _ = LibraryConfig(roots=()).with_root_added(music)
        again, changed = config.with_root_added(tmp_path / "music" / ".." / "music")
        assert not changed
        assert again is config

    def test_add_root_rejects_missing_and_files(self, tmp_path):
        file = tmp_path / "song.mp3"
        file.write_bytes(b"x")
        config = LibraryConfig(roots=())
        assert config.with_root_added(tmp_path / "nope") == (config, False)
        assert config.with_root_added(file) == (config, False)

    def test_remove_root(self, tmp_path):
        a = make_dir(tmp_path / "a")
        b = make_dir(tmp_path / "b")
        config, _ = LibraryConfig(roots=()).with_root_added(a)
        config, _ = config.with_root_added(b)
        config, changed = config.with_root_removed(a)
        assert changed
        assert config.root_paths() == [b.resolve()]

    def test_remove_unknown_root(self, tmp_path):
        config = LibraryConfig(roots=())
        assert config.with_root_removed(tmp_path) == (config, False)

    def test_refresh_root_mtimes_clears_drift(self, tmp_path):
        music = make_dir(tmp_path / "music")
        config = LibraryConfig(roots=(DirectoryRoot(path=music, mtime=1),))
        assert config.drifted_roots() == [config.roots[0]]
        refreshed = config.refresh_root_mtimes()
        assert refreshed.roots[0].mtime == int(os.stat(music).st_mtime)
        assert refreshed.drifted_roots() == []

    def test_missing_root_never_drifts(self, tmp_path):
        config = LibraryConfig(roots=(DirectoryRoot(path=tmp_path / "gone"),))
        assert config.drifted_roots() == []


class TestPersistence:
    def test_locations_from_environment(self, isolated_dirs):
        assert config_dir() == isolated_dirs / "config"
        assert data_dir() == isolated_dirs / "data"
        assert settings_path() == isolated_dirs / "config" / "settings.json"

    def test_data_dir_defaults_to_config_dir(self, monkeypatch, isolated_dirs):
        monkeypatch.delenv("MPV_MUSIC_DATA_DIR")
        assert data_dir() == isolated_dirs / "config"

    def test_first_load_creates_default(self):
        config = load_config()
        assert settings_path().exists()
        assert config.root_paths() == [Path.home() / "Music"]

    def test_round_trip(self, tmp_path):
        music = make_dir(tmp_path / "music")
        config = LibraryConfig(
            roots=(DirectoryRoot(path=music, mtime=123),),
            serial_mode=False,
            audio_exts="mp3 flac",
            custom_exts="opus",
        )
        save_config(config)
        loaded = load_config()
        assert loaded.roots == config.roots
        assert loaded.serial_mode is False
        assert loaded.audio_exts == {"mp3", "flac"}
        # one-shot overrides are never persisted
        assert loaded.custom_exts is None
        assert not settings_path().with_suffix(".tmp").exists()

    @pytest.mark.parametrize("content", ["{not json", '{"probe_timeout": -1}', '{"roots": 5}'])
    def test_unparseable_settings(self, content):
        path = settings_path()
        path.parent.mkdir(parents=True)
        path.write_text(content, encoding="utf-8")
        with pytest.raises(ConfigError):
            load_config()
