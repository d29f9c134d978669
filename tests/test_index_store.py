"""Tests for the JSONL index store: atomic writes, full validation, salvage."""

import json

import pytest

from mpv_music.index_store import IndexCorruptionError, IndexStore
from mpv_music.models import TrackRecord


def make_record(n: int, **overrides) -> TrackRecord:
    data = {
        "path": f"/music/track{n:02d}.mp3",
        "title": f"Track {n}",
        "artist": "Artist",
        "album": "Album",
        "genre": "Rock; Pop",
        "mtime": 1700000000 + n,
        "size": 1000 + n,
        "media_type": "audio",
    }
    data.update(overrides)
    return TrackRecord.model_validate(data)


def write_lines(store: IndexStore, lines) -> None:
    store.path.parent.mkdir(parents=True, exist_ok=True)
    store.path.write_text("".join(line + "\n" for line in lines), encoding="utf-8")


def write_damaged(store: IndexStore, records, old: bytes, new: bytes) -> None:
    """Write ``records`` and corrupt the raw bytes of the file in place."""
    store.write_all(records)
    raw = store.path.read_bytes()
    assert old in raw
    store.path.write_bytes(raw.replace(old, new, 1))


@pytest.fixture
def store(tmp_path):
    return IndexStore(tmp_path / "data" / "music_index.jsonl")


@pytest.fixture
def records():
    return [make_record(n) for n in range(5)]


class TestReadWrite:
    def test_round_trip(self, store, records):
        assert store.write_all(records) == 5
        assert store.read_all() == records

    def test_one_object_per_line(self, store, records):
        store.write_all(records)
        lines = store.path.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 5
        assert json.loads(lines[0])["path"] == "/music/track00.mp3"

    def test_no_temp_file_left(self, store, records):
        store.write_all(records)
        assert not store.path.with_suffix(".tmp").exists()

    def test_missing_file_reads_empty(self, store):
        assert not store.exists()
        assert store.read_all() == []

    def test_blank_lines_tolerated(self, store, records):
        write_lines(store, ["", records[0].to_json_line(), "   ", records[1].to_json_line()])
        assert store.read_all() == records[:2]
        assert store.validate()

    def test_write_empty(self, store):
        assert store.write_all([]) == 0
        assert store.exists()
        assert store.read_all() == []

    def test_read_map(self, store, records):
        store.write_all(records)
        assert set(store.read_map()) == {r.path for r in records}

    def test_corrupt_line_raises_on_read(self, store, records):
        write_lines(store, [records[0].to_json_line(), "{broken", records[1].to_json_line()])
        with pytest.raises(IndexCorruptionError) as info:
            store.read_all()
        assert info.value.line_number == 2


class TestAtomicWrite:
    def test_failure_mid_write_keeps_live_index(self, store, records):
        store.write_all(records)
        before = store.path.read_bytes()

        def exploding():
            yield records[0]
            raise OSError("disk full")

        with pytest.raises(OSError):
            store.write_all(exploding())
        assert store.path.read_bytes() == before
        assert not store.path.with_suffix(".tmp").exists()

    def test_interrupt_mid_write_keeps_live_index(self, store, records):
        store.write_all(records)
        before = store.path.read_bytes()

        def interrupted():
            yield records[0]
            raise KeyboardInterrupt

        with pytest.raises(KeyboardInterrupt):
            store.write_all(interrupted())
        assert store.path.read_bytes() == before
        assert not store.path.with_suffix(".tmp").exists()


class TestValidate:
    def test_missing_is_invalid(self, store):
        assert not store.validate()

    def test_empty_file_is_valid(self, store):
        write_lines(store, [])
        assert store.validate()

    def test_healthy(self, store, records):
        store.write_all(records)
        assert store.validate()

    def test_mid_file_corruption_detected(self, store, records):
        lines = [r.to_json_line() for r in records]
        lines.insert(2, '{"path": "/music/x.mp3", "title": ')
        write_lines(store, lines)
        assert not store.validate()

    def test_truncated_last_line_detected(self, store, records):
        lines = [r.to_json_line() for r in records]
        lines[-1] = lines[-1][:20]
        write_lines(store, lines)
        assert not store.validate()

    def test_missing_field_detected(self, store, records):
        partial = json.loads(records[0].to_json_line())
        del partial["genre"]
        write_lines(store, [records[1].to_json_line(), json.dumps(partial)])
        assert not store.validate()

    def test_null_field_detected(self, store, records):
        broken = json.loads(records[0].to_json_line())
        broken["artist"] = None
        write_lines(store, [json.dumps(broken), records[1].to_json_line()])
        assert not store.validate()

    def test_non_object_line_detected(self, store, records):
        write_lines(store, [records[0].to_json_line(), "[1, 2, 3]"])
        assert not store.validate()

    def test_duplicate_paths_detected(self, store, records):
        write_lines(store, [records[0].to_json_line(), records[0].to_json_line()])
        assert not store.validate()

    def test_invalid_utf8_mid_file_detected(self, store, records):
        write_damaged(store, records[:3], b'"Track 1"', b'"Track \xff\xfe1"')
        assert not store.validate()

    def test_string_numbers_are_valid(self, store, records):
        loose = json.loads(records[0].to_json_line())
        loose["mtime"] = str(loose["mtime"])
        loose["size"] = str(loose["size"])
        write_lines(store, [json.dumps(loose)])
        assert store.validate()
        assert store.read_all() == [records[0]]


class TestSalvage:
    def test_keeps_valid_lines(self, store, records):
        lines = [r.to_json_line() for r in records]
        lines.insert(3, "garbage")
        write_lines(store, lines)
        result = store.salvage()
        assert result.records == records
        assert result.bad_lines == [4]

    def test_first_record_wins_for_duplicate_paths(self, store, records):
        newer = make_record(0, title="Renamed")
        write_lines(store, [records[0].to_json_line(), newer.to_json_line()])
        result = store.salvage()
        assert result.records == [records[0]]
        assert result.duplicate_paths == 1

    def test_drops_line_with_invalid_utf8(self, store, records):
        write_damaged(store, records[:3], b'"Track 1"', b'"Track \xff\xfe1"')
        result = store.salvage()
        assert result.records == [records[0], records[2]]
        assert result.bad_lines == [2]

    def test_nothing_salvageable(self, store):
        write_lines(store, ["garbage", "{", "null"])
        result = store.salvage()
        assert result.records == []
        assert result.bad_lines == [1, 2, 3]

    def test_missing_file(self, store):
        assert store.salvage().records == []
