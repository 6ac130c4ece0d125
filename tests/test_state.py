import hashlib
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

import pytest

from bucket_sync.core.exceptions import CacheCorruptionError
from bucket_sync.core.state import StateStore, last_modified_millis


def set_mtime_ms(path, ms):
    ns = ms * 1_000_000
    os.utime(path, ns=(ns, ns))


def test_missing_state_file_is_empty(tmp_path):
    state = StateStore.open(tmp_path / "state.txt")
    assert len(state) == 0
    assert state.entries() == []


def test_cached_hash_returned_without_reading_file(tmp_path, make_file):
    path = make_file("a.txt")
    set_mtime_ms(path, 1700000000000)
    state_file = tmp_path / "state.txt"
    state_file.write_text(f"{path}\t1700000000000\tdeadbeef\n", encoding="utf-8")

    hasher = MagicMock(return_value="cafebabe")
    state = StateStore.open(state_file, hasher=hasher)

    assert state.hash_for(path) == "deadbeef"
    hasher.assert_not_called()


def test_changed_mtime_forces_rehash(tmp_path, make_file):
    path = make_file("a.txt", b"new content")
    set_mtime_ms(path, 1700000005000)
    state_file = tmp_path / "state.txt"
    state_file.write_text(f"{path}\t1700000000000\tdeadbeef\n", encoding="utf-8")

    state = StateStore.open(state_file)

    expected = hashlib.sha1(b"new content").hexdigest()
    assert state.hash_for(path) == expected
    entry = state.get(path)
    assert entry.last_modified == 1700000005000
    assert entry.content_hash == expected


def test_non_positive_mtime_always_rehashes(tmp_path, make_file, caplog):
    path = make_file("epoch.txt")
    set_mtime_ms(path, 0)
    state_file = tmp_path / "state.txt"
    state_file.write_text(f"{path}\t0\tdeadbeef\n", encoding="utf-8")

    hasher = MagicMock(return_value="cafebabe")
    state = StateStore.open(state_file, hasher=hasher)

    with caplog.at_level(logging.WARNING):
        assert state.hash_for(path) == "cafebabe"
        assert state.hash_for(path) == "cafebabe"

    assert hasher.call_count == 2
    assert state.get(path).content_hash == "deadbeef"
    assert "invalid last modified time" in caplog.text


def test_round_trip_preserves_entries(tmp_path, make_file):
    state_file = tmp_path / "state.txt"
    paths = [make_file(f"dir/file{i}.bin", bytes([i]) * 10) for i in range(5)]

    with StateStore.open(state_file) as state:
        for path in paths:
            state.hash_for(path)
        written = {(e.file_path, e.last_modified, e.content_hash) for e in state.entries()}

    reopened = StateStore.open(state_file)
    assert {(e.file_path, e.last_modified, e.content_hash) for e in reopened.entries()} == written
    assert len(written) == 5


def test_persisted_format_is_tab_separated(tmp_path, make_file):
    path = make_file("a.txt", b"abc")
    state_file = tmp_path / "state.txt"

    with StateStore.open(state_file) as state:
        state.hash_for(path)

    lines = state_file.read_text(encoding="utf-8").splitlines()
    assert lines == [f"{path}\t{last_modified_millis(path)}\t{hashlib.sha1(b'abc').hexdigest()}"]


def test_close_rewrites_instead_of_appending(tmp_path, make_file):
    path = make_file("a.txt")
    state_file = tmp_path / "state.txt"

    for _ in range(3):
        with StateStore.open(state_file) as state:
            state.hash_for(path)

    assert len(state_file.read_text(encoding="utf-8").splitlines()) == 1


def test_failed_rename_keeps_previous_snapshot(tmp_path, make_file, monkeypatch):
    path = make_file("a.txt")
    state_file = tmp_path / "state.txt"
    original = "old.txt\t1700000000000\tdeadbeef\n"
    state_file.write_text(original, encoding="utf-8")

    state = StateStore.open(state_file)
    state.hash_for(path)

    def crash(src, dst):
        raise OSError("killed before rename")

    monkeypatch.setattr("bucket_sync.core.state.os.replace", crash)
    with pytest.raises(OSError):
        state.close()
    monkeypatch.undo()

    assert state_file.read_text(encoding="utf-8") == original
    assert list(tmp_path.glob(".bucket-sync-*")) == []
    reopened = StateStore.open(state_file)
    assert reopened.get("old.txt").content_hash == "deadbeef"


def test_leftover_temp_file_does_not_affect_next_open(tmp_path):
    state_file = tmp_path / "state.txt"
    state_file.write_text("a.txt\t1700000000000\tdeadbeef\n", encoding="utf-8")
    (tmp_path / ".bucket-sync-abc.tmp").write_text("a.txt\t1\tpartial\n", encoding="utf-8")

    state = StateStore.open(state_file)
    assert state.get("a.txt").content_hash == "deadbeef"


def test_malformed_lines_are_skipped(tmp_path, caplog):
    state_file = tmp_path / "state.txt"
    state_file.write_text(
        "good.txt\t1700000000000\tdeadbeef\n"
        "no-fields\n"
        "bad-ts.txt\tyesterday\tdeadbeef\n"
        "\n",
        encoding="utf-8",
    )

    with caplog.at_level(logging.WARNING):
        state = StateStore.open(state_file)

    assert len(state) == 1
    assert "good.txt" in state
    assert "malformed" in caplog.text


def test_malformed_lines_fail_in_strict_mode(tmp_path):
    state_file = tmp_path / "state.txt"
    state_file.write_text("good.txt\t1\tdeadbeef\nbroken\n", encoding="utf-8")

    with pytest.raises(CacheCorruptionError) as exc_info:
        StateStore.open(state_file, strict=True)
    assert exc_info.value.line_number == 2


def test_path_with_tab_is_never_cached(tmp_path, make_file):
    path = make_file("tab\tname.txt", b"x")
    state = StateStore.open(tmp_path / "state.txt")

    assert state.hash_for(path) == hashlib.sha1(b"x").hexdigest()
    assert path not in state


def test_concurrent_updates_keep_every_entry(tmp_path, make_file):
    paths = [make_file(f"f{i}.txt", str(i).encode()) for i in range(50)]
    state = StateStore.open(tmp_path / "state.txt")

    with ThreadPoolExecutor(max_workers=8) as executor:
        hashes = list(executor.map(state.hash_for, paths))

    assert len(state) == 50
    assert hashes == [hashlib.sha1(str(i).encode()).hexdigest() for i in range(50)]


def test_close_is_idempotent(tmp_path, make_file):
    state_file = tmp_path / "state.txt"
    state = StateStore.open(state_file)
    state.hash_for(make_file("a.txt"))
    state.close()
    state_file.write_text("", encoding="utf-8")
    state.close()

    assert state_file.read_text(encoding="utf-8") == ""


def test_missing_file_raises(tmp_path):
    state = StateStore.open(tmp_path / "state.txt")
    with pytest.raises(FileNotFoundError):
        state.hash_for(str(tmp_path / "nope.txt"))


def test_undecodable_line_is_skipped(tmp_path, caplog):
    state_file = tmp_path / "state.txt"
    state_file.write_bytes(b"good.txt\t1700000000000\tdeadbeef\nbad\xff.txt\t1\tab\n")

    with caplog.at_level(logging.WARNING):
        state = StateStore.open(state_file)

    assert len(state) == 1
    assert state.get("good.txt").content_hash == "deadbeef"
    assert "malformed" in caplog.text


def test_undecodable_line_fails_in_strict_mode(tmp_path):
    state_file = tmp_path / "state.txt"
    state_file.write_bytes(b"good.txt\t1700000000000\tdeadbeef\nbad\xff.txt\t1\tab\n")

    with pytest.raises(CacheCorruptionError) as exc_info:
        StateStore.open(state_file, strict=True)
    assert exc_info.value.line_number == 2


@pytest.mark.skipif(os.name == "nt", reason="POSIX permission bits")
def test_close_keeps_state_file_permissions(tmp_path, make_file):
    state_file = tmp_path / "state.txt"
    state_file.write_text("", encoding="utf-8")
    os.chmod(state_file, 0o640)

    with StateStore.open(state_file) as state:
        state.hash_for(make_file("a.txt"))

    assert os.stat(state_file).st_mode & 0o777 == 0o640
    assert "a.txt" in state_file.read_text(encoding="utf-8")
