"""Unit tests for IndexRebuildLock."""

import fcntl
import os
import time
from pathlib import Path

import pytest

from docgraph.index.rebuild_lock import IndexRebuildLock


class TestLocking:
    def test_lock_file_is_created_lazily(self, tmp_path: Path):
        lock = IndexRebuildLock(tmp_path / "index")
        assert not (tmp_path / "index").exists()

        with lock.acquire_lock():
            assert lock.lock_file.exists()

    def test_exclusive_lock_blocks_other_holders(self, tmp_path: Path):
        lock = IndexRebuildLock(tmp_path)

        with lock.acquire_lock():
            with open(lock.lock_file, "r") as f:
                with pytest.raises(BlockingIOError):
                    fcntl.flock(f.fileno(), fcntl.LOCK_SH | fcntl.LOCK_NB)

    def test_shared_locks_coexist(self, tmp_path: Path):
        lock = IndexRebuildLock(tmp_path)

        with lock.acquire_lock(shared=True):
            with open(lock.lock_file, "r") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_SH | fcntl.LOCK_NB)
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)

    def test_lock_is_released_on_error(self, tmp_path: Path):
        lock = IndexRebuildLock(tmp_path)

        with pytest.raises(RuntimeError):
            with lock.acquire_lock():
                raise RuntimeError("boom")

        with open(lock.lock_file, "r") as f:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            fcntl.flock(f.fileno(), fcntl.LOCK_UN)


class TestAtomicWrites:
    def test_write_atomic_replaces_target(self, tmp_path: Path):
        lock = IndexRebuildLock(tmp_path)
        target = tmp_path / "list"
        target.write_bytes(b"old")

        lock.write_atomic(target, lambda tmp: tmp.write_bytes(b"new"))

        assert target.read_bytes() == b"new"
        assert not (tmp_path / "list.tmp").exists()

    def test_failed_build_leaves_target_untouched(self, tmp_path: Path):
        lock = IndexRebuildLock(tmp_path)
        target = tmp_path / "list"
        target.write_bytes(b"old")

        def build(tmp: Path) -> None:
            tmp.write_bytes(b"partial")
            raise OSError("disk full")

        with pytest.raises(OSError):
            lock.write_atomic(target, build)

        assert target.read_bytes() == b"old"
        assert not (tmp_path / "list.tmp").exists()

    def test_atomic_swap_requires_temp_file(self, tmp_path: Path):
        lock = IndexRebuildLock(tmp_path)
        with pytest.raises(FileNotFoundError):
            lock.atomic_swap(tmp_path / "missing.tmp", tmp_path / "list")


class TestCleanup:
    def test_removes_only_old_temp_files(self, tmp_path: Path):
        lock = IndexRebuildLock(tmp_path)
        old = tmp_path / "filter" / "tags" / "one.tmp"
        old.parent.mkdir(parents=True)
        old.write_bytes(b"")
        stale = time.time() - 7200
        os.utime(old, (stale, stale))
        fresh = tmp_path / "list.tmp"
        fresh.write_bytes(b"")

        assert lock.cleanup_orphaned_temp_files() == 1
        assert not old.exists()
        assert fresh.exists()

    def test_missing_directory(self, tmp_path: Path):
        assert IndexRebuildLock(tmp_path / "missing").cleanup_orphaned_temp_files() == 0
