"""File locking and atomic file replacement for the document index.

Appending to index files is safe without coordination because duplicate
records never change query results. Compaction rewrites every file, so it
takes an exclusive lock while appenders take a shared one:

    1. Acquire exclusive lock (.index.lock)
    2. Build each file as <name>.tmp
    3. os.replace(<name>.tmp, <name>) (atomic on POSIX)
    4. Release lock

Readers never lock; they see either the old or the new file.
"""

import contextlib
import fcntl
import logging
import os
import shutil
import time
from pathlib import Path
from typing import Callable, Generator

logger = logging.getLogger(__name__)


class IndexRebuildLock:
    """Cross-process lock and atomic swap helper for one index directory."""

    def __init__(self, index_path: Path, lock_filename: str = ".index.lock"):
        self.index_path = Path(index_path)
        self.lock_file = self.index_path / lock_filename

    @contextlib.contextmanager
    def acquire_lock(self, shared: bool = False) -> Generator[None, None, None]:
        """Hold the index lock for the duration of the with-block.

        Args:
            shared: Take a shared (append) lock instead of an exclusive one
        """
        self.index_path.mkdir(parents=True, exist_ok=True)
        self.lock_file.touch(exist_ok=True)

        operation = fcntl.LOCK_SH if shared else fcntl.LOCK_EX
        with open(self.lock_file, "r") as lock_f:
            try:
                fcntl.flock(lock_f.fileno(), operation)
                logger.debug(
                    f"Acquired {'shared' if shared else 'exclusive'} index lock: {self.lock_file}"
                )
                yield
            finally:
                fcntl.flock(lock_f.fileno(), fcntl.LOCK_UN)
                logger.debug(f"Released index lock: {self.lock_file}")

    def atomic_swap(self, temp_file: Path, target_file: Path) -> None:
        """Atomically replace target_file with temp_file."""
        if not temp_file.exists():
            raise FileNotFoundError(f"Temp file does not exist: {temp_file}")

        os.replace(temp_file, target_file)
        logger.debug(f"Atomic swap: {temp_file} -> {target_file}")

    def write_atomic(self, target_file: Path, build_fn: Callable[[Path], None]) -> None:
        """Build target_file through a temp file and swap it in.

        The caller is expected to hold the exclusive lock.
        """
        target_file.parent.mkdir(parents=True, exist_ok=True)
        temp_file = Path(str(target_file) + ".tmp")
        try:
            build_fn(temp_file)
            self.atomic_swap(temp_file, target_file)
        except Exception:
            if temp_file.exists():
                temp_file.unlink()
                logger.debug(f"Cleaned up temp file after error: {temp_file}")
            raise

    def cleanup_orphaned_temp_files(self, age_threshold_seconds: int = 3600) -> int:
        """Remove .tmp files left behind by crashed rebuilds.

        Only files older than the threshold are removed so that a rebuild in
        progress is never disturbed.

        Returns:
            Number of temp files/directories removed
        """
        if not self.index_path.exists():
            return 0

        removed_count = 0
        current_time = time.time()

        for temp_path in self.index_path.rglob("*.tmp"):
            age = current_time - temp_path.stat().st_mtime
            if age <= age_threshold_seconds:
                continue
            try:
                if temp_path.is_dir():
                    shutil.rmtree(temp_path)
                else:
                    temp_path.unlink()
                removed_count += 1
                logger.info(f"Removed orphaned temp file (age: {age:.0f}s): {temp_path}")
            except OSError as e:
                logger.warning(f"Failed to remove orphaned temp path {temp_path}: {e}")

        return removed_count
