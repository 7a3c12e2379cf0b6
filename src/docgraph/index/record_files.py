"""Fixed-width binary record files backing the document index.

Binary formats (all little-endian, no header):

    list    20-byte packed shas, one per record, in append order
    map     (uint32, uint32) id pairs
    filter  uint32 ids

Records are only ever appended between compactions, so a file may hold
duplicates; readers must tolerate them.
"""

import struct
from pathlib import Path
from typing import Any, Iterable, List, Optional, Tuple

from ..errors import IndexCorruptionError


class RecordFile:
    """Reads and writes a sequence of struct-packed records."""

    FORMAT = "<I"

    def __init__(self):
        self._struct = struct.Struct(self.FORMAT)

    @property
    def record_size(self) -> int:
        return self._struct.size

    def encode(self, record: Any) -> bytes:
        return self._struct.pack(record)

    def decode(self, values: Tuple) -> Any:
        return values[0]

    def pack(self, records: Iterable[Any]) -> bytes:
        return b"".join(self.encode(record) for record in records)

    def unpack(self, data: bytes, source: Optional[Path] = None) -> List[Any]:
        if len(data) % self.record_size:
            raise IndexCorruptionError(
                f"Corrupted index file {source or '<memory>'}: "
                f"{len(data)} bytes is not a multiple of {self.record_size}"
            )
        return [self.decode(values) for values in self._struct.iter_unpack(data)]

    def read(self, path: Path) -> List[Any]:
        """Return all records in path ([] if the file does not exist)."""
        if not path.exists():
            return []
        return self.unpack(path.read_bytes(), path)

    def append(self, path: Path, records: List[Any]) -> None:
        """Append records to path, creating it (and its directory) if needed."""
        if not records:
            return
        data = self.pack(records)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "ab") as f:
            f.write(data)

    def write(self, path: Path, records: Iterable[Any]) -> None:
        """Replace the content of path with records."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            f.write(self.pack(records))


class ShaListFile(RecordFile):
    """Hex shas packed as 20 raw bytes."""

    FORMAT = "<20s"

    def encode(self, record: str) -> bytes:
        if len(record) != 40:
            raise ValueError(f"List records must be 40-character hex shas: {record!r}")
        return self._struct.pack(bytes.fromhex(record))

    def decode(self, values: Tuple) -> str:
        return values[0].hex()


class IdFile(RecordFile):
    """Unsigned 32-bit ids."""

    FORMAT = "<I"


class IdPairFile(RecordFile):
    """(id, next id) pairs."""

    FORMAT = "<II"

    def encode(self, record: Tuple[int, int]) -> bytes:
        return self._struct.pack(*record)

    def decode(self, values: Tuple) -> Tuple[int, int]:
        return values[0], values[1]


SHA_LIST = ShaListFile()
ID_LIST = IdFile()
ID_PAIRS = IdPairFile()


def read_head(path: Path) -> Optional[str]:
    """Return the sha stored in a head file, or None."""
    if not path.exists():
        return None
    sha = path.read_text(encoding="ascii").strip()
    return sha or None


def write_head(path: Path, sha: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(sha, encoding="ascii")
