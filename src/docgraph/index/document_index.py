"""
Document index: integer ids, update map and attribute filters.

Directory layout:

    <index>/
    |- head              commit sha folded into the index last
    |- list              packed shas; a sha's position is its id
    |- map               (id, next id) pairs along update edges
    `- filter/
       `- <key>/<value>  ids of documents with that attribute value

Selecting the documents tagged 'important' among all issues:

    index = DocumentIndex(path)
    ids = index.select(index.filter("type", "issue"), all={"tags": ["important"]})
    shas = [index.sha_of(i) for i in ids]

The index is a cache derived from the stored associations. Every file may
contain duplicates (appends never check for them); results are deduplicated
when selected, and ``compact`` rewrites the files without them.
"""

import logging
import shutil
from collections import defaultdict
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union
from urllib.parse import quote, unquote

from ..errors import CircularAssociationError
from .rebuild_lock import IndexRebuildLock
from .record_files import ID_LIST, ID_PAIRS, SHA_LIST, read_head, write_head

logger = logging.getLogger(__name__)

Criteria = Optional[Mapping[str, Union[str, Sequence[str]]]]


def _dedupe(ids: Iterable[int]) -> List[int]:
    seen = set()
    result = []
    for i in ids:
        if i not in seen:
            seen.add(i)
            result.append(i)
    return result


def _intersect(left: Iterable[int], right: Iterable[int]) -> List[int]:
    """Ids of left (in order, without duplicates) that are also in right."""
    right_set = set(right)
    return _dedupe(i for i in left if i in right_set)


def _each_pair(criteria: Criteria) -> Iterable[Tuple[str, str]]:
    if not criteria:
        return
    for key, values in criteria.items():
        if isinstance(values, str):
            values = [values]
        for value in values:
            yield key, value


def quote_segment(segment: str) -> str:
    """Encode an attribute key or value as a single file name."""
    if not segment:
        raise ValueError("Index keys and values must not be empty")
    return quote(segment, safe="").replace(".", "%2E")


class DocumentIndex:
    """Append-friendly binary index of documents."""

    HEAD = "head"
    LIST = "list"
    MAP = "map"
    FILTER = "filter"

    def __init__(self, path: Path):
        self.path = Path(path)
        self.head_file = self.path / self.HEAD
        self.list_file = self.path / self.LIST
        self.map_file = self.path / self.MAP
        self.filter_dir = self.path / self.FILTER
        self.lock = IndexRebuildLock(self.path)
        self.reset()

    def reset(self) -> "DocumentIndex":
        """Drop everything held in memory, including unflushed appends."""
        self._list: Optional[List[str]] = None
        self._ids: Dict[str, int] = {}
        self._map: Optional[Dict[int, int]] = None
        self._filters: Dict[str, Dict[str, List[int]]] = defaultdict(dict)
        self._pending_list: List[str] = []
        self._pending_map: List[Tuple[int, int]] = []
        self._pending_filters: Dict[Tuple[str, str], List[int]] = defaultdict(list)
        return self

    def clear(self) -> "DocumentIndex":
        """Remove all index files and reset."""
        if self.path.exists():
            shutil.rmtree(self.path)
        return self.reset()

    #
    # head
    #

    def head(self) -> Optional[str]:
        """Return the commit recorded by the last flush, or None."""
        return read_head(self.head_file)

    #
    # list
    #

    @property
    def list(self) -> List[str]:
        if self._list is None:
            self._load_list()
        return self._list

    def _load_list(self) -> None:
        self._list = SHA_LIST.read(self.list_file)
        self._ids = {}
        for position, sha in enumerate(self._list):
            self._ids.setdefault(sha, position)

    def id_of(self, sha: str) -> int:
        """Return the id of sha, appending it to the list if it is new."""
        shas = self.list
        if sha in self._ids:
            return self._ids[sha]

        new_id = len(shas)
        shas.append(sha)
        self._ids[sha] = new_id
        self._pending_list.append(sha)
        return new_id

    def find_id(self, sha: str) -> Optional[int]:
        """Return the id of sha without appending it."""
        if self._list is None:
            self._load_list()
        return self._ids.get(sha)

    def sha_of(self, doc_id: int) -> str:
        return self.list[doc_id]

    #
    # map
    #

    @property
    def map(self) -> Dict[int, int]:
        if self._map is None:
            self._map = dict(ID_PAIRS.read(self.map_file))
        return self._map

    def put(self, doc_id: int, next_id: int) -> None:
        """Record that doc_id was updated to next_id."""
        self.map[doc_id] = next_id
        self._pending_map.append((doc_id, next_id))

    def resolve(self, doc_id: int) -> int:
        """Follow update entries from doc_id to the current id.

        Raises:
            CircularAssociationError: If the map contains a cycle
        """
        return self._resolve(self.map, self.list, doc_id)

    @staticmethod
    def _resolve(mapping: Dict[int, int], shas: List[str], doc_id: int) -> int:
        visited = [doc_id]
        seen = {doc_id}
        current = doc_id
        while current in mapping:
            current = mapping[current]
            visited.append(current)
            if current in seen:
                raise CircularAssociationError([shas[i] for i in visited])
            seen.add(current)
        return current

    #
    # filters
    #

    def _filter_path(self, key: str, value: str) -> Path:
        return self.filter_dir / quote_segment(key) / quote_segment(value)

    def _filter(self, key: str, value: str) -> List[int]:
        """Return the cached id list for key/value, reading it on a miss."""
        values = self._filters[key]
        if value not in values:
            values[value] = ID_LIST.read(self._filter_path(key, value))
        return values[value]

    def filter(self, key: str, value: str) -> List[int]:
        """Return the ids of documents with attribute key == value."""
        return list(self._filter(key, value))

    def add(self, key: str, value: str, doc_id: int) -> None:
        """Append doc_id to the key/value filter."""
        if not key or not value:
            raise ValueError("Index keys and values must not be empty")
        self._filter(key, value).append(doc_id)
        self._pending_filters[(key, value)].append(doc_id)

    def keys(self) -> List[str]:
        """Return every filter key, on disk or in memory."""
        keys = [key for key, values in self._filters.items() if any(values.values())]
        if self.filter_dir.exists():
            for key_dir in sorted(self.filter_dir.iterdir()):
                if key_dir.is_dir():
                    keys.append(unquote(key_dir.name))
        return list(dict.fromkeys(keys))

    def values(self, key: str) -> List[str]:
        """Return every value recorded for key."""
        values = [value for value, ids in self._filters.get(key, {}).items() if ids]
        key_dir = self.filter_dir / quote_segment(key)
        if key_dir.exists():
            for value_file in sorted(key_dir.iterdir()):
                if value_file.is_file() and not value_file.name.endswith(".tmp"):
                    values.append(unquote(value_file.name))
        return list(dict.fromkeys(values))

    def all(self, *keys: str) -> List[int]:
        """Return the ids that have any value for any of keys."""
        ids: List[int] = []
        for key in keys:
            for value in self.values(key):
                ids.extend(self._filter(key, value))
        return _dedupe(ids)

    #
    # queries
    #

    def select(
        self, basis: Iterable[int], all: Criteria = None, any: Criteria = None
    ) -> List[int]:
        """Filter basis ids by attribute criteria.

        Criteria map a key to a value or list of values. Every (key, value)
        pair in ``all`` must match; at least one pair in ``any`` must match.
        Ids keep the order of basis and are returned without duplicates.
        """
        result = _dedupe(basis)

        for key, value in _each_pair(all):
            result = _intersect(result, self._filter(key, value))
            if not result:
                return result

        if any:
            matches: List[int] = []
            for key, value in _each_pair(any):
                matches.extend(self._filter(key, value))
            result = _intersect(result, matches)

        return result

    def select_shas(
        self,
        basis: Iterable[int],
        all: Criteria = None,
        any: Criteria = None,
        current: bool = False,
    ) -> List[str]:
        """Like select, but returns shas.

        With current=True matches are mapped through updates to their current
        revisions, and a revision is kept only if it matches the criteria too.
        """
        ids = self.select(basis, all, any)
        if current:
            ids = self.select((self.resolve(i) for i in ids), all, any)
        return [self.sha_of(i) for i in ids]

    #
    # persistence
    #

    def is_dirty(self) -> bool:
        return bool(self._pending_list or self._pending_map or self._pending_filters)

    def flush(self, head: Optional[str] = None) -> "DocumentIndex":
        """Append pending records to disk and optionally record head."""
        if not self.is_dirty() and head is None:
            return self

        with self.lock.acquire_lock(shared=True):
            SHA_LIST.append(self.list_file, self._pending_list)
            ID_PAIRS.append(self.map_file, self._pending_map)
            for (key, value), ids in self._pending_filters.items():
                ID_LIST.append(self._filter_path(key, value), ids)
            if head is not None:
                write_head(self.head_file, head)

        logger.debug(
            f"Flushed index {self.path}: {len(self._pending_list)} shas, "
            f"{len(self._pending_map)} map entries, {len(self._pending_filters)} filters"
        )

        self._pending_list = []
        self._pending_map = []
        self._pending_filters = defaultdict(list)
        return self

    def compact(self) -> "DocumentIndex":
        """Rewrite all index files without duplicates.

        Shas keep the order of their first appearance. Map and filter ids
        are remapped to the new ids and the map is checked for cycles before
        anything is replaced.

        Raises:
            CircularAssociationError: If the map contains a cycle
        """
        self.flush()

        with self.lock.acquire_lock():
            self.lock.cleanup_orphaned_temp_files()
            self.reset()

            old_list = self.list
            new_list = list(dict.fromkeys(old_list))
            new_ids = {sha: position for position, sha in enumerate(new_list)}
            remap = [new_ids[sha] for sha in old_list]

            new_map: Dict[int, int] = {}
            for doc_id, next_id in ID_PAIRS.read(self.map_file):
                new_map[remap[doc_id]] = remap[next_id]
            for doc_id in new_map:
                self._resolve(new_map, new_list, doc_id)

            new_filters: Dict[Path, List[int]] = {}
            for key in self.keys():
                for value in self.values(key):
                    ids = ID_LIST.read(self._filter_path(key, value))
                    new_filters[self._filter_path(key, value)] = _dedupe(
                        remap[i] for i in ids
                    )

            self.lock.write_atomic(
                self.list_file, lambda tmp: SHA_LIST.write(tmp, new_list)
            )
            self.lock.write_atomic(
                self.map_file, lambda tmp: ID_PAIRS.write(tmp, sorted(new_map.items()))
            )
            for path, ids in new_filters.items():
                self.lock.write_atomic(path, lambda tmp, ids=ids: ID_LIST.write(tmp, ids))

            logger.info(
                f"Compacted index {self.path}: {len(old_list)} -> {len(new_list)} shas"
            )

            self.reset()

        return self
