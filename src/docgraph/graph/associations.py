"""
Association encoding between documents.

An association is a directed edge between two document shas, stored as a
tree entry at ``source[0:2]/source[2:]/target``. The entry mode and the
relation of target to source determine what the edge means:

    target             mode     type     meaning
    EMPTY              default  HEAD     source is a graph root
    == source          default  DELETE   source is a tombstone
    other              default  LINK     target is a child of source
    other              update   UPDATE   target is a revision of source

Writing an association that already exists rewrites the same entry, so all
write operations are idempotent. Structural violations are detected before
anything is staged.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, List, Optional, Set, Tuple

from ..errors import (
    CircularAssociationError,
    LinkToUpdatedError,
    SelfLinkError,
    SelfUpdateError,
    UpdateReusedError,
    UpdateWithChildError,
)
from ..store.git_store import (
    DEFAULT_BLOB_MODE,
    EMPTY_BLOB_SHA,
    EXECUTABLE_BLOB_MODE,
    GitObjectStore,
)

logger = logging.getLogger(__name__)

LINK_MODE = DEFAULT_BLOB_MODE
UPDATE_MODE = EXECUTABLE_BLOB_MODE

# Index records hold 20-byte shas, so only SHA-1 repositories are supported
SHA_PATTERN = re.compile(r"\A[0-9a-f]{40}\Z")


class AssociationType(Enum):
    """Relationship encoded by a single tree entry."""

    HEAD = "head"
    LINK = "link"
    UPDATE = "update"
    DELETE = "delete"


def classify(
    source: str, target: str, mode: str, empty_sha: str = EMPTY_BLOB_SHA
) -> AssociationType:
    """Classify the entry ``source/target`` with the given mode."""
    if target == empty_sha:
        return AssociationType.HEAD
    if target == source:
        return AssociationType.DELETE
    if mode == UPDATE_MODE:
        return AssociationType.UPDATE
    return AssociationType.LINK


def resolved_sha(source: str, target: str, empty_sha: str = EMPTY_BLOB_SHA) -> str:
    """Return the sha an association is about: source for HEAD/DELETE, else target."""
    if target == empty_sha or target == source:
        return source
    return target


def sha_path(sha: str, *paths: str) -> str:
    """Return the tree path for sha, optionally joined with more segments."""
    return "/".join([sha[:2], sha[2:], *paths])


def parse_sha_path(path: str) -> Optional[Tuple[str, str]]:
    """Return (source, target) for an association path, or None for other paths."""
    segments = path.split("/")
    if len(segments) != 3 or len(segments[0]) != 2:
        return None
    source = segments[0] + segments[1]
    target = segments[2]
    if not (SHA_PATTERN.match(source) and SHA_PATTERN.match(target)):
        return None
    return source, target


def validate_sha(sha: str) -> str:
    if not isinstance(sha, str) or not SHA_PATTERN.match(sha):
        raise ValueError(f"Invalid sha: {sha!r}")
    return sha


@dataclass
class AssociationSet:
    """Outgoing associations of one document, grouped by type."""

    sha: str
    links: List[str] = field(default_factory=list)
    updates: List[str] = field(default_factory=list)
    head: bool = False
    deleted: bool = False


class AssociationEncoder:
    """Writes and reads associations through an object store."""

    def __init__(self, store: GitObjectStore):
        self.store = store

    @property
    def empty_sha(self) -> str:
        return self.store.empty_sha

    def _write(self, source: str, target: str, mode: str, blob: str) -> None:
        self.store.set_tree_entry(sha_path(source, target), mode, blob)

    #
    # writes
    #

    def create(self, sha: str) -> "AssociationEncoder":
        """Mark sha as the root of a graph."""
        validate_sha(sha)
        self._write(sha, self.empty_sha, LINK_MODE, sha)
        return self

    def link(self, parent: str, child: str) -> "AssociationEncoder":
        """Link child under parent.

        Raises:
            SelfLinkError: If parent == child
            LinkToUpdatedError: If parent already has a revision
        """
        validate_sha(parent)
        validate_sha(child)

        if parent == child:
            raise SelfLinkError(parent, child)

        if self.updates(parent):
            raise LinkToUpdatedError(parent, child)

        self._write(parent, child, LINK_MODE, child)
        return self

    def update(self, old: str, new: str) -> "AssociationEncoder":
        """Record new as a revision of old.

        Raises:
            SelfUpdateError: If old == new
            UpdateWithChildError: If new is linked as a child of old
            UpdateReusedError: If new is already a revision of another document
        """
        validate_sha(old)
        validate_sha(new)

        if old == new:
            raise SelfUpdateError(old, new)

        if self.is_linked(old, new):
            raise UpdateWithChildError(old, new)

        previous = self.previous(new)
        if previous is not None and previous != old:
            raise UpdateReusedError(old, new, previous)

        self._write(old, new, UPDATE_MODE, new)
        return self

    def delete(self, sha: str) -> "AssociationEncoder":
        """Tombstone sha; traversals stop there."""
        validate_sha(sha)
        self._write(sha, sha, LINK_MODE, self.empty_sha)
        return self

    #
    # reads
    #

    def each_association(self, source: str) -> Iterator[Tuple[str, AssociationType]]:
        """Yield (resolved sha, type) for every association stored under source."""
        listing = self.store.list_tree(sha_path(source))
        empty_sha = self.empty_sha
        for target in sorted(listing):
            entry = listing[target]
            if entry.type != "blob":
                continue
            yield (
                resolved_sha(source, target, empty_sha),
                classify(source, target, entry.mode, empty_sha),
            )

    def associations(self, sha: str) -> AssociationSet:
        """Return the outgoing associations of sha grouped by type."""
        result = AssociationSet(sha)
        for target, assoc_type in self.each_association(sha):
            if assoc_type is AssociationType.LINK:
                result.links.append(target)
            elif assoc_type is AssociationType.UPDATE:
                result.updates.append(target)
            elif assoc_type is AssociationType.HEAD:
                result.head = True
            else:
                result.deleted = True
        return result

    def linkage(self, source: str, target: str) -> Optional[str]:
        """Return the blob id referenced by the entry source/target, if any."""
        entry = self.store.get_tree_entry(sha_path(source, target))
        return entry.sha if entry is not None else None

    def is_linked(self, parent: str, child: str) -> bool:
        if parent == child:
            return False
        entry = self.store.get_tree_entry(sha_path(parent, child))
        if entry is None:
            return False
        return classify(parent, child, entry.mode, self.empty_sha) is AssociationType.LINK

    def links(self, sha: str) -> List[str]:
        return self.associations(sha).links

    def updates(self, sha: str) -> List[str]:
        return self.associations(sha).updates

    def is_deleted(self, sha: str) -> bool:
        return self.associations(sha).deleted

    def previous(self, sha: str) -> Optional[str]:
        """Return the document that sha is a revision of, or None.

        There is no reverse entry for updates, so this scans the stored
        associations for an update edge targeting sha.
        """
        for path, entry in self.store.walk():
            if entry.mode != UPDATE_MODE or not path.endswith(sha):
                continue
            parsed = parse_sha_path(path)
            if parsed is not None and parsed[1] == sha and parsed[0] != sha:
                return parsed[0]
        return None

    def is_original(self, sha: str) -> bool:
        return self.previous(sha) is None

    def is_update(self, sha: str) -> bool:
        return self.previous(sha) is not None

    def is_updated(self, sha: str) -> bool:
        return bool(self.updates(sha))

    def is_current(self, sha: str) -> bool:
        return not self.updates(sha)

    def is_tail(self, sha: str) -> bool:
        return not self.links(sha)

    def original(self, sha: str) -> str:
        """Return the first document of the update chain leading to sha."""
        path = [sha]
        while True:
            previous = self.previous(path[-1])
            if previous is None:
                return path[-1]
            if previous in path:
                raise CircularAssociationError(list(reversed(path + [previous])))
            path.append(previous)

    def current(self, sha: str) -> List[str]:
        """Return the current revisions reachable from sha through updates."""
        revisions: List[str] = []
        seen: Set[str] = set()

        def visit(node: str, path: List[str]) -> None:
            if node in path:
                raise CircularAssociationError(path + [node])
            updates = self.updates(node)
            if not updates:
                if node not in seen:
                    seen.add(node)
                    revisions.append(node)
                return
            for update in updates:
                visit(update, path + [node])

        visit(sha, [])
        return revisions

    def children(self, sha: str) -> List[str]:
        """Return the link children of sha and of every revision it replaced."""
        children = list(self.links(sha))
        visited = [sha]
        previous = self.previous(sha)
        while previous is not None:
            if previous in visited:
                raise CircularAssociationError(visited + [previous])
            visited.append(previous)
            for child in self.links(previous):
                if child not in children:
                    children.append(child)
            previous = self.previous(previous)
        return children
