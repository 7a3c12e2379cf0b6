"""
Document repository: the explicit context tying storage, graph and index.

A DocumentRepository wraps one GitObjectStore (one branch of one git
repository). Several repositories can be used side by side in the same
process; nothing is shared between instances.

    repo = DocumentRepository.from_config(ConfigManager.create_with_backtrack().load())
    issue = repo.create_document({"title": "Broken", "tags": ["bug"]}, kind="issue")
    comment = repo.create_document({"content": "Confirmed"}, issue, kind="comment")
    repo.commit("add issue")

    repo.find(all={"tags": "bug"}, kind="issue")   # [issue]
    repo.tree(issue)                               # {None: [issue], issue: [comment], ...}
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple

from .config import Config
from .documents import (
    Document,
    deserialize,
    document_path,
    index_entries,
    normalize,
    parse_date,
    parse_document_path,
    serialize,
    validate,
)
from .errors import ObjectNotFoundError
from .graph.associations import AssociationEncoder
from .graph.deconvolute import DocumentGraph, GraphDeconvoluter
from .index.document_index import Criteria, DocumentIndex
from .index.reindexer import Reindexer
from .store.git_store import DEFAULT_AUTHOR, DEFAULT_BLOB_MODE, GitObjectStore

logger = logging.getLogger(__name__)

INDEX_DIR_NAME = "docgraph"


def default_index_path(store: GitObjectStore) -> Path:
    """Return ``<git-dir>/docgraph/refs/<branch>/index``."""
    return store.git_dir / INDEX_DIR_NAME / "refs" / store.branch / "index"


class DocumentRepository:
    """Stores documents and their associations on one branch."""

    def __init__(
        self,
        store: GitObjectStore,
        index_path: Optional[Path] = None,
        auto_reindex: bool = True,
    ):
        self.git_store = store
        self.encoder = AssociationEncoder(store)
        self.deconvoluter = GraphDeconvoluter(self.encoder)
        self.index = DocumentIndex(index_path or default_index_path(store))
        self.reindexer = Reindexer(store, self.index, self.index_entries)
        self.auto_reindex = auto_reindex
        self._cache: Dict[str, Optional[Dict[str, Any]]] = {}

    @classmethod
    def from_config(cls, config: Config) -> "DocumentRepository":
        """Open the repository described by config."""
        author: Optional[Tuple[str, str]] = None
        if config.author.name or config.author.email:
            author = (
                config.author.name or DEFAULT_AUTHOR[0],
                config.author.email or DEFAULT_AUTHOR[1],
            )

        store = GitObjectStore(
            config.repo_dir,
            branch=config.branch,
            author=author,
            git_config=config.git,
        )
        return cls(
            store,
            index_path=config.index.path,
            auto_reindex=config.index.auto_reindex,
        )

    @property
    def author(self) -> str:
        return self.git_store.author_string

    def reset(self) -> "DocumentRepository":
        """Drop cached documents and re-read the branch tip."""
        self._cache.clear()
        self.git_store.refresh()
        return self

    #
    # documents
    #

    def store(self, attrs: Mapping[str, Any], date: Optional[datetime] = None) -> str:
        """Write attrs as a document blob and register it under its date path.

        The date defaults to attrs['date'], or now when that is missing.
        """
        if date is None:
            date = parse_date(attrs.get("date")) or datetime.now(timezone.utc)

        sha = self.git_store.write_blob(serialize(attrs))
        self.git_store.set_tree_entry(document_path(sha, date), DEFAULT_BLOB_MODE, sha)
        self._cache[sha] = dict(attrs)
        return sha

    def read(self, sha: str) -> Optional[Dict[str, Any]]:
        """Return the attributes of document sha, or None if it is not a document."""
        if sha not in self._cache:
            self._cache[sha] = deserialize(self.git_store.read_blob(sha))
        attrs = self._cache[sha]
        return dict(attrs) if attrs is not None else None

    def get(self, sha: str) -> Optional[Document]:
        attrs = self.read(sha)
        return Document.from_attrs(attrs) if attrs is not None else None

    def each(self) -> Iterator[str]:
        """Yield stored document shas, most recent date first."""
        years = sorted(
            (
                name
                for name, entry in self.git_store.list_tree().items()
                if entry.type == "tree" and len(name) == 4 and name.isdigit()
            ),
            reverse=True,
        )
        for year in years:
            registered: List[Tuple[str, str]] = []
            for path, _ in self.git_store.walk(year):
                sha = parse_document_path(path)
                if sha is not None:
                    registered.append((path[:9], sha))
            for _, sha in sorted(registered, key=lambda item: item[0], reverse=True):
                yield sha

    def diff(self, a: Optional[str], b: Optional[str]) -> List[str]:
        """Return the documents registered in commit a but not in commit b."""
        changes = self.git_store.diff(b, a)
        shas = []
        for path in changes.added:
            sha = parse_document_path(path)
            if sha is not None and sha not in shas:
                shas.append(sha)
        return shas

    def resolve(self, ref: str) -> str:
        return self.git_store.resolve(ref)

    def commit(self, message: str) -> str:
        sha = self.git_store.commit(message)
        logger.info(f"Committed {sha} on {self.git_store.branch}")
        return sha

    #
    # associations
    #

    def create(self, sha: str) -> "DocumentRepository":
        self.encoder.create(sha)
        return self

    def link(self, parent: str, child: str) -> "DocumentRepository":
        self.encoder.link(parent, child)
        return self

    def update(self, old: str, new: str) -> "DocumentRepository":
        self.encoder.update(old, new)
        return self

    def delete(self, sha: str) -> "DocumentRepository":
        self.encoder.delete(sha)
        return self

    def linkage(self, source: str, target: str) -> Optional[str]:
        return self.encoder.linkage(source, target)

    def is_linked(self, parent: str, child: str) -> bool:
        return self.encoder.is_linked(parent, child)

    def is_original(self, sha: str) -> bool:
        return self.encoder.is_original(sha)

    def is_update(self, sha: str) -> bool:
        return self.encoder.is_update(sha)

    def is_updated(self, sha: str) -> bool:
        return self.encoder.is_updated(sha)

    def is_current(self, sha: str) -> bool:
        return self.encoder.is_current(sha)

    def is_tail(self, sha: str) -> bool:
        return self.encoder.is_tail(sha)

    def is_deleted(self, sha: str) -> bool:
        return self.encoder.is_deleted(sha)

    def original(self, sha: str) -> str:
        return self.encoder.original(sha)

    def previous(self, sha: str) -> Optional[str]:
        return self.encoder.previous(sha)

    def updates(self, sha: str) -> List[str]:
        return self.encoder.updates(sha)

    def current(self, sha: str) -> List[str]:
        return self.encoder.current(sha)

    def children(self, sha: str) -> List[str]:
        return self.encoder.children(sha)

    def tree(
        self,
        root: str,
        key: Optional[Callable[[str], Any]] = None,
        reverse: bool = False,
    ) -> DocumentGraph:
        """Return the current-state graph reachable from root."""
        return self.deconvoluter.tree(root, key=key, reverse=reverse)

    #
    # document lifecycle
    #

    def _save(self, attrs: Mapping[str, Any]) -> str:
        validate(attrs)
        return self.store(attrs)

    def create_document(
        self, attrs: Mapping[str, Any], *parents: str, kind: Optional[str] = None
    ) -> str:
        """Save a new document and associate it.

        Without parents the document becomes a graph root; otherwise it is
        linked under every parent. The document is added to the in-memory
        index right away.

        Raises:
            InvalidDocumentError: If the normalized attributes do not validate
        """
        attrs = normalize(attrs, self.author, kind=kind)
        sha = self._save(attrs)

        if parents:
            for parent in parents:
                self.encoder.link(parent, sha)
        else:
            self.encoder.create(sha)

        self._index_document(sha, attrs)
        return sha

    def update_document(self, old: str, attrs: Mapping[str, Any]) -> str:
        """Save a revision of old with attrs merged over its attributes.

        Author and date are refreshed unless attrs sets them.

        Raises:
            ObjectNotFoundError: If old is not a stored document
            InvalidDocumentError: If the merged attributes do not validate
        """
        old_attrs = self.read(old)
        if old_attrs is None:
            raise ObjectNotFoundError(old)

        merged = {k: v for k, v in old_attrs.items() if k not in ("author", "date")}
        merged.update(attrs)
        merged = normalize(merged, self.author)

        new = self._save(merged)
        self.encoder.update(old, new)

        self._index_document(new, merged)
        self.index.put(self.index.id_of(old), self.index.id_of(new))
        return new

    #
    # index
    #

    def index_entries(self, sha: str) -> List[Tuple[str, str]]:
        """Return the index contributions of document sha (none if unreadable)."""
        attrs = self.read(sha)
        return list(index_entries(attrs)) if attrs is not None else []

    def _index_document(self, sha: str, attrs: Mapping[str, Any]) -> None:
        doc_id = self.index.id_of(sha)
        for key, value in index_entries(attrs):
            self.index.add(key, value, doc_id)

    def update_index(self, full: bool = False) -> List[str]:
        """Fold commits made since the last reindex into the index.

        With full=True the index is cleared and rebuilt from scratch.
        Returns the shas that were indexed.
        """
        if full:
            self.index.clear()

        repo_head = self.git_store.head()
        index_head = self.index.head()
        if repo_head is None or repo_head == index_head:
            return []

        logger.debug(f"Index at {index_head or 'start'}, branch at {repo_head}")
        return self.reindexer.reindex(index_head, repo_head)

    def find(
        self,
        all: Criteria = None,
        any: Criteria = None,
        kind: Optional[str] = None,
    ) -> List[str]:
        """Return current document shas matching the criteria.

        The candidates are every document of the given kind, or every
        document with an author when no kind is given. A current revision
        is returned only if it matches as well, kind included.
        """
        if self.auto_reindex:
            self.update_index()

        if not kind:
            basis = self.index.all("email")
            return self.index.select_shas(basis, all=all, any=any, current=True)

        criteria: Dict[str, Any] = dict(all or {})
        types = criteria.get("type") or []
        criteria["type"] = ([types] if isinstance(types, str) else list(types)) + [kind]
        basis = self.index.filter("type", kind)
        return self.index.select_shas(basis, all=criteria, any=any, current=True)

    def compact(self) -> "DocumentRepository":
        self.index.compact()
        return self
