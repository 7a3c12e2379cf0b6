"""Incremental index updates driven by commit diffs."""

import logging
from typing import Callable, Iterable, List, Optional, Tuple

from ..documents import parse_document_path
from ..graph.associations import UPDATE_MODE, parse_sha_path, resolved_sha
from ..store.git_store import GitObjectStore
from .document_index import DocumentIndex

logger = logging.getLogger(__name__)

Contributions = Callable[[str], Iterable[Tuple[str, str]]]


class Reindexer:
    """Folds the changes between two commits into a DocumentIndex.

    ``contributions`` maps a document sha to the (key, value) filters it
    adds to the index; documents that cannot be read contribute nothing.
    """

    def __init__(
        self, store: GitObjectStore, index: DocumentIndex, contributions: Contributions
    ):
        self.store = store
        self.index = index
        self.contributions = contributions

    def changed_shas(
        self, since: Optional[str], upto: Optional[str]
    ) -> Tuple[List[str], List[Tuple[str, str]]]:
        """Return (documents, update edges) introduced between two commits."""
        diff = self.store.diff(since, upto)
        empty_sha = self.store.empty_sha

        shas: List[str] = []
        updates: List[Tuple[str, str]] = []
        for path in diff.added + diff.modified:
            sha = parse_document_path(path)
            if sha is None:
                parsed = parse_sha_path(path)
                if parsed is None:
                    continue
                source, target = parsed
                sha = resolved_sha(source, target, empty_sha)
                if diff.modes.get(path) == UPDATE_MODE and sha == target:
                    updates.append((source, target))

            if sha not in shas:
                shas.append(sha)

        return shas, updates

    def reindex(self, since: Optional[str], upto: Optional[str]) -> List[str]:
        """Index every document added between since and upto.

        The index head is set to upto once the new records are flushed.
        Returns the shas that were (re)indexed.
        """
        shas, updates = self.changed_shas(since, upto)

        for sha in shas:
            doc_id = self.index.id_of(sha)
            for key, value in self.contributions(sha):
                self.index.add(key, value, doc_id)

        for old, new in updates:
            self.index.put(self.index.id_of(old), self.index.id_of(new))

        self.index.flush(head=upto)
        logger.info(
            f"Reindexed {len(shas)} document(s) and {len(updates)} update(s) "
            f"from {since or 'start'} to {upto}"
        )
        return shas
