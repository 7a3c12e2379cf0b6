"""
Graph deconvolution: from stored associations to the current-state graph.

Revisions never appear as nodes of their own. A document that has been
updated is replaced by the current revision(s) at the end of its update
chain, and its link children are carried over to the last of them, so the
children of a document survive every edit made to it.

Given these associations:

    link(a, b); link(b, c); update(b, m); link(m, n)

the graph rooted at a is:

    {None: [a], a: [m], m: [n, c], n: [], c: []}
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..errors import CircularAssociationError
from .associations import AssociationEncoder, AssociationSet

logger = logging.getLogger(__name__)

DocumentGraph = Dict[Optional[str], List[str]]


class GraphDeconvoluter:
    """Builds DocumentGraph mappings from an association encoder.

    Each call to ``tree`` memoizes the associations and resolved nodes it
    visits for the duration of that call only.
    """

    def __init__(self, encoder: AssociationEncoder):
        self.encoder = encoder

    def tree(
        self,
        root: str,
        key: Optional[Callable[[str], Any]] = None,
        reverse: bool = False,
    ) -> DocumentGraph:
        """Return the current-state graph reachable from root.

        Args:
            root: Sha of the graph root (or any document in it)
            key: Sort key for sibling lists (default: the sha itself)
            reverse: Sort siblings in descending order

        Returns:
            Mapping of each current sha to its ordered children; the None
            key holds the current revision(s) of root.

        Raises:
            CircularAssociationError: If links and/or updates form a cycle
        """
        run = _Deconvolution(self.encoder, key, reverse)
        graph = run.graph
        graph[None] = run.resolve_current(root, [])
        return graph


class _Deconvolution:
    """State for a single tree() call."""

    def __init__(
        self,
        encoder: AssociationEncoder,
        key: Optional[Callable[[str], Any]],
        reverse: bool,
    ):
        self.encoder = encoder
        self.key = key
        self.reverse = reverse
        self.graph: DocumentGraph = {}
        self._associations: Dict[str, AssociationSet] = {}
        self._current: Dict[str, List[str]] = {}
        self._chains: Dict[str, List[str]] = {}

    def associations(self, sha: str) -> AssociationSet:
        if sha not in self._associations:
            self._associations[sha] = self.encoder.associations(sha)
        return self._associations[sha]

    def resolve_current(self, sha: str, path: List[str]) -> List[str]:
        """Return the current revision(s) standing in for sha."""
        heads, _ = self._resolve(sha, path)
        return heads

    def _resolve(self, sha: str, path: List[str]) -> Tuple[List[str], List[str]]:
        """Return (heads, chain) for sha.

        chain is the update chain from sha to the last head; fall-through
        children are resolved with the whole chain on the path so a link
        back into it is reported as a cycle.
        """
        if sha in path:
            raise CircularAssociationError(path + [sha])

        if sha in self._current:
            return self._current[sha], self._chains[sha]

        path = path + [sha]
        assocs = self.associations(sha)

        heads: List[str] = []
        chain = [sha]
        if assocs.deleted:
            logger.debug(f"Pruning deleted document {sha}")
        elif not assocs.updates:
            heads = [sha]
            self.graph[sha] = self.resolve_children(assocs, path)
        else:
            for successor in assocs.updates:
                successor_heads, successor_chain = self._resolve(successor, path)
                for head in successor_heads:
                    if head not in heads:
                        heads.append(head)
                        chain = [sha] + successor_chain

            if heads:
                children = self.graph[heads[-1]]
                for child in self.resolve_children(assocs, path + chain[1:]):
                    if child not in children:
                        children.append(child)

        self._current[sha] = heads
        self._chains[sha] = chain
        return heads, chain

    def resolve_children(self, assocs: AssociationSet, path: List[str]) -> List[str]:
        """Return the sorted current children linked directly under a document."""
        children: List[str] = []
        for child in assocs.links:
            for current in self.resolve_current(child, path):
                if current not in children:
                    children.append(current)

        children.sort(key=self.key, reverse=self.reverse)
        return children
