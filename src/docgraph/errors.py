"""Typed errors raised by the docgraph core."""

from typing import Dict, List, Optional


class DocGraphError(Exception):
    """Base exception for docgraph errors."""

    pass


class AssociationError(DocGraphError):
    """Base exception for structural violations of the association graph.

    Raised before anything is written; the store is left untouched.
    """

    def __init__(self, message: str, source: str, target: str):
        super().__init__(message)
        self.source = source
        self.target = target


class SelfLinkError(AssociationError):
    """Raised when a document is linked to itself."""

    def __init__(self, source: str, target: str):
        super().__init__(f"cannot link to self: {source} -> {target}", source, target)


class LinkToUpdatedError(AssociationError):
    """Raised when linking a child under a document that has been updated."""

    def __init__(self, source: str, target: str):
        super().__init__(
            f"cannot link to an updated document: {source} -> {target}", source, target
        )


class SelfUpdateError(AssociationError):
    """Raised when a document is updated with itself."""

    def __init__(self, source: str, target: str):
        super().__init__(f"cannot update with self: {source} -> {target}", source, target)


class UpdateWithChildError(AssociationError):
    """Raised when a document is updated with one of its own children."""

    def __init__(self, source: str, target: str):
        super().__init__(
            f"cannot update with a child: {source} -> {target}", source, target
        )


class UpdateReusedError(AssociationError):
    """Raised when the update target is already an update of another document."""

    def __init__(self, source: str, target: str, previous: Optional[str] = None):
        super().__init__(
            f"cannot update with an update: {source} -> {target}", source, target
        )
        self.previous = previous


class CircularAssociationError(DocGraphError):
    """Raised when associations (or index map entries) form a cycle.

    The path lists every sha on the active traversal, ending with the sha
    that was seen twice.
    """

    def __init__(self, path: List[str]):
        self.path = list(path)
        lines = "".join(f"  {sha}\n" for sha in self.path)
        super().__init__(f"circular association detected:\n{lines}")


class ObjectNotFoundError(DocGraphError):
    """Raised when a ref or sha cannot be resolved."""

    def __init__(self, ref: str):
        super().__init__(f"object not found: {ref}")
        self.ref = ref


class NothingToCommitError(DocGraphError):
    """Raised when committing without staged changes."""

    pass


class ConcurrentUpdateError(DocGraphError):
    """Raised when the branch moved between reading it and advancing it."""

    def __init__(self, ref: str, expected: Optional[str], new: str):
        super().__init__(
            f"ref {ref} was updated concurrently (expected {expected}, writing {new})"
        )
        self.ref = ref
        self.expected = expected
        self.new = new


class IndexCorruptionError(DocGraphError):
    """Raised when an index file cannot be decoded."""

    pass


class InvalidDocumentError(DocGraphError):
    """Raised when document attributes fail validation."""

    def __init__(self, errors: Dict[str, str]):
        self.errors = dict(errors)
        details = ", ".join(f"{key}: {msg}" for key, msg in sorted(self.errors.items()))
        super().__init__(f"invalid document ({details})")
