"""Git-backed object store used as the only persistence layer."""

from .git_store import (
    CommitInfo,
    DEFAULT_BLOB_MODE,
    EMPTY_BLOB_SHA,
    EXECUTABLE_BLOB_MODE,
    GitObjectStore,
    TreeDiff,
    TreeEntry,
)

__all__ = [
    "CommitInfo",
    "DEFAULT_BLOB_MODE",
    "EMPTY_BLOB_SHA",
    "EXECUTABLE_BLOB_MODE",
    "GitObjectStore",
    "TreeDiff",
    "TreeEntry",
]
