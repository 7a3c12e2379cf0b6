"""Binary document index: id list, update map and attribute filters."""

from .document_index import DocumentIndex, quote_segment
from .rebuild_lock import IndexRebuildLock
from .reindexer import Reindexer

__all__ = ["DocumentIndex", "IndexRebuildLock", "Reindexer", "quote_segment"]
