"""
Docgraph - issues, comments and revisions stored as a document graph in git.

Documents are immutable blobs; parent/child links, revisions and tombstones
are tree entries on a dedicated branch. The current state of a graph is
reconstructed on demand and searched through append-only binary indexes.
"""

__version__ = "0.4.0"
__author__ = "Docgraph Contributors"
