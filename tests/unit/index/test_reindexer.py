"""Unit tests for Reindexer against a real git-backed store."""

from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import Mock

import pytest

from docgraph.documents import deserialize, document_path, index_entries, serialize
from docgraph.graph.associations import AssociationEncoder
from docgraph.index.document_index import DocumentIndex
from docgraph.index.reindexer import Reindexer
from docgraph.store.git_store import DEFAULT_BLOB_MODE

DATE = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


def store_document(store, **attrs) -> str:
    attrs.setdefault("author", "Jane <jane@example.com>")
    attrs.setdefault("date", DATE.isoformat())
    sha = store.write_blob(serialize(attrs))
    store.set_tree_entry(document_path(sha, DATE), DEFAULT_BLOB_MODE, sha)
    return sha


@pytest.fixture
def index(tmp_path: Path) -> DocumentIndex:
    return DocumentIndex(tmp_path / "index")


@pytest.fixture
def reindexer(store, index) -> Reindexer:
    def contributions(sha):
        return index_entries(deserialize(store.read_blob(sha)) or {})

    return Reindexer(store, index, contributions)


class TestReindex:
    def test_initial_reindex(self, store, index, reindexer):
        encoder = AssociationEncoder(store)
        a = store_document(store, tags=["one"])
        encoder.create(a)
        commit = store.commit("add a")

        assert reindexer.reindex(None, commit) == [a]
        assert index.head() == commit
        assert index.filter("tags", "one") == [index.find_id(a)]
        assert index.filter("email", "jane@example.com") == [index.find_id(a)]
        assert index.filter("date", "20240102") == [index.find_id(a)]

    def test_incremental_reindex_records_updates(self, store, index, reindexer):
        encoder = AssociationEncoder(store)
        a = store_document(store, content="first")
        encoder.create(a)
        first = store.commit("add a")
        reindexer.reindex(None, first)

        b = store_document(store, content="second", tags=["two"])
        encoder.update(a, b)
        second = store.commit("update a")

        assert reindexer.reindex(first, second) == [b]
        assert index.resolve(index.find_id(a)) == index.find_id(b)
        assert index.filter("tags", "two") == [index.find_id(b)]
        assert index.head() == second

    def test_linked_documents_are_indexed(self, store, index, reindexer):
        encoder = AssociationEncoder(store)
        a = store_document(store, content="parent")
        b = store_document(store, content="child", tags=["reply"])
        encoder.create(a)
        encoder.link(a, b)
        commit = store.commit("add")

        assert sorted(reindexer.reindex(None, commit)) == sorted([a, b])
        assert index.filter("tags", "reply") == [index.find_id(b)]
        assert index.map == {}

    def test_association_to_non_document_gets_an_id_only(self, store, index, reindexer):
        encoder = AssociationEncoder(store)
        raw = store.write_blob(b"not json")
        encoder.create(raw)
        commit = store.commit("raw")

        assert reindexer.reindex(None, commit) == [raw]
        assert index.find_id(raw) == 0
        assert index.keys() == []

    def test_other_paths_are_ignored(self, store, index):
        sha = store.write_blob(b"readme")
        store.set_tree_entry("README", DEFAULT_BLOB_MODE, sha)
        commit = store.commit("readme")
        contributions = Mock(return_value=[])

        assert Reindexer(store, index, contributions).reindex(None, commit) == []
        contributions.assert_not_called()
        assert index.head() == commit
