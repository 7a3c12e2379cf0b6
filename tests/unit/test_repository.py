"""Unit tests for DocumentRepository."""

from datetime import datetime, timezone
from pathlib import Path

import pytest

from docgraph.config import AuthorConfig, Config, IndexConfig
from docgraph.errors import InvalidDocumentError, ObjectNotFoundError
from docgraph.repository import DocumentRepository, default_index_path
from docgraph.store.git_store import DEFAULT_BLOB_MODE, GitObjectStore


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestStorage:
    def test_store_and_read(self, repository: DocumentRepository, store):
        sha = repository.store({"title": "x"}, date=utc(2024, 1, 2))

        assert repository.read(sha) == {"title": "x"}
        assert store.get_tree_entry(f"2024/0102/{sha}").sha == sha
        assert repository.reset().read(sha) == {"title": "x"}

    def test_store_uses_document_date(self, repository: DocumentRepository, store):
        sha = repository.store({"date": "2023-12-31T23:00:00-02:00"})

        assert store.get_tree_entry(f"2024/0101/{sha}") is not None

    def test_read_returns_copy(self, repository: DocumentRepository):
        sha = repository.store({"title": "x"})
        repository.read(sha)["title"] = "changed"

        assert repository.read(sha) == {"title": "x"}

    def test_read_non_documents(self, repository: DocumentRepository, blob):
        assert repository.read("0" * 40) is None
        assert repository.read(blob("not json")) is None
        assert repository.read(repository.git_store.empty_sha) is None

    def test_each_is_reverse_date_order(self, repository: DocumentRepository, store):
        old = repository.store({"n": 1}, date=utc(2023, 5, 1))
        new = repository.store({"n": 3}, date=utc(2024, 2, 1))
        mid = repository.store({"n": 2}, date=utc(2023, 12, 24))
        readme = store.write_blob(b"readme")
        store.set_tree_entry("2024/0201/README", DEFAULT_BLOB_MODE, readme)
        repository.commit("documents")

        assert list(repository.each()) == [new, mid, old]

    def test_diff_between_commits(self, repository: DocumentRepository):
        first_doc = repository.store({"n": 1})
        first = repository.commit("first")
        second_doc = repository.store({"n": 2})
        second = repository.commit("second")

        assert repository.diff(second, first) == [second_doc]
        assert repository.diff(first, None) == [first_doc]
        assert repository.diff(first, second) == []

    def test_resolve_short_sha(self, repository: DocumentRepository):
        sha = repository.store({"n": 1})

        assert repository.resolve(sha[:12]) == sha
        with pytest.raises(ObjectNotFoundError):
            repository.resolve("f" * 40)


class TestDocumentLifecycle:
    def test_create_root_document(self, repository: DocumentRepository):
        sha = repository.create_document({"title": "Broken"}, kind="issue")

        attrs = repository.read(sha)
        assert attrs["author"] == "Test User <test@example.com>"
        assert attrs["state"] == "open"
        assert repository.encoder.associations(sha).head
        assert repository.tree(sha) == {None: [sha], sha: []}

    def test_create_child_document(self, repository: DocumentRepository):
        issue = repository.create_document({"title": "Broken"}, kind="issue")
        comment = repository.create_document({"content": "Me too"}, issue, kind="comment")

        assert repository.is_linked(issue, comment)
        assert repository.children(issue) == [comment]
        assert repository.tree(issue) == {None: [issue], issue: [comment], comment: []}

    def test_invalid_document_is_not_stored(self, repository: DocumentRepository):
        with pytest.raises(InvalidDocumentError) as exc_info:
            repository.create_document({"title": ""}, kind="issue")

        assert exc_info.value.errors == {"title": "nothing specified"}
        assert repository.git_store.status() == {}

    def test_update_document_merges_attributes(self, repository: DocumentRepository):
        issue = repository.create_document(
            {"title": "Broken", "tags": ["bug"]}, kind="issue"
        )
        comment = repository.create_document({"content": "Me too"}, issue, kind="comment")
        repository.commit("issue")

        fixed = repository.update_document(issue, {"state": "closed"})

        attrs = repository.read(fixed)
        assert attrs["title"] == "Broken"
        assert attrs["tags"] == ["bug"]
        assert attrs["state"] == "closed"
        assert repository.previous(fixed) == issue
        assert repository.original(fixed) == issue
        assert repository.current(issue) == [fixed]
        assert repository.is_updated(issue)
        assert repository.tree(issue) == {None: [fixed], fixed: [comment], comment: []}

    def test_update_unknown_document(self, repository: DocumentRepository):
        with pytest.raises(ObjectNotFoundError):
            repository.update_document("0" * 40, {"title": "x"})

    def test_delete_document(self, repository: DocumentRepository):
        issue = repository.create_document({"title": "Broken"}, kind="issue")
        comment = repository.create_document({"content": "Spam"}, issue, kind="comment")
        repository.delete(comment)

        assert repository.is_deleted(comment)
        assert repository.tree(issue) == {None: [issue], issue: []}


class TestFind:
    def test_find_by_tag_and_kind(self, repository: DocumentRepository):
        bug = repository.create_document({"title": "A", "tags": ["bug"]}, kind="issue")
        repository.create_document({"title": "B", "tags": ["feature"]}, kind="issue")
        note = repository.create_document({"content": "C", "tags": ["bug"]})
        repository.commit("documents")

        assert repository.find(all={"tags": "bug"}, kind="issue") == [bug]
        assert sorted(repository.find(all={"tags": "bug"})) == sorted([bug, note])
        assert repository.find(any={"tags": ["missing"]}) == []

    def test_find_returns_current_revisions(self, repository: DocumentRepository):
        issue = repository.create_document({"title": "A", "tags": ["bug"]}, kind="issue")
        repository.commit("issue")
        fixed = repository.update_document(issue, {"state": "closed"})
        repository.commit("close")

        assert repository.find(all={"tags": "bug"}, kind="issue") == [fixed]
        assert repository.index.head() == repository.git_store.head()

    def test_find_skips_revisions_that_no_longer_match(self, repository: DocumentRepository):
        bug = repository.create_document({"content": "x", "tags": ["bug"]})
        repository.commit("bug")
        feature = repository.update_document(bug, {"tags": ["feature"]})
        repository.commit("retag")

        assert repository.find(all={"tags": "bug"}) == []
        assert repository.find(all={"tags": "feature"}) == [feature]
        assert repository.find(any={"tags": ["bug", "feature"]}) == [feature]

    def test_find_by_kind_checks_current_revision(self, repository: DocumentRepository):
        issue = repository.create_document({"title": "A"}, kind="issue")
        repository.commit("issue")
        note = repository.update_document(issue, {"type": "document"})
        repository.commit("demote")

        assert repository.find(kind="issue") == []
        assert repository.find(kind="document") == [note]

    def test_update_index_is_incremental(self, repository: DocumentRepository):
        first = repository.create_document({"content": "one"})
        repository.commit("one")
        assert repository.update_index() == [first]
        assert repository.update_index() == []

        second = repository.create_document({"content": "two"})
        repository.commit("two")
        assert repository.update_index() == [second]

    def test_full_reindex_rebuilds_from_scratch(self, repository: DocumentRepository):
        first = repository.create_document({"content": "one"})
        repository.commit("one")
        repository.update_index()

        assert repository.update_index(full=True) == [first]
        assert repository.index.list == [first]

    def test_uncommitted_documents_are_found_without_reindex(self, store):
        repository = DocumentRepository(store, auto_reindex=False)
        sha = repository.create_document({"content": "draft", "tags": ["wip"]})

        assert repository.find(all={"tags": "wip"}) == [sha]

    def test_compact_keeps_results(self, repository: DocumentRepository):
        sha = repository.create_document({"content": "one", "tags": ["x"]})
        repository.commit("one")
        repository.find(all={"tags": "x"})

        repository.compact()

        assert repository.index.list == [sha]
        assert repository.find(all={"tags": "x"}) == [sha]


class TestContexts:
    def test_from_config(self, git_repo: Path, tmp_path: Path):
        config = Config(
            repo_dir=git_repo,
            branch="notes",
            author=AuthorConfig(name="Bot"),
            index=IndexConfig(path=tmp_path / "index", auto_reindex=False),
        )
        repository = DocumentRepository.from_config(config)

        assert repository.git_store.branch == "notes"
        assert repository.author == "Bot <docgraph@localhost>"
        assert repository.index.path == tmp_path / "index"
        assert repository.auto_reindex is False

    def test_default_index_path(self, store: GitObjectStore, git_repo: Path):
        expected = git_repo.resolve() / ".git" / "docgraph" / "refs" / "docgraph" / "index"
        assert default_index_path(store) == expected

    def test_repositories_on_different_branches_are_independent(self, git_repo: Path):
        notes = DocumentRepository(GitObjectStore(git_repo, branch="notes"))
        issues = DocumentRepository(GitObjectStore(git_repo, branch="issues"))

        note = notes.create_document({"content": "note"})
        notes.commit("note")
        issue = issues.create_document({"title": "issue"}, kind="issue")
        issues.commit("issue")

        assert list(notes.each()) == [note]
        assert list(issues.each()) == [issue]
        assert notes.find() == [note]
        assert issues.find() == [issue]
