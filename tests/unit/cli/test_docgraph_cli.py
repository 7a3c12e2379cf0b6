"""Tests for the docgraph command line, driven through click's CliRunner."""

import json
from pathlib import Path
from typing import List

import pytest
from click.testing import CliRunner, Result
from rich.console import Console

import docgraph.cli as cli_module
from docgraph.cli import cli


@pytest.fixture(autouse=True)
def wide_console(monkeypatch):
    """Keep rich tables from truncating shas on the runner's 80-column output."""
    monkeypatch.setattr(cli_module, "console", Console(width=200))


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def docgraph(runner: CliRunner, git_repo: Path):
    """Invoke docgraph against git_repo after initializing it."""

    def invoke(*args: str) -> Result:
        return runner.invoke(cli, ["--repo", str(git_repo), *args], obj={})

    result = invoke("init")
    assert result.exit_code == 0, result.output
    return invoke


def added(result: Result) -> str:
    assert result.exit_code == 0, result.output
    return result.output.strip()


class TestInit:
    def test_no_command_prints_help(self, runner: CliRunner):
        result = runner.invoke(cli, [], obj={})

        assert result.exit_code == 0
        assert "GETTING STARTED" in result.output

    def test_init_writes_config(self, runner: CliRunner, git_repo: Path):
        result = runner.invoke(
            cli,
            ["--repo", str(git_repo), "--branch", "notes", "init", "--author-name", "Bot"],
            obj={},
        )

        assert result.exit_code == 0, result.output
        assert "Initialized docgraph" in result.output

        config = json.loads((git_repo / ".docgraph" / "config.json").read_text())
        assert config["branch"] == "notes"
        assert config["repo_dir"] == "."
        assert config["author"]["name"] == "Bot"

    def test_init_refuses_to_overwrite(self, docgraph):
        result = docgraph("init")

        assert result.exit_code == 1
        assert "already exists" in result.output
        assert docgraph("init", "--force").exit_code == 0

    def test_init_creates_missing_repository(self, runner: CliRunner, tmp_path: Path):
        target = tmp_path / "fresh"
        result = runner.invoke(cli, ["--repo", str(target), "init"], obj={})

        assert result.exit_code == 0, result.output
        assert (target / ".git").is_dir()


class TestDocuments:
    def test_add_and_show(self, docgraph):
        sha = added(docgraph("add", "title=Broken", "-T", "issue", "-t", "bug"))

        result = docgraph("show", sha[:10], "--json")
        assert result.exit_code == 0, result.output
        attrs = json.loads(result.output)
        assert attrs["title"] == "Broken"
        assert attrs["state"] == "open"
        assert attrs["tags"] == ["bug"]
        assert attrs["author"] == "Test User <test@example.com>"

    def test_show_lists_associations(self, docgraph):
        issue = added(docgraph("add", "title=Broken", "-T", "issue"))
        comment = added(docgraph("add", "content=Me too", "-T", "comment", "-p", issue))

        result = docgraph("show", issue)
        assert result.exit_code == 0, result.output
        assert comment in result.output

    def test_invalid_document_exits_with_error(self, docgraph):
        result = docgraph("add", "-T", "issue", "content=x")

        assert result.exit_code == 1
        assert "❌" in result.output
        assert "title: nothing specified" in result.output

    def test_malformed_attribute_is_a_usage_error(self, docgraph):
        result = docgraph("add", "title")

        assert result.exit_code == 2
        assert "key=value" in result.output

    def test_unknown_sha_exits_with_error(self, docgraph):
        result = docgraph("show", "f" * 40)

        assert result.exit_code == 1
        assert "object not found" in result.output

    def test_update_replaces_document_in_tree(self, docgraph):
        issue = added(docgraph("add", "title=Broken", "-T", "issue"))
        comment = added(docgraph("add", "content=Me too", "-T", "comment", "-p", issue))
        fixed = added(docgraph("update", issue, "state=closed"))

        result = docgraph("tree", issue)
        assert result.exit_code == 0, result.output
        assert fixed[:8] in result.output
        assert comment[:8] in result.output
        assert "Me too" in result.output

    def test_link_and_delete(self, docgraph):
        parent = added(docgraph("add", "title=Parent"))
        child = added(docgraph("add", "title=Child"))

        result = docgraph("link", parent, child)
        assert result.exit_code == 0, result.output
        assert "Linked" in result.output
        assert child[:8] in docgraph("tree", parent).output

        result = docgraph("delete", child)
        assert result.exit_code == 0, result.output
        assert child[:8] not in docgraph("tree", parent).output

    def test_tree_orders_children(self, docgraph):
        parent = added(docgraph("add", "title=Parent"))
        children: List[str] = [
            added(docgraph("add", f"title=Child {n}", "-p", parent)) for n in range(3)
        ]

        ascending = docgraph("tree", parent).output
        descending = docgraph("tree", parent, "--reverse").output
        positions = [ascending.index(child[:8]) for child in sorted(children)]
        assert positions == sorted(positions)
        positions = [descending.index(child[:8]) for child in sorted(children)]
        assert positions == sorted(positions, reverse=True)


class TestQueries:
    def test_find_returns_current_documents(self, docgraph):
        issue = added(docgraph("add", "title=Broken", "-T", "issue", "-t", "bug"))
        added(docgraph("add", "title=Other", "-T", "issue", "-t", "feature"))
        fixed = added(docgraph("update", issue, "state=closed"))

        result = docgraph("find", "--all", "tags=bug", "--type", "issue")
        assert result.exit_code == 0, result.output
        assert "1 document(s)" in result.output
        assert fixed[:8] in result.output
        assert issue[:8] not in result.output

    def test_find_any(self, docgraph):
        docgraph("add", "title=A", "-t", "bug")
        docgraph("add", "title=B", "-t", "ui")
        docgraph("add", "title=C", "-t", "docs")

        result = docgraph("find", "--any", "tags=bug", "--any", "tags=ui")
        assert result.exit_code == 0, result.output
        assert "2 document(s)" in result.output

    def test_find_rejects_malformed_criteria(self, docgraph):
        assert docgraph("find", "--all", "tags").exit_code == 2

    def test_reindex_and_compact(self, docgraph):
        added(docgraph("add", "title=A"))

        result = docgraph("reindex")
        assert result.exit_code == 0, result.output
        assert "Indexed 1 document(s)" in result.output
        assert "Indexed 0 document(s)" in docgraph("reindex").output
        assert "Indexed 1 document(s)" in docgraph("reindex", "--full").output

        result = docgraph("compact")
        assert result.exit_code == 0, result.output
        assert "Compacted index (1 document(s))" in result.output

    def test_log_lists_commits(self, docgraph):
        first = added(docgraph("add", "title=A"))
        second = added(docgraph("add", "title=B"))

        result = docgraph("log")
        assert result.exit_code == 0, result.output
        assert f"add {first}" in result.output
        assert f"add {second}" in result.output

        result = docgraph("log", "-n", "1")
        assert f"add {second}" in result.output
        assert f"add {first}" not in result.output
