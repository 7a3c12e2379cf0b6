"""Command line interface for docgraph."""

import json
import logging
import subprocess
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import click
from rich.console import Console
from rich.table import Table
from rich.tree import Tree

from . import __version__
from .config import AuthorConfig, Config, ConfigManager
from .errors import DocGraphError
from .repository import DocumentRepository
from .store.git_store import GitObjectStore
from .utils.exception_logger import ExceptionLogger

console = Console()

SHORT_SHA = 8


def _parse_pairs(pairs: Tuple[str, ...], option: str) -> Dict[str, List[str]]:
    """Parse repeated key=value options into {key: [values]}."""
    result: Dict[str, List[str]] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key or not value:
            raise click.BadParameter(f"expected key=value, got {pair!r}", param_hint=option)
        result.setdefault(key, []).append(value)
    return result


def _parse_attrs(pairs: Tuple[str, ...]) -> Dict[str, Any]:
    """Parse key=value arguments into document attributes."""
    attrs: Dict[str, Any] = {}
    for key, values in _parse_pairs(pairs, "ATTRS").items():
        attrs[key] = values if len(values) > 1 else values[0]
    return attrs


def _load_config(ctx: click.Context) -> Config:
    config = ctx.obj["config_manager"].load()
    updates: Dict[str, Any] = {}
    if ctx.obj.get("repo"):
        updates["repo_dir"] = Path(ctx.obj["repo"]).resolve()
    if ctx.obj.get("branch"):
        updates["branch"] = ctx.obj["branch"]
    return config.model_copy(update=updates) if updates else config


def _get_repository(ctx: click.Context) -> DocumentRepository:
    if "repository" not in ctx.obj:
        ctx.obj["repository"] = DocumentRepository.from_config(_load_config(ctx))
    return ctx.obj["repository"]


def _fail(message: str) -> None:
    console.print(f"❌ {message}", style="red")
    sys.exit(1)


def _run(ctx: click.Context, action):
    """Run action(repository), reporting docgraph errors and exiting with 1."""
    try:
        return action(_get_repository(ctx))
    except DocGraphError as e:
        _fail(str(e))
    except ValueError as e:
        _fail(str(e))
    except subprocess.CalledProcessError as e:
        stderr = e.stderr.decode(errors="replace") if isinstance(e.stderr, bytes) else e.stderr
        _fail(f"git {e.cmd[1] if len(e.cmd) > 1 else ''} failed: {(stderr or '').strip()}")


def _label(repo: DocumentRepository, sha: str) -> str:
    attrs = repo.read(sha) or {}
    summary = attrs.get("title") or attrs.get("content") or ""
    summary = str(summary).splitlines()[0] if summary else ""
    if len(summary) > 60:
        summary = summary[:57] + "..."
    kind = attrs.get("type")
    parts = [f"[bold]{sha[:SHORT_SHA]}[/bold]"]
    if kind:
        parts.append(f"[cyan]{kind}[/cyan]")
    if summary:
        parts.append(summary)
    return " ".join(parts)


@click.group(invoke_without_command=True)
@click.option("--config", "-c", type=click.Path(exists=False), help="Config file path")
@click.option(
    "--repo",
    "-r",
    type=click.Path(exists=False, file_okay=False),
    help="Git repository (default: from config, or the config's directory)",
)
@click.option("--branch", "-b", help="Branch holding the documents")
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.version_option(version=__version__, prog_name="docgraph")
@click.pass_context
def cli(
    ctx,
    config: Optional[str],
    repo: Optional[str],
    branch: Optional[str],
    verbose: bool,
):
    """Documents and their associations stored in a git branch.

    \b
    GETTING STARTED:
      docgraph init                        # Configure the current repository
      docgraph add title="First" -t todo   # Store a root document
      docgraph add content="Reply" -p SHA  # Store a child document
      docgraph tree SHA                    # Show the current-state graph

    \b
    CONFIGURATION:
      Config file: .docgraph/config.json (found in parent directories)
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["repo"] = repo
    ctx.obj["branch"] = branch

    project_root = Path(repo).resolve() if repo else Path.cwd()
    ExceptionLogger.initialize(project_root)

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s:%(name)s:%(message)s",
    )

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        return

    if config:
        ctx.obj["config_manager"] = ConfigManager(Path(config))
    else:
        ctx.obj["config_manager"] = ConfigManager.create_with_backtrack(project_root)


@cli.command()
@click.option("--bare", is_flag=True, help="Create a bare repository if none exists")
@click.option("--author-name", help="Author name recorded on documents")
@click.option("--author-email", help="Author email recorded on documents")
@click.option("--force", "-f", is_flag=True, help="Overwrite existing configuration")
@click.pass_context
def init(
    ctx,
    bare: bool,
    author_name: Optional[str],
    author_email: Optional[str],
    force: bool,
):
    """Create the repository (if needed) and write .docgraph/config.json."""
    repo_dir = Path(ctx.obj["repo"]).resolve() if ctx.obj.get("repo") else Path.cwd()
    config_manager = ConfigManager(repo_dir / ConfigManager.DEFAULT_CONFIG_PATH)

    if config_manager.config_path.exists() and not force:
        _fail(
            f"Configuration already exists at {config_manager.config_path} "
            "(use --force to overwrite)"
        )

    try:
        GitObjectStore.init(repo_dir, bare=bare)
        config = Config(
            repo_dir=repo_dir,
            branch=ctx.obj.get("branch") or "docgraph",
            author=AuthorConfig(name=author_name, email=author_email),
        )
        config_manager.save(config)
    except (ValueError, subprocess.CalledProcessError) as e:
        _fail(f"Failed to initialize: {e}")

    console.print(f"✅ Initialized docgraph in {repo_dir}", style="green")
    console.print(f"   Branch: {config.branch}")
    console.print(f"   Config: {config_manager.config_path}")


@cli.command()
@click.argument("attrs", nargs=-1)
@click.option("--type", "-T", "kind", help="Document type (document, issue, comment)")
@click.option("--tag", "-t", "tags", multiple=True, help="Tag (repeatable)")
@click.option("--parent", "-p", "parents", multiple=True, help="Parent sha (repeatable)")
@click.option("--message", "-m", help="Commit message")
@click.option("--no-commit", is_flag=True, help="Stage without committing")
@click.pass_context
def add(
    ctx,
    attrs: Tuple[str, ...],
    kind: Optional[str],
    tags: Tuple[str, ...],
    parents: Tuple[str, ...],
    message: Optional[str],
    no_commit: bool,
):
    """Store a new document given as key=value ATTRS.

    Without --parent the document becomes a graph root.
    """
    document = _parse_attrs(attrs)
    if tags:
        document["tags"] = list(tags)

    def action(repo: DocumentRepository) -> str:
        parent_shas = [repo.resolve(parent) for parent in parents]
        sha = repo.create_document(document, *parent_shas, kind=kind)
        if not no_commit:
            repo.commit(message or f"add {sha}")
        return sha

    sha = _run(ctx, action)
    console.print(sha)


@cli.command()
@click.argument("old")
@click.argument("attrs", nargs=-1)
@click.option("--tag", "-t", "tags", multiple=True, help="Replace tags (repeatable)")
@click.option("--message", "-m", help="Commit message")
@click.pass_context
def update(
    ctx, old: str, attrs: Tuple[str, ...], tags: Tuple[str, ...], message: Optional[str]
):
    """Store a revision of OLD with key=value ATTRS changed."""
    changes = _parse_attrs(attrs)
    if tags:
        changes["tags"] = list(tags)

    def action(repo: DocumentRepository) -> str:
        sha = repo.update_document(repo.resolve(old), changes)
        repo.commit(message or f"update {sha}")
        return sha

    sha = _run(ctx, action)
    console.print(sha)


@cli.command()
@click.argument("parent")
@click.argument("child")
@click.option("--message", "-m", help="Commit message")
@click.pass_context
def link(ctx, parent: str, child: str, message: Optional[str]):
    """Link CHILD under PARENT."""

    def action(repo: DocumentRepository) -> Tuple[str, str]:
        parent_sha, child_sha = repo.resolve(parent), repo.resolve(child)
        repo.link(parent_sha, child_sha)
        repo.commit(message or f"link {parent_sha} {child_sha}")
        return parent_sha, child_sha

    parent_sha, child_sha = _run(ctx, action)
    console.print(f"✅ Linked {child_sha[:SHORT_SHA]} under {parent_sha[:SHORT_SHA]}")


@cli.command()
@click.argument("sha")
@click.option("--message", "-m", help="Commit message")
@click.pass_context
def delete(ctx, sha: str, message: Optional[str]):
    """Tombstone SHA; it disappears from every graph."""

    def action(repo: DocumentRepository) -> str:
        full_sha = repo.resolve(sha)
        repo.delete(full_sha)
        repo.commit(message or f"delete {full_sha}")
        return full_sha

    full_sha = _run(ctx, action)
    console.print(f"✅ Deleted {full_sha[:SHORT_SHA]}")


@cli.command()
@click.argument("sha")
@click.option("--json", "as_json", is_flag=True, help="Print raw attributes only")
@click.pass_context
def show(ctx, sha: str, as_json: bool):
    """Show the attributes and associations of SHA."""

    def action(repo: DocumentRepository):
        full_sha = repo.resolve(sha)
        attrs = repo.read(full_sha)
        info = {
            "previous": repo.previous(full_sha),
            "updates": repo.updates(full_sha),
            "links": repo.encoder.links(full_sha),
            "deleted": repo.is_deleted(full_sha),
        }
        return full_sha, attrs, info

    full_sha, attrs, info = _run(ctx, action)

    if attrs is None:
        _fail(f"{full_sha} is not a document")

    if as_json:
        click.echo(json.dumps(attrs, indent=2, sort_keys=True))
        return

    console.print(f"[bold]{full_sha}[/bold]")
    console.print_json(json.dumps(attrs, sort_keys=True))

    table = Table(show_header=False, box=None)
    table.add_column("Association", style="cyan")
    table.add_column("Documents")
    table.add_row("previous", info["previous"] or "-")
    table.add_row("updates", ", ".join(info["updates"]) or "-")
    table.add_row("links", ", ".join(info["links"]) or "-")
    if info["deleted"]:
        table.add_row("deleted", "yes")
    console.print(table)


@cli.command()
@click.argument("sha")
@click.option("--reverse", is_flag=True, help="Sort children in descending order")
@click.option("--by-date", is_flag=True, help="Sort children by date instead of sha")
@click.pass_context
def tree(ctx, sha: str, reverse: bool, by_date: bool):
    """Show the current-state graph rooted at SHA."""

    def action(repo: DocumentRepository):
        key = None
        if by_date:

            def key(child: str) -> Tuple[str, str]:
                return ((repo.read(child) or {}).get("date") or "", child)

        graph = repo.tree(repo.resolve(sha), key=key, reverse=reverse)

        root = Tree(f"[dim]{sha}[/dim]")

        def build(node: Tree, shas: List[str], path: List[str]) -> None:
            for child in shas:
                branch = node.add(_label(repo, child))
                # merged children may appear under several parents
                if child not in path:
                    build(branch, graph.get(child, []), path + [child])

        build(root, graph[None], [])
        return root

    console.print(_run(ctx, action))


@cli.command()
@click.option("--all", "all_pairs", multiple=True, help="key=value that must match")
@click.option("--any", "any_pairs", multiple=True, help="key=value of which one must match")
@click.option("--type", "-T", "kind", help="Only documents of this type")
@click.pass_context
def find(
    ctx, all_pairs: Tuple[str, ...], any_pairs: Tuple[str, ...], kind: Optional[str]
):
    """Find current documents by indexed attributes."""
    all_criteria = _parse_pairs(all_pairs, "--all")
    any_criteria = _parse_pairs(any_pairs, "--any")

    def action(repo: DocumentRepository) -> Table:
        shas = repo.find(all=all_criteria, any=any_criteria, kind=kind)

        table = Table(title=f"{len(shas)} document(s)")
        table.add_column("Sha", style="bold")
        table.add_column("Type", style="cyan")
        table.add_column("Author")
        table.add_column("Date")
        table.add_column("Tags")
        for sha in shas:
            attrs = repo.read(sha) or {}
            table.add_row(
                sha[:SHORT_SHA],
                str(attrs.get("type") or ""),
                str(attrs.get("author") or ""),
                str(attrs.get("date") or ""),
                ", ".join(str(tag) for tag in attrs.get("tags") or []),
            )
        return table

    console.print(_run(ctx, action))


@cli.command()
@click.option("--full", is_flag=True, help="Clear the index and rebuild it")
@click.pass_context
def reindex(ctx, full: bool):
    """Fold new commits into the document index."""
    shas = _run(ctx, lambda repo: repo.update_index(full=full))
    console.print(f"✅ Indexed {len(shas)} document(s)", style="green")


@cli.command()
@click.pass_context
def compact(ctx):
    """Rewrite the index without duplicate records."""

    def action(repo: DocumentRepository) -> int:
        repo.update_index()
        repo.compact()
        return len(repo.index.list)

    count = _run(ctx, action)
    console.print(f"✅ Compacted index ({count} document(s))", style="green")


@cli.command()
@click.option("--max-count", "-n", type=int, help="Limit the number of commits")
@click.pass_context
def log(ctx, max_count: Optional[int]):
    """List commits on the document branch."""
    commits = _run(ctx, lambda repo: repo.git_store.log(max_count=max_count))

    table = Table()
    table.add_column("Commit", style="bold")
    table.add_column("Author")
    table.add_column("Date")
    table.add_column("Message")
    for commit in commits:
        table.add_row(commit.sha[:SHORT_SHA], commit.author, commit.date, commit.message)
    console.print(table)


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
