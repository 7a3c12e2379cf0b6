"""
Git-backed object store.

Reads and writes blobs, trees and commits of one branch through git
plumbing commands, without a work tree. Changes to tree entries are staged
in memory (like ``git add``) and written by ``commit``, which only rewrites
the subtrees that were touched and advances the branch with a
compare-and-swap ``git update-ref``.

Example:

    store = GitObjectStore.init("/tmp/example")
    sha = store.write_blob(b"content")
    store.set_tree_entry(f"docs/{sha}", DEFAULT_BLOB_MODE, sha)
    store.commit("add a document")
"""

import logging
import subprocess
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List, NamedTuple, Optional, Tuple

from ..config import GitConfig
from ..errors import ConcurrentUpdateError, NothingToCommitError, ObjectNotFoundError
from ..utils.git_runner import (
    get_config_value,
    get_git_dir,
    is_git_repository,
    run_git_command,
    run_git_command_with_retry,
)

logger = logging.getLogger(__name__)

DEFAULT_BLOB_MODE = "100644"
EXECUTABLE_BLOB_MODE = "100755"
TREE_MODE = "040000"

# Well-known ids for SHA-1 repositories
EMPTY_TREE_SHA = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"
EMPTY_BLOB_SHA = "e69de29bb2d1d6434b8b29ae775ad8c2e48c5391"
ZERO_SHA = "0" * 40

DEFAULT_AUTHOR = ("docgraph", "docgraph@localhost")


class CommitInfo(NamedTuple):
    """Summary of one commit on the branch."""

    sha: str
    author: str
    date: str
    message: str


class TreeEntry(NamedTuple):
    """A single tree entry as listed by ``git ls-tree``."""

    mode: str
    type: str
    sha: Optional[str]


@dataclass
class TreeDiff:
    """Paths that differ between two commits.

    ``modes`` holds the mode of each added or modified path in the newer
    commit.
    """

    added: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    modified: List[str] = field(default_factory=list)
    modes: Dict[str, str] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not (self.added or self.removed or self.modified)


class GitObjectStore:
    """Object store over a single branch of a git repository."""

    def __init__(
        self,
        repo_path: Path,
        branch: str = "docgraph",
        author: Optional[Tuple[str, str]] = None,
        git_config: Optional[GitConfig] = None,
    ):
        """Initialize GitObjectStore.

        Args:
            repo_path: Path to a git repository (work tree or bare)
            branch: Branch holding the stored trees
            author: (name, email) used for commits; defaults to git config
            git_config: Timeout and retry settings for git commands

        Raises:
            ValueError: If the path is not a git repository
        """
        self.repo_path = Path(repo_path)
        if not self.repo_path.is_dir() or not is_git_repository(self.repo_path):
            raise ValueError(f"Not a git repository: {self.repo_path}")

        self.branch = branch
        self.ref = f"refs/heads/{branch}"
        self.git_config = git_config or GitConfig()
        self._author = author

        self._staged: Dict[str, Optional[TreeEntry]] = {}
        self._listings: Dict[str, Dict[str, TreeEntry]] = {}
        self._walks: Dict[str, Dict[str, TreeEntry]] = {}
        self._root_tree: Optional[str] = None
        self._empty_sha: Optional[str] = None
        self._base = self.head()

    @classmethod
    def init(cls, path: Path, bare: bool = False, **kwargs) -> "GitObjectStore":
        """Open the repository at path, creating it first if necessary."""
        path = Path(path)
        is_repo = (path / ".git").exists() or (path / "HEAD").is_file()
        if not is_repo:
            path.mkdir(parents=True, exist_ok=True)
            cmd = ["git", "init", "--quiet"]
            if bare:
                cmd.append("--bare")
            run_git_command(cmd, cwd=path, check=True)
            logger.info(f"Initialized git repository at {path}")

        return cls(path, **kwargs)

    #
    # git helpers
    #

    def _git(self, args: List[str], **kwargs) -> subprocess.CompletedProcess:
        kwargs.setdefault("timeout", self.git_config.timeout)
        return run_git_command(["git"] + args, cwd=self.repo_path, **kwargs)

    def _git_write(self, args: List[str], **kwargs) -> subprocess.CompletedProcess:
        """Run a git command that writes objects, retrying transient failures."""
        kwargs.setdefault("timeout", self.git_config.timeout)
        return run_git_command_with_retry(
            ["git"] + args,
            cwd=self.repo_path,
            max_retries=self.git_config.max_retries,
            retry_delay=self.git_config.retry_delay,
            **kwargs,
        )

    @property
    def git_dir(self) -> Path:
        return get_git_dir(self.repo_path)

    @property
    def author(self) -> Tuple[str, str]:
        """The (name, email) recorded on commits."""
        if self._author is None:
            name = get_config_value(self.repo_path, "user.name") or DEFAULT_AUTHOR[0]
            email = get_config_value(self.repo_path, "user.email") or DEFAULT_AUTHOR[1]
            self._author = (name, email)
        return self._author

    @property
    def author_string(self) -> str:
        name, email = self.author
        return f"{name} <{email}>"

    #
    # refs
    #

    def head(self) -> Optional[str]:
        """Return the current tip of the branch (re-read from the repository)."""
        result = self._git(
            ["rev-parse", "--verify", "--quiet", f"{self.ref}^{{commit}}"], check=False
        )
        sha = result.stdout.strip()
        return sha if result.returncode == 0 and sha else None

    @property
    def base(self) -> Optional[str]:
        """The commit that staged changes are applied on top of."""
        return self._base

    def refresh(self) -> Optional[str]:
        """Move the base to the current branch tip and drop listing caches.

        Staged changes are kept and will be committed on top of the new base.
        """
        self._base = self.head()
        self._listings.clear()
        self._walks.clear()
        self._root_tree = None
        return self._base

    def resolve(self, ref: str) -> str:
        """Resolve a ref, short sha or full sha to a full object id.

        Raises:
            ObjectNotFoundError: If nothing matches
        """
        if not ref or ref.startswith("-"):
            raise ObjectNotFoundError(ref)

        result = self._git(
            ["rev-parse", "--verify", "--quiet", f"{ref}^{{object}}"], check=False
        )
        sha = result.stdout.strip()
        if result.returncode != 0 or not sha:
            raise ObjectNotFoundError(ref)
        return sha

    def rev_list(self, commit: Optional[str] = None) -> List[str]:
        """Return the commits reachable from commit (default: the branch base)."""
        commit = commit or self._base
        if commit is None:
            return []
        result = self._git(["rev-list", commit])
        return [line for line in result.stdout.splitlines() if line]

    def log(self, max_count: Optional[int] = None) -> List[CommitInfo]:
        """Return the commits of the branch, newest first."""
        head = self.head()
        if head is None:
            return []

        args = ["log", "-z", "--format=%H%x1f%an <%ae>%x1f%aI%x1f%s"]
        if max_count is not None:
            args.append(f"--max-count={max_count}")
        args.append(head)

        result = self._git(args)
        return [
            CommitInfo(*record.strip("\n").split("\x1f", 3))
            for record in result.stdout.split("\0")
            if record.strip()
        ]

    #
    # blobs
    #

    def read_blob(self, sha: str) -> Optional[bytes]:
        """Return blob content, or None if sha is not a blob in the repository."""
        result = self._git(["cat-file", "blob", sha], check=False, text=False)
        if result.returncode != 0:
            return None
        return result.stdout

    def write_blob(self, data: bytes) -> str:
        """Write data as a blob and return its (content-addressed) id."""
        result = self._git_write(
            ["hash-object", "-w", "--stdin"], input=data, text=False
        )
        return result.stdout.decode("ascii").strip()

    @property
    def empty_sha(self) -> str:
        """Id of the empty blob, written to the repository on first use."""
        if self._empty_sha is None:
            self._empty_sha = self.write_blob(b"")
        return self._empty_sha

    #
    # tree entries
    #

    def _ls_tree(
        self, treeish: str, path: Optional[str] = None, recursive: bool = False
    ) -> List[Tuple[str, TreeEntry]]:
        args = ["ls-tree", "-z"]
        if recursive:
            args.append("-r")
        args.append(treeish)
        if path:
            args.extend(["--", path])

        result = self._git(args)
        entries = []
        for record in result.stdout.split("\0"):
            if not record:
                continue
            meta, _, entry_path = record.partition("\t")
            mode, obj_type, sha = meta.split(" ")
            entries.append((entry_path, TreeEntry(mode, obj_type, sha)))
        return entries

    def _committed_listing(self, dir_path: str) -> Dict[str, TreeEntry]:
        """Entries directly under dir_path in the base commit (cached)."""
        if dir_path in self._listings:
            return self._listings[dir_path]

        listing: Dict[str, TreeEntry] = {}
        if self._base is not None:
            if dir_path:
                prefix = dir_path + "/"
                for entry_path, entry in self._ls_tree(self._base, prefix):
                    listing[entry_path[len(prefix):]] = entry
            else:
                for entry_path, entry in self._ls_tree(self._base):
                    listing[entry_path] = entry

        self._listings[dir_path] = listing
        return listing

    def _committed_entry(self, path: str) -> Optional[TreeEntry]:
        dir_path, _, name = path.rpartition("/")
        return self._committed_listing(dir_path).get(name)

    @staticmethod
    def _normalize(path: str) -> str:
        segments = [seg for seg in path.split("/") if seg]
        if not segments:
            raise ValueError(f"Invalid tree path: {path!r}")
        if any(seg in (".", "..") for seg in segments):
            raise ValueError(f"Invalid tree path: {path!r}")
        return "/".join(segments)

    def get_tree_entry(self, path: str) -> Optional[TreeEntry]:
        """Return the entry at path (staged state wins), or None if absent."""
        path = self._normalize(path)
        if path in self._staged:
            return self._staged[path]
        return self._committed_entry(path)

    def set_tree_entry(self, path: str, mode: str, sha: str) -> None:
        """Stage a blob entry at path; re-setting an identical entry is a no-op."""
        path = self._normalize(path)
        self._staged[path] = TreeEntry(mode, "blob", sha)

    def remove_tree_entry(self, path: str) -> None:
        """Stage the removal of the entry at path."""
        path = self._normalize(path)
        if self._committed_entry(path) is not None:
            self._staged[path] = None
        else:
            self._staged.pop(path, None)

    def list_tree(self, dir_path: str = "") -> Dict[str, TreeEntry]:
        """Return {name: entry} directly under dir_path, including staged changes.

        Directories that only exist in the staging area are listed with a
        ``None`` sha.
        """
        dir_path = "/".join(seg for seg in dir_path.split("/") if seg)
        listing = dict(self._committed_listing(dir_path))
        prefix = dir_path + "/" if dir_path else ""

        for path, entry in self._staged.items():
            if not path.startswith(prefix):
                continue
            rest = path[len(prefix):]
            name, sep, _ = rest.partition("/")
            if not sep:
                if entry is None:
                    listing.pop(name, None)
                else:
                    listing[name] = entry
            elif entry is not None and name not in listing:
                listing[name] = TreeEntry(TREE_MODE, "tree", None)

        return listing

    def _committed_walk(self, prefix: str) -> Dict[str, TreeEntry]:
        """Every blob under prefix in the base commit (cached until the base moves)."""
        if prefix not in self._walks:
            entries: Dict[str, TreeEntry] = {}
            if self._base is not None:
                for path, entry in self._ls_tree(
                    self._base, prefix + "/" if prefix else None, recursive=True
                ):
                    entries[path] = entry
            self._walks[prefix] = entries
        return self._walks[prefix]

    def walk(self, prefix: str = "") -> Iterator[Tuple[str, TreeEntry]]:
        """Yield (path, entry) for every blob under prefix, in path order."""
        prefix = "/".join(seg for seg in prefix.split("/") if seg)
        entries = dict(self._committed_walk(prefix))

        match = prefix + "/" if prefix else ""
        for path, entry in self._staged.items():
            if not path.startswith(match):
                continue
            if entry is None:
                entries.pop(path, None)
            else:
                entries[path] = entry

        for path in sorted(entries):
            yield path, entries[path]

    #
    # staging and commits
    #

    def status(self) -> Dict[str, str]:
        """Return {path: 'add' | 'rm'} for staged changes that differ from base."""
        status = {}
        for path, entry in self._staged.items():
            committed = self._committed_entry(path)
            if entry is None:
                if committed is not None:
                    status[path] = "rm"
            elif committed is None or committed.mode != entry.mode or committed.sha != entry.sha:
                status[path] = "add"
        return status

    def reset(self) -> None:
        """Discard all staged changes."""
        self._staged.clear()

    def commit(self, message: str, author: Optional[Tuple[str, str]] = None) -> str:
        """Write staged changes as a commit and advance the branch.

        Raises:
            NothingToCommitError: If no staged change differs from base
            ConcurrentUpdateError: If the branch moved since it was read
        """
        changes = {path: self._staged[path] for path in self.status()}
        if not changes:
            raise NothingToCommitError("no changes to commit")

        tree = self._write_tree(self._base_tree(), changes) or self._empty_tree()

        args = ["commit-tree", tree, "-m", message]
        if self._base is not None:
            args.extend(["-p", self._base])

        name, email = author or self.author
        env = {
            "GIT_AUTHOR_NAME": name,
            "GIT_AUTHOR_EMAIL": email,
            "GIT_COMMITTER_NAME": name,
            "GIT_COMMITTER_EMAIL": email,
        }
        commit = self._git_write(args, env=env).stdout.strip()

        expected = self._base or ZERO_SHA
        try:
            self._git(["update-ref", self.ref, commit, expected])
        except subprocess.CalledProcessError as e:
            raise ConcurrentUpdateError(self.ref, self._base, commit) from e

        logger.debug(f"Committed {len(changes)} change(s) to {self.ref}: {commit}")

        self._base = commit
        self._staged.clear()
        self._listings.clear()
        self._walks.clear()
        self._root_tree = None
        return commit

    def _base_tree(self) -> Optional[str]:
        if self._base is None:
            return None
        if self._root_tree is None:
            result = self._git(["rev-parse", f"{self._base}^{{tree}}"])
            self._root_tree = result.stdout.strip()
        return self._root_tree

    def _empty_tree(self) -> str:
        return self._git_write(["mktree", "-z"], input="").stdout.strip()

    def _write_tree(
        self, tree_sha: Optional[str], changes: Dict[str, Optional[TreeEntry]]
    ) -> Optional[str]:
        """Apply changes (relative paths) to tree_sha and return the new tree id.

        Subtrees without changes keep their existing ids. Returns None when
        the resulting tree would be empty.
        """
        entries: Dict[str, TreeEntry] = {}
        if tree_sha is not None:
            entries.update(self._ls_tree(tree_sha))

        nested: Dict[str, Dict[str, Optional[TreeEntry]]] = defaultdict(dict)
        for path, entry in changes.items():
            name, sep, rest = path.partition("/")
            if sep:
                nested[name][rest] = entry
            elif entry is None:
                entries.pop(name, None)
            else:
                entries[name] = entry

        for name, sub_changes in nested.items():
            current = entries.get(name)
            sub_base = current.sha if current is not None and current.type == "tree" else None
            new_sha = self._write_tree(sub_base, sub_changes)
            if new_sha is None:
                entries.pop(name, None)
            else:
                entries[name] = TreeEntry(TREE_MODE, "tree", new_sha)

        if not entries:
            return None

        data = "".join(
            f"{entry.mode} {entry.type} {entry.sha}\t{name}\0"
            for name, entry in sorted(entries.items())
        )
        return self._git_write(["mktree", "-z"], input=data).stdout.strip()

    #
    # history
    #

    def diff(self, from_commit: Optional[str], to_commit: Optional[str]) -> TreeDiff:
        """Return the paths added, removed and modified going from one commit to another.

        None stands for the state before the first commit.
        """
        diff = TreeDiff()
        if from_commit == to_commit:
            return diff

        # raw records: ":<old mode> <new mode> <old sha> <new sha> <status>\0<path>\0"
        result = self._git(
            [
                "diff-tree",
                "-r",
                "-z",
                "--no-renames",
                from_commit or EMPTY_TREE_SHA,
                to_commit or EMPTY_TREE_SHA,
            ]
        )
        tokens = [token for token in result.stdout.split("\0") if token]
        for meta, path in zip(tokens[0::2], tokens[1::2]):
            _, new_mode, _, _, status = meta.lstrip(":").split(" ")
            if status == "A":
                diff.added.append(path)
                diff.modes[path] = new_mode
            elif status == "D":
                diff.removed.append(path)
            else:
                diff.modified.append(path)
                diff.modes[path] = new_mode
        return diff
