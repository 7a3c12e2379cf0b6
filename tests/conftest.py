"""
Shared pytest fixtures for docgraph tests.

Every test that touches git gets a throw-away repository in tmp_path with a
fixed user identity, so commits never depend on the machine's git config.
"""

import subprocess
from pathlib import Path
from typing import Callable, Generator

import pytest

from docgraph.repository import DocumentRepository
from docgraph.store.git_store import GitObjectStore
from docgraph.utils.exception_logger import ExceptionLogger


def init_git_repo(path: Path) -> Path:
    """Create a git repository at path with a test identity."""
    path.mkdir(parents=True, exist_ok=True)
    subprocess.run(["git", "init", "--quiet"], cwd=path, check=True, capture_output=True)
    subprocess.run(
        ["git", "config", "user.email", "test@example.com"],
        cwd=path,
        check=True,
        capture_output=True,
    )
    subprocess.run(
        ["git", "config", "user.name", "Test User"],
        cwd=path,
        check=True,
        capture_output=True,
    )
    return path


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """Path to an empty git repository."""
    return init_git_repo(tmp_path / "repo")


@pytest.fixture
def store(git_repo: Path) -> GitObjectStore:
    """Object store on the default branch of git_repo."""
    return GitObjectStore(git_repo)


@pytest.fixture
def repository(store: GitObjectStore) -> DocumentRepository:
    """Document repository over store, with its index in the git dir."""
    return DocumentRepository(store)


@pytest.fixture
def blob(store: GitObjectStore) -> Callable[[str], str]:
    """Factory writing a blob (a stand-in document) and returning its sha."""

    def write(content: str) -> str:
        return store.write_blob(content.encode("utf-8"))

    return write


@pytest.fixture(autouse=True)
def reset_exception_logger() -> Generator[None, None, None]:
    """Keep the process-wide exception logger from leaking between tests."""
    ExceptionLogger.reset()
    yield
    ExceptionLogger.reset()
