"""
Git command runner used by the object store.

Every git invocation goes through ``run_git_command`` so that the
environment (safe.directory for repositories owned by another user, author
identity, extra config) is built in one place, and failures are recorded by
the exception logger with the full command line.
"""

import logging
import os
import subprocess
import time
from pathlib import Path
from typing import Dict, List, Optional, Union

logger = logging.getLogger(__name__)

GitInput = Optional[Union[str, bytes]]


def get_git_environment(repo_path: Path) -> Dict[str, str]:
    """Build the environment for git commands run against repo_path.

    Marks the repository as a safe.directory (appended after any
    ``GIT_CONFIG_*`` entries the caller already exported) and disables
    interactive prompts.
    """
    env = os.environ.copy()

    count = 0
    existing = os.environ.get("GIT_CONFIG_COUNT", "0")
    if existing.isdigit():
        count = int(existing)

    env[f"GIT_CONFIG_KEY_{count}"] = "safe.directory"
    env[f"GIT_CONFIG_VALUE_{count}"] = str(Path(repo_path).resolve())
    env["GIT_CONFIG_COUNT"] = str(count + 1)
    env["GIT_TERMINAL_PROMPT"] = "0"

    return env


def run_git_command(
    cmd: List[str],
    cwd: Path,
    check: bool = True,
    text: bool = True,
    input: GitInput = None,
    timeout: Optional[float] = None,
    env: Optional[Dict[str, str]] = None,
) -> subprocess.CompletedProcess:
    """Run a git command in cwd and capture its output.

    Args:
        cmd: Git command as a list (e.g., ["git", "cat-file", "blob", sha])
        cwd: Repository directory
        check: Raise CalledProcessError on non-zero exit
        text: Decode stdout/stderr as text (False for blob content)
        input: Data written to stdin
        timeout: Optional timeout in seconds
        env: Extra environment variables (author identity etc.)

    Raises:
        ValueError: If cmd does not start with 'git'
        subprocess.CalledProcessError: If check=True and the command fails
        subprocess.TimeoutExpired: If timeout is exceeded
    """
    if not cmd or cmd[0] != "git":
        raise ValueError("Command must start with 'git'")

    full_env = get_git_environment(cwd)
    if env:
        full_env.update(env)

    logger.debug(f"git: {' '.join(cmd[1:])} (cwd={cwd})")

    try:
        return subprocess.run(
            cmd,
            cwd=cwd,
            check=check,
            capture_output=True,
            text=text,
            input=input,
            timeout=timeout,
            env=full_env,
        )
    except subprocess.TimeoutExpired as e:
        _log_git_timeout(e, cmd, cwd, timeout)
        raise


def run_git_command_with_retry(
    cmd: List[str],
    cwd: Path,
    max_retries: int = 1,
    retry_delay: float = 1.0,
    **kwargs,
) -> subprocess.CompletedProcess:
    """Run a git command, retrying failed attempts after a delay.

    Only CalledProcessError is retried; timeouts are raised immediately.
    Every failed attempt is recorded by the exception logger.
    """
    attempt = 0
    while True:
        try:
            return run_git_command(cmd, cwd=cwd, check=True, **kwargs)
        except subprocess.CalledProcessError as e:
            _log_git_failure(e, cmd, cwd, attempt + 1, max_retries + 1)
            if attempt >= max_retries:
                raise
            logger.warning(
                f"git {cmd[1] if len(cmd) > 1 else ''} failed "
                f"(attempt {attempt + 1}/{max_retries + 1}), retrying"
            )
            time.sleep(retry_delay)
            attempt += 1


def _log_git_failure(
    exception: subprocess.CalledProcessError,
    cmd: List[str],
    cwd: Path,
    attempt: int,
    max_attempts: int,
) -> None:
    from .exception_logger import ExceptionLogger

    exception_logger = ExceptionLogger.get_instance()
    if exception_logger is None:
        return

    stderr = exception.stderr
    if isinstance(stderr, bytes):
        stderr = stderr.decode("utf-8", errors="replace")

    exception_logger.log_exception(
        Exception(f"Git command failed (attempt {attempt}/{max_attempts}): {' '.join(cmd)}"),
        context={
            "git_command": " ".join(cmd),
            "cwd": str(cwd),
            "returncode": exception.returncode,
            "stderr": stderr,
        },
    )


def _log_git_timeout(
    exception: subprocess.TimeoutExpired,
    cmd: List[str],
    cwd: Path,
    timeout: Optional[float],
) -> None:
    from .exception_logger import ExceptionLogger

    exception_logger = ExceptionLogger.get_instance()
    if exception_logger is None:
        return

    exception_logger.log_exception(
        Exception(f"Git command timeout: {' '.join(cmd)}"),
        context={"git_command": " ".join(cmd), "cwd": str(cwd), "timeout": timeout},
    )


def is_git_repository(path: Path) -> bool:
    """Return True if path is inside a git repository (bare or not)."""
    try:
        run_git_command(["git", "rev-parse", "--git-dir"], cwd=path, check=True)
        return True
    except (subprocess.CalledProcessError, FileNotFoundError, NotADirectoryError):
        return False


def get_git_dir(path: Path) -> Path:
    """Return the absolute .git directory (or the bare repository itself)."""
    result = run_git_command(["git", "rev-parse", "--git-dir"], cwd=path, check=True)
    git_dir = Path(result.stdout.strip())
    if not git_dir.is_absolute():
        git_dir = (Path(path) / git_dir).resolve()
    return git_dir


def get_config_value(path: Path, key: str) -> Optional[str]:
    """Return a git config value, or None if it is unset."""
    result = run_git_command(["git", "config", "--get", key], cwd=path, check=False)
    value = result.stdout.strip()
    return value or None
