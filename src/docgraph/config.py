"""Configuration management for docgraph."""

import json
import logging
import tempfile
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

CONFIG_DIR_NAME = ".docgraph"
CONFIG_FILE_NAME = "config.json"


class AuthorConfig(BaseModel):
    """Identity recorded on documents and association commits.

    Unset fields fall back to the repository's user.name / user.email.
    """

    name: Optional[str] = Field(default=None, description="Author name")
    email: Optional[str] = Field(default=None, description="Author email")


class GitConfig(BaseModel):
    """Configuration for git command execution."""

    timeout: float = Field(
        default=60.0, description="Timeout in seconds for a single git command"
    )
    max_retries: int = Field(
        default=1, description="Retries for git commands that mutate the store"
    )
    retry_delay: float = Field(
        default=1.0, description="Delay in seconds between retries"
    )

    @field_validator("max_retries")
    @classmethod
    def validate_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("max_retries must be >= 0")
        return v


class IndexConfig(BaseModel):
    """Configuration for the document index."""

    path: Optional[Path] = Field(
        default=None,
        description="Index directory (default: <git-dir>/docgraph/refs/<branch>/index)",
    )
    auto_reindex: bool = Field(
        default=True,
        description="Fold new commits into the index before every query",
    )

    @field_validator("path", mode="before")
    @classmethod
    def convert_path(cls, v):
        if v is None or isinstance(v, Path):
            return v
        if isinstance(v, str):
            return Path(v)
        raise ValueError(f"Expected str or Path, got {type(v)}")


class Config(BaseModel):
    """Main configuration for docgraph."""

    repo_dir: Path = Field(default=Path("."), description="Git repository directory")
    branch: str = Field(
        default="docgraph", description="Branch holding documents and associations"
    )
    author: AuthorConfig = Field(default_factory=AuthorConfig)
    git: GitConfig = Field(default_factory=GitConfig)
    index: IndexConfig = Field(default_factory=IndexConfig)

    @field_validator("repo_dir", mode="before")
    @classmethod
    def convert_repo_dir(cls, v) -> Path:
        if isinstance(v, str):
            return Path(v)
        if isinstance(v, Path):
            return v
        raise ValueError(f"Expected str or Path, got {type(v)}")

    @field_validator("branch")
    @classmethod
    def validate_branch(cls, v: str) -> str:
        v = v.strip()
        if not v or v.startswith("-") or " " in v or ".." in v:
            raise ValueError(f"Invalid branch name: {v!r}")
        return v


class ConfigManager:
    """Loads and saves the JSON configuration file."""

    DEFAULT_CONFIG_PATH = Path(CONFIG_DIR_NAME) / CONFIG_FILE_NAME

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = Path(config_path or self.DEFAULT_CONFIG_PATH)
        self._config: Optional[Config] = None

    def load(self) -> Config:
        """Load configuration from file, or return defaults if there is none.

        Relative repo_dir values are resolved against the directory that
        contains ``.docgraph/``.
        """
        if self.config_path.exists():
            try:
                with open(self.config_path, "r") as f:
                    data = json.load(f)

                if "repo_dir" in data:
                    data["repo_dir"] = str(self._resolve_relative_path(data["repo_dir"]))

                self._config = Config(**data)
            except Exception as e:
                raise ValueError(f"Failed to load config from {self.config_path}: {e}")
        else:
            self._config = Config(repo_dir=self.config_path.parent.parent)

        return self._config

    def save(self, config: Optional[Config] = None) -> None:
        """Save configuration, storing repo_dir relative to the config root."""
        if config is None:
            config = self._config

        if config is None:
            raise ValueError("No configuration to save")

        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        config_dict = config.model_dump(mode="json")
        config_dict["repo_dir"] = self._make_relative_to_config(config.repo_dir)

        with open(self.config_path, "w") as f:
            json.dump(config_dict, f, indent=2)

        self._config = config

    def get_config(self) -> Config:
        if self._config is None:
            return self.load()
        return self._config

    @staticmethod
    def find_config_path(start_dir: Optional[Path] = None) -> Optional[Path]:
        """Find .docgraph/config.json by walking up from start_dir."""
        if start_dir:
            current = Path(start_dir).resolve()
        else:
            try:
                current = Path.cwd()
            except (FileNotFoundError, OSError):
                current = Path(tempfile.gettempdir())

        for path in [current] + list(current.parents):
            config_path = path / CONFIG_DIR_NAME / CONFIG_FILE_NAME
            if config_path.exists():
                return config_path

        return None

    @classmethod
    def create_with_backtrack(cls, start_dir: Optional[Path] = None) -> "ConfigManager":
        """Create a manager for the nearest config, or a default path in start_dir."""
        config_path = cls.find_config_path(start_dir)
        if config_path is None:
            start = Path(start_dir).resolve() if start_dir else Path.cwd()
            config_path = start / CONFIG_DIR_NAME / CONFIG_FILE_NAME
        return cls(config_path)

    def _config_root(self) -> Path:
        return self.config_path.parent.parent

    def _make_relative_to_config(self, path: Path) -> str:
        if not path.is_absolute():
            return str(path)

        try:
            relative_path = path.resolve().relative_to(self._config_root().resolve())
        except ValueError:
            return str(path.resolve())
        return str(relative_path) if str(relative_path) != "." else "."

    def _resolve_relative_path(self, path_str: str) -> Path:
        path = Path(path_str)
        if path.is_absolute():
            return path
        return (self._config_root() / path).resolve()
