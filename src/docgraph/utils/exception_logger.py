"""Exception logger for docgraph.

Appends JSON records for failures (most notably failed git commands) to a
per-process log file so that corrupt-store and ref-race diagnostics survive
after the command line has exited.
"""

import json
import os
import threading
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional


class ExceptionLogger:
    """Writes exception records with context to a log file.

    A process-wide instance is installed by the CLI via ``initialize``;
    library code looks it up with ``get_instance`` and skips logging when
    none was installed.
    """

    _instance: Optional["ExceptionLogger"] = None
    LOG_DIR_NAME = ".docgraph"

    def __init__(self, log_file_path: Path):
        self.log_file_path = log_file_path

    @classmethod
    def initialize(cls, project_root: Path) -> "ExceptionLogger":
        """Install the process-wide logger (returns the existing one if set).

        The log file is ``<project_root>/.docgraph/error_<timestamp>_<pid>.log``.
        """
        if cls._instance is not None:
            return cls._instance

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_dir = project_root / cls.LOG_DIR_NAME
        log_dir.mkdir(parents=True, exist_ok=True)

        log_file_path = log_dir / f"error_{timestamp}_{os.getpid()}.log"
        log_file_path.touch()

        cls._instance = cls(log_file_path)
        return cls._instance

    @classmethod
    def get_instance(cls) -> Optional["ExceptionLogger"]:
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Forget the process-wide instance (used by tests)."""
        cls._instance = None

    def log_exception(
        self,
        exception: BaseException,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Append a record for the exception.

        Args:
            exception: The exception to log
            context: Extra data (command, cwd, return code...) for the record
        """
        log_entry = {
            "timestamp": datetime.now().isoformat(),
            "thread": threading.current_thread().name,
            "exception_type": type(exception).__name__,
            "exception_message": str(exception),
            "stack_trace": "".join(
                traceback.format_exception(
                    type(exception), exception, exception.__traceback__
                )
            ),
            "context": context or {},
        }

        with open(self.log_file_path, "a") as f:
            f.write(json.dumps(log_entry, indent=2, default=str))
            f.write("\n---\n")
