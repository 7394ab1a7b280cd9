"""
Exception hierarchy for the pymetapsicov pipeline.
"""

import shlex
from typing import Any, Dict, List, Optional


class MetapsicovError(Exception):
    """Base exception for all pipeline errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ToolFailure(MetapsicovError):
    """An external program exited non-zero outside of a tolerated timeout."""

    def __init__(self, argv: List[str], returncode: int, stderr: str = ""):
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr or ""
        message = f"Command failed with exit status {returncode}: {shlex.join(self.argv)}"
        if self.stderr.strip():
            message += f"\n{self.stderr.strip()}"
        super().__init__(
            message,
            {"command": self.argv, "returncode": returncode, "stderr": self.stderr},
        )


class WorkspaceMissing(MetapsicovError):
    """The requested working directory does not exist."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Working directory does not exist: {path}", {"path": path})


class MalformedInput(MetapsicovError):
    """The query sequence file is missing, empty or not FASTA."""
    pass
