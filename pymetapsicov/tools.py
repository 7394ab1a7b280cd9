"""
External program invocation for the pymetapsicov pipeline.
"""

import logging
import shlex
import subprocess
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .cache import StageCache
from .errors import ToolFailure

logger = logging.getLogger(__name__)

# Exit status reported for an invocation stopped at its wall-clock ceiling,
# matching coreutils timeout(1)
TIMEOUT_EXIT_STATUS = 124


@dataclass
class ToolResult:
    """Outcome of one invocation (or cache hit)."""

    stdout: str
    stderr: str
    returncode: int
    cached: bool = False
    timed_out: bool = False


class ToolRunner:
    """Runs external programs inside the job workspace.

    Parameters
    ----------
    cache : StageCache
        Stage cache consulted before each invocation that names an output.
    """

    def __init__(self, cache: StageCache):
        self.cache = cache
        self.executed: List[List[str]] = []

    @property
    def store(self):
        return self.cache.store

    def invoke(
        self,
        command: str,
        args: Sequence,
        redirect_path: Optional[str] = None,
        cache: bool = True,
        ignore_exit_failure: bool = False,
        timeout: Optional[float] = None,
        stdin_path: Optional[str] = None,
        creates: Optional[str] = None,
    ) -> ToolResult:
        """Run ``command`` with ``args``, or reuse its cached output.

        Parameters
        ----------
        command : str
            Executable name.
        args : sequence
            Arguments, converted to strings. No shell is involved.
        redirect_path : str, optional
            Workspace file that receives the captured stdout.
        cache : bool
            Skip execution when ``redirect_path`` (or ``creates``) already
            holds a non-empty output.
        ignore_exit_failure : bool
            Return non-zero exits instead of raising ToolFailure.
        timeout : float, optional
            Wall-clock ceiling in seconds. Reaching it yields an empty
            output rather than an error.
        stdin_path : str, optional
            Workspace file fed to the program on stdin.
        creates : str, optional
            Workspace file the program writes itself, used as the cache key
            when there is no ``redirect_path``.

        Returns
        -------
        ToolResult
            Captured output. On a cache hit ``stdout`` holds the cached
            content of ``redirect_path``.
        """
        argv = [command] + [str(arg) for arg in args]

        if cache:
            if redirect_path is not None:
                cached = self.cache.get(redirect_path)
                if cached is not None:
                    logger.debug(f"Reusing {redirect_path}")
                    return ToolResult(cached, "", 0, cached=True)
            elif creates is not None and self.cache.has(creates):
                logger.debug(f"Reusing {creates}")
                return ToolResult("", "", 0, cached=True)

        stdin_text = self.store.read(stdin_path) if stdin_path is not None else None

        logger.info(f"Running {shlex.join(argv)}")
        self.executed.append(argv)
        try:
            completed = self._execute(argv, stdin_text, timeout)
        except subprocess.TimeoutExpired:
            logger.warning(f"{command} exceeded its {timeout}s limit and was stopped; using empty output")
            if redirect_path is not None:
                self.store.write(redirect_path, "")
            return ToolResult("", "", TIMEOUT_EXIT_STATUS, timed_out=True)

        if completed.returncode != 0 and not ignore_exit_failure:
            raise ToolFailure(argv, completed.returncode, completed.stderr)

        if redirect_path is not None:
            self.store.write(redirect_path, completed.stdout)

        return ToolResult(completed.stdout, completed.stderr, completed.returncode)

    def _execute(self, argv: List[str], stdin_text: Optional[str], timeout: Optional[float]):
        return subprocess.run(
            argv,
            input=stdin_text,
            capture_output=True,
            text=True,
            timeout=timeout,
            cwd=getattr(self.store, "workspace", None),
        )
