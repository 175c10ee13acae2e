"""
Local command runner.

Runs wrapper scripts as child processes of the current interpreter. This is
the runner used when the workflow itself runs on a host that can talk to
the batch scheduler (a login node or a node inside an allocation).
"""

import logging
import os
import shlex
import subprocess
from typing import Dict, Optional, Sequence

from .base import CommandResult, CommandRunner
from ..errors import BackendCommandError, BackendTimeout

logger = logging.getLogger(__name__)


class LocalCommandRunner(CommandRunner):
    """Command runner that uses ``subprocess.run`` on the local host."""

    def __init__(
        self,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = 60.0,
    ):
        """
        Initialize the local command runner.

        Args:
            env: Environment variables added to every command.
            timeout: Default command timeout in seconds (``None`` waits forever).
        """
        self.env = env or {}
        self.timeout = timeout

    def _build_env(self, env: Optional[Dict[str, Optional[str]]]) -> Dict[str, str]:
        merged = os.environ.copy()
        merged.update(self.env)
        for key, value in (env or {}).items():
            if value is None:
                merged.pop(key, None)
            else:
                merged[key] = value
        return merged

    def run(
        self,
        argv: Sequence[str],
        env: Optional[Dict[str, Optional[str]]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        if timeout is None:
            timeout = self.timeout

        cmd = list(argv)
        logger.debug("Running command: %s", shlex.join(cmd))
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout,
                env=self._build_env(env),
            )
        except subprocess.TimeoutExpired as e:
            raise BackendTimeout(
                f"Command timed out after {timeout} seconds: {shlex.join(cmd)}"
            ) from e
        except OSError as e:
            raise BackendCommandError(
                f"Failed to execute command {shlex.join(cmd)}: {e}"
            ) from e

        logger.debug("Command exit code: %d", result.returncode)
        if result.stdout:
            logger.debug("Command stdout: %s", result.stdout[:500])
        if result.stderr:
            logger.debug("Command stderr: %s", result.stderr[:500])

        return CommandResult(result.stdout, result.stderr, result.returncode)

    def file_exists(self, path: str) -> bool:
        return os.path.isfile(path)

    def check_executable(self, path: str) -> bool:
        return os.path.isfile(path) and os.access(path, os.X_OK)
