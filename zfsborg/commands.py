"""
Runner for the external programs the backup drives (zfs, mount, borg).

Commands are always passed as argument vectors, never through a shell.
"""

import os
import shlex
import logging
import subprocess
from typing import Dict, List, Optional


logger = logging.getLogger(__name__)


class CommandError(Exception):
    """Raised when an external command exits with a non-zero status."""

    def __init__(self, cmd: List[str], returncode: int, stderr: str = ''):
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr or ''
        message = f"Command {shlex.join(cmd)!r} exited {returncode}"
        if self.stderr.strip():
            message = f"{message}: {self.stderr.strip()}"
        super().__init__(message)


class CommandRunner:
    """Run commands on the local machine."""

    def run(
        self,
        cmd: List[str],
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
        capture: bool = True
    ) -> str:
        """
        Run a command and wait for it.

        Args:
            cmd: Argument vector
            env: Extra environment variables layered over os.environ
            cwd: Working directory for the child
            capture: Capture stdout/stderr. When False the child writes
                straight to the console and '' is returned.

        Returns:
            Captured stdout

        Raises:
            CommandError: If the command cannot be started or exits non-zero
        """
        logger.debug(f"Running: {shlex.join(cmd)}")

        child_env = None
        if env:
            child_env = dict(os.environ)
            child_env.update(env)

        try:
            result = subprocess.run(
                cmd,
                env=child_env,
                cwd=cwd,
                capture_output=capture,
                text=True,
                check=False
            )
        except FileNotFoundError as e:
            raise CommandError(cmd, 127, str(e)) from e

        if result.returncode != 0:
            raise CommandError(cmd, result.returncode, result.stderr if capture else '')

        return result.stdout if capture else ''
