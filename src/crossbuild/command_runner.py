"""Subprocess execution for external collaborators.

Every external tool the pipeline talks to (package managers, the nested
build tools, scp/ssh) goes through ``CommandRunner`` so tests can replace
it with a mock and so an interrupted run never leaves orphaned children.

Design:
    - Wraps subprocess.Popen so the child PID is known while it runs
    - Captures output for query commands, streams it for build commands
    - Terminates the whole process tree on Ctrl-C or timeout
"""

import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Sequence

from .interrupt_utils import terminate_process_tree


class CommandError(Exception):
    """Raised when a command cannot be started or does not finish."""

    pass


class CommandNotFoundError(CommandError):
    """Raised when the executable of a command does not exist."""

    pass


@dataclass
class CommandResult:
    """Outcome of a finished command."""

    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def first_line(self) -> str:
        """First non-empty line of stdout (empty string if none)."""
        for line in self.stdout.splitlines():
            if line.strip():
                return line.strip()
        return ""


class CommandRunner:
    """Runs external commands with process-tree cleanup."""

    def __init__(self, verbose: bool = False):
        """Initialize command runner.

        Args:
            verbose: Stream output of captured commands as well
        """
        self.verbose = verbose

    def which(self, name: str, search_path: Optional[str] = None) -> Optional[Path]:
        """Resolve an executable name on the search path.

        Args:
            name: Executable name (e.g., 'aarch64-linux-gnu-gcc')
            search_path: PATH string to search (defaults to os.environ PATH)

        Returns:
            Absolute path of the executable, or None if not found
        """
        found = shutil.which(name, path=search_path)
        return Path(found) if found else None

    def run(
        self,
        args: Sequence[str],
        cwd: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
        capture: bool = True,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """Run a command to completion.

        Args:
            args: Command and arguments
            cwd: Working directory (inherits ours if None)
            env: Full environment for the child (inherits ours if None)
            capture: Capture stdout/stderr instead of streaming to the terminal
            timeout: Seconds before the command is killed

        Returns:
            CommandResult with the exit status and captured output

        Raises:
            CommandNotFoundError: If the executable does not exist
            CommandError: If the command cannot be started or times out
        """
        argv = [str(a) for a in args]
        pipe = subprocess.PIPE if capture else None

        try:
            proc = subprocess.Popen(
                argv,
                cwd=str(cwd) if cwd is not None else None,
                env=dict(env) if env is not None else None,
                stdout=pipe,
                stderr=pipe,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except FileNotFoundError as e:
            raise CommandNotFoundError(f"Command not found: {argv[0]}") from e
        except OSError as e:
            raise CommandError(f"Cannot run {argv[0]}: {e}") from e

        try:
            stdout, stderr = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            terminate_process_tree(proc.pid)
            proc.communicate()
            raise CommandError(f"Command timed out after {timeout}s: {' '.join(argv)}")
        except KeyboardInterrupt:
            terminate_process_tree(proc.pid)
            raise

        result = CommandResult(
            args=argv,
            returncode=proc.returncode,
            stdout=stdout or "",
            stderr=stderr or "",
        )
        if self.verbose and capture and result.stdout:
            print(result.stdout, end="")
        return result
