"""Cross-compiler discovery.

Looks the cross-compiler up on the executable search path. Absence is a
normal outcome: the orchestrator decides whether to provision or fail.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..command_runner import CommandError, CommandRunner
from ..config.targets import ToolchainDescriptor


@dataclass
class ToolchainLocation:
    """Result of looking up a cross-compiler."""

    found: bool
    prefix: str
    compiler_path: Optional[Path] = None
    version: Optional[str] = None


class ToolchainLocator:
    """Finds `<prefix>gcc` on the search path without building anything."""

    def __init__(self, runner: Optional[CommandRunner] = None, search_path: Optional[str] = None):
        """Initialize the locator.

        Args:
            runner: Command runner used for PATH lookup and the version probe
            search_path: PATH string to search (defaults to the process PATH)
        """
        self.runner = runner or CommandRunner()
        self.search_path = search_path

    def locate(self, descriptor: ToolchainDescriptor) -> ToolchainLocation:
        """Look up the descriptor's compiler on the search path.

        Args:
            descriptor: Toolchain to look for

        Returns:
            ToolchainLocation with found=False if the compiler is absent
        """
        compiler = descriptor.compiler_name
        path = self.runner.which(compiler, self.search_path)
        if path is None:
            logging.debug(f"{compiler} not found on PATH")
            return ToolchainLocation(found=False, prefix=descriptor.prefix)
        logging.debug(f"Found {compiler} at {path}")
        return ToolchainLocation(found=True, prefix=descriptor.prefix, compiler_path=path)

    def probe_version(self, location: ToolchainLocation) -> Optional[str]:
        """Run `<prefix>gcc --version` and return its first line.

        The probe is informational; a compiler that fails it is still
        reported as found.
        """
        if not location.found or location.compiler_path is None:
            return None
        try:
            result = self.runner.run([str(location.compiler_path), "--version"], timeout=30)
        except CommandError as e:
            logging.warning(f"Version probe failed: {e}")
            return None
        if not result.ok:
            logging.warning(f"Version probe exited with {result.returncode}")
            return None
        location.version = result.first_line() or None
        return location.version
