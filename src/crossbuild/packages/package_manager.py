"""Host package-manager adapters.

The provisioner only needs three capabilities from a package manager:
registering an extension channel (Homebrew tap, apt repository), querying
whether a package is installed, and installing it. Each adapter maps those
onto the manager's command set; everything else about the manager is
opaque.
"""

import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from ..command_runner import CommandRunner, CommandResult
from ..config.targets import APT, HOMEBREW


class PackageManagerError(Exception):
    """Raised when a package-manager command fails."""

    pass


class PackageManager(ABC):
    """Base class for host package managers."""

    name = ""
    executable = ""

    def __init__(self, runner: Optional[CommandRunner] = None):
        self.runner = runner or CommandRunner()

    def is_available(self) -> bool:
        """Check whether the package manager executable is on PATH."""
        return self.runner.which(self.executable) is not None

    @abstractmethod
    def has_source(self, source: Optional[str]) -> bool:
        """Check whether an extension channel is already registered."""

    @abstractmethod
    def add_source(self, source: str) -> None:
        """Register an extension channel."""

    @abstractmethod
    def is_installed(self, package: str) -> bool:
        """Check whether a package is installed."""

    @abstractmethod
    def install(self, package: str) -> None:
        """Install a package."""

    def _check(self, result: CommandResult, action: str) -> CommandResult:
        if not result.ok:
            detail = result.stderr.strip() or result.stdout.strip()
            raise PackageManagerError(
                f"{self.name}: {action} failed (exit {result.returncode})"
                + (f": {detail}" if detail else "")
            )
        return result


class HomebrewPackageManager(PackageManager):
    """Homebrew (macOS). Channels are taps, packages are formulae."""

    name = HOMEBREW
    executable = "brew"

    def has_source(self, source: Optional[str]) -> bool:
        if not source:
            return True
        result = self._check(self.runner.run(["brew", "tap"]), "listing taps")
        taps = {line.strip().lower() for line in result.stdout.splitlines()}
        return source.lower() in taps

    def add_source(self, source: str) -> None:
        self._check(self.runner.run(["brew", "tap", source]), f"tap {source}")

    def is_installed(self, package: str) -> bool:
        return self.runner.run(["brew", "list", "--formula", package]).ok

    def install(self, package: str) -> None:
        self._check(
            self.runner.run(["brew", "install", package], capture=False),
            f"install {package}",
        )


class AptPackageManager(PackageManager):
    """apt/dpkg (Debian, Ubuntu). Channels are apt repositories or PPAs."""

    name = APT
    executable = "apt-get"

    SOURCES_FILE = Path("/etc/apt/sources.list")
    SOURCES_DIR = Path("/etc/apt/sources.list.d")

    def _privileged(self, args: list[str]) -> list[str]:
        if hasattr(os, "geteuid") and os.geteuid() != 0 and self.runner.which("sudo"):
            return ["sudo"] + args
        return args

    def _source_files(self) -> list[Path]:
        files = [self.SOURCES_FILE] if self.SOURCES_FILE.is_file() else []
        if self.SOURCES_DIR.is_dir():
            files.extend(sorted(self.SOURCES_DIR.glob("*.list")))
            files.extend(sorted(self.SOURCES_DIR.glob("*.sources")))
        return files

    def has_source(self, source: Optional[str]) -> bool:
        if not source:
            return True
        needle = source.split(":", 1)[-1].lower()  # "ppa:owner/name" -> "owner/name"
        for path in self._source_files():
            try:
                if needle in path.read_text(encoding="utf-8", errors="replace").lower():
                    return True
            except OSError:
                continue
        return False

    def add_source(self, source: str) -> None:
        self._check(
            self.runner.run(self._privileged(["add-apt-repository", "-y", source])),
            f"add repository {source}",
        )
        self._check(
            self.runner.run(self._privileged(["apt-get", "update"])),
            "update package index",
        )

    def is_installed(self, package: str) -> bool:
        result = self.runner.run(["dpkg-query", "-W", "-f=${Status}", package])
        return result.ok and "install ok installed" in result.stdout

    def install(self, package: str) -> None:
        self._check(
            self.runner.run(
                self._privileged(["apt-get", "install", "-y", package]), capture=False
            ),
            f"install {package}",
        )


PACKAGE_MANAGERS = {
    HOMEBREW: HomebrewPackageManager,
    APT: AptPackageManager,
}


def create_package_manager(kind: str, runner: Optional[CommandRunner] = None) -> PackageManager:
    """Create the adapter for a package-manager kind.

    Args:
        kind: Package-manager identifier ('homebrew' or 'apt')
        runner: Command runner to use

    Returns:
        PackageManager instance

    Raises:
        PackageManagerError: If the kind is unknown
    """
    try:
        return PACKAGE_MANAGERS[kind](runner)
    except KeyError:
        raise PackageManagerError(f"Unknown package manager: {kind}") from None
