"""Platform Detection Utilities.

Detects the host operating system so the matching cross-compiler
descriptor and package manager can be selected.

Supported Hosts:
    - macOS (Homebrew)
    - Linux (apt)
"""

import platform
from typing import Literal

HostSystem = Literal["darwin", "linux", "windows"]


class PlatformError(Exception):
    """Raised when platform detection fails or platform is unsupported."""

    pass


class PlatformDetector:
    """Detects the current host platform."""

    @staticmethod
    def detect_host() -> HostSystem:
        """Detect the host operating system.

        Returns:
            Host identifier ('darwin', 'linux' or 'windows')

        Raises:
            PlatformError: If the operating system is not recognised
        """
        system = platform.system().lower()
        if system in ("darwin", "linux", "windows"):
            return system  # type: ignore[return-value]
        raise PlatformError(f"Unsupported platform: {platform.system()} {platform.machine()}")

    @staticmethod
    def host_machine() -> str:
        """Normalized host CPU architecture ('x86_64', 'aarch64', ...)."""
        machine = platform.machine().lower()
        if machine in ("amd64", "x64"):
            return "x86_64"
        if machine == "arm64":
            return "aarch64"
        return machine
