"""
Cross-compiler catalog for supported host platforms.

One ToolchainDescriptor per host platform, describing which package
provides the aarch64 Linux cross-compiler there and how its executables
are named.
"""

from dataclasses import dataclass, replace
from typing import Optional

TARGET_AARCH64 = "aarch64"

HOMEBREW = "homebrew"
APT = "apt"


@dataclass(frozen=True)
class ToolchainDescriptor:
    """How to find and provision a cross-compiler on one host platform."""

    target_arch: str
    prefix: str  # e.g. "aarch64-linux-gnu-"
    package: str  # package-manager identifier of the compiler
    source: Optional[str]  # tap/repo to register, None for the default channel
    package_manager: str
    extra_packages: tuple[str, ...] = ()

    def tool_name(self, tool: str) -> str:
        """Executable name of a tool, e.g. tool_name('strip')."""
        return f"{self.prefix}{tool}"

    @property
    def compiler_name(self) -> str:
        return self.tool_name("gcc")

    @property
    def packages(self) -> tuple[str, ...]:
        return (self.package,) + self.extra_packages

    def with_overrides(
        self,
        prefix: Optional[str] = None,
        package: Optional[str] = None,
        source: Optional[str] = None,
    ) -> "ToolchainDescriptor":
        """Return a copy with non-None fields replaced."""
        changes = {}
        if prefix:
            changes["prefix"] = prefix
        if package:
            changes["package"] = package
        if source:
            changes["source"] = source
        return replace(self, **changes) if changes else self


TOOLCHAINS = {
    "darwin": ToolchainDescriptor(
        target_arch=TARGET_AARCH64,
        prefix="aarch64-unknown-linux-gnu-",
        package="aarch64-unknown-linux-gnu",
        source="messense/macos-cross-toolchains",
        package_manager=HOMEBREW,
    ),
    "linux": ToolchainDescriptor(
        target_arch=TARGET_AARCH64,
        prefix="aarch64-linux-gnu-",
        package="gcc-aarch64-linux-gnu",
        source=None,
        package_manager=APT,
        extra_packages=("g++-aarch64-linux-gnu",),
    ),
}


def get_toolchain_descriptor(host_system: str) -> Optional[ToolchainDescriptor]:
    """
    Get the cross-compiler descriptor for a host platform.

    Args:
        host_system: Host identifier ('darwin', 'linux', ...)

    Returns:
        ToolchainDescriptor if the host is supported, None otherwise
    """
    return TOOLCHAINS.get(host_system.lower())
