"""Toolchain discovery and provisioning for crossbuild.

This module finds the cross-compiler on the host and installs it through
the host package manager when it is missing.
"""

from .package_manager import (
    AptPackageManager,
    HomebrewPackageManager,
    PackageManager,
    PackageManagerError,
    create_package_manager,
)
from .platform_utils import PlatformDetector, PlatformError
from .provisioner import ProvisionError, ProvisionResult, ToolchainProvisioner
from .toolchain import ToolchainLocation, ToolchainLocator

__all__ = [
    "AptPackageManager",
    "HomebrewPackageManager",
    "PackageManager",
    "PackageManagerError",
    "create_package_manager",
    "PlatformDetector",
    "PlatformError",
    "ProvisionError",
    "ProvisionResult",
    "ToolchainProvisioner",
    "ToolchainLocation",
    "ToolchainLocator",
]
