"""Idempotent cross-compiler provisioning.

Every step looks at the current host state before acting, so an
interrupted provisioning run can simply be started again:

1. Package manager present?
2. Extension channel (tap/repository) registered? Register if not.
3. Compiler package(s) installed? Install if not.
4. Re-run the locator to confirm the compiler is now on PATH.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from ..command_runner import CommandError, CommandRunner
from ..config.targets import ToolchainDescriptor
from ..errors import FailureKind
from .package_manager import (
    PackageManager,
    PackageManagerError,
    create_package_manager,
)
from .toolchain import ToolchainLocation, ToolchainLocator


class ProvisionError(Exception):
    """Raised when the cross-compiler cannot be provisioned."""

    pass


@dataclass
class ProvisionResult:
    """Result of a provisioning run."""

    success: bool
    message: str
    location: Optional[ToolchainLocation] = None
    actions: list[str] = field(default_factory=list)  # host mutations performed
    failure: Optional[FailureKind] = None


class ToolchainProvisioner:
    """Installs the cross-compiler through the host package manager."""

    def __init__(
        self,
        locator: ToolchainLocator,
        package_manager: Optional[PackageManager] = None,
        runner: Optional[CommandRunner] = None,
    ):
        """Initialize the provisioner.

        Args:
            locator: Locator used for the post-install check
            package_manager: Package manager adapter (created from the
                descriptor when omitted)
            runner: Command runner handed to a created package manager
        """
        self.locator = locator
        self.package_manager = package_manager
        self.runner = runner

    def provision(self, descriptor: ToolchainDescriptor) -> ProvisionResult:
        """Ensure the descriptor's cross-compiler is installed and on PATH.

        Args:
            descriptor: Toolchain to provision

        Returns:
            ProvisionResult; ``actions`` is empty when nothing had to change
        """
        actions: list[str] = []
        try:
            manager = self.package_manager or create_package_manager(
                descriptor.package_manager, self.runner
            )
            if not manager.is_available():
                raise ProvisionError(
                    f"{manager.name} is required to install the cross-compiler "
                    f"but '{manager.executable}' was not found on PATH"
                )

            logging.info(f"Provisioning {descriptor.target_arch} cross-compiler via {manager.name}...")

            if descriptor.source:
                self._ensure_source(manager, descriptor.source, actions)

            for package in descriptor.packages:
                self._ensure_package(manager, package, actions)

            location = self.locator.locate(descriptor)
            if not location.found:
                raise ProvisionError(
                    f"Toolchain installation failed. {descriptor.compiler_name} not found in PATH."
                )

            version = self.locator.probe_version(location)
            if version:
                logging.info(version)
            logging.info("Toolchain installed successfully")
            return ProvisionResult(
                success=True,
                message=f"Cross-compiler ready: {location.compiler_path}",
                location=location,
                actions=actions,
            )

        except (ProvisionError, PackageManagerError, CommandError) as e:
            return ProvisionResult(
                success=False,
                message=str(e),
                actions=actions,
                failure=FailureKind.PROVISION_FAILED,
            )

    def _ensure_source(self, manager: PackageManager, source: str, actions: list[str]) -> None:
        if manager.has_source(source):
            logging.info(f"Package source already registered: {source}")
            return
        logging.info(f"Adding {manager.name} source: {source}")
        self._attempt(
            lambda: manager.add_source(source),
            lambda: manager.has_source(source),
            f"register {source}",
        )
        actions.append(f"add-source:{source}")

    def _ensure_package(self, manager: PackageManager, package: str, actions: list[str]) -> None:
        if manager.is_installed(package):
            logging.info(f"{package} already installed")
            return
        logging.info(f"Installing {package} (this may take a few minutes)...")
        self._attempt(
            lambda: manager.install(package),
            lambda: manager.is_installed(package),
            f"install {package}",
        )
        actions.append(f"install:{package}")

    @staticmethod
    def _attempt(action: Callable[[], None], satisfied: Callable[[], bool], what: str) -> None:
        """Run an action, tolerating failure only if the desired state holds anyway."""
        try:
            action()
        except PackageManagerError as e:
            if satisfied():
                logging.debug(f"{what}: already in desired state ({e})")
                return
            raise ProvisionError(f"Failed to {what}: {e}") from e
