"""
Package deployment to the target device.

Copies the verified package to the device with scp and unpacks it in place
over ssh. Nothing is retried: a failed transfer or unpack on a physical
device is reported to the operator, who decides whether to run again.
"""

import logging
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ..command_runner import CommandError, CommandRunner
from ..config.project_config import DeployConfig
from ..errors import FailureKind

# ssh exits with 255 when the connection itself fails
SSH_CONNECTION_ERROR = 255


@dataclass
class DeploymentResult:
    """Result of a package deployment."""

    success: bool
    message: str
    target: Optional[str] = None
    failure: Optional[FailureKind] = None


class DeploymentError(Exception):
    """Raised when deployment operations fail."""

    def __init__(self, message: str, failure: FailureKind = FailureKind.DEPLOYMENT_FAILED):
        super().__init__(message)
        self.failure = failure


class Deployer:
    """Transfers a package to a remote device and unpacks it there."""

    def __init__(self, runner: Optional[CommandRunner] = None, verbose: bool = False):
        """Initialize deployer.

        Args:
            runner: Command runner for ssh/scp
            verbose: Whether to show verbose output
        """
        self.runner = runner or CommandRunner()
        self.verbose = verbose

    def deploy(self, package: Path, target: DeployConfig) -> DeploymentResult:
        """Deploy a package to the target.

        Args:
            package: Package archive that passed verification
            target: Remote device settings

        Returns:
            DeploymentResult with success status and message
        """
        destination = target.destination
        try:
            if not package.is_file():
                raise DeploymentError(f"Package not found at {package}. Build first.")

            self._check_reachable(target)

            remote_path = f"{target.remote_dir.rstrip('/')}/{package.name}"
            logging.info(f"Copying {package.name} to {destination}:{remote_path}...")
            self._transfer(package, target, remote_path)

            logging.info(f"Unpacking on {destination}...")
            self._unpack(target, package.name)

            return DeploymentResult(
                success=True,
                message=f"Deployed {package.name} to {destination}:{target.remote_dir}",
                target=destination,
            )

        except DeploymentError as e:
            return DeploymentResult(success=False, message=str(e), target=destination, failure=e.failure)
        except CommandError as e:
            return DeploymentResult(
                success=False,
                message=f"Deployment failed: {e}",
                target=destination,
                failure=FailureKind.DEPLOYMENT_FAILED,
            )

    def _ssh(self, target: DeployConfig, remote_command: str) -> list[str]:
        port = ["-p", str(target.port)] if target.port else []
        return ["ssh", *port, *target.ssh_options, target.destination, remote_command]

    def _check_reachable(self, target: DeployConfig) -> None:
        result = self.runner.run(self._ssh(target, "true"), timeout=60)
        if not result.ok:
            detail = result.stderr.strip()
            raise DeploymentError(
                f"Target {target.destination} is unreachable" + (f": {detail}" if detail else ""),
                FailureKind.DEPLOYMENT_UNREACHABLE,
            )

    def _transfer(self, package: Path, target: DeployConfig, remote_path: str) -> None:
        # scp spells the port option -P
        port = ["-P", str(target.port)] if target.port else []
        cmd = ["scp", *port, *target.ssh_options, str(package), f"{target.destination}:{remote_path}"]
        if self.verbose:
            print(f"Running: {' '.join(cmd)}")
        result = self.runner.run(cmd, capture=not self.verbose)
        if not result.ok:
            failure = (
                FailureKind.DEPLOYMENT_UNREACHABLE
                if result.returncode == SSH_CONNECTION_ERROR
                else FailureKind.DEPLOYMENT_FAILED
            )
            raise DeploymentError(
                f"Transfer to {target.destination} failed (exit {result.returncode}): "
                + (result.stderr.strip() or "no output"),
                failure,
            )

    def _unpack(self, target: DeployConfig, archive_name: str) -> None:
        remote_dir = shlex.quote(target.remote_dir)
        archive = shlex.quote(archive_name)
        remote_command = f"cd {remote_dir} && tar -xzf {archive}"
        result = self.runner.run(self._ssh(target, remote_command), capture=True)
        if not result.ok:
            raise DeploymentError(
                f"Remote unpack failed on {target.destination} (exit {result.returncode}): "
                + (result.stderr.strip() or "no output")
            )
