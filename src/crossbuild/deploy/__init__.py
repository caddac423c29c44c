"""
Package deployment for crossbuild.

Copies the verified package to the target device and unpacks it there.
"""

from .deployer import Deployer, DeploymentError, DeploymentResult

__all__ = [
    "Deployer",
    "DeploymentResult",
    "DeploymentError",
]
