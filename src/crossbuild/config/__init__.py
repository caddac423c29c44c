"""Configuration modules for crossbuild."""

from .project_config import DeployConfig, ProjectConfig, ProjectConfigError
from .targets import ToolchainDescriptor, get_toolchain_descriptor

__all__ = [
    "ProjectConfig",
    "ProjectConfigError",
    "DeployConfig",
    "ToolchainDescriptor",
    "get_toolchain_descriptor",
]
