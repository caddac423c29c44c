"""
Build stage and artifact models.

Stages and artifacts are static configuration: they are created once when
the project configuration is loaded and never mutated afterwards.
"""

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional

# Variables through which nested build tools pick their compiler. Values
# inherited from the operator's shell are dropped so a stray CC=gcc can
# never reach a nested build.
COMPILER_VARIABLES = ("CC", "CXX", "AR", "AS", "LD", "NM", "STRIP", "RANLIB", "OBJCOPY")


class StageRole(Enum):
    """Position of a stage in the fixed pipeline."""

    DEPENDENCY = "dependency"
    PROJECT = "project"
    PACKAGE = "package"


class ArtifactKind(Enum):
    """Expected binary kind of a produced artifact."""

    EXECUTABLE = "executable"
    SHARED_LIBRARY = "shared-library"


@dataclass(frozen=True)
class BuildStage:
    """One step of the pipeline: commands run in a directory, producing one output."""

    name: str
    role: StageRole
    working_dir: Path
    commands: tuple[tuple[str, ...], ...]
    output: Path
    cacheable: bool = False
    cleanup_commands: tuple[tuple[str, ...], ...] = ()
    env_overrides: tuple[tuple[str, str], ...] = ()


@dataclass(frozen=True)
class Artifact:
    """A produced file and the format it is expected to have."""

    path: Path
    kind: ArtifactKind
    arch: str
    primary: bool = False
    unmatched_pattern: Optional[str] = None  # set when a glob produced no file


@dataclass(frozen=True)
class BuildEnvironment:
    """Resolved cross-compiler settings threaded through every stage.

    The prefix travels as an explicit value; the nested tools only see it
    in the environment built by ``for_stage``.
    """

    cross_prefix: str
    compiler_path: Optional[Path] = None
    search_path: Optional[str] = None

    PREFIX_VARIABLE = "CROSS_PREFIX"

    @property
    def compiler_name(self) -> str:
        return f"{self.cross_prefix}gcc"

    def expand(self, value: str) -> str:
        """Substitute the ``{prefix}`` placeholder."""
        return value.replace("{prefix}", self.cross_prefix)

    def for_stage(self, stage: BuildStage, base_env: Optional[Mapping[str, str]] = None) -> dict[str, str]:
        """Build the complete child environment for a stage.

        Args:
            stage: Stage whose overrides are applied
            base_env: Environment to start from (defaults to os.environ)

        Returns:
            Environment dictionary for the nested build command
        """
        source = os.environ if base_env is None else base_env
        env = {k: v for k, v in source.items() if k not in COMPILER_VARIABLES}
        if self.search_path is not None:
            env["PATH"] = self.search_path
        env[self.PREFIX_VARIABLE] = self.cross_prefix
        for key, value in stage.env_overrides:
            env[key] = self.expand(value)
        return env
