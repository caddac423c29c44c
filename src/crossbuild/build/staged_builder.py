"""Staged build execution.

Runs one pipeline stage at a time:

    cache check -> toolchain guard -> cleanup -> commands -> output check -> marker

Design:
    - The cross-compiler prefix arrives as an explicit BuildEnvironment
    - A stage refuses to run when the cross-compiler cannot be resolved,
      rather than letting the nested tool fall back to the host compiler
    - A zero exit status is not trusted: the declared output must exist
    - The working directory is restored on every exit path
"""

import logging
import os
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Mapping, Optional, Sequence

from ..command_runner import CommandError, CommandResult, CommandRunner
from ..errors import FailureKind
from .stage import COMPILER_VARIABLES, BuildEnvironment, BuildStage
from .stage_cache import StageCache


class StageError(Exception):
    """Raised when a stage cannot complete."""

    def __init__(self, message: str, failure: FailureKind = FailureKind.STAGE_EXECUTION_FAILED):
        super().__init__(message)
        self.failure = failure


@dataclass
class StageResult:
    """Result of running one stage."""

    stage_name: str
    success: bool
    message: str
    artifact_path: Optional[Path] = None
    cache_hit: bool = False
    failure: Optional[FailureKind] = None
    duration: float = 0.0


@contextmanager
def working_directory(path: Path) -> Iterator[Path]:
    """Change into ``path`` for the duration of the block."""
    previous = Path.cwd()
    os.chdir(path)
    try:
        yield path
    finally:
        os.chdir(previous)


class StagedBuilder:
    """Executes build stages with the cross-compiler environment."""

    # Keep the tail of a failed command's stderr in the failure message
    STDERR_TAIL_LINES = 20

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        cache: Optional[StageCache] = None,
        verbose: bool = False,
        base_env: Optional[Mapping[str, str]] = None,
    ):
        """Initialize the builder.

        Args:
            runner: Command runner for the nested build tools
            cache: Completion-marker store for cacheable stages
            verbose: Stream nested build output instead of capturing it
            base_env: Environment the stage environments derive from
                (defaults to os.environ)
        """
        self.runner = runner or CommandRunner()
        self.cache = cache
        self.verbose = verbose
        self.base_env = base_env

    def run(self, stage: BuildStage, build_env: BuildEnvironment, use_cache: bool = False) -> StageResult:
        """Run a stage.

        Args:
            stage: Stage to run
            build_env: Resolved cross-compiler settings
            use_cache: Skip execution when the stage is cacheable and its
                completion marker is fresh

        Returns:
            StageResult describing success, cache hit or failure
        """
        start_time = time.time()
        try:
            if use_cache and stage.cacheable and self.cache and self.cache.is_fresh(stage, build_env):
                logging.info(f"{stage.name}: already built ({stage.output}), skipping")
                return StageResult(
                    stage_name=stage.name,
                    success=True,
                    message="cache hit",
                    artifact_path=stage.output,
                    cache_hit=True,
                    duration=time.time() - start_time,
                )

            env = self._prepare_environment(stage, build_env)

            if self.cache and stage.cacheable:
                self.cache.invalidate(stage)

            if not stage.working_dir.is_dir():
                raise StageError(f"Working directory not found: {stage.working_dir}")

            logging.info(f"Building {stage.name}...")
            with working_directory(stage.working_dir):
                self._cleanup(stage, env)
                for command in stage.commands:
                    self._execute(stage, command, env)

            if not stage.output.exists():
                raise StageError(
                    f"{stage.name} build reported success but {stage.output} was not produced",
                    FailureKind.STAGE_ARTIFACT_MISSING,
                )

            if self.cache and stage.cacheable:
                self.cache.record(stage, build_env)

            logging.info(f"{stage.name} built successfully")
            return StageResult(
                stage_name=stage.name,
                success=True,
                message="built",
                artifact_path=stage.output,
                duration=time.time() - start_time,
            )

        except StageError as e:
            logging.error(f"{stage.name}: {e}")
            return StageResult(
                stage_name=stage.name,
                success=False,
                message=str(e),
                failure=e.failure,
                duration=time.time() - start_time,
            )
        except OSError as e:
            logging.error(f"{stage.name}: {e}")
            return StageResult(
                stage_name=stage.name,
                success=False,
                message=f"{stage.name}: {e}",
                failure=FailureKind.STAGE_EXECUTION_FAILED,
                duration=time.time() - start_time,
            )

    def _prepare_environment(self, stage: BuildStage, build_env: BuildEnvironment) -> dict[str, str]:
        """Build the stage environment and make sure it targets the cross-compiler."""
        prefix = build_env.cross_prefix
        if not prefix:
            raise StageError(
                f"No cross-compiler prefix resolved for {stage.name}; "
                "refusing to build with the native compiler"
            )

        env = build_env.for_stage(stage, self.base_env)

        compiler = self.runner.which(build_env.compiler_name, env.get("PATH"))
        if compiler is None:
            raise StageError(
                f"Cross-compiler {build_env.compiler_name} is not on PATH; "
                f"refusing to run {stage.name} with the native compiler"
            )

        for key in COMPILER_VARIABLES:
            value = env.get(key)
            if value is None:
                continue
            # A launcher may precede the compiler, e.g. "ccache aarch64-linux-gnu-gcc"
            if not any(Path(word).name.startswith(prefix) for word in value.split()):
                raise StageError(
                    f"{stage.name}: {key}={value} does not use the cross-compiler prefix '{prefix}'"
                )

        logging.debug(f"{stage.name}: {BuildEnvironment.PREFIX_VARIABLE}={prefix} ({compiler})")
        return env

    def _cleanup(self, stage: BuildStage, env: dict[str, str]) -> None:
        """Run cleanup commands; a failure is only tolerated if there is nothing to clean."""
        for command in stage.cleanup_commands:
            result = self._run(stage, command, env)
            if not result.ok:
                if stage.output.exists():
                    raise StageError(
                        f"Cleanup '{' '.join(command)}' failed (exit {result.returncode}) "
                        f"and {stage.output} is still present"
                    )
                logging.debug(f"{stage.name}: '{' '.join(command)}' failed, nothing to clean")

    def _execute(self, stage: BuildStage, command: Sequence[str], env: dict[str, str]) -> None:
        result = self._run(stage, command, env)
        if result.ok:
            return
        message = f"'{' '.join(command)}' exited with {result.returncode}"
        tail = result.stderr.strip().splitlines()[-self.STDERR_TAIL_LINES:]
        if tail:
            message += "\n" + "\n".join(tail)
        raise StageError(message)

    def _run(self, stage: BuildStage, command: Sequence[str], env: dict[str, str]) -> CommandResult:
        if self.verbose:
            print(f"Running: {' '.join(command)}")
        try:
            return self.runner.run(
                command,
                cwd=stage.working_dir,
                env=env,
                capture=not self.verbose,
            )
        except CommandError as e:
            raise StageError(f"{stage.name}: {e}") from e
