"""
Pipeline orchestration for crossbuild.

Sequences the pipeline and is the single place where component outcomes
are turned into a terminal status:

    Init -> ToolchainCheck -> [ToolchainProvision] -> DependencyBuild
         -> ProjectBuild -> Package -> Verify -> [Deploy] -> Done | Failed

Any failure jumps straight to Failed; later states are never entered.
Nothing is retried or resumed: every step is idempotent, so the operator
simply runs the pipeline again.

Example usage:
    config = ProjectConfig.load(Path("."))
    orchestrator = Orchestrator(config, run_mode=RunMode.FULL)
    result = orchestrator.run()
    if not result.success:
        print(result.message)
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from ..command_runner import CommandRunner
from ..config.project_config import DeployConfig, ProjectConfig
from ..config.targets import ToolchainDescriptor
from ..deploy.deployer import Deployer, DeploymentResult
from ..errors import FailureKind
from ..packages.platform_utils import PlatformDetector, PlatformError
from ..packages.provisioner import ToolchainProvisioner
from ..packages.toolchain import ToolchainLocation, ToolchainLocator
from .artifact_verifier import ArtifactVerifier, VerificationStatus, VerificationSummary
from .stage import BuildEnvironment, StageRole
from .stage_cache import StageCache
from .staged_builder import StagedBuilder, StageResult

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_WARNINGS = 3


class RunMode(Enum):
    """What part of the pipeline to run. Fixed for the lifetime of a run."""

    PROVISION_ONLY = "provision_only"
    BUILD_ONLY = "build_only"
    FULL = "full"


class PipelineState(Enum):
    """States of the pipeline state machine."""

    INIT = "Init"
    TOOLCHAIN_CHECK = "ToolchainCheck"
    TOOLCHAIN_PROVISION = "ToolchainProvision"
    DEPENDENCY_BUILD = "DependencyBuild"
    PROJECT_BUILD = "ProjectBuild"
    PACKAGE = "Package"
    VERIFY = "Verify"
    DEPLOY = "Deploy"
    DONE = "Done"
    FAILED = "Failed"


STAGE_STATES = {
    StageRole.DEPENDENCY: PipelineState.DEPENDENCY_BUILD,
    StageRole.PROJECT: PipelineState.PROJECT_BUILD,
    StageRole.PACKAGE: PipelineState.PACKAGE,
}


@dataclass
class PipelineResult:
    """Terminal outcome of a pipeline run."""

    state: PipelineState
    message: str
    failed_state: Optional[PipelineState] = None
    failure: Optional[FailureKind] = None
    build_env: Optional[BuildEnvironment] = None
    stage_results: List[StageResult] = field(default_factory=list)
    verification: Optional[VerificationSummary] = None
    deployment: Optional[DeploymentResult] = None
    history: List[PipelineState] = field(default_factory=list)
    build_time: float = 0.0

    @property
    def success(self) -> bool:
        return self.state is PipelineState.DONE

    @property
    def has_warnings(self) -> bool:
        return (
            self.verification is not None
            and self.verification.status is VerificationStatus.VERIFIED_WITH_WARNINGS
        )

    @property
    def exit_code(self) -> int:
        if not self.success:
            return EXIT_FAILURE
        return EXIT_WARNINGS if self.has_warnings else EXIT_SUCCESS


class PipelineFailure(Exception):
    """Fatal outcome of one pipeline state."""

    def __init__(self, state: PipelineState, failure: FailureKind, message: str):
        super().__init__(message)
        self.state = state
        self.failure = failure


class Orchestrator:
    """
    Runs the cross-compilation pipeline for one project.

    Collaborators are created from the configuration unless passed in.
    """

    def __init__(
        self,
        config: ProjectConfig,
        run_mode: RunMode = RunMode.FULL,
        host_system: Optional[str] = None,
        locator: Optional[ToolchainLocator] = None,
        provisioner: Optional[ToolchainProvisioner] = None,
        builder: Optional[StagedBuilder] = None,
        verifier: Optional[ArtifactVerifier] = None,
        deployer: Optional[Deployer] = None,
        deploy_target: Optional[DeployConfig] = None,
        clean: bool = False,
        strict: bool = False,
        verbose: bool = False,
        runner: Optional[CommandRunner] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Project configuration
            run_mode: Part of the pipeline to run
            host_system: Host identifier (auto-detected if None)
            locator: Toolchain locator
            provisioner: Toolchain provisioner
            builder: Stage builder
            verifier: Artifact verifier
            deployer: Package deployer
            deploy_target: Device to deploy to after verification (None = no deploy)
            clean: Rebuild the dependency stage even if it is cached
            strict: Treat secondary verification warnings as failures
            verbose: Stream nested command output
            runner: Command runner shared by the default collaborators
        """
        runner = runner or CommandRunner(verbose=verbose)
        self.config = config
        self.run_mode = run_mode
        self.host_system = host_system
        self.locator = locator or ToolchainLocator(runner)
        self.provisioner = provisioner or ToolchainProvisioner(self.locator, runner=runner)
        self.builder = builder or StagedBuilder(
            runner, cache=StageCache(config.state_dir), verbose=verbose
        )
        self.verifier = verifier or ArtifactVerifier(strict=strict)
        self.deployer = deployer or Deployer(runner, verbose=verbose)
        self.deploy_target = deploy_target
        self.clean = clean
        self._history: List[PipelineState] = []

    def run(self) -> PipelineResult:
        """
        Execute the pipeline.

        Returns:
            PipelineResult with the terminal state, the first failure (if
            any) and everything produced along the way
        """
        start_time = time.time()
        self._history = [PipelineState.INIT]
        result = PipelineResult(state=PipelineState.INIT, message="", history=self._history)

        try:
            self._enter(PipelineState.TOOLCHAIN_CHECK)
            descriptor = self._resolve_descriptor()
            location = self.locator.locate(descriptor)

            if self.run_mode is RunMode.PROVISION_ONLY:
                location = self._provision(descriptor)
                return self._done(result, start_time, f"Toolchain ready: {location.compiler_path}")

            if location.found:
                logging.info(f"Cross-compiler found: {location.compiler_path}")
                version = self.locator.probe_version(location)
                if version:
                    logging.info(version)
            elif self.run_mode is RunMode.BUILD_ONLY:
                raise PipelineFailure(
                    PipelineState.TOOLCHAIN_CHECK,
                    FailureKind.TOOLCHAIN_ABSENT,
                    f"Cross-compiler {descriptor.compiler_name} not found. "
                    "Run with --install first or without --build.",
                )
            else:
                logging.warning("Cross-compiler not found. Installing...")
                location = self._provision(descriptor)

            build_env = BuildEnvironment(
                cross_prefix=location.prefix,
                compiler_path=location.compiler_path,
                search_path=self.locator.search_path,
            )
            result.build_env = build_env

            for role in StageRole:
                result.stage_results.append(self._build(role, build_env))

            result.verification = self._verify()

            if self.deploy_target is not None:
                result.deployment = self._deploy(self.deploy_target)

            message = "Build complete!"
            if result.has_warnings:
                message = (
                    f"Build complete with {len(result.verification.warnings)} verification warning(s)"
                )
            return self._done(result, start_time, message)

        except PipelineFailure as e:
            self._history.append(PipelineState.FAILED)
            result.state = PipelineState.FAILED
            result.failed_state = e.state
            result.failure = e.failure
            result.message = f"{e.state.value} failed ({e.failure.label}): {e}"
            result.build_time = time.time() - start_time
            logging.error(result.message)
            return result

    def _enter(self, state: PipelineState) -> None:
        self._history.append(state)
        logging.debug(f"Pipeline state: {state.value}")

    def _done(self, result: PipelineResult, start_time: float, message: str) -> PipelineResult:
        self._history.append(PipelineState.DONE)
        result.state = PipelineState.DONE
        result.message = message
        result.build_time = time.time() - start_time
        return result

    def _resolve_descriptor(self) -> ToolchainDescriptor:
        host = self.host_system
        if host is None:
            try:
                host = PlatformDetector.detect_host()
            except PlatformError as e:
                raise PipelineFailure(
                    PipelineState.TOOLCHAIN_CHECK, FailureKind.UNSUPPORTED_HOST, str(e)
                ) from e

        descriptor = self.config.resolve_toolchain(host)
        if descriptor is None:
            raise PipelineFailure(
                PipelineState.TOOLCHAIN_CHECK,
                FailureKind.UNSUPPORTED_HOST,
                f"No cross-compiler available for host '{host}'. Use Docker or WSL on this platform.",
            )
        if descriptor.target_arch != self.config.target_arch:
            raise PipelineFailure(
                PipelineState.TOOLCHAIN_CHECK,
                FailureKind.CONFIGURATION,
                f"Toolchain for host '{host}' targets {descriptor.target_arch}, "
                f"project targets {self.config.target_arch}",
            )
        return descriptor

    def _provision(self, descriptor: ToolchainDescriptor) -> ToolchainLocation:
        self._enter(PipelineState.TOOLCHAIN_PROVISION)
        outcome = self.provisioner.provision(descriptor)
        if not outcome.success or outcome.location is None:
            raise PipelineFailure(
                PipelineState.TOOLCHAIN_PROVISION,
                outcome.failure or FailureKind.PROVISION_FAILED,
                outcome.message,
            )
        return outcome.location

    def _build(self, role: StageRole, build_env: BuildEnvironment) -> StageResult:
        state = STAGE_STATES[role]
        self._enter(state)
        stage = self.config.stages[role]
        use_cache = role is StageRole.DEPENDENCY and not self.clean
        outcome = self.builder.run(stage, build_env, use_cache=use_cache)
        if not outcome.success:
            raise PipelineFailure(
                state, outcome.failure or FailureKind.STAGE_EXECUTION_FAILED, outcome.message
            )
        if outcome.cache_hit:
            logging.info(
                f"{stage.name} already built (remove {stage.output.name} or use --clean to rebuild)"
            )
        return outcome

    def _verify(self) -> VerificationSummary:
        self._enter(PipelineState.VERIFY)
        summary = self.verifier.verify_all(self.config.artifacts())
        if summary.status is VerificationStatus.FAILED:
            details = "; ".join(
                f"{r.artifact.path.name}: expected {r.artifact.arch}, got {r.observed}"
                for r in summary.failures
            )
            raise PipelineFailure(PipelineState.VERIFY, FailureKind.ARCHITECTURE_MISMATCH, details)
        return summary

    def _deploy(self, target: DeployConfig) -> DeploymentResult:
        self._enter(PipelineState.DEPLOY)
        outcome = self.deployer.deploy(self.config.package_path, target)
        if not outcome.success:
            raise PipelineFailure(
                PipelineState.DEPLOY, outcome.failure or FailureKind.DEPLOYMENT_FAILED, outcome.message
            )
        return outcome
