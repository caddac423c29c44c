"""
Command-line interface for crossbuild.

This module provides the `crossbuild` CLI tool: install the aarch64 Linux
cross-compiler if needed, build the project, verify the binaries and
optionally deploy the package to the device.
"""

import argparse
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from crossbuild import __version__
from crossbuild.build.orchestrator import (
    Orchestrator,
    PipelineResult,
    RunMode,
)
from crossbuild.cli_utils import ErrorFormatter, PathValidator, setup_logging
from crossbuild.config import DeployConfig, ProjectConfig, ProjectConfigError

EXIT_USAGE = 2


@dataclass
class RunArgs:
    """Arguments for a pipeline run."""

    project_dir: Path
    run_mode: RunMode = RunMode.FULL
    config_path: Optional[Path] = None
    deploy: Optional[str] = None  # "" = host from crossbuild.ini
    clean: bool = False
    strict: bool = False
    verbose: bool = False
    log_file: Optional[Path] = None


def resolve_deploy_target(config: ProjectConfig, deploy: Optional[str]) -> Optional[DeployConfig]:
    """Work out where to deploy, if anywhere.

    Args:
        config: Project configuration
        deploy: --deploy value (None = no deploy, "" = configured host,
            otherwise a host or user@host overriding the configured one)

    Returns:
        DeployConfig or None

    Raises:
        ProjectConfigError: If --deploy was given without a host and none is configured
    """
    if deploy is None:
        return None
    if deploy:
        if config.deploy is None:
            return DeployConfig(host=deploy)
        return DeployConfig(
            host=deploy,
            user=None if "@" in deploy else config.deploy.user,
            remote_dir=config.deploy.remote_dir,
            ssh_options=config.deploy.ssh_options,
            port=config.deploy.port,
        )
    if config.deploy is None:
        raise ProjectConfigError("--deploy needs a host: none configured in [deploy]")
    return config.deploy


def print_report(result: PipelineResult, config: ProjectConfig, args: RunArgs) -> None:
    """Print the terminal status of a run."""
    if not result.success:
        failed = result.failed_state.value if result.failed_state else "Pipeline"
        ErrorFormatter.print_error(f"{failed} failed", result.message)
        return

    if result.verification is not None:
        for warning in result.verification.warnings:
            ErrorFormatter.print_warning(
                f"{warning.artifact.path} may not be the correct architecture: {warning.observed}"
            )

    ErrorFormatter.print_success(result.message)
    if args.run_mode is RunMode.PROVISION_ONLY:
        return

    print()
    print(f"Output: {config.package_path}")
    if result.deployment is not None:
        print(f"Deployed to: {result.deployment.target}")
    elif config.deploy is not None:
        print()
        print("To install on the device:")
        print(f"  crossbuild --build --deploy {config.deploy.destination}")
    print(f"Build time: {result.build_time:.2f}s")


def run_command(args: RunArgs) -> None:
    """Run the cross-compilation pipeline.

    Examples:
        crossbuild                     # Install toolchain if needed, then build
        crossbuild --install           # Only install toolchain
        crossbuild --build             # Only build (assumes toolchain installed)
        crossbuild --deploy            # Build and deploy to the configured device
        crossbuild --build --deploy root@move.local
    """
    setup_logging(verbose=args.verbose, log_file=args.log_file)

    try:
        config = ProjectConfig.load(args.project_dir, args.config_path)
        deploy_target = resolve_deploy_target(config, args.deploy)
    except ProjectConfigError as e:
        ErrorFormatter.print_error("Configuration error", str(e))
        sys.exit(EXIT_USAGE)

    print(f"=== {config.name} cross build ===")
    print()

    try:
        orchestrator = Orchestrator(
            config,
            run_mode=args.run_mode,
            deploy_target=deploy_target,
            clean=args.clean,
            strict=args.strict,
            verbose=args.verbose,
        )
        result = orchestrator.run()
        print_report(result, config, args)
        sys.exit(result.exit_code)

    except KeyboardInterrupt:
        ErrorFormatter.handle_keyboard_interrupt()
    except Exception as e:
        ErrorFormatter.handle_unexpected_error(e, args.verbose)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="crossbuild",
        description="Cross-compile the project for the aarch64 Linux target.",
        epilog="With no mode option, installs the toolchain if needed and builds the project.",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"crossbuild {__version__}",
    )
    parser.add_argument(
        "project_dir",
        nargs="?",
        type=Path,
        default=Path.cwd(),
        help="Project directory (default: current directory)",
    )

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--install",
        action="store_true",
        help="Only install the cross-compiler toolchain",
    )
    mode.add_argument(
        "--build",
        action="store_true",
        help="Only build (skip toolchain install, fail if it is missing)",
    )

    parser.add_argument(
        "--deploy",
        nargs="?",
        const="",
        default=None,
        metavar="HOST",
        help="Deploy the package after verification (default host from crossbuild.ini)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Configuration file (default: <project_dir>/crossbuild.ini or built-in defaults)",
    )
    parser.add_argument(
        "-c",
        "--clean",
        action="store_true",
        help="Rebuild the dependency library even if it is already built",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Fail when a shared library has the wrong architecture",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Also write a detailed log to this file",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show verbose output",
    )
    return parser


def main() -> None:
    """crossbuild - cross-compilation build orchestrator."""
    parser = build_parser()
    parsed_args = parser.parse_args()

    PathValidator.validate_project_dir(parsed_args.project_dir)

    if parsed_args.install and parsed_args.deploy is not None:
        parser.error("--deploy cannot be combined with --install")

    if parsed_args.install:
        run_mode = RunMode.PROVISION_ONLY
    elif parsed_args.build:
        run_mode = RunMode.BUILD_ONLY
    else:
        run_mode = RunMode.FULL

    run_args = RunArgs(
        project_dir=parsed_args.project_dir,
        run_mode=run_mode,
        config_path=parsed_args.config,
        deploy=parsed_args.deploy,
        clean=parsed_args.clean,
        strict=parsed_args.strict,
        verbose=parsed_args.verbose,
        log_file=parsed_args.log_file,
    )
    run_command(run_args)


if __name__ == "__main__":
    main()
