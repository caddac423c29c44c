"""
crossbuild.ini configuration parser.

Describes the project layout: the three build stages, which outputs to
verify and where to deploy the package. Without a crossbuild.ini the
built-in defaults describe the Move Anything repository.

Example crossbuild.ini:
    [project]
    name = move-anything
    target = aarch64

    [stage:dependency]
    name = quickjs
    dir = libs/quickjs/quickjs-2025-04-26
    clean = make clean
    commands = make libquickjs.a
    output = libquickjs.a
    env.CC = {prefix}gcc

    [stage:project]
    commands = ./scripts/build.sh
    output = build/move-anything

    [stage:package]
    commands = ./scripts/package.sh
    output = move-anything.tar.gz

Usage:
    config = ProjectConfig.load(Path("."))
    stage = config.stages[StageRole.DEPENDENCY]
"""

import configparser
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from ..build.stage import Artifact, ArtifactKind, BuildStage, StageRole
from .targets import TARGET_AARCH64, ToolchainDescriptor, get_toolchain_descriptor

CONFIG_FILENAME = "crossbuild.ini"
STATE_DIRNAME = ".crossbuild"

DEFAULT_CONFIG = """
[project]
name = move-anything
target = aarch64

[stage:dependency]
name = quickjs
dir = libs/quickjs/quickjs-2025-04-26
clean = make clean
commands = make libquickjs.a
output = libquickjs.a
env.CC = {prefix}gcc

[stage:project]
name = move-anything
dir = .
commands = ./scripts/build.sh
output = build/move-anything

[stage:package]
name = package
dir = .
commands = ./scripts/package.sh
output = move-anything.tar.gz

[verify]
executable = build/move-anything
shared_libraries = build/**/*.so

[deploy]
host = move.local
user = ableton
remote_dir = /data/UserData
ssh_options = -o ConnectTimeout=10
"""


class ProjectConfigError(Exception):
    """Exception raised for crossbuild.ini configuration errors."""

    pass


@dataclass(frozen=True)
class DeployConfig:
    """Remote device settings."""

    host: str
    user: Optional[str] = None
    remote_dir: str = "."
    ssh_options: tuple[str, ...] = ()
    port: Optional[int] = None

    @property
    def destination(self) -> str:
        """ssh destination, e.g. 'ableton@move.local'."""
        if self.user and "@" not in self.host:
            return f"{self.user}@{self.host}"
        return self.host


@dataclass
class ProjectConfig:
    """Static configuration of one crossbuild project."""

    project_dir: Path
    name: str
    target_arch: str
    stages: Dict[StageRole, BuildStage]
    executable: Path
    shared_library_patterns: tuple[str, ...] = ()
    deploy: Optional[DeployConfig] = None
    toolchain_overrides: Dict[str, str] = field(default_factory=dict)

    @property
    def state_dir(self) -> Path:
        return self.project_dir / STATE_DIRNAME / "stages"

    @property
    def package_path(self) -> Path:
        return self.stages[StageRole.PACKAGE].output

    def ordered_stages(self) -> List[BuildStage]:
        """Stages in pipeline order: dependency, project, package."""
        return [self.stages[role] for role in StageRole]

    def resolve_toolchain(self, host_system: str) -> Optional[ToolchainDescriptor]:
        """Catalog descriptor for the host with crossbuild.ini overrides applied."""
        descriptor = get_toolchain_descriptor(host_system)
        if descriptor is None:
            return None
        return descriptor.with_overrides(
            prefix=self.toolchain_overrides.get("prefix"),
            package=self.toolchain_overrides.get("package"),
            source=self.toolchain_overrides.get("source"),
        )

    def artifacts(self) -> List[Artifact]:
        """Artifacts to verify: the primary executable and every matching shared library.

        Shared-library patterns are expanded at call time, after the build. A
        pattern that matches nothing yields a placeholder artifact so the
        missing output is reported instead of silently verified.
        """
        artifacts = [
            Artifact(
                path=self.executable,
                kind=ArtifactKind.EXECUTABLE,
                arch=self.target_arch,
                primary=True,
            )
        ]
        seen = set()
        for pattern in self.shared_library_patterns:
            matches = [p for p in sorted(self.project_dir.glob(pattern)) if p.is_file()]
            if not matches:
                artifacts.append(
                    Artifact(
                        path=self.project_dir / pattern,
                        kind=ArtifactKind.SHARED_LIBRARY,
                        arch=self.target_arch,
                        unmatched_pattern=pattern,
                    )
                )
            for path in matches:
                if path not in seen:
                    seen.add(path)
                    artifacts.append(
                        Artifact(path=path, kind=ArtifactKind.SHARED_LIBRARY, arch=self.target_arch)
                    )
        return artifacts

    @classmethod
    def load(cls, project_dir: Path, config_path: Optional[Path] = None) -> "ProjectConfig":
        """
        Load the project configuration.

        Args:
            project_dir: Project root; relative paths resolve against it
            config_path: Explicit configuration file (defaults to
                <project_dir>/crossbuild.ini, falling back to built-in defaults)

        Returns:
            ProjectConfig

        Raises:
            ProjectConfigError: If the file is missing, malformed or incomplete
        """
        project_dir = Path(project_dir).resolve()
        parser = configparser.ConfigParser(
            allow_no_value=True, interpolation=configparser.ExtendedInterpolation()
        )
        parser.optionxform = str  # keep env.CC case

        if config_path is None and (project_dir / CONFIG_FILENAME).exists():
            config_path = project_dir / CONFIG_FILENAME

        try:
            if config_path is None:
                parser.read_string(DEFAULT_CONFIG)
            else:
                if not config_path.exists():
                    raise ProjectConfigError(f"Configuration file not found: {config_path}")
                parser.read(config_path, encoding="utf-8")
        except configparser.Error as e:
            raise ProjectConfigError(f"Failed to parse {config_path or 'defaults'}: {e}") from e

        try:
            return cls._from_parser(parser, project_dir)
        except configparser.Error as e:
            raise ProjectConfigError(f"Invalid configuration: {e}") from e

    @classmethod
    def _from_parser(cls, parser: configparser.ConfigParser, project_dir: Path) -> "ProjectConfig":
        name = parser.get("project", "name", fallback=project_dir.name)
        target = parser.get("project", "target", fallback=TARGET_AARCH64)

        known_roles = {role.value for role in StageRole}
        for section in parser.sections():
            if section.startswith("stage:") and section.split(":", 1)[1] not in known_roles:
                raise ProjectConfigError(
                    f"Unknown stage [{section}]. Expected one of: "
                    + ", ".join(f"stage:{r}" for r in sorted(known_roles))
                )

        stages = {
            role: _parse_stage(parser, role, project_dir) for role in StageRole
        }

        if not parser.has_option("verify", "executable"):
            raise ProjectConfigError("[verify] executable is required")
        executable = project_dir / parser.get("verify", "executable")
        patterns = tuple(_lines(parser.get("verify", "shared_libraries", fallback="")))

        deploy = None
        if parser.has_section("deploy") and parser.get("deploy", "host", fallback=""):
            deploy = _parse_deploy(parser)

        overrides = {}
        if parser.has_section("toolchain"):
            for key in ("prefix", "package", "source"):
                value = parser.get("toolchain", key, fallback="")
                if value:
                    overrides[key] = value.strip()

        return cls(
            project_dir=project_dir,
            name=name,
            target_arch=target,
            stages=stages,
            executable=executable,
            shared_library_patterns=patterns,
            deploy=deploy,
            toolchain_overrides=overrides,
        )


def _lines(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [line.strip() for line in value.splitlines() if line.strip()]


def _commands(value: Optional[str], where: str) -> tuple[tuple[str, ...], ...]:
    commands = []
    for line in _lines(value):
        try:
            commands.append(tuple(shlex.split(line)))
        except ValueError as e:
            raise ProjectConfigError(f"{where}: cannot parse command '{line}': {e}") from e
    return tuple(commands)


def _parse_stage(parser: configparser.ConfigParser, role: StageRole, project_dir: Path) -> BuildStage:
    section = f"stage:{role.value}"
    if not parser.has_section(section):
        raise ProjectConfigError(f"Missing [{section}] section")

    commands = _commands(parser.get(section, "commands", fallback=""), section)
    if not commands:
        raise ProjectConfigError(f"[{section}] commands is required")

    output = parser.get(section, "output", fallback="")
    if not output:
        raise ProjectConfigError(f"[{section}] output is required")

    working_dir = (project_dir / parser.get(section, "dir", fallback=".")).resolve()
    env_overrides = tuple(
        (key[len("env."):], value.strip())
        for key, value in parser.items(section)
        if key.startswith("env.") and value
    )

    return BuildStage(
        name=parser.get(section, "name", fallback=role.value),
        role=role,
        working_dir=working_dir,
        commands=commands,
        output=working_dir / output,
        cacheable=role is StageRole.DEPENDENCY,
        cleanup_commands=_commands(parser.get(section, "clean", fallback=""), section),
        env_overrides=env_overrides,
    )


def _parse_deploy(parser: configparser.ConfigParser) -> DeployConfig:
    ssh_options = tuple(shlex.split(parser.get("deploy", "ssh_options", fallback="")))
    # ssh and scp disagree on the port flag (-p vs -P)
    if "-p" in ssh_options or "-P" in ssh_options:
        raise ProjectConfigError("[deploy] set the ssh port with 'port', not in ssh_options")

    port = None
    value = parser.get("deploy", "port", fallback="").strip()
    if value:
        if not value.isdigit() or not 0 < int(value) < 65536:
            raise ProjectConfigError(f"[deploy] port must be a number between 1 and 65535, got '{value}'")
        port = int(value)

    return DeployConfig(
        host=parser.get("deploy", "host"),
        user=parser.get("deploy", "user", fallback=None) or None,
        remote_dir=parser.get("deploy", "remote_dir", fallback="."),
        ssh_options=ssh_options,
        port=port,
    )
