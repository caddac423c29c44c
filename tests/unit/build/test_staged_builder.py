"""
Unit tests for StagedBuilder.

Tests stage execution including:
- Completion-marker caching of the dependency stage
- Cross-compiler prefix propagation into nested commands
- Refusal to fall back to the native compiler
- Output checks after a successful exit status
- Working-directory restoration
"""

import stat
import sys
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from crossbuild.build.stage import BuildEnvironment, BuildStage, StageRole
from crossbuild.build.stage_cache import StageCache
from crossbuild.build.staged_builder import StagedBuilder
from crossbuild.command_runner import CommandNotFoundError, CommandResult, CommandRunner
from crossbuild.errors import FailureKind

PREFIX = "aarch64-linux-gnu-"
COMPILER = Path("/opt/cross/bin/aarch64-linux-gnu-gcc")


@pytest.fixture
def build_env():
    return BuildEnvironment(cross_prefix=PREFIX, compiler_path=COMPILER, search_path="/opt/cross/bin:/usr/bin")


@pytest.fixture
def stage_dir(tmp_path):
    path = tmp_path / "libs" / "quickjs"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def dependency_stage(stage_dir):
    return BuildStage(
        name="quickjs",
        role=StageRole.DEPENDENCY,
        working_dir=stage_dir,
        commands=(("make", "libquickjs.a"),),
        output=stage_dir / "libquickjs.a",
        cacheable=True,
        cleanup_commands=(("make", "clean"),),
        env_overrides=(("CC", "{prefix}gcc"),),
    )


@pytest.fixture
def project_stage(tmp_path):
    return BuildStage(
        name="move-anything",
        role=StageRole.PROJECT,
        working_dir=tmp_path,
        commands=(("./scripts/build.sh",),),
        output=tmp_path / "build" / "move-anything",
    )


@pytest.fixture
def runner():
    """Runner whose commands succeed and create the stage output named in `outputs`."""
    runner = Mock(spec=CommandRunner)
    runner.which.return_value = COMPILER
    runner.outputs = {}

    def run(args, cwd=None, env=None, capture=True, timeout=None):
        output = runner.outputs.get(tuple(args))
        if output is not None:
            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_bytes(b"built")
        return CommandResult(args=list(args), returncode=0)

    runner.run.side_effect = run
    return runner


@pytest.fixture
def cache(tmp_path):
    return StageCache(tmp_path / ".crossbuild" / "stages")


def commands_run(runner):
    return [tuple(c.args[0]) for c in runner.run.call_args_list]


class TestStageExecution:
    """Tests for running a stage."""

    def test_runs_cleanup_then_commands(self, runner, cache, dependency_stage, build_env):
        runner.outputs[("make", "libquickjs.a")] = dependency_stage.output
        builder = StagedBuilder(runner, cache=cache, base_env={"PATH": "/usr/bin"})

        result = builder.run(dependency_stage, build_env, use_cache=True)

        assert result.success
        assert not result.cache_hit
        assert result.artifact_path == dependency_stage.output
        assert commands_run(runner) == [("make", "clean"), ("make", "libquickjs.a")]

    def test_prefix_and_overrides_reach_nested_command(self, runner, cache, dependency_stage, build_env):
        runner.outputs[("make", "libquickjs.a")] = dependency_stage.output
        builder = StagedBuilder(runner, cache=cache, base_env={"PATH": "/usr/bin", "HOME": "/home/dev"})

        builder.run(dependency_stage, build_env)

        env = runner.run.call_args_list[-1].kwargs["env"]
        assert env["CROSS_PREFIX"] == PREFIX
        assert env["CC"] == "aarch64-linux-gnu-gcc"
        assert env["PATH"] == "/opt/cross/bin:/usr/bin"
        assert env["HOME"] == "/home/dev"
        assert runner.run.call_args_list[-1].kwargs["cwd"] == dependency_stage.working_dir

    def test_inherited_native_compiler_variables_are_dropped(self, runner, project_stage, build_env):
        runner.outputs[("./scripts/build.sh",)] = project_stage.output
        builder = StagedBuilder(runner, base_env={"PATH": "/usr/bin", "CC": "gcc", "CXX": "clang++"})

        result = builder.run(project_stage, build_env)

        assert result.success
        env = runner.run.call_args.kwargs["env"]
        assert "CC" not in env
        assert "CXX" not in env
        assert env["CROSS_PREFIX"] == PREFIX

    def test_nonzero_exit_fails(self, runner, project_stage, build_env):
        runner.run.side_effect = None
        runner.run.return_value = CommandResult(
            args=["./scripts/build.sh"], returncode=2, stderr="main.c:1: error: boom"
        )

        result = StagedBuilder(runner, base_env={}).run(project_stage, build_env)

        assert not result.success
        assert result.failure is FailureKind.STAGE_EXECUTION_FAILED
        assert "exited with 2" in result.message
        assert "boom" in result.message

    def test_missing_command_fails(self, runner, project_stage, build_env):
        runner.run.side_effect = CommandNotFoundError("Command not found: ./scripts/build.sh")

        result = StagedBuilder(runner, base_env={}).run(project_stage, build_env)

        assert not result.success
        assert result.failure is FailureKind.STAGE_EXECUTION_FAILED

    def test_success_without_output_is_artifact_missing(self, runner, project_stage, build_env):
        result = StagedBuilder(runner, base_env={}).run(project_stage, build_env)

        assert not result.success
        assert result.failure is FailureKind.STAGE_ARTIFACT_MISSING
        assert str(project_stage.output) in result.message

    def test_missing_working_directory_fails(self, runner, project_stage, build_env, tmp_path):
        stage = BuildStage(
            name="x",
            role=StageRole.PROJECT,
            working_dir=tmp_path / "nope",
            commands=(("true",),),
            output=tmp_path / "out",
        )

        result = StagedBuilder(runner, base_env={}).run(stage, build_env)

        assert not result.success
        runner.run.assert_not_called()


class TestNativeCompilerGuard:
    """A stage must never silently use the host compiler."""

    def test_empty_prefix_fails(self, runner, project_stage):
        result = StagedBuilder(runner, base_env={}).run(project_stage, BuildEnvironment(cross_prefix=""))

        assert not result.success
        assert "native compiler" in result.message
        runner.run.assert_not_called()

    def test_compiler_not_on_path_fails(self, runner, project_stage, build_env):
        runner.which.return_value = None

        result = StagedBuilder(runner, base_env={}).run(project_stage, build_env)

        assert not result.success
        assert "aarch64-linux-gnu-gcc is not on PATH" in result.message
        runner.run.assert_not_called()
        assert runner.which.call_args.args == ("aarch64-linux-gnu-gcc", "/opt/cross/bin:/usr/bin")

    def test_unprefixed_compiler_override_fails(self, runner, tmp_path, build_env):
        stage = BuildStage(
            name="quickjs",
            role=StageRole.DEPENDENCY,
            working_dir=tmp_path,
            commands=(("make",),),
            output=tmp_path / "libquickjs.a",
            env_overrides=(("CC", "gcc"),),
        )

        result = StagedBuilder(runner, base_env={}).run(stage, build_env)

        assert not result.success
        assert "CC=gcc" in result.message
        runner.run.assert_not_called()

    @pytest.mark.parametrize(
        "value,accepted",
        [
            ("ccache {prefix}gcc", True),
            ("{prefix}gcc -march=armv8-a", True),
            ("/opt/cross/bin/{prefix}gcc", True),
            ("ccache gcc", False),
        ],
    )
    def test_compiler_launcher_before_cross_compiler(self, runner, tmp_path, build_env, value, accepted):
        output = tmp_path / "libquickjs.a"
        runner.outputs[("make",)] = output
        stage = BuildStage(
            name="quickjs",
            role=StageRole.DEPENDENCY,
            working_dir=tmp_path,
            commands=(("make",),),
            output=output,
            env_overrides=(("CC", value),),
        )

        result = StagedBuilder(runner, base_env={}).run(stage, build_env)

        assert result.success is accepted
        assert runner.run.called is accepted


class TestDependencyCache:
    """Tests for completion-marker caching."""

    def test_fresh_marker_skips_commands(self, runner, cache, dependency_stage, build_env):
        dependency_stage.output.write_bytes(b"archive")
        cache.record(dependency_stage, build_env)
        builder = StagedBuilder(runner, cache=cache, base_env={})

        result = builder.run(dependency_stage, build_env, use_cache=True)

        assert result.success
        assert result.cache_hit
        runner.run.assert_not_called()

    def test_output_without_marker_is_rebuilt(self, runner, cache, dependency_stage, build_env):
        # Leftover from an interrupted run: output present, no completion marker
        dependency_stage.output.write_bytes(b"partial")
        runner.outputs[("make", "libquickjs.a")] = dependency_stage.output
        builder = StagedBuilder(runner, cache=cache, base_env={})

        result = builder.run(dependency_stage, build_env, use_cache=True)

        assert result.success
        assert not result.cache_hit
        assert ("make", "libquickjs.a") in commands_run(runner)
        assert cache.is_fresh(dependency_stage, build_env)

    def test_marker_from_other_toolchain_is_stale(self, runner, cache, dependency_stage, build_env):
        dependency_stage.output.write_bytes(b"archive")
        cache.record(dependency_stage, BuildEnvironment(cross_prefix="aarch64-unknown-linux-gnu-"))
        runner.outputs[("make", "libquickjs.a")] = dependency_stage.output

        result = StagedBuilder(runner, cache=cache, base_env={}).run(dependency_stage, build_env, use_cache=True)

        assert not result.cache_hit
        assert runner.run.called

    def test_use_cache_false_rebuilds(self, runner, cache, dependency_stage, build_env):
        dependency_stage.output.write_bytes(b"archive")
        cache.record(dependency_stage, build_env)
        runner.outputs[("make", "libquickjs.a")] = dependency_stage.output

        result = StagedBuilder(runner, cache=cache, base_env={}).run(dependency_stage, build_env, use_cache=False)

        assert not result.cache_hit
        assert runner.run.called

    def test_non_cacheable_stage_always_runs(self, runner, cache, project_stage, build_env):
        project_stage.output.parent.mkdir(parents=True)
        project_stage.output.write_bytes(b"old")
        runner.outputs[("./scripts/build.sh",)] = project_stage.output

        result = StagedBuilder(runner, cache=cache, base_env={}).run(project_stage, build_env, use_cache=True)

        assert not result.cache_hit
        runner.run.assert_called_once()

    def test_failed_run_leaves_no_marker(self, runner, cache, dependency_stage, build_env):
        dependency_stage.output.write_bytes(b"archive")
        cache.record(dependency_stage, build_env)
        runner.run.side_effect = None
        runner.run.return_value = CommandResult(args=["make"], returncode=1)

        result = StagedBuilder(runner, cache=cache, base_env={}).run(dependency_stage, build_env, use_cache=False)

        assert not result.success
        assert not cache.marker_path(dependency_stage).exists()


class TestCleanup:
    """Cleanup failures are tolerated only when there is nothing to clean."""

    def test_failed_cleanup_with_nothing_to_clean_is_ignored(self, runner, dependency_stage, build_env):
        def run(args, cwd=None, env=None, capture=True, timeout=None):
            if tuple(args) == ("make", "clean"):
                return CommandResult(args=list(args), returncode=2, stderr="No rule to make target 'clean'")
            dependency_stage.output.write_bytes(b"archive")
            return CommandResult(args=list(args), returncode=0)

        runner.run.side_effect = run

        result = StagedBuilder(runner, base_env={}).run(dependency_stage, build_env)

        assert result.success

    def test_failed_cleanup_with_stale_output_fails(self, runner, dependency_stage, build_env):
        dependency_stage.output.write_bytes(b"stale")
        runner.run.side_effect = None
        runner.run.return_value = CommandResult(args=["make", "clean"], returncode=2)

        result = StagedBuilder(runner, base_env={}).run(dependency_stage, build_env)

        assert not result.success
        assert "still present" in result.message
        assert commands_run(runner) == [("make", "clean")]


class TestWorkingDirectory:
    """The caller's working directory is restored on every path."""

    def test_restored_after_success(self, runner, project_stage, build_env, tmp_path, monkeypatch):
        other = tmp_path / "elsewhere"
        other.mkdir()
        monkeypatch.chdir(other)
        seen = []

        def run(args, cwd=None, env=None, capture=True, timeout=None):
            seen.append(Path.cwd())
            project_stage.output.parent.mkdir(parents=True, exist_ok=True)
            project_stage.output.write_bytes(b"elf")
            return CommandResult(args=list(args), returncode=0)

        runner.run.side_effect = run

        StagedBuilder(runner, base_env={}).run(project_stage, build_env)

        assert seen == [project_stage.working_dir]
        assert Path.cwd() == other

    def test_restored_after_failure(self, runner, project_stage, build_env, tmp_path, monkeypatch):
        other = tmp_path / "elsewhere"
        other.mkdir()
        monkeypatch.chdir(other)
        runner.run.side_effect = None
        runner.run.return_value = CommandResult(args=["./scripts/build.sh"], returncode=1)

        result = StagedBuilder(runner, base_env={}).run(project_stage, build_env)

        assert not result.success
        assert Path.cwd() == other


class TestUntypedErrors:
    """Errors outside the nested command still end as a failed StageResult."""

    def test_marker_write_error(self, runner, cache, dependency_stage, build_env):
        runner.outputs[("make", "libquickjs.a")] = dependency_stage.output

        with patch.object(StageCache, "record", side_effect=PermissionError("read-only file system")):
            result = StagedBuilder(runner, cache=cache, base_env={}).run(dependency_stage, build_env)

        assert not result.success
        assert result.failure is FailureKind.STAGE_EXECUTION_FAILED
        assert "read-only file system" in result.message


@pytest.mark.skipif(sys.platform == "win32", reason="requires a POSIX executable script")
class TestNestedCommandOutput:
    """Runs real commands through CommandRunner."""

    @pytest.fixture
    def cross_env(self, tmp_path):
        bin_dir = tmp_path / "bin"
        bin_dir.mkdir()
        gcc = bin_dir / f"{PREFIX}gcc"
        gcc.write_text("#!/bin/sh\nexit 0\n")
        gcc.chmod(gcc.stat().st_mode | stat.S_IXUSR)
        return BuildEnvironment(cross_prefix=PREFIX, compiler_path=gcc, search_path=str(bin_dir))

    def make_stage(self, tmp_path, code):
        work = tmp_path / "work"
        work.mkdir()
        return BuildStage(
            name="legacy-lib",
            role=StageRole.DEPENDENCY,
            working_dir=work,
            commands=((sys.executable, "-c", code),),
            output=work / "out.o",
        )

    def test_latin1_output_does_not_break_a_successful_build(self, tmp_path, cross_env):
        stage = self.make_stage(
            tmp_path,
            "import sys; sys.stdout.buffer.write(b'caf\\xe9\\n'); open('out.o', 'w').close()",
        )

        result = StagedBuilder(CommandRunner(), base_env={}).run(stage, cross_env)

        assert result.success, result.message
        assert result.artifact_path == stage.output

    def test_latin1_stderr_of_failed_command_is_reported(self, tmp_path, cross_env):
        stage = self.make_stage(
            tmp_path,
            "import sys; sys.stderr.buffer.write(b'erreur: fichier \\xe9\\n'); sys.exit(2)",
        )

        result = StagedBuilder(CommandRunner(), base_env={}).run(stage, cross_env)

        assert not result.success
        assert result.failure is FailureKind.STAGE_EXECUTION_FAILED
        assert "erreur: fichier \ufffd" in result.message
