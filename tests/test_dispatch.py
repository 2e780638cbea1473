"""Tests for build method dispatch."""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from hotbuild.build.dispatch import (
    BuildDispatcher,
    DispatchResult,
    check_result,
    collect_warnings,
    troubleshooting_hint,
)
from hotbuild.build.models import BuildMethod, TargetDescriptor
from hotbuild.errors import BuildFailure, UnsupportedBuildMethodError
from hotbuild.terminal import ShellResult


class RecordingExecutor:
    """TerminalExecutor that records invocations instead of running them."""

    def __init__(self, exit_code: int = 0, stderr: str = "") -> None:
        self.calls: list[dict] = []
        self.exit_code = exit_code
        self.stderr = stderr

    async def execute(
        self,
        command: str,
        args: list[str] | None = None,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        timeout: float | None = None,
        output_limit: int = 200_000,
    ) -> ShellResult:
        self.calls.append(
            {"command": command, "args": args or [], "cwd": cwd, "env": env, "timeout": timeout}
        )
        return ShellResult(
            command=command,
            exit_code=self.exit_code,
            stdout="done",
            stderr=self.stderr,
            truncated=False,
            status="ok" if self.exit_code == 0 else "error",
            duration_ms=1.0,
        )


def make_target(method: str = "esbuild", source_root: str = "src/api", **params) -> TargetDescriptor:
    return TargetDescriptor(
        name="Api", source_root=source_root, build_method=method, build_parameters=params
    )


class TestCheckResult:
    """Translation of tool exit status into BuildFailure."""

    def test_success_passes(self) -> None:
        check_result(make_target(), DispatchResult(0))

    def test_failure_names_tool_and_code(self) -> None:
        with pytest.raises(BuildFailure) as exc_info:
            check_result(make_target(), DispatchResult(2, stderr="boom\n", tool="esbuild"))
        assert str(exc_info.value) == "esbuild failed with exit code 2: boom"
        assert exc_info.value.exit_code == 2
        assert exc_info.value.target_name == "Api"

    def test_timeout_without_exit_code(self) -> None:
        with pytest.raises(BuildFailure, match="did not finish"):
            check_result(make_target(), DispatchResult(None, stderr="timed out"))

    def test_long_stderr_keeps_tail(self) -> None:
        stderr = "x" * 5000 + "LAST"
        with pytest.raises(BuildFailure) as exc_info:
            check_result(make_target(), DispatchResult(1, stderr=stderr))
        message = str(exc_info.value)
        assert message.endswith("LAST")
        assert len(message) < 2100

    def test_collect_warnings(self) -> None:
        stderr = "ok line\nWarning: deprecated API\n\n  warning: shadowed name  \n"
        assert collect_warnings(stderr) == ["Warning: deprecated API", "warning: shadowed name"]


class TestTroubleshootingHint:
    """Suggestions derived from build error text."""

    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            ("ENOENT: no such file or directory, open src/app.ts", "file path is correct"),
            ("EACCES: permission denied, mkdir out", "file permissions"),
            ("SyntaxError: Unexpected token }", "syntax errors"),
            ("Error: Cannot find module 'lodash'", "npm install"),
            ("Build of Api did not finish (timed out)", "timed out"),
            ("esbuild failed with exit code 1: boom", "esbuild is installed"),
        ],
    )
    def test_known_failures(self, error: str, expected: str) -> None:
        hint = troubleshooting_hint(error)
        assert hint is not None
        assert expected in hint

    def test_specific_cause_beats_tool_name(self) -> None:
        """An esbuild failure caused by a missing module points at the module."""
        hint = troubleshooting_hint("esbuild failed with exit code 1: Cannot find module 'x'")
        assert hint == "Ensure all dependencies are installed (run npm install)"

    def test_unknown_error(self) -> None:
        assert troubleshooting_hint("make failed with exit code 2: boom") is None
        assert troubleshooting_hint("") is None


class TestBuildDispatcher:
    """Handler registry and built-in build methods."""

    def test_builtin_methods(self) -> None:
        assert set(BuildDispatcher().methods) == {m.value for m in BuildMethod}

    def test_output_dir_under_project(self, tmp_path: Path) -> None:
        dispatcher = BuildDispatcher(project_root=tmp_path)
        assert dispatcher.output_dir_for(make_target()) == tmp_path / ".aws-sam" / "build" / "Api"

    @pytest.mark.asyncio
    async def test_unsupported_method(self, tmp_path: Path) -> None:
        dispatcher = BuildDispatcher(RecordingExecutor(), project_root=tmp_path)
        target = make_target(method="gradle")
        with pytest.raises(UnsupportedBuildMethodError) as exc_info:
            await dispatcher.execute(target, dispatcher.output_dir_for(target))
        assert exc_info.value.build_method == "gradle"
        assert "esbuild" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_register_custom_handler(self, tmp_path: Path) -> None:
        dispatcher = BuildDispatcher(RecordingExecutor(), project_root=tmp_path)
        seen = []

        async def handler(target, output_dir, params):
            seen.append((target.name, output_dir, params))
            return DispatchResult(0, tool="custom")

        dispatcher.register("custom", handler)
        target = make_target(method="custom", Flag=True)
        out = dispatcher.output_dir_for(target)
        result = await dispatcher.execute(target, out)

        assert result.success
        assert seen == [("Api", out, {"Flag": True})]
        assert out.is_dir()

    @pytest.mark.asyncio
    async def test_esbuild_arguments(self, tmp_path: Path) -> None:
        executor = RecordingExecutor()
        dispatcher = BuildDispatcher(executor, project_root=tmp_path)
        target = make_target(Minify=True, Sourcemap=True, Target="es2022", External=["pg"])
        out = dispatcher.output_dir_for(target)

        result = await dispatcher.execute(target, out)

        call = executor.calls[0]
        assert call["command"] == "npx"
        args = call["args"]
        assert args[0] == "esbuild"
        assert args[1] == str(tmp_path / "src" / "api" / "app.ts")
        assert "--bundle" in args
        assert "--target=es2022" in args
        assert f"--outfile={out / 'app.js'}" in args
        assert "--external:pg" in args
        assert "--minify" in args and "--sourcemap" in args
        assert result.tool == "esbuild"

    @pytest.mark.asyncio
    async def test_esbuild_defaults(self, tmp_path: Path) -> None:
        executor = RecordingExecutor()
        dispatcher = BuildDispatcher(executor, project_root=tmp_path)
        target = make_target()
        await dispatcher.execute(target, dispatcher.output_dir_for(target))

        args = executor.calls[0]["args"]
        assert "--target=es2020" in args
        assert "--minify" not in args

    @pytest.mark.asyncio
    async def test_settings_override_template_parameters(self, tmp_path: Path) -> None:
        executor = RecordingExecutor()
        dispatcher = BuildDispatcher(
            executor,
            project_root=tmp_path,
            settings={"global": {"Minify": True}, "Api": {"Target": "node20"}},
        )
        target = make_target(Target="es2019")
        await dispatcher.execute(target, dispatcher.output_dir_for(target))

        args = executor.calls[0]["args"]
        assert "--target=node20" in args
        # The target entry replaces the global one rather than merging with it
        assert "--minify" not in args

    def test_global_settings_apply_without_target_entry(self) -> None:
        dispatcher = BuildDispatcher(settings={"global": {"Minify": True}})
        assert dispatcher.build_parameters_for(make_target(Target="es2019")) == {
            "Target": "es2019",
            "Minify": True,
        }

    @pytest.mark.asyncio
    async def test_makefile_missing(self, tmp_path: Path) -> None:
        dispatcher = BuildDispatcher(RecordingExecutor(), project_root=tmp_path)
        target = make_target(method="makefile")
        with pytest.raises(BuildFailure, match="Makefile not found"):
            await dispatcher.execute(target, dispatcher.output_dir_for(target))

    @pytest.mark.asyncio
    async def test_makefile_invocation(self, tmp_path: Path) -> None:
        (tmp_path / "src" / "api").mkdir(parents=True)
        (tmp_path / "src" / "api" / "Makefile").write_text("build:\n\ttrue\n")
        executor = RecordingExecutor()
        dispatcher = BuildDispatcher(executor, project_root=tmp_path, timeout=30)
        target = make_target(method="makefile", MakeTarget="build-Api")
        out = dispatcher.output_dir_for(target)

        result = await dispatcher.execute(target, out)

        call = executor.calls[0]
        assert call["command"] == "make"
        assert call["args"] == ["build-Api"]
        assert call["cwd"] == str(tmp_path / "src" / "api")
        assert call["env"] == {"ARTIFACTS_DIR": str(out)}
        assert call["timeout"] == 30
        assert result.tool == "make build-Api"

    @pytest.mark.asyncio
    async def test_command_requires_command(self, tmp_path: Path) -> None:
        dispatcher = BuildDispatcher(RecordingExecutor(), project_root=tmp_path)
        target = make_target(method="command")
        with pytest.raises(BuildFailure, match="Command"):
            await dispatcher.execute(target, dispatcher.output_dir_for(target))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("command", ["   ", "\t\n", []])
    async def test_blank_command_rejected(self, tmp_path: Path, command) -> None:
        executor = RecordingExecutor()
        dispatcher = BuildDispatcher(executor, project_root=tmp_path)
        target = make_target(method="command", Command=command)
        with pytest.raises(BuildFailure, match="requires a Command parameter"):
            await dispatcher.execute(target, dispatcher.output_dir_for(target))
        assert executor.calls == []

    @pytest.mark.asyncio
    async def test_command_string_is_split(self, tmp_path: Path) -> None:
        executor = RecordingExecutor()
        dispatcher = BuildDispatcher(executor, project_root=tmp_path)
        target = make_target(method="command", Command="node build.js --dir 'out dir'")
        await dispatcher.execute(target, dispatcher.output_dir_for(target))

        call = executor.calls[0]
        assert call["command"] == "node"
        assert call["args"] == ["build.js", "--dir", "out dir"]

    @pytest.mark.asyncio
    async def test_command_runs_for_real(self, tmp_path: Path) -> None:
        """The command method writes into ARTIFACTS_DIR through a real subprocess."""
        (tmp_path / "src" / "api").mkdir(parents=True)
        script = (
            "import os, pathlib; "
            "pathlib.Path(os.environ['ARTIFACTS_DIR'], 'app.js').write_text('ok')"
        )
        dispatcher = BuildDispatcher(project_root=tmp_path)
        target = make_target(method="command", Command=[sys.executable, "-c", script])
        out = dispatcher.output_dir_for(target)

        result = await dispatcher.execute(target, out)

        assert result.success
        assert (out / "app.js").read_text() == "ok"

    @pytest.mark.asyncio
    async def test_failed_tool_reported_not_raised(self, tmp_path: Path) -> None:
        dispatcher = BuildDispatcher(
            RecordingExecutor(exit_code=1, stderr="error TS2304"), project_root=tmp_path
        )
        target = make_target()
        result = await dispatcher.execute(target, dispatcher.output_dir_for(target))
        assert not result.success
        assert result.stderr == "error TS2304"
