"""Root pytest configuration for all tests."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from pathlib import Path

import pytest

from hotbuild.build.dispatch import DispatchResult
from hotbuild.build.models import TargetDescriptor
from hotbuild.config import reset_config

pytest_plugins = ("pytest_asyncio",)


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch: pytest.MonkeyPatch, tmp_path_factory) -> Iterator[None]:
    """Keep user/system config and HOTBUILD_* variables out of tests."""
    for name in ("HOTBUILD_LOG", "HOTBUILD_DEBOUNCE", "HOTBUILD_MAX_PARALLEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path_factory.mktemp("xdg")))
    monkeypatch.setattr(
        "hotbuild.config.paths.get_system_config_path", lambda: None
    )
    reset_config()
    yield
    reset_config()


class FakeDispatcher:
    """In-process stand-in for BuildDispatcher.

    Each build sleeps for a configurable time and then succeeds, fails with
    a non-zero exit code, or raises. ``log`` records ("start"|"end", name)
    in the order things happened.
    """

    def __init__(self, output_root: Path | None = None, delay: float = 0.02) -> None:
        self.output_root = output_root or Path("out")
        self.delay = delay
        self.delays: dict[str, float] = {}
        self.fail: set[str] = set()
        self.raises: dict[str, BaseException] = {}
        self.stderr: dict[str, str] = {}
        self.active = 0
        self.peak = 0
        self.log: list[tuple[str, str]] = []
        self.calls = 0

    def output_dir_for(self, target: TargetDescriptor) -> Path:
        return self.output_root / target.name

    def started(self) -> list[str]:
        return [name for kind, name in self.log if kind == "start"]

    async def execute(self, target: TargetDescriptor, output_dir: Path) -> DispatchResult:
        self.calls += 1
        self.active += 1
        self.peak = max(self.peak, self.active)
        self.log.append(("start", target.name))
        try:
            await asyncio.sleep(self.delays.get(target.name, self.delay))
            if target.name in self.raises:
                raise self.raises[target.name]
            failed = target.name in self.fail
            return DispatchResult(
                exit_code=1 if failed else 0,
                stdout=f"built {target.name}",
                stderr=self.stderr.get(target.name, "compile error" if failed else ""),
                tool="fake",
            )
        finally:
            self.active -= 1
            self.log.append(("end", target.name))


def make_targets(*names: str) -> list[TargetDescriptor]:
    return [
        TargetDescriptor(name=name, source_root=f"src/{name}", build_method="esbuild")
        for name in names
    ]


@pytest.fixture
def dispatcher(tmp_path: Path) -> FakeDispatcher:
    return FakeDispatcher(output_root=tmp_path / "out")


@pytest.fixture
def targets_factory():
    return make_targets
