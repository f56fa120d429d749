import subprocess
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

import pytest
from pytest_mock import MockerFixture

from auto_py_env.config import AutoEnvConfig
from auto_py_env.utils import activation_script


class FakeCommands:
    """
    Stands in for every external binary. Commands are matched on their argv
    with argv[0] reduced to its basename; the longest registered prefix wins.
    """

    def __init__(self):
        self.calls: List[List[str]] = []
        self.binaries: Dict[str, str] = {"conda": "/usr/bin/conda"}
        self._responses: Dict[Tuple[str, ...], Tuple[int, str, Optional[Callable]]] = {}

    def install(self, *names: str):
        for name in names:
            self.binaries[name] = f"/usr/bin/{name}"

    def uninstall(self, *names: str):
        for name in names:
            self.binaries.pop(name, None)

    def on(
        self,
        *prefix: str,
        stdout: str = "",
        returncode: int = 0,
        effect: Optional[Callable[[List[str]], None]] = None,
    ):
        self._responses[prefix] = (returncode, stdout, effect)

    def which(self, name, *args, **kwargs):
        return self.binaries.get(name)

    def run(self, command, **kwargs):
        command = [str(part) for part in command]
        self.calls.append(command)
        argv = tuple([Path(command[0]).name] + command[1:])

        matches = [p for p in self._responses if argv[: len(p)] == p]
        if not matches:
            return subprocess.CompletedProcess(command, 0, stdout="", stderr="")

        returncode, stdout, effect = self._responses[max(matches, key=len)]
        if effect is not None:
            effect(command)
        if returncode != 0 and kwargs.get("check"):
            raise subprocess.CalledProcessError(
                returncode, command, output=stdout, stderr="simulated failure"
            )
        return subprocess.CompletedProcess(
            command, returncode, stdout=stdout, stderr=""
        )

    def called(self, *prefix: str) -> List[List[str]]:
        """All recorded commands whose normalized argv starts with `prefix`."""
        return [
            c
            for c in self.calls
            if tuple([Path(c[0]).name] + c[1:])[: len(prefix)] == prefix
        ]


@pytest.fixture
def fake_commands(mocker: MockerFixture) -> FakeCommands:
    """Replaces subprocess.run and shutil.which for the duration of a test."""
    fake = FakeCommands()
    mocker.patch("subprocess.run", side_effect=fake.run)
    mocker.patch("shutil.which", side_effect=fake.which)
    return fake


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """A monitored directory holding one empty project directory."""
    root = tmp_path / "workspace"
    (root / "demo").mkdir(parents=True)
    return root.resolve()


@pytest.fixture
def project_dir(workspace: Path) -> Path:
    return workspace / "demo"


@pytest.fixture
def config(workspace: Path) -> AutoEnvConfig:
    """
    A configuration scoped to the test workspace, with pinned (empty)
    environment-storage directories so nothing asks `conda info`.
    """
    return AutoEnvConfig(
        package_manager="conda",
        target_directories=[workspace],
        strictness_level=1,
        env_dirs=[],
    )


def _make_venv(env_dir: Path) -> Path:
    script = activation_script(env_dir)
    script.parent.mkdir(parents=True, exist_ok=True)
    script.write_text("# activate\n")
    return script


@pytest.fixture
def make_venv() -> Callable[[Path], Path]:
    """Creates the minimal layout of a venv (its activation script) and returns the script."""
    return _make_venv
