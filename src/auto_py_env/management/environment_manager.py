import os
from pathlib import Path
from typing import Mapping, Optional, Tuple

import structlog

from ..data.env_schemas import PackageManager, Resolution
from ..environments.conda_provider import CondaEnvironment
from ..errors import ConfigError

logger = structlog.get_logger(__name__)

MAMBA_EXECUTABLES = {"mamba", "micromamba"}


def find_env_path(env_list_output: str, name: str) -> Optional[Path]:
    """
    Searches `conda env list` output for the row whose first column is exactly
    `name` and returns its last column (the prefix path).
    """
    for line in env_list_output.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        fields = line.split()
        if fields[0] == name and len(fields) > 1:
            return Path(fields[-1])
    return None


def _manager_from_history(env_path: Path) -> Optional[PackageManager]:
    history = env_path / "conda-meta" / "history"
    try:
        lines = history.read_text().splitlines()
    except OSError:
        return None

    for line in lines:
        if not line.startswith("# cmd:"):
            continue
        command = line[len("# cmd:") :].split()
        if not command:
            return None
        executable = Path(command[0]).name.lower().removesuffix(".exe")
        if executable in MAMBA_EXECUTABLES:
            return PackageManager.MAMBA
        if executable.startswith("conda"):
            return PackageManager.CONDA
        # Only the first recorded command says who created the environment.
        return None
    return None


def infer_original_manager(env_path: Path) -> Tuple[PackageManager, str]:
    """
    Best-effort guess of which manager created an environment. The creating
    command recorded in conda-meta/history is preferred; otherwise a 'mamba'
    substring in the path decides. Only used to pick the `activate` binary.
    """
    manager = _manager_from_history(env_path)
    if manager is not None:
        return manager, "history"
    if "mamba" in str(env_path):
        return PackageManager.MAMBA, "path-heuristic"
    return PackageManager.CONDA, "path-heuristic"


class EnvironmentResolver:
    """Finds existing named environments in the conda-like manager's registry."""

    def __init__(self, conda: CondaEnvironment):
        self.conda = conda

    def resolve(self, name: Optional[str]) -> Resolution:
        if not name:
            raise ConfigError("Could not determine environment name.")

        env_path = find_env_path(self.conda.env_list_output(), name)
        if env_path is None:
            logger.info("resolver.not_found", name=name)
            return Resolution(found=False, name=name)

        manager, provenance = infer_original_manager(env_path)
        logger.info(
            "resolver.found",
            name=name,
            path=str(env_path),
            original_manager=manager.value,
            provenance=provenance,
        )
        return Resolution(
            found=True,
            name=name,
            path=env_path,
            original_manager=manager,
            provenance=provenance,
        )

    @staticmethod
    def is_active(name: str, environ: Optional[Mapping[str, str]] = None) -> bool:
        """Is `name` the currently active conda environment?"""
        environ = os.environ if environ is None else environ
        prefix = environ.get("CONDA_PREFIX")
        return bool(prefix) and Path(prefix).name == name
