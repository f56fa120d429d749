# /src/auto_py_env/environments/conda_provider.py

import json
from pathlib import Path
from typing import List, Optional

import structlog

from ..config import AutoEnvConfig
from ..data.env_schemas import ActivationStep, CreationResult, PackageManager
from ..errors import ExternalToolError
from ..utils import find_binary, is_relative_to
from .base import BaseEnvironment

logger = structlog.get_logger(__name__)

LOCAL_ENV_DIR = "envs"


class CondaEnvironment(BaseEnvironment):
    """
    An environment provider for conda and mamba.

    Environments are created either by name inside one of the manager's
    environment-storage directories, or project-locally under ./envs.
    """

    def __init__(
        self,
        project_root: Path,
        config: AutoEnvConfig,
        kind: PackageManager = PackageManager.CONDA,
    ):
        super().__init__(project_root, config)
        if not kind.is_conda_like:
            raise ValueError(f"CondaEnvironment cannot manage '{kind.value}'.")
        self.kind = kind

    @property
    def local_env_dir(self) -> Path:
        return self.project_root / LOCAL_ENV_DIR

    def _query_binary(self) -> str:
        # `conda` owns the registry; mamba only answers the same questions.
        return find_binary("conda") or self.require_binary(self.kind.value)

    def env_list_output(self) -> str:
        """Raw tabular output of `conda env list`."""
        result = self.execute([self._query_binary(), "env", "list"])
        return result.stdout

    def envs_dirs(self) -> List[Path]:
        """
        The manager's configured environment-storage directories. The pinned
        `env_dirs` setting wins over asking `conda info`.
        """
        if self.config.env_dirs is not None:
            return list(self.config.env_dirs)

        result = self.execute([self._query_binary(), "info", "--json"])
        try:
            info = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise ExternalToolError(
                "Could not parse the output of `conda info --json`."
            ) from e

        dirs = info.get("envs_dirs") or info.get("envs directories") or []
        logger.debug("conda.envs_dirs", envs_dirs=dirs)
        return [Path(d) for d in dirs]

    def in_envs_dir(self, envs_dirs: Optional[List[Path]] = None) -> bool:
        """Is the project directory inside one of the environment-storage directories?"""
        if envs_dirs is None:
            envs_dirs = self.envs_dirs()
        return any(is_relative_to(self.project_root, d) for d in envs_dirs)

    def create(
        self,
        name: str,
        descriptor_path: Optional[Path] = None,
        envs_dirs: Optional[List[Path]] = None,
    ) -> CreationResult:
        binary = self.require_binary(self.kind.value)

        if descriptor_path:
            command = [binary, "env", "create", "-q"]
        else:
            # `env create` needs a file; an empty environment goes through `create`.
            command = [binary, "create", "-y", "-q"]

        named = self.in_envs_dir(envs_dirs)
        if named:
            command += ["-n", name]
        else:
            command += ["--prefix", str(self.local_env_dir)]

        if descriptor_path:
            command += ["-f", str(descriptor_path)]

        logger.info("conda.create", command=" ".join(command), named=named)
        self.execute(command)

        if named:
            return CreationResult(
                kind=self.kind, name=name, activation=self.activation_for(name)
            )
        return CreationResult(
            kind=self.kind,
            name=name,
            location=self.local_env_dir,
            activation=self.activation_for(str(self.local_env_dir)),
        )

    def activation_for(self, target: str) -> ActivationStep:
        return ActivationStep(kind="manager", target=target, manager=self.kind)
