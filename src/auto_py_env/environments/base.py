import subprocess
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

import structlog

from ..config import AutoEnvConfig
from ..data.env_schemas import ActivationStep, CreationResult, PackageManager
from ..errors import ActivationError, ExternalToolError
from ..utils import activation_script, find_binary

logger = structlog.get_logger(__name__)


class BaseEnvironment(ABC):
    """
    The abstract contract for all environment providers.

    A provider knows how to create one kind of environment for a project
    directory and how the shell should activate it afterwards. Providers never
    activate anything themselves; they describe the activation as an
    ActivationStep for the shell hook to evaluate.
    """

    kind: PackageManager

    def __init__(self, project_root: Path, config: AutoEnvConfig):
        """
        Initializes the provider with the directory it will manage.
        """
        self.project_root = project_root
        self.config = config

    @abstractmethod
    def create(
        self, name: str, descriptor_path: Optional[Path] = None
    ) -> CreationResult:
        """
        Materializes a new environment. Raises ExternalToolError on failure;
        failures are never retried.

        Args:
            name: The environment name (used for named conda environments).
            descriptor_path: Optional environment.yml to build the environment from.
        """
        raise NotImplementedError

    @abstractmethod
    def activation_for(self, target: str) -> ActivationStep:
        """Builds the shell activation for an environment name or directory."""
        raise NotImplementedError

    def require_binary(self, name: str) -> str:
        path = find_binary(name)
        if not path:
            raise ExternalToolError(f"'{name}' is not installed.", command=[name])
        return path

    def source_step(self, env_dir: Path) -> ActivationStep:
        """Activation that sources a venv-style script; the script must exist."""
        script = activation_script(env_dir)
        if not script.is_file():
            raise ActivationError(
                f"No activation script found at '{script}'.", command=[str(script)]
            )
        return ActivationStep(kind="source", target=str(script))

    def execute(self, command: List[str]) -> subprocess.CompletedProcess:
        """
        Runs an external command in the project directory.

        Returns:
            The CompletedProcess of a successful run.

        Raises:
            ExternalToolError: if the binary is missing or exits non-zero.
        """
        logger.info(
            "environment.execute",
            command=" ".join(command),
            project_root=str(self.project_root),
        )
        try:
            # No timeout: a hanging package manager hangs the prompt.
            return subprocess.run(
                command,
                capture_output=True,
                text=True,
                check=True,
                cwd=self.project_root,
            )
        except FileNotFoundError as e:
            raise ExternalToolError(
                f"'{command[0]}' is not installed.", command=command
            ) from e
        except subprocess.CalledProcessError as e:
            logger.error(
                "environment.execute.failed",
                command=" ".join(command),
                returncode=e.returncode,
                stderr=e.stderr,
            )
            raise ExternalToolError(
                f"Command '{' '.join(command)}' failed with exit code {e.returncode}.",
                command=command,
                returncode=e.returncode,
                stderr=e.stderr,
            ) from e
