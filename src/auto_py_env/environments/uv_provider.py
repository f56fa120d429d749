from pathlib import Path
from typing import Optional

import structlog

from ..data.env_schemas import ActivationStep, CreationResult, PackageManager
from ..errors import ExternalToolError
from .base import BaseEnvironment

logger = structlog.get_logger(__name__)

UV_ENV_DIR = ".venv"
REQUIREMENTS_FILE = "requirements.txt"


class UvEnvironment(BaseEnvironment):
    """
    An environment provider backed by `uv`. Creates ./.venv and installs
    requirements.txt into it when the project has one.
    """

    kind = PackageManager.UV

    @property
    def env_dir(self) -> Path:
        return self.project_root / UV_ENV_DIR

    def create(
        self, name: str, descriptor_path: Optional[Path] = None
    ) -> CreationResult:
        uv = self.require_binary("uv")

        # Step 1: the environment itself. Failure here is fatal.
        self.execute([uv, "venv", str(self.env_dir)])

        # Step 2: requirements are optional; problems only produce warnings.
        warnings = []
        requirements_path = self.project_root / REQUIREMENTS_FILE
        if not requirements_path.is_file():
            warnings.append(f"No {REQUIREMENTS_FILE} found; nothing to install.")
        else:
            try:
                self.execute(
                    [
                        uv,
                        "pip",
                        "install",
                        "-r",
                        str(requirements_path),
                        "--python",
                        str(self.env_dir),
                    ]
                )
            except ExternalToolError as e:
                warnings.append(f"Failed to install {REQUIREMENTS_FILE}: {e}")

        for warning in warnings:
            logger.warning("uv_provider.requirements", detail=warning)

        return CreationResult(
            kind=self.kind,
            name=name,
            location=self.env_dir,
            activation=self.activation_for(str(self.env_dir)),
            warnings=warnings,
        )

    def activation_for(self, target: str) -> ActivationStep:
        return self.source_step(Path(target))
