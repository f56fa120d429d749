import sys
from pathlib import Path
from typing import Optional

import structlog

from ..data.env_schemas import ActivationStep, CreationResult, PackageManager
from .base import BaseEnvironment

logger = structlog.get_logger(__name__)

VENV_DIR = "venv"


class VenvEnvironment(BaseEnvironment):
    """
    An environment provider that uses the standard library `venv` module to
    create a project-local ./venv directory.
    """

    kind = PackageManager.VENV

    @property
    def env_dir(self) -> Path:
        return self.project_root / VENV_DIR

    def create(
        self, name: str, descriptor_path: Optional[Path] = None
    ) -> CreationResult:
        """
        Creates ./venv with the Python interpreter running auto-py-env.
        A descriptor file has no meaning for venv and is ignored.
        """
        if descriptor_path:
            logger.warning(
                "venv_provider.descriptor_ignored", descriptor=str(descriptor_path)
            )

        self.execute([sys.executable, "-m", "venv", str(self.env_dir)])
        return CreationResult(
            kind=self.kind,
            name=name,
            location=self.env_dir,
            activation=self.activation_for(str(self.env_dir)),
        )

    def activation_for(self, target: str) -> ActivationStep:
        return self.source_step(Path(target))
