from pathlib import Path
from typing import List, Optional

import structlog

from ..config import AutoEnvConfig
from ..utils import is_relative_to

logger = structlog.get_logger(__name__)


class ScopeManager:
    """
    Decides whether a directory is in scope for auto-activation.
    """

    def __init__(self, config: AutoEnvConfig):
        self.config = config

    def target_directories(self, env_dirs: Optional[List[Path]] = None) -> List[Path]:
        """
        Builds the ordered target set: the configured directories, followed by
        the conda-like manager's environment-storage directories when enabled.
        """
        targets = list(self.config.target_directories)
        if not env_dirs or not self.config.include_manager_env_dirs:
            return targets

        for env_dir in env_dirs:
            if env_dir not in targets:
                targets.append(env_dir)
        return targets

    def matches(self, current_dir: Path, target_dir: Path) -> bool:
        if self.config.directory_match == "substring":
            # Legacy rule: '/home/u/a' also matches '/home/u/abc'.
            return str(target_dir) in str(current_dir)
        return is_relative_to(current_dir, target_dir)

    def is_target_directory(self, current_dir: Path, targets: List[Path]) -> bool:
        """
        True when current_dir is in one of the target directories or below it.
        Emits a diagnostic to stderr (through the logger) when it is not.
        """
        if not targets:
            logger.warning("scope.targets_empty", current_dir=str(current_dir))
            return False

        for target_dir in targets:
            if self.matches(current_dir, target_dir):
                logger.debug(
                    "scope.in_target",
                    current_dir=str(current_dir),
                    target_dir=str(target_dir),
                )
                return True

        # An out-of-scope directory is a quiet skip; the reason shows with -v.
        logger.info(
            "scope.not_in_target",
            current_dir=str(current_dir),
            targets=[str(t) for t in targets],
        )
        return False
