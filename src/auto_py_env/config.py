# ~/repositories/auto-py-env/src/auto_py_env/config.py
import os
from pathlib import Path
from typing import List, Literal, Optional

import structlog
import yaml
from pydantic import BaseModel, Field, ValidationError

from .data.env_schemas import PackageManager, StrictnessLevel
from .errors import ConfigError
from .utils import DEFAULT_CONFIG_FILE

logger = structlog.get_logger(__name__)

DEFAULT_DANGEROUS_PACKAGES = ["curl", "wget", "bash", "sh", "python-pip", "git"]
DEFAULT_TRUSTED_CHANNELS = ["conda-forge", "defaults"]
DEFAULT_BLOCKED_COMMANDS = ["curl", "wget", "bash", "sh", "git"]


class AutoEnvConfig(BaseModel):
    """
    Static, process-local settings for the activation engine.

    A fresh instance is built for every invocation and handed explicitly to
    each component; nothing reads these values from globals.
    """

    package_manager: PackageManager = Field(
        PackageManager.MAMBA,
        description="Preferred manager. 'mamba' falls back to 'conda' when absent.",
    )
    target_directories: List[Path] = Field(
        default_factory=list,
        description="Directories under which auto-activation is permitted.",
    )
    strictness_level: StrictnessLevel = StrictnessLevel.BASIC
    dangerous_packages: List[str] = Field(
        default_factory=lambda: list(DEFAULT_DANGEROUS_PACKAGES)
    )
    trusted_channels: List[str] = Field(
        default_factory=lambda: list(DEFAULT_TRUSTED_CHANNELS)
    )
    blocked_commands: List[str] = Field(
        default_factory=lambda: list(DEFAULT_BLOCKED_COMMANDS),
        description="Tokens whose presence anywhere in a descriptor rejects it.",
    )
    directory_match: Literal["segment", "substring"] = Field(
        "segment",
        description="'substring' reproduces the legacy raw string containment test.",
    )
    include_manager_env_dirs: bool = Field(
        True,
        description="Also treat the conda-like manager's envs directories as targets.",
    )
    env_dirs: Optional[List[Path]] = Field(
        None,
        description="Pinned environment-storage directories; skips `conda info`.",
    )
    descriptor_filename: str = "environment.yml"


def _apply_env_overrides(data: dict) -> dict:
    targets = os.getenv("AUTO_PY_ENV_TARGET_DIRECTORIES")
    if targets:
        data["target_directories"] = [p for p in targets.split(os.pathsep) if p]
    manager = os.getenv("AUTO_PY_ENV_PACKAGE_MANAGER")
    if manager:
        data["package_manager"] = manager
    strictness = os.getenv("AUTO_PY_ENV_STRICTNESS")
    if strictness:
        try:
            data["strictness_level"] = int(strictness)
        except ValueError:
            raise ConfigError(
                f"AUTO_PY_ENV_STRICTNESS must be 0, 1 or 2, got '{strictness}'."
            )
    return data


def load_config(config_path: Optional[Path] = None) -> AutoEnvConfig:
    """
    Loads the configuration from YAML, applying environment variable overrides.
    A missing file yields the defaults; an unreadable or invalid one is fatal.
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_FILE
    data: dict = {}

    if path.exists():
        try:
            loaded = yaml.safe_load(path.read_text())
        except (yaml.YAMLError, OSError) as e:
            raise ConfigError(f"Could not read configuration '{path}': {e}") from e
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigError(f"Configuration '{path}' must be a YAML mapping.")
        data = loaded or {}
        logger.debug("config.loaded", path=str(path))
    elif config_path:
        raise ConfigError(f"Configuration file '{path}' not found.")

    data = _apply_env_overrides(data)

    try:
        config = AutoEnvConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in '{path}': {e}") from e

    config.target_directories = [
        p.expanduser().resolve() for p in config.target_directories
    ]
    if config.env_dirs is not None:
        config.env_dirs = [p.expanduser().resolve() for p in config.env_dirs]
    return config
