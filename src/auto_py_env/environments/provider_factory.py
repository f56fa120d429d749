from pathlib import Path
from typing import Union

import structlog

from ..config import AutoEnvConfig
from ..data.env_schemas import PackageManager
from ..errors import ConfigError
from ..utils import find_binary
from .base import BaseEnvironment
from .conda_provider import CondaEnvironment
from .uv_provider import UvEnvironment
from .venv_provider import VenvEnvironment

logger = structlog.get_logger(__name__)


def _as_manager(kind: Union[str, PackageManager]) -> PackageManager:
    try:
        return PackageManager(kind)
    except ValueError:
        raise ConfigError(f"Unsupported environment type '{kind}'.")


def resolve_conda_manager(config: AutoEnvConfig) -> PackageManager:
    """mamba when it is preferred and installed, conda otherwise."""
    if config.package_manager == PackageManager.MAMBA:
        if find_binary("mamba"):
            return PackageManager.MAMBA
        logger.debug("package_manager.fallback", preferred="mamba", using="conda")
    return PackageManager.CONDA


def resolve_package_manager(config: AutoEnvConfig) -> PackageManager:
    """The manager this invocation will use, after the mamba → conda fallback."""
    if config.package_manager.is_conda_like:
        return resolve_conda_manager(config)
    return config.package_manager


def get_provider(
    kind: Union[str, PackageManager], project_root: Path, config: AutoEnvConfig
) -> BaseEnvironment:
    """Returns the provider for an environment kind. Unknown kinds are fatal."""
    manager = _as_manager(kind)
    if manager.is_conda_like:
        return CondaEnvironment(project_root, config, kind=manager)
    if manager == PackageManager.VENV:
        return VenvEnvironment(project_root, config)
    return UvEnvironment(project_root, config)
