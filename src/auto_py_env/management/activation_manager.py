import os
import sys
from pathlib import Path
from typing import Callable, List, Mapping, Optional

import structlog
from rich.console import Console

from ..config import AutoEnvConfig
from ..data.env_schemas import (
    ActivationOutcome,
    ActivationReport,
    ActivationStep,
    PackageManager,
    StrictnessLevel,
)
from ..environments.conda_provider import LOCAL_ENV_DIR, CondaEnvironment
from ..environments.provider_factory import (
    get_provider,
    resolve_conda_manager,
    resolve_package_manager,
)
from ..environments.uv_provider import UV_ENV_DIR
from ..environments.venv_provider import VENV_DIR, VenvEnvironment
from ..errors import (
    ActivationError,
    ConfigError,
    DescriptorValidationError,
    ExternalToolError,
    ScopeError,
    UserDeclineError,
)
from ..utils import find_binary
from .environment_manager import EnvironmentResolver
from .scope_manager import ScopeManager
from .validation_manager import ValidationManager, read_descriptor

logger = structlog.get_logger(__name__)

# stdout carries the shell code the hook evaluates; people read stderr.
console = Console(stderr=True)

Confirm = Callable[[str], bool]


def console_confirm(question: str) -> bool:
    """Asks a y/n question on the terminal. Without a terminal the answer is no."""
    if not sys.stdin.isatty():
        logger.debug("confirm.no_tty", question=question)
        return False
    answer = console.input(f"{question} (y/n) ")
    return answer.strip().lower() in ("y", "yes")


def _searchable_dir(path: Path) -> bool:
    return path.is_dir() and os.access(path, os.X_OK)


class ActivationManager:
    """
    Runs the activation decision procedure for one directory.

    The result is an ActivationReport: an outcome, an exit code and the
    activation steps the shell hook should evaluate. Errors never propagate.
    """

    def __init__(
        self,
        config: AutoEnvConfig,
        confirm: Confirm = console_confirm,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.config = config
        self.confirm = confirm
        self.environ = os.environ if environ is None else environ
        self.scope = ScopeManager(config)
        self.validator = ValidationManager(config)

    def _report(
        self,
        outcome: ActivationOutcome,
        steps: Optional[List[ActivationStep]] = None,
        name: Optional[str] = None,
        message: Optional[str] = None,
    ) -> ActivationReport:
        report = ActivationReport(
            outcome=outcome, steps=steps or [], environment_name=name, message=message
        )
        if message and report.exit_code != 0:
            console.print(f"[bold red]Error:[/bold red] {message}")
        logger.debug("activation.report", outcome=outcome.value, name=name)
        return report

    def env_dirs(self, conda: CondaEnvironment) -> List[Path]:
        """Environment-storage directories, or none when they cannot be determined."""
        if self.config.env_dirs is None and not (
            find_binary("conda") or find_binary(conda.kind.value)
        ):
            return []
        try:
            return conda.envs_dirs()
        except ExternalToolError as e:
            logger.warning("activation.envs_dirs.failed", error=str(e))
            return []

    def activate_env(self, current_dir: Path) -> ActivationReport:
        current_dir = Path(current_dir).resolve()
        try:
            return self._activate(current_dir)
        except ScopeError:
            return self._report(ActivationOutcome.SKIPPED_OUT_OF_SCOPE)
        except DescriptorValidationError as e:
            return self._report(
                ActivationOutcome.VALIDATION_FAILED,
                message=f"Environment validation failed: {e.reason}",
            )
        except UserDeclineError as e:
            return self._report(ActivationOutcome.USER_DECLINED, message=str(e))
        except ConfigError as e:
            return self._report(ActivationOutcome.CONFIGURATION_ERROR, message=str(e))

    def _activate(self, current_dir: Path) -> ActivationReport:
        # Step 1: the manager for this run, after the mamba -> conda fallback.
        manager = resolve_package_manager(self.config)
        conda = CondaEnvironment(
            current_dir, self.config, kind=resolve_conda_manager(self.config)
        )
        logger.debug("activation.start", cwd=str(current_dir), manager=manager.value)

        # Step 2: the directory gate.
        env_dirs = self.env_dirs(conda)
        targets = self.scope.target_directories(env_dirs)
        if not self.scope.is_target_directory(current_dir, targets):
            raise ScopeError(f"{current_dir} is not in any target directory.")

        # Step 3: a descriptor file decides everything when it is present.
        descriptor = current_dir / self.config.descriptor_filename
        if descriptor.is_file() and os.access(descriptor, os.R_OK):
            return self._activate_descriptor(descriptor, conda, env_dirs)

        # Step 4: conventional environment folders, in priority order.
        report = self._activate_conventional(current_dir, conda)
        if report is not None:
            return report

        # Step 5: nothing to activate; offer to create something.
        return self._offer_creation(current_dir, manager, env_dirs)

    def _activate_descriptor(
        self, descriptor: Path, conda: CondaEnvironment, env_dirs: List[Path]
    ) -> ActivationReport:
        console.print(f"Found {descriptor.name}...")
        if self.config.strictness_level == StrictnessLevel.SKIP:
            console.print("Validation skipped (strictness level is 0).")
        self.validator.ensure_valid(descriptor)

        name = read_descriptor(descriptor).name
        if not name:
            raise ConfigError(
                f"Could not determine environment name from {descriptor.name}."
            )

        resolver = EnvironmentResolver(conda)
        if resolver.is_active(name, self.environ):
            return self._report(ActivationOutcome.ALREADY_ACTIVE, name=name)

        try:
            resolution = resolver.resolve(name)
        except ExternalToolError as e:
            return self._report(
                ActivationOutcome.RESOLUTION_FAILED,
                name=name,
                message=f"Could not list existing environments: {e}",
            )

        if resolution.found:
            original = resolution.original_manager
            console.print(
                f"Activating existing {original.value} environment '{name}'..."
            )
            step = ActivationStep(kind="manager", target=name, manager=original)
            return self._report(
                ActivationOutcome.ACTIVATED_EXISTING, steps=[step], name=name
            )

        console.print(
            f"{conda.kind.value} environment '{name}' doesn't exist. Creating..."
        )
        try:
            creation = conda.create(name, descriptor_path=descriptor, envs_dirs=env_dirs)
        except ExternalToolError as e:
            return self._report(
                ActivationOutcome.CREATION_FAILED,
                name=name,
                message=f"Failed to create environment '{name}': {e}",
            )

        console.print(f"Activating newly created {conda.kind.value} environment '{name}'...")
        return self._report(
            ActivationOutcome.CREATED_AND_ACTIVATED,
            steps=[creation.activation],
            name=name,
        )

    def _activate_conventional(
        self, current_dir: Path, conda: CondaEnvironment
    ) -> Optional[ActivationReport]:
        envs_dir = current_dir / LOCAL_ENV_DIR
        if _searchable_dir(envs_dir):
            console.print(f"Attempting to activate ./{LOCAL_ENV_DIR}...")
            return self._report(
                ActivationOutcome.ACTIVATED_EXISTING,
                steps=[conda.activation_for(str(envs_dir))],
            )

        venv = VenvEnvironment(current_dir, self.config)
        for folder in (VENV_DIR, UV_ENV_DIR):
            env_dir = current_dir / folder
            if not _searchable_dir(env_dir):
                continue
            console.print(f"Attempting to activate ./{folder}...")
            try:
                step = venv.activation_for(str(env_dir))
            except ActivationError as e:
                return self._report(
                    ActivationOutcome.ACTIVATION_FAILED,
                    message=f"Failed to activate ./{folder}: {e}",
                )
            return self._report(ActivationOutcome.ACTIVATED_EXISTING, steps=[step])
        return None

    def _offer_creation(
        self, current_dir: Path, manager: PackageManager, env_dirs: List[Path]
    ) -> ActivationReport:
        question = (
            f"No {self.config.descriptor_filename} found. "
            f"Would you like to create a new {manager.value} environment?"
        )
        if not self.confirm(question):
            raise UserDeclineError("Environment creation cancelled by user.")

        name = current_dir.name
        provider = get_provider(manager, current_dir, self.config)
        try:
            if isinstance(provider, CondaEnvironment):
                creation = provider.create(name, envs_dirs=env_dirs)
            else:
                creation = provider.create(name)
        except ActivationError as e:
            return self._report(
                ActivationOutcome.ACTIVATION_FAILED,
                name=name,
                message=f"Failed to activate {manager.value} environment: {e}",
            )
        except ExternalToolError as e:
            return self._report(
                ActivationOutcome.CREATION_FAILED,
                name=name,
                message=f"Failed to create {manager.value} environment: {e}",
            )

        for warning in creation.warnings:
            console.print(f"[yellow]Warning:[/yellow] {warning}")
        console.print(f"Activating {manager.value} environment...")
        return self._report(
            ActivationOutcome.CREATED_AND_ACTIVATED,
            steps=[creation.activation],
            name=name,
        )


def activate_env(
    current_dir: Path,
    config: AutoEnvConfig,
    confirm: Confirm = console_confirm,
) -> ActivationReport:
    """Runs one activation attempt for `current_dir`."""
    return ActivationManager(config, confirm=confirm).activate_env(current_dir)
