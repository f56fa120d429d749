from enum import Enum, IntEnum
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class StrictnessLevel(IntEnum):
    """Which descriptor validation rules run. Each level includes the one below."""

    SKIP = 0
    BASIC = 1
    FULL = 2


class PackageManager(str, Enum):
    CONDA = "conda"
    MAMBA = "mamba"
    VENV = "venv"
    UV = "uv"

    @property
    def is_conda_like(self) -> bool:
        return self in (PackageManager.CONDA, PackageManager.MAMBA)


class ActivationOutcome(str, Enum):
    SKIPPED_OUT_OF_SCOPE = "skipped-out-of-scope"
    ALREADY_ACTIVE = "already-active"
    ACTIVATED_EXISTING = "activated-existing"
    CREATED_AND_ACTIVATED = "created-and-activated"
    VALIDATION_FAILED = "validation-failed"
    CONFIGURATION_ERROR = "configuration-error"
    RESOLUTION_FAILED = "resolution-failed"
    CREATION_FAILED = "creation-failed"
    ACTIVATION_FAILED = "activation-failed"
    USER_DECLINED = "user-declined"

    @property
    def exit_code(self) -> int:
        if self in (
            ActivationOutcome.SKIPPED_OUT_OF_SCOPE,
            ActivationOutcome.ALREADY_ACTIVE,
            ActivationOutcome.ACTIVATED_EXISTING,
            ActivationOutcome.CREATED_AND_ACTIVATED,
        ):
            return 0
        return 1


class EnvironmentDescriptor(BaseModel):
    """
    The subset of an environment.yml file the engine cares about.
    Extracted line by line; this is not a general YAML parse.
    """

    path: Path
    name: Optional[str] = Field(
        None, description="Value of the first non-comment 'name:' line."
    )
    channels: List[str] = Field(default_factory=list)
    dependencies: List[str] = Field(
        default_factory=list,
        description="Package specs, either a bare name or 'name=version'.",
    )


class ValidationResult(BaseModel):
    ok: bool
    reason: Optional[str] = None
    rule: Optional[str] = Field(
        None, description="The rule that rejected the descriptor, e.g. 'channels'."
    )

    @classmethod
    def accept(cls) -> "ValidationResult":
        return cls(ok=True)

    @classmethod
    def reject(cls, rule: str, reason: str) -> "ValidationResult":
        return cls(ok=False, rule=rule, reason=reason)


class Resolution(BaseModel):
    """Whether a named conda-like environment exists, and who created it."""

    found: bool
    name: str
    path: Optional[Path] = None
    original_manager: Optional[PackageManager] = None
    provenance: Optional[Literal["history", "path-heuristic"]] = Field(
        None,
        description="How original_manager was inferred. Best-effort, not authoritative.",
    )


class ActivationStep(BaseModel):
    """
    One shell-level activation. 'manager' steps run `<manager> activate <target>`,
    'source' steps source a venv-style activation script.
    """

    kind: Literal["manager", "source"]
    target: str
    manager: Optional[PackageManager] = None


class CreationResult(BaseModel):
    kind: PackageManager
    name: str
    location: Optional[Path] = Field(
        None, description="Directory of the new environment, when it is project-local."
    )
    activation: ActivationStep
    warnings: List[str] = Field(default_factory=list)


class ActivationReport(BaseModel):
    """The result of one `activate_env` run."""

    outcome: ActivationOutcome
    steps: List[ActivationStep] = Field(default_factory=list)
    environment_name: Optional[str] = None
    message: Optional[str] = None

    @property
    def exit_code(self) -> int:
        return self.outcome.exit_code
