"""
Exceptions raised by the activation engine.

Every failure the engine can run into is one of these. The orchestration
layer turns them into an ActivationReport with a non-zero exit code so that
nothing ever escapes into the user's prompt hook.
"""

from typing import List, Optional


class AutoEnvError(Exception):
    """Base exception for all auto-py-env errors."""

    pass


class ScopeError(AutoEnvError):
    """The current directory is not under any target directory."""

    pass


class ConfigError(AutoEnvError):
    """Invalid configuration: empty target set, unknown manager, empty name."""

    pass


class DescriptorValidationError(AutoEnvError):
    """An environment descriptor failed one of the tiered checks."""

    def __init__(self, reason: str, rule: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason
        self.rule = rule


class ExternalToolError(AutoEnvError):
    """A required binary is missing or an external command exited non-zero."""

    def __init__(
        self,
        message: str,
        command: Optional[List[str]] = None,
        returncode: Optional[int] = None,
        stderr: Optional[str] = None,
    ):
        super().__init__(message)
        self.command = command
        self.returncode = returncode
        self.stderr = stderr


class UserDeclineError(AutoEnvError):
    """The user answered 'no' to the environment creation prompt."""

    pass


class ActivationError(ExternalToolError):
    """An environment exists but cannot be activated (e.g. no activate script)."""

    pass
