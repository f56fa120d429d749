import re
import subprocess
from pathlib import Path
from typing import Iterable, List, Optional

import structlog

from ..config import AutoEnvConfig
from ..data.env_schemas import (
    EnvironmentDescriptor,
    StrictnessLevel,
    ValidationResult,
)
from ..errors import DescriptorValidationError
from ..utils import find_binary

logger = structlog.get_logger(__name__)

LIST_ITEM = re.compile(r"^\s*-\s*(?P<value>.*)$")
PACKAGE_ITEM = re.compile(r"^\s*-\s*(?P<package>[A-Za-z0-9\-]+)")
NAME_LINE = re.compile(r"^[^#]*?\bname:\s*(?P<value>.*)$")


def _clean_scalar(value: str) -> str:
    """Strips an inline comment and surrounding quotes from a YAML scalar."""
    value = re.split(r"\s+#", value, maxsplit=1)[0].strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
        value = value[1:-1]
    return value.strip()


def extract_name(text: str) -> Optional[str]:
    """The value of the first non-comment line carrying a `name:` key."""
    for line in text.splitlines():
        match = NAME_LINE.match(line)
        if match:
            tokens = _clean_scalar(match.group("value")).split()
            return tokens[0] if tokens else None
    return None


def extract_list_block(text: str, key: str) -> List[str]:
    """
    Items of the contiguous list under a top-level `key:`. The block runs from
    the key to the first line that is neither a list item, blank, nor a comment.
    A flow sequence on the key's own line (`key: [a, b]`) is also understood.
    """
    lines = text.splitlines()
    key_line = re.compile(rf"^{re.escape(key)}:\s*(?P<rest>.*)$")
    items: List[str] = []

    for index, line in enumerate(lines):
        match = key_line.match(line)
        if not match:
            continue

        rest = _clean_scalar(match.group("rest"))
        if rest.startswith("[") and rest.endswith("]"):
            return [
                _clean_scalar(item)
                for item in rest[1:-1].split(",")
                if _clean_scalar(item)
            ]

        for following in lines[index + 1 :]:
            stripped = following.strip()
            if not stripped or stripped.startswith("#"):
                continue
            item = LIST_ITEM.match(following)
            if not item:
                break
            value = _clean_scalar(item.group("value"))
            if value:
                items.append(value)
        return items
    return items


def read_text(path: Path) -> str:
    """The descriptor's text. Unreadable or non-UTF-8 files are a rejection."""
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise DescriptorValidationError(
            f"Could not read {path.name}: {e}", rule="read"
        ) from e


def read_descriptor(path: Path) -> EnvironmentDescriptor:
    """Reads an environment.yml fresh from disk."""
    text = read_text(path)
    return EnvironmentDescriptor(
        path=path,
        name=extract_name(text),
        channels=extract_list_block(text, "channels"),
        dependencies=extract_list_block(text, "dependencies"),
    )


# --- Validation rules. Each one is independent and returns a ValidationResult. ---


def check_yaml_syntax(path: Path) -> ValidationResult:
    """Runs yamllint when it is installed. A missing linter is only a warning."""
    yamllint = find_binary("yamllint")
    if not yamllint:
        logger.warning(
            "validation.yamllint_missing",
            detail="YAML syntax validation will be skipped.",
        )
        return ValidationResult.accept()

    try:
        result = subprocess.run(
            [yamllint, str(path)], capture_output=True, text=True, check=False
        )
    except OSError as e:
        logger.warning("validation.yamllint_failed", error=str(e))
        return ValidationResult.accept()
    if result.returncode != 0:
        logger.debug("validation.yamllint_output", output=result.stdout)
        return ValidationResult.reject(
            "syntax", f"Invalid YAML syntax in {path.name}."
        )
    return ValidationResult.accept()


def check_external_commands(text: str, tokens: Iterable[str]) -> ValidationResult:
    """
    Rejects when any token occurs anywhere in the raw text, comments included.
    This is a plain substring scan: 'sh' also matches 'shell'.
    """
    tokens = [t for t in tokens if t]
    if not tokens:
        return ValidationResult.accept()

    pattern = re.compile("|".join(re.escape(t) for t in tokens))
    for line_number, line in enumerate(text.splitlines(), start=1):
        match = pattern.search(line)
        if match:
            return ValidationResult.reject(
                "external-commands",
                f"External command invocation detected: '{match.group(0)}' "
                f"on line {line_number}.",
            )
    return ValidationResult.accept()


def check_dangerous_packages(
    text: str, dangerous: Iterable[str]
) -> ValidationResult:
    """Rejects list items whose leading identifier is exactly a dangerous package."""
    dangerous = set(dangerous)
    for line in text.splitlines():
        match = PACKAGE_ITEM.match(line)
        if match and match.group("package") in dangerous:
            return ValidationResult.reject(
                "dangerous-packages",
                f"Dangerous package '{match.group('package')}' detected.",
            )
    return ValidationResult.accept()


def check_trusted_channels(text: str, trusted: Iterable[str]) -> ValidationResult:
    """Rejects any entry of the `channels:` block that is not a trusted channel."""
    trusted = set(trusted)
    for channel in extract_list_block(text, "channels"):
        if channel not in trusted:
            return ValidationResult.reject(
                "channels", f"Untrusted channel '{channel}' detected."
            )
    return ValidationResult.accept()


class ValidationManager:
    """
    Applies the tiered validation policy to an environment descriptor.

    The first failing rule wins. Nothing here terminates the process; callers
    decide what a rejection means.
    """

    def __init__(self, config: AutoEnvConfig):
        self.config = config

    def validate(
        self, path: Path, strictness: Optional[StrictnessLevel] = None
    ) -> ValidationResult:
        level = StrictnessLevel(
            self.config.strictness_level if strictness is None else strictness
        )
        log = logger.bind(descriptor=str(path), strictness=int(level))

        if level == StrictnessLevel.SKIP:
            log.info("validation.skipped")
            return ValidationResult.accept()

        try:
            text = read_text(path)
        except DescriptorValidationError as e:
            log.warning("validation.rejected", rule=e.rule, reason=e.reason)
            return ValidationResult.reject(e.rule, e.reason)
        checks = [
            lambda: check_yaml_syntax(path),
            lambda: check_external_commands(text, self.config.blocked_commands),
        ]
        if level >= StrictnessLevel.FULL:
            checks += [
                lambda: check_dangerous_packages(
                    text, self.config.dangerous_packages
                ),
                lambda: check_trusted_channels(text, self.config.trusted_channels),
            ]

        for check in checks:
            result = check()
            if not result.ok:
                log.warning("validation.rejected", rule=result.rule, reason=result.reason)
                return result

        log.debug("validation.passed")
        return ValidationResult.accept()

    def ensure_valid(
        self, path: Path, strictness: Optional[StrictnessLevel] = None
    ) -> None:
        """Like validate, but a rejection raises DescriptorValidationError."""
        result = self.validate(path, strictness=strictness)
        if not result.ok:
            raise DescriptorValidationError(result.reason, rule=result.rule)


def validate_descriptor(path: Path, config: AutoEnvConfig) -> ValidationResult:
    """Validates a descriptor at the configured strictness level."""
    return ValidationManager(config).validate(path)
