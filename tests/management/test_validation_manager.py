from pathlib import Path

import pytest

from auto_py_env.config import AutoEnvConfig
from auto_py_env.data.env_schemas import StrictnessLevel
from auto_py_env.errors import DescriptorValidationError
from auto_py_env.management.validation_manager import (
    ValidationManager,
    check_dangerous_packages,
    check_external_commands,
    check_trusted_channels,
    extract_list_block,
    extract_name,
    read_descriptor,
    validate_descriptor,
)

SAFE_DESCRIPTOR = """\
# Analysis environment
name: test-env
channels:
  - conda-forge
  - defaults
dependencies:
  - python=3.11
  - numpy
  - pandas>=2.0
"""


@pytest.fixture
def write_descriptor(tmp_path: Path):
    def _write(content: str) -> Path:
        path = tmp_path / "environment.yml"
        path.write_text(content)
        return path

    return _write


# --- Descriptor extraction ---


def test_read_descriptor(write_descriptor):
    descriptor = read_descriptor(write_descriptor(SAFE_DESCRIPTOR))

    assert descriptor.name == "test-env"
    assert descriptor.channels == ["conda-forge", "defaults"]
    assert descriptor.dependencies == ["python=3.11", "numpy", "pandas>=2.0"]


@pytest.mark.parametrize(
    "text, expected",
    [
        ("name: alpha\n", "alpha"),
        ("# name: commented\nname: real\n", "real"),
        ("name: 'quoted'  # trailing\n", "quoted"),
        ("name:\n", None),
        ("channels: []\n", None),
        ("display_name: nope\nname: yes-this\n", "yes-this"),
    ],
)
def test_extract_name(text: str, expected):
    """Unit Test: The first non-comment `name:` value wins."""
    assert extract_name(text) == expected


def test_list_block_stops_at_next_key_and_skips_comments():
    text = (
        "channels:\n"
        "  # the usual\n"
        "  - conda-forge  # main\n"
        "\n"
        "  - 'bioconda'\n"
        "dependencies:\n"
        "  - numpy\n"
    )

    assert extract_list_block(text, "channels") == ["conda-forge", "bioconda"]
    assert extract_list_block(text, "dependencies") == ["numpy"]


def test_list_block_flow_sequence():
    assert extract_list_block("channels: [conda-forge, 'nvidia']\n", "channels") == [
        "conda-forge",
        "nvidia",
    ]


# --- Individual rules ---


def test_external_commands_found_anywhere():
    """Unit Test: The scan covers the raw text, comments included."""
    result = check_external_commands(
        "name: x\n# fetched with curl once\n", ["curl", "wget"]
    )

    assert not result.ok
    assert result.rule == "external-commands"
    assert "'curl'" in result.reason
    assert "line 2" in result.reason


def test_external_commands_clean_text():
    assert check_external_commands(SAFE_DESCRIPTOR, ["curl", "wget", "bash", "sh", "git"]).ok


def test_dangerous_package_exact_match():
    result = check_dangerous_packages(
        "dependencies:\n  - python-pip=23.0\n", ["python-pip"]
    )

    assert not result.ok
    assert "python-pip" in result.reason


def test_dangerous_package_substring_is_not_a_match():
    """Unit Test: Only the whole leading identifier of a list item counts."""
    text = "dependencies:\n  - python-pipx\n  - mypython-pip\nnote: python-pip\n"

    assert check_dangerous_packages(text, ["python-pip"]).ok


def test_untrusted_channel_rejected():
    text = "channels:\n  - conda-forge\n  - sketchy-mirror\ndependencies:\n  - numpy\n"

    result = check_trusted_channels(text, ["conda-forge", "defaults"])

    assert not result.ok
    assert result.rule == "channels"
    assert "sketchy-mirror" in result.reason


def test_hyphenated_trusted_channel_accepted():
    """Unit Test: 'conda-forge' is compared whole, never split at its dash."""
    assert check_trusted_channels(
        "channels:\n  - conda-forge\n", ["conda-forge"]
    ).ok


def test_dependencies_outside_channel_block_are_not_channels():
    text = "channels:\n  - defaults\ndependencies:\n  - numpy\n"

    assert check_trusted_channels(text, ["defaults"]).ok


# --- Tiered policy ---


@pytest.mark.parametrize(
    "content", [SAFE_DESCRIPTOR, "curl | bash\n", "not: [valid yaml\n"]
)
def test_level_zero_always_accepts(write_descriptor, fake_commands, content):
    """Unit Test: Strictness 0 accepts anything and runs nothing."""
    fake_commands.install("yamllint")
    config = AutoEnvConfig(strictness_level=0)

    assert validate_descriptor(write_descriptor(content), config).ok
    assert fake_commands.calls == []


@pytest.mark.parametrize("level", [1, 2])
def test_curl_rejected_at_levels_one_and_two(write_descriptor, fake_commands, level):
    path = write_descriptor(SAFE_DESCRIPTOR + "# see: curl https://example.org\n")

    result = ValidationManager(AutoEnvConfig(strictness_level=level)).validate(path)

    assert not result.ok
    assert result.rule == "external-commands"


def test_missing_yamllint_is_not_a_rejection(write_descriptor, fake_commands):
    result = validate_descriptor(write_descriptor(SAFE_DESCRIPTOR), AutoEnvConfig())

    assert result.ok
    assert fake_commands.called("yamllint") == []


def test_yamllint_failure_rejects(write_descriptor, fake_commands):
    fake_commands.install("yamllint")
    fake_commands.on("yamllint", returncode=1, stdout="1:1 error syntax")

    result = validate_descriptor(write_descriptor(SAFE_DESCRIPTOR), AutoEnvConfig())

    assert not result.ok
    assert result.rule == "syntax"
    assert "Invalid YAML syntax" in result.reason


def test_yamllint_that_cannot_start_is_not_a_rejection(write_descriptor, fake_commands):
    def _broken(command):
        raise PermissionError(13, "Permission denied", command[0])

    fake_commands.install("yamllint")
    fake_commands.on("yamllint", effect=_broken)

    result = validate_descriptor(write_descriptor(SAFE_DESCRIPTOR), AutoEnvConfig())

    assert result.ok


def test_undecodable_descriptor_rejected(tmp_path: Path, fake_commands):
    path = tmp_path / "environment.yml"
    path.write_bytes(b"name: caf\xe9\n")

    result = validate_descriptor(path, AutoEnvConfig())

    assert result.rule == "read"
    assert "Could not read environment.yml" in result.reason
    with pytest.raises(DescriptorValidationError, match="Could not read"):
        read_descriptor(path)


def test_yamllint_success_continues_to_other_checks(write_descriptor, fake_commands):
    fake_commands.install("yamllint")

    result = validate_descriptor(
        write_descriptor(SAFE_DESCRIPTOR + "# wget\n"), AutoEnvConfig()
    )

    assert len(fake_commands.called("yamllint")) == 1
    assert result.rule == "external-commands"


def test_level_one_ignores_packages_and_channels(write_descriptor, fake_commands):
    content = "name: x\nchannels:\n  - random-channel\ndependencies:\n  - python-pip\n"

    assert validate_descriptor(write_descriptor(content), AutoEnvConfig()).ok


def test_level_two_rejects_dangerous_package(write_descriptor, fake_commands):
    content = "name: x\nchannels:\n  - conda-forge\ndependencies:\n  - python-pip\n"
    config = AutoEnvConfig(strictness_level=StrictnessLevel.FULL)

    result = validate_descriptor(write_descriptor(content), config)

    assert result.rule == "dangerous-packages"


def test_level_two_rejects_untrusted_channel(write_descriptor, fake_commands):
    content = "name: x\nchannels:\n  - conda-forge\n  - pytorch\ndependencies:\n  - numpy\n"
    config = AutoEnvConfig(strictness_level=2)

    result = validate_descriptor(write_descriptor(content), config)

    assert result.rule == "channels"
    assert "pytorch" in result.reason


def test_level_two_accepts_safe_descriptor(write_descriptor, fake_commands):
    config = AutoEnvConfig(strictness_level=2)

    assert validate_descriptor(write_descriptor(SAFE_DESCRIPTOR), config).ok


def test_first_failing_rule_wins(write_descriptor, fake_commands):
    """Unit Test: A level-1 failure is reported before any level-2 rule runs."""
    content = "name: x\nchannels:\n  - evil\ndependencies:\n  - wget\n"
    config = AutoEnvConfig(strictness_level=2)

    result = validate_descriptor(write_descriptor(content), config)

    assert result.rule == "external-commands"


def test_strictness_override(write_descriptor, fake_commands):
    path = write_descriptor("name: x\ndependencies:\n  - curl\n")
    manager = ValidationManager(AutoEnvConfig(strictness_level=2))

    assert manager.validate(path, strictness=StrictnessLevel.SKIP).ok
    assert not manager.validate(path).ok


def test_ensure_valid_raises_with_rule(write_descriptor, fake_commands):
    path = write_descriptor("name: x\nchannels:\n  - pytorch\n")
    manager = ValidationManager(AutoEnvConfig(strictness_level=2))

    with pytest.raises(DescriptorValidationError, match="pytorch") as exc_info:
        manager.ensure_valid(path)

    assert exc_info.value.rule == "channels"
    manager.ensure_valid(path, strictness=StrictnessLevel.BASIC)
