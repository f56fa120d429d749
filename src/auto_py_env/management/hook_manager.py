import shlex
import sys
from pathlib import Path
from typing import List, Optional, TextIO

import structlog
from jinja2 import Environment, FileSystemLoader, StrictUndefined

from ..data.env_schemas import ActivationStep
from ..errors import ConfigError
from ..utils import get_assets_root

logger = structlog.get_logger(__name__)

SUPPORTED_SHELLS = ("bash", "zsh")
HOOK_FUNCTION = "_auto_py_env_hook"


def default_command(config_path: Optional[Path] = None) -> str:
    """
    The command line the hook uses to call back into auto-py-env. It points at
    the interpreter running right now, so the hook keeps working from any venv.
    """
    parts = [sys.executable, "-m", "auto_py_env"]
    if config_path:
        parts += ["--config", str(config_path)]
    return shlex.join(parts)


class HookManager:
    """
    Produces the shell code that wires auto-py-env into a shell's prompt and the
    activation lines that the hook evaluates.
    """

    def __init__(
        self, command: Optional[str] = None, config_path: Optional[Path] = None
    ):
        self.command = command or default_command(config_path)
        self.jinja_env = Environment(
            loader=FileSystemLoader(str(get_assets_root() / "hooks")),
            autoescape=False,
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            lstrip_blocks=True,
            trim_blocks=True,
        )

    @staticmethod
    def _check_shell(shell: str) -> str:
        if shell not in SUPPORTED_SHELLS:
            raise ConfigError(
                f"Unsupported shell '{shell}'. Choose one of: {', '.join(SUPPORTED_SHELLS)}."
            )
        return shell

    def render(self, shell: str, init: bool = False) -> str:
        """
        Renders the hook for `shell`. With `init`, the hook also registers itself
        in the per-prompt hook; evaluating it again never registers it twice.
        """
        template = self.jinja_env.get_template(f"{self._check_shell(shell)}.sh.j2")
        logger.debug("hook.render", shell=shell, init=init)
        return template.render(command=self.command, hook=HOOK_FUNCTION, init=init)

    @staticmethod
    def activation_command(step: ActivationStep) -> str:
        if step.kind == "manager":
            return f"{step.manager.value} activate {shlex.quote(step.target)}"
        return f". {shlex.quote(step.target)}"

    def render_activation(self, steps: List[ActivationStep], shell: str) -> str:
        """Renders activation steps as shell lines; a failing step leaves a non-zero status."""
        self._check_shell(shell)
        lines = []
        for step in steps:
            command = self.activation_command(step)
            failure = shlex.quote(
                f"auto-py-env: failed to activate environment '{step.target}'"
            )
            lines.append(f"{command} || {{ echo {failure} >&2; false; }}")
        return "\n".join(lines) + ("\n" if lines else "")

    @staticmethod
    def is_being_evaluated(stream: Optional[TextIO] = None) -> bool:
        """
        Shell code on stdout only helps when a shell captures it, as in
        `eval "$(auto-py-env hook bash)"`. A terminal on stdout means the command
        was executed directly.
        """
        stream = sys.stdout if stream is None else stream
        try:
            return not stream.isatty()
        except (AttributeError, ValueError):
            return True
