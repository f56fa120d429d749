import functools
import importlib.metadata
import logging
import sys
from pathlib import Path
from typing import Optional

import structlog
import typer
from rich.console import Console
from rich.table import Table
from rich.traceback import Traceback

from .config import AutoEnvConfig, load_config
from .environments.conda_provider import CondaEnvironment
from .environments.provider_factory import get_provider, resolve_conda_manager
from .errors import ScopeError
from .management.activation_manager import ActivationManager, console_confirm
from .management.environment_manager import EnvironmentResolver
from .management.hook_manager import HookManager
from .management.validation_manager import ValidationManager
from .state import APP_STATE

# Everything for humans goes to stderr; stdout is reserved for shell code.
console = Console(stderr=True)
logger = structlog.get_logger(__name__)


def version_callback(value: bool):
    """Prints the application version and exits."""
    if value:
        try:
            version = importlib.metadata.version("auto-py-env")
            console.print(f"auto-py-env version: {version}")
        except importlib.metadata.PackageNotFoundError:
            console.print("auto-py-env version: unknown (package not installed)")
        raise typer.Exit()


def setup_logging(verbose: bool):
    # The hook runs on every prompt, so only warnings show up by default.
    log_level = logging.DEBUG if verbose else logging.WARNING
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
    ]
    structlog.configure(
        processors=shared_processors
        + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processor=structlog.dev.ConsoleRenderer(),
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)


def handle_exceptions(func):
    """A decorator to catch and format exceptions for all CLI commands."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except typer.Exit:
            raise
        except Exception as e:
            console.print(f"[bold red]Error:[/bold red] {e}")
            if APP_STATE.verbose_mode:
                console.print(
                    Traceback.from_exception(
                        type(e), e, e.__traceback__, show_locals=True
                    )
                )
            raise typer.Exit(code=1)

    return wrapper


def _load_config() -> AutoEnvConfig:
    return load_config(APP_STATE.config_path)


def _require_evaluation(shell: str, command: str):
    """Refuses to print shell code straight to a terminal, where it would do nothing."""
    if HookManager.is_being_evaluated():
        return
    console.print(
        "[yellow]This command prints shell code and is meant to be evaluated, "
        "not executed directly.[/yellow]"
    )
    console.print(f'Run: [bold]eval "$(auto-py-env {command})"[/bold]')
    console.print(
        f'To enable auto-activation, add [bold]eval "$(auto-py-env hook {shell} --init)"[/bold] '
        f"to your shell's rc file."
    )
    raise typer.Exit(code=1)


app = typer.Typer(
    name="auto-py-env",
    help="Automatically activate (or create) conda, venv and uv environments when you `cd`.",
    rich_markup_mode="markdown",
)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose DEBUG logging."
    ),
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a config.yaml. Defaults to ~/.auto-py-env/config.yaml.",
    ),
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show the application's version and exit.",
    ),
):
    """Main entry point. Handles global options."""
    APP_STATE.verbose_mode = verbose
    APP_STATE.config_path = config
    setup_logging(verbose)


@app.command()
@handle_exceptions
def hook(
    shell: str = typer.Argument("bash", help="Shell to generate the hook for."),
    init: bool = typer.Option(
        False,
        "--init",
        help="Register the hook in the shell's per-prompt hook (idempotent).",
    ),
):
    """
    Prints the shell hook. Load it with `eval "$(auto-py-env hook bash --init)"`.
    """
    _require_evaluation(shell, f"hook {shell}{' --init' if init else ''}")
    manager = HookManager(config_path=APP_STATE.config_path)
    typer.echo(manager.render(shell, init=init), nl=False)


@app.command()
@handle_exceptions
def activate(
    shell: str = typer.Option("bash", "--shell", "-s", help="Shell to emit code for."),
    directory: Optional[Path] = typer.Option(
        None, "--directory", "-d", help="Directory to inspect. Defaults to the cwd."
    ),
    assume: Optional[bool] = typer.Option(
        None,
        "--yes/--no",
        help="Answer the creation prompt without asking.",
    ),
):
    """
    Decides what to activate for a directory and prints the activation code.
    This is what the prompt hook evaluates.
    """
    _require_evaluation(shell, f"activate --shell {shell}")
    confirm = console_confirm if assume is None else (lambda question: assume)

    manager = ActivationManager(_load_config(), confirm=confirm)
    report = manager.activate_env(directory or Path.cwd())
    logger.debug("cli.activate", outcome=report.outcome.value)

    hooks = HookManager(config_path=APP_STATE.config_path)
    typer.echo(hooks.render_activation(report.steps, shell), nl=False)
    raise typer.Exit(code=report.exit_code)


@app.command()
@handle_exceptions
def validate(
    descriptor: Path = typer.Argument(
        Path("environment.yml"), help="The environment descriptor to check."
    ),
    strictness: Optional[int] = typer.Option(
        None,
        "--strictness",
        min=0,
        max=2,
        help="Override the configured strictness level (0, 1 or 2).",
    ),
):
    """Runs the tiered safety checks on an environment.yml file."""
    if not descriptor.is_file():
        console.print(f"[bold red]Error:[/bold red] '{descriptor}' not found.")
        raise typer.Exit(code=1)

    config = _load_config()
    level = config.strictness_level if strictness is None else strictness
    ValidationManager(config).ensure_valid(descriptor, strictness=level)

    if level == 0:
        console.print("Validation skipped (strictness level is 0).")
    else:
        console.print(f"[green]✓[/green] {descriptor.name} is valid and safe.")


@app.command()
@handle_exceptions
def resolve(name: str = typer.Argument(..., help="Environment name to look up.")):
    """Looks up a named conda/mamba environment and the manager that created it."""
    config = _load_config()
    conda = CondaEnvironment(Path.cwd(), config, kind=resolve_conda_manager(config))
    resolution = EnvironmentResolver(conda).resolve(name)

    if not resolution.found:
        console.print(f"[yellow]Environment '{name}' not found.[/yellow]")
        raise typer.Exit(code=1)

    table = Table(title=f"Environment '{name}'")
    table.add_column("Path", style="cyan")
    table.add_column("Created by", style="green")
    table.add_column("Inferred from", style="dim")
    table.add_row(
        str(resolution.path),
        resolution.original_manager.value,
        resolution.provenance,
    )
    console.print(table)


@app.command()
@handle_exceptions
def create(
    kind: str = typer.Argument(..., help="One of: conda, mamba, venv, uv."),
    name: Optional[str] = typer.Option(
        None, "--name", "-n", help="Environment name. Defaults to the directory name."
    ),
    file: Optional[Path] = typer.Option(
        None, "--file", "-f", help="environment.yml to create the environment from."
    ),
    directory: Optional[Path] = typer.Option(
        None, "--directory", "-d", help="Project directory. Defaults to the cwd."
    ),
):
    """Creates a new environment without activating it."""
    config = _load_config()
    project_root = (directory or Path.cwd()).resolve()
    provider = get_provider(kind, project_root, config)

    if file is not None:
        ValidationManager(config).ensure_valid(file)

    with console.status(f"Creating new {kind} environment..."):
        creation = provider.create(name or project_root.name, descriptor_path=file)

    for warning in creation.warnings:
        console.print(f"[yellow]Warning:[/yellow] {warning}")
    location = creation.location or creation.name
    console.print(
        f"[bold green]✅ Created {creation.kind.value} environment[/bold green] [cyan]{location}[/cyan]"
    )
    console.print(
        f"Activate it with: [bold]{HookManager.activation_command(creation.activation)}[/bold]"
    )


@app.command()
@handle_exceptions
def check(
    directory: Optional[Path] = typer.Argument(
        None, help="Directory to test. Defaults to the cwd."
    ),
):
    """Tells whether a directory is in scope for auto-activation."""
    config = _load_config()
    current_dir = (directory or Path.cwd()).resolve()
    manager = ActivationManager(config)
    conda = CondaEnvironment(current_dir, config, kind=resolve_conda_manager(config))
    targets = manager.scope.target_directories(manager.env_dirs(conda))

    if not manager.scope.is_target_directory(current_dir, targets):
        raise ScopeError(f"{current_dir} is not in any target directory.")
    console.print(f"[green]✓[/green] {current_dir} is in scope.")


@app.command("config")
@handle_exceptions
def show_config():
    """Displays the effective configuration."""
    config = _load_config()

    table = Table(title="auto-py-env configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    for field, value in config.model_dump(mode="json").items():
        if isinstance(value, list):
            value = "\n".join(str(v) for v in value) or "[dim](empty)[/dim]"
        table.add_row(field, str(value))
    console.print(table)
