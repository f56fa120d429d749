# ~/repositories/auto-py-env/src/auto_py_env/utils.py
import os
import shutil
import sys
from pathlib import Path
from typing import Optional

# --- Centralized Path Constant ---
# The single source of truth for where auto-py-env keeps its configuration.
AUTO_PY_ENV_HOME = Path(
    os.getenv("AUTO_PY_ENV_HOME", Path.home() / ".auto-py-env")
)
DEFAULT_CONFIG_FILE = AUTO_PY_ENV_HOME / "config.yaml"


def get_pkg_root() -> Path:
    """
    Gets the root directory of the auto_py_env package. This works correctly
    whether running from source or as a frozen PyInstaller executable.
    """
    if getattr(sys, "frozen", False):
        return Path(sys._MEIPASS) / "auto_py_env"
    else:
        return Path(__file__).parent


def get_assets_root() -> Path:
    """Gets the root directory of the bundled 'assets'."""
    return get_pkg_root() / "assets"


def find_binary(name: str) -> Optional[str]:
    """Returns the absolute path of an executable on PATH, or None."""
    return shutil.which(name)


def activation_script(env_dir: Path) -> Path:
    """
    Gets the POSIX activation script of a venv-style environment directory.
    Windows environments keep it under 'Scripts' instead of 'bin'.
    """
    if sys.platform == "win32":
        return env_dir / "Scripts" / "activate"
    return env_dir / "bin" / "activate"


def is_relative_to(path: Path, parent: Path) -> bool:
    """Segment-wise containment test that never raises."""
    try:
        return path.is_relative_to(parent)
    except ValueError:
        # This can happen on Windows if paths are on different drives
        return False
