"""XDG path helpers for settings, logs and transient exports."""

from __future__ import annotations

from pathlib import Path

from platformdirs import PlatformDirs

APP_NAME = "panex"
APP_AUTHOR = "panex"


def dirs() -> PlatformDirs:
    return PlatformDirs(appname=APP_NAME, appauthor=APP_AUTHOR, roaming=False)


def ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def config_root() -> Path:
    return ensure_dir(Path(dirs().user_config_path))


def state_root() -> Path:
    return ensure_dir(Path(dirs().user_state_path))


def settings_path() -> Path:
    return config_root() / "settings.json"


def log_dir() -> Path:
    return state_root() / "logs"


def export_root() -> Path:
    """Scratch directory for files exported out of the sandbox for opening."""
    return ensure_dir(Path(dirs().user_cache_path) / "exports")
