"""Per-user locations for acprelay config, state and logs (via platformdirs)."""

from __future__ import annotations

from pathlib import Path

from platformdirs import PlatformDirs

APP_NAME = "acprelay"
RAW_LOG_SUBDIR = "events"


def _dirs() -> PlatformDirs:
    # Built per call so XDG_* changes (tests, embedding hosts) are honoured.
    return PlatformDirs(appname=APP_NAME, appauthor=False, ensure_exists=True)


def config_dir() -> Path:
    return _dirs().user_config_path


def state_dir() -> Path:
    return _dirs().user_state_path


def log_dir() -> Path:
    return _dirs().user_log_path


def raw_log_dir() -> Path:
    path = state_dir() / RAW_LOG_SUBDIR
    path.mkdir(parents=True, exist_ok=True)
    return path
