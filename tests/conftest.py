from __future__ import annotations

import os
from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def _isolate_home(tmp_path_factory, monkeypatch):
    """Point HOME/XDG dirs at a temp tree and drop any ACPRELAY_* settings from the shell."""
    base = tmp_path_factory.mktemp("home")
    monkeypatch.setenv("HOME", str(base))
    for name, sub in (
        ("XDG_CONFIG_HOME", ".config"),
        ("XDG_STATE_HOME", ".local/state"),
        ("XDG_DATA_HOME", ".local/share"),
        ("XDG_CACHE_HOME", ".cache"),
    ):
        monkeypatch.setenv(name, str(base / sub))
    monkeypatch.setattr(Path, "home", lambda: base)
    for key in list(os.environ):
        if key.startswith("ACPRELAY_"):
            monkeypatch.delenv(key, raising=False)
    return base
