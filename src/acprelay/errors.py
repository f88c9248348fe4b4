"""Exception types raised by acprelay."""

from __future__ import annotations


class ProjectionError(Exception):
    """Base class for projection engine errors."""


class TurnInProgressError(ProjectionError):
    """A new turn was requested while the session still has an active one."""

    def __init__(self, session_key: str) -> None:
        super().__init__(f"session {session_key!r} already has an active turn")
        self.session_key = session_key


class ConfigError(ProjectionError):
    """An explicitly requested configuration file could not be read."""
