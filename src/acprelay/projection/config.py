"""Per-session projection configuration.

A :class:`ProjectionConfig` is an immutable snapshot resolved once per turn.
Missing or invalid fields fall back to the documented defaults; configuration
problems never abort a turn.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Literal, Mapping, Protocol

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel, to_snake

from acprelay.errors import ConfigError
from acprelay.log_utils import log_event, parse_bool, parse_int
from acprelay.paths import config_dir
from acprelay.projection.events import TOOL_CATEGORIES, EventCategory

logger = logging.getLogger(__name__)

ENV_PREFIX = "ACPRELAY_"
CONFIG_FILE_NAME = "projection.json"

MetaMode = Literal["off", "minimal", "verbose"]
DeliveryMode = Literal["live", "final_only"]
TypingStart = Literal["first_visible", "first_text"]

DEFAULT_VISIBLE_TAGS = frozenset(
    {
        EventCategory.AGENT_MESSAGE_CHUNK,
        EventCategory.TOOL_CALL,
        EventCategory.TOOL_CALL_UPDATE,
    }
)


class ProjectionConfig(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    meta_mode: MetaMode = Field(
        "minimal",
        description="How much tool/status traffic is projected.",
    )
    show_usage: bool = Field(
        False,
        description="Project usage_update events (still subject to tag visibility).",
    )
    delivery_mode: DeliveryMode = Field(
        "live",
        description="Stream text per delta (live) or flush once at turn end (final_only).",
    )
    max_turn_chars: int = Field(24_000, ge=1)
    max_tool_summary_chars: int = Field(320, ge=1)
    max_status_chars: int = Field(320, ge=1)
    max_meta_events_per_turn: int = Field(64, ge=0)
    typing_start: TypingStart = Field(
        "first_visible",
        description="Start typing on the first visible emission or only on the first text.",
    )
    truncation_notice: str = Field("[output truncated]", min_length=1)
    tag_visibility: dict[str, bool] = Field(default_factory=dict)

    @field_validator("tag_visibility", mode="before")
    @classmethod
    def _known_tags_only(cls, value: Any) -> Any:
        if not isinstance(value, Mapping):
            return value
        known = {category.value for category in EventCategory}
        return {str(key): val for key, val in value.items() if str(key) in known}

    def is_tag_visible(self, category: EventCategory) -> bool:
        """Effective visibility: explicit override, else the default for the tag."""
        if category in (EventCategory.UNKNOWN, EventCategory.TERMINAL):
            return False
        override = self.tag_visibility.get(category.value)
        if override is not None:
            return override
        return category in DEFAULT_VISIBLE_TAGS

    def char_cap_for(self, category: EventCategory) -> int:
        if category in TOOL_CATEGORIES:
            return self.max_tool_summary_chars
        return self.max_status_chars

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "ProjectionConfig":
        """Build a config from a partial mapping, dropping invalid fields one by one."""
        payload = dict(data or {})
        for _ in range(len(payload) + 1):
            try:
                return cls.model_validate(payload)
            except ValidationError as exc:
                bad_keys = {to_snake(str(err["loc"][0])) for err in exc.errors() if err.get("loc")}
                dropped = [key for key in payload if to_snake(key) in bad_keys]
                if not dropped:
                    break
                log_event(logger, "projection.config.invalid", level=logging.WARNING, fields=dropped)
                for key in dropped:
                    payload.pop(key, None)
        return cls()


class ConfigResolver(Protocol):
    def resolve(self, session_key: str) -> ProjectionConfig: ...


class StaticConfigResolver:
    """Serve one base config, with optional per-session overrides."""

    def __init__(
        self,
        base: ProjectionConfig | None = None,
        overrides: Mapping[str, ProjectionConfig] | None = None,
    ) -> None:
        self._base = base or ProjectionConfig()
        self._overrides = dict(overrides or {})

    def resolve(self, session_key: str) -> ProjectionConfig:
        return self._overrides.get(session_key, self._base)

    def set_override(self, session_key: str, config: ProjectionConfig) -> None:
        """Takes effect for the next turn of ``session_key``."""
        self._overrides[session_key] = config

    def clear_override(self, session_key: str) -> None:
        self._overrides.pop(session_key, None)


def _parse_tag_visibility(raw: str | None) -> dict[str, bool]:
    """Parse ``plan=on,usage_update=off`` style overrides."""
    if not raw:
        return {}
    result: dict[str, bool] = {}
    for part in raw.split(","):
        if "=" not in part:
            continue
        key, value = part.split("=", 1)
        result[key.strip()] = parse_bool(value, False)
    return result


def _read_config_file(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigError(f"config file not found: {path}")
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        if required:
            raise ConfigError(f"unreadable config file {path}: {exc}") from exc
        log_event(logger, "projection.config.unreadable", level=logging.WARNING, path=str(path))
        return {}
    return data if isinstance(data, dict) else {}


def load_config_from_env(config_file: Path | None = None) -> ProjectionConfig:
    """Resolve config from a JSON file plus ``ACPRELAY_*`` environment overrides.

    An explicit ``config_file`` (or ``ACPRELAY_CONFIG_FILE``) must be readable;
    the default file in the user config dir is optional.
    """
    load_dotenv()

    env_file = os.getenv(f"{ENV_PREFIX}CONFIG_FILE")
    if config_file is not None:
        data = _read_config_file(config_file, required=True)
    elif env_file:
        data = _read_config_file(Path(env_file), required=True)
    else:
        data = _read_config_file(config_dir() / CONFIG_FILE_NAME, required=False)

    env_values: dict[str, Any] = {
        "meta_mode": os.getenv(f"{ENV_PREFIX}META_MODE"),
        "delivery_mode": os.getenv(f"{ENV_PREFIX}DELIVERY_MODE"),
        "typing_start": os.getenv(f"{ENV_PREFIX}TYPING_START"),
        "truncation_notice": os.getenv(f"{ENV_PREFIX}TRUNCATION_NOTICE"),
    }
    show_usage = os.getenv(f"{ENV_PREFIX}SHOW_USAGE")
    if show_usage is not None:
        env_values["show_usage"] = parse_bool(show_usage, False)
    for name in ("max_turn_chars", "max_tool_summary_chars", "max_status_chars", "max_meta_events_per_turn"):
        raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
        if raw is not None:
            env_values[name] = parse_int(raw, -1)
    tags = _parse_tag_visibility(os.getenv(f"{ENV_PREFIX}TAG_VISIBILITY"))
    if tags:
        env_values["tag_visibility"] = {**data.get("tag_visibility", data.get("tagVisibility", {})), **tags}

    merged = {to_snake(key): value for key, value in data.items()}
    merged.update({key: value for key, value in env_values.items() if value is not None})
    return ProjectionConfig.from_mapping(merged)

