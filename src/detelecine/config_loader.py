"""Configuration loader that parses and validates user-provided TOML."""

from __future__ import annotations

import tomllib
from dataclasses import fields
from pathlib import Path
from typing import Any, Dict, Optional, get_type_hints

from .datatypes import (
    AppConfig,
    CollectorConfig,
    DropDuplicate,
    GuessingConfig,
    GuessingMethod,
    LoggingConfig,
    Patterns,
    ScriptConfig,
    UseThirdNMatch,
)

__all__ = [
    "ConfigError",
    "load_config",
    "guessing_method",
    "third_n_match_policy",
    "drop_duplicate_policy",
    "pattern_flags",
]

GUESSING_METHODS = {
    "matches": GuessingMethod.FROM_MATCHES,
    "mics": GuessingMethod.FROM_MICS,
}

THIRD_N_MATCH_POLICIES = {
    "always": UseThirdNMatch.ALWAYS,
    "never": UseThirdNMatch.NEVER,
    "if prettier": UseThirdNMatch.IF_PRETTIER,
}

DROP_DUPLICATE_POLICIES = {
    "first": DropDuplicate.FIRST,
    "second": DropDuplicate.SECOND,
    "uglier per cycle": DropDuplicate.UGLIER_PER_CYCLE,
    "uglier per section": DropDuplicate.UGLIER_PER_SECTION,
}

PATTERN_FLAGS = {
    "cccnn": Patterns.CCCNN,
    "ccnnn": Patterns.CCNNN,
    "ccccc": Patterns.CCCCC,
}

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


class ConfigError(ValueError):
    """Raised when the configuration file is malformed or fails validation."""


def _coerce_bool(value: Any, dotted_key: str) -> bool:
    """Return a bool, coercing simple 0/1 representations when necessary."""

    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"0", "1"}:
            return normalized == "1"
        if normalized in {"true", "false"}:
            return normalized == "true"
    raise ConfigError(f"{dotted_key} must be a boolean (use true/false).")


def _sanitize_section(raw: dict[str, Any], name: str, cls):
    """
    Coerce a raw TOML table into an instance of ``cls`` with cleaned booleans.

    Parameters:
        raw (dict[str, Any]): Raw TOML section data.
        name (str): Section name used when reporting validation errors.
        cls: Dataclass type used to construct the section object.

    Returns:
        Any: Instantiated dataclass populated with values from ``raw``.

    Raises:
        ConfigError: If the section is not a table or contains invalid keys or values.
    """
    if not isinstance(raw, dict):
        raise ConfigError(f"[{name}] must be a table")
    cleaned: Dict[str, Any] = {}
    hints = get_type_hints(cls)
    bool_fields = {field.name for field in fields(cls) if hints.get(field.name) is bool}
    for key, value in raw.items():
        if key in bool_fields:
            cleaned[key] = _coerce_bool(value, f"{name}.{key}")
        else:
            cleaned[key] = value
    try:
        return cls(**cleaned)
    except TypeError as exc:
        raise ConfigError(f"Invalid keys in [{name}]: {exc}") from exc


def _choice(value: Any, dotted_key: str, choices: Dict[str, Any]) -> str:
    normalized = str(value).strip().lower()
    if normalized not in choices:
        options = ", ".join(f"'{choice}'" for choice in choices)
        raise ConfigError(f"{dotted_key} must be one of {options}")
    return normalized


def guessing_method(name: str) -> GuessingMethod:
    return GUESSING_METHODS[_choice(name, "guessing.method", GUESSING_METHODS)]


def third_n_match_policy(name: str) -> UseThirdNMatch:
    return THIRD_N_MATCH_POLICIES[_choice(name, "guessing.third_n_match", THIRD_N_MATCH_POLICIES)]


def drop_duplicate_policy(name: str) -> DropDuplicate:
    return DROP_DUPLICATE_POLICIES[_choice(name, "guessing.decimation", DROP_DUPLICATE_POLICIES)]


def pattern_flags(names) -> Patterns:
    """Combine pattern names such as ``"cccnn"`` into a :class:`Patterns` mask."""

    flags = Patterns(0)
    for name in names:
        flags |= PATTERN_FLAGS[_choice(name, "guessing.patterns", PATTERN_FLAGS)]
    if not flags:
        raise ConfigError("guessing.patterns must name at least one pattern")
    return flags


def _validate(app: AppConfig) -> AppConfig:
    guessing = app.guessing
    guessing.method = _choice(guessing.method, "guessing.method", GUESSING_METHODS)
    guessing.third_n_match = _choice(guessing.third_n_match, "guessing.third_n_match", THIRD_N_MATCH_POLICIES)
    guessing.decimation = _choice(guessing.decimation, "guessing.decimation", DROP_DUPLICATE_POLICIES)
    if not isinstance(guessing.minimum_length, int) or isinstance(guessing.minimum_length, bool):
        raise ConfigError("guessing.minimum_length must be an integer")
    if guessing.minimum_length < 1:
        raise ConfigError("guessing.minimum_length must be >= 1")
    if not isinstance(guessing.patterns, list):
        raise ConfigError("guessing.patterns must be a list of pattern names")
    pattern_flags(guessing.patterns)
    guessing.patterns = [str(name).strip().lower() for name in guessing.patterns]

    if not isinstance(app.script.source_filter, str) or not app.script.source_filter.strip():
        raise ConfigError("script.source_filter must be set")
    app.script.source_filter = app.script.source_filter.strip()

    if not isinstance(app.collector.max_requests, int) or isinstance(app.collector.max_requests, bool):
        raise ConfigError("collector.max_requests must be an integer")
    if app.collector.max_requests < 1:
        raise ConfigError("collector.max_requests must be >= 1")

    level = str(app.logging.level).strip().upper()
    if level not in LOG_LEVELS:
        raise ConfigError(f"logging.level must be one of {', '.join(LOG_LEVELS)}")
    app.logging.level = level
    return app


def load_config(path: Optional[str]) -> AppConfig:
    """
    Load and validate an application configuration from a TOML file.

    A missing *path* (``None`` or a file that does not exist) yields the
    defaults. The file is parsed as UTF-8 TOML (a BOM is accepted).

    Returns:
        AppConfig: The validated and normalized application configuration.

    Raises:
        ConfigError: If the file is not UTF-8, TOML parsing fails, or any validation rule is violated.
    """

    if path is None or not Path(path).exists():
        return _validate(AppConfig())

    with open(path, "rb") as handle:
        raw_bytes = handle.read()
    if raw_bytes.startswith(b"\xef\xbb\xbf"):
        raw_bytes = raw_bytes[3:]
    try:
        raw = tomllib.loads(raw_bytes.decode("utf-8"))
    except UnicodeDecodeError as exc:
        raise ConfigError("Configuration file must be UTF-8 encoded") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Failed to parse TOML: {exc}") from exc

    app = AppConfig(
        guessing=_sanitize_section(raw.get("guessing", {}), "guessing", GuessingConfig),
        script=_sanitize_section(raw.get("script", {}), "script", ScriptConfig),
        collector=_sanitize_section(raw.get("collector", {}), "collector", CollectorConfig),
        logging=_sanitize_section(raw.get("logging", {}), "logging", LoggingConfig),
    )
    return _validate(app)
