"""
Configuration loader merging defaults, config files, environment, and CLI args.
"""

from __future__ import annotations

import argparse
import os
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Callable, Mapping, MutableMapping, Tuple

DEFAULT_CONFIG_FILENAME = "readaloud.toml"

MIN_RATE = 0.5
MAX_RATE = 3.0
ENGINES = ("remote", "local")


@dataclass
class AppConfig:
    """High-level application configuration container."""

    api_key: str | None = None
    preferred_engine: str = "remote"
    voice_id: str = "en-US-Neural2-F"
    language_code: str = "en-US"
    local_voice: str | None = None
    local_command: str | None = None
    local_base_wpm: int = 175
    rate: float = 1.0
    lookahead: int = 2
    max_paragraph_chars: int = 4800
    chars_per_second: float = 15.0
    audio_dir: str | None = None
    state_dir: str | None = None
    timeout_ms: int = 10_000
    log_format: str = "human"
    json_log: bool = False
    dry_run: bool = False
    simulate: bool = False
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def has_valid_credential(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    def resolved_state_dir(self) -> Path:
        if self.state_dir:
            return Path(self.state_dir).expanduser()
        return Path(os.getenv("READALOUD_HOME", Path.home() / ".readaloud"))


def load_default_config() -> AppConfig:
    """Return default configuration for the CLI."""

    return AppConfig()


def load_config(
    args: argparse.Namespace | None = None,
    *,
    env: Mapping[str, str] | None = None,
    config_file: str | Path | None = None,
) -> AppConfig:
    """
    Load configuration merging defaults, config file, environment, then CLI.

    Precedence: CLI args > environment variables > config file > defaults.
    """

    defaults = load_default_config()
    config_data: dict[str, Any] = {
        key: getattr(defaults, key) for key in _known_fields()
    }
    extras: dict[str, Any] = {}

    resolved_config_path = _resolve_config_path(args, config_file)
    if resolved_config_path is not None:
        file_config, file_extras = _load_from_file(resolved_config_path)
        config_data.update(file_config)
        extras.update(file_extras)

    config_data.update(_load_from_env(env))
    config_data.update(_load_from_cli(args))

    if config_data.get("json_log"):
        config_data["log_format"] = "json"

    validated = _validate_config(config_data)

    combined_extras = {**extras, **validated.pop("extra", {})}
    if combined_extras:
        validated["extra"] = combined_extras

    return AppConfig(**validated)


def _known_fields() -> set[str]:
    return {f.name for f in fields(AppConfig) if f.init and f.name != "extra"}


def _resolve_config_path(
    args: argparse.Namespace | None, config_file: str | Path | None
) -> Path | None:
    candidate: str | Path | None = None
    if args is not None and getattr(args, "config", None):
        candidate = getattr(args, "config")
    elif config_file is not None:
        candidate = config_file

    if candidate is None:
        default_path = Path(DEFAULT_CONFIG_FILENAME)
        return default_path if default_path.exists() else None

    path = Path(candidate).expanduser()
    return path if path.exists() else None


def _load_from_file(path: Path) -> Tuple[dict[str, Any], dict[str, Any]]:
    try:
        with path.open("rb") as fh:
            data = tomllib.load(fh)
    except FileNotFoundError:
        return {}, {}

    return _partition_known(data)


def _truthy(value: str) -> bool:
    return str(value).lower() in {"1", "true", "yes"}


ENV_KEY_MAP: dict[str, Tuple[str, Callable[[str], Any]]] = {
    "GOOGLE_TTS_API_KEY": ("api_key", str),
    "READALOUD_ENGINE": ("preferred_engine", str),
    "READALOUD_VOICE_ID": ("voice_id", str),
    "READALOUD_LANGUAGE_CODE": ("language_code", str),
    "READALOUD_LOCAL_VOICE": ("local_voice", str),
    "READALOUD_LOCAL_COMMAND": ("local_command", str),
    "READALOUD_LOCAL_BASE_WPM": ("local_base_wpm", int),
    "READALOUD_RATE": ("rate", float),
    "READALOUD_LOOKAHEAD": ("lookahead", int),
    "READALOUD_MAX_PARAGRAPH_CHARS": ("max_paragraph_chars", int),
    "READALOUD_CHARS_PER_SECOND": ("chars_per_second", float),
    "READALOUD_AUDIO_DIR": ("audio_dir", str),
    "READALOUD_STATE_DIR": ("state_dir", str),
    "READALOUD_TIMEOUT_MS": ("timeout_ms", int),
    "READALOUD_LOG_FORMAT": ("log_format", str),
    "READALOUD_JSON_LOG": ("json_log", _truthy),
    "READALOUD_DRY_RUN": ("dry_run", _truthy),
    "READALOUD_SIMULATE": ("simulate", _truthy),
}


def _load_from_env(env: Mapping[str, str] | None) -> dict[str, Any]:
    source = env if env is not None else os.environ
    result: dict[str, Any] = {}
    for env_key, (config_key, caster) in ENV_KEY_MAP.items():
        if env_key in source and source[env_key] != "":
            result[config_key] = caster(source[env_key])
    return result


CLI_ATTR_MAP: dict[str, Tuple[str, Callable[[Any], Any]]] = {
    "api_key": ("api_key", str),
    "engine": ("preferred_engine", str),
    "voice": ("voice_id", str),
    "language": ("language_code", str),
    "local_voice": ("local_voice", str),
    "local_command": ("local_command", str),
    "rate": ("rate", float),
    "lookahead": ("lookahead", int),
    "audio_dir": ("audio_dir", str),
    "state_dir": ("state_dir", str),
    "timeout": ("timeout_ms", int),
    "json_log": ("json_log", bool),
    "dry_run": ("dry_run", bool),
    "simulate": ("simulate", bool),
}


def _load_from_cli(args: argparse.Namespace | None) -> dict[str, Any]:
    if args is None:
        return {}

    result: dict[str, Any] = {}
    for attr_name, (config_key, caster) in CLI_ATTR_MAP.items():
        if hasattr(args, attr_name):
            value = getattr(args, attr_name)
            if value is None:
                continue
            if caster is bool:
                # store_true flags default to False; only a set flag overrides.
                if value:
                    result[config_key] = True
                continue
            result[config_key] = caster(value)
    return result


def _partition_known(data: Mapping[str, Any]) -> Tuple[dict[str, Any], dict[str, Any]]:
    known: dict[str, Any] = {}
    extras: dict[str, Any] = {}
    known_keys = _known_fields()
    for key, value in data.items():
        if key in known_keys:
            known[key] = value
        else:
            extras[key] = value
    return known, extras


def _validate_config(data: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    engine = data.get("preferred_engine")
    if engine is not None:
        engine = str(engine).strip().lower()
        if engine not in ENGINES:
            raise ValueError(f"preferred_engine must be one of {', '.join(ENGINES)}")
        data["preferred_engine"] = engine

    rate = data.get("rate")
    if rate is not None and not (MIN_RATE <= float(rate) <= MAX_RATE):
        raise ValueError(f"rate must be between {MIN_RATE} and {MAX_RATE}")

    lookahead = data.get("lookahead")
    if lookahead is not None and int(lookahead) < 0:
        raise ValueError("lookahead must be non-negative")

    max_chars = data.get("max_paragraph_chars")
    if max_chars is not None and int(max_chars) <= 0:
        raise ValueError("max_paragraph_chars must be positive")

    chars_per_second = data.get("chars_per_second")
    if chars_per_second is not None and float(chars_per_second) <= 0:
        raise ValueError("chars_per_second must be positive")

    base_wpm = data.get("local_base_wpm")
    if base_wpm is not None and int(base_wpm) <= 0:
        raise ValueError("local_base_wpm must be positive")

    timeout_ms = data.get("timeout_ms")
    if timeout_ms is not None and int(timeout_ms) <= 0:
        raise ValueError("timeout_ms must be positive")

    return data
