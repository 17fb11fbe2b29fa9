"""Configuration loading for spartamon.

Loads settings from TOML config files with sensible defaults.
Search order: explicit --config path → ~/.config/spartamon/config.toml → defaults only.
The IFACE and DISK environment variables override the device choices from any file.
"""

from __future__ import annotations

import os
import sys
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any

DEFAULT_CONFIG: dict[str, Any] = {
    "interval_ms": 500,
    "min_interval_ms": 100,
    "max_interval_ms": 2000,
    "interval_step_ms": 50,
    "history_size": 4096,
    "ewma_alpha": 0.20,
    "iface": "",
    "disk": "",
    "temp_hot": 80.0,
    "task_hot": 80.0,
    "page_rows": 10,
    "log_file": "",
    "temp_scale": {"min": 20.0, "max": 90.0, "margin": 10.0},
}

ENV_OVERRIDES: dict[str, str] = {
    "IFACE": "iface",
    "DISK": "disk",
}

_DEFAULT_PATH = Path.home() / ".config" / "spartamon" / "config.toml"


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Merge overlay into base. Nested dicts are merged at the first level only."""
    merged = dict(base)
    for key, value in overlay.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


def _apply_env(config: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    for var, key in ENV_OVERRIDES.items():
        value = environ.get(var, "").strip()
        if value:
            config[key] = value
    return config


def clamp_interval(config: Mapping[str, Any], interval_ms: int) -> int:
    lo = int(config["min_interval_ms"])
    hi = int(config["max_interval_ms"])
    return max(lo, min(hi, int(interval_ms)))


def load_config(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Load configuration, merging user TOML over defaults.

    Args:
        path: Explicit config file path (from --config). If None, tries the
              default location ~/.config/spartamon/config.toml.
        environ: Environment to read IFACE/DISK from (defaults to os.environ).

    Returns:
        Merged configuration dict.

    Raises:
        SystemExit: If an explicit path doesn't exist or can't be parsed.
    """
    env = os.environ if environ is None else environ
    config = dict(DEFAULT_CONFIG)

    if path is not None:
        if not path.is_file():
            print(f"spartamon: config file not found: {path}", file=sys.stderr)
            raise SystemExit(1)
        try:
            user_config = tomllib.loads(path.read_text(encoding="utf-8"))
        except tomllib.TOMLDecodeError as e:
            print(f"spartamon: invalid TOML in {path}: {e}", file=sys.stderr)
            raise SystemExit(1) from e
        config = _deep_merge(DEFAULT_CONFIG, user_config)
    elif _DEFAULT_PATH.is_file():
        try:
            user_config = tomllib.loads(_DEFAULT_PATH.read_text(encoding="utf-8"))
            config = _deep_merge(DEFAULT_CONFIG, user_config)
        except tomllib.TOMLDecodeError:
            print(
                f"spartamon: warning: ignoring invalid TOML in {_DEFAULT_PATH}",
                file=sys.stderr,
            )

    config["interval_ms"] = clamp_interval(config, config["interval_ms"])
    return _apply_env(config, env)


def dump_default_config() -> str:
    """Return the default configuration as a TOML string."""
    lines = [
        "# spartamon configuration",
        "# Place this file at ~/.config/spartamon/config.toml",
        "# IFACE / DISK environment variables override iface / disk.",
        "",
    ]
    nested: list[tuple[str, dict[str, Any]]] = []
    for key, value in DEFAULT_CONFIG.items():
        if isinstance(value, dict):
            nested.append((key, value))
        elif isinstance(value, str):
            lines.append(f'{key} = "{value}"')
        else:
            lines.append(f"{key} = {value}")
    lines.append("")

    for table, values in nested:
        lines.append(f"[{table}]")
        for key, value in values.items():
            lines.append(f"{key} = {value}")
        lines.append("")

    return "\n".join(lines) + "\n"
