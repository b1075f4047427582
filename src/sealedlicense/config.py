"""Configuration for the sealedlicense CLI.

Settings live in ``~/.sealedlicense/config.yaml``::

    private_key: ~/.sealedlicense/issuer.pem
    public_key: ~/.sealedlicense/issuer.pub.pem
    log_level: INFO
    log_dir: ~/.sealedlicense/logs

Precedence (highest first):
    1. Explicit parameters (CLI flags)
    2. Environment variables (``SEALEDLICENSE_PRIVATE_KEY``,
       ``SEALEDLICENSE_PUBLIC_KEY``, ``SEALEDLICENSE_LOG_LEVEL``,
       ``SEALEDLICENSE_LOG_DIR``)
    3. Config file
    4. Built-in defaults

The key password is never stored in the file; the CLI reads it from
``--password`` or ``SEALEDLICENSE_KEY_PASSWORD``.
"""

from __future__ import annotations

import logging
import os
import stat
import sys
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

DEFAULTS: dict[str, object] = {
    "private_key": None,
    "public_key": None,
    "log_level": "INFO",
    "log_dir": None,
}

_ENV_VARS: dict[str, str] = {
    "private_key": "SEALEDLICENSE_PRIVATE_KEY",
    "public_key": "SEALEDLICENSE_PUBLIC_KEY",
    "log_level": "SEALEDLICENSE_LOG_LEVEL",
    "log_dir": "SEALEDLICENSE_LOG_DIR",
}

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

# Config keys each command needs before it can run.
_REQUIRED_FOR: dict[str, tuple[str, ...]] = {
    "issue": ("private_key",),
    "verify": ("public_key",),
}


def get_default_config_path() -> Path:
    """Return the default config file path (``~/.sealedlicense/config.yaml``)."""
    return Path.home() / ".sealedlicense" / "config.yaml"


def _load_config_file(config_path: Path) -> dict[str, object]:
    """Read and parse a YAML config file, returning an empty dict on any failure."""
    if not config_path.is_file():
        return {}
    try:
        with config_path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except (yaml.YAMLError, OSError) as exc:
        logger.warning("Ignoring unreadable config file %s: %s", config_path, exc)
        return {}
    if not isinstance(data, dict):
        if data is not None:
            logger.warning("Ignoring config file %s: top level is not a mapping", config_path)
        return {}
    unknown = set(data) - set(DEFAULTS)
    if unknown:
        logger.warning("Unknown keys in %s: %s", config_path, ", ".join(sorted(map(str, unknown))))
    return data


def load_config(
    config_path: str | Path | None = None,
    **overrides: object,
) -> dict[str, object]:
    """Resolve configuration using the precedence described in the module docstring.

    *overrides* are explicit values (usually CLI flags); ``None`` means
    "not given".  Path values are returned with ``~`` expanded.
    """
    config: dict[str, object] = dict(DEFAULTS)

    path = Path(config_path) if config_path else get_default_config_path()
    file_values = _load_config_file(path)
    for key in DEFAULTS:
        if file_values.get(key) is not None:
            config[key] = file_values[key]

    for key, env_var in _ENV_VARS.items():
        env_value = os.environ.get(env_var, "").strip()
        if env_value:
            config[key] = env_value

    for key, value in overrides.items():
        if key not in DEFAULTS:
            raise TypeError(f"Unknown config option: {key}")
        if value is not None:
            config[key] = value

    for key in ("private_key", "public_key", "log_dir"):
        if config[key] is not None:
            config[key] = str(Path(str(config[key])).expanduser())
    config["log_level"] = str(config["log_level"]).upper()
    return config


def validate_config(config: dict[str, object], command: str | None = None) -> tuple[bool, str | None]:
    """Validate a resolved configuration dict.

    Returns ``(True, None)`` when the config is usable for *command*, or
    ``(False, error_message)`` describing the first problem found.
    """
    if config.get("log_level") not in _LOG_LEVELS:
        return False, f"log_level must be one of {', '.join(sorted(_LOG_LEVELS))}"

    for key in _REQUIRED_FOR.get(command or "", ()):
        value = config.get(key)
        if not value:
            return False, (
                f"{key} is required: pass --{key.replace('_', '-')}, "
                f"set {_ENV_VARS[key]}, or add it to the config file"
            )
        if not Path(str(value)).is_file():
            return False, f"{key} file not found: {value}"

    return True, None


def init_config(
    config_path: str | Path | None = None,
    **values: object,
) -> Path:
    """Write a starter config file and return its path.

    Only known keys are written; ``None`` values fall back to defaults.
    """
    path = Path(config_path) if config_path else get_default_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    data = {key: values.get(key) if values.get(key) is not None else default for key, default in DEFAULTS.items()}

    with path.open("w", encoding="utf-8") as fh:
        yaml.safe_dump(data, fh, default_flow_style=False, sort_keys=False)
    if sys.platform != "win32":
        path.chmod(stat.S_IRUSR | stat.S_IWUSR)

    logger.info("Wrote config file %s", path)
    return path
