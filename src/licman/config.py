"""Configuration loading and merging for licman."""

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Mapping, Optional

import yaml
from dotenv import load_dotenv

from .registry.license_registry import DEFAULT_KEY_LENGTH, DEFAULT_MAX_BODY_BYTES, DEFAULT_TTL_MS
from .sweeper import DEFAULT_SWEEP_INTERVAL


@dataclass
class LicmanConfig:
    # HTTP listener
    host: str = "0.0.0.0"
    port: int = 8004

    # Seconds between bulk removals of expired licenses
    sweep_interval: int = DEFAULT_SWEEP_INTERVAL

    # Lifetime of a license created without an explicit expiry
    default_ttl_ms: int = DEFAULT_TTL_MS

    key_length: int = DEFAULT_KEY_LENGTH

    # Upper bound on a request body, chunked or not
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES

    admin_ui: bool = True
    access_log: bool = False


# Environment variable -> (field, converter)
_ENV_VARS = {
    "LICMAN_HOST": ("host", str),
    "PORT": ("port", int),
    "LICMAN_SWEEP_INTERVAL": ("sweep_interval", int),
    "LICMAN_DEFAULT_TTL_MS": ("default_ttl_ms", int),
}


def load_config(path: str | Path) -> LicmanConfig:
    """Load a LicmanConfig from a YAML file."""
    path = Path(path)
    with open(path) as f:
        data = yaml.safe_load(f) or {}

    valid_fields = {f.name for f in fields(LicmanConfig)}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    return LicmanConfig(**filtered)


def load_env_file(path: str | Path = ".env") -> bool:
    """Load KEY=VALUE pairs from a .env file into os.environ.

    Variables that are already set win over the file. Returns False when
    the file does not exist.
    """
    path = Path(path)
    if not path.is_file():
        return False
    return load_dotenv(path, override=False)


def apply_env(config: LicmanConfig, environ: Optional[Mapping[str, str]] = None) -> LicmanConfig:
    """Overlay environment variables onto *config*."""
    if environ is None:
        environ = os.environ
    for var, (name, convert) in _ENV_VARS.items():
        raw = environ.get(var)
        if raw is None or raw == "":
            continue
        try:
            setattr(config, name, convert(raw))
        except ValueError:
            raise ValueError(f"{var} must be an integer, got {raw!r}") from None
    return config


def merge_cli_args(config: LicmanConfig, args) -> LicmanConfig:
    """Overlay CLI arguments onto an existing config. CLI values take precedence."""
    for f in fields(LicmanConfig):
        cli_val = getattr(args, f.name, None)
        if cli_val is not None:
            setattr(config, f.name, cli_val)
    return config


def config_to_yaml(config: LicmanConfig) -> str:
    """Serialize a LicmanConfig to YAML."""
    data = {f.name: getattr(config, f.name) for f in fields(LicmanConfig)}
    return yaml.dump(data, default_flow_style=False, sort_keys=False)
