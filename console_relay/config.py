"""Frozen dataclass configuration built from defaults, YAML, env vars and CLI args."""

import logging
import os
from dataclasses import dataclass, fields

import yaml

logger = logging.getLogger(__name__)


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes")


def _optional_int(value) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


@dataclass(frozen=True)
class Config:
    open_url: str | None = None
    match: str | None = None
    host: str = "127.0.0.1"
    port: int = 7070
    persist_dir: str | None = None
    token: str | None = None
    headless: bool = False
    buffer_size: int = 2000
    remote_port: int | None = None
    cdp_host: str = "127.0.0.1"
    quiet: bool = False
    retry_delay: float = 1.5
    request_timeout: float = 5.0


# Env var -> (field, converter)
ENV_VARS = {
    "RELAY_OPEN": ("open_url", str),
    "RELAY_MATCH": ("match", str),
    "RELAY_HOST": ("host", str),
    "RELAY_PORT": ("port", int),
    "RELAY_PERSIST_DIR": ("persist_dir", str),
    "RELAY_TOKEN": ("token", str),
    "RELAY_HEADLESS": ("headless", _parse_bool),
    "RELAY_BUFFER_SIZE": ("buffer_size", int),
    "RELAY_REMOTE_PORT": ("remote_port", _optional_int),
    "RELAY_CDP_HOST": ("cdp_host", str),
    "RELAY_QUIET": ("quiet", _parse_bool),
    "RELAY_RETRY_DELAY": ("retry_delay", float),
    "RELAY_REQUEST_TIMEOUT": ("request_timeout", float),
}

_CONVERTERS = {field: conv for field, conv in ENV_VARS.values()}


def load_yaml_config(path: str | None) -> dict:
    """Load settings from a YAML file. Missing or invalid files yield {}."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning("Config file %s not found, using defaults", path)
        return {}
    except yaml.YAMLError as e:
        logger.warning("Invalid YAML in %s (%s), using defaults", path, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("Config file %s is not a mapping, using defaults", path)
        return {}
    logger.info("Loaded YAML config from %s", path)
    return data


def _apply(kwargs: dict, source: dict):
    """Merge known keys from *source* into *kwargs*, converting types."""
    for key, value in source.items():
        key = key.replace("-", "_")
        if key not in _CONVERTERS:
            continue
        kwargs[key] = value if value is None else _CONVERTERS[key](value)


def load_config(cli_args: dict | None = None, yaml_path: str | None = None,
                environ: dict | None = None) -> Config:
    """Build Config from defaults <- YAML <- env vars <- CLI args (highest priority).

    *cli_args* holds only options the user actually passed; None values are
    ignored so they don't mask lower layers.
    """
    env = os.environ if environ is None else environ
    kwargs: dict = {f.name: f.default for f in fields(Config)}

    _apply(kwargs, load_yaml_config(yaml_path or env.get("CONFIG_PATH")))
    _apply(kwargs, {field: env[name] for name, (field, _) in ENV_VARS.items() if name in env})
    _apply(kwargs, {k: v for k, v in (cli_args or {}).items() if v is not None})

    config = Config(**kwargs)
    if config.buffer_size < 1:
        raise ValueError(f"buffer_size must be positive, got {config.buffer_size}")
    return config
