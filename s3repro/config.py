"""
Reproduction configuration

Values are resolved in this order (last wins):

    1) defaults in ReproConfig
    2) a YAML file (--config or S3REPRO_CONFIG)
    3) S3REPRO_* environment variables
    4) explicit overrides, typically CLI flags

Example YAML:

    image: localstack/localstack:2.2.0
    bucket: bucket-name
    key: random.json
    chunk_size: 10485760
"""

import dataclasses
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from s3repro.chunking import DEFAULT_CHUNK_SIZE
from s3repro.errors import ConfigError
from s3repro.provisioner import DEFAULT_IMAGE, DEFAULT_PORT

ENV_PREFIX = "S3REPRO_"
CONFIG_PATH_ENV = "S3REPRO_CONFIG"


@dataclass
class ReproConfig:
    """Settings for one reproduction run"""

    image: str = DEFAULT_IMAGE
    internal_port: int = DEFAULT_PORT
    # When set, no container is started and this endpoint is used directly
    endpoint_url: Optional[str] = None
    access_key: str = "xxx"
    secret_key: str = "xxx"
    region: str = "us-east-1"
    verify_ssl: bool = False
    bucket: str = "bucket-name"
    key: str = "random.json"
    content_type: str = "application/json"
    chunk_size: int = DEFAULT_CHUNK_SIZE
    payload_size: int = 25 * 1024 * 1024
    max_concurrency: int = 1
    startup_timeout: float = 120.0
    keep_container: bool = False
    sources: List[str] = field(default_factory=list, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        d = dataclasses.asdict(self)
        d.pop("sources")
        return d

    def validate(self) -> "ReproConfig":
        if not self.bucket:
            raise ConfigError("bucket must not be empty")
        if not self.key:
            raise ConfigError("key must not be empty")
        if self.chunk_size <= 0:
            raise ConfigError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.payload_size < 0:
            raise ConfigError(f"payload_size must not be negative, got {self.payload_size}")
        if self.max_concurrency < 1:
            raise ConfigError(f"max_concurrency must be at least 1, got {self.max_concurrency}")
        if not 0 < self.internal_port < 65536:
            raise ConfigError(f"internal_port out of range: {self.internal_port}")
        return self


def _fields() -> Dict[str, dataclasses.Field]:
    return {f.name: f for f in dataclasses.fields(ReproConfig) if f.name != "sources"}


def _coerce(name: str, value: Any) -> Any:
    """Convert a raw YAML/env value to the type of field name"""
    if value is None:
        return None

    default = _fields()[name].default
    if name == "endpoint_url":
        return str(value) or None

    try:
        if isinstance(default, bool):
            if isinstance(value, bool):
                return value
            text = str(value).strip().lower()
            if text in ("1", "true", "yes", "on"):
                return True
            if text in ("0", "false", "no", "off", ""):
                return False
            raise ValueError(f"not a boolean: {value!r}")
        if isinstance(default, int):
            if isinstance(value, bool):
                raise ValueError(f"not an integer: {value!r}")
            return int(value)
        if isinstance(default, float):
            return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid value for {name}: {e}") from e
    return str(value)


def _apply(values: Dict[str, Any], updates: Mapping[str, Any], origin: str) -> None:
    known = _fields()
    for name, value in updates.items():
        if name not in known:
            raise ConfigError(f"unknown setting {name!r} in {origin}")
        if value is None:
            continue
        values[name] = _coerce(name, value)


def load_config_file(path: Optional[str]) -> Dict[str, Any]:
    """Load a YAML config file; a missing path means no settings"""
    if not path:
        return {}
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        with p.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a mapping at top-level")
    return data


def read_env(environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    """Collect S3REPRO_<SETTING> variables for known settings"""
    environ = os.environ if environ is None else environ
    values = {}
    for name in _fields():
        env_name = ENV_PREFIX + name.upper()
        if env_name in environ:
            values[name] = environ[env_name]
    return values


def load_config(
    path: Optional[str] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ReproConfig:
    """
    Resolve the effective configuration

    Overrides whose value is None are ignored so unset CLI options do not
    clobber file or environment values.
    """
    environ = os.environ if environ is None else environ
    values: Dict[str, Any] = {}
    sources = ["defaults"]

    path = path or environ.get(CONFIG_PATH_ENV)
    file_values = load_config_file(path)
    if file_values:
        _apply(values, file_values, str(path))
        sources.append("file")

    env_values = read_env(environ)
    if env_values:
        _apply(values, env_values, "environment")
        sources.append("environment")

    explicit = {k: v for k, v in (overrides or {}).items() if v is not None}
    if explicit:
        _apply(values, explicit, "overrides")
        sources.append("overrides")

    config = ReproConfig(**values)
    config.sources = sources
    return config.validate()
