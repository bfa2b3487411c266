"""
gemfury-to-npm Configuration

Loads settings from, lowest to highest precedence:
  1. built-in defaults
  2. a YAML config file (gemfury-to-npm.yaml)
  3. a .env file
  4. the process environment
  5. explicit overrides (command line options)

Example config file:

    gemfury:
      user: acme
      api_key: ...
    npm:
      registry: https://registry.npmjs.org
      tag: migrated
    migration:
      modules: [acme-widgets]
      gzip: true
"""

import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from dotenv import dotenv_values

from gemfury_to_npm.exceptions import ConfigError
from gemfury_to_npm.logging_config import get_logger
from gemfury_to_npm.registries import DEFAULT_TIMEOUT, GEMFURY_URL, NPM_REGISTRY_URL
from gemfury_to_npm.publisher import DEFAULT_PUBLISH_TIMEOUT
from gemfury_to_npm.ui import is_secret_key


logger = get_logger(__name__)

DEFAULT_CONFIG_FILE = "gemfury-to-npm.yaml"
DEFAULT_ENV_FILE = ".env"

# YAML dotted key -> config field
YAML_KEYS = {
    "gemfury.user": "gemfury_user",
    "gemfury.api_key": "gemfury_api_key",
    "gemfury.url": "gemfury_url",
    "npm.registry": "npm_registry",
    "npm.command": "npm_command",
    "npm.tag": "npm_tag",
    "npm.access": "npm_access",
    "npm.publish_timeout": "publish_timeout",
    "migration.modules": "modules",
    "migration.gzip": "gzip_output",
    "migration.timeout": "timeout",
    "migration.workdir": "workdir",
}

# Environment variable -> config field
ENV_KEYS = {
    "GEMFURY_USER": "gemfury_user",
    "GEMFURY_API_KEY": "gemfury_api_key",
    "GEMFURY_URL": "gemfury_url",
    "NPM_REGISTRY": "npm_registry",
    "NPM_COMMAND": "npm_command",
    "NPM_TAG": "npm_tag",
    "NPM_ACCESS": "npm_access",
    "GEMFURY_TO_NPM_MODULES": "modules",
    "GEMFURY_TO_NPM_GZIP": "gzip_output",
    "GEMFURY_TO_NPM_TIMEOUT": "timeout",
    "GEMFURY_TO_NPM_WORKDIR": "workdir",
}

REQUIRED_FIELDS = ["gemfury_user", "gemfury_api_key"]


@dataclass
class MigrationConfig:
    """Resolved settings for one migration run."""
    gemfury_user: str = ""
    gemfury_api_key: str = ""
    gemfury_url: str = GEMFURY_URL
    npm_registry: str = NPM_REGISTRY_URL
    npm_command: str = "npm"
    npm_tag: Optional[str] = None
    npm_access: Optional[str] = None
    modules: List[str] = field(default_factory=list)
    gzip_output: bool = True
    dry_run: bool = False
    timeout: float = DEFAULT_TIMEOUT
    publish_timeout: float = DEFAULT_PUBLISH_TIMEOUT
    workdir: Optional[Path] = None

    def validate(self) -> None:
        """Raise ConfigError for the first missing required field."""
        for name in REQUIRED_FIELDS:
            if not getattr(self, name):
                raise ConfigError(f"Missing required setting: {name}", config_key=name)
        if self.timeout <= 0:
            raise ConfigError("timeout must be positive", config_key="timeout")

    def redacted(self) -> Dict[str, Any]:
        """Settings as a dict with secrets masked, for display."""
        data = asdict(self)
        for key, value in data.items():
            if is_secret_key(key) and value:
                data[key] = "********"
            elif isinstance(value, Path):
                data[key] = str(value)
        return data


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _parse_list(value: Any) -> List[str]:
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if str(v).strip()]
    return [v.strip() for v in str(value).split(",") if v.strip()]


_CONVERTERS = {
    "gzip_output": _parse_bool,
    "dry_run": _parse_bool,
    "modules": _parse_list,
    "timeout": float,
    "publish_timeout": float,
    "workdir": Path,
}


def _coerce(name: str, value: Any) -> Any:
    convert = _CONVERTERS.get(name)
    if convert is None:
        return value if value is None else str(value)
    try:
        return convert(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {name}: {value!r}", config_key=name, details=str(e))


def _get_nested(data: Mapping[str, Any], dotted: str) -> Any:
    value: Any = data
    for part in dotted.split("."):
        if not isinstance(value, Mapping) or part not in value:
            return None
        value = value[part]
    return value


def load_yaml_settings(path: Path) -> Dict[str, Any]:
    """Read a YAML config file into config-field settings."""
    try:
        data = yaml.safe_load(path.read_text()) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Could not read config file {path}", details=str(e))

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")

    settings = {}
    for dotted, name in YAML_KEYS.items():
        value = _get_nested(data, dotted)
        if value is not None:
            settings[name] = value
    return settings


def env_settings(environ: Mapping[str, Optional[str]]) -> Dict[str, Any]:
    """Pick config-field settings out of an environment mapping."""
    return {name: environ[key] for key, name in ENV_KEYS.items() if environ.get(key)}


def load_config(
    config_path: Optional[Path] = None,
    env_file: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    **overrides: Any
) -> MigrationConfig:
    """Resolve the configuration for a run.

    Args:
        config_path: YAML file; defaults to ./gemfury-to-npm.yaml when present
        env_file: .env file; defaults to ./.env when present
        environ: Environment mapping (default: os.environ)
        **overrides: Field values that win over everything; None is ignored

    Raises:
        ConfigError: Unreadable file or an explicitly named file is missing
    """
    settings: Dict[str, Any] = {}

    if config_path is not None:
        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")
        settings.update(load_yaml_settings(config_path))
    elif Path(DEFAULT_CONFIG_FILE).exists():
        logger.debug("Using %s", DEFAULT_CONFIG_FILE)
        settings.update(load_yaml_settings(Path(DEFAULT_CONFIG_FILE)))

    if env_file is not None:
        if not env_file.exists():
            raise ConfigError(f"Env file not found: {env_file}")
        settings.update(env_settings(dotenv_values(env_file)))
    elif Path(DEFAULT_ENV_FILE).exists():
        settings.update(env_settings(dotenv_values(DEFAULT_ENV_FILE)))

    settings.update(env_settings(os.environ if environ is None else environ))

    known = {f.name for f in fields(MigrationConfig)}
    for name, value in overrides.items():
        if name not in known:
            raise TypeError(f"Unknown config field: {name}")
        if value is not None:
            settings[name] = value

    return MigrationConfig(**{name: _coerce(name, value) for name, value in settings.items()})
