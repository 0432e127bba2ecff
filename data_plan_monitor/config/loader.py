"""
Configuration management and loading.

Handles the plan, router and storage settings and the router credentials
taken from environment variables.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

from data_plan_monitor.storage.db import DEFAULT_DB_PATH

DEFAULT_CONFIG_PATH = "data_plan_monitor.yaml"

# WindTre balance shortcode and keyword
DEFAULT_STATUS_NUMBER = "4155"
DEFAULT_STATUS_KEYWORD = "Dati"


@dataclass(frozen=True)
class PlanConfig:
    """Data plan quota and billing cycle."""
    total_mb: float
    cycle_start_day: int = 1
    cycle_length_days: int = 30
    warning_buffer_ratio: float = 0.15

    def __post_init__(self):
        """Validate plan values."""
        if self.total_mb <= 0:
            raise ValueError("total_mb must be > 0")
        if not 1 <= self.cycle_start_day <= 31:
            raise ValueError("cycle_start_day must be between 1 and 31")
        if self.cycle_length_days <= 0:
            raise ValueError("cycle_length_days must be > 0")
        if not 0 <= self.warning_buffer_ratio < 1:
            raise ValueError("warning_buffer_ratio must be >= 0 and < 1")


@dataclass(frozen=True)
class RouterConfig:
    """Connection settings for the router's REST API."""
    base_url: str
    username: Optional[str] = None
    password: Optional[str] = None
    auth_base64: Optional[str] = None
    status_number: str = DEFAULT_STATUS_NUMBER
    status_keyword: str = DEFAULT_STATUS_KEYWORD

    def __post_init__(self):
        """Validate URL and credentials."""
        if not self.base_url:
            raise ValueError("base_url is required")
        if not self.auth_base64 and not (self.username and self.password):
            raise ValueError("Set auth_base64 or both username and password")


@dataclass(frozen=True)
class StorageConfig:
    """Location of the reading store."""
    db_path: str = DEFAULT_DB_PATH


@dataclass(frozen=True)
class AppConfig:
    """Complete application configuration."""
    plan: PlanConfig
    router: Optional[RouterConfig] = None
    storage: StorageConfig = field(default_factory=StorageConfig)

    def require_router(self) -> RouterConfig:
        """Get the router settings, failing when they are not configured."""
        if self.router is None:
            raise ValueError(
                "Router is not configured: add a 'router' section or set MIKROTIK_URL"
            )
        return self.router


def load_config(path: str, environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Load and validate configuration from a YAML file.

    Unknown keys are rejected so typos never fall back to defaults silently.
    Router credentials from the environment override the file.

    Args:
        path: Path to YAML configuration file
        environ: Environment to read overrides from (defaults to os.environ)

    Returns:
        Validated AppConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'plan', 'router', 'storage'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    if 'plan' not in raw_config:
        raise ValueError("Missing required 'plan' section")
    plan = _parse_plan_config(_require_section(raw_config, 'plan'))

    router = None
    if raw_config.get('router') is not None:
        router_data = _require_section(raw_config, 'router')
        router = _parse_router_config(_apply_env_overrides(router_data, environ))
    else:
        router = load_router_config_from_env(environ)

    storage = StorageConfig()
    if raw_config.get('storage') is not None:
        storage = _parse_storage_config(_require_section(raw_config, 'storage'))

    return AppConfig(plan=plan, router=router, storage=storage)


def load_router_config_from_env(
    environ: Optional[Mapping[str, str]] = None
) -> Optional[RouterConfig]:
    """Build router settings from environment variables alone.

    Returns:
        RouterConfig, or None when MIKROTIK_URL is not set

    Raises:
        ValueError: If the URL is set but credentials are missing
    """
    data = _apply_env_overrides({}, environ)
    if 'base_url' not in data:
        return None
    return _parse_router_config(data)


def _require_section(raw_config: Dict, name: str) -> Dict:
    section = raw_config[name]
    if not isinstance(section, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    return section


def _apply_env_overrides(data: Dict, environ: Optional[Mapping[str, str]]) -> Dict:
    """Overlay MIKROTIK_* variables on router settings."""
    env = os.environ if environ is None else environ
    merged = dict(data)
    if env.get('MIKROTIK_URL'):
        merged['base_url'] = env['MIKROTIK_URL']
    if env.get('MIKROTIK_AUTH_BASE64'):
        merged['auth_base64'] = env['MIKROTIK_AUTH_BASE64']
    if env.get('MIKROTIK_USER'):
        merged['username'] = env['MIKROTIK_USER']
    password = env.get('MIKROTIK_PASS') or env.get('MIKROTIK_PASSWORD')
    if password:
        merged['password'] = password
    return merged


def _parse_plan_config(data: Dict) -> PlanConfig:
    """Parse and validate the plan section.

    Raises:
        ValueError: If configuration is invalid
    """
    allowed_keys = {'total_mb', 'cycle_start_day', 'cycle_length_days', 'warning_buffer_ratio'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in plan: {unknown_keys}")

    if 'total_mb' not in data:
        raise ValueError("Missing required 'total_mb' in plan")
    total_mb = data['total_mb']
    if isinstance(total_mb, bool) or not isinstance(total_mb, (int, float)):
        raise ValueError("'total_mb' in plan must be a number")

    kwargs = {'total_mb': float(total_mb)}
    for key in ('cycle_start_day', 'cycle_length_days'):
        if key in data:
            value = data[key]
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"'{key}' in plan must be an integer")
            kwargs[key] = value
    if 'warning_buffer_ratio' in data:
        ratio = data['warning_buffer_ratio']
        if isinstance(ratio, bool) or not isinstance(ratio, (int, float)):
            raise ValueError("'warning_buffer_ratio' in plan must be a number")
        kwargs['warning_buffer_ratio'] = float(ratio)

    return PlanConfig(**kwargs)


def _parse_router_config(data: Dict) -> RouterConfig:
    """Parse and validate the router section.

    Raises:
        ValueError: If configuration is invalid
    """
    allowed_keys = {
        'base_url', 'username', 'password', 'auth_base64',
        'status_number', 'status_keyword'
    }
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in router: {unknown_keys}")

    for key, value in data.items():
        if value is not None and not isinstance(value, (str, int)):
            raise ValueError(f"'{key}' in router must be a string")

    values = {key: str(value) for key, value in data.items() if value is not None}
    if 'base_url' not in values:
        raise ValueError("Missing required 'base_url' in router")
    values['base_url'] = values['base_url'].rstrip('/')
    return RouterConfig(**values)


def _parse_storage_config(data: Dict) -> StorageConfig:
    """Parse and validate the storage section."""
    unknown_keys = set(data.keys()) - {'db_path'}
    if unknown_keys:
        raise ValueError(f"Unknown keys in storage: {unknown_keys}")
    db_path = data.get('db_path', DEFAULT_DB_PATH)
    if not isinstance(db_path, str) or not db_path:
        raise ValueError("'db_path' in storage must be a non-empty string")
    return StorageConfig(db_path=db_path)
