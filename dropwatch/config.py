"""
Dropwatch Configuration Management.

Handles loading, saving, and validating configuration from various sources:
- Default values
- Configuration file (TOML)
- Environment variables
- Command-line arguments
"""

from __future__ import annotations

import json
import logging
import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, List, Optional

import tomli_w
import yaml
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

logger = logging.getLogger(__name__)

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".config" / "dropwatch"
DEFAULT_CONFIG_FILE = "config.toml"
DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "dropwatch"

CRON_BACKENDS = ("auto", "croniter", "apscheduler")
NOTIFIER_KINDS = ("logging", "webhook")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class ValidationError:
    """Validation error for configuration."""
    field: str
    message: str
    severity: str  # "error" or "warning"

    def __str__(self) -> str:
        return f"[{self.severity.upper()}] {self.field}: {self.message}"


@dataclass
class SchedulerConfig:
    """Configuration for the polling loop and check execution."""

    # Polling
    polling_interval_seconds: int = 60
    max_concurrent_checks: int = 100
    drain_timeout_seconds: float = 30.0

    # Adapter calls
    adapter_timeout_seconds: float = 30.0
    retry_attempts: int = 0
    retry_delay_seconds: float = 5.0

    # Multi-instance coordination
    enable_distributed_locking: bool = False
    lease_ttl_seconds: int = 600

    cron_backend: str = "auto"


@dataclass
class RetentionConfig:
    """Configuration for execution history retention."""

    execution_retention_days: int = 30
    sweep_interval_minutes: int = 60
    stale_running_minutes: int = 120


@dataclass
class NotifierConfig:
    """Configuration for downstream notifications."""

    kind: str = "logging"
    webhook_url: Optional[str] = None
    webhook_timeout_seconds: float = 10.0


@dataclass
class SecretsConfig:
    """Configuration for credential reference resolution."""

    env_prefix: str = "DROPWATCH_SECRET_"


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[Path] = None


@dataclass
class DropwatchConfig:
    """Main configuration container for Dropwatch."""

    # Paths
    config_dir: Path = DEFAULT_CONFIG_DIR
    data_dir: Path = DEFAULT_DATA_DIR

    # Sub-configurations
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    notifier: NotifierConfig = field(default_factory=NotifierConfig)
    secrets: SecretsConfig = field(default_factory=SecretsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Database
    database_url: str = ""

    # Lease owner identity; host:pid when empty
    instance_id: str = ""

    def __post_init__(self):
        """Initialize derived values."""
        self.config_dir = Path(self.config_dir)
        self.data_dir = Path(self.data_dir)
        if not self.database_url:
            self.database_url = f"sqlite:///{self.data_dir}/dropwatch.db"


def load_config(
    config_path: Optional[Path] = None,
    env_prefix: str = "DROPWATCH_"
) -> DropwatchConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file
    3. Default values

    Args:
        config_path: Path to config file (default: ~/.config/dropwatch/config.toml)
        env_prefix: Prefix for environment variables

    Returns:
        Loaded configuration
    """
    config = DropwatchConfig()

    # Determine config file path
    if config_path is None:
        env_config_dir = os.environ.get(f"{env_prefix}CONFIG_DIR")
        if env_config_dir:
            config_path = Path(env_config_dir) / DEFAULT_CONFIG_FILE
        else:
            config_path = DEFAULT_CONFIG_DIR / DEFAULT_CONFIG_FILE

    if config_path.exists():
        config = _load_from_file(config_path, config)

    # Override with environment variables
    config = _load_from_env(config, env_prefix)

    return config


def _apply_section(target: Any, values: dict) -> None:
    for key, value in values.items():
        if hasattr(target, key):
            setattr(target, key, value)
        else:
            logger.warning(f"Ignoring unknown configuration key: {key}")


def _load_from_file(path: Path, config: DropwatchConfig) -> DropwatchConfig:
    """Load configuration from a TOML file."""
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning(f"Failed to load config from {path}: {e}")
        return config

    for section in ("scheduler", "retention", "notifier", "secrets", "logging"):
        if section in data:
            _apply_section(getattr(config, section), data[section])

    if config.logging.file:
        config.logging.file = Path(config.logging.file)

    # Top-level settings
    if "config_dir" in data:
        config.config_dir = Path(data["config_dir"])
    if "data_dir" in data:
        config.data_dir = Path(data["data_dir"])
        if "database_url" not in data:
            config.database_url = f"sqlite:///{config.data_dir}/dropwatch.db"
    if "database_url" in data:
        config.database_url = data["database_url"]
    if "instance_id" in data:
        config.instance_id = data["instance_id"]

    return config


def _parse_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes", "on")


# Environment variable suffix -> (section, attribute, converter)
_ENV_OVERRIDES: dict[str, tuple[Optional[str], str, Callable[[str], Any]]] = {
    "POLLING_INTERVAL": ("scheduler", "polling_interval_seconds", int),
    "MAX_CONCURRENT_CHECKS": ("scheduler", "max_concurrent_checks", int),
    "DRAIN_TIMEOUT": ("scheduler", "drain_timeout_seconds", float),
    "ADAPTER_TIMEOUT": ("scheduler", "adapter_timeout_seconds", float),
    "RETRY_ATTEMPTS": ("scheduler", "retry_attempts", int),
    "DISTRIBUTED_LOCKING": ("scheduler", "enable_distributed_locking", _parse_bool),
    "LEASE_TTL": ("scheduler", "lease_ttl_seconds", int),
    "CRON_BACKEND": ("scheduler", "cron_backend", str),
    "RETENTION_DAYS": ("retention", "execution_retention_days", int),
    "NOTIFIER": ("notifier", "kind", str),
    "WEBHOOK_URL": ("notifier", "webhook_url", str),
    "LOG_LEVEL": ("logging", "level", str.upper),
    "CONFIG_DIR": (None, "config_dir", Path),
    "INSTANCE_ID": (None, "instance_id", str),
}


def _load_from_env(config: DropwatchConfig, prefix: str) -> DropwatchConfig:
    """Apply ``<prefix>*`` environment overrides."""
    for suffix, (section, attr, convert) in _ENV_OVERRIDES.items():
        env_val = os.environ.get(f"{prefix}{suffix}")
        if env_val:
            target = getattr(config, section) if section else config
            setattr(target, attr, convert(env_val))

    # The database follows a relocated data directory unless set explicitly
    if env_val := os.environ.get(f"{prefix}DATA_DIR"):
        derived_url = f"sqlite:///{config.data_dir}/dropwatch.db"
        config.data_dir = Path(env_val)
        if config.database_url == derived_url:
            config.database_url = f"sqlite:///{config.data_dir}/dropwatch.db"
    if env_val := os.environ.get(f"{prefix}DATABASE_URL"):
        config.database_url = env_val

    return config


def save_config(config: DropwatchConfig, path: Optional[Path] = None) -> Path:
    """
    Save configuration to a TOML file.

    Args:
        config: Configuration to save
        path: Path to save to (default: config.config_dir / config.toml)

    Returns:
        Path the configuration was written to
    """
    if path is None:
        path = config.config_dir / DEFAULT_CONFIG_FILE

    path.parent.mkdir(parents=True, exist_ok=True)

    # TOML has no null; unset values are left out
    data = _drop_none(_config_to_dict(config, mask_secrets=False))

    with open(path, "wb") as f:
        tomli_w.dump(data, f)

    return path


def _drop_none(data: dict[str, Any]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, dict):
            result[key] = _drop_none(value)
        elif value is not None:
            result[key] = value
    return result


def ensure_directories(config: DropwatchConfig) -> None:
    """Ensure all required directories exist."""
    config.config_dir.mkdir(parents=True, exist_ok=True)
    config.data_dir.mkdir(parents=True, exist_ok=True)
    if config.logging.file:
        Path(config.logging.file).parent.mkdir(parents=True, exist_ok=True)


def get_default_config() -> DropwatchConfig:
    """Get the default configuration."""
    return DropwatchConfig()


# Configuration loaded for the current CLI invocation (lazy-loaded)
_global_config: Optional[DropwatchConfig] = None


def get_config() -> DropwatchConfig:
    """Get the configuration for the current CLI invocation."""
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def set_config(config: DropwatchConfig) -> None:
    """Set the configuration for the current CLI invocation."""
    global _global_config
    _global_config = config


def clear_config_cache() -> None:
    """Clear the cached configuration."""
    global _global_config
    _global_config = None


def _validate_url(url: str) -> bool:
    """Validate a URL format."""
    url_pattern = r"^https?://[^\s/$.?#].[^\s]*$"
    return bool(re.match(url_pattern, url))


def _check_range(
    errors: List[ValidationError], field_name: str, value: float, low: float, high: float
) -> None:
    if not low <= value <= high:
        errors.append(ValidationError(
            field=field_name,
            message=f"Must be between {low} and {high}, got {value}",
            severity="error"
        ))


def validate_config(config: Optional[DropwatchConfig] = None) -> List[ValidationError]:
    """
    Validate configuration and return list of errors.

    Args:
        config: Configuration to validate (default: loaded from file)

    Returns:
        List of validation errors (empty if valid)
    """
    if config is None:
        config = load_config()

    errors: List[ValidationError] = []

    # Scheduler validation
    scheduler = config.scheduler
    _check_range(errors, "scheduler.polling_interval_seconds", scheduler.polling_interval_seconds, 1, 3600)
    _check_range(errors, "scheduler.max_concurrent_checks", scheduler.max_concurrent_checks, 1, 1000)

    if scheduler.drain_timeout_seconds < 0:
        errors.append(ValidationError(
            field="scheduler.drain_timeout_seconds",
            message="Drain timeout cannot be negative",
            severity="error"
        ))

    if scheduler.adapter_timeout_seconds <= 0:
        errors.append(ValidationError(
            field="scheduler.adapter_timeout_seconds",
            message="Adapter timeout must be positive",
            severity="error"
        ))

    if scheduler.retry_attempts < 0:
        errors.append(ValidationError(
            field="scheduler.retry_attempts",
            message="Retry attempts cannot be negative",
            severity="error"
        ))

    if scheduler.cron_backend not in CRON_BACKENDS:
        errors.append(ValidationError(
            field="scheduler.cron_backend",
            message=f"Unknown cron backend '{scheduler.cron_backend}'. Use one of: {', '.join(CRON_BACKENDS)}",
            severity="error"
        ))

    if scheduler.enable_distributed_locking:
        if scheduler.lease_ttl_seconds <= scheduler.adapter_timeout_seconds:
            errors.append(ValidationError(
                field="scheduler.lease_ttl_seconds",
                message="Lease TTL should exceed the adapter timeout or a lease can expire mid-check",
                severity="warning"
            ))
        if config.database_url.startswith("sqlite") and ":memory:" in config.database_url:
            errors.append(ValidationError(
                field="database_url",
                message="Distributed locking needs a database shared by all instances",
                severity="warning"
            ))

    # Retention validation
    if config.retention.execution_retention_days < 1:
        errors.append(ValidationError(
            field="retention.execution_retention_days",
            message="Execution history must be kept for at least one day",
            severity="error"
        ))

    if config.retention.stale_running_minutes * 60 <= scheduler.adapter_timeout_seconds:
        errors.append(ValidationError(
            field="retention.stale_running_minutes",
            message="Stale threshold is shorter than the adapter timeout",
            severity="warning"
        ))

    # Notifier validation
    if config.notifier.kind not in NOTIFIER_KINDS:
        errors.append(ValidationError(
            field="notifier.kind",
            message=f"Unknown notifier '{config.notifier.kind}'. Use one of: {', '.join(NOTIFIER_KINDS)}",
            severity="error"
        ))
    elif config.notifier.kind == "webhook":
        if not config.notifier.webhook_url:
            errors.append(ValidationError(
                field="notifier.webhook_url",
                message="Webhook notifier selected but no webhook URL is set",
                severity="error"
            ))
        elif not _validate_url(config.notifier.webhook_url):
            errors.append(ValidationError(
                field="notifier.webhook_url",
                message=f"Invalid URL format: {config.notifier.webhook_url}",
                severity="error"
            ))

    # Logging validation
    if config.logging.level.upper() not in LOG_LEVELS:
        errors.append(ValidationError(
            field="logging.level",
            message=f"Unknown log level: {config.logging.level}",
            severity="error"
        ))

    # Database validation
    try:
        make_url(config.database_url)
    except ArgumentError:
        errors.append(ValidationError(
            field="database_url",
            message=f"Invalid database URL: {config.database_url}",
            severity="error"
        ))

    # Path validation
    if not config.config_dir.exists():
        errors.append(ValidationError(
            field="config_dir",
            message=f"Config directory does not exist: {config.config_dir}",
            severity="warning"
        ))

    if not config.data_dir.exists():
        errors.append(ValidationError(
            field="data_dir",
            message=f"Data directory does not exist: {config.data_dir}",
            severity="warning"
        ))

    try:
        if config.data_dir.exists():
            test_file = config.data_dir / ".write_test"
            test_file.touch()
            test_file.unlink()
    except (PermissionError, OSError):
        errors.append(ValidationError(
            field="data_dir",
            message=f"Data directory is not writable: {config.data_dir}",
            severity="error"
        ))

    return errors


def _config_to_dict(config: DropwatchConfig, mask_secrets: bool = True) -> dict[str, Any]:
    """
    Convert configuration to dictionary.

    Args:
        config: Configuration to convert
        mask_secrets: If True, mask passwords embedded in URLs

    Returns:
        Dictionary representation of config
    """
    def mask_url(url: Optional[str]) -> Optional[str]:
        if not mask_secrets or not url:
            return url
        try:
            return make_url(url).render_as_string(hide_password=True)
        except ArgumentError:
            return url

    def mask_query(url: Optional[str]) -> Optional[str]:
        if not mask_secrets or not url or "?" not in url:
            return url
        return url.split("?", 1)[0] + "?****"

    return {
        "config_dir": str(config.config_dir),
        "data_dir": str(config.data_dir),
        "database_url": mask_url(config.database_url),
        "instance_id": config.instance_id,
        "scheduler": {
            "polling_interval_seconds": config.scheduler.polling_interval_seconds,
            "max_concurrent_checks": config.scheduler.max_concurrent_checks,
            "drain_timeout_seconds": config.scheduler.drain_timeout_seconds,
            "adapter_timeout_seconds": config.scheduler.adapter_timeout_seconds,
            "retry_attempts": config.scheduler.retry_attempts,
            "retry_delay_seconds": config.scheduler.retry_delay_seconds,
            "enable_distributed_locking": config.scheduler.enable_distributed_locking,
            "lease_ttl_seconds": config.scheduler.lease_ttl_seconds,
            "cron_backend": config.scheduler.cron_backend,
        },
        "retention": {
            "execution_retention_days": config.retention.execution_retention_days,
            "sweep_interval_minutes": config.retention.sweep_interval_minutes,
            "stale_running_minutes": config.retention.stale_running_minutes,
        },
        "notifier": {
            "kind": config.notifier.kind,
            "webhook_url": mask_query(config.notifier.webhook_url),
            "webhook_timeout_seconds": config.notifier.webhook_timeout_seconds,
        },
        "secrets": {
            "env_prefix": config.secrets.env_prefix,
        },
        "logging": {
            "level": config.logging.level,
            "format": config.logging.format,
            "file": str(config.logging.file) if config.logging.file else None,
        },
    }


def export_config_yaml(config: DropwatchConfig, mask_secrets: bool = True) -> str:
    """
    Export configuration as YAML string.

    Args:
        config: Configuration to export
        mask_secrets: If True, mask sensitive values

    Returns:
        YAML string representation of config
    """
    config_dict = _config_to_dict(config, mask_secrets)
    return yaml.dump(config_dict, default_flow_style=False, sort_keys=False, allow_unicode=True)


def export_config_json(config: DropwatchConfig, mask_secrets: bool = True) -> str:
    """
    Export configuration as JSON string.

    Args:
        config: Configuration to export
        mask_secrets: If True, mask sensitive values

    Returns:
        JSON string representation of config
    """
    config_dict = _config_to_dict(config, mask_secrets)
    return json.dumps(config_dict, indent=2)
