"""Environment-based configuration management for the CDN quota monitor."""

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .exceptions import ConfigurationError

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

SYSTEM_CONFIG_FILE = "/etc/cdn/config.env"

MIB = 1024 * 1024


class PathsConfig(BaseModel):
    """Directory layout shared with the provisioning layer."""

    uploads_root: Path = Field(Path("/home/sftp"), description="Root of per-tenant upload areas")
    published_root: Path = Field(Path("/var/www/cdn"), description="Root of published content")
    vcs_root: Path = Field(Path("/home/git/repositories"), description="Root of version-control storage (not billed)")
    quota_dir: Path = Field(Path("/etc/cdn/quotas"), description="Quota limit records")
    tenants_dir: Path = Field(Path("/etc/cdn/tenants"), description="Per-tenant env files")
    state_dir: Path = Field(Path("/var/cache/cdn/quota"), description="Snapshots and enforcement state")
    log_dir: Path = Field(Path("/var/log/cdn"), description="Log directory")

    @property
    def alerts_sent_dir(self) -> Path:
        return self.quota_dir / "alerts_sent"

    @property
    def monitor_alert_dir(self) -> Path:
        return self.state_dir / "alerts"

    def uploads_path(self, tenant: str) -> Path:
        return self.uploads_root / tenant / "files"

    def published_path(self, tenant: str) -> Path:
        return self.published_root / tenant

    def vcs_path(self, tenant: str) -> Path:
        return self.vcs_root / tenant


class ThresholdConfig(BaseModel):
    """Usage percentage boundaries."""

    warning: int = Field(80, description="Warning threshold percent")
    critical: int = Field(90, description="Critical threshold percent")
    over: int = Field(100, description="Over-quota threshold percent")

    @field_validator('critical')
    @classmethod
    def validate_critical(cls, v, info):
        if 'warning' in info.data and v <= info.data['warning']:
            raise ValueError("critical must be greater than warning")
        return v

    @field_validator('over')
    @classmethod
    def validate_over(cls, v, info):
        if 'critical' in info.data and v <= info.data['critical']:
            raise ValueError("over must be greater than critical")
        return v


class MonitorConfig(BaseModel):
    """Real-time monitor behaviour."""

    debounce_seconds: float = Field(3.0, description="Delay after a filesystem event before a pass")
    fallback_interval: float = Field(300.0, description="Unconditional pass interval in seconds")
    max_concurrent_passes: int = Field(5, description="In-flight accounting pass cap")
    watch_backend: str = Field("watchfiles", description="watchfiles or inotifywait")
    excluded_dirs: List[str] = Field([".git"], description="Directory names never watched")
    default_quota_mb: int = Field(100, description="Quota applied when no record exists")

    @field_validator('debounce_seconds', 'fallback_interval')
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("interval must be positive")
        return v

    @field_validator('max_concurrent_passes', 'default_quota_mb')
    @classmethod
    def validate_at_least_one(cls, v):
        if v < 1:
            raise ValueError("value must be at least 1")
        return v

    @field_validator('watch_backend')
    @classmethod
    def validate_backend(cls, v):
        if v.lower() not in ("watchfiles", "inotifywait"):
            raise ValueError("watch_backend must be 'watchfiles' or 'inotifywait'")
        return v.lower()

    @field_validator('excluded_dirs', mode='before')
    @classmethod
    def parse_excluded_dirs(cls, v):
        if isinstance(v, str):
            return [name.strip() for name in v.split(',') if name.strip()]
        return v


def _default_dispatch_cooldowns() -> Dict[str, int]:
    return {"warning": 86400, "critical": 86400, "over": 86400, "enforced": 0, "restored": 0}


def _default_monitor_cooldowns() -> Dict[str, int]:
    return {"warning": 3600, "critical": 3600, "over": 3600}


class AlertConfig(BaseModel):
    """Alert addressing, transport and cooldown configuration."""

    admin_email: str = Field("", description="Administrative recipient, always addressed")
    sender: str = Field("cdn-quota@localhost", description="From address")
    cdn_domain: str = Field("localhost", description="Public CDN domain used in messages")
    portal_domain: str = Field("", description="Git portal domain used in messages")
    sftp_port: int = Field(22, description="SFTP port quoted in messages")
    smtp_enabled: bool = Field(False, description="Deliver alerts over SMTP")
    smtp_host: str = Field("localhost", description="SMTP host")
    smtp_port: int = Field(25, description="SMTP port")
    smtp_user: Optional[str] = Field(None, description="SMTP username")
    smtp_password: Optional[str] = Field(None, description="SMTP password")
    smtp_starttls: bool = Field(False, description="Use STARTTLS")
    webhook_url: Optional[str] = Field(None, description="Webhook receiving alert payloads")
    webhook_timeout: float = Field(30.0, description="Webhook timeout in seconds")
    dispatch_cooldowns: Dict[str, int] = Field(default_factory=_default_dispatch_cooldowns)
    monitor_cooldowns: Dict[str, int] = Field(default_factory=_default_monitor_cooldowns)

    @field_validator('dispatch_cooldowns', 'monitor_cooldowns')
    @classmethod
    def validate_cooldowns(cls, v):
        for kind, seconds in v.items():
            if seconds < 0:
                raise ValueError(f"cooldown for {kind} must not be negative")
        return v


class EnforcementConfig(BaseModel):
    """Enforcement policy."""

    auto_restore: bool = Field(False, description="Re-grant write access automatically below 100%")
    notice_filename: str = Field("QUOTA_EXCEEDED.txt", description="Notice file placed in the upload area")
    readonly_mode: int = Field(0o555, description="Directory mode while enforced")
    writable_mode: int = Field(0o755, description="Directory mode while active")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field("INFO", description="Log level")
    format: str = Field("text", description="Log format (text or json)")
    file_max_size: int = Field(10, description="Log file max size in MB")
    file_backup_count: int = Field(5, description="Number of log files to keep")
    enable_profiling: bool = Field(False, description="Attach process stats to log events")

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"level must be one of {valid_levels}")
        return v.upper()

    @field_validator('format')
    @classmethod
    def validate_format(cls, v):
        if v.lower() not in ["text", "json"]:
            raise ValueError("format must be 'text' or 'json'")
        return v.lower()


class MetricsConfig(BaseModel):
    """Prometheus exposition."""

    enabled: bool = Field(False, description="Serve Prometheus metrics")
    host: str = Field("127.0.0.1", description="Metrics bind host")
    port: int = Field(9105, description="Metrics port")

    @field_validator('port')
    @classmethod
    def validate_port(cls, v):
        if not (1 <= v <= 65535):
            raise ValueError("port must be between 1 and 65535")
        return v


class ServerConfig(BaseModel):
    """Complete monitor configuration."""

    environment: str = Field("production", description="Environment name")
    app_version: str = Field("1.0.0", description="Application version")

    paths: PathsConfig
    thresholds: ThresholdConfig
    monitor: MonitorConfig
    alerts: AlertConfig
    enforcement: EnforcementConfig
    logging: LoggingConfig
    metrics: MetricsConfig

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v):
        valid_envs = ["development", "staging", "production"]
        if v.lower() not in valid_envs:
            raise ValueError(f"environment must be one of {valid_envs}")
        return v.lower()


def _parse_cooldowns(raw: Optional[str], defaults: Dict[str, int]) -> Dict[str, int]:
    """Parse ``kind=seconds`` pairs, e.g. ``warning=3600,critical=600``."""
    cooldowns = dict(defaults)
    if not raw:
        return cooldowns
    for pair in raw.split(','):
        if not pair.strip():
            continue
        kind, sep, seconds = pair.partition('=')
        if not sep:
            raise ValueError(f"invalid cooldown entry: {pair!r}")
        cooldowns[kind.strip().lower()] = int(seconds)
    return cooldowns


def load_config() -> ServerConfig:
    """Load configuration from environment variables."""

    if Path(SYSTEM_CONFIG_FILE).exists():
        load_dotenv(SYSTEM_CONFIG_FILE, override=False)

    def get_env(key: str, default=None, type_func=str):
        value = os.getenv(key, default)
        if value is None:
            return default
        if type_func is bool:
            if isinstance(value, bool):
                return value
            return str(value).lower() in ('true', '1', 'yes', 'on')
        return type_func(value)

    try:
        config = ServerConfig(
            environment=get_env("ENVIRONMENT", "production"),
            app_version=get_env("APP_VERSION", "1.0.0"),

            paths=PathsConfig(
                uploads_root=get_env("SFTP_DIR", "/home/sftp"),
                published_root=get_env("NGINX_DIR", "/var/www/cdn"),
                vcs_root=get_env("GIT_DIR", "/home/git/repositories"),
                quota_dir=get_env("QUOTA_DIR", "/etc/cdn/quotas"),
                tenants_dir=get_env("TENANTS_DIR", "/etc/cdn/tenants"),
                state_dir=get_env("QUOTA_STATE_DIR", "/var/cache/cdn/quota"),
                log_dir=get_env("LOG_DIR", "/var/log/cdn"),
            ),

            thresholds=ThresholdConfig(
                warning=get_env("THRESHOLD_WARNING", 80, int),
                critical=get_env("THRESHOLD_CRITICAL", 90, int),
                over=get_env("THRESHOLD_FULL", 100, int),
            ),

            monitor=MonitorConfig(
                debounce_seconds=get_env("DEBOUNCE_SECONDS", 3.0, float),
                fallback_interval=get_env("CHECK_INTERVAL", 300.0, float),
                max_concurrent_passes=get_env("MAX_CONCURRENT_CHECKS", 5, int),
                watch_backend=get_env("WATCH_BACKEND", "watchfiles"),
                excluded_dirs=get_env("WATCH_EXCLUDED_DIRS", ".git"),
                default_quota_mb=get_env("DEFAULT_QUOTA_MB", 100, int),
            ),

            alerts=AlertConfig(
                admin_email=get_env("ALERT_EMAIL", ""),
                sender=get_env("ALERT_SENDER", "cdn-quota@localhost"),
                cdn_domain=get_env("CDN_DOMAIN", "localhost"),
                portal_domain=get_env("GITEA_DOMAIN", ""),
                sftp_port=get_env("SFTP_PORT", 22, int),
                smtp_enabled=get_env("SMTP_ENABLED", False, bool),
                smtp_host=get_env("SMTP_HOST", "localhost"),
                smtp_port=get_env("SMTP_PORT", 25, int),
                smtp_user=get_env("SMTP_USER"),
                smtp_password=get_env("SMTP_PASSWORD"),
                smtp_starttls=get_env("SMTP_STARTTLS", False, bool),
                webhook_url=get_env("ALERT_WEBHOOK_URL"),
                webhook_timeout=get_env("ALERT_WEBHOOK_TIMEOUT", 30.0, float),
                dispatch_cooldowns=_parse_cooldowns(
                    get_env("ALERT_DISPATCH_COOLDOWNS"), _default_dispatch_cooldowns()
                ),
                monitor_cooldowns=_parse_cooldowns(
                    get_env("ALERT_MONITOR_COOLDOWNS"), _default_monitor_cooldowns()
                ),
            ),

            enforcement=EnforcementConfig(
                auto_restore=get_env("ENFORCEMENT_AUTO_RESTORE", False, bool),
                notice_filename=get_env("ENFORCEMENT_NOTICE_FILE", "QUOTA_EXCEEDED.txt"),
            ),

            logging=LoggingConfig(
                level=get_env("LOG_LEVEL", "INFO"),
                format=get_env("LOG_FORMAT", "text"),
                file_max_size=get_env("LOG_FILE_MAX_SIZE", 10, int),
                file_backup_count=get_env("LOG_FILE_BACKUP_COUNT", 5, int),
                enable_profiling=get_env("ENABLE_PROFILING", False, bool),
            ),

            metrics=MetricsConfig(
                enabled=get_env("METRICS_ENABLED", False, bool),
                host=get_env("METRICS_HOST", "127.0.0.1"),
                port=get_env("METRICS_PORT", 9105, int),
            ),
        )

        logger.info(f"Configuration loaded successfully for environment: {config.environment}")
        return config

    except (PydanticValidationError, ValueError) as e:
        logger.error(f"Failed to load configuration: {e}")
        raise ConfigurationError(str(e)) from e


# Global configuration instance, used by entry points only
_config: Optional[ServerConfig] = None


def get_config() -> ServerConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def validate_config_file(config_path: str) -> bool:
    """Validate a configuration file."""
    if not Path(config_path).exists():
        logger.error(f"Configuration file {config_path} does not exist")
        return False

    from dotenv import dotenv_values
    config_values = dotenv_values(config_path)

    # Temporarily set environment variables
    original_env = {}
    for key, value in config_values.items():
        original_env[key] = os.getenv(key)
        if value is not None:
            os.environ[key] = value

    try:
        load_config()
        logger.info(f"Configuration file {config_path} is valid")
        return True
    except ConfigurationError as e:
        logger.error(f"Configuration file {config_path} is invalid: {e}")
        return False
    finally:
        # Restore original environment
        for key, value in original_env.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value
