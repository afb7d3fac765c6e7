"""
Configuration Management for Campus Connect

Dataclass based configuration with per-environment defaults, dictionary and
file loading, and environment variable overrides (``CAMPUS_*``).
"""

from typing import Dict, Any, Optional, Union
from dataclasses import dataclass, field
from enum import Enum
import json
import os
from pathlib import Path


class Environment(Enum):
    """Application environments"""
    DEVELOPMENT = "development"
    TESTING = "testing"
    PRODUCTION = "production"


@dataclass
class DistributionConfig:
    """Realtime distribution configuration"""
    seen_capacity: int = 1000
    channel: str = "memory"  # "memory" or "sql"
    channel_url: Optional[str] = None  # defaults to the persistence url
    channel_poll_interval: float = 0.25
    replay_poll_interval: Optional[float] = None  # fallback store polling, off by default
    channel_retention: Optional[float] = 3600.0  # seconds a broadcast log row is kept


@dataclass
class PersistenceConfig:
    """Record store configuration"""
    backend: str = "memory"  # "memory" or "sql"
    url: str = "sqlite:///campusconnect.db"
    echo: bool = False


@dataclass
class SecurityConfig:
    """Credential and session configuration"""
    secret_key: Optional[str] = None
    password_time_cost: int = 3  # argon2 passes
    password_memory_cost: int = 65536  # argon2 memory, KiB
    session_idle_timeout: Optional[float] = 3600.0  # web sessions idle longer are closed


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file_path: Optional[str] = None
    max_file_size: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5


@dataclass
class AppConfig:
    """Complete application configuration"""
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = False

    distribution: DistributionConfig = field(default_factory=DistributionConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def channel_url(self) -> str:
        return self.distribution.channel_url or self.persistence.url

    @classmethod
    def for_environment(cls, environment: Environment) -> 'AppConfig':
        """Create configuration for specific environment"""
        config = cls(environment=environment)

        if environment == Environment.DEVELOPMENT:
            config.debug = True
            config.logging.level = "DEBUG"

        elif environment == Environment.TESTING:
            config.persistence.url = "sqlite:///:memory:"
            config.security.password_time_cost = 1
            config.security.password_memory_cost = 1024
            config.logging.level = "WARNING"

        elif environment == Environment.PRODUCTION:
            config.debug = False
            config.persistence.backend = "sql"
            config.distribution.channel = "sql"
            config.distribution.replay_poll_interval = 30.0
            config.logging.level = "INFO"

        return config

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> 'AppConfig':
        """Create configuration from dictionary"""
        environment = Environment(config_dict.get("environment", Environment.DEVELOPMENT.value))
        config = cls.for_environment(environment)

        if "debug" in config_dict:
            config.debug = bool(config_dict["debug"])

        for section in ("distribution", "persistence", "security", "logging"):
            target = getattr(config, section)
            for key, value in config_dict.get(section, {}).items():
                if hasattr(target, key):
                    setattr(target, key, value)

        return config

    @classmethod
    def from_file(cls, config_path: Union[str, Path]) -> 'AppConfig':
        """Load configuration from a JSON file"""
        config_path = Path(config_path)

        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        if config_path.suffix != '.json':
            raise ValueError(f"Unsupported configuration file format: {config_path.suffix}")

        with open(config_path) as f:
            return cls.from_dict(json.load(f))

    @classmethod
    def from_environment(cls) -> 'AppConfig':
        """Create configuration from environment variables"""
        env_name = os.getenv('CAMPUS_ENV', 'development')
        config = cls.for_environment(Environment(env_name))

        if os.getenv('CAMPUS_DEBUG'):
            config.debug = os.getenv('CAMPUS_DEBUG').lower() == 'true'

        if os.getenv('CAMPUS_DATABASE_URL'):
            config.persistence.url = os.getenv('CAMPUS_DATABASE_URL')
            config.persistence.backend = "sql"

        if os.getenv('CAMPUS_CHANNEL'):
            config.distribution.channel = os.getenv('CAMPUS_CHANNEL')

        if os.getenv('CAMPUS_SEEN_CAPACITY'):
            config.distribution.seen_capacity = int(os.getenv('CAMPUS_SEEN_CAPACITY'))

        if os.getenv('CAMPUS_LOG_LEVEL'):
            config.logging.level = os.getenv('CAMPUS_LOG_LEVEL').upper()

        if os.getenv('CAMPUS_SECRET_KEY'):
            config.security.secret_key = os.getenv('CAMPUS_SECRET_KEY')

        return config

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary"""
        return {
            "environment": self.environment.value,
            "debug": self.debug,
            "distribution": {
                "seen_capacity": self.distribution.seen_capacity,
                "channel": self.distribution.channel,
                "channel_url": self.distribution.channel_url,
                "channel_poll_interval": self.distribution.channel_poll_interval,
                "replay_poll_interval": self.distribution.replay_poll_interval,
                "channel_retention": self.distribution.channel_retention,
            },
            "persistence": {
                "backend": self.persistence.backend,
                "url": self.persistence.url,
                "echo": self.persistence.echo,
            },
            "security": {
                "secret_key": self.security.secret_key,
                "password_time_cost": self.security.password_time_cost,
                "password_memory_cost": self.security.password_memory_cost,
                "session_idle_timeout": self.security.session_idle_timeout,
            },
            "logging": {
                "level": self.logging.level,
                "format": self.logging.format,
                "file_path": self.logging.file_path,
                "max_file_size": self.logging.max_file_size,
                "backup_count": self.logging.backup_count,
            },
        }


# Process-level configuration
_current_config: Optional[AppConfig] = None


def set_config(config: AppConfig):
    """Set the process configuration"""
    global _current_config
    _current_config = config


def get_config() -> AppConfig:
    """Get the current process configuration"""
    global _current_config

    if _current_config is None:
        _current_config = AppConfig.from_environment()

    return _current_config


__all__ = [
    "AppConfig", "Environment", "DistributionConfig", "PersistenceConfig",
    "SecurityConfig", "LoggingConfig", "set_config", "get_config",
]
