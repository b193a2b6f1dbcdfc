"""
Configuration Management Module
Loads and validates configuration from config.yaml
"""

import os
import yaml
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional, List

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "TRACKER_CONFIG"

VALID_SAME_SITE = ("lax", "strict", "none")


@dataclass
class DatabaseConfig:
    """Database configuration (environment variables take precedence)"""
    host: str = "localhost"
    port: int = 5432
    user: str = "training_user"
    password: str = "training_password"
    name: str = "training_tracker"
    echo: bool = False


@dataclass
class SessionConfig:
    """Login session settings"""
    cookie_name: str = "training_session"
    max_age_hours: int = 12
    secure: bool = False
    same_site: str = "lax"


@dataclass
class UploadConfig:
    """Attachment upload settings"""
    directory: str = "uploads"
    max_size_mb: int = 10
    url_prefix: str = "/uploads"
    allowed_extensions: List[str] = field(default_factory=lambda: [
        '.pdf', '.png', '.jpg', '.jpeg', '.gif', '.doc', '.docx', '.txt'
    ])

    @property
    def max_size_bytes(self) -> int:
        return self.max_size_mb * 1024 * 1024


@dataclass
class StatusConfig:
    """Expiry status settings"""
    lookahead_days: int = 90


@dataclass
class CalendarConfig:
    """iCalendar export settings"""
    prodid: str = "-//Training Manager//EN"
    uid_domain: str = "training-manager"
    alarm_days_before: int = 14


@dataclass
class SecurityConfig:
    """Password hashing and security log settings"""
    bcrypt_rounds: int = 10
    min_password_length: int = 6
    log_dir: str = "logs"


@dataclass
class ServerConfig:
    """HTTP server settings"""
    host: str = "0.0.0.0"
    port: int = 3000
    cors_origins: List[str] = field(default_factory=list)


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "INFO"
    file: str = "logs/training_tracker.log"
    console: bool = True
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class ConfigurationError(Exception):
    """Raised when configuration is invalid"""
    pass


class ConfigManager:
    """Manages system configuration"""

    _instance: Optional['ConfigManager'] = None

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager

        Args:
            config_path: Path to config.yaml file
        """
        self.config_path = Path(config_path) if config_path else self._find_config()
        self._raw_config: Dict[str, Any] = {}
        self.database: DatabaseConfig = DatabaseConfig()
        self.session: SessionConfig = SessionConfig()
        self.uploads: UploadConfig = UploadConfig()
        self.status: StatusConfig = StatusConfig()
        self.calendar: CalendarConfig = CalendarConfig()
        self.security: SecurityConfig = SecurityConfig()
        self.server: ServerConfig = ServerConfig()
        self.logging: LoggingConfig = LoggingConfig()

        if self.config_path and self.config_path.exists():
            self.load()
        else:
            logger.warning(f"Config file not found at {self.config_path}, using defaults")

    def _find_config(self) -> Path:
        """Find config.yaml in common locations"""
        env_path = os.getenv(CONFIG_ENV_VAR)
        if env_path:
            return Path(env_path)

        search_paths = [
            Path(__file__).parent / "config.yaml",
            Path.cwd() / "config.yaml",
            Path.cwd() / "python" / "config.yaml",
        ]

        for path in search_paths:
            if path.exists():
                return path

        return search_paths[0]

    def load(self) -> None:
        """Load configuration from YAML file"""
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._raw_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")
        except FileNotFoundError:
            raise ConfigurationError(f"Config file not found: {self.config_path}")

        if not isinstance(self._raw_config, dict):
            raise ConfigurationError("Config file must contain a mapping at the top level")

        self._parse_database()
        self._parse_session()
        self._parse_uploads()
        self._parse_status()
        self._parse_calendar()
        self._parse_security()
        self._parse_server()
        self._parse_logging()
        self._validate()

    def _section(self, name: str) -> Dict[str, Any]:
        cfg = self._raw_config.get(name) or {}
        if not isinstance(cfg, dict):
            raise ConfigurationError(f"Section '{name}' must be a mapping")
        return cfg

    def _parse_database(self) -> None:
        """Parse database configuration"""
        cfg = self._section('database')
        self.database = DatabaseConfig(
            host=cfg.get('host', self.database.host),
            port=cfg.get('port', self.database.port),
            user=cfg.get('user', self.database.user),
            password=cfg.get('password', self.database.password),
            name=cfg.get('name', self.database.name),
            echo=cfg.get('echo', self.database.echo)
        )

    def _parse_session(self) -> None:
        """Parse session configuration"""
        cfg = self._section('session')
        self.session = SessionConfig(
            cookie_name=cfg.get('cookie_name', self.session.cookie_name),
            max_age_hours=cfg.get('max_age_hours', self.session.max_age_hours),
            secure=cfg.get('secure', self.session.secure),
            same_site=str(cfg.get('same_site', self.session.same_site)).lower()
        )

    def _parse_uploads(self) -> None:
        """Parse upload configuration"""
        cfg = self._section('uploads')
        self.uploads = UploadConfig(
            directory=cfg.get('directory', self.uploads.directory),
            max_size_mb=cfg.get('max_size_mb', self.uploads.max_size_mb),
            url_prefix=cfg.get('url_prefix', self.uploads.url_prefix),
            allowed_extensions=[
                ext.lower() for ext in cfg.get('allowed_extensions', self.uploads.allowed_extensions)
            ]
        )

    def _parse_status(self) -> None:
        """Parse status classification configuration"""
        cfg = self._section('status')
        self.status = StatusConfig(
            lookahead_days=cfg.get('lookahead_days', self.status.lookahead_days)
        )

    def _parse_calendar(self) -> None:
        """Parse calendar export configuration"""
        cfg = self._section('calendar')
        self.calendar = CalendarConfig(
            prodid=cfg.get('prodid', self.calendar.prodid),
            uid_domain=cfg.get('uid_domain', self.calendar.uid_domain),
            alarm_days_before=cfg.get('alarm_days_before', self.calendar.alarm_days_before)
        )

    def _parse_security(self) -> None:
        """Parse security configuration"""
        cfg = self._section('security')
        self.security = SecurityConfig(
            bcrypt_rounds=cfg.get('bcrypt_rounds', self.security.bcrypt_rounds),
            min_password_length=cfg.get('min_password_length', self.security.min_password_length),
            log_dir=cfg.get('log_dir', self.security.log_dir)
        )

    def _parse_server(self) -> None:
        """Parse HTTP server configuration"""
        cfg = self._section('server')
        self.server = ServerConfig(
            host=cfg.get('host', self.server.host),
            port=cfg.get('port', self.server.port),
            cors_origins=cfg.get('cors_origins', self.server.cors_origins)
        )

    def _parse_logging(self) -> None:
        """Parse logging configuration"""
        cfg = self._section('logging')
        self.logging = LoggingConfig(
            level=cfg.get('level', 'INFO'),
            file=cfg.get('file', self.logging.file),
            console=cfg.get('console', True),
            format=cfg.get('format', self.logging.format)
        )

    @classmethod
    def get_instance(cls, config_path: Optional[str] = None) -> 'ConfigManager':
        """Get singleton instance of ConfigManager"""
        if cls._instance is None:
            cls._instance = ConfigManager(config_path)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset singleton instance (useful for testing)"""
        cls._instance = None

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary (password omitted)"""
        return {
            'database': {
                'host': self.database.host,
                'port': self.database.port,
                'user': self.database.user,
                'name': self.database.name
            },
            'session': {
                'cookie_name': self.session.cookie_name,
                'max_age_hours': self.session.max_age_hours,
                'secure': self.session.secure,
                'same_site': self.session.same_site
            },
            'uploads': {
                'directory': self.uploads.directory,
                'max_size_mb': self.uploads.max_size_mb,
                'url_prefix': self.uploads.url_prefix
            },
            'status': {
                'lookahead_days': self.status.lookahead_days
            },
            'calendar': {
                'prodid': self.calendar.prodid,
                'uid_domain': self.calendar.uid_domain,
                'alarm_days_before': self.calendar.alarm_days_before
            },
            'server': {
                'host': self.server.host,
                'port': self.server.port
            }
        }

    def _validate(self) -> None:
        """Validate configuration values

        Raises:
            ConfigurationError: If any value is out of range
        """
        errors = []

        if not isinstance(self.status.lookahead_days, int) or self.status.lookahead_days <= 0:
            errors.append("status.lookahead_days must be a positive integer")
        if not isinstance(self.calendar.alarm_days_before, int) or self.calendar.alarm_days_before < 0:
            errors.append("calendar.alarm_days_before must be a non-negative integer")
        if not isinstance(self.uploads.max_size_mb, int) or self.uploads.max_size_mb <= 0:
            errors.append("uploads.max_size_mb must be a positive integer")
        if not self.uploads.url_prefix.startswith('/'):
            errors.append("uploads.url_prefix must start with '/'")
        if self.session.same_site not in VALID_SAME_SITE:
            errors.append(f"session.same_site must be one of {', '.join(VALID_SAME_SITE)}")
        if not isinstance(self.session.max_age_hours, int) or self.session.max_age_hours <= 0:
            errors.append("session.max_age_hours must be a positive integer")
        if not 4 <= self.security.bcrypt_rounds <= 31:
            errors.append("security.bcrypt_rounds must be between 4 and 31")
        if self.logging.level.upper() not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            errors.append(f"logging.level '{self.logging.level}' is not a valid level")

        if errors:
            raise ConfigurationError("; ".join(errors))


def get_config(config_path: Optional[str] = None) -> ConfigManager:
    """Convenience function to get configuration instance"""
    return ConfigManager.get_instance(config_path)
