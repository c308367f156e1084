"""
Configuration Management for the Team Database Service
Centralizes all configuration with environment variable support
"""
import os
from typing import Optional, List
import logging
from urllib.parse import urlparse

from dotenv import load_dotenv

# Hydrate env vars from a local .env in the current working directory when present.
load_dotenv()

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() not in ('false', '0', 'no')


class DatabaseConfig:
    """Database configuration with secure defaults"""

    def __init__(self):
        # System (master) database holding teams/workspaces/users
        self.host = os.getenv('DB_HOST', 'localhost')
        self.database = os.getenv('DB_NAME', 'saas_master')
        self.user = os.getenv('DB_USER', '')
        self.password = os.getenv('DB_PASSWORD', '')
        self.port = int(os.getenv('DB_PORT', '5432'))
        self.ssl = _env_bool('DB_SSL', 'false')
        self.ssl_verify = _env_bool('DB_SSL_VERIFY', 'false')

        # Fallback to DATABASE_URL if individual credentials not set
        if not all([self.user, self.password]):
            database_url = os.getenv('DATABASE_URL', '')
            if database_url:
                try:
                    parsed = urlparse(database_url)
                    self.host = parsed.hostname or self.host
                    self.database = parsed.path.lstrip('/') if parsed.path else self.database
                    self.user = parsed.username or ''
                    self.password = parsed.password or ''
                    self.port = parsed.port or 5432
                    logger.info(f"Parsed DATABASE_URL: host={self.host}, db={self.database}")
                except ValueError as e:
                    logger.error(f"Failed to parse DATABASE_URL: {e}")

        # Administrative credentials, used only by the team provisioner
        self.admin_user = os.getenv('DB_ADMIN_USER', 'postgres')
        self.admin_password = os.getenv('DB_ADMIN_PASSWORD', '')
        self.admin_database = os.getenv('DB_ADMIN_DATABASE', 'postgres')

        self.pool_min_size = int(os.getenv('DB_POOL_MIN_SIZE', '1'))
        self.pool_max_size = int(os.getenv('DB_POOL_MAX_SIZE', '10'))
        self.team_pool_max_size = int(os.getenv('DB_TEAM_POOL_MAX_SIZE', '10'))
        self.command_timeout = float(os.getenv('DB_COMMAND_TIMEOUT', '30'))
        self.connect_timeout = float(os.getenv('DB_CONNECT_TIMEOUT', '10'))
        self.acquire_timeout = float(os.getenv('DB_ACQUIRE_TIMEOUT', '10'))

        self.max_retries = int(os.getenv('DB_MAX_RETRIES', '3'))
        self.retry_delay = int(os.getenv('DB_RETRY_DELAY_MS', '1000')) / 1000.0
        self.team_max_retries = int(os.getenv('DB_TEAM_MAX_RETRIES', '2'))
        self.team_retry_delay = int(os.getenv('DB_TEAM_RETRY_DELAY_MS', '500')) / 1000.0

    def to_dict(self) -> dict:
        """Get config as dictionary (without passwords for logging)"""
        return {
            'host': self.host,
            'database': self.database,
            'user': self.user,
            'port': self.port,
            'password': '***REDACTED***',
            'admin_user': self.admin_user,
            'admin_password': '***REDACTED***',
            'pool_max_size': self.pool_max_size,
            'team_pool_max_size': self.team_pool_max_size,
            'ssl': self.ssl,
            'ssl_verify': self.ssl_verify,
        }


class CacheConfig:
    """Query cache settings"""

    def __init__(self):
        self.enabled = _env_bool('QUERY_CACHE_ENABLED', 'true')
        self.ttl_seconds = float(os.getenv('QUERY_CACHE_TTL', '60'))
        self.max_items = int(os.getenv('QUERY_CACHE_MAX_ITEMS', '500'))


class MonitorConfig:
    """Slow-operation thresholds in milliseconds"""

    def __init__(self):
        self.slow_query_ms = float(os.getenv('SLOW_QUERY_MS', '500'))
        self.slow_api_ms = float(os.getenv('SLOW_API_MS', '1000'))
        self.slow_transaction_ms = float(os.getenv('SLOW_TRANSACTION_MS', '1500'))
        self.history_size = int(os.getenv('MONITOR_HISTORY', '100'))


class SecurityConfig:
    """Security configuration for token verification and CORS"""

    def __init__(self):
        self.environment = os.getenv('ENVIRONMENT', 'production')
        self.dev_mode = os.getenv('DEV_MODE', 'false').lower() == 'true'
        self.jwt_secret: Optional[str] = os.getenv('JWT_SECRET') or None
        self.jwt_algorithm = os.getenv('JWT_ALGORITHM', 'HS256')

        if not self.jwt_secret:
            logger.warning(
                "JWT_SECRET is not configured; owner-protected endpoints will reject all tokens."
            )

        cors_origins_str = os.getenv('ALLOWED_ORIGINS', '')
        self.allowed_origins: List[str]
        if cors_origins_str:
            self.allowed_origins = cors_origins_str.split(',')
        elif self.dev_mode:
            self.allowed_origins = ["http://localhost:3000", "http://localhost:3001"]
        else:
            self.allowed_origins = []


class AppConfig:
    """Main application configuration"""

    def __init__(self):
        self.version = "1.0.0"
        self.service_name = "Team Database Service"
        self.host = os.getenv('HOST', '0.0.0.0')
        self.port = int(os.getenv('PORT', '8000'))
        self.log_level = os.getenv('LOG_LEVEL', 'INFO')
        self.environment = os.getenv('ENVIRONMENT', 'production')
        self.database = DatabaseConfig()
        self.cache = CacheConfig()
        self.monitor = MonitorConfig()
        self.security = SecurityConfig()


config = AppConfig()
