"""
Configuration management for Plenaria Legal.

This module provides typed configuration sections loaded from environment
variables (and a local .env file) with validation at startup.
"""

import logging
from typing import List, Optional
from pydantic_settings import BaseSettings
from pydantic import field_validator, Field
from dotenv import load_dotenv

from plenaria_legal.core.constants import PLAN_BASIC, PLAN_PLUS, PLAN_PREMIUM, UNLIMITED_QUOTA
from plenaria_legal.core.timeutils import resolve_timezone

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


class DatabaseConfig(BaseSettings):
    """Database configuration with validation."""

    database_url: str = Field(default="sqlite:///./plenaria.db")

    # Connection pool settings (ignored for SQLite)
    db_pool_size: int = Field(default=10)
    db_max_overflow: int = Field(default=20)
    db_pool_timeout: int = Field(default=30)

    # Bounded store operations
    db_statement_timeout_seconds: int = Field(default=30)

    @field_validator('database_url')
    @classmethod
    def validate_database_url(cls, v):
        """Only PostgreSQL and SQLite backends are supported."""
        if not v.startswith(("postgresql", "sqlite")):
            raise ValueError('DATABASE_URL must be a postgresql:// or sqlite:// URL')
        return v

    @field_validator('db_statement_timeout_seconds')
    @classmethod
    def validate_statement_timeout(cls, v):
        if v <= 0:
            raise ValueError('Statement timeout must be positive')
        return v

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


class SecurityConfig(BaseSettings):
    """Security configuration with validation."""

    # JWT settings
    secret_key: str = Field(...)
    jwt_algorithm: str = Field(default="HS256")
    access_token_expire_minutes: int = Field(default=15)
    refresh_token_expire_days: int = Field(default=7)

    # Password settings
    bcrypt_rounds: int = Field(default=12)
    min_password_length: int = Field(default=8)

    @field_validator('secret_key')
    @classmethod
    def validate_secret_key(cls, v):
        """Validate secret key strength."""
        if v == 'your-access-secret' or len(v) < 32:
            raise ValueError('Secret key must be at least 32 characters and not be the default')
        return v

    @field_validator('bcrypt_rounds')
    @classmethod
    def validate_bcrypt_rounds(cls, v):
        if not 4 <= v <= 31:
            raise ValueError('BCRYPT_ROUNDS must be between 4 and 31')
        return v


class ApplicationConfig(BaseSettings):
    """Main application configuration."""

    app_name: str = Field(default="Plenaria Legal API")
    app_version: str = Field(default="1.0.0")
    app_description: str = Field(default="Legal consultation marketplace backend")
    environment: str = Field(default="development", validation_alias="ENV")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # API settings
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=5000)
    cors_origins: List[str] = Field(default_factory=lambda: [
        "http://localhost:5173",
        "http://localhost:8080",
        "http://localhost:8082",
        "http://localhost:3000",
    ])

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v):
        """Validate environment setting."""
        valid_envs = ['development', 'staging', 'production', 'test']
        if v not in valid_envs:
            raise ValueError(f'Environment must be one of: {valid_envs}')
        return v

    @field_validator('api_port')
    @classmethod
    def validate_api_port(cls, v):
        """Validate API port."""
        if not 1 <= v <= 65535:
            raise ValueError('API port must be between 1 and 65535')
        return v

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        level = v.upper()
        if level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            raise ValueError('LOG_LEVEL must be a standard logging level name')
        return level


class ConsultationConfig(BaseSettings):
    """Consultation lifecycle, quota and live session settings."""

    sla_response_hours: int = Field(default=24)
    max_session_minutes: int = Field(default=60)
    idle_timeout_minutes: int = Field(default=10)

    # Idle/max-duration auto-termination is not scheduled; sessions end on
    # explicit command only. Reserved for a future release.
    session_auto_expiry_enabled: bool = Field(default=False)

    require_active_lawyer_for_accept: bool = Field(default=False)

    customer_trial_days: int = Field(default=7)
    default_consultation_title: str = Field(default="Consultoria Jurídica")

    # Monthly quotas, -1 means unlimited
    quota_basic: int = Field(default=3)
    quota_plus: int = Field(default=5)
    quota_premium: int = Field(default=UNLIMITED_QUOTA)
    # Wall clock the monthly quota window follows
    quota_timezone: str = Field(default="UTC")

    @field_validator('sla_response_hours', 'max_session_minutes', 'idle_timeout_minutes', 'customer_trial_days')
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError('Durations must be positive')
        return v

    @field_validator('quota_basic', 'quota_plus', 'quota_premium')
    @classmethod
    def validate_quota(cls, v):
        if v < UNLIMITED_QUOTA:
            raise ValueError('Quota must be -1 (unlimited) or a non-negative count')
        return v

    @field_validator('quota_timezone')
    @classmethod
    def validate_quota_timezone(cls, v):
        resolve_timezone(v)
        return v.strip()

    def quota_for_plan(self, plan: Optional[str]) -> int:
        """Monthly quota for a plan tier; customers without a plan count as basic."""
        quotas = {
            PLAN_BASIC: self.quota_basic,
            PLAN_PLUS: self.quota_plus,
            PLAN_PREMIUM: self.quota_premium,
        }
        return quotas.get(plan or PLAN_BASIC, self.quota_basic)


class Config:
    """Main configuration class that combines all config sections."""

    def __init__(self):
        """Initialize configuration with validation."""
        try:
            self.database = DatabaseConfig()
            self.security = SecurityConfig()
            self.application = ApplicationConfig()
            self.consultation = ConsultationConfig()

            logger.info("Configuration loaded successfully")

        except Exception as e:
            logger.error(f"Configuration validation failed: {e}")
            raise

    def get_database_url(self) -> str:
        """Get database URL."""
        return self.database.database_url


# Global configuration instance
config = Config()


def get_config() -> Config:
    """Get the global configuration instance."""
    return config
